"""Domain error taxonomy and the uniform JSON error envelope.

Services raise these; each FastAPI app renders them as
`{"ok": false, "kind": ..., "error": ...}` with the error's HTTP status.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vpsdash.common.logging import logger


class ServiceError(Exception):
    """Base error carrying a stable machine kind and a user-facing message."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"ok": False, "kind": self.kind, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    kind = "validation_error"
    status_code = 400


class AuthenticationError(ServiceError):
    kind = "unauthenticated"
    status_code = 401


class AuthorizationError(ServiceError):
    """Role check failure. Ownership failures use `NotFoundError` instead."""

    kind = "forbidden"
    status_code = 403


class NotFoundError(ServiceError):
    kind = "not_found"
    status_code = 404


class InsufficientFunds(ServiceError):
    kind = "insufficient_funds"
    status_code = 402


class NotProvisioned(ServiceError):
    kind = "not_provisioned"
    status_code = 409


class NoCredentialsAvailable(ServiceError):
    kind = "no_credentials_available"
    status_code = 400


class PersistenceFailed(ServiceError):
    kind = "persistence_failed"
    status_code = 500


class ProviderError(ServiceError):
    """Non-success response, transport failure or timeout from an external API."""

    kind = "provider_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        retryable: bool = False,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.upstream_status = upstream_status
        self.retryable = retryable

    @property
    def is_not_found(self) -> bool:
        return self.upstream_status == 404


class GatewayError(ProviderError):
    kind = "gateway_error"


class ProvisioningFailed(ProviderError):
    kind = "provisioning_failed"


class RateLimited(ServiceError):
    kind = "rate_limited"
    status_code = 429


class SignatureVerificationError(ServiceError):
    kind = "invalid_signature"
    status_code = 401


def register_error_handlers(app: FastAPI) -> None:
    """Render `ServiceError` subclasses with the shared envelope."""

    @app.exception_handler(ServiceError)
    async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("request_failed path=%s kind=%s error=%s", request.url.path, exc.kind, exc.message)
        else:
            logger.info("request_rejected path=%s kind=%s error=%s", request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
