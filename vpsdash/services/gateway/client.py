"""Client for the crypto payment gateway (NOWPayments API shape).

Also owns webhook authenticity: an HMAC-SHA512 of the exact raw callback body
keyed with the IPN secret.
"""

import hashlib
import hmac
from time import perf_counter
from typing import Any

import httpx

from vpsdash.common.config import settings
from vpsdash.common.errors import GatewayError
from vpsdash.common.logging import logger
from vpsdash.common.metrics import provider_latency_seconds, provider_requests_total
from vpsdash.services.gateway.schemas import CreatePaymentRequest, GatewayCurrency, GatewayPayment


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of `raw_body`."""

    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaymentGatewayClient:
    """Thin typed wrapper over the payment gateway REST API."""

    dependency = "payment_gateway"

    def __init__(
        self,
        api_key: str | None = None,
        ipn_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = settings.gateway_api_key if api_key is None else api_key
        self.ipn_secret = settings.gateway_ipn_secret if ipn_secret is None else ipn_secret
        self.base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self.timeout = settings.gateway_timeout_seconds if timeout is None else timeout
        self.transport = transport

    async def _request(
        self, operation: str, method: str, path: str, json: dict[str, Any] | None = None
    ) -> Any:
        if not self.api_key:
            raise GatewayError("Payment gateway API key not configured")

        start = perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={"x-api-key": self.api_key, "Content-Type": "application/json"},
            ) as client:
                response = await client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            provider_requests_total.labels(dependency=self.dependency, operation=operation, outcome="timeout").inc()
            raise GatewayError(f"Payment gateway timed out during {operation}", retryable=True) from exc
        except httpx.HTTPError as exc:
            provider_requests_total.labels(dependency=self.dependency, operation=operation, outcome="error").inc()
            raise GatewayError(f"Payment gateway unreachable: {exc}", retryable=True) from exc
        finally:
            provider_latency_seconds.labels(dependency=self.dependency, operation=operation).observe(
                max(0.0, perf_counter() - start)
            )

        if response.status_code >= 400:
            provider_requests_total.labels(
                dependency=self.dependency, operation=operation, outcome=f"http_{response.status_code}"
            ).inc()
            logger.error(
                "gateway rejected operation=%s status=%s body=%s", operation, response.status_code, response.text
            )
            raise GatewayError(
                f"Payment gateway error: {response.status_code} {response.text}",
                upstream_status=response.status_code,
                retryable=response.status_code >= 500,
            )
        try:
            data = response.json()
        except ValueError as exc:
            provider_requests_total.labels(
                dependency=self.dependency, operation=operation, outcome="invalid_body"
            ).inc()
            raise GatewayError(
                f"Payment gateway returned an unreadable response during {operation}",
                upstream_status=response.status_code,
            ) from exc
        provider_requests_total.labels(dependency=self.dependency, operation=operation, outcome="ok").inc()
        return data

    async def create_payment(self, req: CreatePaymentRequest) -> GatewayPayment:
        body = req.model_dump(mode="json", exclude_none=True)
        # The gateway expects a JSON number for the price.
        body["price_amount"] = float(req.price_amount)
        data = await self._request("create_payment", "POST", "/v1/payment", json=body)
        return GatewayPayment.model_validate(data)

    async def get_payment_status(self, payment_id: str) -> GatewayPayment:
        data = await self._request("get_payment_status", "GET", f"/v1/payment/{payment_id}")
        return GatewayPayment.model_validate(data)

    async def list_currencies(self) -> list[GatewayCurrency]:
        """Enabled pay-in currencies, popular first then by gateway priority."""

        data = await self._request("list_currencies", "GET", "/v1/full-currencies")
        currencies = [GatewayCurrency.model_validate(item) for item in data.get("currencies", [])]
        usable = [c for c in currencies if c.enable and c.available_for_payment]
        return sorted(usable, key=lambda c: (not c.is_popular, c.priority))

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Constant-time check of the callback signature header.

        An unconfigured secret verifies nothing.
        """

        if not signature:
            return False
        if not self.ipn_secret:
            logger.error("gateway ipn secret not configured; rejecting callback")
            return False
        expected = compute_signature(raw_body, self.ipn_secret)
        # Headers arrive latin-1 decoded; compare bytes so any character is a mismatch, not an error.
        provided = signature.strip().lower().encode("utf-8")
        return hmac.compare_digest(expected.encode("ascii"), provided)
