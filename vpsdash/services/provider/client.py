"""Authenticated client for the cloud IaaS provider (Linode v4 API shape).

Every failure, HTTP or transport, surfaces as `ProviderError`. Nothing here
retries; callers decide whether an operation is safe to repeat.
"""

from time import perf_counter
from typing import Any

import httpx

from vpsdash.common.config import settings
from vpsdash.common.errors import ProviderError
from vpsdash.common.logging import logger
from vpsdash.common.metrics import provider_latency_seconds, provider_requests_total
from vpsdash.services.provider.schemas import (
    CreateInstanceRequest,
    Image,
    Instance,
    InstanceStats,
    PlanType,
    Region,
)


def _error_reason(response: httpx.Response) -> str:
    """Pull the provider's `errors[0].reason`, falling back to the raw body."""

    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list) and isinstance(errors[0], dict):
        return str(errors[0].get("reason") or response.reason_phrase)
    return response.text or response.reason_phrase


class ProviderClient:
    """Thin typed wrapper over the provider's REST API."""

    dependency = "cloud_provider"

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_token = settings.provider_api_token if api_token is None else api_token
        self.base_url = (base_url or settings.provider_base_url).rstrip("/")
        self.timeout = settings.provider_timeout_seconds if timeout is None else timeout
        self.transport = transport

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        if not self.api_token:
            raise ProviderError("Cloud provider API token not configured")

        start = perf_counter()
        outcome = "error"
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "Content-Type": "application/json",
                },
            ) as client:
                response = await client.request(method, path, json=json, params=params)
            outcome = "responded"
        except httpx.TimeoutException as exc:
            outcome = "timeout"
            logger.warning("provider timeout operation=%s path=%s", operation, path)
            raise ProviderError(
                f"Cloud provider timed out during {operation}", retryable=True
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("provider transport error operation=%s path=%s error=%s", operation, path, exc)
            raise ProviderError(
                f"Cloud provider unreachable during {operation}: {exc}", retryable=True
            ) from exc
        finally:
            provider_latency_seconds.labels(dependency=self.dependency, operation=operation).observe(
                max(0.0, perf_counter() - start)
            )
            if outcome != "responded":
                provider_requests_total.labels(
                    dependency=self.dependency, operation=operation, outcome=outcome
                ).inc()

        if response.status_code >= 400:
            reason = _error_reason(response)
            provider_requests_total.labels(
                dependency=self.dependency, operation=operation, outcome=f"http_{response.status_code}"
            ).inc()
            logger.error(
                "provider rejected operation=%s path=%s status=%s reason=%s",
                operation,
                path,
                response.status_code,
                reason,
            )
            raise ProviderError(
                f"Failed to {operation.replace('_', ' ')}: {reason}",
                upstream_status=response.status_code,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        if not response.content:
            provider_requests_total.labels(dependency=self.dependency, operation=operation, outcome="ok").inc()
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            provider_requests_total.labels(
                dependency=self.dependency, operation=operation, outcome="invalid_body"
            ).inc()
            logger.error(
                "provider returned non-json body operation=%s path=%s status=%s",
                operation,
                path,
                response.status_code,
            )
            raise ProviderError(
                f"Cloud provider returned an unreadable response during {operation}",
                upstream_status=response.status_code,
                retryable=True,
            ) from exc
        provider_requests_total.labels(dependency=self.dependency, operation=operation, outcome="ok").inc()
        return data

    async def create_instance(self, req: CreateInstanceRequest) -> Instance:
        data = await self._request("create_instance", "POST", "/linode/instances", json=req.model_dump())
        return Instance.model_validate(data)

    async def list_instances(self) -> list[Instance]:
        data = await self._request("list_instances", "GET", "/linode/instances")
        return [Instance.model_validate(item) for item in data.get("data", [])]

    async def get_instance(self, instance_id: int) -> Instance:
        data = await self._request("get_instance", "GET", f"/linode/instances/{instance_id}")
        return Instance.model_validate(data)

    async def boot_instance(self, instance_id: int) -> None:
        await self._request("boot_instance", "POST", f"/linode/instances/{instance_id}/boot")

    async def shutdown_instance(self, instance_id: int) -> None:
        await self._request("shutdown_instance", "POST", f"/linode/instances/{instance_id}/shutdown")

    async def reboot_instance(self, instance_id: int) -> None:
        await self._request("reboot_instance", "POST", f"/linode/instances/{instance_id}/reboot")

    async def rebuild_instance(
        self, instance_id: int, image: str, root_pass: str, authorized_keys: list[str]
    ) -> Instance:
        """Wipe the instance and reinstall `image`."""

        payload: dict[str, Any] = {"image": image, "root_pass": root_pass}
        if authorized_keys:
            payload["authorized_keys"] = authorized_keys
        data = await self._request(
            "rebuild_instance", "POST", f"/linode/instances/{instance_id}/rebuild", json=payload
        )
        return Instance.model_validate(data)

    async def delete_instance(self, instance_id: int) -> None:
        await self._request("delete_instance", "DELETE", f"/linode/instances/{instance_id}")

    async def get_instance_stats(self, instance_id: int) -> InstanceStats:
        data = await self._request("get_instance_stats", "GET", f"/linode/instances/{instance_id}/stats")
        # The stats endpoint wraps the series in `data`.
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        return InstanceStats.model_validate(data)

    async def list_regions(self) -> list[Region]:
        data = await self._request("list_regions", "GET", "/regions")
        return [Region.model_validate(item) for item in data.get("data", [])]

    async def list_images(self) -> list[Image]:
        """Public images that can currently be deployed."""

        data = await self._request("list_images", "GET", "/images")
        return [
            Image.model_validate(item)
            for item in data.get("data", [])
            if item.get("is_public") and item.get("status") == "available"
        ]

    async def list_types(self) -> list[PlanType]:
        data = await self._request("list_types", "GET", "/linode/types")
        return [PlanType.model_validate(item) for item in data.get("data", [])]

    async def list_ssh_keys(self) -> list[str]:
        """Public keys registered on the provider account profile."""

        data = await self._request("list_ssh_keys", "GET", "/profile/sshkeys")
        return [item["ssh_key"] for item in data.get("data", []) if item.get("ssh_key")]
