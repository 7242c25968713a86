"""Server lifecycle orchestration against the cloud provider.

The local `servers` table is the source of truth for ownership; the provider
is authoritative for runtime status. Every operation checks ownership before
any provider call, re-reads the record before writing, and never holds a DB
session open across provider I/O.
"""

import asyncio
import re
import secrets
import string
from uuid import uuid4

from sqlalchemy import select

from vpsdash.common.config import settings
from vpsdash.common.errors import (
    InsufficientFunds,
    NoCredentialsAvailable,
    NotFoundError,
    NotProvisioned,
    PersistenceFailed,
    ProviderError,
    ProvisioningFailed,
    ValidationError,
)
from vpsdash.common.identity import Caller, require_admin
from vpsdash.common.logging import logger, resource_id_ctx
from vpsdash.common.metrics import server_operations_total
from vpsdash.common.state_machine import (
    POWER_ACTIONS,
    is_expected_server_transition,
    normalize_server_status,
)
from vpsdash.services.payments.wallet import charge, get_or_create_wallet, refund
from vpsdash.services.provider.catalog import Catalog, get_catalog
from vpsdash.services.provider.client import ProviderClient
from vpsdash.services.provider.schemas import CreateInstanceRequest, Instance, InstanceStats
from vpsdash.services.servers.models import ServerRecord
from vpsdash.services.servers.schemas import ServerCreateRequest


HOSTNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9._-]{1,62})[A-Za-z0-9]$")
ROOT_PASS_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"

# Provider call issued for each power action and the status shown until the
# next refresh.
POWER_CALLS = {
    "start": ("boot_instance", "booting"),
    "stop": ("shutdown_instance", "shutting_down"),
    "reboot": ("reboot_instance", "rebooting"),
}


def generate_root_password(length: int = 32) -> str:
    """Random placeholder root password; SSH keys are the real access path."""

    return "".join(secrets.choice(ROOT_PASS_ALPHABET) for _ in range(length))


def stats_to_series(stats: InstanceStats) -> list[dict]:
    """Align cpu / net in / net out on the cpu timeline, timestamps in seconds."""

    net_in = stats.netv4.get("in", [])
    net_out = stats.netv4.get("out", [])
    series = []
    for index, point in enumerate(stats.cpu):
        if not point or point[0] is None:
            continue
        in_point = net_in[index] if index < len(net_in) else None
        out_point = net_out[index] if index < len(net_out) else None
        series.append(
            {
                "t": int(point[0] // 1000),
                "cpu": point[1] if len(point) > 1 else None,
                "net_in": in_point[1] if in_point and len(in_point) > 1 else None,
                "net_out": out_point[1] if out_point and len(out_point) > 1 else None,
            }
        )
    return series


class ServerService:
    """Create, sync, power, rebuild and delete provider-backed servers."""

    def __init__(
        self,
        session_factory,
        provider: ProviderClient,
        catalog: Catalog | None = None,
        service_name: str = "servers",
    ) -> None:
        self.session_factory = session_factory
        self.provider = provider
        self.catalog = catalog or get_catalog()
        self.service_name = service_name

    def _count(self, operation: str, outcome: str) -> None:
        server_operations_total.labels(service=self.service_name, operation=operation, outcome=outcome).inc()

    def _load_owned(self, owner_id: str, server_id: str) -> ServerRecord:
        """Fresh read of one record; non-owners get the same answer as a missing id."""

        if not owner_id:
            raise ValidationError("User id is required")
        resource_id_ctx.set(server_id)
        with self.session_factory() as db:
            record = db.execute(
                select(ServerRecord).where(ServerRecord.server_id == server_id, ServerRecord.owner_id == owner_id)
            ).scalar_one_or_none()
        if record is None:
            raise NotFoundError("Server not found")
        return record

    def _require_instance_id(self, record: ServerRecord) -> int:
        if record.provider_instance_id is None:
            raise NotProvisioned("Server has no provider instance")
        return record.provider_instance_id

    def _apply_instance(self, server_id: str, instance: Instance) -> ServerRecord:
        """Overwrite local status and address with the provider's view."""

        with self.session_factory() as db:
            record = db.get(ServerRecord, server_id)
            if record is None:
                raise NotFoundError("Server not found")
            new_status = normalize_server_status(instance.status)
            if not is_expected_server_transition(record.status, new_status):
                logger.warning(
                    "unexpected server transition server_id=%s %s->%s", server_id, record.status, new_status
                )
            record.status = new_status
            if instance.primary_ipv4:
                record.ip_address = instance.primary_ipv4
            if record.provider_instance_id is None:
                record.provider_instance_id = instance.id
            db.commit()
            return record

    def _set_status(self, server_id: str, status: str, **fields) -> ServerRecord:
        with self.session_factory() as db:
            record = db.get(ServerRecord, server_id)
            if record is None:
                raise NotFoundError("Server not found")
            record.status = status
            for key, value in fields.items():
                setattr(record, key, value)
            db.commit()
            return record

    def _validate_create(self, owner_id: str, req: ServerCreateRequest):
        if not owner_id:
            raise ValidationError("User id is required")
        name = (req.name or "").strip()
        if not HOSTNAME_RE.match(name) or re.search(r"[._-]{2}", name):
            raise ValidationError(
                "Hostname must be 3-64 characters of letters, digits, '.', '-' or '_' "
                "and start and end with a letter or digit"
            )
        region = self.catalog.region(req.region)
        if region is None:
            raise ValidationError(f"Unknown region {req.region}")
        image = self.catalog.image(req.image or settings.default_image)
        if image is None:
            raise ValidationError(f"Unknown image {req.image}")
        plan = self.catalog.plan(req.plan_type)
        if plan is None:
            raise ValidationError(f"Unknown plan {req.plan_type}")
        ssh_keys = [key.strip() for key in req.ssh_keys if key and key.strip()]
        if not ssh_keys:
            raise ValidationError("At least one SSH key is required")
        return name, region, image, plan, ssh_keys

    def _reserve_initial_charge(self, owner_id: str, server_id: str, name: str, plan) -> None:
        """Debit the first billing hours under a wallet lock, before any provider call."""

        amount = plan.hourly * settings.minimum_billing_hours
        if amount <= 0:
            return
        with self.session_factory() as db:
            wallet = get_or_create_wallet(db, owner_id, for_update=True)
            try:
                charge(
                    db,
                    wallet,
                    amount,
                    reference_id=server_id,
                    description=f"Initial {settings.minimum_billing_hours}h charge for server {name}",
                )
            except InsufficientFunds as exc:
                self._count("create", "insufficient_funds")
                raise InsufficientFunds(
                    f"Insufficient wallet balance. Required: ${amount:.4f}, Available: ${wallet.balance:.2f}",
                    details={**exc.details, "hourly_cost": str(plan.hourly)},
                ) from exc
            db.commit()

    def _release_initial_charge(self, owner_id: str, server_id: str, plan) -> None:
        amount = plan.hourly * settings.minimum_billing_hours
        if amount <= 0:
            return
        with self.session_factory() as db:
            wallet = get_or_create_wallet(db, owner_id, for_update=True)
            refund(db, wallet, amount, reference_id=server_id, description="Provisioning failed")
            db.commit()

    async def create_server(self, owner_id: str, req: ServerCreateRequest) -> ServerRecord:
        """Charge the first billing hours, provision an instance, then record it.

        The charge is refunded when the provider refuses the instance.
        """

        name, region, image, plan, ssh_keys = self._validate_create(owner_id, req)
        server_id = str(uuid4())
        self._reserve_initial_charge(owner_id, server_id, name, plan)

        try:
            instance = await self.provider.create_instance(
                CreateInstanceRequest(
                    label=name,
                    region=region.id,
                    type=plan.id,
                    image=image.id,
                    root_pass=generate_root_password(),
                    authorized_keys=ssh_keys,
                    tags=[f"user:{owner_id}"],
                )
            )
        except ProviderError as exc:
            self._count("create", "provider_error")
            self._release_initial_charge(owner_id, server_id, plan)
            raise ProvisioningFailed(
                exc.message, upstream_status=exc.upstream_status, retryable=exc.retryable
            ) from exc

        try:
            with self.session_factory() as db:
                record = ServerRecord(
                    server_id=server_id,
                    provider_instance_id=instance.id,
                    owner_id=owner_id,
                    name=name,
                    status=normalize_server_status(instance.status),
                    ip_address=instance.primary_ipv4,
                    image=image.id,
                    region=region.id,
                    plan_type=plan.id,
                    cpu_cores=plan.vcpus,
                    memory_mb=plan.memory,
                    disk_gb=plan.disk_gb,
                    hourly_cost=plan.hourly,
                    details={
                        "plan": plan.id,
                        "authorized_keys": ssh_keys,
                        "provider": instance.model_dump(mode="json"),
                    },
                )
                db.add(record)
                db.commit()
        except Exception as exc:
            self._count("create", "persist_failed")
            logger.exception("server persist failed after provider create instance_id=%s", instance.id)
            raise PersistenceFailed(
                f"Server created at provider but failed to save. Instance ID: {instance.id}",
                details={"provider_instance_id": instance.id},
            ) from exc

        resource_id_ctx.set(record.server_id)
        self._count("create", "ok")
        logger.info(
            "server created server_id=%s instance_id=%s plan=%s region=%s",
            record.server_id,
            instance.id,
            plan.id,
            region.id,
        )
        return record

    def list_servers(self, owner_id: str) -> list[ServerRecord]:
        if not owner_id:
            raise ValidationError("User id is required")
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(ServerRecord)
                    .where(ServerRecord.owner_id == owner_id)
                    .order_by(ServerRecord.created_at.desc())
                ).scalars()
            )

    def get_server(self, owner_id: str, server_id: str) -> ServerRecord:
        return self._load_owned(owner_id, server_id)

    async def sync_server(self, owner_id: str, server_id: str) -> ServerRecord:
        """Pull status and address from the provider. Safe to repeat."""

        record = self._load_owned(owner_id, server_id)
        instance_id = self._require_instance_id(record)
        instance = await self.provider.get_instance(instance_id)
        updated = self._apply_instance(record.server_id, instance)
        self._count("sync", "ok")
        return updated

    async def power_action(self, owner_id: str, server_id: str, action: str) -> ServerRecord:
        action = (action or "").strip().lower()
        if action not in POWER_ACTIONS:
            raise ValidationError(f"Unsupported power action {action}")
        record = self._load_owned(owner_id, server_id)
        instance_id = self._require_instance_id(record)

        method_name, pending_status = POWER_CALLS[action]
        try:
            await getattr(self.provider, method_name)(instance_id)
        except ProviderError:
            self._count(action, "provider_error")
            raise
        record = self._set_status(record.server_id, pending_status)
        self._count(action, "ok")

        try:
            instance = await self.provider.get_instance(instance_id)
            record = self._apply_instance(record.server_id, instance)
        except Exception as exc:
            logger.warning("status refresh after %s failed server_id=%s error=%s", action, server_id, exc)
        return record

    async def _resolve_keys(self, record: ServerRecord, instance: Instance | None) -> list[str]:
        if instance is not None and instance.authorized_keys:
            return list(instance.authorized_keys)
        stored = (record.details or {}).get("authorized_keys") or []
        if stored:
            return list(stored)
        try:
            return await self.provider.list_ssh_keys()
        except ProviderError as exc:
            logger.warning("account ssh key lookup failed server_id=%s error=%s", record.server_id, exc)
            return []

    async def rebuild_server(self, owner_id: str, server_id: str, image: str | None = None) -> ServerRecord:
        """Reinstall the instance, keeping existing SSH access."""

        record = self._load_owned(owner_id, server_id)
        instance_id = self._require_instance_id(record)
        if image and self.catalog.image(image) is None:
            raise ValidationError(f"Unknown image {image}")

        try:
            instance = await self.provider.get_instance(instance_id)
        except ProviderError as exc:
            logger.warning("instance lookup before rebuild failed server_id=%s error=%s", server_id, exc)
            instance = None

        keys = await self._resolve_keys(record, instance)
        if not keys:
            self._count("rebuild", "no_credentials")
            raise NoCredentialsAvailable("No SSH keys available for rebuild")

        target_image = image or record.image or (instance.image if instance else None) or settings.default_image
        try:
            await self.provider.rebuild_instance(instance_id, target_image, generate_root_password(), keys)
        except ProviderError:
            self._count("rebuild", "provider_error")
            raise

        details = dict(record.details or {})
        details["authorized_keys"] = keys
        updated = self._set_status(record.server_id, "rebuilding", image=target_image, details=details)
        self._count("rebuild", "ok")
        logger.info("server rebuild started server_id=%s image=%s keys=%s", server_id, target_image, len(keys))
        return updated

    async def delete_server(self, owner_id: str, server_id: str) -> dict:
        """Remove the local record even when the provider delete fails.

        A provider failure other than not-found comes back as `warning` so the
        owner can clean up the instance by hand.
        """

        record = self._load_owned(owner_id, server_id)
        instance_id = record.provider_instance_id
        provider_deleted = instance_id is None
        warning = None
        if instance_id is not None:
            try:
                await self.provider.delete_instance(instance_id)
                provider_deleted = True
            except ProviderError as exc:
                if exc.is_not_found:
                    provider_deleted = True
                else:
                    warning = f"Provider deletion failed for instance {instance_id}: {exc.message}"
                    logger.error(
                        "provider delete failed server_id=%s instance_id=%s error=%s",
                        server_id,
                        instance_id,
                        exc.message,
                    )
            except Exception as exc:
                warning = f"Provider deletion failed for instance {instance_id}: {exc}"
                logger.exception("provider delete failed server_id=%s instance_id=%s", server_id, instance_id)

        with self.session_factory() as db:
            current = db.get(ServerRecord, record.server_id)
            if current is not None:
                db.delete(current)
            db.commit()

        self._count("delete", "ok" if warning is None else "partial")
        return {
            "server_id": record.server_id,
            "deleted": True,
            "provider_instance_id": instance_id,
            "provider_deleted": provider_deleted,
            "warning": warning,
        }

    async def server_metrics(self, owner_id: str, server_id: str) -> list[dict]:
        record = self._load_owned(owner_id, server_id)
        instance_id = self._require_instance_id(record)
        stats = await self.provider.get_instance_stats(instance_id)
        return stats_to_series(stats)

    async def options(self) -> dict:
        """Catalog entries flagged with current provider availability."""

        available_regions: set[str] | None = None
        available_images: set[str] | None = None
        try:
            regions, images = await asyncio.gather(self.provider.list_regions(), self.provider.list_images())
            available_regions = {r.id for r in regions}
            available_images = {i.id for i in images}
        except ProviderError as exc:
            logger.warning("provider availability lookup failed error=%s", exc)

        def _available(ids: set[str] | None, item_id: str) -> bool | None:
            return None if ids is None else item_id in ids

        return {
            "regions": [
                {**r.model_dump(), "available": _available(available_regions, r.id)} for r in self.catalog.regions
            ],
            "images": [
                {**i.model_dump(), "available": _available(available_images, i.id)} for i in self.catalog.images
            ],
            "plans": [{**p.model_dump(mode="json"), "disk_gb": p.disk_gb} for p in self.catalog.plans],
            "minimum_billing_hours": settings.minimum_billing_hours,
        }

    async def provider_health(self) -> dict:
        try:
            regions = await self.provider.list_regions()
        except ProviderError as exc:
            return {"healthy": False, "error": exc.message}
        return {"healthy": True, "regions": len(regions)}

    def admin_list_servers(self, caller: Caller, limit: int = 500) -> list[ServerRecord]:
        require_admin(caller)
        with self.session_factory() as db:
            return list(
                db.execute(select(ServerRecord).order_by(ServerRecord.created_at.desc()).limit(limit)).scalars()
            )

    async def orphan_report(self, caller: Caller) -> dict:
        """Provider instances without a local record and records whose instance is gone."""

        require_admin(caller)
        instances = await self.provider.list_instances()
        with self.session_factory() as db:
            local_ids = {
                row[0]
                for row in db.execute(
                    select(ServerRecord.provider_instance_id).where(ServerRecord.provider_instance_id.is_not(None))
                )
            }
        provider_ids = {i.id for i in instances}
        return {
            "provider_orphans": [
                {"provider_instance_id": i.id, "label": i.label, "tags": i.tags}
                for i in instances
                if i.id not in local_ids
            ],
            "missing_at_provider": sorted(local_ids - provider_ids),
        }
