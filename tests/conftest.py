"""Shared fixtures: in-memory database, provider/gateway/notifier doubles."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("GATEWAY_API_KEY", "test-gateway-key")
os.environ.setdefault("GATEWAY_IPN_SECRET", "test-ipn-secret")
os.environ.setdefault("PROVIDER_API_TOKEN", "test-provider-token")
os.environ.setdefault("MINIMUM_BILLING_HOURS", "1")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from vpsdash.common.db import Base  # noqa: E402
from vpsdash.common.errors import ProviderError  # noqa: E402
from vpsdash.services.gateway.client import PaymentGatewayClient  # noqa: E402
from vpsdash.services.gateway.schemas import GatewayCurrency, GatewayPayment  # noqa: E402
from vpsdash.services.notification import models as notification_models  # noqa: E402,F401
from vpsdash.services.payments.models import PaymentTransaction  # noqa: E402
from vpsdash.services.payments.wallet import credit, get_or_create_wallet  # noqa: E402
from vpsdash.services.provider.catalog import Catalog, CatalogImage, CatalogPlan, CatalogRegion  # noqa: E402
from vpsdash.services.provider.schemas import Image, Instance, InstanceStats, Region  # noqa: E402
from vpsdash.services.servers import models as server_models  # noqa: E402,F401


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def catalog():
    return Catalog(
        regions=(CatalogRegion(id="us-east", name="Newark"), CatalogRegion(id="eu-west", name="London")),
        images=(CatalogImage(id="linux-x", name="Linux X"), CatalogImage(id="linux-y", name="Linux Y")),
        plans=(
            CatalogPlan(
                id="small-1",
                vcpus=1,
                memory=2048,
                disk=51200,
                transfer=2000,
                hourly=Decimal("0.018"),
                monthly=Decimal("12"),
            ),
        ),
    )


@pytest.fixture
def fund(session_factory):
    """Credit a user's USD wallet through the journal."""

    def _fund(owner_id: str, amount: str) -> None:
        with session_factory() as db:
            wallet = get_or_create_wallet(db, owner_id)
            credit(db, wallet, Decimal(amount), reference_id="seed", description="test funding")
            db.commit()

    return _fund


class FakeProvider:
    """In-memory provider recording every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.instances: dict[int, Instance] = {}
        self.account_keys: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.next_id = 123
        self.create_status = "provisioning"
        self.stats = InstanceStats()

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def _set_status(self, instance_id: int, status: str) -> None:
        self.instances[instance_id] = self.instances[instance_id].model_copy(update={"status": status})

    async def create_instance(self, req):
        self._call("create_instance", req)
        instance = Instance(
            id=self.next_id,
            label=req.label,
            region=req.region,
            type=req.type,
            image=req.image,
            status=self.create_status,
            tags=req.tags,
        )
        self.instances[instance.id] = instance
        return instance

    async def list_instances(self):
        self._call("list_instances")
        return list(self.instances.values())

    async def get_instance(self, instance_id):
        self._call("get_instance", instance_id)
        if instance_id not in self.instances:
            raise ProviderError("Failed to get instance: Not found", upstream_status=404)
        return self.instances[instance_id]

    async def boot_instance(self, instance_id):
        self._call("boot_instance", instance_id)
        self._set_status(instance_id, "running")

    async def shutdown_instance(self, instance_id):
        self._call("shutdown_instance", instance_id)
        self._set_status(instance_id, "offline")

    async def reboot_instance(self, instance_id):
        self._call("reboot_instance", instance_id)
        self._set_status(instance_id, "running")

    async def rebuild_instance(self, instance_id, image, root_pass, authorized_keys):
        self._call("rebuild_instance", instance_id, image, root_pass, tuple(authorized_keys))
        self.instances[instance_id] = self.instances[instance_id].model_copy(
            update={"status": "rebuilding", "image": image}
        )
        return self.instances[instance_id]

    async def delete_instance(self, instance_id):
        self._call("delete_instance", instance_id)
        self.instances.pop(instance_id, None)

    async def get_instance_stats(self, instance_id):
        self._call("get_instance_stats", instance_id)
        return self.stats

    async def list_regions(self):
        self._call("list_regions")
        return [Region(id="us-east", label="Newark")]

    async def list_images(self):
        self._call("list_images")
        return [Image(id="linux-x", label="Linux X")]

    async def list_ssh_keys(self):
        self._call("list_ssh_keys")
        return list(self.account_keys)


class FakeGateway:
    """Payment gateway double; signature checks use the real HMAC code path."""

    def __init__(self, ipn_secret: str = "test-ipn-secret") -> None:
        self._real = PaymentGatewayClient(api_key="k", ipn_secret=ipn_secret)
        self.calls: list[tuple[str, object]] = []
        self.failure: Exception | None = None
        self.remote_status = "waiting"
        self.next_payment_id = 5077125051

    async def create_payment(self, req):
        self.calls.append(("create_payment", req))
        if self.failure:
            raise self.failure
        return GatewayPayment(
            payment_id=self.next_payment_id,
            payment_status="waiting",
            pay_address="TXYZaddress",
            pay_amount=Decimal("109.5"),
            pay_currency=req.pay_currency,
            price_amount=req.price_amount,
            price_currency=req.price_currency,
            order_id=req.order_id,
            confirmations_required=1,
            expiration_estimate_date="2026-10-18T12:00:00.000Z",
        )

    async def get_payment_status(self, payment_id):
        self.calls.append(("get_payment_status", payment_id))
        return GatewayPayment(payment_id=payment_id, payment_status=self.remote_status, actually_paid=Decimal("50"))

    async def list_currencies(self):
        self.calls.append(("list_currencies", None))
        return [GatewayCurrency(code="usdttrc20", name="Tether", is_popular=True), GatewayCurrency(code="btc")]

    def verify_signature(self, raw_body, signature):
        return self._real.verify_signature(raw_body, signature)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    async def notify(self, event_type, aggregate_id, payload):
        self.events.append((event_type, aggregate_id, payload))

    def types(self) -> list[str]:
        return [event_type for event_type, _, _ in self.events]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_deposit(session_factory):
    """Insert a waiting deposit for `owner_id` with the given base amount."""

    def _make(owner_id: str = "user-a", order_id: str = "dep_1", base: str = "100.00", payment_id: str = "pay-1"):
        with session_factory() as db:
            wallet = get_or_create_wallet(db, owner_id)
            base_amount = Decimal(base)
            fee = Decimal("9.00")
            db.add(
                PaymentTransaction(
                    order_id=order_id,
                    owner_id=owner_id,
                    wallet_id=wallet.wallet_id,
                    base_amount=base_amount,
                    fee_amount=fee,
                    total_amount=base_amount + fee,
                    price_currency="usd",
                    pay_currency="usdttrc20",
                    status="waiting",
                    external_payment_id=payment_id,
                    credited_amount=Decimal("0"),
                    state_version=0,
                )
            )
            db.commit()
        return order_id

    return _make
