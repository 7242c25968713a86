"""Server record persistence model."""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from vpsdash.common.db import Base, JSONType


class ServerRecord(Base):
    """Local view of one provider instance and the user who owns it."""

    __tablename__ = "servers"

    server_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    provider_instance_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, unique=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String, default="provisioning")
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    image: Mapped[str] = mapped_column(String)
    region: Mapped[str] = mapped_column(String)
    plan_type: Mapped[str] = mapped_column(String)
    cpu_cores: Mapped[int] = mapped_column(Integer, default=0)
    memory_mb: Mapped[int] = mapped_column(Integer, default=0)
    disk_gb: Mapped[int] = mapped_column(Integer, default=0)
    hourly_cost: Mapped[Decimal] = mapped_column(Numeric(12, 5), default=Decimal("0"))
    details: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @validates("provider_instance_id")
    def _provider_instance_id_write_once(self, key, value):
        current = self.provider_instance_id
        if current is not None and value != current:
            raise ValueError(f"provider instance id already set for server {self.server_id}")
        return value
