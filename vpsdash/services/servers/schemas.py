"""API request/response schemas for server endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ServerCreateRequest(BaseModel):
    """Create payload; catalog and hostname checks happen in the service."""

    name: str = ""
    region: str = ""
    image: str | None = None
    plan_type: str = ""
    ssh_keys: list[str] = Field(default_factory=list)


class PowerActionRequest(BaseModel):
    action: str


class RebuildRequest(BaseModel):
    image: str | None = None


class ServerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    server_id: str
    provider_instance_id: int | None = None
    owner_id: str
    name: str
    status: str
    ip_address: str | None = None
    image: str
    region: str
    plan_type: str
    cpu_cores: int
    memory_mb: int
    disk_gb: int
    hourly_cost: Decimal
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MetricPoint(BaseModel):
    t: int
    cpu: float | None = None
    net_in: float | None = None
    net_out: float | None = None
