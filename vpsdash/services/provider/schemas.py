"""Typed views of cloud provider API objects."""

from pydantic import BaseModel, ConfigDict, Field


class InstanceSpecs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    disk: int = 0
    memory: int = 0
    vcpus: int = 0
    transfer: int = 0


class Instance(BaseModel):
    """Normalized provider instance."""

    model_config = ConfigDict(extra="ignore")

    id: int
    label: str = ""
    region: str = ""
    type: str | None = None
    status: str = "unknown"
    ipv4: list[str] = Field(default_factory=list)
    ipv6: str | None = None
    image: str | None = None
    specs: InstanceSpecs = Field(default_factory=InstanceSpecs)
    created: str | None = None
    updated: str | None = None
    tags: list[str] = Field(default_factory=list)
    # Some provider responses echo the keys the instance was deployed with.
    authorized_keys: list[str] = Field(default_factory=list)

    @property
    def primary_ipv4(self) -> str | None:
        return self.ipv4[0] if self.ipv4 else None


class CreateInstanceRequest(BaseModel):
    label: str
    region: str
    type: str
    image: str
    root_pass: str
    authorized_keys: list[str]
    backups_enabled: bool = False
    private_ip: bool = False
    tags: list[str] = Field(default_factory=list)


class InstanceStats(BaseModel):
    """Raw stats series: `[timestamp_ms, value]` pairs."""

    model_config = ConfigDict(extra="ignore")

    cpu: list[list[float | None]] = Field(default_factory=list)
    io: dict[str, list[list[float | None]]] = Field(default_factory=dict)
    netv4: dict[str, list[list[float | None]]] = Field(default_factory=dict)
    netv6: dict[str, list[list[float | None]]] = Field(default_factory=dict)


class Region(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    label: str = ""
    country: str = ""


class Image(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    label: str = ""
    size: int = 0


class PlanType(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    label: str = ""
    vcpus: int = 0
    memory: int = 0
    disk: int = 0
    transfer: int = 0
