"""Static catalog of deployable regions, images and plans.

Loaded once per process from a JSON data file and queried by id.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from vpsdash.common.config import settings


DEFAULT_CATALOG_PATH = Path(__file__).with_name("catalog.json")


class CatalogRegion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    country: str = ""
    country_code: str = ""
    city: str = ""


class CatalogImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str = ""


class CatalogPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    category: str = "shared"
    label: str = ""
    vcpus: int
    memory: int
    disk: int
    transfer: int = 0
    hourly: Decimal
    monthly: Decimal

    @property
    def disk_gb(self) -> int:
        return round(self.disk / 1024)


class Catalog(BaseModel):
    """Immutable lookup table for provisioning inputs."""

    model_config = ConfigDict(frozen=True)

    regions: tuple[CatalogRegion, ...]
    images: tuple[CatalogImage, ...]
    plans: tuple[CatalogPlan, ...]

    def region(self, region_id: str) -> CatalogRegion | None:
        return next((r for r in self.regions if r.id == region_id), None)

    def image(self, image_id: str) -> CatalogImage | None:
        return next((i for i in self.images if i.id == image_id), None)

    def plan(self, plan_id: str) -> CatalogPlan | None:
        return next((p for p in self.plans if p.id == plan_id), None)


def load_catalog(path: str | Path | None = None) -> Catalog:
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    return Catalog.model_validate_json(catalog_path.read_text())


@lru_cache(maxsize=1)
def get_catalog() -> Catalog:
    """Process-wide catalog, honoring `CATALOG_PATH` when set."""

    return load_catalog(settings.catalog_path)
