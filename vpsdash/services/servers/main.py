"""Server lifecycle API.

Callers are identified by gateway-forwarded headers; every route resolves
ownership through `ServerService`.
"""

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from vpsdash.common.config import settings
from vpsdash.common.db import SessionLocal
from vpsdash.common.errors import register_error_handlers
from vpsdash.common.identity import Caller, get_caller
from vpsdash.common.logging import configure_logging
from vpsdash.common.metrics import install_http_metrics, metrics_response
from vpsdash.common.startup import log_startup_config
from vpsdash.common.tracing import instrument_app, setup_tracing
from vpsdash.services.provider.catalog import get_catalog
from vpsdash.services.provider.client import ProviderClient
from vpsdash.services.servers.schemas import (
    MetricPoint,
    PowerActionRequest,
    RebuildRequest,
    ServerCreateRequest,
    ServerResponse,
)
from vpsdash.services.servers.service import ServerService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "PROVIDER_BASE_URL",
        "PROVIDER_API_TOKEN",
        "PROVIDER_TIMEOUT_SECONDS",
        "CATALOG_PATH",
        "MINIMUM_BILLING_HOURS",
    ],
)
service = ServerService(SessionLocal, ProviderClient(), get_catalog())

app = FastAPI(title="vpsdash Servers")
instrument_app(app)
install_http_metrics(app, settings.service_name)
register_error_handlers(app)


def _server(record) -> dict:
    return {"ok": True, "server": ServerResponse.model_validate(record).model_dump(mode="json")}


@app.post("/servers")
async def create_server(req: ServerCreateRequest, caller: Caller = Depends(get_caller)):
    """Provision a server and charge the minimum billing period."""

    return _server(await service.create_server(caller.user_id, req))


@app.get("/servers")
def list_servers(caller: Caller = Depends(get_caller)):
    records = service.list_servers(caller.user_id)
    return {"ok": True, "servers": [ServerResponse.model_validate(r).model_dump(mode="json") for r in records]}


@app.get("/servers/options")
async def server_options(caller: Caller = Depends(get_caller)):
    del caller
    return {"ok": True, **(await service.options())}


@app.get("/servers/{server_id}")
def get_server(server_id: str, caller: Caller = Depends(get_caller)):
    return _server(service.get_server(caller.user_id, server_id))


@app.post("/servers/{server_id}/sync")
async def sync_server(server_id: str, caller: Caller = Depends(get_caller)):
    return _server(await service.sync_server(caller.user_id, server_id))


@app.post("/servers/{server_id}/power")
async def power_action(server_id: str, req: PowerActionRequest, caller: Caller = Depends(get_caller)):
    """`start`, `stop` or `reboot`."""

    return _server(await service.power_action(caller.user_id, server_id, req.action))


@app.post("/servers/{server_id}/rebuild")
async def rebuild_server(server_id: str, req: RebuildRequest, caller: Caller = Depends(get_caller)):
    return _server(await service.rebuild_server(caller.user_id, server_id, req.image))


@app.delete("/servers/{server_id}")
async def delete_server(server_id: str, caller: Caller = Depends(get_caller)):
    """Always removes the local record; provider failures come back as `warning`."""

    return {"ok": True, **(await service.delete_server(caller.user_id, server_id))}


@app.get("/servers/{server_id}/metrics")
async def server_metrics(server_id: str, caller: Caller = Depends(get_caller)):
    series = await service.server_metrics(caller.user_id, server_id)
    return {"ok": True, "series": [MetricPoint(**p) for p in series], "data_points": len(series)}


@app.get("/admin/servers")
def admin_servers(caller: Caller = Depends(get_caller)):
    records = service.admin_list_servers(caller)
    return {"ok": True, "servers": [ServerResponse.model_validate(r).model_dump(mode="json") for r in records]}


@app.get("/admin/servers/orphans")
async def admin_orphans(caller: Caller = Depends(get_caller)):
    """Provider instances and local records that no longer match up."""

    return {"ok": True, **(await service.orphan_report(caller))}


@app.get("/health/provider")
async def provider_health():
    result = await service.provider_health()
    return JSONResponse(status_code=200 if result["healthy"] else 503, content={"ok": result["healthy"], **result})


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
