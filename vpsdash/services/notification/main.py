"""Notification service lifecycle and lightweight read endpoints."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vpsdash.common.config import settings
from vpsdash.common.db import SessionLocal
from vpsdash.common.logging import configure_logging
from vpsdash.common.metrics import install_http_metrics, metrics_response
from vpsdash.common.startup import log_startup_config
from vpsdash.common.tracing import instrument_app, setup_tracing
from vpsdash.services.notification.service import NotificationService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "KAFKA_BOOTSTRAP_SERVERS", "DEPOSITS_TOPIC", "TELEGRAM_BOT_TOKEN"],
)
service = NotificationService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run consumer loop with FastAPI application lifecycle."""

    consumer_task = asyncio.create_task(service.start_consumers())
    yield
    consumer_task.cancel()


app = FastAPI(title="vpsdash Notification Service", lifespan=lifespan)
instrument_app(app)
install_http_metrics(app, settings.service_name)


@app.get("/notifications")
def recent_notifications(limit: int = 50):
    return {
        "ok": True,
        "notifications": [
            {
                "order_id": n.order_id,
                "event_type": n.event_type,
                "channel": n.channel,
                "delivered": n.delivered,
                "created_at": n.created_at.isoformat() if n.created_at else None,
            }
            for n in service.recent(limit)
        ],
    }


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
