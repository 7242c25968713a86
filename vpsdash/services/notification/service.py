"""Admin alerts for deposit events.

Consumes `wallet.deposits`, skips events already handled, forwards a short
HTML message to the Telegram admin chat and logs the attempt. Telegram being
unconfigured or down never blocks the consumer.
"""

import html

import httpx
from sqlalchemy import select

from vpsdash.common.config import settings
from vpsdash.common.events import EventEnvelope, consume_forever
from vpsdash.common.logging import logger
from vpsdash.common.metrics import duplicate_events_skipped_total
from vpsdash.services.notification.models import InboxEvent, NotificationLog


class TelegramNotifier:
    """Bot API `sendMessage` to the admin chat."""

    channel = "telegram"

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        base_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.bot_token = settings.telegram_bot_token if bot_token is None else bot_token
        self.chat_id = settings.telegram_admin_chat_id if chat_id is None else chat_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, text: str) -> bool:
        if not self.configured:
            logger.warning("telegram not configured; admin alert skipped")
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/bot{self.bot_token}/sendMessage",
                    json={"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"},
                )
        except httpx.HTTPError as exc:
            logger.warning("telegram send failed error=%s", exc)
            return False
        if response.status_code >= 400:
            logger.warning("telegram rejected alert status=%s body=%s", response.status_code, response.text)
            return False
        return True


def _usd(value) -> str:
    try:
        return f"${float(value):.2f}"
    except (TypeError, ValueError):
        return "n/a"


def format_deposit_message(event: EventEnvelope) -> str:
    payload = event.payload
    user = html.escape(str(payload.get("owner_id") or "unknown"))
    order = html.escape(event.aggregate_id)
    if event.event_type == "deposit.credited":
        title = "Deposit Paid"
    elif event.event_type == "deposit.partial":
        title = "Partial Deposit"
    elif event.event_type == "deposit.error":
        return (
            "<b>Deposit Processing Error</b>\n\n"
            f"Order: {order}\n"
            f"Status: {html.escape(str(payload.get('payment_status')))}\n"
            f"Error: {html.escape(str(payload.get('error')))}"
        )
    else:
        return f"<b>{html.escape(event.event_type)}</b>\n\nOrder: {order}"
    return (
        f"<b>{title}</b>\n\n"
        f"User: {user}\n"
        f"Order: {order}\n"
        f"Amount: {_usd(payload.get('amount_credited'))}\n"
        f"New Balance: {_usd(payload.get('new_balance'))}"
    )


class NotificationService:
    """Turns deposit events into logged admin alerts."""

    def __init__(
        self, session_factory, telegram: TelegramNotifier | None = None, service_name: str = "notification"
    ) -> None:
        self.session_factory = session_factory
        self.telegram = telegram or TelegramNotifier()
        self.service_name = service_name
        self.topic = settings.deposits_topic

    def _inbox_seen(self, db, event_id: str) -> bool:
        return (
            db.execute(
                select(InboxEvent).where(
                    InboxEvent.event_id == event_id,
                    InboxEvent.consumed_by_service == self.service_name,
                )
            ).scalar_one_or_none()
            is not None
        )

    def _mark_inbox(self, db, event_id: str) -> None:
        db.add(InboxEvent(event_id=event_id, consumed_by_service=self.service_name))

    async def handle_deposit_event(self, event: EventEnvelope) -> None:
        """Send and log one alert, skipping duplicate events."""

        with self.session_factory() as db:
            if self._inbox_seen(db, event.event_id):
                logger.info("duplicate event skipped topic=%s event_id=%s", self.topic, event.event_id)
                duplicate_events_skipped_total.labels(service=self.service_name, topic=self.topic).inc()
                return

        message = format_deposit_message(event)
        delivered = await self.telegram.send(message)

        with self.session_factory() as db:
            db.add(
                NotificationLog(
                    order_id=event.aggregate_id,
                    event_type=event.event_type,
                    channel=self.telegram.channel,
                    message=message,
                    delivered=delivered,
                )
            )
            self._mark_inbox(db, event.event_id)
            db.commit()
        logger.info(
            "admin alert event_type=%s order_id=%s delivered=%s", event.event_type, event.aggregate_id, delivered
        )

    def recent(self, limit: int = 50) -> list[NotificationLog]:
        with self.session_factory() as db:
            return list(
                db.execute(select(NotificationLog).order_by(NotificationLog.created_at.desc()).limit(limit)).scalars()
            )

    async def start_consumers(self) -> None:
        await consume_forever(self.topic, "notification-deposits", self.handle_deposit_event)
