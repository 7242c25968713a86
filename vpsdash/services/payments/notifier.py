"""Deposit notification publisher.

Admin alerts are best-effort: a Kafka outage must never fail or delay a
webhook acknowledgement, so publish errors are logged and dropped.
"""

import asyncio

from vpsdash.common.config import settings
from vpsdash.common.events import EventEnvelope, KafkaBus
from vpsdash.common.logging import logger, trace_id_ctx


class DepositNotifier:
    def __init__(self, bus: KafkaBus | None = None, topic: str | None = None, timeout: float = 5.0) -> None:
        self.bus = bus or KafkaBus()
        self.topic = topic or settings.deposits_topic
        self.timeout = timeout

    async def notify(self, event_type: str, aggregate_id: str, payload: dict) -> None:
        event = EventEnvelope(
            event_type=event_type,
            aggregate_id=aggregate_id,
            trace_id=trace_id_ctx.get() or aggregate_id,
            payload=payload,
        )
        try:
            await asyncio.wait_for(self.bus.publish(self.topic, event), timeout=self.timeout)
        except Exception as exc:
            logger.warning(
                "deposit notification dropped event_type=%s aggregate_id=%s error=%s",
                event_type,
                aggregate_id,
                exc,
            )

    async def close(self) -> None:
        await self.bus.close()
