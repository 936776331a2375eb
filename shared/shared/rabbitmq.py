import logging

import aio_pika

EXCHANGE_NAME = "domain_events"

logger = logging.getLogger(__name__)


class Publisher:
    """Topic-exchange publisher; a no-op when no broker URL is configured."""

    def __init__(self, url: str | None):
        self.url = url
        self._conn = None
        self._channel = None
        self._exchange = None

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def connect(self):
        if not self.enabled:
            return
        if self._conn and not self._conn.is_closed:
            return
        self._conn = await aio_pika.connect_robust(self.url)
        self._channel = await self._conn.channel()
        self._exchange = await self._channel.declare_exchange(
            EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
        )

    async def publish(self, routing_key: str, body: str):
        if not self.enabled:
            logger.debug("events disabled; dropping %s", routing_key)
            return
        await self.connect()
        msg = aio_pika.Message(
            body=body.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        await self._exchange.publish(msg, routing_key=routing_key)

    async def close(self):
        if self._conn and not self._conn.is_closed:
            await self._conn.close()
