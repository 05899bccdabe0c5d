"""MQTT bus client - typed publish/subscribe over aiomqtt"""
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

import aiomqtt

from energy_monitor.errors import BusError
from energy_monitor.topic import M, Topic

logger = logging.getLogger(__name__)

# At-most-once delivery, nothing retained on the broker
QOS_AT_MOST_ONCE = 0


@dataclass(frozen=True)
class BusSettings:
    """
    Broker connection parameters.

    Attributes:
        host: Broker hostname.
        port: Broker port.
        identifier: MQTT client id, unique per process.
        keepalive: Keep-alive interval in seconds.
    """
    host: str
    port: int
    identifier: str
    keepalive: int


@dataclass(frozen=True)
class RawMessage:
    """Undecoded message as received from the broker."""
    topic: str
    payload: bytes


def _as_bytes(payload) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class BusClient:
    """
    Thin wrapper around an aiomqtt client.

    Publishing goes through a Topic so that only correctly typed payloads
    reach the wire. The client is safe to share between concurrently
    running jobs. Subscriptions are a fixed set made once after connect.

    Every transport failure is raised as BusError. There is no reconnect
    logic: losing the broker is fatal for the process.
    """

    def __init__(self, settings: BusSettings):
        self.settings = settings
        self.client = None
        self._subscribed = False

    async def __aenter__(self) -> "BusClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self) -> None:
        self.client = aiomqtt.Client(
            self.settings.host,
            port=self.settings.port,
            identifier=self.settings.identifier,
            keepalive=self.settings.keepalive,
        )
        try:
            await self.client.__aenter__()
        except aiomqtt.MqttError as e:
            self.client = None
            raise BusError(f"Cannot connect to broker {self.settings.host}:{self.settings.port}: {e}") from e
        logger.info(
            f"Bus: Connected to {self.settings.host}:{self.settings.port} "
            f"as {self.settings.identifier}"
        )

    async def disconnect(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            logger.warning(f"Bus: Error while disconnecting: {e}")
        finally:
            self.client = None
            logger.info("Bus: Disconnected")

    def _require_client(self):
        if self.client is None:
            raise BusError("Bus client is not connected")
        return self.client

    async def publish(self, topic: Topic[M], message: M) -> None:
        """Fire-and-forget publish of a typed payload."""
        client = self._require_client()
        payload = topic.encode(message)
        try:
            await client.publish(topic.name, payload=payload, qos=QOS_AT_MOST_ONCE, retain=False)
        except aiomqtt.MqttError as e:
            raise BusError(f"Publish to '{topic.name}' failed: {e}") from e
        logger.debug(f"Bus: Published {payload!r} on {topic.name}")

    async def subscribe(self, topics: Iterable[Topic]) -> None:
        """Subscribe to the static topic set. Allowed once per connection."""
        client = self._require_client()
        if self._subscribed:
            raise BusError("Subscriptions are fixed at startup")
        self._subscribed = True
        for topic in topics:
            try:
                await client.subscribe(topic.name, qos=QOS_AT_MOST_ONCE)
            except aiomqtt.MqttError as e:
                raise BusError(f"Subscribe to '{topic.name}' failed: {e}") from e
            logger.info(f"Bus: Subscribed to {topic.name}")

    async def messages(self) -> AsyncIterator[RawMessage]:
        """
        Yield every inbound message until the connection drops.

        Raises:
            BusError: the connection was lost. The stream never ends normally.
        """
        client = self._require_client()
        try:
            async for message in client.messages:
                yield RawMessage(topic=message.topic.value, payload=_as_bytes(message.payload))
        except aiomqtt.MqttError as e:
            raise BusError(f"Connection to broker lost: {e}") from e
        raise BusError("Message stream ended")

    async def watch(self) -> None:
        """Drive the connection on the publishing side until it is lost."""
        async for message in self.messages():
            logger.debug(f"Bus: Ignoring message on {message.topic}")
