"""Base definitions for acquisition sources - protocol and the publish cycle"""
import logging
from typing import Protocol

from energy_monitor.client import BusClient
from energy_monitor.errors import PipelineError
from energy_monitor.topic import Topic

logger = logging.getLogger(__name__)


class Source(Protocol):
    """
    Protocol for acquisition sources (Pulse Bridge, Tibber API, ...).

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the attribute and method with matching signatures.
    """

    name: str

    async def fetch(self):
        """
        Run one acquisition and return the normalized DTO.

        Should raise a PipelineError subclass on failure. Sources keep
        no state between calls; each call starts from scratch.
        """
        ...


async def run_cycle(source: Source, bus: BusClient, topic: Topic) -> bool:
    """
    One scheduled tick: fetch from the source and publish the result.

    Recoverable failures are logged and end the cycle without a publish.
    Fatal ones (missing credentials) and bus failures propagate, so the
    driver can stop the process.

    Returns:
        True if a message was published.
    """
    try:
        message = await source.fetch()
    except PipelineError as e:
        if e.fatal:
            logger.error(f"{source.name}: Fatal error: {e}")
            raise
        logger.error(f"{source.name}: Cycle failed ({type(e).__name__}): {e}")
        return False

    await bus.publish(topic, message)
    logger.info(f"{source.name}: Published {message} on {topic.name}")
    return True
