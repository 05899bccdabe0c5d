"""Separates network polling from message handling with a bounded queue"""
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from energy_monitor.client import BusClient, RawMessage

logger = logging.getLogger(__name__)

# Queue capacity between the network task and the handler task
QUEUE_SIZE = 10

MessageHandler = Callable[[RawMessage], Awaitable[None]]


async def poll_network(messages: AsyncIterator[RawMessage], queue: asyncio.Queue) -> None:
    """
    Forward every received message into the queue.

    Does no decoding or formatting. When the queue is full the put blocks,
    so a slow handler throttles polling instead of losing messages.
    """
    async for message in messages:
        if queue.full():
            logger.debug(f"Decoupler: Queue full ({queue.maxsize}), waiting for handler")
        await queue.put(message)


async def handle_messages(queue: asyncio.Queue, handler: MessageHandler) -> None:
    """Single consumer: process messages one at a time, in arrival order."""
    while True:
        message = await queue.get()
        try:
            await handler(message)
        finally:
            queue.task_done()


async def run_decoupled(bus: BusClient, handler: MessageHandler, maxsize: int = QUEUE_SIZE) -> None:
    """
    Run the network task and the handler task until one of them fails.

    A failure in either (lost connection, failed publish) cancels the
    other and propagates out of the task group.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
    async with asyncio.TaskGroup() as tg:
        tg.create_task(poll_network(bus.messages(), queue))
        tg.create_task(handle_messages(queue, handler))
