import asyncio
from typing import Iterable, Set

import socketio

from .config import settings
from .managers.event_router import OutboundMessage
from .utils.logger import logger

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*" if settings.CORS_ORIGINS == ["*"] else settings.CORS_ORIGINS,
    logger=False,
    engineio_logger=False,
)

# Strong references to fire-and-forget deliveries started from timer callbacks.
_pending: Set[asyncio.Task] = set()


async def deliver(messages: Iterable[OutboundMessage]) -> None:
    for message in messages:
        for sid in message.recipients:
            try:
                await sio.emit(message.event, message.data, to=sid)
            except Exception as e:
                logger.error(f"emit {message.event} to {sid} failed: {e}")


def deliver_later(messages: Iterable[OutboundMessage]) -> None:
    """Schedule delivery from synchronous code running on the event loop."""
    messages = list(messages)
    if not messages:
        return
    task = asyncio.get_running_loop().create_task(deliver(messages))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
