from typing import Callable, Optional

from ..services.scheduler import Scheduler
from ..utils.logger import logger
from .room_registry import RoomRegistry

GRACE_PERIOD_SECONDS = 300.0


class OfflineReaper:
    """Removes player sessions that stay offline past the grace period.

    Timers are never cancelled. Each one re-checks the session when it fires,
    so a player who reconnected in the meantime is left alone.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        scheduler: Scheduler,
        on_removed: Optional[Callable[[str], None]] = None,
        grace_period: float = GRACE_PERIOD_SECONDS,
    ):
        self.registry = registry
        self.scheduler = scheduler
        self.on_removed = on_removed
        self.grace_period = grace_period

    def schedule_removal(self, code: str, connection_id: str, delay: Optional[float] = None) -> None:
        delay = self.grace_period if delay is None else delay
        logger.debug(f"Reaper armed for {connection_id} in room {code} ({delay}s)")
        self.scheduler.call_later(delay, lambda: self.reap(code, connection_id))

    def reap(self, code: str, connection_id: str) -> bool:
        try:
            removed = self.registry.remove_if_offline(code, connection_id)
            if removed and self.on_removed is not None:
                self.on_removed(code)
            return removed
        except Exception as e:
            logger.error(f"Reaper failed for {connection_id} in room {code}: {e}")
            return False
