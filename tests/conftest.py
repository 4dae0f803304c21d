"""Shared fixtures: a manual clock for reaper timers and rigged dice."""
import heapq
import itertools
import os
import tempfile

import pytest

# Point to a temp file DB before anything imports the settings
_tmp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp_db.close()

os.environ["DB_PATH"] = _tmp_db.name
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRICT_EVENTS"] = "false"

from tablesync.managers.connection_manager import ConnectionManager
from tablesync.managers.event_router import EventRouter
from tablesync.managers.offline_reaper import OfflineReaper
from tablesync.managers.room_registry import RoomRegistry


class ManualScheduler:
    """Runs delayed callbacks only when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay, callback):
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), callback))

    def advance(self, seconds):
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, callback = heapq.heappop(self._queue)
            self.now = due
            callback()
        self.now = target

    @property
    def pending(self):
        return len(self._queue)


def rigged(faces, *values):
    """An rng that makes successive d``faces`` rolls come up as ``values``."""
    it = iter([(v - 0.5) / faces for v in values])
    return lambda: next(it)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def outbox():
    """Messages produced asynchronously by the reaper."""
    return []


@pytest.fixture
def reaper(registry, scheduler):
    return OfflineReaper(registry, scheduler)


@pytest.fixture
def router(registry, reaper, outbox):
    r = EventRouter(registry, ConnectionManager(), reaper=reaper)
    reaper.on_removed = lambda code: outbox.extend(r.roster_messages(code))
    return r


@pytest.fixture
def strict_router(registry, reaper):
    return EventRouter(registry, ConnectionManager(), reaper=reaper, strict=True)
