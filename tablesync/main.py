import os
import socketio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router
from .config import settings
from .managers.connection_manager import ConnectionManager
from .managers.event_router import EventRouter
from .managers.offline_reaper import OfflineReaper
from .managers.room_registry import RoomRegistry
from .managers.session_manager import token_from_handshake, verify_token
from .managers.state_manager import init_db
from .services.scheduler import AsyncioScheduler
from .socket_manager import deliver, deliver_later, sio
from .utils.logger import logger

# One registry per process, shared by the socket handlers and the HTTP API.
registry = RoomRegistry()
connections = ConnectionManager()
reaper = OfflineReaper(registry, AsyncioScheduler(), grace_period=settings.OFFLINE_GRACE_SECONDS)
event_router = EventRouter(registry, connections, reaper=reaper, strict=settings.STRICT_EVENTS)
reaper.on_removed = lambda code: deliver_later(event_router.roster_messages(code))


@sio.event
async def connect(sid, environ, auth):
    identity = verify_token(token_from_handshake(environ, auth))
    event_router.connect(sid, identity)


@sio.event
async def disconnect(sid, *args):
    await deliver(event_router.disconnect(sid))


def _make_handler(event: str):
    async def handler(sid, data=None):
        await deliver(event_router.handle(sid, event, data))

    handler.__name__ = event
    return handler


for _event in event_router.events:
    sio.on(_event, handler=_make_handler(_event))


# ─── FastAPI app ───────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    db_dir = os.path.dirname(settings.DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    await init_db()
    logger.info("tablesync server started")
    yield
    logger.info("Server shutting down")


app = FastAPI(
    title="tablesync",
    description="Real-time room coordination and dice resolution for tabletop sessions",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.registry = registry

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)

# Wrap with Socket.IO ASGI middleware
# Use `socket_app` as the ASGI entry point:
#   uvicorn tablesync.main:socket_app --host 0.0.0.0 --port 3000
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
