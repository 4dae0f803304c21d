import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..models.connection import ConnectionSession, Identity, Role
from ..models.session import CharacterSummary
from ..services.dice_roller import Rng, RollSpecification, resolve
from ..utils.logger import logger
from .connection_manager import ConnectionManager
from .offline_reaper import OfflineReaper
from .room_registry import RoomRegistry


@dataclass
class OutboundMessage:
    event: str
    data: Any
    recipients: List[str] = field(default_factory=list)


class EventRejected(Exception):
    """An inbound event that cannot be acted on. Never leaves the router."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# Inbound events that need a joined role. Anything not listed needs none.
REQUIRED_ROLES: Dict[str, Role] = {
    "player_sync": Role.PLAYER,
    "request_all_sync": Role.GM,
    "request_player_sheet": Role.GM,
    "player_sheet_response": Role.PLAYER,
    "gm_roll": Role.GM,
    "player_roll": Role.PLAYER,
}


def _field(payload, *names):
    if not isinstance(payload, dict):
        return None
    for name in names:
        value = payload.get(name)
        if value is not None:
            return value
    return None


def _text(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventRouter:
    """Maps inbound events to registry changes and the messages they cause.

    ``handle`` is transport independent: it returns the outbound messages,
    each with an explicit recipient list, and leaves delivery to the caller.
    It never raises.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        connections: ConnectionManager,
        reaper: Optional[OfflineReaper] = None,
        rng: Rng = random.random,
        strict: bool = False,
    ):
        self.registry = registry
        self.connections = connections
        self.reaper = reaper
        self.rng = rng
        self.strict = strict
        self._handlers: Dict[str, Callable[[ConnectionSession, Any], List[OutboundMessage]]] = {
            "join_room": self._on_join_room,
            "gm_join_room": self._on_gm_join,
            "player_join_room": self._on_player_join,
            "player_sync": self._on_player_sync,
            "request_all_sync": self._on_request_all_sync,
            "request_player_sheet": self._on_request_player_sheet,
            "player_sheet_response": self._on_player_sheet_response,
            "gm_roll": self._on_gm_roll,
            "player_roll": self._on_player_roll,
        }

    @property
    def events(self) -> List[str]:
        return list(self._handlers)

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def connect(self, connection_id: str, identity: Optional[Identity] = None) -> ConnectionSession:
        conn = self.connections.open(connection_id, identity)
        who = identity.display_name if identity else "anonymous"
        logger.info(f"Client connected: {connection_id} ({who})")
        return conn

    def disconnect(self, connection_id: str) -> List[OutboundMessage]:
        try:
            conn = self.connections.close(connection_id)
            logger.info(f"Client disconnected: {connection_id}")
            if conn is None or not conn.joined or conn.role == Role.OVERLAY:
                return []

            result = self.registry.detach(conn.room_code, connection_id)
            if result.player_offline is None:
                # Players are not told when the GM leaves.
                return []
            if self.reaper is not None:
                self.reaper.schedule_removal(conn.room_code, connection_id)
            return self.roster_messages(conn.room_code)
        except Exception as e:
            logger.error(f"disconnect error for {connection_id}: {e}")
            return []

    # ─── Dispatch ─────────────────────────────────────────────────────────────

    def handle(self, connection_id: str, event: str, payload: Any = None) -> List[OutboundMessage]:
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"Unknown event {event!r} from {connection_id}")
            return self._error(connection_id, event, "bad_request", f"Unknown event: {event}")

        conn = self.connections.get(connection_id)
        if conn is None:
            logger.warning(f"Dropped {event} from unknown connection {connection_id}")
            return self._error(connection_id, event, "not_joined", "Unknown connection")
        self.connections.touch(connection_id)
        try:
            self._authorize(conn, event)
            return handler(conn, payload)
        except EventRejected as e:
            logger.warning(f"Dropped {event} from {connection_id}: [{e.code}] {e.message}")
            return self._error(connection_id, event, e.code, e.message)
        except Exception as e:
            logger.error(f"{event} handler error for {connection_id}: {e}")
            return []

    def _authorize(self, conn: ConnectionSession, event: str) -> None:
        required = REQUIRED_ROLES.get(event)
        if required is None:
            return
        if not conn.joined:
            raise EventRejected("not_joined", f"{event} requires joining a room first")
        if conn.role != required:
            raise EventRejected("forbidden", f"{event} requires the {required.value} role")
        if required == Role.GM:
            room = self.registry.get_room(conn.room_code)
            if room is None or room.gm != conn.connection_id:
                raise EventRejected("forbidden", "Not the current GM of this room")

    def _error(self, connection_id: str, event: str, code: str, message: str) -> List[OutboundMessage]:
        if not self.strict:
            return []
        data = {"code": code, "message": message, "event": event}
        return [OutboundMessage("error", data, [connection_id])]

    # ─── Fan-out helpers ──────────────────────────────────────────────────────

    def roster_messages(self, code: str) -> List[OutboundMessage]:
        """The current roster, addressed to the room's GM only."""
        room = self.registry.get_room(code)
        if room is None or not room.gm:
            return []
        return [OutboundMessage("player_list_update", room.roster(), [room.gm])]

    def _room_broadcast(self, code: str, event: str, data: Any) -> OutboundMessage:
        return OutboundMessage(event, data, self.connections.members(code))

    def _join_code(self, conn: ConnectionSession, payload) -> str:
        code = payload if isinstance(payload, str) else _field(payload, "roomCode", "room_code")
        if not self.registry.is_valid_code(code):
            raise EventRejected("invalid_room", f"Invalid room code: {code!r}")
        if conn.joined:
            raise EventRejected(
                "already_joined",
                f"Already joined {conn.room_code} as {conn.role.value}; reconnect to switch",
            )
        return code

    # ─── Joins ────────────────────────────────────────────────────────────────

    def _on_join_room(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        code = self._join_code(conn, payload)
        self.registry.get_or_create_room(code)
        self.connections.bind(conn.connection_id, code, Role.OVERLAY)
        logger.info(f"Overlay {conn.connection_id} joined room: {code}")
        return [OutboundMessage("room_joined", {"roomCode": code, "role": Role.OVERLAY.value}, [conn.connection_id])]

    def _on_gm_join(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        code = self._join_code(conn, payload)
        gm_name = _text(_field(payload, "gmName")) or conn.display_name or "GM"
        self.registry.attach_gm(code, conn.connection_id)
        self.connections.bind(conn.connection_id, code, Role.GM, gm_name)
        logger.info(f"GM {gm_name} ({conn.connection_id}) joined room: {code}")

        ack = OutboundMessage(
            "room_joined", {"roomCode": code, "role": Role.GM.value}, [conn.connection_id]
        )
        return [ack] + self.roster_messages(code)

    def _on_player_join(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        code = self._join_code(conn, payload)
        name = _text(_field(payload, "playerName")) or conn.display_name or "Anonymous"
        # A verified identity always wins over whatever id the client claims.
        player_id = conn.user_id or _text(_field(payload, "playerId"))

        session = self.registry.attach_player(code, conn.connection_id, name, player_id)
        self.connections.bind(conn.connection_id, code, Role.PLAYER, name)
        logger.info(f"Player {name} ({conn.connection_id}) joined room: {code}")

        ack = OutboundMessage(
            "room_joined",
            {
                "roomCode": code,
                "role": Role.PLAYER.value,
                "connectionId": conn.connection_id,
                "summary": session.summary.model_dump(by_alias=True, exclude_none=True),
            },
            [conn.connection_id],
        )
        return [ack] + self.roster_messages(code)

    # ─── Player state ─────────────────────────────────────────────────────────

    def _on_player_sync(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        raw = _field(payload, "summary")
        if not isinstance(raw, dict):
            raw = payload
        if not isinstance(raw, dict):
            raise EventRejected("bad_request", "player_sync needs a summary object")
        try:
            summary = CharacterSummary.model_validate(raw)
        except ValidationError as e:
            raise EventRejected("bad_request", f"Malformed summary: {e.error_count()} error(s)")

        session = self.registry.update_summary(conn.room_code, conn.connection_id, summary)
        if session is None:
            raise EventRejected("not_joined", "No player session for this connection")
        logger.debug(f"Player sync from {conn.connection_id}: {summary.character_name}")
        return self.roster_messages(conn.room_code)

    def _on_request_all_sync(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        targets = [
            cid for cid in self.connections.members(conn.room_code, Role.PLAYER)
            if cid != conn.connection_id
        ]
        logger.info(f"GM requesting sync from {len(targets)} player(s) in room: {conn.room_code}")
        if not targets:
            return []
        return [OutboundMessage("request_sync", {}, targets)]

    def _player_in_room(self, code: str, connection_id) -> bool:
        target = self.connections.get(connection_id) if isinstance(connection_id, str) else None
        return target is not None and target.room_code == code and target.role == Role.PLAYER

    def _on_request_player_sheet(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        target = payload if isinstance(payload, str) else _field(
            payload, "targetConnectionId", "targetId", "socketId"
        )
        if not self._player_in_room(conn.room_code, target):
            raise EventRejected("not_found", f"No player {target!r} in room {conn.room_code}")
        logger.info(f"GM requesting sheet from player {target}")
        return [OutboundMessage("request_sheet_data", {"requesterId": conn.connection_id}, [target])]

    def _on_player_sheet_response(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        requester_id = _field(payload, "requesterId")
        requester = self.connections.get(requester_id) if isinstance(requester_id, str) else None
        if requester is None or requester.room_code != conn.room_code:
            raise EventRejected("not_found", f"No requester {requester_id!r} in room {conn.room_code}")
        logger.info(f"Player {conn.connection_id} sending sheet to {requester_id}")
        data = {"connectionId": conn.connection_id, "sheetData": _field(payload, "sheetData")}
        return [OutboundMessage("player_sheet_data", data, [requester_id])]

    # ─── Rolls ────────────────────────────────────────────────────────────────

    def _roll(self, conn: ConnectionSession, payload, roller: str, default_label: str) -> List[OutboundMessage]:
        if payload is not None and not isinstance(payload, dict):
            raise EventRejected("bad_request", "Roll payload must be an object")
        payload = payload or {}
        raw_spec = payload.get("spec") if isinstance(payload.get("spec"), dict) else payload
        spec = RollSpecification.from_payload(raw_spec)
        result = resolve(spec, self.rng)

        label = _text(payload.get("label")) or _text(spec.label) or default_label
        data = result.to_dict()
        data.update(
            {
                "roomCode": conn.room_code,
                "roller": roller,
                "label": label,
                "timestamp": _now_ms(),
            }
        )
        character_name = _text(payload.get("characterName"))
        if character_name:
            data["characterName"] = character_name
        logger.info(f"{roller} rolled in {conn.room_code}: {label} = {result.final_result}")
        return [self._room_broadcast(conn.room_code, "broadcast_roll", data)]

    def _on_gm_roll(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        return self._roll(conn, payload, conn.display_name or "GM", "GM Roll")

    def _on_player_roll(self, conn: ConnectionSession, payload) -> List[OutboundMessage]:
        room = self.registry.get_room(conn.room_code)
        session = room.players.get(conn.connection_id) if room else None
        roller = session.player_name if session else (conn.display_name or "Player")
        return self._roll(conn, payload, roller, "Roll")
