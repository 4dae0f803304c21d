from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, MutableMapping, Optional

from ..models.room import Room
from ..models.session import CharacterSummary, PlayerSession
from ..utils.logger import logger

# Never valid as room keys, whatever storage backs the registry.
RESERVED_CODES = frozenset({"__proto__", "constructor", "prototype"})
MAX_CODE_LENGTH = 64


@dataclass
class DetachResult:
    gm_left: bool = False
    player_offline: Optional[PlayerSession] = None


class RoomRegistry:
    """In-memory rooms keyed by room code.

    Rooms are created on first reference and live for the lifetime of the
    process. Storage is injectable so tests (or a shared backend) can supply
    their own mapping.
    """

    def __init__(self, storage: Optional[MutableMapping[str, Room]] = None):
        self._rooms: MutableMapping[str, Room] = storage if storage is not None else {}

    @staticmethod
    def is_valid_code(code) -> bool:
        return (
            isinstance(code, str)
            and 0 < len(code) <= MAX_CODE_LENGTH
            and code not in RESERVED_CODES
        )

    def get_room(self, code) -> Optional[Room]:
        if not self.is_valid_code(code):
            return None
        return self._rooms.get(code)

    def get_or_create_room(self, code) -> Optional[Room]:
        if not self.is_valid_code(code):
            logger.warning(f"Rejected room code {code!r}")
            return None
        room = self._rooms.get(code)
        if room is None:
            room = Room(code=code)
            self._rooms[code] = room
            logger.info(f"Room {code} created")
        return room

    def codes(self) -> List[str]:
        return list(self._rooms.keys())

    def attach_gm(self, code, connection_id: str) -> Optional[Room]:
        room = self.get_or_create_room(code)
        if room is None:
            return None
        if room.gm and room.gm != connection_id:
            logger.info(f"GM slot in room {code} taken over: {room.gm} -> {connection_id}")
        room.gm = connection_id
        return room

    def attach_player(
        self,
        code,
        connection_id: str,
        display_name: str,
        player_id: Optional[str] = None,
    ) -> Optional[PlayerSession]:
        """Create a player session, or revive an offline one with the same ``player_id``.

        A revived session is re-keyed under the new connection id and keeps its
        cached summary, so the GM sees the last known state straight away.
        """
        room = self.get_or_create_room(code)
        if room is None:
            return None

        session = room.find_offline(player_id) if player_id else None
        if session is not None:
            room.players.pop(session.connection_id, None)
            logger.info(
                f"Player {display_name} reconnected to room {code} "
                f"({session.connection_id} -> {connection_id})"
            )
            session.connection_id = connection_id
            session.player_name = display_name or session.player_name
            session.online = True
        else:
            session = PlayerSession(
                connection_id=connection_id,
                player_name=display_name or "Anonymous",
                player_id=player_id,
            )
        room.players[connection_id] = session
        return session

    def update_summary(self, code, connection_id: str, summary: CharacterSummary) -> Optional[PlayerSession]:
        room = self.get_room(code)
        if room is None:
            return None
        session = room.players.get(connection_id)
        if session is None:
            return None
        session.summary = summary
        session.last_sync = datetime.now(timezone.utc)
        return session

    def detach(self, code, connection_id: str) -> DetachResult:
        """Handle a disconnect. Players are only marked offline, never removed here."""
        result = DetachResult()
        room = self.get_room(code)
        if room is None:
            return result

        if room.gm == connection_id:
            room.gm = None
            result.gm_left = True
            logger.info(f"GM left room {code}")

        session = room.players.get(connection_id)
        if session is not None and session.online:
            session.online = False
            result.player_offline = session
            logger.info(f"Player {session.player_name} went offline in room {code}")
        return result

    def remove_if_offline(self, code, connection_id: str) -> bool:
        room = self.get_room(code)
        if room is None:
            return False
        session = room.players.get(connection_id)
        if session is None or session.online:
            return False
        del room.players[connection_id]
        logger.info(f"Removed offline player {session.player_name} ({connection_id}) from room {code}")
        return True

    def roster(self, code) -> List[dict]:
        room = self.get_room(code)
        return room.roster() if room else []
