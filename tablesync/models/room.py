from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime, timezone

from .session import PlayerSession


class Room(BaseModel):
    code: str
    gm: Optional[str] = None
    players: Dict[str, PlayerSession] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def find_offline(self, player_id: str) -> Optional[PlayerSession]:
        for session in self.players.values():
            if session.player_id == player_id and not session.online:
                return session
        return None

    def roster(self) -> List[dict]:
        return [p.roster_entry() for p in self.players.values()]


class RoomRecord(BaseModel):
    """Persisted room, as stored by the record store."""
    id: str
    code: str
    name: str = "Unnamed Room"
    owner_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
