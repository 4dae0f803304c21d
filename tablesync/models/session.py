from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Union
from datetime import datetime, timezone

Opaque = Optional[Union[int, float, str]]

MISSING = "—"


class CharacterSummary(BaseModel):
    """Combat summary a player client pushes on every sync. Values are not interpreted."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    character_name: Opaque = Field(default=None, alias="characterName")
    ac: Opaque = None
    current_hp: Opaque = Field(default=None, alias="currentHp")
    max_hp: Opaque = Field(default=None, alias="maxHp")
    level: Opaque = None
    race: Opaque = None
    class_name: Opaque = Field(default=None, alias="class")


def _shown(value, fallback: str = MISSING):
    if value is None or value == "":
        return fallback
    return value


class PlayerSession(BaseModel):
    connection_id: str
    player_name: str = "Anonymous"
    player_id: Optional[str] = None
    summary: CharacterSummary = Field(default_factory=CharacterSummary)
    online: bool = True
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_sync: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def roster_entry(self) -> dict:
        s = self.summary
        return {
            "connectionId": self.connection_id,
            "playerName": self.player_name,
            "characterName": _shown(s.character_name, "Unknown"),
            "ac": _shown(s.ac),
            "currentHp": _shown(s.current_hp),
            "maxHp": _shown(s.max_hp),
            "level": _shown(s.level),
            "race": _shown(s.race),
            "class": _shown(s.class_name),
            "online": self.online,
            "lastSync": self.last_sync.isoformat(),
        }
