from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone


class Role(str, Enum):
    GM = "gm"
    PLAYER = "player"
    OVERLAY = "overlay"


class Identity(BaseModel):
    """Verified user behind a connection, as returned by the identity provider."""
    id: str
    display_name: str


class ConnectionSession(BaseModel):
    connection_id: str
    role: Optional[Role] = None
    room_code: Optional[str] = None
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    connected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def joined(self) -> bool:
        return self.room_code is not None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None
