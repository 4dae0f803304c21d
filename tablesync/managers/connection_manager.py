from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models.connection import ConnectionSession, Identity, Role
from ..utils.logger import logger


class ConnectionManager:
    """Per-connection role and identity, tied to the transport connection's lifetime."""

    def __init__(self):
        self._connections: Dict[str, ConnectionSession] = {}

    def open(self, connection_id: str, identity: Optional[Identity] = None) -> ConnectionSession:
        conn = ConnectionSession(connection_id=connection_id)
        if identity is not None:
            conn.user_id = identity.id
            conn.display_name = identity.display_name
        self._connections[connection_id] = conn
        return conn

    def get(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._connections.get(connection_id)

    def touch(self, connection_id: str) -> None:
        conn = self._connections.get(connection_id)
        if conn is not None:
            conn.last_activity = datetime.now(timezone.utc)

    def bind(
        self,
        connection_id: str,
        room_code: str,
        role: Role,
        display_name: Optional[str] = None,
    ) -> bool:
        """Join a connection to a room with a role. Roles never change once set."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return False
        if conn.joined:
            logger.warning(
                f"Connection {connection_id} already joined {conn.room_code} as {conn.role.value}"
            )
            return False
        conn.room_code = room_code
        conn.role = role
        if display_name:
            conn.display_name = display_name
        return True

    def close(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._connections.pop(connection_id, None)

    def members(self, room_code: str, role: Optional[Role] = None) -> List[str]:
        return [
            c.connection_id
            for c in self._connections.values()
            if c.room_code == room_code and (role is None or c.role == role)
        ]

    def __len__(self) -> int:
        return len(self._connections)
