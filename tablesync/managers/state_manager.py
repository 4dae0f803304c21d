import json
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import Optional
import aiosqlite

from ..config import settings
from ..models.room import RoomRecord
from ..utils.logger import logger


class DuplicateRoomCode(Exception):
    pass


def generate_hex_id(length: int) -> str:
    return secrets.token_hex((length + 1) // 2)[:length].upper()


async def init_db():
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS rooms (
                id TEXT PRIMARY KEY,
                code TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                owner_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS sheets (
                id TEXT PRIMARY KEY,
                owner_id TEXT,
                data TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.commit()
    logger.info("Database initialized")


async def ping() -> bool:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute("SELECT 1") as cursor:
            row = await cursor.fetchone()
    return bool(row and row[0] == 1)


# --- Rooms ---

def _room_from_row(row) -> RoomRecord:
    return RoomRecord(id=row[0], code=row[1], name=row[2], owner_id=row[3], created_at=row[4])


async def create_room(name: str, owner_id: Optional[str] = None, code: Optional[str] = None) -> RoomRecord:
    room = RoomRecord(
        id=generate_hex_id(16),
        code=code or generate_hex_id(8),
        name=name or "Unnamed Room",
        owner_id=owner_id,
    )
    try:
        async with aiosqlite.connect(settings.DB_PATH) as db:
            await db.execute(
                "INSERT INTO rooms (id, code, name, owner_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (room.id, room.code, room.name, room.owner_id, room.created_at.isoformat()),
            )
            await db.commit()
    except sqlite3.IntegrityError:
        raise DuplicateRoomCode(room.code)
    logger.info(f"Created room: {room.code} - {room.name}")
    return room


async def get_room_by_code(code: str) -> Optional[RoomRecord]:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute(
            "SELECT id, code, name, owner_id, created_at FROM rooms WHERE code = ?", (code,)
        ) as cursor:
            row = await cursor.fetchone()
    return _room_from_row(row) if row else None


async def get_room(room_id: str) -> Optional[RoomRecord]:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute(
            "SELECT id, code, name, owner_id, created_at FROM rooms WHERE id = ?", (room_id,)
        ) as cursor:
            row = await cursor.fetchone()
    return _room_from_row(row) if row else None


async def delete_room(room_id: str) -> bool:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        cursor = await db.execute("DELETE FROM rooms WHERE id = ?", (room_id,))
        await db.commit()
        deleted = cursor.rowcount > 0
    if deleted:
        logger.info(f"Deleted room: {room_id}")
    return deleted


# --- Sheets ---

async def get_sheet(sheet_id: str) -> Optional[dict]:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute(
            "SELECT id, owner_id, data, updated_at FROM sheets WHERE id = ?", (sheet_id,)
        ) as cursor:
            row = await cursor.fetchone()
    if not row:
        return None
    return {"id": row[0], "owner_id": row[1], "data": json.loads(row[2]), "updated_at": row[3]}


async def put_sheet(sheet_id: str, data: dict, owner_id: Optional[str] = None) -> dict:
    updated_at = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute(
            """
            INSERT INTO sheets (id, owner_id, data, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner_id = COALESCE(excluded.owner_id, sheets.owner_id),
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (sheet_id, owner_id, json.dumps(data), updated_at),
        )
        await db.commit()
    logger.info(f"Saved sheet: {sheet_id}")
    return await get_sheet(sheet_id)


async def delete_sheet(sheet_id: str) -> bool:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        cursor = await db.execute("DELETE FROM sheets WHERE id = ?", (sheet_id,))
        await db.commit()
        deleted = cursor.rowcount > 0
    if deleted:
        logger.info(f"Deleted sheet: {sheet_id}")
    return deleted
