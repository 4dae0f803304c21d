import re
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional

from .auth import get_current_identity, get_optional_identity
from ..models.connection import Identity
from ..managers import state_manager, session_manager
from ..managers.room_registry import RoomRegistry
from ..services.dice_roller import ROLL_MODES, NORMAL, roll
from ..utils.logger import logger

router = APIRouter()


# ─── Request / Response schemas ───────────────────────────────────────────────

class TokenRequest(BaseModel):
    display_name: str
    user_id: Optional[str] = None


class CreateRoomRequest(BaseModel):
    name: str = "Unnamed Room"
    code: Optional[str] = None


class SheetRequest(BaseModel):
    data: dict


class RollRequest(BaseModel):
    notation: str = "d20"
    mode: str = NORMAL
    critical: bool = False
    label: str = ""


def sanitize_room_code(code: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", code.upper())[:8]


def _registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


# ─── Health ───────────────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api/health")
async def api_health(request: Request):
    now = datetime.now(timezone.utc).isoformat()
    rooms = len(_registry(request).codes())
    try:
        await state_manager.ping()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "timestamp": now,
                "services": {"database": "disconnected", "server": "running"},
                "live_rooms": rooms,
                "error": str(e),
            },
        )
    return {
        "status": "healthy",
        "timestamp": now,
        "services": {"database": "connected", "server": "running"},
        "live_rooms": rooms,
    }


# ─── Auth endpoints ───────────────────────────────────────────────────────────

@router.post("/api/auth/token")
async def issue_token(req: TokenRequest):
    name = req.display_name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="display_name is required")
    token = session_manager.create_token(name, req.user_id)
    identity = session_manager.decode_token(token)
    return {"token": token, "user_id": identity.id, "display_name": identity.display_name}


@router.get("/api/auth/me")
async def whoami(identity: Identity = Depends(get_current_identity)):
    return identity.model_dump()


# ─── Room endpoints ───────────────────────────────────────────────────────────

@router.post("/api/rooms", status_code=status.HTTP_201_CREATED)
async def create_room(req: CreateRoomRequest, identity: Optional[Identity] = Depends(get_optional_identity)):
    code = None
    if req.code:
        code = sanitize_room_code(req.code)
        if not code:
            raise HTTPException(status_code=400, detail="Room code must contain letters or digits")
    try:
        room = await state_manager.create_room(req.name, identity.id if identity else None, code)
    except state_manager.DuplicateRoomCode:
        raise HTTPException(status_code=409, detail="Room code already in use")
    return room.model_dump(mode="json")


@router.get("/api/rooms/code/{code}")
async def get_room_by_code(code: str):
    room = await state_manager.get_room_by_code(code.upper())
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.model_dump(mode="json")


@router.get("/api/rooms/code/{code}/roster")
async def get_live_roster(code: str, request: Request):
    registry = _registry(request)
    if not registry.is_valid_code(code):
        raise HTTPException(status_code=400, detail="Invalid room code")
    room = registry.get_room(code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room is not live")
    return {"roomCode": code, "gmOnline": room.gm is not None, "players": room.roster()}


@router.get("/api/rooms/{room_id}")
async def get_room(room_id: str):
    room = await state_manager.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.model_dump(mode="json")


@router.delete("/api/rooms/{room_id}")
async def delete_room(room_id: str, identity: Optional[Identity] = Depends(get_optional_identity)):
    room = await state_manager.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    if room.owner_id and (identity is None or identity.id != room.owner_id):
        raise HTTPException(status_code=403, detail="Only the room owner can delete the room")
    await state_manager.delete_room(room_id)
    return {"message": "Room deleted"}


# ─── Sheet endpoints ──────────────────────────────────────────────────────────

@router.get("/api/sheets/{sheet_id}")
async def get_sheet(sheet_id: str):
    sheet = await state_manager.get_sheet(sheet_id)
    if not sheet:
        raise HTTPException(status_code=404, detail="Sheet not found")
    return sheet


@router.put("/api/sheets/{sheet_id}")
async def put_sheet(sheet_id: str, req: SheetRequest, identity: Optional[Identity] = Depends(get_optional_identity)):
    existing = await state_manager.get_sheet(sheet_id)
    if existing and existing["owner_id"] and (identity is None or identity.id != existing["owner_id"]):
        raise HTTPException(status_code=403, detail="Not your sheet")
    return await state_manager.put_sheet(sheet_id, req.data, identity.id if identity else None)


@router.delete("/api/sheets/{sheet_id}")
async def delete_sheet(sheet_id: str, identity: Optional[Identity] = Depends(get_optional_identity)):
    existing = await state_manager.get_sheet(sheet_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Sheet not found")
    if existing["owner_id"] and (identity is None or identity.id != existing["owner_id"]):
        raise HTTPException(status_code=403, detail="Not your sheet")
    await state_manager.delete_sheet(sheet_id)
    return {"message": "Sheet deleted"}


# ─── Dice endpoint ────────────────────────────────────────────────────────────

@router.post("/api/dice/roll")
async def dice_roll(req: RollRequest):
    """Public dice roll endpoint (no auth required)."""
    if req.mode not in ROLL_MODES:
        raise HTTPException(status_code=400, detail=f"Unknown roll mode: {req.mode}")
    try:
        result = roll(req.notation, mode=req.mode, critical=req.critical, label=req.label)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    data = result.to_dict()
    data["notation"] = req.notation
    data["label"] = req.label
    return data
