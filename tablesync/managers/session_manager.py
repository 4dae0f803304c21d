import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status

from ..config import settings
from ..models.connection import Identity
from ..utils.logger import logger

ALGORITHM = "HS256"


def create_token(display_name: str, user_id: Optional[str] = None) -> str:
    user_id = user_id or str(uuid.uuid4())
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.TOKEN_EXPIRE_HOURS)
    payload = {
        "sub": user_id,
        "name": display_name,
        "exp": expire,
    }
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)
    logger.info(f"Token issued for {display_name} ({user_id})")
    return token


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {e}",
        )
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )
    return Identity(id=payload["sub"], display_name=payload.get("name") or "Anonymous")


def verify_token(token: Optional[str]) -> Optional[Identity]:
    """Identity for a socket credential, or None for anonymous/invalid tokens."""
    if not token:
        return None
    try:
        return decode_token(token)
    except HTTPException as e:
        logger.warning(f"Socket token rejected: {e.detail}")
        return None


def token_from_handshake(environ: dict, auth) -> Optional[str]:
    token = None
    if auth and isinstance(auth, dict):
        token = auth.get("token")
    if not token:
        qs = environ.get("QUERY_STRING", "")
        for part in qs.split("&"):
            if part.startswith("token="):
                token = part[6:]
                break
    return token
