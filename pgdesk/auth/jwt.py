from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ..config import settings
from ..services.store import OwnerContext

bearer_scheme = HTTPBearer(auto_error=False)


def _create_token(data: dict, expires_minutes: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = data.copy()
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(owner_id: int, actor: Optional[str] = None) -> str:
    payload = {"sub": str(owner_id), "type": "access"}
    if actor:
        payload["actor"] = actor
    return _create_token(payload, settings.access_token_expire_minutes)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def get_owner_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> OwnerContext:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not credentials:
        raise credentials_exception
    try:
        payload = decode_token(credentials.credentials)
        owner_id: Optional[str] = payload.get("sub")
        token_type = payload.get("type")
        if owner_id is None or token_type not in (None, "access"):
            raise credentials_exception
        return OwnerContext(owner_id=int(owner_id), actor=payload.get("actor") or f"owner:{owner_id}")
    except (JWTError, ValueError):
        raise credentials_exception
