import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings


http_bearer = HTTPBearer(auto_error=False)


@dataclass
class Actor:
    """Caller identity taken from a verified bearer token"""
    username: str
    roles: List[str] = field(default_factory=list)
    permissions: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return any((r or "").lower() == "admin" for r in self.roles)


def create_access_token(
    username: str,
    roles: Optional[List[str]] = None,
    permissions: Optional[List[str]] = None,
    ttl_seconds: Optional[int] = None,
) -> str:
    # Tokens are normally issued by the identity service; used by scripts and tests
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": username,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
        "roles": roles or [],
        "permissions": permissions or [],
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Actor:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    username = payload.get("username") or payload.get("sub")
    if not username:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    return Actor(
        username=str(username),
        roles=list(payload.get("roles") or []),
        permissions=list(payload.get("permissions") or []),
    )


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    Admins pass every check.
    """
    def _dep(user: Actor = Depends(get_current_user)) -> Actor:
        if user.is_admin:
            return user
        if not any(perm in user.permissions for perm in required_permissions):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
