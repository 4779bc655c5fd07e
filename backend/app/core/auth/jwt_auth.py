"""
JWT utilities and FastAPI dependency for authenticated users.

Tokens are accepted from the auth cookie, an `Authorization: Bearer` header or,
for WebSocket clients that cannot set headers, a `token` query parameter.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from backend.app.api.deps import get_services
from backend.app.core.config import Settings
from backend.app.core.db.relational import DBUser, get_relational_session
from backend.app.orchestrator.factory import AppServices

security_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT token."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_user_id(token: str, settings: Settings) -> Optional[str]:
    """Return the `sub` claim of a valid token, or None."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    user_id = payload.get("sub")
    return str(user_id) if user_id else None


def extract_token(
    cookies: Mapping[str, str],
    headers: Mapping[str, str],
    query_params: Mapping[str, str],
    cookie_name: str,
) -> Optional[str]:
    token = cookies.get(cookie_name)
    if token:
        return token
    auth_header = headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return query_params.get("token") or None


def resolve_user(token: Optional[str], services: AppServices) -> Optional[dict[str, Any]]:
    """Map a token to a user record; None when the token or user is invalid."""
    if not token:
        return None
    user_id = decode_user_id(token, services.settings)
    if user_id is None:
        return None
    with get_relational_session(services.session_factory) as db:
        user = db.get(DBUser, user_id)
        if user is None:
            return None
        return {"id": user.id, "email": user.email, "first_name": user.first_name, "last_name": user.last_name}


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    services: AppServices = Depends(get_services),
):
    """FastAPI dependency to get the current user from the auth cookie or bearer token."""
    token = request.cookies.get(services.settings.auth_cookie_name)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
        )

    user = resolve_user(token, services)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    request.state.user = user
    return user
