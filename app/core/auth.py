from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .errors import UnauthorizedError


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str


def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header, if any."""
    header = headers.get("authorization") or headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_token(token: str, settings: Settings) -> str:
    """Validate ``token`` against the configured secret and return the caller's user id."""
    try:
        payload = jwt.decode(
            token,
            settings.secrets.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("invalid_token") from exc

    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("invalid_token")
    return str(user_id)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")

    try:
        user_id = verify_token(credentials.credentials, settings)
    except UnauthorizedError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.code) from exc

    context = AuthContext(user_id=user_id)
    request.state.auth = context
    return context


__all__ = ["AuthContext", "extract_bearer_token", "verify_token", "get_auth_context"]
