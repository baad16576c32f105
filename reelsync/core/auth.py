from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings


security = HTTPBearer(auto_error=False)

ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class AuthContext:
    user_id: str = ANONYMOUS
    scopes: tuple[str, ...] = ()
    authenticated: bool = False


def _decode_token(token: str, settings: Settings) -> dict:
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
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from exc
    return payload


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not credentials:
        if settings.auth_required:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")
        context = AuthContext()
        request.state.auth = context
        return context

    payload = _decode_token(credentials.credentials, settings)
    user_id: Optional[str] = payload.get("sub") or payload.get("userId") or payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="subject_required")

    context = AuthContext(user_id=str(user_id), scopes=tuple(payload.get("scopes") or []), authenticated=True)
    request.state.auth = context
    return context


__all__ = ["ANONYMOUS", "AuthContext", "get_auth_context"]
