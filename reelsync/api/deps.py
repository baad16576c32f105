from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from reelsync.core.auth import AuthContext, get_auth_context
from reelsync.core.config import Settings, get_settings
from reelsync.services.dispatcher import EventDispatcher


def get_dispatcher(request: Request) -> EventDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if not isinstance(dispatcher, EventDispatcher):  # pragma: no cover - lifespan not run
        raise RuntimeError("dispatcher_not_configured")
    return dispatcher


def get_app_settings() -> Settings:
    return get_settings()


def to_response(result: dict[str, Any]) -> JSONResponse:
    """Render a dispatcher result as an HTTP response."""
    return JSONResponse(
        status_code=result["statusCode"],
        content=result["body"],
        headers=result.get("headers") or {},
    )


DispatcherDependency = Annotated[EventDispatcher, Depends(get_dispatcher)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


__all__ = [
    "get_dispatcher",
    "get_app_settings",
    "to_response",
    "DispatcherDependency",
    "AuthDependency",
]
