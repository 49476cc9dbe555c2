"""
auth/dependencies.py -- FastAPI Depends() helpers for the auth workflow.

The service objects are built once in the lifespan hook and hung on
app.state; these helpers hand them to route handlers so routes never reach
into app.state themselves.

try_get_session() is the soft variant (returns None when the cookie is
missing or points at no record). get_current_session() wraps it and raises
HTTP 401 when the session is absent or anonymous.

Layer rule: auth/dependencies.py may import from fastapi (for Request and
HTTPException) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.service import AuthService
from auth.sessions import Session, SessionManager


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def session_id_from(request: Request) -> str | None:
    """Return the raw session cookie value, if any."""
    manager: SessionManager = request.app.state.session_manager
    return request.cookies.get(manager.cookie_name) or None


async def try_get_session(request: Request) -> Session | None:
    """Load the session named by the request cookie. Never raises HTTP errors."""
    manager: SessionManager = request.app.state.session_manager
    return await manager.get(session_id_from(request))


async def get_current_session(request: Request) -> Session:
    """Require an authenticated session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: Session = Depends(get_current_session)): ...
    """
    session = await try_get_session(request)
    if session is None or not session.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session
