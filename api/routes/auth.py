"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/register               -- create account; 201, no session change
  POST /api/auth/login                  -- password login; sets session cookie
  POST /api/auth/logout                 -- destroys session, clears cookie; 200
  POST /api/auth/forgot-password        -- emails a one-time reset link
  PUT  /api/auth/reset-password/{token} -- sets a new password from a reset link
  GET  /api/auth/me                     -- public profile of the session's user

Handlers stay thin: they unpack the request, call AuthService, and shape the
response. Workflow errors are raised as AuthError subclasses and rendered by
the exception handler in api/main.py -- no handler builds an error body.

Security:
  Login returns the same 401 for unknown email and wrong password.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    MsgResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import get_auth_service, get_current_session, session_id_from
from auth.service import AuthService
from auth.sessions import Session

# Auth policy:
# - POST /api/auth/register, /login, /forgot-password, PUT /reset-password: public
# - POST /api/auth/logout: public -- logging out without a session is a no-op 200
# - GET  /api/auth/me: requires an authenticated session (get_current_session)
router = APIRouter()


@router.post("/auth/register", response_model=MessageResponse, status_code=201)
async def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Create a user. The caller must log in separately."""
    await service.register(body.username, body.email, body.password)
    return MessageResponse(message="User registered successfully")


@router.post("/auth/login", response_model=MessageResponse)
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; set the session cookie."""
    _user, session = await service.login(body.email, body.password, session_id_from(request))
    resp = JSONResponse(content=MessageResponse(message="Logged in successfully").model_dump())
    service.sessions.set_cookie(resp, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Destroy the server-side session and clear its cookie."""
    await service.logout(session_id_from(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    service.sessions.clear_cookie(resp)
    return resp


@router.post("/auth/forgot-password", response_model=MsgResponse)
async def forgot_password(
    body: ForgotPasswordRequest, service: AuthService = Depends(get_auth_service)
) -> MsgResponse:
    """Issue a reset token and email the link. The token is never in the response."""
    await service.forgot_password(body.email)
    return MsgResponse(msg="Password reset email sent")


@router.put("/auth/reset-password/{token}", response_model=MsgResponse)
async def reset_password(
    token: str,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MsgResponse:
    """Redeem a reset token and set the new password."""
    await service.reset_password(token, body.password)
    return MsgResponse(msg="Password reset successful")


@router.get("/auth/me")
async def me(
    session: Session = Depends(get_current_session),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Return the public projection of the logged-in user."""
    profile = await service.get_profile(session.user_id)
    if profile is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return profile
