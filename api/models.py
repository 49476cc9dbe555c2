"""
API request and response models for the Gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the reset email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

USERNAME_MIN, USERNAME_MAX = 3, 50
PASSWORD_MIN, PASSWORD_MAX = 6, 128


# Identifiers are stripped so " a@x.com" registers, logs in and resets as
# "a@x.com". Passwords are taken verbatim.
_Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=USERNAME_MIN, max_length=USERNAME_MAX)]
_Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=254, pattern=EMAIL_PATTERN)]
_LoginEmail = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=254)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    username: _Username
    email: _Email
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    Only presence is checked here. Length rules are not re-applied on login
    so a password that no longer meets policy still gets the generic 401.
    """

    email: _LoginEmail
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/auth/forgot-password."""

    email: _Email


class ResetPasswordRequest(BaseModel):
    """Request body for PUT /api/auth/reset-password/{token}."""

    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    """Success body for register, login and logout."""

    model_config = ConfigDict(frozen=True)

    message: str


class MsgResponse(BaseModel):
    """Success body for the password reset routes, which use the `msg` key."""

    model_config = ConfigDict(frozen=True)

    msg: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
