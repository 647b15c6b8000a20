"""Pydantic schemas for authentication endpoints."""

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login request body."""

    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=1, max_length=512)


class SessionUser(BaseModel):
    """The signed-in operator as reported by the store's auth API."""

    id: str
    email: str | None = None
    role: str | None = None


class SessionStatusResponse(BaseModel):
    """Current session state."""

    authenticated: bool
    loading: bool = False
    user: SessionUser | None = None
    redirect_to: str | None = None


class SignInResponse(BaseModel):
    """Sign-in result. The token is also set as an HttpOnly cookie."""

    success: bool
    error: str | None = None
    access_token: str | None = None
    token_type: str = "bearer"
    expires_at: float | None = None
