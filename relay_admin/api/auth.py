"""Authentication endpoints - operator sign-in against the store's auth API."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from relay_admin.middleware.session_guard import (
    clear_session_cookie,
    extract_token,
    set_session_cookie,
)
from relay_admin.schemas.auth import LoginRequest, SessionStatusResponse, SignInResponse
from relay_admin.schemas.common import MessageResponse
from relay_admin.services.session import (
    SessionClient,
    SessionState,
    get_session_client,
    get_session_state,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# The login view lives at the root so the guard can redirect to it
login_router = APIRouter(tags=["auth"])


async def _status(
    request: Request, response: Response, client: SessionClient, state: SessionState
) -> SessionStatusResponse:
    await state.initialize(client)
    token = extract_token(request)
    session = await client.authorize(token)
    if session is not None and session.access_token != token:
        set_session_cookie(response, session)
    return SessionStatusResponse(
        authenticated=session is not None,
        loading=state.loading,
        user=session.user if session else None,
    )


@login_router.get("/login", response_model=SessionStatusResponse)
async def login_view(
    request: Request,
    response: Response,
    next_path: str | None = Query(None, alias="next", description="Path to return to after sign-in"),
    client: SessionClient = Depends(get_session_client),
    state: SessionState = Depends(get_session_state),
) -> SessionStatusResponse:
    """Login view: reports whether the requester is already signed in."""
    result = await _status(request, response, client, state)
    result.redirect_to = next_path
    return result


@router.get("/session", response_model=SessionStatusResponse)
async def get_session_status(
    request: Request,
    response: Response,
    client: SessionClient = Depends(get_session_client),
    state: SessionState = Depends(get_session_state),
) -> SessionStatusResponse:
    """Session state of the requester."""
    return await _status(request, response, client, state)


@router.post("/login", response_model=SignInResponse)
async def login(
    data: LoginRequest,
    response: Response,
    client: SessionClient = Depends(get_session_client),
    state: SessionState = Depends(get_session_state),
) -> SignInResponse:
    """Sign in with email and password.

    The access token is returned in the body and set as an HttpOnly cookie.
    """
    await state.initialize(client)
    result = await client.sign_in(data.email, data.password)
    session = client.current_session
    if not result.success or session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error or "Sign-in failed",
        )
    set_session_cookie(response, session)
    return SignInResponse(
        success=True,
        access_token=session.access_token,
        expires_at=session.expires_at,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    client: SessionClient = Depends(get_session_client),
) -> MessageResponse:
    """Sign out the caller's own session and revoke its token."""
    session = await client.authorize(extract_token(request))
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    await client.sign_out()
    clear_session_cookie(response)
    return MessageResponse(message="Signed out")
