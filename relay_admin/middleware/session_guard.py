"""Session guard middleware.

Every view is either public or protected. Protected views need the
requester to present the active operator session's access token, either in
the session cookie set at sign-in or as ``Authorization: Bearer <token>``.
Without it the request is redirected to the login view with the requested
path in ``next``.
"""

import logging
from urllib.parse import quote

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import RedirectResponse

from relay_admin.core.config import settings
from relay_admin.services.session import Session, SessionClient

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"

# Public views (exact or segment-boundary match)
PUBLIC_PATHS = [
    LOGIN_PATH,
    "/auth",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
]


def is_public_path(path: str) -> bool:
    for public in PUBLIC_PATHS:
        if path == public or path.startswith(public + "/"):
            return True
    return False


def extract_token(request: Request) -> str | None:
    """Read the access token from the Authorization header or the session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(settings.session_cookie_name)


def set_session_cookie(response: Response, session: Session) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.access_token,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


class SessionGuardMiddleware(BaseHTTPMiddleware):
    """Redirect requests for protected views to the login view unless signed in."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # CORS preflight is answered by CORSMiddleware
        if request.method == "OPTIONS" or is_public_path(path):
            return await call_next(request)

        token = extract_token(request)
        session = await SessionClient.get_instance().authorize(token)
        if session is None:
            if token:
                logger.warning(f"Stale or foreign session token for {request.method} {path}")
            else:
                logger.debug(f"No session token for {request.method} {path}, redirecting to login")
            return RedirectResponse(
                url=f"{LOGIN_PATH}?next={quote(path, safe='/')}",
                status_code=303,
            )

        response = await call_next(request)
        # The session was refreshed; hand the requester its new token
        if session.access_token != token:
            set_session_cookie(response, session)
        return response
