"""Session adapter for the hosted store's auth API.

``SessionClient`` signs the operator in and out and keeps the current
session, refreshing it when the access token has expired. Every change is
published as a ``SessionEvent`` to subscribers.

``SessionState`` is the process-wide view of "who is signed in". It is
written only by its own subscriber task, which consumes the event stream.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import threading
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import jwt
from jwt.exceptions import PyJWTError

from relay_admin.core.config import settings
from relay_admin.schemas.auth import SessionUser

logger = logging.getLogger(__name__)

# Treat tokens this close to expiry as expired
EXPIRY_MARGIN_SECONDS = 10


class AuthError(Exception):
    """Base authentication error."""

    pass


class TokenError(AuthError):
    """Access token error."""

    pass


class TokenExpiredError(TokenError):
    """Access token has expired."""

    pass


class InvalidTokenError(TokenError):
    """Access token is malformed or its signature does not match."""

    pass


def decode_access_token(
    token: str,
    secret: str | None = None,
    audience: str = "authenticated",
) -> dict[str, Any]:
    """Decode an access token issued by the store.

    With ``secret`` the signature and audience are verified; without it the
    claims are only read (the store already vouched for the token). Expiry
    is always enforced.
    """
    try:
        if secret:
            return jwt.decode(token, secret, algorithms=["HS256"], audience=audience)
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True, "verify_aud": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except PyJWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}") from e


@dataclass
class Session:
    """An authenticated session."""

    access_token: str
    refresh_token: str | None
    expires_at: float
    user: SessionUser

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at - EXPIRY_MARGIN_SECONDS

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        secret: str | None = None,
        audience: str = "authenticated",
    ) -> Session:
        access_token = data.get("access_token")
        if not access_token:
            raise InvalidTokenError("Token response has no access_token")
        claims = decode_access_token(access_token, secret, audience)

        user_data = data.get("user") or {}
        user = SessionUser(
            id=str(user_data.get("id") or claims.get("sub") or ""),
            email=user_data.get("email") or claims.get("email"),
            role=user_data.get("role") or claims.get("role"),
        )
        if not user.id:
            raise InvalidTokenError("Token has no subject")

        expires_at = data.get("expires_at") or claims.get("exp")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = time.time() + float(data["expires_in"])
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=float(expires_at or 0),
            user=user,
        )


class SessionEventType(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class SessionEvent:
    type: SessionEventType
    session: Session | None
    # Set on INITIAL_SESSION, where the store reports the user
    user: SessionUser | None = None

    @property
    def current_user(self) -> SessionUser | None:
        if self.user is not None:
            return self.user
        return self.session.user if self.session else None


@dataclass
class SignInResult:
    success: bool
    error: str | None = None


class SessionSubscription:
    """Async stream of session events; ``unsubscribe()`` ends the stream."""

    _CLOSED = object()

    def __init__(self, client: SessionClient):
        self._client = client
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def _push(self, event: SessionEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._client._remove_subscription(self)
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self

    async def __anext__(self) -> SessionEvent:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class SessionClient:
    """Client for the store's auth endpoints, holding the current session."""

    _instance: SessionClient | None = None
    _instance_lock: threading.Lock = threading.Lock()

    def __init__(
        self,
        auth_url: str,
        api_key: str,
        timeout: float = 30.0,
        jwt_secret: str | None = None,
        jwt_audience: str = "authenticated",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.auth_url = auth_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.jwt_secret = jwt_secret
        self.jwt_audience = jwt_audience
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._session: Session | None = None
        self._subscriptions: list[SessionSubscription] = []
        self._refresh_lock = asyncio.Lock()

    @classmethod
    def get_instance(cls) -> SessionClient:
        """Get or create the process-wide client (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(
                        settings.auth_url,
                        settings.store_api_key,
                        timeout=settings.http_timeout,
                        jwt_secret=settings.store_jwt_secret,
                        jwt_audience=settings.store_jwt_audience,
                    )
        return cls._instance

    @property
    def current_session(self) -> Session | None:
        return self._session

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    # --- subscriptions ---

    def subscribe(self) -> SessionSubscription:
        subscription = SessionSubscription(self)
        self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: SessionSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _set_session(self, session: Session | None, event_type: SessionEventType) -> None:
        self._session = session
        event = SessionEvent(type=event_type, session=session)
        for subscription in list(self._subscriptions):
            subscription._push(event)

    # --- HTTP ---

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.auth_url, timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _auth_request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._get_client().request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Auth request failed: {e}") from e

        if not response.content or not response.content.strip():
            if response.is_success:
                return {}
            raise AuthError(f"Auth error: HTTP {response.status_code}")

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise AuthError(f"Auth error: HTTP {response.status_code} (invalid body)") from e

        if not response.is_success:
            message = (
                data.get("error_description")
                or data.get("msg")
                or data.get("message")
                or data.get("error")
                or f"HTTP {response.status_code}"
            )
            raise AuthError(str(message))
        return data

    async def ping(self) -> bool:
        """Check that the auth API answers."""
        try:
            await self._auth_request("GET", "/health")
            return True
        except AuthError as e:
            logger.debug(f"Auth ping failed: {e}")
            return False

    # --- operations ---

    async def sign_in(self, email: str, password: str) -> SignInResult:
        """Sign in with email and password."""
        try:
            data = await self._auth_request(
                "POST",
                "/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
            session = Session.from_token_response(data, self.jwt_secret, self.jwt_audience)
        except AuthError as e:
            logger.warning(f"Sign-in failed for {email}: {e}")
            return SignInResult(success=False, error=str(e))

        self._set_session(session, SessionEventType.SIGNED_IN)
        logger.info(f"Signed in as {session.user.email or session.user.id}")
        return SignInResult(success=True)

    async def sign_out(self) -> None:
        """Revoke the session on the store (best effort) and forget it locally."""
        session = self._session
        if session is None:
            return
        try:
            await self._auth_request("POST", "/logout", token=session.access_token)
        except AuthError as e:
            logger.warning(f"Remote sign-out failed, clearing local session anyway: {e}")
        self._set_session(None, SessionEventType.SIGNED_OUT)
        logger.info(f"Signed out {session.user.email or session.user.id}")

    async def refresh_session(self) -> Session | None:
        """Exchange the refresh token for a new session; signs out on failure."""
        async with self._refresh_lock:
            session = self._session
            if session is None:
                return None
            if not session.is_expired:
                return session
            if not session.refresh_token:
                self._set_session(None, SessionEventType.SIGNED_OUT)
                return None
            try:
                data = await self._auth_request(
                    "POST",
                    "/token",
                    params={"grant_type": "refresh_token"},
                    json={"refresh_token": session.refresh_token},
                )
                refreshed = Session.from_token_response(
                    data, self.jwt_secret, self.jwt_audience
                )
            except AuthError as e:
                logger.warning(f"Session refresh failed: {e}")
                self._set_session(None, SessionEventType.SIGNED_OUT)
                return None

            self._set_session(refreshed, SessionEventType.TOKEN_REFRESHED)
            logger.debug("Session token refreshed")
            return refreshed

    async def get_session(self) -> Session | None:
        """Return the active session, refreshing it first if it has expired."""
        session = self._session
        if session is None:
            return None
        if session.is_expired:
            return await self.refresh_session()
        return session

    async def authorize(self, token: str | None) -> Session | None:
        """Return the active session if ``token`` is its access token.

        Only the token handed out at sign-in (or its refreshed successor)
        is accepted, so a token stops working once the operator signs out.
        An expired session is refreshed and the new session returned; the
        caller must then hand the new token back to the requester.
        """
        session = self._session
        if not token or session is None:
            return None
        if not hmac.compare_digest(token.encode(), session.access_token.encode()):
            return None
        if session.is_expired:
            return await self.refresh_session()
        try:
            decode_access_token(token, self.jwt_secret, self.jwt_audience)
        except TokenError as e:
            logger.warning(f"Rejected session token: {e}")
            return None
        return session

    async def get_user(self) -> SessionUser | None:
        """Ask the store who the current token belongs to."""
        session = await self.get_session()
        if session is None:
            return None
        try:
            data = await self._auth_request("GET", "/user", token=session.access_token)
        except AuthError as e:
            logger.debug(f"Could not load current user: {e}")
            return None
        return SessionUser(id=str(data.get("id", "")), email=data.get("email"), role=data.get("role"))


def get_session_client() -> SessionClient:
    """Dependency to get the session client."""
    return SessionClient.get_instance()


class SessionState:
    """Process-wide current-user state."""

    _instance: SessionState | None = None

    def __init__(self) -> None:
        self.user: SessionUser | None = None
        self.loading = True
        self._initialized = False
        self._subscription: SessionSubscription | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready: asyncio.Event | None = None

    @classmethod
    def get_instance(cls) -> SessionState:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def initialize(self, client: SessionClient) -> None:
        """Load the current user once and start following session events.

        The loaded user goes through the event stream as ``INITIAL_SESSION``
        like every later change; this returns once the subscriber has
        applied it.
        """
        if self._initialized:
            if self._ready is not None:
                await self._ready.wait()
            return
        self._initialized = True
        self._ready = asyncio.Event()

        subscription = client.subscribe()
        self._subscription = subscription
        self._task = asyncio.create_task(
            self._follow(subscription, self._ready), name="session-state-subscriber"
        )
        user = await client.get_user()
        subscription._push(
            SessionEvent(type=SessionEventType.INITIAL_SESSION, session=None, user=user)
        )
        await self._ready.wait()

    async def _follow(self, subscription: SessionSubscription, ready: asyncio.Event) -> None:
        async for event in subscription:
            self.user = event.current_user
            if event.type is SessionEventType.INITIAL_SESSION:
                self.loading = False
                ready.set()
            logger.debug(f"Session event {event.type.value}")

    async def shutdown(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=1.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()
        self._subscription = None
        self._task = None
        self._ready = None
        self._initialized = False


def get_session_state() -> SessionState:
    """Dependency to get the process-wide session state."""
    return SessionState.get_instance()
