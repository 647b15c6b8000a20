"""Middleware module for relay-admin."""

from relay_admin.middleware.session_guard import SessionGuardMiddleware

__all__ = [
    "SessionGuardMiddleware",
]
