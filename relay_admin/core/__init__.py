# relay-admin core module
from .config import get_settings, settings
from .logging import setup_logging
from .store import StoreClient, StoreError, get_store

__all__ = [
    "settings",
    "get_settings",
    "setup_logging",
    "StoreClient",
    "StoreError",
    "get_store",
]
