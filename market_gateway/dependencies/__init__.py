"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_context,
    get_oauth_provider,
    get_rate_limiters,
    require_access_token,
)
from .config import get_app_settings
from .context import AppContext, build_context

__all__ = [
    "AppContext",
    "build_context",
    "get_app_settings",
    "get_context",
    "get_oauth_provider",
    "get_rate_limiters",
    "require_access_token",
]
