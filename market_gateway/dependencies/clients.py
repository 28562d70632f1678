"""
Dependency providers resolving shared components from the application context.
"""

from http import HTTPStatus
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request

from market_gateway.clients import RateLimiterPool
from market_gateway.dependencies.context import AppContext
from market_gateway.schemas import AccessTokenInfo
from market_gateway.services import OAuthDelegationProvider
from market_gateway.services.oauth_provider import OAuthFlowError


def get_context(request: Request) -> AppContext:
    """Return the context built during application startup."""
    return request.app.state.context


def get_oauth_provider(
    context: Annotated[AppContext, Depends(get_context)],
) -> OAuthDelegationProvider:
    return context.oauth_provider


def get_rate_limiters(
    context: Annotated[AppContext, Depends(get_context)],
) -> RateLimiterPool:
    return context.rate_limiters


def require_access_token(
    provider: Annotated[OAuthDelegationProvider, Depends(get_oauth_provider)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> AccessTokenInfo:
    """Resolve the bearer token of the request or answer 401."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Authentication required: complete the OAuth login flow.",
            headers={"WWW-Authenticate": 'Bearer error="invalid_request"'},
        )
    try:
        return provider.verify_access_token(token.strip())
    except OAuthFlowError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail={"error": exc.error, "error_description": exc.description},
            headers={
                "WWW-Authenticate": (
                    f'Bearer error="{exc.error}", error_description="{exc.description}"'
                )
            },
        ) from exc


__all__ = [
    "get_context",
    "get_oauth_provider",
    "get_rate_limiters",
    "require_access_token",
]
