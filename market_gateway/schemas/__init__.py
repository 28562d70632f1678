"""Pydantic schemas shared by the HTTP surface and the OAuth provider."""

from .auth import (
    AccessTokenInfo,
    AuthorizationParams,
    ClientRegistrationRequest,
    OAuthErrorResponse,
    TokenEnvelope,
    UpstreamTokenResponse,
)

__all__ = [
    "AccessTokenInfo",
    "AuthorizationParams",
    "ClientRegistrationRequest",
    "OAuthErrorResponse",
    "TokenEnvelope",
    "UpstreamTokenResponse",
]
