"""Schemas exchanged with downstream clients and the upstream token endpoint."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration metadata (RFC 7591 subset)."""

    model_config = ConfigDict(extra="ignore")

    redirect_uris: list[str] = Field(..., min_length=1)
    client_name: Optional[str] = None
    grant_types: Optional[list[str]] = None
    response_types: Optional[list[str]] = None
    token_endpoint_auth_method: Optional[str] = None
    scope: Optional[str] = None


class AuthorizationParams(BaseModel):
    """Validated parameters of a downstream authorization request."""

    redirect_uri: str
    code_challenge: str
    state: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)


class TokenEnvelope(BaseModel):
    """Token response returned to downstream clients."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class AccessTokenInfo(BaseModel):
    """Identity resolved from a verified downstream access token."""

    token: str
    client_id: str
    scopes: list[str]
    expires_at: int


class UpstreamTokenResponse(BaseModel):
    """Token endpoint payload returned by the marketplace identity provider."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None


class OAuthErrorResponse(BaseModel):
    """RFC 6749 error body."""

    error: str
    error_description: Optional[str] = None


__all__ = [
    "AccessTokenInfo",
    "AuthorizationParams",
    "ClientRegistrationRequest",
    "OAuthErrorResponse",
    "TokenEnvelope",
    "UpstreamTokenResponse",
]
