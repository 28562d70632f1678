"""
Domain models for OAuth delegation state persisted in the credential store.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OAuthClient(BaseModel):
    """A downstream client registered through dynamic client registration."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: Optional[int] = None
    client_secret_expires_at: Optional[int] = Field(
        None, description="Epoch seconds after which the secret is rejected."
    )
    redirect_uris: list[str]
    client_name: Optional[str] = None
    grant_types: list[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"
    scope: Optional[str] = None

    def secret_expired(self, now: float) -> bool:
        expires_at = self.client_secret_expires_at
        return expires_at is not None and expires_at > 0 and expires_at <= now


class DelegatedToken(BaseModel):
    """The single live upstream-backed credential held by a downstream client."""

    client_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: int = Field(..., description="Epoch seconds.")
    scopes: list[str] = Field(default_factory=list)


class AuthSession(BaseModel):
    """Correlates one upstream authorization round trip to its downstream request."""

    state: str = Field(..., description="Correlation state sent upstream.")
    client_id: str
    redirect_uri: str
    client_state: Optional[str] = Field(
        None, description="State supplied by the downstream client, echoed back."
    )
    code_challenge: str
    scopes: list[str] = Field(default_factory=list)
    created_at: float


__all__ = ["AuthSession", "DelegatedToken", "OAuthClient"]
