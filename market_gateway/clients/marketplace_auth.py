"""
Marketplace OAuth utilities.

Builds upstream authorization URLs and talks to the upstream token endpoint on
behalf of the gateway, which is itself a confidential client of the
marketplace identity provider.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence
from urllib.parse import urlencode

import httpx

from market_gateway.core.markets import MarketConfig
from market_gateway.schemas.auth import UpstreamTokenResponse
from market_gateway.utils.http import decode_payload, read_body_excerpt

logger = logging.getLogger(__name__)


class OAuthTokenExchangeError(Exception):
    """Raised when the upstream token endpoint returns an error."""

    def __init__(self, status: int, body_excerpt: str, grant_type: str) -> None:
        self.status = status
        self.body_excerpt = body_excerpt
        self.grant_type = grant_type
        super().__init__(
            f"Upstream {grant_type} grant failed ({status}): {body_excerpt}"
        )


class MarketplaceOAuthClient:
    """Authorization URL builder and token endpoint client for one market."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        market: MarketConfig,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> None:
        self._http = http_client
        self._market = market
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    def build_authorization_url(self, state: str, scope: str) -> str:
        """Construct the upstream consent URL."""
        params = {
            "client_id": self._client_id,
            "response_type": "code",
            "redirect_uri": self._redirect_uri,
            "state": state,
            "scope": scope,
        }
        return f"{self._market.authorization_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> UpstreamTokenResponse:
        """Exchange an upstream authorization code for tokens."""
        payload = {
            "grant_type": "authorization_code",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "redirect_uri": self._redirect_uri,
        }
        return await self._request_token(payload)

    async def refresh_token(
        self, refresh_token: str, scopes: Optional[Sequence[str]] = None
    ) -> UpstreamTokenResponse:
        """Obtain a new access token using a refresh token."""
        payload = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
        }
        if scopes:
            payload["scope"] = " ".join(scopes)
        return await self._request_token(payload)

    async def _request_token(self, payload: dict[str, str]) -> UpstreamTokenResponse:
        token_url = self._market.token_url
        request = self._http.build_request(
            "POST",
            token_url,
            data=payload,
            headers={"Accept": "application/json"},
        )
        response = await self._http.send(request, stream=True)
        try:
            if not response.is_success:
                logger.warning(
                    "Upstream token endpoint rejected %s grant with %s",
                    payload["grant_type"],
                    response.status_code,
                )
                raise OAuthTokenExchangeError(
                    response.status_code,
                    await read_body_excerpt(response),
                    payload["grant_type"],
                )
            await response.aread()
        finally:
            await response.aclose()

        try:
            data = response.json()
        except ValueError:
            data = None
        return decode_payload(token_url, data, UpstreamTokenResponse)


__all__ = ["MarketplaceOAuthClient", "OAuthTokenExchangeError"]
