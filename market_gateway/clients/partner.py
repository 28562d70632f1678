"""Authenticated client for the marketplace partner API."""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from market_gateway.clients.marketplace import DEFAULT_USER_AGENT, QueryValue, build_url
from market_gateway.clients.rate_limiter import RateLimiterPool
from market_gateway.core.markets import get_market_config
from market_gateway.utils.http import RetryConfig, UpstreamHTTPError, execute_request


class PartnerAPIError(UpstreamHTTPError):
    """Terminal error returned by the partner API."""

    source = "Partner API"


class PartnerClient:
    """Acts on behalf of one user, identified by a delegated bearer token."""

    def __init__(
        self,
        access_token: str,
        http_client: httpx.AsyncClient,
        rate_limiters: RateLimiterPool,
        *,
        api_key: str | None = None,
        retry_config: RetryConfig | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._access_token = access_token
        self._http = http_client
        self._rate_limiters = rate_limiters
        self._api_key = api_key
        self._retry = retry_config or RetryConfig()
        self._user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }
        if self._api_key:
            headers["X-API-KEY"] = self._api_key
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        market: str,
        *,
        params: Mapping[str, QueryValue] | None = None,
        body: Any | None = None,
        response_model: Any | None = None,
    ) -> Any:
        config = get_market_config(market)
        url = build_url(config.partner_base_url, path, params)

        await self._rate_limiters.get(config.code).acquire()

        return await execute_request(
            self._http,
            method,
            url,
            headers=self._headers(),
            json_body=body,
            retry_config=self._retry,
            error_cls=PartnerAPIError,
            response_model=response_model,
        )

    async def get(
        self,
        path: str,
        market: str,
        params: Mapping[str, QueryValue] | None = None,
        *,
        response_model: Any | None = None,
    ) -> Any:
        return await self._send(
            "GET", path, market, params=params, response_model=response_model
        )

    async def post(
        self,
        path: str,
        market: str,
        body: Any | None = None,
        *,
        response_model: Any | None = None,
    ) -> Any:
        return await self._send(
            "POST", path, market, body=body, response_model=response_model
        )

    async def put(
        self,
        path: str,
        market: str,
        body: Any | None = None,
        *,
        response_model: Any | None = None,
    ) -> Any:
        return await self._send(
            "PUT", path, market, body=body, response_model=response_model
        )

    async def delete(self, path: str, market: str) -> None:
        await self._send("DELETE", path, market)


__all__ = ["PartnerAPIError", "PartnerClient"]
