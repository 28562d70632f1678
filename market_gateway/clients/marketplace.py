"""Unauthenticated client for the marketplace public API."""

from __future__ import annotations

from typing import Any, Mapping, Union
from urllib.parse import urlencode

import httpx

from market_gateway.clients.rate_limiter import RateLimiterPool
from market_gateway.core.markets import get_market_config
from market_gateway.utils.http import RetryConfig, UpstreamHTTPError, execute_request

DEFAULT_USER_AGENT = "Market-Gateway/1.0"

QueryValue = Union[str, int, float, None]


class MarketplaceAPIError(UpstreamHTTPError):
    """Terminal error returned by the public marketplace API."""

    source = "Marketplace API"

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


def build_url(
    base_url: str, path: str, params: Mapping[str, QueryValue] | None = None
) -> str:
    """Join ``base_url`` and ``path`` and append params that have a value."""
    url = f"{base_url}{path}"
    if params:
        query = urlencode({k: str(v) for k, v in params.items() if v is not None})
        if query:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{query}"
    return url


class MarketplaceClient:
    """Read-only access to per-market listing data."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        rate_limiters: RateLimiterPool,
        *,
        retry_config: RetryConfig | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._http = http_client
        self._rate_limiters = rate_limiters
        self._retry = retry_config or RetryConfig()
        self._user_agent = user_agent

    async def get(
        self,
        path: str,
        market: str,
        params: Mapping[str, QueryValue] | None = None,
        *,
        response_model: Any | None = None,
    ) -> Any:
        config = get_market_config(market)
        url = build_url(config.base_url, path, params)

        await self._rate_limiters.get(config.code).acquire()

        return await execute_request(
            self._http,
            "GET",
            url,
            headers={"Accept": "application/json", "User-Agent": self._user_agent},
            retry_config=self._retry,
            error_cls=MarketplaceAPIError,
            response_model=response_model,
        )


__all__ = ["MarketplaceAPIError", "MarketplaceClient", "build_url"]
