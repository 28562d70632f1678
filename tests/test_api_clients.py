try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from market_gateway.clients import (
    MarketplaceAPIError,
    MarketplaceClient,
    PartnerAPIError,
    PartnerClient,
    RateLimiterPool,
)
from market_gateway.clients.marketplace import DEFAULT_USER_AGENT, build_url
from market_gateway.core.config import AppSettings, StorageSettings, UpstreamSettings
from market_gateway.core.markets import UnknownMarketError
from market_gateway.dependencies import build_context
from market_gateway.utils.http import RetryConfig

NO_BACKOFF = RetryConfig(backoff_seconds=0)


class Recorder:
    """MockTransport handler returning queued responses and keeping requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def pool(clock) -> RateLimiterPool:
    return RateLimiterPool(10, 1000, clock=clock, sleep=clock.sleep)


def test_build_url_omits_params_without_value() -> None:
    url = build_url(
        "https://www.olx.pl/api/v1",
        "/offers",
        {"category_id": 5, "query": "rower", "region_id": None},
    )

    parts = urlsplit(url)
    assert parts.path == "/api/v1/offers"
    assert parse_qs(parts.query) == {"category_id": ["5"], "query": ["rower"]}


def test_build_url_without_params_is_plain_join() -> None:
    assert build_url("https://x/api", "/a", {"b": None}) == "https://x/api/a"


@pytest.mark.anyio
async def test_marketplace_get_targets_market_and_sends_no_credentials(pool) -> None:
    recorder = Recorder(httpx.Response(200, json={"data": [{"id": 1}]}))

    async with recorder.client() as http:
        client = MarketplaceClient(http, pool, retry_config=NO_BACKOFF)
        result = await client.get("/offers", "BG", {"limit": 10})

    assert result == {"data": [{"id": 1}]}
    request = recorder.requests[0]
    assert str(request.url) == "https://www.olx.bg/api/v1/offers?limit=10"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
    assert "Authorization" not in request.headers
    assert "X-API-KEY" not in request.headers
    assert pool.get("bg").available == 9
    assert "pl" not in pool


@pytest.mark.anyio
async def test_marketplace_rate_limited_response(pool) -> None:
    recorder = Recorder(httpx.Response(429, text="slow down"))

    async with recorder.client() as http:
        client = MarketplaceClient(http, pool, retry_config=NO_BACKOFF)
        with pytest.raises(MarketplaceAPIError) as exc_info:
            await client.get("/offers", "pl")

    assert exc_info.value.is_rate_limited
    assert str(exc_info.value).startswith("Marketplace API 429")
    assert len(recorder.requests) == 1


@pytest.mark.anyio
async def test_unknown_market_is_rejected_before_any_request(pool) -> None:
    recorder = Recorder()

    async with recorder.client() as http:
        client = MarketplaceClient(http, pool, retry_config=NO_BACKOFF)
        with pytest.raises(UnknownMarketError, match="Supported: pl"):
            await client.get("/offers", "de")

    assert recorder.requests == []
    assert len(pool) == 0


@pytest.mark.anyio
async def test_partner_requests_carry_bearer_and_api_key(pool) -> None:
    recorder = Recorder(httpx.Response(200, json={"data": []}))

    async with recorder.client() as http:
        client = PartnerClient(
            "at-1", http, pool, api_key="key-9", retry_config=NO_BACKOFF
        )
        await client.get("/adverts", "ro", {"offset": 0})

    request = recorder.requests[0]
    assert str(request.url) == "https://www.olx.ro/api/partner/adverts?offset=0"
    assert request.headers["Authorization"] == "Bearer at-1"
    assert request.headers["X-API-KEY"] == "key-9"
    assert request.headers["User-Agent"] == DEFAULT_USER_AGENT


@pytest.mark.anyio
async def test_partner_api_key_header_is_optional(pool) -> None:
    recorder = Recorder()

    async with recorder.client() as http:
        client = PartnerClient("at-1", http, pool, retry_config=NO_BACKOFF)
        await client.get("/users/me", "pl")

    assert "X-API-KEY" not in recorder.requests[0].headers


@pytest.mark.anyio
async def test_partner_write_methods_send_json(pool) -> None:
    recorder = Recorder(
        httpx.Response(201, json={"data": {"id": 55}}),
        httpx.Response(200, json={"data": {"id": 55, "title": "New"}}),
        httpx.Response(204),
    )

    async with recorder.client() as http:
        client = PartnerClient("at-1", http, pool, retry_config=NO_BACKOFF)
        created = await client.post("/adverts", "pl", {"title": "Old"})
        updated = await client.put("/adverts/55", "pl", {"title": "New"})
        deleted = await client.delete("/adverts/55", "pl")

    assert created == {"data": {"id": 55}}
    assert updated["data"]["title"] == "New"
    assert deleted is None

    post, put, delete = recorder.requests
    assert (post.method, put.method, delete.method) == ("POST", "PUT", "DELETE")
    assert json.loads(post.content) == {"title": "Old"}
    assert json.loads(put.content) == {"title": "New"}
    assert post.headers["Content-Type"] == "application/json"
    assert delete.content == b""
    assert pool.get("pl").available == 7


@pytest.mark.anyio
async def test_partner_unauthorized_is_classified(pool) -> None:
    recorder = Recorder(httpx.Response(401, json={"error": "invalid_token"}))

    async with recorder.client() as http:
        client = PartnerClient("expired", http, pool, retry_config=NO_BACKOFF)
        with pytest.raises(PartnerAPIError) as exc_info:
            await client.get("/users/me", "pl")

    error = exc_info.value
    assert error.is_unauthorized
    assert "invalid_token" in error.body_excerpt
    assert str(error).startswith("Partner API 401")


@pytest.mark.anyio
async def test_partner_server_errors_are_retried(pool) -> None:
    recorder = Recorder(httpx.Response(500), httpx.Response(200, json={"ok": 1}))

    async with recorder.client() as http:
        client = PartnerClient("at-1", http, pool, retry_config=NO_BACKOFF)
        assert await client.get("/users/me", "pl") == {"ok": 1}

    assert len(recorder.requests) == 2
    # Retries reuse the permit taken for the logical call.
    assert pool.get("pl").available == 9


@pytest.mark.anyio
async def test_context_clients_use_configured_identity(tmp_path, clock) -> None:
    settings = AppSettings(
        upstream=UpstreamSettings(
            MARKETPLACE_CLIENT_ID="id",
            MARKETPLACE_CLIENT_SECRET="secret",
            MARKETPLACE_API_KEY="key-1",
            MARKETPLACE_USER_AGENT="Gateway-Test/2.0",
        ),
        storage=StorageSettings(GATEWAY_DB_PATH=str(tmp_path / "gw.db")),
    )
    recorder = Recorder()
    context = build_context(settings, http_client=recorder.client(), clock=clock)
    try:
        await context.marketplace.get("/categories", "kz")
        await context.partner_client("at-7").get("/users/me", "kz")
    finally:
        await context.aclose()

    public, partner = recorder.requests
    assert public.headers["User-Agent"] == "Gateway-Test/2.0"
    assert "X-API-KEY" not in public.headers
    assert partner.headers["Authorization"] == "Bearer at-7"
    assert partner.headers["X-API-KEY"] == "key-1"
    assert context.rate_limiters.get("kz").capacity == 4000
