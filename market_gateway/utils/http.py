"""HTTP utilities providing retry/backoff semantics and error classification."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

import httpx
from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

BODY_EXCERPT_LIMIT = 200


class RetryConfig:
    """Attempt ceiling and exponential backoff base for upstream calls."""

    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (zero-based)."""
        return self.backoff_seconds * 2**attempt


class UpstreamHTTPError(Exception):
    """A terminal non-2xx response from the upstream marketplace."""

    source = "Upstream API"

    def __init__(
        self,
        status: int,
        url: str,
        body_excerpt: str = "",
        reason: str = "",
    ) -> None:
        self.status = status
        self.url = url
        self.body_excerpt = body_excerpt
        message = f"{self.source} {status}: {reason}"
        if body_excerpt:
            message = f"{message} - {body_excerpt}"
        super().__init__(message)

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    @property
    def is_forbidden(self) -> bool:
        return self.status == 403

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500


class UpstreamPayloadError(Exception):
    """A successful response whose body does not match the expected shape."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        super().__init__(f"Unexpected payload from {url}: {detail}")


def decode_payload(url: str, data: Any, response_model: Any | None) -> Any:
    """Validate decoded JSON into ``response_model`` when one is declared."""
    if response_model is None:
        return data
    try:
        return TypeAdapter(response_model).validate_python(data)
    except ValidationError as exc:
        raise UpstreamPayloadError(url, str(exc)) from exc


async def read_body_excerpt(response: httpx.Response) -> str:
    """Best-effort read of an error body, truncated to ``BODY_EXCERPT_LIMIT``.

    The response must have been sent with ``stream=True``. A body that cannot
    be read yields an empty excerpt so the status error is still raised.
    """
    try:
        await response.aread()
    except (httpx.TransportError, httpx.StreamError) as exc:
        logger.debug("Could not read error body from %s: %s", response.url, exc)
        return ""
    return response.text[:BODY_EXCERPT_LIMIT]


async def _decode_success(
    method: str, url: str, response: httpx.Response, response_model: Any | None
) -> Any:
    await response.aread()
    if method.upper() == "DELETE" and (
        response.status_code == 204 or not response.content
    ):
        return None
    try:
        data = response.json()
    except ValueError as exc:
        raise UpstreamPayloadError(url, "response body is not JSON") from exc
    return decode_payload(url, data, response_model)


async def execute_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: Mapping[str, str],
    json_body: Any | None = None,
    retry_config: RetryConfig | None = None,
    error_cls: type[UpstreamHTTPError] = UpstreamHTTPError,
    response_model: Any | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Issue one logical request, retrying server errors with backoff.

    Only responses with status >= 500 are retried. Every other non-2xx status,
    or a server error on the last attempt, raises ``error_cls``. A ``204`` to a
    ``DELETE`` yields ``None``; other successes are decoded as JSON.
    """
    config = retry_config or RetryConfig()
    request_headers = dict(headers)
    if json_body is not None:
        request_headers["Content-Type"] = "application/json"

    attempt = 0
    while True:
        request = client.build_request(
            method, url, headers=request_headers, json=json_body
        )
        response = await client.send(request, stream=True)
        try:
            if response.is_success:
                return await _decode_success(method, url, response, response_model)

            status = response.status_code
            if status < 500 or attempt >= config.attempts - 1:
                raise error_cls(
                    status,
                    url,
                    await read_body_excerpt(response),
                    response.reason_phrase,
                )
        finally:
            await response.aclose()

        delay = config.delay_for(attempt)
        logger.warning(
            "%s %s returned %s; retrying in %.2fs (attempt %d/%d)",
            method,
            url,
            status,
            delay,
            attempt + 1,
            config.attempts,
        )
        await sleep(delay)
        attempt += 1


__all__ = [
    "BODY_EXCERPT_LIMIT",
    "RetryConfig",
    "UpstreamHTTPError",
    "UpstreamPayloadError",
    "decode_payload",
    "execute_request",
    "read_body_excerpt",
]
