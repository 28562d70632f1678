"""
FastAPI routes exposing the downstream OAuth surface of the gateway.
"""

from __future__ import annotations

import logging
import secrets
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from market_gateway.clients import RateLimiterPool
from market_gateway.core.config import AppSettings
from market_gateway.core.markets import UnknownMarketError, get_market_config
from market_gateway.dependencies import (
    get_app_settings,
    get_oauth_provider,
    get_rate_limiters,
    require_access_token,
)
from market_gateway.models.oauth import OAuthClient
from market_gateway.schemas import (
    AccessTokenInfo,
    AuthorizationParams,
    ClientRegistrationRequest,
    OAuthErrorResponse,
)
from market_gateway.services import OAuthDelegationProvider
from market_gateway.services.oauth_provider import (
    InvalidClientError,
    InvalidRequestError,
    OAuthFlowError,
    append_query,
)
from market_gateway.utils.http import UpstreamPayloadError

router = APIRouter()
logger = logging.getLogger(__name__)

ProviderDependency = Annotated[OAuthDelegationProvider, Depends(get_oauth_provider)]

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


async def oauth_error_handler(request: Request, exc: OAuthFlowError) -> JSONResponse:
    """Render OAuth failures as RFC 6749 error bodies, never as redirects."""
    return JSONResponse(
        status_code=exc.status_code,
        content=OAuthErrorResponse(
            error=exc.error, error_description=exc.description
        ).model_dump(),
        headers=_NO_STORE,
    )


async def upstream_payload_error_handler(
    request: Request, exc: UpstreamPayloadError
) -> JSONResponse:
    logger.error("Upstream returned an unexpected payload: %s", exc)
    return JSONResponse(
        status_code=HTTPStatus.BAD_GATEWAY,
        content=OAuthErrorResponse(
            error="server_error",
            error_description="Unexpected response from the marketplace",
        ).model_dump(),
        headers=_NO_STORE,
    )


def _authenticate_client(
    provider: OAuthDelegationProvider,
    client_id: Optional[str],
    client_secret: Optional[str],
    now: float,
) -> OAuthClient:
    """Authenticate a confidential client posting its credentials in the form."""
    if not client_id:
        raise InvalidClientError("client_id is required")
    client = provider.get_client(client_id)
    if client is None:
        raise InvalidClientError("Unknown client")
    if client.client_secret:
        if not client_secret or not secrets.compare_digest(
            client_secret, client.client_secret
        ):
            raise InvalidClientError("Invalid client_secret")
        if client.secret_expired(now):
            raise InvalidClientError("Client secret has expired")
    return client


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> dict[str, Any]:
    """RFC 8414 metadata describing the downstream OAuth endpoints."""
    base = settings.server.base_url
    return {
        "issuer": base,
        "authorization_endpoint": f"{base}/authorize",
        "token_endpoint": f"{base}/token",
        "registration_endpoint": f"{base}/register",
        "revocation_endpoint": f"{base}/revoke",
        "scopes_supported": settings.oauth.supported_scope_list,
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["client_secret_post"],
        "revocation_endpoint_auth_methods_supported": ["client_secret_post"],
        "code_challenge_methods_supported": ["S256"],
    }


@router.post("/register", status_code=HTTPStatus.CREATED)
async def register_client(
    payload: ClientRegistrationRequest,
    provider: ProviderDependency,
) -> dict[str, Any]:
    """Dynamic client registration."""
    client = provider.register_client(payload)
    return client.model_dump(exclude_none=True)


@router.get("/authorize")
async def authorize(
    provider: ProviderDependency,
    client_id: str = Query(...),
    redirect_uri: Optional[str] = Query(None),
    response_type: Optional[str] = Query(None),
    code_challenge: Optional[str] = Query(None),
    code_challenge_method: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    scope: Optional[str] = Query(None),
) -> RedirectResponse:
    """Validate the downstream request and send the user agent upstream."""
    client = provider.get_client(client_id)
    if client is None:
        raise InvalidClientError("Unknown client")

    if redirect_uri is None:
        if len(client.redirect_uris) != 1:
            raise InvalidRequestError(
                "redirect_uri must be specified when the client has several"
            )
        redirect_uri = client.redirect_uris[0]
    elif redirect_uri not in client.redirect_uris:
        raise InvalidRequestError("redirect_uri is not registered for this client")

    # From here on errors go back to the verified redirect URI.
    error: Optional[tuple[str, str]] = None
    if response_type != "code":
        error = ("unsupported_response_type", "response_type must be 'code'")
    elif not code_challenge:
        error = ("invalid_request", "code_challenge is required")
    elif code_challenge_method not in (None, "S256"):
        error = ("invalid_request", "code_challenge_method must be S256")

    if error is not None:
        params = {"error": error[0], "error_description": error[1]}
        if state:
            params["state"] = state
        return RedirectResponse(
            url=append_query(redirect_uri, params), status_code=HTTPStatus.FOUND
        )

    authorization_url = provider.authorize(
        client,
        AuthorizationParams(
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            state=state,
            scopes=(scope or "").split(),
        ),
    )
    return RedirectResponse(url=authorization_url, status_code=HTTPStatus.FOUND)


@router.get("/oauth/callback")
async def upstream_callback(
    provider: ProviderDependency,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
) -> RedirectResponse:
    """Upstream redirect target; forwards the code to the downstream client."""
    redirect_url = provider.handle_upstream_callback(
        code, state, error=error, error_description=error_description
    )
    return RedirectResponse(url=redirect_url, status_code=HTTPStatus.FOUND)


@router.post("/token")
async def issue_token(
    provider: ProviderDependency,
    grant_type: str = Form(...),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    scope: Optional[str] = Form(None),
) -> JSONResponse:
    """Token endpoint for the authorization_code and refresh_token grants."""
    client = _authenticate_client(provider, client_id, client_secret, provider.now())

    if grant_type not in client.grant_types:
        raise OAuthFlowError(
            f"grant_type {grant_type!r} is not allowed for this client",
            error="unauthorized_client",
        )

    if grant_type == "authorization_code":
        if not code:
            raise InvalidRequestError("code is required")
        code = provider.challenge_for_authorization_code(client, code)
        envelope = await provider.exchange_authorization_code(
            client, code, code_verifier=code_verifier, redirect_uri=redirect_uri
        )
    elif grant_type == "refresh_token":
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required")
        scopes = scope.split() if scope else None
        envelope = await provider.exchange_refresh_token(client, refresh_token, scopes)
    else:
        raise OAuthFlowError(
            f"Unsupported grant_type {grant_type!r}", error="unsupported_grant_type"
        )

    return JSONResponse(content=envelope.model_dump(exclude_none=True), headers=_NO_STORE)


@router.post("/revoke")
async def revoke_token(
    provider: ProviderDependency,
    token: str = Form(...),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
) -> dict:
    """RFC 7009 revocation; unknown tokens are not an error."""
    _authenticate_client(provider, client_id, client_secret, provider.now())
    provider.revoke_token(token)
    return {}


@router.get("/auth/session")
async def current_session(
    token_info: Annotated[AccessTokenInfo, Depends(require_access_token)],
) -> dict[str, Any]:
    """Describe the delegated token presented by the caller."""
    return {
        "client_id": token_info.client_id,
        "scopes": token_info.scopes,
        "expires_at": token_info.expires_at,
    }


@router.get("/markets/{market}/rate-limit")
async def rate_limit_status(
    market: str,
    rate_limiters: Annotated[RateLimiterPool, Depends(get_rate_limiters)],
) -> JSONResponse:
    """Diagnostics for the token bucket guarding one market."""
    try:
        config = get_market_config(market)
    except UnknownMarketError as exc:
        return JSONResponse(
            status_code=HTTPStatus.NOT_FOUND, content={"detail": str(exc)}
        )
    bucket = rate_limiters.get(config.code)
    return JSONResponse(
        content={
            "market": config.code,
            "capacity": bucket.capacity,
            "window_ms": bucket.window_ms,
            "available": bucket.available,
            "wait_ms": bucket.get_wait_time(),
        }
    )


__all__ = ["oauth_error_handler", "router", "upstream_payload_error_handler"]
