"""
OAuth 2.1 delegation between downstream clients and the marketplace.

The gateway plays two roles. Towards downstream clients it is an authorization
server: it registers clients, accepts authorization requests and issues
tokens. Towards the marketplace it is an OAuth client: every downstream
authorization request becomes an upstream round trip, correlated through an
``AuthSession`` keyed by a freshly generated upstream ``state``::

    REQUESTED          session stored, caller redirected upstream
    CALLBACK_RECEIVED  upstream returns code + state to /oauth/callback
    EXCHANGED          caller redirected back with the code and its own state;
                       the code is then exchanged at /token

A callback whose state has no session (never issued, already consumed, or
swept after the TTL) ends the attempt with ``UnknownStateError``.

PKCE is not checked locally. The downstream code verifier is never seen by the
upstream exchange, so the upstream provider is the only party that can bind
the code to its requester.
"""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from typing import Callable, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from market_gateway.clients.credential_store import CredentialStore
from market_gateway.clients.marketplace_auth import (
    MarketplaceOAuthClient,
    OAuthTokenExchangeError,
)
from market_gateway.core.config import OAuthSettings
from market_gateway.models.oauth import AuthSession, DelegatedToken, OAuthClient
from market_gateway.schemas.auth import (
    AccessTokenInfo,
    AuthorizationParams,
    ClientRegistrationRequest,
    TokenEnvelope,
    UpstreamTokenResponse,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


class OAuthFlowError(Exception):
    """An OAuth failure reported to the downstream caller as an error body."""

    error = "server_error"
    status_code = 400

    def __init__(self, description: str, *, error: Optional[str] = None) -> None:
        if error is not None:
            self.error = error
        self.description = description
        super().__init__(f"{self.error}: {description}")


class InvalidRequestError(OAuthFlowError):
    error = "invalid_request"


class InvalidClientError(OAuthFlowError):
    error = "invalid_client"
    status_code = 401


class UnknownStateError(OAuthFlowError):
    error = "unknown_or_expired_state"


class InvalidAccessTokenError(OAuthFlowError):
    error = "invalid_token"
    status_code = 401


class ExpiredAccessTokenError(OAuthFlowError):
    error = "expired_token"
    status_code = 401


class UpstreamAuthorizationError(OAuthFlowError):
    """The upstream provider redirected back with an ``error`` parameter."""


class UpstreamTokenError(OAuthFlowError):
    """The upstream token endpoint refused a grant."""

    error = "invalid_grant"

    def __init__(self, description: str, *, upstream_status: int) -> None:
        self.upstream_status = upstream_status
        super().__init__(description)


def append_query(url: str, params: dict[str, str]) -> str:
    """Set ``params`` on ``url``, keeping any query parameters it already has."""
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in params
    ]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class OAuthDelegationProvider:
    """Three-legged delegation flow backed by the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        upstream: MarketplaceOAuthClient,
        oauth_settings: OAuthSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._upstream = upstream
        self._settings = oauth_settings
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    # Client registration

    def register_client(self, request: ClientRegistrationRequest) -> OAuthClient:
        """Register a downstream client with a fresh id/secret pair."""
        now = int(self._clock())
        client = OAuthClient(
            client_id=str(uuid.uuid4()),
            client_secret=secrets.token_hex(32),
            client_id_issued_at=now,
            client_secret_expires_at=now
            + self._settings.client_secret_ttl_days * _SECONDS_PER_DAY,
            redirect_uris=request.redirect_uris,
            client_name=request.client_name,
            grant_types=request.grant_types or ["authorization_code", "refresh_token"],
            response_types=request.response_types or ["code"],
            token_endpoint_auth_method=request.token_endpoint_auth_method
            or "client_secret_post",
            scope=request.scope,
        )
        self._store.insert_client(client)
        logger.info(
            "Registered OAuth client %s (%s)", client.client_id, client.client_name
        )
        return client

    def get_client(self, client_id: str) -> Optional[OAuthClient]:
        return self._store.get_client(client_id)

    # Authorization

    def authorize(self, client: OAuthClient, params: AuthorizationParams) -> str:
        """Start an upstream round trip and return the upstream consent URL."""
        self._store.sweep_expired_sessions(self._settings.session_ttl_seconds)

        upstream_state = secrets.token_hex(16)
        self._store.insert_session(
            AuthSession(
                state=upstream_state,
                client_id=client.client_id,
                redirect_uri=params.redirect_uri,
                client_state=params.state,
                code_challenge=params.code_challenge,
                scopes=list(params.scopes),
                created_at=self._clock(),
            )
        )
        logger.info("Authorization session opened for client %s", client.client_id)

        scope = " ".join(params.scopes) or self._settings.default_scopes
        return self._upstream.build_authorization_url(upstream_state, scope)

    def handle_upstream_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        *,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> str:
        """Resume the session for ``state`` and return the downstream redirect."""
        if error:
            logger.warning(
                "Upstream authorization failed: %s (%s)", error, error_description
            )
            raise UpstreamAuthorizationError(error_description or error, error=error)
        if not code or not state:
            raise InvalidRequestError("Missing code or state parameter")

        session = self._store.pop_session(state)
        if session is None:
            logger.warning("Upstream callback with unknown or expired state")
            raise UnknownStateError("Unknown or expired OAuth state")
        if self._clock() - session.created_at > self._settings.session_ttl_seconds:
            logger.warning(
                "Upstream callback for expired session of client %s", session.client_id
            )
            raise UnknownStateError("Unknown or expired OAuth state")

        params = {"code": code}
        if session.client_state:
            params["state"] = session.client_state
        logger.info("Authorization session completed for client %s", session.client_id)
        return append_query(session.redirect_uri, params)

    def challenge_for_authorization_code(self, client: OAuthClient, code: str) -> str:
        """Pass-through; the upstream provider validates PKCE."""
        return code

    # Token issuance

    async def exchange_authorization_code(
        self,
        client: OAuthClient,
        code: str,
        code_verifier: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ) -> TokenEnvelope:
        try:
            upstream = await self._upstream.exchange_authorization_code(code)
        except OAuthTokenExchangeError as exc:
            raise UpstreamTokenError(
                f"Token exchange failed ({exc.status}): {exc.body_excerpt}",
                upstream_status=exc.status,
            ) from exc
        return self._issue(
            client, upstream, fallback_refresh_token=None, requested_scopes=()
        )

    async def exchange_refresh_token(
        self,
        client: OAuthClient,
        refresh_token: str,
        scopes: Optional[Sequence[str]] = None,
    ) -> TokenEnvelope:
        try:
            upstream = await self._upstream.refresh_token(refresh_token, scopes)
        except OAuthTokenExchangeError as exc:
            raise UpstreamTokenError(
                f"Token refresh failed ({exc.status}): {exc.body_excerpt}",
                upstream_status=exc.status,
            ) from exc
        return self._issue(
            client,
            upstream,
            fallback_refresh_token=refresh_token,
            requested_scopes=scopes or (),
        )

    def _issue(
        self,
        client: OAuthClient,
        upstream: UpstreamTokenResponse,
        *,
        fallback_refresh_token: Optional[str],
        requested_scopes: Sequence[str],
    ) -> TokenEnvelope:
        expires_in = upstream.expires_in
        if expires_in is None:
            expires_in = self._settings.default_token_lifetime
        refresh_token = upstream.refresh_token or fallback_refresh_token
        scopes = upstream.scope.split() if upstream.scope else list(requested_scopes)

        self._store.upsert_token(
            DelegatedToken(
                client_id=client.client_id,
                access_token=upstream.access_token,
                refresh_token=refresh_token,
                expires_at=int(self._clock()) + expires_in,
                scopes=scopes,
            )
        )
        logger.info(
            "Issued delegated token for client %s (expires in %ss)",
            client.client_id,
            expires_in,
        )

        return TokenEnvelope(
            access_token=upstream.access_token,
            token_type=upstream.token_type or "Bearer",
            expires_in=expires_in,
            refresh_token=refresh_token,
            scope=upstream.scope,
        )

    # Verification and revocation

    def verify_access_token(self, token: str) -> AccessTokenInfo:
        stored = self._store.get_token_by_access_token(token)
        if stored is None:
            raise InvalidAccessTokenError("invalid_or_unknown_access_token")

        if stored.expires_at <= self._clock():
            raise ExpiredAccessTokenError(
                "access_token_expired: use the refresh_token grant to obtain a new token"
            )

        return AccessTokenInfo(
            token=stored.access_token,
            client_id=stored.client_id,
            scopes=stored.scopes,
            expires_at=stored.expires_at,
        )

    def revoke_token(self, token: str) -> None:
        if self._store.delete_token_by_access_token(token):
            logger.info("Revoked delegated access token")


__all__ = [
    "ExpiredAccessTokenError",
    "InvalidAccessTokenError",
    "InvalidClientError",
    "InvalidRequestError",
    "OAuthDelegationProvider",
    "OAuthFlowError",
    "UnknownStateError",
    "UpstreamAuthorizationError",
    "UpstreamTokenError",
    "append_query",
]
