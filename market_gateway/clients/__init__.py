"""Expose upstream API clients, rate limiting and credential storage."""

from .credential_store import CredentialStore
from .marketplace import MarketplaceAPIError, MarketplaceClient
from .marketplace_auth import MarketplaceOAuthClient, OAuthTokenExchangeError
from .partner import PartnerAPIError, PartnerClient
from .rate_limiter import RateLimitExceeded, RateLimiterPool, TokenBucket

__all__ = [
    "CredentialStore",
    "MarketplaceAPIError",
    "MarketplaceClient",
    "MarketplaceOAuthClient",
    "OAuthTokenExchangeError",
    "PartnerAPIError",
    "PartnerClient",
    "RateLimitExceeded",
    "RateLimiterPool",
    "TokenBucket",
]
