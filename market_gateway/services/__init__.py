"""Service layer exports."""

from .oauth_provider import OAuthDelegationProvider, OAuthFlowError
from .token_cipher import TokenCipher

__all__ = ["OAuthDelegationProvider", "OAuthFlowError", "TokenCipher"]
