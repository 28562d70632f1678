"""
Catalogue of supported marketplace sites.

Each market is an independent rate-limit partition with its own public API,
partner API and OAuth endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass


class UnknownMarketError(ValueError):
    """Raised when a market code is not part of the catalogue."""


@dataclass(frozen=True)
class MarketConfig:
    code: str
    domain: str
    currency: str
    locale: str
    name: str

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}/api/v1"

    @property
    def partner_base_url(self) -> str:
        return f"https://{self.domain}/api/partner"

    @property
    def authorization_url(self) -> str:
        return f"https://{self.domain}/oauth/authorize"

    @property
    def token_url(self) -> str:
        return f"https://{self.domain}/api/open/oauth/token"


MARKETS: dict[str, MarketConfig] = {
    "pl": MarketConfig("pl", "www.olx.pl", "PLN", "pl", "Poland"),
    "bg": MarketConfig("bg", "www.olx.bg", "BGN", "bg", "Bulgaria"),
    "ro": MarketConfig("ro", "www.olx.ro", "RON", "ro", "Romania"),
    "pt": MarketConfig("pt", "www.olx.pt", "EUR", "pt", "Portugal"),
    "ua": MarketConfig("ua", "www.olx.ua", "UAH", "uk", "Ukraine"),
    "kz": MarketConfig("kz", "www.olx.kz", "KZT", "ru", "Kazakhstan"),
}


def get_market_config(market: str) -> MarketConfig:
    """Return the configuration for ``market`` (case-insensitive)."""
    config = MARKETS.get(market.lower())
    if config is None:
        supported = ", ".join(MARKETS)
        raise UnknownMarketError(f"Unknown market: {market}. Supported: {supported}")
    return config


__all__ = ["MARKETS", "MarketConfig", "UnknownMarketError", "get_market_config"]
