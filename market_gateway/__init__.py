"""Authenticated, rate-limited access gateway for the marketplace API."""
