"""Credential and bearer token handling."""

from fast42.config import ApiSecret

from .tokens import USER_TOKEN_INDEX, AccessToken, CachedToken, TokenManager

__all__ = [
    "USER_TOKEN_INDEX",
    "AccessToken",
    "ApiSecret",
    "CachedToken",
    "TokenManager",
]
