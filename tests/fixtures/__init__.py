"""Test fixtures for fast42."""

from .intra_responses import (
    HEADERS_DEFAULT,
    HEADERS_FOUR_PER_SECOND,
    HEADERS_NEARLY_EXHAUSTED,
    PROBE_PATH,
    ROOT_URL,
    TOKEN_URL,
    FakeApp,
    FakeIntraApi,
    make_rate_limit_headers,
    make_token_response,
)

__all__ = [
    # Rate limit headers
    "HEADERS_DEFAULT",
    "HEADERS_FOUR_PER_SECOND",
    "HEADERS_NEARLY_EXHAUSTED",
    "make_rate_limit_headers",
    # Fake API
    "FakeApp",
    "FakeIntraApi",
    "PROBE_PATH",
    "ROOT_URL",
    "TOKEN_URL",
    "make_token_response",
]
