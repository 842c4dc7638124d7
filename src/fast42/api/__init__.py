"""42 API client module.

This module provides:
- Fast42: Async 42 API client with key rotation and rate limiting
- Tokens: TokenManager, AccessToken, ApiSecret
- Quotas: Quota, QuotaDiscovery, LimiterSettings
- Pacing: Limiter, Job, RoundRobinDispatcher, InMemoryBackend, RedisBackend
- Pagination: PageExpander
"""

from .auth import USER_TOKEN_INDEX, AccessToken, ApiSecret, TokenManager
from .client import CredentialSlot, Fast42
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    Fast42Error,
    JobTimeoutError,
    LimiterClosedError,
    NotInitializedError,
    QuotaDiscoveryError,
    RateLimitedError,
    TransportError,
)
from .pacing import (
    Admission,
    InMemoryBackend,
    Job,
    Limiter,
    LimiterBackend,
    RedisBackend,
    RoundRobinDispatcher,
)
from .pagination import PageExpander
from .rate_limit import LimiterSettings, Quota, QuotaDiscovery

__all__ = [
    # Client
    "CredentialSlot",
    "Fast42",
    # Exceptions
    "AuthenticationError",
    "ConfigurationError",
    "Fast42Error",
    "JobTimeoutError",
    "LimiterClosedError",
    "NotInitializedError",
    "QuotaDiscoveryError",
    "RateLimitedError",
    "TransportError",
    # Tokens
    "USER_TOKEN_INDEX",
    "AccessToken",
    "ApiSecret",
    "TokenManager",
    # Quotas
    "LimiterSettings",
    "Quota",
    "QuotaDiscovery",
    # Pacing
    "Admission",
    "InMemoryBackend",
    "Job",
    "Limiter",
    "LimiterBackend",
    "RedisBackend",
    "RoundRobinDispatcher",
    # Pagination
    "PageExpander",
]
