"""Rate limit discovery for the 42 API.

Each credential's quota is read once from response headers and turned
into static limiter parameters.
"""

from .discovery import QuotaDiscovery
from .schemas import HEADER_TOTAL, LimiterSettings, Quota

__all__ = [
    "HEADER_TOTAL",
    "LimiterSettings",
    "Quota",
    "QuotaDiscovery",
]
