"""Quota discovery for API credentials.

One cheap authenticated call per credential tells us the application id
and its hourly and per-second limits. Nothing else can be derived safely,
so a failed probe aborts initialization.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from fast42.api.exceptions import QuotaDiscoveryError, TransportError

from .schemas import Quota

logger = logging.getLogger(__name__)


class QuotaDiscovery:
    """Reads rate limits from the response headers of a probe request.

    Usage:
        discovery = QuotaDiscovery(http, probe_url="https://api.intra.42.fr/v2/cursus")
        quota = await discovery.discover(token.access_token)
    """

    def __init__(self, http: httpx.AsyncClient, probe_url: str) -> None:
        self._http = http
        self._probe_url = probe_url

    async def discover(self, access_token: str) -> Quota:
        """Probe the API with ``access_token`` and return its quota.

        Raises:
            QuotaDiscoveryError: If the call fails or headers are unusable
            TransportError: If the API cannot be reached
        """
        try:
            response = await self._http.get(
                self._probe_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TransportError as e:
            raise TransportError(f"Rate limit probe failed: {e}") from e

        if not response.is_success:
            raise QuotaDiscoveryError(
                f"Error getting rate limits: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )

        try:
            quota = Quota.from_response_headers(response.headers)
        except KeyError as e:
            raise QuotaDiscoveryError(
                f"Rate limit header missing from probe response: {e}",
                status=response.status_code,
            ) from e
        except (ValueError, ValidationError) as e:
            raise QuotaDiscoveryError(
                f"Invalid rate limit header in probe response: {e}",
                status=response.status_code,
            ) from e

        logger.debug(
            "Discovered quota for app %d (hourly %d/%d, secondly %d)",
            quota.owner_id,
            quota.hourly_remaining,
            quota.hourly_limit,
            quota.secondly_limit,
        )
        return quota
