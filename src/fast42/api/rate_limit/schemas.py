"""Pydantic schemas for 42 API rate limit data.

The 42 API reports the quota of the calling application on every response:
- x-application-id
- x-hourly-ratelimit-limit / x-hourly-ratelimit-remaining
- x-secondly-ratelimit-limit / x-secondly-ratelimit-remaining
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Self

from pydantic import BaseModel, Field, computed_field

logger = logging.getLogger(__name__)

HEADER_APPLICATION_ID = "x-application-id"
HEADER_HOURLY_LIMIT = "x-hourly-ratelimit-limit"
HEADER_HOURLY_REMAINING = "x-hourly-ratelimit-remaining"
HEADER_SECONDLY_LIMIT = "x-secondly-ratelimit-limit"
HEADER_SECONDLY_REMAINING = "x-secondly-ratelimit-remaining"
HEADER_TOTAL = "x-total"


class Quota(BaseModel):
    """Rate limits of one API application, as discovered at startup.

    Read-only after discovery; only used to parameterize a limiter.
    """

    model_config = {"frozen": True}

    owner_id: int = Field(description="Application id that owns this quota")
    hourly_limit: int = Field(ge=0, description="Requests allowed per hour")
    hourly_remaining: int = Field(ge=0, description="Requests left in the current hour")
    secondly_limit: int = Field(ge=1, description="Requests allowed per second")
    secondly_remaining: int = Field(ge=0, description="Requests left in the current second")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hourly_used(self) -> int:
        """Requests already spent in the current hour."""
        return max(0, self.hourly_limit - self.hourly_remaining)

    @classmethod
    def from_response_headers(cls, headers: Mapping[str, str]) -> Self:
        """Parse from HTTP response headers.

        Args:
            headers: Response headers (lookups are lower-case; httpx.Headers
                     is case-insensitive)

        Returns:
            Quota instance

        Raises:
            KeyError: If a rate limit header is missing
            ValueError: If a header is not an integer
        """
        return cls(
            owner_id=int(headers[HEADER_APPLICATION_ID]),
            hourly_limit=int(headers[HEADER_HOURLY_LIMIT]),
            hourly_remaining=int(headers[HEADER_HOURLY_REMAINING]),
            secondly_limit=int(headers[HEADER_SECONDLY_LIMIT]),
            secondly_remaining=int(headers[HEADER_SECONDLY_REMAINING]),
        )


class LimiterSettings(BaseModel):
    """Static parameters of one per-credential limiter.

    reservoir: jobs admitted before the first refill
    reservoir_refresh_amount: value the reservoir is reset to on each refill
    reservoir_refresh_interval: seconds between refills
    max_concurrent: jobs allowed in flight at once
    min_time_ms: minimum spacing between two job starts
    """

    model_config = {"frozen": True}

    reservoir: int = Field(ge=0)
    reservoir_refresh_amount: int = Field(ge=0)
    reservoir_refresh_interval: float = Field(default=3600.0, gt=0)
    max_concurrent: int = Field(ge=1)
    min_time_ms: int = Field(default=0, ge=0)

    @property
    def min_time(self) -> float:
        """Minimum spacing between job starts, in seconds."""
        return self.min_time_ms / 1000

    @classmethod
    def from_quota(
        cls,
        quota: Quota,
        concurrent_offset: int = 0,
        spacing_margin_ms: int = 25,
        refresh_interval: float = 3600.0,
    ) -> Self:
        """Derive limiter parameters from a discovered quota.

        Spacing is ``floor(1000 / secondly_limit) + spacing_margin_ms``: our
        clock and the API's are not in sync, and a few extra milliseconds
        per request avoid most 429 responses.

        Args:
            quota: Discovered quota
            concurrent_offset: Headroom subtracted from the per-second limit
            spacing_margin_ms: Extra milliseconds between job starts
            refresh_interval: Seconds between reservoir refills

        Returns:
            LimiterSettings instance
        """
        max_concurrent = quota.secondly_limit - concurrent_offset
        if max_concurrent < 1:
            logger.warning(
                "concurrent_offset=%d leaves no capacity for app %d (secondly_limit=%d), using 1",
                concurrent_offset,
                quota.owner_id,
                quota.secondly_limit,
            )
            max_concurrent = 1

        return cls(
            reservoir=quota.hourly_remaining,
            reservoir_refresh_amount=quota.hourly_limit,
            reservoir_refresh_interval=refresh_interval,
            max_concurrent=max_concurrent,
            min_time_ms=1000 // quota.secondly_limit + spacing_margin_ms,
        )
