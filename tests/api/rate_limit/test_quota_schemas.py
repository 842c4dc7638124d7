"""Tests for quota and limiter settings schemas."""

import httpx
import pytest
from pydantic import ValidationError

from fast42.api.rate_limit import LimiterSettings, Quota
from tests.fixtures import HEADERS_DEFAULT, HEADERS_FOUR_PER_SECOND, make_rate_limit_headers


class TestQuota:
    def test_from_headers(self):
        quota = Quota.from_response_headers(HEADERS_DEFAULT)

        assert quota.owner_id == 1001
        assert quota.hourly_limit == 1200
        assert quota.hourly_remaining == 1200
        assert quota.secondly_limit == 8
        assert quota.secondly_remaining == 8
        assert quota.hourly_used == 0

    def test_from_httpx_headers_case_insensitive(self):
        headers = httpx.Headers({k.upper(): v for k, v in HEADERS_DEFAULT.items()})

        assert Quota.from_response_headers(headers).owner_id == 1001

    def test_hourly_used(self):
        quota = Quota.from_response_headers(make_rate_limit_headers(hourly_remaining=1150))

        assert quota.hourly_used == 50

    def test_missing_header(self):
        headers = dict(HEADERS_DEFAULT)
        del headers["x-secondly-ratelimit-limit"]

        with pytest.raises(KeyError):
            Quota.from_response_headers(headers)

    def test_non_integer_header(self):
        headers = {**HEADERS_DEFAULT, "x-hourly-ratelimit-limit": "lots"}

        with pytest.raises(ValueError):
            Quota.from_response_headers(headers)

    def test_zero_secondly_limit_rejected(self):
        with pytest.raises(ValidationError):
            Quota.from_response_headers(make_rate_limit_headers(secondly_limit=0))

    def test_frozen(self):
        quota = Quota.from_response_headers(HEADERS_DEFAULT)

        with pytest.raises(ValidationError):
            quota.hourly_limit = 1  # type: ignore[misc]


class TestLimiterSettingsFromQuota:
    def test_defaults(self):
        quota = Quota.from_response_headers(
            make_rate_limit_headers(hourly_limit=1200, hourly_remaining=900, secondly_limit=8)
        )

        settings = LimiterSettings.from_quota(quota)

        assert settings.reservoir == 900
        assert settings.reservoir_refresh_amount == 1200
        assert settings.reservoir_refresh_interval == 3600
        assert settings.max_concurrent == 8
        assert settings.min_time_ms == 1000 // 8 + 25

    def test_four_per_second_with_offset(self):
        quota = Quota.from_response_headers(HEADERS_FOUR_PER_SECOND)

        settings = LimiterSettings.from_quota(quota, concurrent_offset=1)

        assert settings.max_concurrent == 3
        assert settings.min_time_ms == 275
        assert settings.min_time == pytest.approx(0.275)

    def test_spacing_floors(self):
        quota = Quota.from_response_headers(make_rate_limit_headers(secondly_limit=3))

        assert LimiterSettings.from_quota(quota, spacing_margin_ms=0).min_time_ms == 333

    def test_offset_clamped_to_one(self, caplog):
        quota = Quota.from_response_headers(make_rate_limit_headers(secondly_limit=2))

        with caplog.at_level("WARNING"):
            settings = LimiterSettings.from_quota(quota, concurrent_offset=5)

        assert settings.max_concurrent == 1
        assert "leaves no capacity" in caplog.text

    def test_custom_refresh_interval(self):
        quota = Quota.from_response_headers(HEADERS_DEFAULT)

        assert LimiterSettings.from_quota(quota, refresh_interval=60).reservoir_refresh_interval == 60
