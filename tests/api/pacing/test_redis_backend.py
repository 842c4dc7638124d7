"""Tests for the shared Redis limiter backend.

The Lua scripts run on the server; these tests check the key layout and
argument passing against a mocked client.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fast42.api.pacing import RedisBackend
from fast42.api.pacing.backends import ADMIT_SCRIPT, REFILL_SCRIPT, REGISTER_SCRIPT
from fast42.api.rate_limit import LimiterSettings
from fast42.config import RedisConfig

SETTINGS = LimiterSettings(
    reservoir=900,
    reservoir_refresh_amount=1200,
    reservoir_refresh_interval=3600,
    max_concurrent=3,
    min_time_ms=275,
)


@pytest.fixture
def scripts():
    """Register, admit and refill scripts, in registration order."""
    return AsyncMock(return_value=900), AsyncMock(return_value=[1, 0]), AsyncMock(return_value=0)


@pytest.fixture
def client(scripts):
    client = MagicMock()
    client.register_script.side_effect = list(scripts)
    client.zrem = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def backend(client):
    return RedisBackend(client, key_prefix="test", running_lease=30, poll_interval=0.02)


class TestRedisBackend:
    def test_registers_lua_scripts(self, client, backend):
        registered = [call.args[0] for call in client.register_script.call_args_list]

        assert registered == [REGISTER_SCRIPT, ADMIT_SCRIPT, REFILL_SCRIPT]
        assert "redis.call('TIME')" in ADMIT_SCRIPT

    async def test_register_arguments(self, scripts, backend):
        register, _, _ = scripts

        await backend.register("app-7", SETTINGS)

        register.assert_awaited_once_with(
            keys=["test:app-7:state", "test:app-7:running"],
            args=[900, 1200, 3_600_000, 3, 275, 7_200_000],
        )

    async def test_admit_granted(self, scripts, backend):
        _, admit, _ = scripts
        await backend.register("app-7", SETTINGS)

        admission = await backend.admit("app-7")

        assert admission.admitted
        ticket = admission.ticket
        admit.assert_awaited_once_with(
            keys=["test:app-7:state", "test:app-7:running"],
            args=[ticket, 30_000, 7_200_000, 20],
        )

    async def test_admit_rejected(self, scripts, backend):
        _, admit, _ = scripts
        admit.return_value = [0, 250]
        await backend.register("app-7", SETTINGS)

        admission = await backend.admit("app-7")

        assert not admission
        assert admission.retry_after == pytest.approx(0.25)
        assert admission.ticket is None

    async def test_admit_reregisters_lost_state(self, scripts, backend):
        register, admit, _ = scripts
        admit.side_effect = [[-1, 0], [1, 0]]
        await backend.register("app-7", SETTINGS)

        admission = await backend.admit("app-7")

        assert admission.admitted
        assert register.await_count == 2
        assert admit.await_count == 2

    async def test_admit_unregistered(self, backend):
        with pytest.raises(KeyError, match="not registered"):
            await backend.admit("app-7")

    async def test_release_removes_ticket(self, client, backend):
        await backend.release("app-7", "ticket-1")

        client.zrem.assert_awaited_once_with("test:app-7:running", "ticket-1")

    async def test_refill_tick(self, scripts, backend):
        _, _, refill = scripts
        refill.return_value = 1

        assert await backend.refill_tick("app-7") is True
        refill.assert_awaited_once_with(keys=["test:app-7:state"], args=[])

    async def test_close(self, client, backend):
        await backend.close()

        client.aclose.assert_awaited_once()


class TestFromConfig:
    def test_builds_client_from_config(self, client):
        config = RedisConfig(host="cache", port=6380, password="pw", db=2, key_prefix="shared")

        with patch("redis.asyncio.Redis", return_value=client) as redis_cls:
            backend = RedisBackend.from_config(config, poll_interval=0.1)

        redis_cls.assert_called_once_with(host="cache", port=6380, password="pw", db=2)
        assert backend._prefix == "shared"
        assert backend._lease_ms == 60_000
        assert backend._poll_ms == 100
