"""Counter stores behind the per-credential limiters.

A backend owns the reservoir and concurrency counters of every limiter
registered with it. All mutation happens through ``admit``, ``release`` and
``refill_tick``, each of which is atomic for its store:

- InMemoryBackend: process-local, atomic because asyncio is single-threaded
  and no method awaits while touching state.
- RedisBackend: shared between processes, every operation is one Lua
  script running on the Redis server clock.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fast42.api.rate_limit.schemas import LimiterSettings

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from fast42.config import RedisConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    """Result of one admission attempt.

    retry_after is the number of seconds until an attempt could succeed,
    or None when only a release can free capacity.
    """

    admitted: bool
    retry_after: float | None = 0.0
    ticket: str | None = None

    def __bool__(self) -> bool:
        return self.admitted


class LimiterBackend(ABC):
    """Store for limiter counters, addressed by a stable limiter id."""

    @abstractmethod
    async def register(self, limiter_id: str, settings: LimiterSettings) -> None:
        """Create counters for ``limiter_id`` (existing counters are kept)."""

    @abstractmethod
    async def admit(self, limiter_id: str) -> Admission:
        """Atomically check both gates and take one slot if possible."""

    @abstractmethod
    async def release(self, limiter_id: str, ticket: str) -> None:
        """Free the concurrency slot held by ``ticket``."""

    @abstractmethod
    async def refill_tick(self, limiter_id: str) -> bool:
        """Refill the reservoir if the refresh interval has elapsed."""

    def add_listener(self, limiter_id: str, callback: Callable[[], None]) -> None:
        """Call ``callback`` when capacity of ``limiter_id`` is freed.

        Lets every limiter sharing an id wake up on a release made by another
        one. Backends that cannot push notifications return a finite
        retry_after instead and ignore listeners.
        """
        return None

    def remove_listener(self, limiter_id: str, callback: Callable[[], None]) -> None:
        """Stop calling ``callback`` for ``limiter_id``."""
        return None

    async def close(self) -> None:
        """Release any connection held by the backend."""
        return None


# -----------------------------------------------------------------------------
# In-process backend
# -----------------------------------------------------------------------------
@dataclass
class BucketState:
    """Counters of one limiter in the in-process backend."""

    settings: LimiterSettings
    reservoir: int
    last_refill: float
    next_start: float = 0.0
    running: set[str] = field(default_factory=set)


class InMemoryBackend(LimiterBackend):
    """Single-process backend (the default).

    Limiters registered under the same id share one set of counters.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the backend.

        Args:
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._clock = clock
        self._states: dict[str, BucketState] = {}
        self._listeners: dict[str, list[Callable[[], None]]] = {}

    def state(self, limiter_id: str) -> BucketState:
        """Get the counters for ``limiter_id``."""
        try:
            return self._states[limiter_id]
        except KeyError:
            raise KeyError(f"Limiter {limiter_id!r} is not registered") from None

    async def register(self, limiter_id: str, settings: LimiterSettings) -> None:
        if limiter_id in self._states:
            logger.debug("Limiter %s already registered, sharing its counters", limiter_id)
            return
        self._states[limiter_id] = BucketState(
            settings=settings,
            reservoir=settings.reservoir,
            last_refill=self._clock(),
        )

    async def admit(self, limiter_id: str) -> Admission:
        state = self.state(limiter_id)
        now = self._clock()
        self._refill_if_due(state, now)

        if len(state.running) >= state.settings.max_concurrent:
            return Admission(False, retry_after=None)
        if state.reservoir <= 0:
            next_refill = state.last_refill + state.settings.reservoir_refresh_interval
            return Admission(False, retry_after=max(0.0, next_refill - now))
        if now < state.next_start:
            return Admission(False, retry_after=state.next_start - now)

        ticket = uuid.uuid4().hex
        state.reservoir -= 1
        state.running.add(ticket)
        state.next_start = now + state.settings.min_time
        return Admission(True, ticket=ticket)

    async def release(self, limiter_id: str, ticket: str) -> None:
        self.state(limiter_id).running.discard(ticket)
        self._notify(limiter_id)

    async def refill_tick(self, limiter_id: str) -> bool:
        refilled = self._refill_if_due(self.state(limiter_id), self._clock())
        if refilled:
            self._notify(limiter_id)
        return refilled

    def add_listener(self, limiter_id: str, callback: Callable[[], None]) -> None:
        self._listeners.setdefault(limiter_id, []).append(callback)

    def remove_listener(self, limiter_id: str, callback: Callable[[], None]) -> None:
        listeners = self._listeners.get(limiter_id, [])
        if callback in listeners:
            listeners.remove(callback)

    def _notify(self, limiter_id: str) -> None:
        for callback in list(self._listeners.get(limiter_id, ())):
            callback()

    @staticmethod
    def _refill_if_due(state: BucketState, now: float) -> bool:
        interval = state.settings.reservoir_refresh_interval
        elapsed = now - state.last_refill
        if elapsed < interval:
            return False
        # Stay on the fixed hourly cycle even if several intervals passed
        state.last_refill += math.floor(elapsed / interval) * interval
        state.reservoir = state.settings.reservoir_refresh_amount
        return True


# -----------------------------------------------------------------------------
# Redis backend
# -----------------------------------------------------------------------------
_NOW_MS = """
local t = redis.call('TIME')
local now = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)
"""

_REFILL = """
local function refill(state_key, now)
    local s = redis.call('HMGET', state_key, 'refresh_amount', 'interval', 'last_refill')
    local interval = tonumber(s[2])
    local last_refill = tonumber(s[3])
    local elapsed = now - last_refill
    if elapsed < interval then
        return 0
    end
    last_refill = last_refill + math.floor(elapsed / interval) * interval
    redis.call('HSET', state_key, 'reservoir', s[1], 'last_refill', last_refill)
    return 1
end
"""

# KEYS: state, running
# ARGV: reservoir, refresh_amount, interval_ms, max_concurrent, min_time_ms, ttl_ms
REGISTER_SCRIPT = (
    _NOW_MS
    + """
redis.call('HSET', KEYS[1],
    'refresh_amount', ARGV[2], 'interval', ARGV[3],
    'max_concurrent', ARGV[4], 'min_time', ARGV[5])
redis.call('HSETNX', KEYS[1], 'reservoir', ARGV[1])
redis.call('HSETNX', KEYS[1], 'last_refill', now)
redis.call('HSETNX', KEYS[1], 'next_start', 0)
redis.call('PEXPIRE', KEYS[1], ARGV[6])
return tonumber(redis.call('HGET', KEYS[1], 'reservoir'))
"""
)

# KEYS: state, running
# ARGV: ticket, lease_ms, ttl_ms, poll_ms
# Returns {status, wait_ms}: 1 admitted, 0 rejected, -1 unknown limiter
ADMIT_SCRIPT = (
    _NOW_MS
    + _REFILL
    + """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return {-1, 0}
end
refill(KEYS[1], now)
local s = redis.call('HMGET', KEYS[1],
    'reservoir', 'interval', 'max_concurrent', 'min_time', 'last_refill', 'next_start')
local reservoir = tonumber(s[1])
local interval = tonumber(s[2])
local max_concurrent = tonumber(s[3])
local min_time = tonumber(s[4])
local last_refill = tonumber(s[5])
local next_start = tonumber(s[6])

redis.call('ZREMRANGEBYSCORE', KEYS[2], '-inf', now)
redis.call('PEXPIRE', KEYS[1], ARGV[3])

if redis.call('ZCARD', KEYS[2]) >= max_concurrent then
    return {0, tonumber(ARGV[4])}
end
if reservoir <= 0 then
    return {0, last_refill + interval - now}
end
if now < next_start then
    return {0, next_start - now}
end

redis.call('HSET', KEYS[1], 'reservoir', reservoir - 1, 'next_start', now + min_time)
redis.call('ZADD', KEYS[2], now + tonumber(ARGV[2]), ARGV[1])
redis.call('PEXPIRE', KEYS[2], ARGV[3])
return {1, 0}
"""
)

# KEYS: state
REFILL_SCRIPT = (
    _NOW_MS
    + _REFILL
    + """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
return refill(KEYS[1], now)
"""
)


class RedisBackend(LimiterBackend):
    """Backend shared by every process pointing at the same Redis.

    Processes that register the same limiter id draw from one reservoir and
    one concurrency count. Counters survive a process joining late: only the
    static settings are overwritten on registration.

    Running jobs are stored as tickets with a lease, so a crashed process
    frees its concurrency slots once the lease runs out.
    """

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "fast42",
        running_lease: float = 60.0,
        poll_interval: float = 0.05,
    ) -> None:
        """Initialize the backend.

        Args:
            client: redis.asyncio client (owned by the backend from now on)
            key_prefix: Prefix for all keys written by the backend
            running_lease: Seconds after which an unreleased slot is reclaimed
            poll_interval: Seconds between retries while all slots are taken
        """
        self._client = client
        self._prefix = key_prefix
        self._lease_ms = int(running_lease * 1000)
        self._poll_ms = max(1, int(poll_interval * 1000))
        self._settings: dict[str, LimiterSettings] = {}

        self._register = client.register_script(REGISTER_SCRIPT)
        self._admit = client.register_script(ADMIT_SCRIPT)
        self._refill = client.register_script(REFILL_SCRIPT)

    @classmethod
    def from_config(
        cls,
        config: RedisConfig,
        poll_interval: float = 0.05,
    ) -> RedisBackend:
        """Create a backend with a new client built from ``config``."""
        from redis.asyncio import Redis

        client = Redis(
            host=config.host,
            port=config.port,
            password=config.password,
            db=config.db,
        )
        return cls(
            client,
            key_prefix=config.key_prefix,
            running_lease=config.running_lease_seconds,
            poll_interval=poll_interval,
        )

    def _keys(self, limiter_id: str) -> list[str]:
        base = f"{self._prefix}:{limiter_id}"
        return [f"{base}:state", f"{base}:running"]

    def _ttl_ms(self, settings: LimiterSettings) -> int:
        return int(settings.reservoir_refresh_interval * 2000)

    async def register(self, limiter_id: str, settings: LimiterSettings) -> None:
        self._settings[limiter_id] = settings
        reservoir: Any = await self._register(
            keys=self._keys(limiter_id),
            args=[
                settings.reservoir,
                settings.reservoir_refresh_amount,
                int(settings.reservoir_refresh_interval * 1000),
                settings.max_concurrent,
                settings.min_time_ms,
                self._ttl_ms(settings),
            ],
        )
        logger.debug("Registered shared limiter %s (reservoir=%s)", limiter_id, reservoir)

    async def admit(self, limiter_id: str) -> Admission:
        settings = self._settings.get(limiter_id)
        if settings is None:
            raise KeyError(f"Limiter {limiter_id!r} is not registered")

        ticket = uuid.uuid4().hex
        status, wait_ms = await self._call_admit(limiter_id, settings, ticket)
        if status == -1:
            # Keys expired or the store was flushed; recreate and retry once
            logger.info("Shared limiter %s lost its state, registering again", limiter_id)
            await self.register(limiter_id, settings)
            status, wait_ms = await self._call_admit(limiter_id, settings, ticket)

        if status == 1:
            return Admission(True, ticket=ticket)
        return Admission(False, retry_after=max(0, int(wait_ms)) / 1000)

    async def _call_admit(
        self,
        limiter_id: str,
        settings: LimiterSettings,
        ticket: str,
    ) -> tuple[int, int]:
        result: Any = await self._admit(
            keys=self._keys(limiter_id),
            args=[ticket, self._lease_ms, self._ttl_ms(settings), self._poll_ms],
        )
        return int(result[0]), int(result[1])

    async def release(self, limiter_id: str, ticket: str) -> None:
        await self._client.zrem(self._keys(limiter_id)[1], ticket)

    async def refill_tick(self, limiter_id: str) -> bool:
        result: Any = await self._refill(keys=self._keys(limiter_id)[:1], args=[])
        return int(result) == 1

    async def close(self) -> None:
        await self._client.aclose()
