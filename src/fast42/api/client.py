"""Async 42 API client with credential rotation and quota-aware limiting.

This module ties the pieces together: every call picks the next credential
in the rotation, gets a fresh bearer token for it, and runs through that
credential's limiter, which was calibrated from the quota the API reported
for the key at startup.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Self, TypeVar

import httpx

from fast42.config import ApiSecret, RedisConfig, Settings, get_settings
from fast42.logging import bind_credential, get_logger

from .auth import USER_TOKEN_INDEX, TokenManager
from .exceptions import (
    ConfigurationError,
    NotInitializedError,
    RateLimitedError,
    TransportError,
)
from .pacing import InMemoryBackend, Limiter, LimiterBackend, RedisBackend, RoundRobinDispatcher
from .pagination import PageExpander
from .rate_limit import LimiterSettings, Quota, QuotaDiscovery

logger = get_logger(__name__)

T = TypeVar("T")

Method = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


@dataclass(frozen=True)
class CredentialSlot:
    """One configured key with its discovered quota and limiter."""

    index: int
    secret: ApiSecret
    quota: Quota
    limiter: Limiter


def _limiter_warmup() -> str:
    return "limiter initialized"


class Fast42:
    """Rate-limited client for the 42 intra API.

    Usage:
        async with Fast42([ApiSecret(client_id=uid, client_secret=secret)]) as api:
            response = await api.get("/projects/1328")
            pages = await api.get_all_pages("/cursus/21/users")
            users = [user for page in await asyncio.gather(*pages) for user in page.json()]

    Or without context manager:
        api = await Fast42(secrets, concurrent_offset=1).init()
        ...
        await api.disconnect()

    All keys are used equally (round robin), so make sure they share the
    same rate limit.
    """

    def __init__(
        self,
        secrets: Sequence[ApiSecret | Mapping[str, str]] | None = None,
        *,
        concurrent_offset: int | None = None,
        job_expiration: float | None = None,
        redis: RedisConfig | None = None,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        backend: LimiterBackend | None = None,
    ) -> None:
        """Initialize the client. Call init() before making requests.

        Args:
            secrets: API keys in rotation order. Defaults to FAST42_SECRETS.
            concurrent_offset: Subtracted from each key's per-second limit to
                get its max concurrent requests. 0 uses the full limit (more
                429s); 1 is recommended for keys above 2 requests/second.
            job_expiration: Seconds a request may wait in a limiter queue
                before failing with JobTimeoutError.
            redis: Shared store so several processes can use the same keys.
            settings: Settings instance (defaults to get_settings()).
            http_client: Transport to use; created (and closed) if omitted.
            backend: Counter store, overriding the ``redis`` selection.

        Raises:
            ConfigurationError: If no secrets are given or an option is invalid.
        """
        self._settings = settings or get_settings()
        limiter_config = self._settings.limiter

        raw_secrets = list(secrets if secrets is not None else self._settings.secrets)
        if not raw_secrets:
            raise ConfigurationError("Fast42 requires at least one 42 Api Key/Secret pair")
        self._secrets = tuple(ApiSecret.model_validate(secret) for secret in raw_secrets)

        self._concurrent_offset = (
            limiter_config.concurrent_offset if concurrent_offset is None else concurrent_offset
        )
        if self._concurrent_offset < 0:
            raise ConfigurationError("concurrent_offset must be >= 0")
        self._job_expiration = (
            limiter_config.job_expiration_seconds if job_expiration is None else job_expiration
        )
        if self._job_expiration <= 0:
            raise ConfigurationError("job_expiration must be > 0")

        self._redis_config = redis if redis is not None else self._settings.redis
        self._backend = backend
        self._owns_backend = backend is None

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.http_timeout_seconds)
        )
        self._root_url = self._settings.root_url.rstrip("/")

        self._tokens = TokenManager(
            self._secrets,
            self._http,
            token_url=self._settings.token_url,
            scope=self._settings.scope,
            expiry_margin=self._settings.token.expiry_margin_seconds,
        )
        self._discovery = QuotaDiscovery(self._http, self._root_url + self._settings.probe_endpoint)
        self._dispatcher = RoundRobinDispatcher(len(self._secrets))
        self._pages = PageExpander(self.get, default_page_size=limiter_config.default_page_size)

        self._slots: list[CredentialSlot] = []
        self._background: set[asyncio.Task[Any]] = set()  # Prevent task GC

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def init(self) -> Self:
        """Fetch a token and discover the quota of every key, then build limiters.

        Keys that report the same application id share one limiter, since
        the API counts their requests against one quota.

        Raises:
            AuthenticationError: If a key is rejected by the token endpoint
            QuotaDiscoveryError: If a key's rate limits cannot be read
        """
        if self._slots:
            return self

        backend = self._backend or self._create_backend()
        limiter_config = self._settings.limiter
        limiters: dict[int, Limiter] = {}
        slots: list[CredentialSlot] = []

        try:
            for index, secret in enumerate(self._secrets):
                token = await self._tokens.get_valid_token(index)
                quota = await self._discovery.discover(token.access_token)
                log = bind_credential(index, quota.owner_id)

                limiter = limiters.get(quota.owner_id)
                if limiter is None:
                    limiter_settings = LimiterSettings.from_quota(
                        quota,
                        concurrent_offset=self._concurrent_offset,
                        spacing_margin_ms=limiter_config.spacing_margin_ms,
                        refresh_interval=limiter_config.reservoir_refresh_interval_seconds,
                    )
                    limiter = Limiter(
                        f"app-{quota.owner_id}",
                        limiter_settings,
                        backend,
                        expiration=self._job_expiration,
                        error_backoff=limiter_config.backend_error_backoff_ms / 1000,
                    )
                    limiters[quota.owner_id] = limiter
                    log.info(
                        "Limiter ready: {}/{} requests left this hour, {} concurrent, {}ms spacing",
                        quota.hourly_remaining,
                        quota.hourly_limit,
                        limiter_settings.max_concurrent,
                        limiter_settings.min_time_ms,
                    )
                else:
                    log.warning("Key shares application {} with an earlier key", quota.owner_id)

                slots.append(CredentialSlot(index, secret, quota, limiter))
        except BaseException:
            if self._owns_backend and self._backend is None:
                await backend.close()
            raise

        self._backend = backend
        self._slots = slots
        logger.info("Limiters length: {}", len(limiters))

        # The probe requests above already used quota the limiters do not know about
        for slot in slots:
            self._in_background(slot.limiter.schedule(_limiter_warmup))
        return self

    async def disconnect(self) -> None:
        """Stop all limiters and close the shared store and HTTP connections.

        Must be called before exit when a Redis store is configured.
        """
        for limiter in self.limiters:
            await limiter.close()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self._backend is not None:
            await self._backend.close()
            if self._owns_backend:
                self._backend = None
        if self._owns_http:
            await self._http.aclose()
        self._slots = []

    async def __aenter__(self) -> Self:
        """Async context manager entry (initializes the client)."""
        return await self.init()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.disconnect()

    def _create_backend(self) -> LimiterBackend:
        if self._redis_config is None:
            return InMemoryBackend()
        logger.info(
            "Using shared limiter store at {}:{}",
            self._redis_config.host,
            self._redis_config.port,
        )
        return RedisBackend.from_config(
            self._redis_config,
            poll_interval=self._settings.limiter.redis_poll_interval_ms / 1000,
        )

    def _in_background(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background limiter job failed: {}", task.exception())

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------
    @property
    def is_initialized(self) -> bool:
        """Whether init() has completed."""
        return bool(self._slots)

    @property
    def slots(self) -> list[CredentialSlot]:
        """Configured keys with their quota and limiter (empty before init)."""
        return list(self._slots)

    @property
    def quotas(self) -> list[Quota]:
        """Discovered quota per key, in rotation order."""
        return [slot.quota for slot in self._slots]

    @property
    def limiters(self) -> list[Limiter]:
        """Distinct limiters (keys of one application share a limiter)."""
        unique: dict[str, Limiter] = {}
        for slot in self._slots:
            unique.setdefault(slot.limiter.id, slot.limiter)
        return list(unique.values())

    def _require_initialized(self) -> None:
        if not self._slots:
            logger.error("Fast42 not initialized, please call .init() first")
            raise NotInitializedError()

    def _next_slot(self) -> CredentialSlot:
        self._require_initialized()
        return self._slots[self._dispatcher.next_index()]

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------
    async def get(self, endpoint: str, options: Mapping[str, str] | None = None) -> httpx.Response:
        """GET ``endpoint`` with ``options`` as query parameters."""
        slot = self._next_slot()
        return await self._request(slot, "GET", endpoint, params=options)

    async def post(self, endpoint: str, body: Any = None) -> httpx.Response:
        """POST ``body`` as JSON to ``endpoint``."""
        slot = self._next_slot()
        return await self._request(slot, "POST", endpoint, body=body)

    async def put(self, endpoint: str, body: Any = None) -> httpx.Response:
        """PUT ``body`` as JSON to ``endpoint``."""
        slot = self._next_slot()
        return await self._request(slot, "PUT", endpoint, body=body)

    async def patch(self, endpoint: str, body: Any = None) -> httpx.Response:
        """PATCH ``body`` as JSON to ``endpoint``."""
        slot = self._next_slot()
        return await self._request(slot, "PATCH", endpoint, body=body)

    async def delete(self, endpoint: str, body: Any = None) -> httpx.Response:
        """DELETE ``endpoint`` (with an optional JSON body)."""
        slot = self._next_slot()
        return await self._request(slot, "DELETE", endpoint, body=body)

    async def get_page(
        self,
        endpoint: str,
        page: int,
        options: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """GET one page of a listing endpoint (page[size] defaults to 100)."""
        self._require_initialized()
        return await self._pages.fetch_page(endpoint, page, options)

    async def get_all_pages(
        self,
        endpoint: str,
        options: Mapping[str, str] | None = None,
        start: int = 1,
    ) -> list[asyncio.Future[httpx.Response]]:
        """Fetch page ``start`` and schedule every page after it.

        Returns immediately after the first page with one future per page;
        await them individually or with asyncio.gather. Pages answered
        with 429 raise RateLimitedError and are not retried.
        """
        self._require_initialized()
        return await self._pages.fetch_all_pages(endpoint, options, start)

    async def post_with_user_token(
        self,
        access_token: str,
        endpoint: str,
        body: Any = None,
    ) -> httpx.Response:
        """POST on behalf of a user, with their access token."""
        return await self.request_with_user_token("POST", endpoint, access_token, body=body)

    async def request_with_user_token(
        self,
        method: Method,
        endpoint: str,
        access_token: str,
        *,
        options: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> httpx.Response:
        """Send a request with a user's token through the matching limiter.

        The token's application must be one of the configured keys, since
        its requests count against that key's quota. The stored token of
        that key is left untouched.

        Raises:
            ConfigurationError: If the token belongs to an unknown application
        """
        self._require_initialized()
        quota = await self._discovery.discover(access_token)
        slot = next((s for s in self._slots if s.quota.owner_id == quota.owner_id), None)
        if slot is None:
            raise ConfigurationError(
                f"Application {quota.owner_id} not found, initialize with the same "
                "credential used to authenticate this token"
            )
        # The probe above counted against this application's quota too
        self._in_background(slot.limiter.schedule(_limiter_warmup))
        return await self._request(
            slot, method, endpoint, params=options, body=body, user_token=access_token
        )

    async def do_job(self, func: Callable[..., Awaitable[T] | T], *args: Any, **kwargs: Any) -> T:
        """Run an arbitrary job through the next key's limiter."""
        slot = self._next_slot()
        return await slot.limiter.schedule(func, *args, **kwargs)

    async def _request(
        self,
        slot: CredentialSlot,
        method: Method,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        user_token: str | None = None,
    ) -> httpx.Response:
        if user_token is None:
            # Fail fast on a rejected key instead of after the queue wait
            await self._tokens.get_valid_token(slot.index)
        url = self._root_url + endpoint
        return await slot.limiter.schedule(
            self._send, slot.index, method, url, params, body, user_token
        )

    async def _send(
        self,
        index: int,
        method: Method,
        url: str,
        params: Mapping[str, str] | None,
        body: Any,
        user_token: str | None,
    ) -> httpx.Response:
        """Job body: runs once the limiter admitted the request."""
        if user_token is None:
            # Re-checked here, the token may have aged while the job was queued
            access_token = (await self._tokens.get_valid_token(index)).access_token
        else:
            access_token = user_token

        try:
            response = await self._http.request(
                method,
                url,
                params=dict(params) if params else None,
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code == 429:
            log = bind_credential(index if user_token is None else USER_TOKEN_INDEX)
            log.warning("Rate limited by the API on {} {}", method, response.url)
            raise RateLimitedError(f"Rate limited on {method} {response.url}", response=response)
        return response

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------
    def get_stats(self) -> dict[str, Any]:
        """Export limiter state per key (for logging/metrics)."""
        return {
            "initialized": self.is_initialized,
            "keys": len(self._secrets),
            "limiters": [limiter.get_stats() for limiter in self.limiters],
        }
