"""Bearer token lifecycle for the configured API keys.

Each credential gets its token through the OAuth client-credentials grant.
Tokens are cached per credential index and refetched a fixed margin before
they expire, so a request never goes out with a token that is about to die.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import httpx
from pydantic import BaseModel, Field, ValidationError

from fast42.api.exceptions import AuthenticationError, ConfigurationError, TransportError
from fast42.config import ApiSecret
from fast42.logging import bind_credential, get_logger

logger = get_logger(__name__)

# Index used to tag a token supplied by an end user instead of a credential.
USER_TOKEN_INDEX = -42


class AccessToken(BaseModel):
    """Token grant response from the OAuth endpoint."""

    access_token: str = Field(min_length=1, description="Bearer token value")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(ge=0, description="Seconds until the token expires")
    scope: str = Field(default="", description="Granted scopes")
    created_at: int | None = Field(default=None, description="Unix creation time")

    @property
    def authorization(self) -> str:
        """Value for the Authorization header."""
        return f"Bearer {self.access_token}"


@dataclass(frozen=True)
class CachedToken:
    """A token together with the monotonic time after which it is refetched."""

    token: AccessToken
    fresh_until: float


class TokenManager:
    """Owns the token cache for a fixed, ordered set of credentials.

    Usage:
        async with httpx.AsyncClient() as http:
            tokens = TokenManager(secrets, http, token_url=settings.token_url)
            token = await tokens.get_valid_token(0)
            headers = {"Authorization": token.authorization}
    """

    def __init__(
        self,
        secrets: Sequence[ApiSecret],
        http: httpx.AsyncClient,
        *,
        token_url: str,
        scope: str = "public",
        expiry_margin: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the token manager.

        Args:
            secrets: Credentials, indexed by their position
            http: HTTP client used for the grant exchange
            token_url: OAuth token endpoint
            scope: Space separated scopes to request
            expiry_margin: Seconds subtracted from expires_in for caching
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._secrets = tuple(secrets)
        self._http = http
        self._token_url = token_url
        self._scope = scope
        self._expiry_margin = expiry_margin
        self._clock = clock

        self._cache: dict[int, CachedToken] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._secrets)

    async def get_valid_token(self, index: int) -> AccessToken:
        """Return a non-expiring token for the credential at ``index``.

        Serves from cache while the token is fresh; otherwise performs the
        grant exchange. Concurrent callers for the same index share a
        single exchange.

        Raises:
            ConfigurationError: If no credential exists at ``index``
            AuthenticationError: If the grant exchange is rejected
            TransportError: If the token endpoint cannot be reached
        """
        cached = self._fresh(index)
        if cached is not None:
            return cached

        secret = self._secret(index)
        lock = self._locks.setdefault(index, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            cached = self._fresh(index)
            if cached is not None:
                return cached

            token = await self.request_token(secret, index)
            self.store(index, token)
            return token

    async def request_token(self, secret: ApiSecret, index: int | None = None) -> AccessToken:
        """Perform the client-credentials grant for one credential."""
        log = bind_credential(index) if index is not None else logger
        try:
            response = await self._http.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": secret.client_id,
                    "client_secret": secret.client_secret,
                    "scope": self._scope,
                },
            )
        except httpx.TransportError as e:
            raise TransportError(f"Token endpoint unreachable: {e}") from e

        if not response.is_success:
            log.error("Token request rejected ({})", response.status_code)
            raise AuthenticationError(
                f"Error getting access token: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
                credential_index=index,
            )

        try:
            token = AccessToken.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            log.error("Malformed token response")
            raise AuthenticationError(
                f"Invalid access token response: {e}",
                status=response.status_code,
                credential_index=index,
            ) from e
        log.debug("Obtained access token (expires_in={}s)", token.expires_in)
        return token

    def store(self, index: int, token: AccessToken) -> None:
        """Cache ``token`` for ``index``, replacing any previous entry."""
        fresh_until = self._clock() + token.expires_in - self._expiry_margin
        self._cache[index] = CachedToken(token=token, fresh_until=fresh_until)

    def invalidate(self, index: int) -> None:
        """Drop the cached token for ``index`` (next call refetches)."""
        self._cache.pop(index, None)

    def _fresh(self, index: int) -> AccessToken | None:
        cached = self._cache.get(index)
        if cached is None:
            return None
        if self._clock() >= cached.fresh_until:
            return None
        return cached.token

    def _secret(self, index: int) -> ApiSecret:
        if 0 <= index < len(self._secrets):
            return self._secrets[index]
        raise ConfigurationError(f"ApiSecret not found at index: {index}")
