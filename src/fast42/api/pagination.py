"""Expansion of a listing endpoint into its page requests.

The first page is fetched to read the X-Total header. All remaining pages
are then scheduled at once; each one still goes through the credential
limiters, so the limiters decide how fast they actually run.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Mapping

import httpx

from fast42.api.exceptions import ConfigurationError
from fast42.api.rate_limit.schemas import HEADER_TOTAL
from fast42.logging import get_logger

logger = get_logger(__name__)

PAGE_NUMBER = "page[number]"
PAGE_SIZE = "page[size]"

Getter = Callable[[str, dict[str, str] | None], Awaitable[httpx.Response]]


class PageExpander:
    """Turns one listing request into the set of its page fetches.

    Usage:
        expander = PageExpander(api.get)
        pages = await expander.fetch_all_pages("/cursus/21/users")
        responses = await asyncio.gather(*pages)

    Pages that come back 429 raise RateLimitedError; the failed request
    (and so its page number) is available on ``error.response.request``.
    """

    def __init__(self, get: Getter, default_page_size: int = 100) -> None:
        """Initialize the expander.

        Args:
            get: Coroutine function issuing one rate-limited GET
            default_page_size: page[size] used when options do not set it
        """
        self._get = get
        self._default_page_size = default_page_size

    def page_size(self, options: Mapping[str, str] | None) -> int:
        """Page size requested by ``options`` (or the default)."""
        if not options or PAGE_SIZE not in options:
            return self._default_page_size
        try:
            size = int(options[PAGE_SIZE])
        except ValueError:
            raise ConfigurationError(f"Invalid {PAGE_SIZE}: {options[PAGE_SIZE]!r}") from None
        if size < 1:
            raise ConfigurationError(f"Invalid {PAGE_SIZE}: {size}")
        return size

    @staticmethod
    def page_options(
        options: Mapping[str, str] | None,
        page: int,
        page_size: int,
    ) -> dict[str, str]:
        """Copy of ``options`` with the page number and size set."""
        params = dict(options or {})
        params[PAGE_NUMBER] = str(page)
        params[PAGE_SIZE] = str(page_size)
        return params

    async def fetch_page(
        self,
        endpoint: str,
        page: int,
        options: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Fetch a single page of ``endpoint``."""
        return await self._get(endpoint, self.page_options(options, page, self.page_size(options)))

    async def fetch_all_pages(
        self,
        endpoint: str,
        options: Mapping[str, str] | None = None,
        start: int = 1,
    ) -> list[asyncio.Future[httpx.Response]]:
        """Fetch page ``start`` and schedule every following page.

        Returns:
            Futures in page order; the first is already resolved. Without
            an X-Total header the list holds only the first page.
        """
        page_size = self.page_size(options)
        first = await self._get(endpoint, self.page_options(options, start, page_size))

        first_page: asyncio.Future[httpx.Response] = asyncio.get_running_loop().create_future()
        first_page.set_result(first)
        pages = [first_page]

        total_header = first.headers.get(HEADER_TOTAL)
        if total_header is None:
            return pages
        try:
            total_items = int(total_header)
        except ValueError:
            logger.warning("Ignoring invalid {} header on {}: {!r}", HEADER_TOTAL, endpoint, total_header)
            return pages

        total_pages = math.ceil(total_items / page_size)
        for number in range(start + 1, total_pages + 1):
            pages.append(
                asyncio.ensure_future(self._get(endpoint, self.page_options(options, number, page_size)))
            )

        logger.debug(
            "Scheduled {} pages of {} ({} items, {} per page)",
            len(pages),
            endpoint,
            total_items,
            page_size,
        )
        return pages
