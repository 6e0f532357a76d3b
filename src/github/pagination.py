"""GitHub API pagination utilities."""

import logging
import re
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from .exceptions import NetworkError, PaginationError

logger = logging.getLogger(__name__)


class LinkHeader:
    """Parser for GitHub Link headers."""

    _LINK_PATTERN = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')

    def __init__(self, link_header: str | None = None):
        """Initialize Link header parser.

        Args:
            link_header: Raw Link header value from response
        """
        self.links: dict[str, str] = {}
        if link_header:
            self._parse(link_header)

    def _parse(self, link_header: str) -> None:
        # Link header format: <url>; rel="next", <url>; rel="last"
        for match in self._LINK_PATTERN.finditer(link_header):
            url, rel = match.groups()
            self.links[rel] = url

    @property
    def next_url(self) -> str | None:
        """Get URL for next page."""
        return self.links.get("next")

    @property
    def has_next(self) -> bool:
        """Check if there's a next page."""
        return "next" in self.links


class PaginatedResponse:
    """Wrapper for paginated GitHub API responses."""

    def __init__(
        self,
        data: list[dict[str, Any]],
        headers: dict[str, str],
        url: str,
    ):
        """Initialize paginated response.

        Args:
            data: Response data
            headers: Response headers
            url: Request URL
        """
        self.data = data
        self.headers = headers
        self.url = url
        self.link_header = LinkHeader(headers.get("Link"))

    @property
    def has_next_page(self) -> bool:
        """Check if there's a next page."""
        return self.link_header.has_next

    @property
    def next_page_url(self) -> str | None:
        """Get URL for next page."""
        return self.link_header.next_url

    @property
    def items(self) -> list[dict[str, Any]]:
        """Get items from current page."""
        return self.data if isinstance(self.data, list) else []


@dataclass
class PageCollection:
    """Items gathered from a paginated listing.

    ``truncated`` is set only when the page ceiling stopped the walk while the
    server still advertised more pages; such a listing is not complete.
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    truncated: bool = False


class AsyncPaginator:
    """Async iterator for paginated GitHub API responses."""

    def __init__(
        self,
        client: Any,  # Avoid circular import
        initial_url: str,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
        per_page: int = 100,
        stop_when: Callable[[dict[str, Any]], bool] | None = None,
    ):
        """Initialize async paginator.

        Args:
            client: GitHub client instance
            initial_url: Initial URL to fetch
            params: Query parameters
            max_pages: Maximum number of pages to fetch
            per_page: Items per page (max 100 for GitHub)
            stop_when: Predicate that ends the walk at the first matching item
        """
        self.client = client
        self.initial_url = initial_url
        self.params = dict(params or {})
        self.max_pages = max_pages
        self.per_page = min(per_page, 100)  # GitHub max is 100
        self.stop_when = stop_when

        self.params["per_page"] = self.per_page

        self._current_page = 0
        self._next_url: str | None = initial_url
        self._exhausted = False
        self._stopped = False

    @property
    def pages_fetched(self) -> int:
        """Number of pages retrieved so far."""
        return self._current_page

    @property
    def truncated(self) -> bool:
        """Whether the page ceiling cut the walk short."""
        return not self._exhausted and not self._stopped and self._next_url is not None

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        """Async iterator implementation."""
        while not self._exhausted and not self._stopped and self._next_url:
            if self.max_pages and self._current_page >= self.max_pages:
                logger.warning(
                    f"Page ceiling of {self.max_pages} reached for "
                    f"{self.initial_url}; listing is incomplete"
                )
                break

            response = await self._fetch_page(self._next_url)
            self._current_page += 1

            if response.has_next_page:
                self._next_url = response.next_page_url
            else:
                self._exhausted = True
                self._next_url = None

            for item in response.items:
                if self.stop_when is not None and self.stop_when(item):
                    self._stopped = True
                    self._next_url = None
                    break
                yield item

    async def _fetch_page(self, url: str) -> PaginatedResponse:
        # Link header URLs already carry the query string
        params = self.params if self._current_page == 0 else None
        result: PaginatedResponse = await self.client._fetch_paginated(url, params)
        return result

    async def collect_all(self) -> PageCollection:
        """Collect all items from all pages.

        A failure after at least one page has been retrieved discards the
        partial listing and surfaces as ``PaginationError``.

        Returns:
            PageCollection with the items and completeness information
        """
        items = []
        try:
            async for item in self:
                items.append(item)
        except NetworkError as e:
            if self._current_page == 0 or isinstance(e, PaginationError):
                raise
            raise PaginationError(
                f"Listing {self.initial_url} failed after "
                f"{self._current_page} page(s): {e}",
                pages_fetched=self._current_page,
            ) from e

        return PageCollection(
            items=items,
            pages_fetched=self._current_page,
            truncated=self.truncated,
        )
