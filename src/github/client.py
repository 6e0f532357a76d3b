"""GitHub API client with authentication, rate limiting, and pagination.

Besides the generic request helpers, the client implements the one call the
sync engine needs: ``fetch_project``, which walks a project's pull request
and issue listings, hydrates each listed item with its comments, reviews and
status checks, and returns the whole snapshot at once. Any failure part-way
through discards everything fetched so far.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urljoin

import aiohttp

from ..models.enums import FetchMode, ItemKind
from .auth import AuthProvider
from .exceptions import (
    AuthError,
    GitHubConnectionError,
    GitHubError,
    GitHubNotFoundError,
    GitHubServerError,
    GitHubTimeoutError,
    GitHubValidationError,
    NetworkError,
    RateLimitedError,
)
from .pagination import AsyncPaginator, PageCollection, PaginatedResponse
from .rate_limiting import RateLimitManager

logger = logging.getLogger(__name__)


@dataclass
class GitHubClientConfig:
    """Configuration for GitHub client."""

    base_url: str = "https://api.github.com"
    timeout: int = 30
    max_retries: int = 0
    retry_backoff_factor: float = 2.0
    rate_limit_buffer: int = 0
    user_agent: str = "Repo-Watch-Sync/1.0"
    max_concurrent_requests: int = 10
    per_page: int = 100
    max_pages: int = 10


@dataclass
class FetchResult:
    """Snapshot of one project's items as returned by the remote API."""

    items: list[dict[str, Any]]
    new_cursor: str | None
    rate_limit_remaining: int | None
    rate_limit_reset_at: datetime | None
    mode: FetchMode = FetchMode.INCREMENTAL
    complete: bool = False
    listed_kinds: frozenset[ItemKind] = field(default_factory=frozenset)
    pages_fetched: int = 0


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GitHubClient:
    """Async GitHub API client."""

    def __init__(
        self,
        auth: AuthProvider,
        config: GitHubClientConfig | None = None,
        rate_limiter: RateLimitManager | None = None,
    ) -> None:
        """Initialize GitHub client.

        Args:
            auth: Authentication provider
            config: Client configuration
            rate_limiter: Shared quota tracker for the credential
        """
        self.auth = auth
        self.config = config or GitHubClientConfig()
        self.rate_limiter = rate_limiter or RateLimitManager(
            buffer=self.config.rate_limit_buffer
        )

        # HTTP session will be initialized on first use
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._request_semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)

    async def __aenter__(self) -> "GitHubClient":
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is initialized."""
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    timeout = aiohttp.ClientTimeout(total=self.config.timeout)
                    self._session = aiohttp.ClientSession(
                        timeout=timeout,
                        headers={
                            "User-Agent": self.config.user_agent,
                            "Accept": "application/vnd.github+json",
                        },
                    )

    async def close(self) -> None:
        """Close HTTP session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _generate_correlation_id(self) -> str:
        """Generate correlation ID for request tracking."""
        return str(uuid.uuid4())[:8]

    async def _make_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> tuple[Any, dict[str, str]]:
        """Make HTTP request with retry logic and error handling.

        Args:
            method: HTTP method
            url: Request URL
            params: Query parameters
            correlation_id: Request correlation ID

        Returns:
            Decoded JSON body and response headers

        Raises:
            GitHubError: Various GitHub API errors
        """
        if not correlation_id:
            correlation_id = self._generate_correlation_id()

        self.rate_limiter.check_rate_limit()

        auth_token = await self.auth.get_token()
        request_headers = auth_token.to_header()

        await self._ensure_session()
        if not self._session:
            raise GitHubConnectionError("Failed to initialize HTTP session")

        last_exception: GitHubError | None = None
        for attempt in range(self.config.max_retries + 1):
            try:
                async with self._request_semaphore:
                    start_time = time.time()

                    logger.debug(
                        f"GitHub API request [{correlation_id}] {method} {url} "
                        f"(attempt {attempt + 1})"
                    )

                    async with self._session.request(
                        method, url, params=params, headers=request_headers
                    ) as response:
                        request_time = time.time() - start_time
                        response_headers = dict(response.headers)

                        self.rate_limiter.update_rate_limit(response_headers)

                        logger.debug(
                            f"GitHub API response [{correlation_id}] "
                            f"{response.status} in {request_time:.2f}s"
                        )

                        if response.status in (200, 201):
                            return await response.json(), response_headers
                        if response.status == 204:
                            return None, response_headers

                        await self._handle_error_response(response, correlation_id)

            except NetworkError as e:
                last_exception = e

            except TimeoutError:
                last_exception = GitHubTimeoutError(
                    f"Request timeout for {method} {url}"
                )

            except aiohttp.ClientError as e:
                last_exception = GitHubConnectionError(
                    f"Connection error for {method} {url}: {e}"
                )

            if attempt < self.config.max_retries:
                backoff_time = self.config.retry_backoff_factor**attempt
                logger.warning(
                    f"Request [{correlation_id}] failed (attempt {attempt + 1}), "
                    f"retrying in {backoff_time:.1f}s: {last_exception}"
                )
                await asyncio.sleep(backoff_time)

        if last_exception:
            raise last_exception
        raise GitHubError(f"Request failed after {self.config.max_retries} retries")

    async def _handle_error_response(
        self, response: aiohttp.ClientResponse, correlation_id: str
    ) -> None:
        """Handle error responses from GitHub API.

        Args:
            response: HTTP response
            correlation_id: Request correlation ID

        Raises:
            GitHubError: Appropriate error based on status code
        """
        try:
            error_data = await response.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError):
            error_data = {"message": await response.text()}
        if not isinstance(error_data, dict):
            error_data = {"message": str(error_data)}

        error_message = error_data.get("message", f"HTTP {response.status}")

        logger.warning(
            f"GitHub API error [{correlation_id}] {response.status}: {error_message}"
        )

        remaining = response.headers.get("X-RateLimit-Remaining")
        is_rate_limited = response.status == 429 or (
            response.status == 403
            and (remaining == "0" or "rate limit" in error_message.lower())
        )

        if response.status == 401:
            raise AuthError(error_message, response.status, error_data)
        elif is_rate_limited:
            reset_header = response.headers.get("X-RateLimit-Reset")
            reset_time = int(reset_header) if reset_header else None
            limit = int(response.headers.get("X-RateLimit-Limit", "0"))
            self.rate_limiter.record_exhausted(reset_time, limit)
            raise RateLimitedError(
                error_message,
                reset_time=reset_time,
                remaining=int(remaining or 0),
                limit=limit,
            )
        elif response.status == 403:
            raise AuthError(error_message, response.status, error_data)
        elif response.status == 404:
            raise GitHubNotFoundError(error_message, response.status, error_data)
        elif response.status == 422:
            raise GitHubValidationError(error_message, response.status, error_data)
        elif 500 <= response.status < 600:
            raise GitHubServerError(error_message, response.status, error_data)
        else:
            raise GitHubError(error_message, response.status, error_data)

    def _url(self, path: str) -> str:
        return urljoin(self.config.base_url.rstrip("/") + "/", path.lstrip("/"))

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request to GitHub API.

        Args:
            path: API path (e.g., '/repos/owner/repo/pulls')
            params: Query parameters

        Returns:
            JSON response data
        """
        data, _ = await self._make_request("GET", self._url(path), params)
        return data

    async def _fetch_paginated(
        self, url: str, params: dict[str, Any] | None = None
    ) -> PaginatedResponse:
        """Fetch paginated response (used by AsyncPaginator)."""
        data, headers = await self._make_request("GET", url, params)
        return PaginatedResponse(data or [], headers, url)

    def paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
        stop_when: Any = None,
    ) -> AsyncPaginator:
        """Create async paginator for GitHub API endpoint.

        Args:
            path: API path
            params: Query parameters
            max_pages: Maximum pages to fetch, defaults to the configured ceiling
            stop_when: Predicate ending the walk at the first matching item

        Returns:
            AsyncPaginator for iterating through results
        """
        return AsyncPaginator(
            client=self,
            initial_url=self._url(path),
            params=params,
            per_page=self.config.per_page,
            max_pages=max_pages or self.config.max_pages,
            stop_when=stop_when,
        )

    async def get_user(self) -> dict[str, Any]:
        """Get authenticated user information."""
        data: dict[str, Any] = await self.get("/user")
        return data

    async def list_pulls(
        self, full_name: str, state: str, since: datetime | None = None
    ) -> PageCollection:
        """List pull requests, newest update first.

        The pulls endpoint has no ``since`` filter, so the walk stops at the
        first entry last updated before ``since``.
        """
        stop_when = None
        if since is not None:

            def stop_when(raw: dict[str, Any]) -> bool:
                updated_at = _parse_timestamp(raw.get("updated_at"))
                return updated_at is not None and updated_at < since

        return await self.paginate(
            f"/repos/{full_name}/pulls",
            params={"state": state, "sort": "updated", "direction": "desc"},
            stop_when=stop_when,
        ).collect_all()

    async def list_issues(
        self, full_name: str, state: str, since: datetime | None = None
    ) -> PageCollection:
        """List issues (pull requests excluded), newest update first."""
        params: dict[str, Any] = {
            "state": state,
            "sort": "updated",
            "direction": "desc",
        }
        if since is not None:
            params["since"] = since.isoformat().replace("+00:00", "Z")

        collection = await self.paginate(
            f"/repos/{full_name}/issues", params=params
        ).collect_all()
        collection.items = [
            raw for raw in collection.items if "pull_request" not in raw
        ]
        return collection

    async def list_issue_comments(
        self, full_name: str, number: int
    ) -> list[dict[str, Any]]:
        """List conversation comments of a pull request or issue."""
        collection = await self.paginate(
            f"/repos/{full_name}/issues/{number}/comments"
        ).collect_all()
        return collection.items

    async def list_reviews(self, full_name: str, number: int) -> list[dict[str, Any]]:
        """List reviews of a pull request."""
        collection = await self.paginate(
            f"/repos/{full_name}/pulls/{number}/reviews"
        ).collect_all()
        return collection.items

    async def get_combined_status(self, full_name: str, ref: str) -> dict[str, Any]:
        """Get the combined commit status for a ref."""
        data: dict[str, Any] = await self.get(
            f"/repos/{full_name}/commits/{ref}/status"
        )
        return data or {}

    async def fetch_project(
        self,
        full_name: str,
        cursor: str | None,
        mode: FetchMode,
        track_pull_requests: bool = True,
        track_issues: bool = True,
    ) -> FetchResult:
        """Fetch the current snapshot of a project's items.

        Args:
            full_name: Repository in ``owner/name`` form
            cursor: ISO timestamp of the newest update already applied
            mode: Complete listing of open items, or incremental since cursor
            track_pull_requests: Whether to list pull requests
            track_issues: Whether to list issues

        Returns:
            FetchResult with normalized item records

        Raises:
            NetworkError: Transient failure, including truncated pagination
            AuthError: Credential rejected or missing
            RateLimitedError: Quota exhausted
        """
        since = _parse_timestamp(cursor) if mode is FetchMode.INCREMENTAL else None
        state = "all" if since is not None else "open"

        records: list[dict[str, Any]] = []
        listed_kinds: set[ItemKind] = set()
        truncated = False
        pages = 0
        # Oldest update read from each listing cut short by the page ceiling
        unread_floor: list[str] = []

        if track_pull_requests:
            pulls = await self.list_pulls(full_name, state, since)
            records.extend(self._pull_record(raw) for raw in pulls.items)
            listed_kinds.add(ItemKind.PULL_REQUEST)
            truncated = truncated or pulls.truncated
            if pulls.truncated:
                unread_floor.extend(_oldest_update(pulls.items))
            pages += pulls.pages_fetched

        if track_issues:
            issues = await self.list_issues(full_name, state, since)
            records.extend(self._issue_record(raw) for raw in issues.items)
            listed_kinds.add(ItemKind.ISSUE)
            truncated = truncated or issues.truncated
            if issues.truncated:
                unread_floor.extend(_oldest_update(issues.items))
            pages += issues.pages_fetched

        await self._hydrate_records(full_name, records)

        new_cursor = cursor
        for record in records:
            updated_at = record.get("updated_at")
            if updated_at and (new_cursor is None or _is_later(updated_at, new_cursor)):
                new_cursor = updated_at

        if mode is FetchMode.INCREMENTAL and truncated:
            # Entries older than the oldest one read are still unfetched
            new_cursor = _clamp_cursor(cursor, new_cursor, unread_floor)

        logger.info(
            f"Fetched {len(records)} items for {full_name} "
            f"({mode.value}, {pages} listing page(s), truncated={truncated})"
        )

        return FetchResult(
            items=records,
            new_cursor=new_cursor,
            rate_limit_remaining=self.rate_limiter.remaining(),
            rate_limit_reset_at=self.rate_limiter.reset_at(),
            mode=mode,
            complete=mode is FetchMode.COMPLETE and not truncated,
            listed_kinds=frozenset(listed_kinds),
            pages_fetched=pages,
        )

    async def _hydrate_records(
        self, full_name: str, records: list[dict[str, Any]]
    ) -> None:
        tasks = [
            asyncio.create_task(self._hydrate_record(full_name, record))
            for record in records
        ]
        if not tasks:
            return
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _hydrate_record(self, full_name: str, record: dict[str, Any]) -> None:
        number = record.get("number")
        if number is None:
            return  # Malformed; the reconciler reports it

        record["comments"] = [
            {
                "id": str(raw.get("id")),
                "author": (raw.get("user") or {}).get("login"),
                "created_at": raw.get("created_at"),
                "body": raw.get("body") or "",
            }
            for raw in await self.list_issue_comments(full_name, number)
        ]

        if record["kind"] != ItemKind.PULL_REQUEST.value:
            return

        record["reviews"] = [
            {
                "id": str(raw.get("id")),
                "author": (raw.get("user") or {}).get("login"),
                "submitted_at": raw.get("submitted_at"),
                "state": raw.get("state"),
                "body": raw.get("body") or "",
            }
            for raw in await self.list_reviews(full_name, number)
        ]

        head_sha = record.get("head_sha")
        if head_sha:
            status = await self.get_combined_status(full_name, head_sha)
            record["status_checks"] = [
                {
                    "id": raw.get("context"),
                    "context": raw.get("context"),
                    "state": raw.get("state"),
                    "description": raw.get("description"),
                    "target_url": raw.get("target_url"),
                    "updated_at": raw.get("updated_at"),
                }
                for raw in status.get("statuses", [])
            ]

    @staticmethod
    def _base_record(raw: dict[str, Any], kind: ItemKind) -> dict[str, Any]:
        return {
            "remote_id": str(raw["id"]) if raw.get("id") is not None else None,
            "number": raw.get("number"),
            "kind": kind.value,
            "title": raw.get("title"),
            "author": (raw.get("user") or {}).get("login"),
            "state": raw.get("state"),
            "created_at": raw.get("created_at"),
            "updated_at": raw.get("updated_at"),
            "url": raw.get("html_url"),
            "labels": sorted(
                label.get("name", "") for label in raw.get("labels") or []
            ),
            "comments": [],
            "reviews": [],
            "status_checks": [],
        }

    def _pull_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        record = self._base_record(raw, ItemKind.PULL_REQUEST)
        if raw.get("merged_at"):
            record["state"] = "merged"
        record["draft"] = bool(raw.get("draft", False))
        record["head_sha"] = (raw.get("head") or {}).get("sha")
        record["requested_reviewers"] = sorted(
            reviewer.get("login", "")
            for reviewer in raw.get("requested_reviewers") or []
        )
        return record

    def _issue_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        record = self._base_record(raw, ItemKind.ISSUE)
        record["draft"] = False
        record["head_sha"] = None
        record["requested_reviewers"] = []
        return record


def _is_later(candidate: str, current: str) -> bool:
    candidate_dt = _parse_timestamp(candidate)
    current_dt = _parse_timestamp(current)
    if candidate_dt is None:
        return False
    return current_dt is None or candidate_dt > current_dt


def _oldest_update(items: list[dict[str, Any]]) -> list[str]:
    stamps = [raw["updated_at"] for raw in items if raw.get("updated_at")]
    if not stamps:
        return []
    oldest = stamps[0]
    for stamp in stamps[1:]:
        if _is_later(oldest, stamp):
            oldest = stamp
    return [oldest]


def _clamp_cursor(
    previous: str | None, newest: str | None, floors: list[str]
) -> str | None:
    """Cursor for a truncated incremental fetch.

    Nothing later than the oldest entry actually read may be skipped, so the
    cursor stops there, and never moves backwards past ``previous``.
    """
    if not floors:
        return previous
    cursor = floors[0]
    for floor in floors[1:]:
        if _is_later(cursor, floor):
            cursor = floor
    if previous is not None and not _is_later(cursor, previous):
        return previous
    if newest is not None and _is_later(cursor, newest):
        return newest
    return cursor
