#!/usr/bin/env python3
"""
RSS/Atom feed fetcher and parser.

Downloads one feed endpoint with aiohttp and turns it into an ordered list of
candidate entries using feedparser. Parsing runs in a thread pool so large
feeds never stall the event loop.
"""

from asyncio import get_running_loop, TimeoutError
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, List, Optional

import feedparser
from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import NetworkError, ParseError
from telemetry import trace_span
from utils import RetryHelper, normalize_date

logger = get_logger("fetcher")

# HTTP status codes
HTTP_OK = 200
HTTP_MULTIPLE_CHOICES = 300

DATE_FIELDS = ('published', 'updated', 'created', 'issued', 'date')


@dataclass(frozen=True)
class CandidateEntry:
    """One item from a feed: its link plus optional metadata."""

    link: str
    title: Optional[str] = None
    published: Optional[str] = None


def is_success(status: int) -> bool:
    """True for any 2xx status."""
    return HTTP_OK <= status < HTTP_MULTIPLE_CHOICES


def request_headers() -> dict:
    """Headers sent with every feed and article request."""
    return {
        'User-Agent': config.USER_AGENT,
        'Accept-Encoding': 'gzip, deflate',
    }


def format_client_error(error: Exception) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class FeedFetcher:
    def __init__(self, executor: Optional[ThreadPoolExecutor] = None,
                 retry_helper: Optional[RetryHelper] = None) -> None:
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor()
        self.retry_helper = retry_helper or RetryHelper(max_retries=config.MAX_RETRIES,
                                                        base_delay=config.RETRY_DELAY_BASE)
        self.timeout = ClientTimeout(total=config.HTTP_TIMEOUT)

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, endpoint, session: {"feed.url": endpoint},
    )
    async def fetch(self, endpoint: str, session: ClientSession) -> List[CandidateEntry]:
        """Fetch and parse one feed.

        A non-success HTTP status is not an error: the feed is treated as
        currently empty and an empty list is returned.

        Raises:
            NetworkError: the request failed after all retries.
            ParseError: the body is not a usable feed.
        """
        content = await self._fetch_feed_content(endpoint, session)
        if not content:
            return []
        return await self.run_in_executor(self.parse_feed, content, endpoint)

    async def _fetch_feed_content(self, endpoint: str, session: ClientSession) -> Optional[bytes]:
        """GET the feed body, retrying transport failures with backoff."""
        max_retries = self.retry_helper.max_retries
        for attempt in range(max_retries + 1):
            try:
                async with session.get(
                    endpoint,
                    headers=request_headers(),
                    timeout=self.timeout,
                    max_redirects=config.MAX_REDIRECTS,
                ) as response:
                    if not is_success(response.status):
                        logger.warning(f"Feed {endpoint} returned HTTP {response.status}; treating as empty")
                        return None
                    return await response.read()

            except TimeoutError as e:
                detail = f"timed out after {config.HTTP_TIMEOUT}s"
                error = e
            except ClientError as e:
                detail = format_client_error(e)
                error = e

            if attempt < max_retries:
                logger.warning(f"Retry {attempt + 1}/{max_retries} for {endpoint} due to error: {detail}")
                await self.retry_helper.sleep_for_attempt(attempt)
                continue

            raise NetworkError(f"Failed to fetch {endpoint}: {detail}",
                               details={"endpoint": endpoint, "attempts": attempt + 1}) from error

    def parse_feed(self, content: bytes, endpoint: str = "") -> List[CandidateEntry]:
        """Parse a feed body into candidate entries (runs in the executor).

        Raises:
            ParseError: the body is malformed and yields no entries.
        """
        feed = feedparser.parse(content, sanitize_html=False, resolve_relative_uris=True)
        entries = feed.get('entries') or []

        if feed.get('bozo'):
            problem = feed.get('bozo_exception')
            if not entries:
                raise ParseError(f"Malformed feed {endpoint}: {problem}", details={"endpoint": endpoint})
            logger.warning(f"Feed parsing warning for {endpoint}: {problem}")

        candidates = []
        for entry in entries:
            link = self._entry_link(entry)
            if not link:
                logger.debug(f"Skipping entry without link in {endpoint}")
                continue
            title = (entry.get('title') or '').strip() or None
            candidates.append(CandidateEntry(link=link, title=title, published=self._entry_published(entry)))

        logger.debug(f"Parsed {len(candidates)} entries from {endpoint} ({feed.get('version') or 'unknown format'})")
        return candidates

    def _entry_link(self, entry) -> Optional[str]:
        """Use the entry's link, else the first href among its links."""
        link = (entry.get('link') or '').strip()
        if link:
            return link
        for candidate in entry.get('links') or []:
            href = (candidate.get('href') or '').strip()
            if href:
                return href
        return None

    def _entry_published(self, entry) -> Optional[str]:
        """Best-effort publish date in the stored rendering."""
        for field in DATE_FIELDS:
            value: Any = entry.get(f"{field}_parsed")
            normalized = normalize_date(value) if value else None
            if normalized:
                return normalized
            normalized = normalize_date(entry.get(field))
            if normalized:
                return normalized
        return None

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in the thread pool executor."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def close(self) -> None:
        """Shut down the executor if this fetcher created it."""
        if self._owns_executor:
            self.executor.shutdown(wait=False)
