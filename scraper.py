#!/usr/bin/env python3
"""
Article scraper.

Fetches an article page, lets readability pick out the primary article HTML,
and turns it into a bounded plaintext record. Missing metadata falls back to
fixed defaults; only a page with no article HTML at all is a failure.
"""

from asyncio import TimeoutError, get_running_loop
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from readability import Document

from config import config, get_logger
from errors import NetworkError, NoContent, ParseError
from fetcher import format_client_error, is_success, request_headers
from telemetry import trace_span
from utils import EPOCH_SENTINEL, html_to_plaintext, normalize_date

logger = get_logger("scraper")

NO_TITLE = "No title"
READABILITY_NO_TITLE = "[no-title]"

DATE_META = (
    ("property", "article:published_time"),
    ("property", "og:published_time"),
    ("name", "article:published_time"),
    ("itemprop", "datePublished"),
    ("name", "pubdate"),
    ("name", "publishdate"),
    ("name", "date"),
    ("name", "dc.date"),
    ("name", "DC.date.issued"),
)
IMAGE_META = (
    ("property", "og:image"),
    ("name", "twitter:image"),
    ("property", "twitter:image"),
)


@dataclass(frozen=True)
class Article:
    title: str
    content: str
    publish_date: str
    top_image: str
    keywords: str
    url: str

    def as_row(self) -> Dict[str, Any]:
        """Column mapping for the articles table."""
        row = asdict(self)
        row["article_text"] = row.pop("content")
        return row


def _meta_content(soup: BeautifulSoup, attr: str, value: str) -> Optional[str]:
    tag = soup.find("meta", attrs={attr: value})
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


class ContentScraper:
    def __init__(self, executor: Optional[ThreadPoolExecutor] = None) -> None:
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor()
        self.timeout = ClientTimeout(total=config.HTTP_TIMEOUT)

    @trace_span(
        "scrape_article",
        tracer_name="scraper",
        attr_from_args=lambda self, url, session, fallback_date=None: {"article.url": url},
    )
    async def scrape(self, url: str, session: ClientSession, fallback_date: Optional[str] = None) -> Article:
        """Fetch ``url`` and build an Article from it.

        Args:
            url: Article page URL
            session: Shared HTTP session
            fallback_date: Publish date from the feed entry, used when the page has none

        Raises:
            NetworkError: transport failure or non-success HTTP status.
            ParseError: the content extractor failed on the page.
            NoContent: the extractor found no article HTML.
        """
        html = await self._fetch_page(url, session)
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, self.extract_article, html, url, fallback_date)

    async def _fetch_page(self, url: str, session: ClientSession) -> str:
        try:
            async with session.get(url, headers=request_headers(), timeout=self.timeout,
                                   max_redirects=config.MAX_REDIRECTS) as response:
                if not is_success(response.status):
                    raise NetworkError(f"HTTP {response.status} fetching {url}",
                                       details={"url": url, "status": response.status})
                return await response.text(errors="replace")
        except TimeoutError as e:
            raise NetworkError(f"Timed out fetching {url}", details={"url": url}) from e
        except ClientError as e:
            raise NetworkError(f"Error fetching {url}: {format_client_error(e)}", details={"url": url}) from e

    def extract_article(self, html: str, url: str, fallback_date: Optional[str] = None) -> Article:
        """Build an Article from raw page HTML (runs in the executor)."""
        if not html or not html.strip():
            raise NoContent(f"Empty page at {url}", details={"url": url})

        try:
            document = Document(html, url=url)
            article_html = document.summary(html_partial=True)
            readable_title = document.short_title()
        except Exception as e:  # readability/lxml raise a variety of types on bad markup
            raise ParseError(f"Content extraction failed for {url}: {e}", details={"url": url}) from e

        content = html_to_plaintext(article_html, width=config.WRAP_WIDTH, max_length=config.MAX_ARTICLE_LENGTH)
        if not content:
            raise NoContent(f"No article content found at {url}", details={"url": url})

        page = BeautifulSoup(html, "html.parser")

        title = (readable_title or "").strip()
        if not title or title == READABILITY_NO_TITLE:
            title = _meta_content(page, "property", "og:title") or NO_TITLE

        return Article(
            title=title,
            content=content,
            publish_date=self._publish_date(page) or fallback_date or EPOCH_SENTINEL,
            top_image=self._first_meta(page, IMAGE_META) or "",
            keywords=_meta_content(page, "name", "keywords") or "",
            url=url,
        )

    def _publish_date(self, page: BeautifulSoup) -> Optional[str]:
        for attr, value in DATE_META:
            normalized = normalize_date(_meta_content(page, attr, value))
            if normalized:
                return normalized
        time_tag = page.find("time", attrs={"datetime": True})
        if time_tag is not None:
            return normalize_date(time_tag.get("datetime"))
        return None

    def _first_meta(self, page: BeautifulSoup, candidates) -> Optional[str]:
        for attr, value in candidates:
            found = _meta_content(page, attr, value)
            if found:
                return found
        return None

    def close(self) -> None:
        """Shut down the executor if this scraper created it."""
        if self._owns_executor:
            self.executor.shutdown(wait=False)
