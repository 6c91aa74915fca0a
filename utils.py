#!/usr/bin/env python3
"""
Utility classes and functions shared by the fetcher, scraper and pipeline.

Includes retry/backoff, URL validation, HTML-to-plaintext conversion and the
date normalisation used for both feed entries and scraped articles.
"""

from asyncio import sleep
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from time import struct_time
from typing import Any, Optional
from urllib.parse import urlparse
import calendar
import re
import textwrap

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from config import get_logger

logger = get_logger("utils")

# Rendering used for every stored publish date
DATE_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
EPOCH_SENTINEL = datetime.fromtimestamp(0, tz=timezone.utc).strftime(DATE_FORMAT)

_BLOCK_TAGS = [
    "p", "div", "section", "article", "li", "ul", "ol", "blockquote", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6", "tr", "table", "figure", "figcaption",
]
_DROP_TAGS = [
    "script", "style", "iframe", "form", "object", "embed", "noscript",
    "frame", "frameset", "applet", "meta", "base", "link", "svg", "button",
]


class RetryHelper:
    """Helper class for implementing retry logic with exponential backoff."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        """Initialize the retry helper.

        Args:
            max_retries: Maximum number of retry attempts after the first try
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Maximum delay in seconds between retries
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given (0-based) retry attempt."""
        delay = self.base_delay * (2 ** attempt)
        return min(delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay for the given attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def is_absolute_url(url: Any) -> bool:
    """Return True if ``url`` is an absolute http(s) URL with a host."""
    if not url or not isinstance(url, str):
        return False
    candidate = url.strip()
    if not candidate or any(ch.isspace() for ch in candidate):
        return False
    try:
        parsed = urlparse(candidate)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate a string to a maximum length, adding a suffix if truncated.

    Args:
        text: The text to potentially truncate
        max_length: Maximum allowed length (including suffix)
        suffix: Suffix to add when truncating

    Returns:
        The original text or truncated version with suffix
    """
    if not text or len(text) <= max_length:
        return text

    if len(suffix) >= max_length:
        return text[:max_length]

    return text[:max_length - len(suffix)] + suffix


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string (e.g. "1h 23m 45s")."""
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:  # Always show seconds if nothing else
        parts.append(f"{secs}s")

    return " ".join(parts)


def html_to_plaintext(html_content: str, width: int = 80, max_length: Optional[int] = None) -> str:
    """Convert an HTML fragment into wrapped plaintext.

    Block elements become paragraphs separated by a blank line, whitespace
    inside a paragraph is collapsed, and each paragraph is wrapped at
    ``width`` columns. The result is cut to ``max_length`` characters.
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
        tag.append("\n")

    paragraphs = []
    for chunk in soup.get_text().split("\n"):
        line = re.sub(r"\s+", " ", chunk).strip()
        if line:
            paragraphs.append(textwrap.fill(line, width=width, break_long_words=False, break_on_hyphens=False))

    text = "\n\n".join(paragraphs)
    if max_length is not None:
        text = truncate_string(text, max_length)
    return text


def format_date(dt: datetime) -> str:
    """Render a datetime in the stored UTC form (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(DATE_FORMAT)


def normalize_date(value: Any) -> Optional[str]:
    """Normalise assorted date representations to the stored UTC rendering.

    Accepts datetimes, ``time.struct_time`` values (as produced by feedparser's
    ``*_parsed`` fields, always UTC), ISO-8601 strings and RFC 822 strings.
    Returns None when nothing usable can be parsed.
    """
    if value in (None, ""):
        return None

    if isinstance(value, datetime):
        return format_date(value)

    if isinstance(value, (struct_time, tuple)):
        try:
            return format_date(datetime.fromtimestamp(calendar.timegm(tuple(value)[:9]), tz=timezone.utc))
        except (OverflowError, ValueError, OSError, TypeError):
            return None

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return format_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        dt = parsedate_to_datetime(text)
        if dt:
            return format_date(dt)
    except (TypeError, ValueError, OverflowError):
        pass

    try:
        # Long tail: "November 17, 2025 10:00 UTC", "2025/11/17 10:00", ...
        return format_date(date_parser.parse(text))
    except (ValueError, OverflowError):
        pass

    logger.debug(f"Unable to parse date '{text}'")
    return None
