#!/usr/bin/env python3
"""
Feed list loading.

The feed list is a UTF-8 text file with one feed endpoint per line. Long
lists can be resumed past an offset with ``skip``.
"""

from pathlib import Path
from typing import List, Union

from config import get_logger
from errors import SourceUnavailable

logger = get_logger("feeds")


def load_feed_endpoints(source: Union[str, Path], skip: int = 0) -> List[str]:
    """Read feed endpoints from ``source``, dropping the first ``skip`` entries.

    Trailing blank lines are tolerated; a blank line anywhere else means the
    list is damaged and the load fails.

    Raises:
        SourceUnavailable: the file is missing, unreadable, not UTF-8, or
            contains an interior blank line.
        ValueError: ``skip`` is negative.
    """
    if skip < 0:
        raise ValueError(f"skip must be >= 0, got {skip}")

    feed_path = Path(source)
    try:
        raw = feed_path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise SourceUnavailable(f"Feed list {feed_path} is not valid UTF-8: {e}",
                                details={"path": str(feed_path)}) from e
    except OSError as e:
        raise SourceUnavailable(f"Cannot read feed list {feed_path}: {e}",
                                details={"path": str(feed_path)}) from e

    lines = [line.strip() for line in raw.splitlines()]
    while lines and not lines[-1]:
        lines.pop()

    for number, line in enumerate(lines, start=1):
        if not line:
            raise SourceUnavailable(f"Blank line {number} in feed list {feed_path}",
                                    details={"path": str(feed_path), "line": number})

    if skip > len(lines):
        logger.warning(f"Skip offset {skip} is past the end of {feed_path} ({len(lines)} feeds)")

    endpoints = lines[skip:]
    logger.info(f"Loaded {len(endpoints)} feed endpoints from {feed_path} (skipped {min(skip, len(lines))})")
    return endpoints
