#!/usr/bin/env python3
"""
Deduplication against the set of URLs already in storage.

The snapshot is read once per processing pass. Two feeds processed at the
same time can both see a URL as new; the idempotent batch insert in
models.py settles that race, so nothing here locks across feeds.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Set

from config import get_logger
from errors import PersistenceError, StoreUnavailable
from fetcher import CandidateEntry
from models import DatabaseQueue
from utils import is_absolute_url

logger = get_logger("dedup")


@dataclass
class DedupResult:
    new: List[str] = field(default_factory=list)
    seen_count: int = 0
    invalid_count: int = 0


class SnapshotProvider:
    """Loads the current set of known URLs from storage."""

    def __init__(self, db: DatabaseQueue):
        self.db = db

    async def load(self) -> Set[str]:
        """Return the union of all stored URLs.

        Raises:
            StoreUnavailable: storage could not be read.
        """
        try:
            snapshot = await self.db.execute('get_existing_urls')
        except PersistenceError as e:
            raise StoreUnavailable(f"Cannot load known URLs: {e}") from e
        logger.info(f"Loaded dedup snapshot with {len(snapshot)} known URLs")
        return snapshot


def filter_new(entries: Iterable[CandidateEntry], snapshot: Set[str], label: str = "") -> DedupResult:
    """Split a feed's entries into new URLs and a count of already-known ones.

    Links that are not absolute http(s) URLs are dropped with a warning and
    counted as invalid, never as new or seen. A link repeated inside the same
    feed is only returned once. Order is preserved.
    """
    result = DedupResult()
    emitted: Set[str] = set()

    for entry in entries:
        link = (entry.link or "").strip()
        if not is_absolute_url(link):
            logger.warning(f"Dropping invalid link {link!r}{' in ' + label if label else ''}")
            result.invalid_count += 1
            continue
        if link in snapshot:
            result.seen_count += 1
            continue
        if link in emitted:
            continue
        emitted.add(link)
        result.new.append(link)

    return result
