#!/usr/bin/env python3
"""
Idempotent batch persistence for one feed's output.
"""

from typing import Sequence, Union

from config import get_logger
from models import DatabaseQueue
from scraper import Article
from telemetry import trace_span

logger = get_logger("writer")

Record = Union[str, Article]


class PersistenceWriter:
    """Writes a feed's new URLs or Articles as a single batch.

    Rows whose URL is already stored are skipped silently, so a URL that a
    sibling feed persisted a moment earlier is a no-op rather than an error.
    """

    def __init__(self, db: DatabaseQueue):
        self.db = db

    @trace_span(
        "write_batch",
        tracer_name="writer",
        attr_from_args=lambda self, records, label="": {"batch.size": len(records), "feed.url": label},
    )
    async def write_batch(self, records: Sequence[Record], label: str = "") -> int:
        """Insert ``records`` and return how many rows were actually new.

        Raises:
            PersistenceError: the batch failed and was rolled back.
            TypeError: the batch mixes URLs and Articles.
        """
        if not records:
            return 0

        if all(isinstance(record, Article) for record in records):
            inserted = await self.db.execute('insert_articles', articles=[record.as_row() for record in records])
        elif all(isinstance(record, str) for record in records):
            inserted = await self.db.execute('insert_discovered', urls=list(records))
        else:
            raise TypeError("A batch must contain only URLs or only Articles")

        skipped = len(records) - inserted
        if skipped:
            logger.debug(f"{label or 'batch'}: {skipped} of {len(records)} records were already stored")
        return inserted
