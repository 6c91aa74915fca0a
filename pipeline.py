#!/usr/bin/env python3
"""
The fetch -> dedupe -> persist pipeline.

One processing pass loads the dedup snapshot once, then runs one task per
feed with at most FEED_CONCURRENCY feeds in flight. In scraping mode each
feed scrapes its new URLs with at most ARTICLE_CONCURRENCY pages in flight,
waits for all of them, and writes the surviving articles as one batch.

Every unit of work (a feed, an article) is wrapped so that its failure comes
back as an outcome value. Nothing a single feed or article does can cancel
or fail its siblings.
"""

from asyncio import Semaphore, Task, create_task, gather
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from aiohttp import ClientSession, TCPConnector

from config import config, get_logger
from dedup import SnapshotProvider, filter_new
from errors import FeedHoseError, TaskFaulted
from fetcher import FeedFetcher
from metrics import Metrics
from models import DatabaseQueue
from scraper import Article, ContentScraper
from telemetry import trace_span
from writer import PersistenceWriter

logger = get_logger("pipeline")

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_FAULTED = "faulted"


@dataclass
class TaskOutcome:
    """Result of one unit of work: a value, or the error it ended with."""

    label: str
    value: Any = None
    error: Optional[FeedHoseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FeedOutcome:
    endpoint: str
    status: str = STATUS_OK
    found: int = 0
    seen: int = 0
    inserted: int = 0
    scrape_failures: int = 0
    error: Optional[FeedHoseError] = None


@dataclass
class PassResult:
    outcomes: List[FeedOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == STATUS_OK)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def inserted(self) -> int:
        return sum(outcome.inserted for outcome in self.outcomes)


async def guarded(factory: Callable[[], Awaitable[Any]], label: str) -> TaskOutcome:
    """Await ``factory()`` and capture how it ended.

    Taxonomy errors are returned as they are; any other exception becomes a
    TaskFaulted chained to the original. Cancellation is not intercepted.
    """
    try:
        return TaskOutcome(label, value=await factory())
    except FeedHoseError as e:
        return TaskOutcome(label, error=e)
    except Exception as e:
        faulted = TaskFaulted(f"Unexpected {type(e).__name__} in {label}: {e}", details={"label": label})
        faulted.__cause__ = e
        return TaskOutcome(label, error=faulted)


async def run_bounded(semaphore: Semaphore, factory: Callable[[], Awaitable[Any]], label: str) -> TaskOutcome:
    """Run one unit under ``semaphore``; the permit is released on every exit path."""
    async with semaphore:
        return await guarded(factory, label)


async def spawn_bounded(semaphore: Semaphore, factory: Callable[[], Awaitable[Any]], label: str) -> Task:
    """Acquire a permit, then start the unit as a task that gives the permit back when done.

    The number of live tasks never exceeds the bound, however long the feed
    list. The permit is back before anything awaiting the task resumes; a
    task cancelled before it first runs returns it from its done callback.
    """
    await semaphore.acquire()
    released = False

    def _release(*_):
        nonlocal released
        if not released:
            released = True
            semaphore.release()

    async def _unit() -> TaskOutcome:
        try:
            return await guarded(factory, label)
        finally:
            _release()

    try:
        task = create_task(_unit())
    except BaseException:
        _release()
        raise
    task.add_done_callback(_release)
    return task


class FeedPipeline:
    """Runs processing passes over a list of feed endpoints."""

    def __init__(
        self,
        db: DatabaseQueue,
        metrics: Metrics,
        fetcher: Optional[FeedFetcher] = None,
        scraper: Optional[ContentScraper] = None,
        writer: Optional[PersistenceWriter] = None,
        feed_concurrency: Optional[int] = None,
        article_concurrency: Optional[int] = None,
        scrape_articles: Optional[bool] = None,
    ) -> None:
        self.db = db
        self.metrics = metrics
        self.executor = ThreadPoolExecutor(thread_name_prefix="feedhose")
        self.fetcher = fetcher or FeedFetcher(executor=self.executor)
        self.scraper = scraper or ContentScraper(executor=self.executor)
        self.writer = writer or PersistenceWriter(db)
        self.snapshot_provider = SnapshotProvider(db)
        self.feed_concurrency = feed_concurrency or config.FEED_CONCURRENCY
        self.article_concurrency = article_concurrency or config.ARTICLE_CONCURRENCY
        self.scrape_articles = config.SCRAPE_ARTICLES if scrape_articles is None else scrape_articles

    @trace_span(
        "pipeline.run_pass",
        tracer_name="pipeline",
        attr_from_args=lambda self, endpoints: {"pass.feeds": len(endpoints)},
    )
    async def run_pass(self, endpoints: Sequence[str]) -> PassResult:
        """Process every endpoint once.

        Raises:
            StoreUnavailable: the dedup snapshot could not be loaded.
        """
        snapshot = await self.snapshot_provider.load()
        self.metrics.set_feeds_total(len(endpoints))
        mode = "scrape" if self.scrape_articles else "discover"
        logger.info(
            f"Starting pass over {len(endpoints)} feeds (mode={mode}, "
            f"feeds in flight={self.feed_concurrency}, articles per feed={self.article_concurrency})"
        )

        per_feed = self.article_concurrency if self.scrape_articles else 1
        connector = TCPConnector(limit=self.feed_concurrency * per_feed, ttl_dns_cache=300)
        async with ClientSession(connector=connector) as session:
            semaphore = Semaphore(self.feed_concurrency)
            tasks = []
            for endpoint in endpoints:
                tasks.append(await spawn_bounded(
                    semaphore,
                    partial(self.process_feed, endpoint, session, snapshot),
                    endpoint,
                ))
            task_outcomes = await gather(*tasks)

        result = PassResult([self._feed_outcome(outcome) for outcome in task_outcomes])
        logger.info(
            f"Pass complete: {result.succeeded} feeds ok, {result.failed} failed, "
            f"{result.inserted} new rows stored"
        )
        return result

    def _feed_outcome(self, outcome: TaskOutcome) -> FeedOutcome:
        self.metrics.increment_feeds_processed()
        if outcome.ok:
            return outcome.value

        error = outcome.error
        if isinstance(error, TaskFaulted):
            logger.error(f"Feed {outcome.label} faulted: {error}", exc_info=error.__cause__)
            status = STATUS_FAULTED
        else:
            logger.warning(f"Feed {outcome.label} failed ({error.kind}): {error}")
            status = STATUS_FAILED
        return FeedOutcome(outcome.label, status=status, error=error)

    @trace_span(
        "pipeline.process_feed",
        tracer_name="pipeline",
        attr_from_args=lambda self, endpoint, session, snapshot: {"feed.url": endpoint},
    )
    async def process_feed(self, endpoint: str, session: ClientSession, snapshot: Set[str]) -> FeedOutcome:
        """Fetch, filter and persist one feed.

        Raises:
            NetworkError, ParseError: the feed could not be read.
            PersistenceError: the feed's batch could not be written.
        """
        entries = await self.fetcher.fetch(endpoint, session)
        dedup = filter_new(entries, snapshot, label=endpoint)
        self.metrics.increment_already_seen(dedup.seen_count)
        outcome = FeedOutcome(endpoint, seen=dedup.seen_count)

        if not dedup.new:
            logger.debug(f"{endpoint}: {len(entries)} entries, nothing new")
            return outcome

        records: List[Any] = list(dedup.new)
        if self.scrape_articles:
            dates = {}
            for entry in entries:
                dates.setdefault(entry.link.strip(), entry.published)
            articles = await self.scrape_all(dedup.new, session, dates, label=endpoint)
            outcome.scrape_failures = len(dedup.new) - len(articles)
            records = articles

        outcome.found = len(records)
        outcome.inserted = await self.writer.write_batch(records, label=endpoint)
        self.metrics.increment_found(outcome.inserted)

        logger.info(
            f"{endpoint}: {len(entries)} entries, {len(dedup.new)} new, {dedup.seen_count} seen, "
            f"{outcome.inserted} stored"
            + (f", {outcome.scrape_failures} scrape failures" if outcome.scrape_failures else "")
        )
        return outcome

    async def scrape_all(self, urls: Sequence[str], session: ClientSession,
                         dates: Optional[Dict[str, Optional[str]]] = None, label: str = "") -> List[Article]:
        """Scrape ``urls`` with bounded concurrency, dropping the ones that fail."""
        dates = dates or {}
        semaphore = Semaphore(self.article_concurrency)
        outcomes = await gather(*(
            run_bounded(semaphore, partial(self.scraper.scrape, url, session, dates.get(url)), url)
            for url in urls
        ))

        articles = []
        for outcome in outcomes:
            if outcome.ok:
                articles.append(outcome.value)
            elif isinstance(outcome.error, TaskFaulted):
                logger.error(f"Scrape of {outcome.label} faulted: {outcome.error}", exc_info=outcome.error.__cause__)
            else:
                logger.warning(f"Skipping article {outcome.label} ({outcome.error.kind}): {outcome.error}")
        return articles

    def close(self) -> None:
        self.executor.shutdown(wait=False)
