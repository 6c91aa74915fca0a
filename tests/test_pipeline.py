import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from errors import NetworkError, PersistenceError, TaskFaulted
from fetcher import CandidateEntry
from metrics import Metrics
from models import DatabaseQueue
from pipeline import STATUS_FAILED, STATUS_FAULTED, STATUS_OK, FeedPipeline
from scraper import Article
from writer import PersistenceWriter


class Gauge:
    """Tracks how many callers are inside a section at once."""

    def __init__(self):
        self.active = 0
        self.peak = 0

    async def hold(self, seconds=0.01):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(seconds)
        finally:
            self.active -= 1


class FakeFetcher:
    def __init__(self, links_per_feed=3, failures=None):
        self.gauge = Gauge()
        self.links_per_feed = links_per_feed
        self.failures = failures or {}

    async def fetch(self, endpoint, session):
        await self.gauge.hold()
        if endpoint in self.failures:
            raise self.failures[endpoint]
        return [CandidateEntry(link=f"{endpoint}/item-{i}") for i in range(self.links_per_feed)]


class FakeScraper:
    def __init__(self, broken=()):
        self.gauge = Gauge()
        self.broken = set(broken)

    async def scrape(self, url, session, fallback_date=None):
        await self.gauge.hold()
        if url in self.broken:
            raise NetworkError(f"HTTP 404 fetching {url}")
        return Article(title="T", content="C", publish_date="2025-11-17 00:00:00 UTC",
                       top_image="", keywords="", url=url)


def _endpoints(count):
    return [f"https://feeds.example/{i}" for i in range(count)]


@pytest.mark.asyncio
async def test_feed_concurrency_bound(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    fetcher = FakeFetcher()
    pipeline = FeedPipeline(db, Metrics(), fetcher=fetcher, feed_concurrency=3, scrape_articles=False)
    try:
        result = await pipeline.run_pass(_endpoints(12))
    finally:
        pipeline.close()
        await db.stop()

    assert 1 < fetcher.gauge.peak <= 3
    assert result.succeeded == 12
    assert result.inserted == 36


@pytest.mark.asyncio
async def test_article_concurrency_bound(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    fetcher = FakeFetcher(links_per_feed=8)
    scraper = FakeScraper()
    pipeline = FeedPipeline(db, Metrics(), fetcher=fetcher, scraper=scraper,
                            feed_concurrency=1, article_concurrency=2, scrape_articles=True)
    try:
        result = await pipeline.run_pass(_endpoints(2))
        stored = await db.execute('count_articles')
    finally:
        pipeline.close()
        await db.stop()

    assert scraper.gauge.peak == 2
    assert result.inserted == 16
    assert stored == 16


@pytest.mark.asyncio
async def test_failures_are_isolated(tmp_path):
    endpoints = _endpoints(4)
    fetcher = FakeFetcher(failures={
        endpoints[1]: NetworkError("connection refused"),
        endpoints[2]: RuntimeError("bug in a parser"),
    })
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    metrics = Metrics()
    pipeline = FeedPipeline(db, metrics, fetcher=fetcher, feed_concurrency=4, scrape_articles=False)
    try:
        result = await pipeline.run_pass(endpoints)
    finally:
        pipeline.close()
        await db.stop()

    statuses = {outcome.endpoint: outcome.status for outcome in result.outcomes}
    assert statuses == {
        endpoints[0]: STATUS_OK,
        endpoints[1]: STATUS_FAILED,
        endpoints[2]: STATUS_FAULTED,
        endpoints[3]: STATUS_OK,
    }
    faulted = result.outcomes[2].error
    assert isinstance(faulted, TaskFaulted)
    assert isinstance(faulted.__cause__, RuntimeError)
    assert result.inserted == 6
    assert metrics.snapshot().feeds_processed == 4


@pytest.mark.asyncio
async def test_persistence_failure_only_fails_its_feed(tmp_path):
    endpoints = _endpoints(3)

    class FlakyWriter(PersistenceWriter):
        async def write_batch(self, records, label=""):
            if label == endpoints[1]:
                raise PersistenceError("disk I/O error")
            return await super().write_batch(records, label=label)

    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    pipeline = FeedPipeline(db, Metrics(), fetcher=FakeFetcher(), writer=FlakyWriter(db),
                            feed_concurrency=3, scrape_articles=False)
    try:
        result = await pipeline.run_pass(endpoints)
        stored = await db.execute('count_discovered')
    finally:
        pipeline.close()
        await db.stop()

    assert [outcome.status for outcome in result.outcomes] == [STATUS_OK, STATUS_FAILED, STATUS_OK]
    assert result.outcomes[1].error.kind == "persistence"
    assert stored == 6


@pytest.mark.asyncio
async def test_failed_scrapes_are_skipped(tmp_path):
    endpoint = "https://feeds.example/only"
    scraper = FakeScraper(broken={f"{endpoint}/item-1"})
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    pipeline = FeedPipeline(db, Metrics(), fetcher=FakeFetcher(), scraper=scraper, scrape_articles=True)
    try:
        result = await pipeline.run_pass([endpoint])
        urls = await db.execute('get_existing_urls')
    finally:
        pipeline.close()
        await db.stop()

    outcome = result.outcomes[0]
    assert outcome.status == STATUS_OK
    assert outcome.scrape_failures == 1
    assert outcome.inserted == 2
    assert urls == {f"{endpoint}/item-0", f"{endpoint}/item-2"}


@pytest.mark.asyncio
async def test_end_to_end_skips_known_urls(tmp_path):
    """A feed listing A, B and C with B already stored yields rows for A and C only."""
    base = "https://news.example"
    feed = f"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>News</title>
<item><title>A</title><link>{base}/a</link></item>
<item><title>B</title><link>{base}/b</link></item>
<item><title>C</title><link>{base}/c</link></item>
</channel></rss>"""

    async def serve_feed(request):
        return web.Response(text=feed, content_type="application/rss+xml")

    async def serve_broken(request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get("/rss", serve_feed)
    app.router.add_get("/broken", serve_broken)
    server = TestServer(app)
    await server.start_server()

    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    await db.execute('insert_discovered', urls=[f"{base}/b"])
    metrics = Metrics()
    pipeline = FeedPipeline(db, metrics, scrape_articles=False)
    try:
        result = await pipeline.run_pass([str(server.make_url("/rss")), str(server.make_url("/broken"))])
        urls = await db.execute('get_existing_urls')
        rows = await db.execute('count_discovered')
    finally:
        pipeline.close()
        await db.stop()
        await server.close()

    assert urls == {f"{base}/a", f"{base}/b", f"{base}/c"}
    assert rows == 3
    snap = metrics.snapshot()
    assert snap.already_seen == 1
    assert snap.total_found == 2
    assert snap.per_hour == 2
    assert result.failed == 0
    assert result.outcomes[1].found == 0


@pytest.mark.asyncio
async def test_second_pass_finds_nothing_new(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    metrics = Metrics()
    pipeline = FeedPipeline(db, metrics, fetcher=FakeFetcher(), scrape_articles=False)
    try:
        first = await pipeline.run_pass(_endpoints(2))
        second = await pipeline.run_pass(_endpoints(2))
    finally:
        pipeline.close()
        await db.stop()

    assert first.inserted == 6
    assert second.inserted == 0
    assert metrics.already_seen == 6
