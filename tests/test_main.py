import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config import config
from main import EXIT_OK, EXIT_STARTUP_FAILURE, run_once
from models import DatabaseQueue


@pytest.mark.asyncio
async def test_missing_feed_list_exits_non_zero(tmp_path):
    code = await run_once(feeds_path=str(tmp_path / "missing.txt"), database_path=str(tmp_path / "test.db"))

    assert code == EXIT_STARTUP_FAILURE


@pytest.mark.asyncio
async def test_unopenable_database_exits_non_zero(tmp_path):
    feeds = tmp_path / "feeds.txt"
    feeds.write_text("https://feeds.example/rss\n")

    code = await run_once(feeds_path=str(feeds), database_path=str(tmp_path / "no-such-dir" / "test.db"))

    assert code == EXIT_STARTUP_FAILURE


@pytest.mark.asyncio
async def test_feed_failures_do_not_change_exit_code(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "REPORT_INTERVAL_SECONDS", 3600)
    monkeypatch.setattr(config, "SCRAPE_ARTICLES", False)

    async def feed(request):
        return web.Response(
            text='<rss version="2.0"><channel><title>t</title>'
                 '<item><link>https://news.example/a</link></item></channel></rss>',
            content_type="application/rss+xml",
        )

    async def broken(request):
        return web.Response(body=b"not a feed {{{", content_type="text/plain")

    app = web.Application()
    app.router.add_get("/rss", feed)
    app.router.add_get("/broken", broken)
    server = TestServer(app)
    await server.start_server()
    feeds = tmp_path / "feeds.txt"
    feeds.write_text(f"{server.make_url('/broken')}\n{server.make_url('/rss')}\n")
    db_path = str(tmp_path / "test.db")
    try:
        code = await run_once(feeds_path=str(feeds), skip=0, database_path=db_path)
    finally:
        await server.close()

    assert code == EXIT_OK
    db = DatabaseQueue(db_path)
    await db.start()
    try:
        assert await db.execute('get_existing_urls') == {"https://news.example/a"}
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_skip_resumes_past_offset(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "REPORT_INTERVAL_SECONDS", 3600)
    monkeypatch.setattr(config, "SCRAPE_ARTICLES", False)
    feeds = tmp_path / "feeds.txt"
    feeds.write_text("http://127.0.0.1:9/unreachable\n")

    code = await run_once(feeds_path=str(feeds), skip=1, database_path=str(tmp_path / "test.db"))

    assert code == EXIT_OK
