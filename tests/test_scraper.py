import pytest
from aiohttp import ClientSession, web
from aiohttp.test_utils import TestServer

from config import config
from errors import NetworkError, NoContent
from scraper import NO_TITLE, ContentScraper
from utils import EPOCH_SENTINEL

BODY = """
<div id="content">
  <p>The quick brown fox jumps over the lazy dog while the committee watches,
  taking careful notes about the jump, the dog, and the general state of the
  meadow on a sunny afternoon in late autumn.</p>
  <p>Observers agreed that this was one of the more remarkable jumps of the
  season, and that the dog, for its part, remained entirely unbothered by the
  whole affair, as lazy dogs generally do.</p>
</div>
"""

FULL_PAGE = f"""<html>
<head>
  <title>Fox jumps dog</title>
  <meta property="article:published_time" content="2025-11-17T08:30:00+02:00">
  <meta property="og:image" content="https://example.com/fox.jpg">
  <meta name="keywords" content="fox, dog, jumping">
</head>
<body>{BODY}</body>
</html>"""

BARE_PAGE = f"<html><head></head><body>{BODY}</body></html>"


def test_extract_article_reads_metadata():
    scraper = ContentScraper()
    try:
        article = scraper.extract_article(FULL_PAGE, "https://example.com/fox")
    finally:
        scraper.close()

    assert article.url == "https://example.com/fox"
    assert article.title == "Fox jumps dog"
    assert article.publish_date == "2025-11-17 06:30:00 UTC"
    assert article.top_image == "https://example.com/fox.jpg"
    assert article.keywords == "fox, dog, jumping"
    assert "quick brown fox" in article.content
    assert "<p>" not in article.content


def test_extract_article_defaults_for_missing_metadata():
    scraper = ContentScraper()
    try:
        article = scraper.extract_article(BARE_PAGE, "https://example.com/bare")
    finally:
        scraper.close()

    assert article.title == NO_TITLE
    assert article.publish_date == EPOCH_SENTINEL
    assert article.top_image == ""
    assert article.keywords == ""
    assert article.content


def test_feed_date_used_when_page_has_none():
    scraper = ContentScraper()
    try:
        article = scraper.extract_article(BARE_PAGE, "https://example.com/bare", "2025-01-02 03:04:05 UTC")
    finally:
        scraper.close()

    assert article.publish_date == "2025-01-02 03:04:05 UTC"


def test_og_title_fallback():
    page = f'<html><head><meta property="og:title" content="From OpenGraph"></head><body>{BODY}</body></html>'
    scraper = ContentScraper()
    try:
        article = scraper.extract_article(page, "https://example.com/og")
    finally:
        scraper.close()

    assert article.title == "From OpenGraph"


def test_content_is_bounded_and_wrapped(monkeypatch):
    monkeypatch.setattr(config, "MAX_ARTICLE_LENGTH", 120)
    monkeypatch.setattr(config, "WRAP_WIDTH", 40)
    scraper = ContentScraper()
    try:
        article = scraper.extract_article(FULL_PAGE, "https://example.com/fox")
    finally:
        scraper.close()

    assert len(article.content) <= 120
    assert all(len(line) <= 40 for line in article.content.splitlines()[:-1])


@pytest.mark.parametrize("html", ["", "   \n  "])
def test_empty_page_is_no_content(html):
    scraper = ContentScraper()
    try:
        with pytest.raises(NoContent):
            scraper.extract_article(html, "https://example.com/empty")
    finally:
        scraper.close()


def test_article_row_mapping():
    scraper = ContentScraper()
    try:
        row = scraper.extract_article(FULL_PAGE, "https://example.com/fox").as_row()
    finally:
        scraper.close()

    assert set(row) == {"title", "article_text", "publish_date", "top_image", "keywords", "url"}


@pytest.mark.asyncio
async def test_scrape_over_http():
    async def page(request):
        return web.Response(text=FULL_PAGE, content_type="text/html")

    async def missing(request):
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/fox", page)
    app.router.add_get("/missing", missing)
    server = TestServer(app)
    await server.start_server()
    scraper = ContentScraper()
    try:
        async with ClientSession() as session:
            article = await scraper.scrape(str(server.make_url("/fox")), session)
            with pytest.raises(NetworkError):
                await scraper.scrape(str(server.make_url("/missing")), session)
    finally:
        scraper.close()
        await server.close()

    assert article.title == "Fox jumps dog"
    assert article.url.endswith("/fox")
