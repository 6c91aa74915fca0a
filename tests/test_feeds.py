import pytest

from errors import SourceUnavailable
from feeds import load_feed_endpoints


def _write(tmp_path, text, name="feeds.txt"):
    feed_list = tmp_path / name
    feed_list.write_text(text, encoding="utf-8")
    return feed_list


def test_loads_endpoints_in_order(tmp_path):
    feed_list = _write(tmp_path, "https://a.example/rss\nhttps://b.example/atom\nhttps://c.example/feed\n")

    assert load_feed_endpoints(feed_list) == [
        "https://a.example/rss",
        "https://b.example/atom",
        "https://c.example/feed",
    ]


def test_skip_drops_leading_entries(tmp_path):
    feed_list = _write(tmp_path, "https://a.example/rss\nhttps://b.example/atom\nhttps://c.example/feed\n")

    assert load_feed_endpoints(str(feed_list), skip=2) == ["https://c.example/feed"]


def test_skip_past_end_returns_empty(tmp_path):
    feed_list = _write(tmp_path, "https://a.example/rss\n")

    assert load_feed_endpoints(feed_list, skip=5) == []


def test_negative_skip_rejected(tmp_path):
    feed_list = _write(tmp_path, "https://a.example/rss\n")

    with pytest.raises(ValueError):
        load_feed_endpoints(feed_list, skip=-1)


def test_trailing_blank_lines_tolerated(tmp_path):
    feed_list = _write(tmp_path, "https://a.example/rss\nhttps://b.example/atom\n\n\n")

    assert load_feed_endpoints(feed_list) == ["https://a.example/rss", "https://b.example/atom"]


def test_interior_blank_line_is_fatal(tmp_path):
    feed_list = _write(tmp_path, "https://a.example/rss\n\nhttps://b.example/atom\n")

    with pytest.raises(SourceUnavailable) as excinfo:
        load_feed_endpoints(feed_list)

    assert excinfo.value.details["line"] == 2


def test_missing_file_is_source_unavailable(tmp_path):
    with pytest.raises(SourceUnavailable):
        load_feed_endpoints(tmp_path / "nope.txt")


def test_invalid_utf8_is_source_unavailable(tmp_path):
    feed_list = tmp_path / "feeds.txt"
    feed_list.write_bytes(b"https://a.example/rss\n\xff\xfe\xfa\n")

    with pytest.raises(SourceUnavailable):
        load_feed_endpoints(feed_list)


def test_byte_order_mark_is_stripped(tmp_path):
    feed_list = tmp_path / "feeds.txt"
    feed_list.write_bytes("https://a.example/rss\nhttps://b.example/atom\n".encode("utf-8-sig"))

    assert load_feed_endpoints(feed_list) == ["https://a.example/rss", "https://b.example/atom"]
