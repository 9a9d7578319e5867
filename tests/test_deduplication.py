"""Tests for result identity and deduplication."""

import pytest

from lanesearch.core.data_models import ResultItem
from lanesearch.core.deduplication import (
    ResultDeduplicator,
    canonical_url,
    deduplicate_results,
    saved_identity,
)


def _item(url, source_id="heye"):
    return ResultItem(canonical_url=url, title=url, source_id=source_id)


class TestCanonicalUrl:
    """Tests for canonical_url."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("HTTPS://WWW.Example.com/Path/", "https://www.example.com/Path"),
            ("https://example.com/a#frag", "https://example.com/a"),
            ("https://example.com/board?id=12&page=1", "https://example.com/board?id=12&page=1"),
            ("  https://example.com/a  ", "https://example.com/a"),
            ("not a url/", "not a url"),
            ("", ""),
        ],
    )
    def test_normalization(self, raw, expected):
        """Surface formatting is normalized, the query string is kept."""
        assert canonical_url(raw) == expected

    def test_path_case_preserved(self):
        """Paths are case sensitive on most hosts."""
        assert canonical_url("https://example.com/AbC") != canonical_url("https://example.com/abc")


class TestSavedIdentity:
    """Tests for saved_identity."""

    def test_youtube_variants_collapse(self):
        """Every YouTube link form of one video has the same identity."""
        keys = {
            saved_identity("https://www.youtube.com/watch?v=abc123"),
            saved_identity("https://youtu.be/abc123"),
            saved_identity("https://m.youtube.com/watch?v=abc123&t=10"),
            saved_identity("https://youtube.com/shorts/abc123"),
        }
        assert keys == {"youtube:abc123"}

    def test_twitter_and_x_collapse(self):
        """twitter.com and x.com status links are one tweet."""
        assert saved_identity("https://twitter.com/aespa/status/1234") == saved_identity(
            "https://x.com/someone_else/status/1234/photo/1"
        )

    def test_generic_url_drops_www_and_scheme(self):
        """Other links compare by host, path and query."""
        assert saved_identity("https://www.heye.kr/board/1/") == "heye.kr/board/1"
        assert saved_identity("http://heye.kr/board/1") == "heye.kr/board/1"

    def test_url_without_host(self):
        """Links without a host are compared as plain text."""
        assert saved_identity("heye.kr/board/1/") == "heye.kr/board/1"


class TestResultDeduplicator:
    """Tests for ResultDeduplicator."""

    def test_filters_known_urls(self):
        """Known URLs are dropped regardless of formatting."""
        dedup = ResultDeduplicator(["HTTPS://EXAMPLE.com/1/"])
        fresh = dedup.filter_new([_item("https://example.com/1"), _item("https://example.com/2")])
        assert [i.canonical_url for i in fresh] == ["https://example.com/2"]

    def test_drops_repeats_within_batch(self):
        """The same URL twice in one page is kept once, first occurrence wins."""
        first = _item("https://example.com/1")
        fresh = deduplicate_results([first, _item("https://example.com/2"), _item("https://example.com/1/")])
        assert len(fresh) == 2
        assert fresh[0].title == first.title

    def test_remembers_returned_urls(self):
        """URLs returned once are known for the next batch."""
        dedup = ResultDeduplicator()
        dedup.filter_new([_item("https://example.com/1")])
        assert "https://example.com/1/" in dedup
        assert dedup.filter_new([_item("https://example.com/1")]) == []

    def test_order_preserved(self):
        """Fresh items keep their upstream order."""
        urls = [f"https://example.com/{i}" for i in (5, 3, 9, 1)]
        fresh = deduplicate_results([_item(u) for u in urls])
        assert [i.canonical_url for i in fresh] == urls

    def test_add(self):
        """URLs can be registered after construction."""
        dedup = ResultDeduplicator()
        dedup.add("https://example.com/x")
        assert dedup.filter_new([_item("https://example.com/x")]) == []
