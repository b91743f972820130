"""Tests for the fetch, score, filter and serialize pipeline."""

import asyncio
import json
import logging
import math

import aiohttp

from lobsters_rss.models.content import Article, ScoreResult
from lobsters_rss.pipeline.feed_compiler import escape_xml
from lobsters_rss.services.rss import extract_items
from conftest import SAMPLE_FEED, make_feed, make_item


def score(value) -> str:
    return json.dumps({"score": value})


def json_url(slug: str) -> str:
    return f"https://lobste.rs/s/{slug}.json"


def scored(title: str, value: int, timestamp: float):
    article = Article(title=title, author="a", link="l", comments="c", published="p", guid=title)
    return article.with_score(ScoreResult.ok(value), timestamp)


class TestFetchAllArticles:
    """Tests for ContentAggregator.fetch_all_articles."""

    def test_scores_each_article_in_feed_order(self, aggregator_factory):
        feed = make_feed(make_item("a"), make_item("b"), make_item("c"))
        aggregator = aggregator_factory(
            feed, {json_url("a"): [score(1)], json_url("b"): [score(2)], json_url("c"): [score(3)]}
        )

        articles = asyncio.run(aggregator.fetch_all_articles())

        assert [a.score for a in articles] == [1, 2, 3]
        assert aggregator.score_service.requested == [json_url("a"), json_url("b"), json_url("c")]

    def test_waits_between_items_but_not_after_last(self, aggregator_factory, sleep_recorder):
        feed = make_feed(make_item("a"), make_item("b"), make_item("c"))
        aggregator = aggregator_factory(feed, {json_url(s): [score(20)] for s in "abc"})

        asyncio.run(aggregator.fetch_all_articles())

        assert sleep_recorder.delays == [0.2, 0.2]

    def test_single_item_has_no_rate_limit_delay(self, aggregator_factory, sleep_recorder):
        aggregator = aggregator_factory(make_feed(make_item("a")), {json_url("a"): [score(20)]})

        asyncio.run(aggregator.fetch_all_articles())

        assert sleep_recorder.delays == []

    def test_backoff_and_rate_limit_delays_interleave(self, aggregator_factory, sleep_recorder):
        feed = make_feed(make_item("a"), make_item("b"))
        aggregator = aggregator_factory(
            feed, {json_url("a"): ["Throttled", score(20)], json_url("b"): [score(30)]}
        )

        asyncio.run(aggregator.fetch_all_articles())

        assert sleep_recorder.delays == [1.0, 0.2]

    def test_articles_without_comments_are_never_scored(self, aggregator_factory):
        feed = make_feed(make_item("a", comments=False), make_item("b"))
        aggregator = aggregator_factory(feed, {json_url("b"): [score(50)]})

        articles = asyncio.run(aggregator.fetch_all_articles())

        assert [a.title for a in articles] == ["b"]
        assert aggregator.score_service.requested == [json_url("b")]

    def test_feed_failure_degrades_to_empty_list(self, aggregator_factory):
        aggregator = aggregator_factory(aiohttp.ClientConnectionError("down"), {})

        assert asyncio.run(aggregator.fetch_all_articles()) == []

    def test_unparseable_date_gives_nan_timestamp(self, aggregator_factory):
        aggregator = aggregator_factory(
            make_feed(make_item("a", pub_date="garbage")), {json_url("a"): [score(20)]}
        )

        [article] = asyncio.run(aggregator.fetch_all_articles())

        assert math.isnan(article.timestamp)
        assert not article.has_timestamp

    def test_timestamp_is_epoch_milliseconds(self, aggregator_factory):
        aggregator = aggregator_factory(SAMPLE_FEED, {"https://lobste.rs/s/test/test-article.json": [score(15)]})

        [article] = asyncio.run(aggregator.fetch_all_articles())

        # 2025-10-18T13:29:22Z
        assert article.timestamp == 1760794162000.0


class TestFilterAndSort:
    """Tests for ContentAggregator.filter_and_sort."""

    def test_minimum_score_is_exclusive(self, aggregator_factory):
        aggregator = aggregator_factory("", {})
        articles = [scored("below", 9, 1.0), scored("equal", 10, 2.0), scored("above", 11, 3.0)]

        kept = aggregator.filter_and_sort(articles)

        assert [a.title for a in kept] == ["above"]

    def test_orders_newest_first(self, aggregator_factory):
        aggregator = aggregator_factory("", {})
        articles = [scored("old", 50, 1.0), scored("new", 50, 3.0), scored("mid", 50, 2.0)]

        kept = aggregator.filter_and_sort(articles)

        assert [a.title for a in kept] == ["new", "mid", "old"]
        timestamps = [a.timestamp for a in kept]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_equal_timestamps_keep_feed_order(self, aggregator_factory):
        aggregator = aggregator_factory("", {})
        articles = [scored("first", 50, 5.0), scored("second", 50, 5.0), scored("third", 50, 5.0)]

        assert [a.title for a in aggregator.filter_and_sort(articles)] == ["first", "second", "third"]

    def test_nan_timestamps_sort_last(self, aggregator_factory):
        aggregator = aggregator_factory("", {})
        articles = [
            scored("undated-1", 50, math.nan),
            scored("dated", 50, 1.0),
            scored("undated-2", 50, math.nan),
        ]

        kept = aggregator.filter_and_sort(articles)

        assert [a.title for a in kept] == ["dated", "undated-1", "undated-2"]

    def test_unavailable_scores_are_filtered_out(self, aggregator_factory):
        aggregator = aggregator_factory("", {})
        article = Article(title="t", author="a", link="l", comments="c", published="p", guid="g")
        failed = article.with_score(ScoreResult.unavailable("throttled"), 1.0)

        assert aggregator.filter_and_sort([failed]) == []


class TestGenerateFeed:
    """Tests for the serialized document."""

    def test_single_item_scenario(self, aggregator_factory):
        aggregator = aggregator_factory(SAMPLE_FEED, {"https://lobste.rs/s/test/test-article.json": [score(15)]})

        document = asyncio.run(aggregator.generate_feed())

        assert document.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<rss version="2.0"' in document
        assert 'xmlns:atom="http://www.w3.org/2005/Atom"' in document
        assert 'xmlns:wfw="http://wellformedweb.org/CommentAPI/"' in document
        assert 'xmlns:slash="http://purl.org/rss/1.0/modules/slash/"' in document
        assert "<title>Lobsters</title>" in document
        assert "<link>https://lobste.rs</link>" in document
        assert "<description></description>" in document
        assert len(extract_items(document)) == 1
        assert "<title>Test Article</title>" in document
        assert "<author>testuser</author>" in document
        assert "<comments>https://lobste.rs/s/test/test-article</comments>" in document
        assert "<wfw:commentRss>https://lobste.rs/s/test/test-article</wfw:commentRss>" in document
        assert '<guid isPermaLink="false">test-guid</guid>' in document
        assert "<pubDate>Sat, 18 Oct 2025 08:29:22 -0500</pubDate>" in document

    def test_write_articles_feed_filters_and_orders(self, aggregator_factory):
        aggregator = aggregator_factory("", {})
        articles = [scored("low", 3, 9.0), scored("older", 40, 1.0), scored("newer", 40, 2.0)]

        document = aggregator.write_articles_feed(articles)

        items = extract_items(document)
        assert len(items) == 2
        assert "<title>newer</title>" in items[0]
        assert "<title>older</title>" in items[1]

    def test_item_without_comments_yields_empty_channel(self, aggregator_factory):
        feed = make_feed(make_item("a", comments=False))
        aggregator = aggregator_factory(feed, {})

        document = asyncio.run(aggregator.generate_feed())

        assert "<channel>" in document
        assert extract_items(document) == []

    def test_feed_failure_renders_empty_channel(self, aggregator_factory):
        aggregator = aggregator_factory(asyncio.TimeoutError(), {})

        document = asyncio.run(aggregator.generate_feed())

        assert "<title>Lobsters</title>" in document
        assert extract_items(document) == []

    def test_reserved_characters_are_escaped_once(self, aggregator_factory):
        title = """Tom & "Jerry" <b>'s</b>"""
        item = make_item("esc", title=title)
        aggregator = aggregator_factory(make_feed(item), {json_url("esc"): [score(99)]})

        document = asyncio.run(aggregator.generate_feed())

        expected = "Tom &amp; &quot;Jerry&quot; &lt;b&gt;&#39;s&lt;/b&gt;"
        assert f"<title>{expected}</title>" in document
        assert "&amp;amp;" not in document

    def test_pub_date_is_not_escaped(self, aggregator_factory):
        item = make_item("d", pub_date="Mon, 01 Jan 2024 00:00:00 +0000 & more")
        aggregator = aggregator_factory(make_feed(item), {json_url("d"): [score(99)]})

        document = asyncio.run(aggregator.generate_feed())

        assert "<pubDate>Mon, 01 Jan 2024 00:00:00 +0000 & more</pubDate>" in document

    def test_metrics_report_kept_article_count(self, aggregator_factory, caplog):
        feed = make_feed(make_item("low"), make_item("high"))
        aggregator = aggregator_factory(feed, {json_url("low"): [score(5)], json_url("high"): [score(50)]})

        with caplog.at_level(logging.INFO, logger="lobsters_rss.pipeline.content_aggregator"):
            asyncio.run(aggregator.generate_feed())

        [metrics] = [r.extra_data for r in caplog.records if hasattr(r, "extra_data")]
        assert metrics["stage"] == "feed_generation"
        assert metrics["input_count"] == 2
        assert metrics["output_count"] == 1


class TestEscapeXml:
    """Tests for escape_xml."""

    def test_escapes_all_reserved_characters(self):
        assert escape_xml("""& < > " '""") == "&amp; &lt; &gt; &quot; &#39;"

    def test_already_escaped_input_is_escaped_again_literally(self):
        assert escape_xml("&amp;") == "&amp;amp;"

    def test_none_becomes_empty(self):
        assert escape_xml(None) == ""
