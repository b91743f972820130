import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

from lobsters_rss.config import FeedConfig
from lobsters_rss.models.content import ScoredArticle
from lobsters_rss.pipeline.feed_compiler import FeedCompiler
from lobsters_rss.services.rss import FeedFetchError, RSSService
from lobsters_rss.services.score_service import ScoreService
from lobsters_rss.utils.date_extraction import parse_timestamp, sort_key_newest_first
from lobsters_rss.utils.logging_config import log_pipeline_metrics


class ContentAggregator:
    """
    Fetch, enrich, filter and serialize the upstream feed.

    Scores are fetched strictly one after another with ``rate_limit_delay``
    between requests; the score endpoint is rate limited and concurrent
    lookups get throttled.
    """

    def __init__(
        self,
        config: FeedConfig,
        rss_service: Optional[RSSService] = None,
        score_service: Optional[ScoreService] = None,
        compiler: Optional[FeedCompiler] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.rss_service = rss_service or RSSService(config)
        self.score_service = score_service or ScoreService(config, sleep=sleep)
        self.compiler = compiler or FeedCompiler(config)
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    async def fetch_all_articles(self, feed_url: Optional[str] = None) -> List[ScoredArticle]:
        """
        Fetch the feed and score every entry that has a discussion thread.

        A feed that cannot be fetched yields an empty list.
        """
        url = feed_url or self.config.feed_url
        try:
            articles = await self.rss_service.fetch_articles(url)
        except FeedFetchError as e:
            self.logger.error(f"[ERROR] Failed to fetch articles from {url}: {e}")
            return []

        start = time.monotonic()
        scored: List[ScoredArticle] = []
        unavailable = 0

        for index, article in enumerate(articles):
            result = await self.score_service.fetch_article_score(article.comments)
            if not result.available:
                unavailable += 1
            scored.append(article.with_score(result, parse_timestamp(article.published)))

            if index < len(articles) - 1:
                await self.sleep(self.config.rate_limit_delay)

        duration_ms = (time.monotonic() - start) * 1000
        self.logger.info(f"[SCORING] All article scores fetched in {duration_ms:.0f}ms")
        if unavailable:
            self.logger.warning(f"[SCORING] {unavailable} of {len(articles)} scores unavailable, counted as 0")
        return scored

    def filter_and_sort(self, articles: List[ScoredArticle]) -> List[ScoredArticle]:
        """Keep articles strictly above the minimum score, newest first."""
        kept = [a for a in articles if a.score > self.config.minimum_score]
        # sorted() is stable: equal timestamps keep feed order
        ordered = sorted(kept, key=lambda a: sort_key_newest_first(a.timestamp))

        self.logger.info(
            f"[FILTERING] {len(articles)} total articles, {len(ordered)} meet minimum score "
            f"of {self.config.minimum_score}"
        )
        return ordered

    def write_articles_feed(self, articles: List[ScoredArticle]) -> str:
        """Filter, order and serialize scored articles."""
        return self.compiler.compile_feed(self.filter_and_sort(articles))

    async def generate_feed(self) -> str:
        """Run the whole pipeline and return the serialized document."""
        start = time.monotonic()
        articles = await self.fetch_all_articles()
        kept = self.filter_and_sort(articles)
        document = self.compiler.compile_feed(kept)
        log_pipeline_metrics(
            self.logger,
            "feed_generation",
            input_count=len(articles),
            output_count=len(kept),
            duration_ms=(time.monotonic() - start) * 1000,
            document_chars=len(document),
        )
        return document
