"""Shared fixtures: fast configuration, scripted network fakes and sleep recorders."""

from typing import Callable, Dict, List, Sequence, Union

import pytest

from lobsters_rss.config import FeedConfig
from lobsters_rss.pipeline.content_aggregator import ContentAggregator
from lobsters_rss.services.rss import RSSService
from lobsters_rss.services.score_service import ScoreService


Scripted = Union[str, BaseException]


SAMPLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>Lobsters</title>
<link>https://lobste.rs</link>
<description></description>
<item>
<title>Test Article</title>
<author>testuser@users.lobste.rs</author>
<link>https://lobste.rs/s/test/test-article</link>
<comments>https://lobste.rs/s/test/test-article</comments>
<pubDate>Sat, 18 Oct 2025 08:29:22 -0500</pubDate>
<guid>test-guid</guid>
</item>
</channel>
</rss>"""


def make_item(
    slug: str,
    pub_date: str = "Sat, 18 Oct 2025 08:29:22 -0500",
    comments: bool = True,
    title: str = None,
) -> str:
    url = f"https://lobste.rs/s/{slug}"
    parts = [
        "<item>",
        f"<title>{title or slug}</title>",
        f"<author>{slug}@users.lobste.rs</author>",
        f"<link>{url}</link>",
    ]
    if comments:
        parts.append(f"<comments>{url}</comments>")
    parts += [f"<pubDate>{pub_date}</pubDate>", f"<guid>{url}</guid>", "</item>"]
    return "\n".join(parts)


def make_feed(*items: str) -> str:
    return "<rss version=\"2.0\"><channel><title>Lobsters</title>\n" + "\n".join(items) + "\n</channel></rss>"


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedRSSService(RSSService):
    """RSSService whose network layer returns a fixed document (or raises)."""

    def __init__(self, config: FeedConfig, document: Scripted):
        super().__init__(config)
        self.document = document
        self.requested: List[str] = []

    async def _fetch_text(self, url: str) -> str:
        self.requested.append(url)
        if isinstance(self.document, BaseException):
            raise self.document
        return self.document


class ScriptedScoreService(ScoreService):
    """
    ScoreService with canned bodies.

    ``responses`` maps a JSON URL to a sequence of bodies or exceptions; the
    last entry repeats once the sequence is exhausted.
    """

    def __init__(self, config: FeedConfig, responses: Dict[str, Sequence[Scripted]], sleep: Callable):
        super().__init__(config, sleep=sleep)
        self.responses = {url: list(seq) for url, seq in responses.items()}
        self.requested: List[str] = []

    async def _fetch_text(self, url: str) -> str:
        self.requested.append(url)
        script = self.responses[url]
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def config() -> FeedConfig:
    return FeedConfig(
        minimum_score=10,
        rate_limit_delay=0.2,
        max_retries=3,
        retry_delay=1.0,
        database_path="unused.db",
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def score_service_factory(config, sleep_recorder):
    def factory(responses: Dict[str, Sequence[Scripted]], cfg: FeedConfig = None) -> ScriptedScoreService:
        return ScriptedScoreService(cfg or config, responses, sleep_recorder)
    return factory


@pytest.fixture
def aggregator_factory(config, sleep_recorder):
    """Build a ContentAggregator over a scripted feed and scripted scores."""

    def factory(
        document: Scripted,
        scores: Dict[str, Sequence[Scripted]],
        cfg: FeedConfig = None,
    ) -> ContentAggregator:
        cfg = cfg or config
        return ContentAggregator(
            cfg,
            rss_service=ScriptedRSSService(cfg, document),
            score_service=ScriptedScoreService(cfg, scores, sleep_recorder),
            sleep=sleep_recorder,
        )

    return factory
