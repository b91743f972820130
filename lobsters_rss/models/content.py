"""
Content models for the scored feed.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Article:
    """One entry parsed out of the upstream feed."""

    title: str
    author: str
    link: str
    comments: str
    published: str
    guid: str

    def with_score(self, score: "ScoreResult", timestamp: float) -> "ScoredArticle":
        """Attach a score lookup result and a parsed timestamp."""
        return ScoredArticle(
            title=self.title,
            author=self.author,
            link=self.link,
            comments=self.comments,
            published=self.published,
            guid=self.guid,
            timestamp=timestamp,
            score=score.value,
            score_available=score.available,
        )


@dataclass(frozen=True)
class ScoredArticle(Article):
    """Article enriched with its popularity score."""

    timestamp: float = math.nan
    score: int = 0
    score_available: bool = False

    @property
    def has_timestamp(self) -> bool:
        return not math.isnan(self.timestamp)


@dataclass(frozen=True)
class ScoreResult:
    """
    Outcome of a score lookup.

    ``value`` is 0 whenever the score could not be retrieved, so callers that
    only care about the number keep the historical behaviour, while
    ``available`` tells a genuine zero apart from a failed lookup.
    """

    value: int
    available: bool = True
    attempts: int = 1
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: int, attempts: int = 1) -> "ScoreResult":
        return cls(value=value, available=True, attempts=attempts)

    @classmethod
    def unavailable(cls, reason: str, attempts: int = 1) -> "ScoreResult":
        return cls(value=0, available=False, attempts=attempts, reason=reason)


@dataclass(frozen=True)
class CachedFeed:
    """A serialized feed document plus where it came from."""

    body: str
    cache_status: str  # "HIT" or "MISS"

    @property
    def is_hit(self) -> bool:
        return self.cache_status == "HIT"
