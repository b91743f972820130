"""
Per-article score lookup against the discussion site's JSON endpoint.

Each lookup is a bounded retry loop: throttled responses and unparseable JSON
bodies are retried with exponential backoff (``retry_delay * 2 ** attempt``)
until ``max_retries`` retries have been spent. Every failure resolves to an
unavailable ScoreResult whose value is 0; nothing is raised to the caller.
"""

import asyncio
import json
import logging
import math
import re
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from lobsters_rss.config import FeedConfig
from lobsters_rss.models.content import ScoreResult


THROTTLE_MARKERS = ("Throttled", "Rate limit")

_INT_PREFIX = re.compile(r'^\s*([+-]?\d+)')


def is_throttled_response(text: str) -> bool:
    return any(marker in text for marker in THROTTLE_MARKERS)


def coerce_score(value: Any) -> Optional[int]:
    """
    Coerce a JSON ``score`` value the way integer-prefix parsing does.

    ``15``, ``15.9`` and ``"15 points"`` all give 15. Returns None when no
    integer can be read (missing, boolean, non-numeric text, NaN).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return int(value)
    match = _INT_PREFIX.match(str(value))
    return int(match.group(1)) if match else None


class ScoreService:
    """
    Fetches article scores one at a time with throttle detection.
    """

    def __init__(
        self,
        config: FeedConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.session = session
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before retrying after ``attempt`` (0-based)."""
        return self.config.retry_delay * (2 ** attempt)

    async def fetch_article_score(self, comments_url: str) -> ScoreResult:
        """Look up the score for one discussion thread."""
        url = f"{comments_url}.json"
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            suffix = f" (retry {attempt})" if attempt else ""
            self.logger.info(f"[CACHE MISS] Fetching article score from origin: {url}{suffix}")
            start = time.monotonic()

            try:
                text = await self._fetch_text(url)
            except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
                self.logger.error(f"[ERROR] Failed to fetch article score for {comments_url}: {e}")
                return ScoreResult.unavailable(f"transport: {e}", attempts=attempt + 1)

            if is_throttled_response(text):
                if attempt < max_retries:
                    await self._back_off(attempt, "[THROTTLED] Rate limited")
                    continue
                self.logger.error(f"[ERROR] Max retries exceeded for {comments_url}, returning score 0")
                return ScoreResult.unavailable("throttled", attempts=attempt + 1)

            try:
                data = json.loads(text)
            except (ValueError, RecursionError) as e:
                if attempt < max_retries:
                    await self._back_off(attempt, "[RETRY] JSON parse error")
                    continue
                self.logger.error(f"[ERROR] Failed to fetch article score for {comments_url}: {e}")
                return ScoreResult.unavailable("invalid json", attempts=attempt + 1)

            try:
                score = self._read_score(data)
            except ScoreFetchError as e:
                self.logger.error(f"[ERROR] Failed to fetch article score for {comments_url}: {e}")
                return ScoreResult.unavailable(str(e), attempts=attempt + 1)

            duration_ms = (time.monotonic() - start) * 1000
            self.logger.info(f"[ORIGIN FETCH] Article score fetched in {duration_ms:.0f}ms: {score}")
            return ScoreResult.ok(score, attempts=attempt + 1)

        # Unreachable: every iteration either returns or continues with attempts left
        return ScoreResult.unavailable("retries exhausted", attempts=max_retries + 1)

    async def _back_off(self, attempt: int, reason: str) -> None:
        delay = self.backoff_delay(attempt)
        self.logger.info(
            f"{reason}, retrying in {delay * 1000:.0f}ms "
            f"(attempt {attempt + 1}/{self.config.max_retries})"
        )
        await self.sleep(delay)

    def _read_score(self, data: Any) -> int:
        if not isinstance(data, dict):
            raise ScoreFetchError(f"unexpected payload type {type(data).__name__}")
        score = coerce_score(data.get('score'))
        if score is None:
            raise ScoreFetchError(f"non-numeric score {data.get('score')!r}")
        return score

    async def _fetch_text(self, url: str) -> str:
        """Single GET returning the body regardless of status; throttle pages carry the marker."""
        headers = {"Accept": "application/json"}
        if self.session is not None:
            async with self.session.get(url, headers=headers) as resp:
                return await resp.text()

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=headers) as resp:
                return await resp.text()


class ScoreFetchError(Exception):
    """Raised internally when a score payload cannot be used"""
    pass
