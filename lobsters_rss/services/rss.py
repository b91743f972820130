"""
Upstream feed retrieval and lenient, regex-based entry parsing.

Parsing deliberately stays string based: the first matching tag wins, tag
names match case-insensitively, attributes on the opening tag are ignored and
no entity decoding is performed. Fields come back exactly as the upstream
feed escaped them.
"""

import asyncio
import logging
import re
import time
from typing import List, Optional

import aiohttp

from lobsters_rss.config import FeedConfig
from lobsters_rss.models.content import Article


ITEM_PATTERN = re.compile(r'<item[^>]*>([\s\S]*?)</item>', re.IGNORECASE)

USER_AGENT = "lobsters-rss/1.0 (+https://lobste.rs)"


def extract_text_content(xml: str, tag: str) -> str:
    """
    Return the trimmed text of the first ``<tag ...>...</tag>`` in ``xml``.

    Returns an empty string when the tag is absent or the input is not text.
    """
    if not xml or not tag:
        return ''
    pattern = re.compile(
        rf'<{re.escape(tag)}[^>]*>([\s\S]*?)</{re.escape(tag)}>',
        re.IGNORECASE,
    )
    match = pattern.search(xml)
    return match.group(1).strip() if match else ''


def extract_items(xml: str) -> List[str]:
    """Return every ``<item>...</item>`` fragment of a feed document, in order."""
    if not xml:
        return []
    return [m.group(0) for m in ITEM_PATTERN.finditer(xml)]


def parse_article(item_xml: str) -> Article:
    """Convert one raw ``<item>`` fragment into an Article."""
    return Article(
        title=extract_text_content(item_xml, 'title'),
        # Upstream authors look like "user@users.lobste.rs"; keep the local part
        author=extract_text_content(item_xml, 'author').split('@')[0],
        link=extract_text_content(item_xml, 'link'),
        comments=extract_text_content(item_xml, 'comments'),
        published=extract_text_content(item_xml, 'pubDate'),
        guid=extract_text_content(item_xml, 'guid'),
    )


class RSSService:
    """
    Fetches the upstream feed document and turns it into articles.
    """

    def __init__(self, config: FeedConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self.logger = logging.getLogger(__name__)

    async def fetch_feed(self, feed_url: Optional[str] = None) -> str:
        """Fetch the raw feed document. Raises FeedFetchError on any failure."""
        url = feed_url or self.config.feed_url
        self.logger.info(f"[CACHE MISS] Fetching RSS feed from origin: {url}")
        start = time.monotonic()
        try:
            content = await self._fetch_text(url)
        except FeedFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            raise FeedFetchError(f"Failed to fetch {url}: {e}") from e

        duration_ms = (time.monotonic() - start) * 1000
        self.logger.info(f"[ORIGIN FETCH] RSS feed fetched in {duration_ms:.0f}ms")
        return content

    def parse_feed(self, content: str) -> List[Article]:
        """Parse every entry and drop the ones that cannot be scored."""
        items = extract_items(content)
        self.logger.info(f"[PARSING] Found {len(items)} RSS items to process")

        articles = [parse_article(item) for item in items]
        scorable = [a for a in articles if a.comments]

        self.logger.info(f"[PARSING] {len(scorable)} articles have comments and will be scored")
        return scorable

    async def fetch_articles(self, feed_url: Optional[str] = None) -> List[Article]:
        """Fetch and parse the feed."""
        content = await self.fetch_feed(feed_url)
        return self.parse_feed(content)

    async def _fetch_text(self, url: str) -> str:
        """Single GET returning the body; non-200 responses are failures."""
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/rss+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        if self.session is not None:
            return await self._get(self.session, url, headers)

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._get(session, url, headers)

    async def _get(self, session: aiohttp.ClientSession, url: str, headers: dict) -> str:
        async with session.get(url, headers=headers) as resp:
            if resp.status != 200:
                raise FeedFetchError(f"HTTP {resp.status} for {url}")
            return await resp.text()


class FeedFetchError(Exception):
    """Raised when the upstream feed cannot be retrieved"""
    pass
