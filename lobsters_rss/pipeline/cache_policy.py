"""
Cache-aside serving and scheduled warming of the generated feed.

The policy is the only component that writes to or deletes from the store.
Documents are stored whole with the configured TTL; a failed regeneration
never overwrites what is already cached.
"""

import logging
import time
from typing import Optional, Protocol

from lobsters_rss.config import FeedConfig
from lobsters_rss.models.content import CachedFeed
from lobsters_rss.pipeline.content_aggregator import ContentAggregator
from lobsters_rss.services.cache_service import StoreError
from lobsters_rss.utils.error_monitoring import ErrorHandler


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class CachePolicy:
    """Decides between serving the stored feed and regenerating it."""

    def __init__(
        self,
        config: FeedConfig,
        store: KeyValueStore,
        aggregator: ContentAggregator,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.aggregator = aggregator
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger(__name__)

    async def serve(self, bypass_cache: bool = False) -> CachedFeed:
        """
        Serve the cached document, regenerating it on a miss.

        Store and pipeline errors propagate to the caller.
        """
        start = time.monotonic()
        if bypass_cache:
            self.logger.info("[CACHE BUST] Force refresh requested, bypassing cache")
        else:
            cached = await self.store.get(self.config.cache_key)
            if cached:
                self.logger.info("[CACHE HIT] Serving cached RSS feed")
                return CachedFeed(body=cached, cache_status="HIT")

        self.logger.info("[CACHE MISS] Generating fresh RSS feed")
        document = await self.aggregator.generate_feed()
        await self.store.put(self.config.cache_key, document, self.config.cache_max_age)

        duration_ms = (time.monotonic() - start) * 1000
        self.logger.info(
            f"[SUCCESS] RSS feed generated and cached in {duration_ms:.0f}ms, {len(document)} characters"
        )
        return CachedFeed(body=document, cache_status="MISS")

    async def warm(self) -> bool:
        """
        Regenerate and overwrite the cached document unconditionally.

        Failures are recorded and reported through the return value; the
        previous entry stays in place until its own TTL lapses.
        """
        self.logger.info("[CACHE WARM] Starting scheduled cache warming")
        try:
            document = await self.aggregator.generate_feed()
            await self.store.put(self.config.cache_key, document, self.config.cache_max_age)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"[CACHE WARM ERROR] Failed to warm cache: {e}")
            service = "store" if isinstance(e, StoreError) else "pipeline"
            self.error_handler.handle_error(e, service=service, operation="warm_cache")
            return False

        self.logger.info(f"[CACHE WARM] Successfully warmed cache with {len(document)} characters")
        return True

    async def clear(self) -> None:
        """Delete the cached document; a missing entry is not an error."""
        await self.store.delete(self.config.cache_key)
        self.logger.info("[CACHE CLEAR] Cache cleared successfully")
