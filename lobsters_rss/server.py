"""HTTP surface for the scored feed."""

import logging
import time
from typing import Optional

from aiohttp import web

from lobsters_rss.config import FeedConfig
from lobsters_rss.pipeline.cache_policy import CachePolicy
from lobsters_rss.utils.error_monitoring import ErrorHandler


CONFIG_KEY = web.AppKey("config", FeedConfig)
CACHE_POLICY_KEY = web.AppKey("cache_policy", CachePolicy)
ERROR_HANDLER_KEY = web.AppKey("error_handler", ErrorHandler)

RSS_CONTENT_TYPE = "application/rss+xml"
BYPASS_FLAGS = ("force_refresh", "clear_cache")

logger = logging.getLogger(__name__)


async def clear_cache(request: web.Request) -> web.Response:
    """Delete the cached feed."""
    await request.app[CACHE_POLICY_KEY].clear()
    return web.Response(text="Cache cleared successfully", content_type="text/plain")


async def index_xml(request: web.Request) -> web.Response:
    """Redirect the legacy feed path to the root."""
    raise web.HTTPFound(location=f"{request.scheme}://{request.host}/")


async def feed(request: web.Request) -> web.Response:
    """Serve the cached or freshly generated feed."""
    config = request.app[CONFIG_KEY]
    start = time.monotonic()
    bypass = any(flag in request.query for flag in BYPASS_FLAGS)

    try:
        result = await request.app[CACHE_POLICY_KEY].serve(bypass_cache=bypass)
    except Exception as e:  # noqa: BLE001
        duration_ms = (time.monotonic() - start) * 1000
        logger.error(f"[ERROR] Failed to generate RSS feed after {duration_ms:.0f}ms: {e}")
        request.app[ERROR_HANDLER_KEY].handle_error(
            e, service="pipeline", operation="serve_feed", context={"path": request.path}
        )
        return web.Response(status=500, text="Error generating RSS feed")

    return web.Response(
        text=result.body,
        content_type=RSS_CONTENT_TYPE,
        charset="utf-8",
        headers={
            "Cache-Control": f"public, max-age={config.cache_max_age}",
            "X-Cache": result.cache_status,
        },
    )


def create_app(
    config: FeedConfig,
    cache_policy: CachePolicy,
    error_handler: Optional[ErrorHandler] = None,
) -> web.Application:
    """Build the aiohttp application. Routes are matched in registration order."""
    app = web.Application()
    app[CONFIG_KEY] = config
    app[CACHE_POLICY_KEY] = cache_policy
    app[ERROR_HANDLER_KEY] = error_handler or cache_policy.error_handler

    app.router.add_get("/clear-cache", clear_cache)
    app.router.add_get("/index.xml", index_xml)
    app.router.add_get("/{tail:.*}", feed)
    return app
