#!/usr/bin/env python3
import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional, Set, Tuple

import aiohttp
from aiohttp import web

from lobsters_rss.config import ConfigError, FeedConfig, load_config
from lobsters_rss.pipeline.cache_policy import CachePolicy
from lobsters_rss.pipeline.content_aggregator import ContentAggregator
from lobsters_rss.pipeline.feed_compiler import FeedCompiler
from lobsters_rss.server import create_app
from lobsters_rss.services.cache_service import CacheService, MemoryCacheService
from lobsters_rss.services.rss import RSSService
from lobsters_rss.services.score_service import ScoreService
from lobsters_rss.utils.error_monitoring import ErrorHandler
from lobsters_rss.utils.logging_config import PerformanceTracker, setup_logging


class FeedService:
    """
    Wires the store, the pipeline and the HTTP server together and runs the
    periodic cache warm next to the server.
    """

    def __init__(self, config: FeedConfig, use_memory_cache: bool = False):
        self.config = config
        self.use_memory_cache = use_memory_cache
        self.services: Dict[str, Any] = {}
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger(__name__)

        # Graceful shutdown
        self.shutdown_event = asyncio.Event()

        # Repeated-error patterns already logged by warm_once
        self.reported_patterns: Set[Tuple[str, str]] = set()

    def _handle_shutdown(self) -> None:
        self.logger.info("Shutdown requested")
        self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/loop
                pass

    async def initialize_services(self) -> Dict[str, Any]:
        """Build every component from the configuration."""
        cfg = self.config
        if self.use_memory_cache:
            store = MemoryCacheService()
        else:
            store = CacheService(db_path=cfg.database_path)
            await store.initialize_db()
            purged = await store.purge_expired()
            if purged:
                self.logger.info(f"Purged {purged} expired cache entries")

        timeout = aiohttp.ClientTimeout(total=cfg.request_timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)

        errors = ErrorHandler()
        rss = RSSService(cfg, session=self.session)
        scores = ScoreService(cfg, session=self.session)
        aggregator = ContentAggregator(cfg, rss, scores, FeedCompiler(cfg))
        policy = CachePolicy(cfg, store, aggregator, errors)

        self.services = {
            'store': store,
            'rss': rss,
            'scores': scores,
            'aggregator': aggregator,
            'cache_policy': policy,
            'errors': errors,
        }
        return self.services

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None

    async def warm_once(self) -> bool:
        """Single scheduled warm, for an external cron-style dispatcher."""
        if not self.services:
            await self.initialize_services()
        with PerformanceTracker("cache warm", self.logger):
            ok = await self.services['cache_policy'].warm()
        errors = self.services['errors']
        repeated = errors.repeated_errors()
        for key in repeated.keys() - self.reported_patterns:
            self.logger.warning(errors.describe_pattern(key, repeated[key]))
        self.reported_patterns = set(repeated)
        return ok

    async def clear_cache(self) -> None:
        if not self.services:
            await self.initialize_services()
        await self.services['cache_policy'].clear()

    async def schedule_cache_warming(self) -> None:
        """Warm the cache, then wait for the next interval or shutdown."""
        interval = self.config.warm_interval_seconds
        self.logger.info(f"Cache warming every {interval}s")
        while not self.shutdown_event.is_set():
            await self.warm_once()
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def run_server(self, schedule: bool = True) -> None:
        """Serve HTTP until shutdown, warming the cache in the background."""
        self._install_signal_handlers()
        if not self.services:
            await self.initialize_services()

        app = create_app(self.config, self.services['cache_policy'], self.services['errors'])
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.config.port)
        await site.start()
        self.logger.info(f"Serving feed on http://{self.config.host}:{self.config.port}/")

        warm_task = asyncio.create_task(self.schedule_cache_warming()) if schedule else None
        try:
            await self.shutdown_event.wait()
        finally:
            if warm_task is not None:
                warm_task.cancel()
                await asyncio.gather(warm_task, return_exceptions=True)
            await runner.cleanup()
            await self.close()


async def main(argv: Optional[list] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Score-filtered Lobsters RSS feed")
    parser.add_argument('--warm', action='store_true', help='Warm the cache once and exit')
    parser.add_argument('--clear-cache', action='store_true', help='Delete the cached feed and exit')
    parser.add_argument('--host', help='Bind address (default: HOST or 0.0.0.0)')
    parser.add_argument('--port', type=int, help='Bind port (default: PORT or 8080)')
    parser.add_argument('--memory-cache', action='store_true', help='Keep the cache in memory instead of SQLite')
    parser.add_argument('--no-schedule', action='store_true', help='Serve without periodic cache warming')
    parser.add_argument('--log-file', action='store_true', help='Also write logs under LOG_DIR')
    parser.add_argument('--json-logs', action='store_true', help='Emit structured JSON logs')
    args = parser.parse_args(argv)

    try:
        config = load_config().with_overrides(host=args.host, port=args.port)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        enable_file_logging=args.log_file,
        enable_structured_logging=args.json_logs,
    )

    service = FeedService(config, use_memory_cache=args.memory_cache)
    try:
        if args.clear_cache:
            await service.clear_cache()
            return 0
        if args.warm:
            return 0 if await service.warm_once() else 1
        await service.run_server(schedule=not args.no_schedule)
        return 0
    except Exception:  # noqa: BLE001
        logging.exception("Fatal error in main")
        return 1
    finally:
        await service.close()


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    run()
