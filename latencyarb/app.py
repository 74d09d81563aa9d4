"""Main application: spot feed, Polymarket feeds and signal engines on one loop."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Callable, Optional

from .config import AppConfig
from .errors import ConfigurationError
from .feeds import BinanceSpotFeed, PolymarketFeed
from .logging_utils import EventLogger, setup_logging
from .orderbook import ClobOrderbookSource, OrderbookSource
from .scheduler import AsyncioScheduler, Scheduler
from .strategy import LatencySignalEngine

logger = logging.getLogger(__name__)


class LatencyArbApp:
    """
    Wires the pipeline together.

    Component graph:
    BinanceSpotFeed --(SpotMove)--> LatencySignalEngine (one per token)
                                          ^
    PolymarketFeed (one per token) --(PolyMarketData)
    """

    def __init__(
        self,
        config: AppConfig,
        scheduler: Optional[Scheduler] = None,
        source: Optional[OrderbookSource] = None,
        connector: Optional[Callable] = None,
    ):
        """
        Initialize the application.

        Args:
            config: Application configuration
            scheduler: Timer source (asyncio-backed by default)
            source: Orderbook source shared by all Polymarket feeds
            connector: Websocket connector for the spot feed
        """
        self.config = config
        self.events = EventLogger(logger)

        self._scheduler = scheduler
        self._source = source
        self._connector = connector

        # Components
        self.spot_feed: Optional[BinanceSpotFeed] = None
        self.poly_feeds: dict[str, PolymarketFeed] = {}
        self.engines: dict[str, LatencySignalEngine] = {}

        # Control
        self._shutdown_event: Optional[asyncio.Event] = None
        self._started = False

    def _setup_components(self) -> None:
        """Initialize all components."""
        cfg = self.config

        if self._scheduler is None:
            self._scheduler = AsyncioScheduler()
        if self._source is None:
            self._source = ClobOrderbookSource(cfg.poly_clob_host)

        signal_config = cfg.signal_config()

        for token_id in cfg.polymarket_token_ids:
            engine = LatencySignalEngine(
                config=signal_config,
                clock=self._scheduler.now_ms,
                events=EventLogger("latencyarb.strategy"),
            )
            feed = PolymarketFeed(
                token_id=token_id,
                source=self._source,
                scheduler=self._scheduler,
                base_interval_ms=cfg.poly_snapshot_interval_ms,
                depth_levels=cfg.poly_depth_levels,
                on_snapshot=engine.update_snapshot,
                events=EventLogger("latencyarb.feeds.poly"),
            )
            self.engines[token_id] = engine
            self.poly_feeds[token_id] = feed

        self.spot_feed = BinanceSpotFeed(
            symbols=cfg.spot_symbols,
            scheduler=self._scheduler,
            ws_base_url=cfg.binance_ws_base,
            return_window_ms=cfg.spot_return_window_ms,
            sample_interval_ms=cfg.spot_buffer_sample_ms,
            move_threshold_bps=cfg.spot_move_threshold_bps,
            snapshot_interval_ms=cfg.spot_snapshot_interval_ms,
            on_move=[engine.on_spot_move for engine in self.engines.values()],
            events=EventLogger("latencyarb.feeds.spot"),
            connector=self._connector,
        )

    def _config_summary(self) -> dict:
        cfg = self.config
        return {
            "spot": {
                "symbols": cfg.spot_symbols,
                "snapshotIntervalMs": cfg.spot_snapshot_interval_ms,
                "returnWindowMs": cfg.spot_return_window_ms,
                "moveThresholdBps": cfg.spot_move_threshold_bps,
                "bufferSampleMs": cfg.spot_buffer_sample_ms,
            },
            "poly": {
                "tokenIds": cfg.polymarket_token_ids,
                "snapshotIntervalMs": cfg.poly_snapshot_interval_ms,
                "depthLevels": cfg.poly_depth_levels,
            },
            "arb": {
                "minPolyDepth": cfg.arb_min_poly_depth,
                "maxPolySpreadBps": cfg.arb_max_poly_spread_bps,
                "minEdgeBps": cfg.arb_min_edge_bps,
                "cooldownMs": cfg.arb_cooldown_ms,
            },
            "logLevel": cfg.log_level,
            "logToFile": cfg.log_to_file,
        }

    async def start(self) -> None:
        """Build components and start all feeds."""
        self.events.info("app.boot", message="Application starting...", config=self._config_summary())

        self._setup_components()

        for feed in self.poly_feeds.values():
            feed.start()
        self.spot_feed.start()
        self._started = True

        self.events.info(
            "app.ready",
            message="Application initialized successfully",
            spotSymbols=self.spot_feed.symbols,
            polyTokens=list(self.poly_feeds),
        )

    async def stop(self) -> None:
        """Stop all feeds. Safe to call more than once."""
        if not self._started:
            return
        self._started = False

        if self.spot_feed is not None:
            await self.spot_feed.stop()
        for feed in self.poly_feeds.values():
            await feed.stop()

        logger.info("Application stopped")

    def request_shutdown(self, reason: str = "") -> None:
        """Ask run() to return."""
        self.events.info(
            "app.shutdown",
            message=f"Received {reason or 'shutdown request'}, shutting down gracefully...",
        )
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> None:
        """
        Run the application until shutdown signal.

        Handles SIGINT and SIGTERM for graceful shutdown.
        """
        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)

        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.stop()


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the application."""
    parser = argparse.ArgumentParser(description="Latency arbitrage signal monitor")
    parser.add_argument("--env-file", default=".env", help="Env file to load (default: .env)")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (debug, info, warn, error)")
    args = parser.parse_args(argv)

    try:
        config = AppConfig.from_env_file(args.env_file)
    except ConfigurationError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        config.log_level = args.log_level

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Config error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, log_to_file=config.log_to_file, log_dir=config.log_dir)

    app = LatencyArbApp(config)
    try:
        asyncio.run(app.run())
    except Exception as e:
        app.events.error(
            "app.fatal",
            message="Fatal error during application startup",
            error=str(e),
        )
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
