"""
latencyarb - cross-market latency arbitrage signal monitor.

Watches Binance spot trades for fast moves and checks whether a Polymarket
outcome token has caught up yet. Emits signals; never trades.

Package structure:
- types/: Value types (ticks, orderbooks, signals, discards)
- feeds/: Binance trade stream and Polymarket orderbook poller
- strategy/: Gate-based signal engine
- orderbook.py: Orderbook normalization and CLOB source
- gamma.py: Gamma API market discovery
- scheduler.py: Cancellable timers with an injectable clock
- config.py: Environment configuration
- logging_utils.py: Structured event logging
- app.py: Application composition and entry point
- cli.py: Market discovery CLI
"""

from .config import AppConfig
from .errors import (
    LatencyArbError,
    ConfigurationError,
    PriceParseError,
    InvalidOrderbookError,
    OrderbookFetchError,
    GammaAPIError,
)
from .feeds import BinanceSpotFeed, PolymarketFeed
from .orderbook import ClobOrderbookSource, OrderbookSource, normalize_orderbook
from .scheduler import AsyncioScheduler, ScheduledTask, Scheduler
from .strategy import LatencySignalEngine

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "LatencyArbError",
    "ConfigurationError",
    "PriceParseError",
    "InvalidOrderbookError",
    "OrderbookFetchError",
    "GammaAPIError",
    "BinanceSpotFeed",
    "PolymarketFeed",
    "ClobOrderbookSource",
    "OrderbookSource",
    "normalize_orderbook",
    "AsyncioScheduler",
    "ScheduledTask",
    "Scheduler",
    "LatencySignalEngine",
]
