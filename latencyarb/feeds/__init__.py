"""
Market data feeds.

- BinanceSpotFeed: streaming spot trades with move detection
- PolymarketFeed: polled orderbook snapshots with backoff
"""

from .spot_feed import BinanceSpotFeed, RECONNECT_DELAYS_MS, default_connector
from .poly_feed import PolymarketFeed

__all__ = [
    "BinanceSpotFeed",
    "PolymarketFeed",
    "RECONNECT_DELAYS_MS",
    "default_connector",
]
