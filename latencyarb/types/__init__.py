"""
Shared value types for the latency arbitrage pipeline.

Organized by domain:
- market_data: spot ticks/returns/moves, raw and normalized orderbooks
- signals: arbitrage signals, discard variants, gate config
- utils: timestamps and decimal parsing
"""

from .market_data import (
    Direction,
    SpotTick,
    PriceReturn,
    SpotMove,
    OrderLevel,
    OrderbookSnapshot,
    PolyMarketData,
)
from .signals import (
    DiscardReason,
    SignalConfig,
    ArbSignal,
    Discard,
    NoPolySnapshot,
    WideSpread,
    LowDepth,
    Cooldown,
    InsufficientEdge,
    SignalDecision,
)
from .utils import wall_ms, parse_decimal

__all__ = [
    # Market data
    "Direction",
    "SpotTick",
    "PriceReturn",
    "SpotMove",
    "OrderLevel",
    "OrderbookSnapshot",
    "PolyMarketData",
    # Signals
    "DiscardReason",
    "SignalConfig",
    "ArbSignal",
    "Discard",
    "NoPolySnapshot",
    "WideSpread",
    "LowDepth",
    "Cooldown",
    "InsufficientEdge",
    "SignalDecision",
    # Utilities
    "wall_ms",
    "parse_decimal",
]
