"""
Market data types.

Spot ticks and returns from the Binance trade stream, raw and normalized
orderbook snapshots from Polymarket.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class Direction(str, Enum):
    """Sign of a price move."""
    UP = "up"
    DOWN = "down"
    FLAT = "flat"

    @classmethod
    def from_bps(cls, bps: float) -> "Direction":
        """Direction of a move expressed in basis points."""
        if bps > 0:
            return cls.UP
        if bps < 0:
            return cls.DOWN
        return cls.FLAT


@dataclass(frozen=True, slots=True)
class SpotTick:
    """
    Normalized spot trade.

    Carries both exchange and local receive timestamps (ms).
    """
    symbol: str  # BTCUSDT, ETHUSDT
    price: float
    ts_exchange_ms: int
    ts_local_ms: int

    @property
    def latency_ms(self) -> int:
        """Exchange-to-local latency."""
        return self.ts_local_ms - self.ts_exchange_ms


@dataclass(frozen=True, slots=True)
class PriceReturn:
    """Return between the oldest and newest tick of a window."""
    symbol: str
    current_price: float
    past_price: float
    return_bps: float
    direction: Direction
    window_ms: int

    @classmethod
    def between(cls, newest: SpotTick, oldest: SpotTick) -> "PriceReturn":
        """Compute the return from `oldest` to `newest`."""
        return_bps = ((newest.price / oldest.price) - 1) * 10_000
        return cls(
            symbol=newest.symbol,
            current_price=newest.price,
            past_price=oldest.price,
            return_bps=return_bps,
            direction=Direction.from_bps(return_bps),
            window_ms=newest.ts_local_ms - oldest.ts_local_ms,
        )


@dataclass(frozen=True, slots=True)
class SpotMove:
    """Threshold-crossing move emitted by the spot feed."""
    symbol: str
    price: float
    return_bps: float
    direction: Direction
    window_ms: int
    ts_local_ms: int


@dataclass(frozen=True, slots=True)
class OrderLevel:
    """Single price level. Price and size kept as text until normalization."""
    price: Union[str, Decimal]
    size: Union[str, Decimal]


@dataclass(slots=True)
class OrderbookSnapshot:
    """Raw orderbook returned by the orderbook source."""
    token_id: str
    bids: list[OrderLevel] = field(default_factory=list)
    asks: list[OrderLevel] = field(default_factory=list)
    timestamp: Optional[str] = None
    market: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PolyMarketData:
    """
    Normalized Polymarket top-of-book state.

    Prices in [0, 1], spread in basis points relative to mid,
    depth summed over the top N levels of both sides.
    """
    token_id: str
    best_bid: float
    best_ask: float
    mid_price: float
    spread_bps: float
    depth_top_n: float
    bid_levels: int
    ask_levels: int
    ts_local_ms: int
