"""
Polymarket orderbook normalization and source.

normalize_orderbook turns raw bid/ask levels into PolyMarketData.
ClobOrderbookSource wraps py-clob-client (read-only, no credentials) and
fetches one orderbook per call.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from .errors import InvalidOrderbookError, OrderbookFetchError, PriceParseError
from .logging_utils import EventLogger
from .types import OrderLevel, OrderbookSnapshot, PolyMarketData, parse_decimal

logger = logging.getLogger(__name__)

# Thread pool for running sync py-clob-client calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="clob")

CLOB_HOST = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137


def _try_decimal(raw: object, field: str) -> Optional[Decimal]:
    try:
        return parse_decimal(raw, field)
    except PriceParseError:
        return None


def _sort_side(levels: Sequence[OrderLevel], descending: bool) -> list[tuple[Optional[Decimal], OrderLevel]]:
    """Sort levels by price; levels whose price cannot be parsed go last."""
    priced = [(_try_decimal(level.price, "price"), level) for level in levels]
    usable = sorted(
        (p for p in priced if p[0] is not None),
        key=lambda p: p[0],
        reverse=descending,
    )
    return usable + [p for p in priced if p[0] is None]


def _side_depth(side: list[tuple[Optional[Decimal], OrderLevel]], depth_levels: int) -> Decimal:
    """Sum of sizes over the top levels. Unparseable sizes count as nothing."""
    total = Decimal(0)
    for _, level in side[:depth_levels]:
        size = _try_decimal(level.size, "size")
        if size is not None:
            total += size
    return total


def normalize_orderbook(
    book: OrderbookSnapshot,
    depth_levels: int,
    ts_local_ms: int,
) -> PolyMarketData:
    """
    Normalize an orderbook into best bid/ask, mid, spread and top-N depth.

    Bids are sorted descending and asks ascending by price. A crossed book
    (best bid above best ask) yields a negative spread rather than an error.
    Only the best price on each side must be usable; deeper levels with an
    unparseable price sort last and unparseable sizes add nothing to depth.

    Args:
        book: Raw orderbook snapshot
        depth_levels: Levels per side summed into depth
        ts_local_ms: Local receive timestamp

    Returns:
        PolyMarketData

    Raises:
        InvalidOrderbookError: Empty side, or a best price that is unusable or <= 0
    """
    n_bids = len(book.bids or [])
    n_asks = len(book.asks or [])

    if n_bids == 0 or n_asks == 0:
        raise InvalidOrderbookError(
            "No bids or asks available", bid_levels=n_bids, ask_levels=n_asks
        )

    bids = _sort_side(book.bids, descending=True)
    asks = _sort_side(book.asks, descending=False)

    best_bid = bids[0][0]
    best_ask = asks[0][0]

    if best_bid is None or best_ask is None or best_bid <= 0 or best_ask <= 0:
        raise InvalidOrderbookError(
            f"Invalid prices: best_bid={best_bid} best_ask={best_ask}",
            bid_levels=n_bids,
            ask_levels=n_asks,
            invalid_prices=True,
        )

    mid = (best_bid + best_ask) / 2
    spread_bps = (best_ask - best_bid) / mid * 10_000

    depth = _side_depth(bids, depth_levels) + _side_depth(asks, depth_levels)

    return PolyMarketData(
        token_id=book.token_id,
        best_bid=float(best_bid),
        best_ask=float(best_ask),
        mid_price=float(mid),
        spread_bps=float(spread_bps),
        depth_top_n=float(depth),
        bid_levels=n_bids,
        ask_levels=n_asks,
        ts_local_ms=ts_local_ms,
    )


class OrderbookSource(Protocol):
    """Anything that can fetch one orderbook for a token."""

    async def get_orderbook(self, token_id: str) -> Optional[OrderbookSnapshot]:
        """
        Fetch the current orderbook.

        Returns None when the venue has no book for the token.
        Raises OrderbookFetchError on transport failures.
        """
        ...


def _levels_from(raw_levels) -> list[OrderLevel]:
    levels = []
    for raw in raw_levels or []:
        if isinstance(raw, dict):
            levels.append(OrderLevel(price=raw.get("price"), size=raw.get("size")))
        else:
            levels.append(OrderLevel(price=getattr(raw, "price", None), size=getattr(raw, "size", None)))
    return levels


class ClobOrderbookSource:
    """
    Read-only Polymarket CLOB client wrapper.

    py-clob-client is synchronous; calls are pushed to a thread pool and
    awaited so the event loop never blocks.
    """

    def __init__(
        self,
        host: str = CLOB_HOST,
        chain_id: int = POLYGON_CHAIN_ID,
        events: Optional[EventLogger] = None,
    ):
        """
        Initialize the CLOB client.

        Args:
            host: CLOB API host URL
            chain_id: Polygon chain ID (137 for mainnet)
            events: Event logger
        """
        from py_clob_client.client import ClobClient

        self._host = host
        self._chain_id = chain_id
        self._client = ClobClient(host, chain_id=chain_id)
        self._events = events or EventLogger(logger)

        logger.info(f"ClobOrderbookSource initialized (host={host}, chain_id={chain_id}, read-only)")

    async def get_orderbook(self, token_id: str) -> Optional[OrderbookSnapshot]:
        from py_clob_client.exceptions import PolyApiException

        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(_executor, self._client.get_order_book, token_id)
        except PolyApiException as e:
            if getattr(e, "status_code", None) == 404:
                logger.warning(f"No orderbook for token {token_id[:20]}...")
                return None
            raise OrderbookFetchError(f"CLOB error: {e}") from e
        except Exception as e:
            raise OrderbookFetchError(f"Orderbook request failed: {e}") from e

        if not raw:
            self._events.warn("poly.orderbook.empty", tokenId=token_id)
            return None

        if isinstance(raw, dict):
            bids, asks = raw.get("bids"), raw.get("asks")
            timestamp, market = raw.get("timestamp"), raw.get("market")
        else:
            bids, asks = getattr(raw, "bids", None), getattr(raw, "asks", None)
            timestamp, market = getattr(raw, "timestamp", None), getattr(raw, "market", None)

        return OrderbookSnapshot(
            token_id=token_id,
            bids=_levels_from(bids),
            asks=_levels_from(asks),
            timestamp=str(timestamp) if timestamp is not None else None,
            market=market,
        )
