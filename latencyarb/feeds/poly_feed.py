"""
Polymarket orderbook poller.

Polls one token's orderbook on a fixed interval. The next poll is only
scheduled after the current one completes, so polls never overlap; a poll
that fires while another is in flight is skipped, not queued. Consecutive
failures back off exponentially up to a cap.
"""

import logging
from typing import Any, Callable, Iterable, Optional, Union

from ..errors import InvalidOrderbookError
from ..logging_utils import EventLogger
from ..orderbook import OrderbookSource, normalize_orderbook
from ..scheduler import ScheduledTask, Scheduler
from ..types import PolyMarketData

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[PolyMarketData], Any]


class PolymarketFeed:
    """
    Orderbook polling feed for a single token.

    Usage:
        feed = PolymarketFeed(token_id, source, scheduler, on_snapshot=engine.update_snapshot)
        feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        token_id: str,
        source: OrderbookSource,
        scheduler: Scheduler,
        base_interval_ms: int = 5000,
        depth_levels: int = 10,
        max_backoff_ms: int = 30_000,
        on_snapshot: Optional[Union[SnapshotCallback, Iterable[SnapshotCallback]]] = None,
        events: Optional[EventLogger] = None,
    ):
        self.token_id = token_id
        self._source = source
        self._scheduler = scheduler
        self._base_interval_ms = base_interval_ms
        self._depth_levels = depth_levels
        self._max_backoff_ms = max_backoff_ms
        self._events = events or EventLogger(logger)

        if on_snapshot is None:
            self._on_snapshot: list[SnapshotCallback] = []
        elif callable(on_snapshot):
            self._on_snapshot = [on_snapshot]
        else:
            self._on_snapshot = list(on_snapshot)

        self._running = False
        self._in_flight = False
        # Bumped on every start/stop; polls from an older run are discarded
        self._generation = 0
        self._consecutive_errors = 0
        self._current_backoff_ms = 0
        self._poll_task: Optional[ScheduledTask] = None
        self._latest: Optional[PolyMarketData] = None

        self._stats = {
            "polls": 0,
            "snapshots": 0,
            "errors": 0,
            "skipped": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def current_backoff_ms(self) -> int:
        return self._current_backoff_ms

    @property
    def latest(self) -> Optional[PolyMarketData]:
        """Last successfully normalized snapshot."""
        return self._latest

    @property
    def stats(self) -> dict:
        """Poll statistics."""
        return dict(self._stats)

    def add_snapshot_listener(self, callback: SnapshotCallback) -> None:
        """Subscribe to normalized snapshots."""
        self._on_snapshot.append(callback)

    def start(self) -> None:
        """Start polling. The first poll runs one base interval from now."""
        if self._running:
            self._events.warn("poly.feed.already_running", tokenId=self.token_id)
            return

        self._running = True
        self._generation += 1
        self._consecutive_errors = 0
        self._current_backoff_ms = 0

        self._events.info(
            "poly.feed.started",
            tokenId=self.token_id,
            interval=self._base_interval_ms,
            depthLevels=self._depth_levels,
        )

        self._schedule_poll()

    async def stop(self) -> None:
        """Stop polling. An in-flight fetch completes but is not published."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

        self._running = False
        self._generation += 1

        self._events.info("poly.feed.stopped", tokenId=self.token_id)

    def _schedule_poll(self) -> None:
        if not self._running:
            return

        delay = self._current_backoff_ms if self._current_backoff_ms > 0 else self._base_interval_ms
        self._poll_task = self._scheduler.call_later(delay, self._poll_cycle, name="poly-poll")

    async def _poll_cycle(self) -> None:
        generation = self._generation
        self._poll_task = None
        await self.poll_once()
        if generation == self._generation:
            self._schedule_poll()

    async def poll_once(self) -> Optional[PolyMarketData]:
        """
        Fetch and normalize one orderbook.

        Skipped when a previous poll is still in flight. Failures are logged
        and fold into the backoff state; nothing is raised.

        Returns:
            The normalized snapshot, or None on skip or failure
        """
        if self._in_flight:
            self._stats["skipped"] += 1
            self._events.warn(
                "poly.poll.skipped",
                tokenId=self.token_id,
                reason="previous poll still in flight",
            )
            return None

        self._in_flight = True
        self._stats["polls"] += 1
        generation = self._generation

        try:
            book = await self._source.get_orderbook(self.token_id)

            if book is None:
                self._handle_poll_error("No orderbook data returned", generation)
                return None

            try:
                data = normalize_orderbook(book, self._depth_levels, self._scheduler.now_ms())
            except InvalidOrderbookError as e:
                if e.invalid_prices:
                    self._events.error(
                        "poly.orderbook.invalid_prices",
                        tokenId=self.token_id,
                        error=str(e),
                    )
                else:
                    self._events.warn(
                        "poly.orderbook.invalid",
                        tokenId=self.token_id,
                        bids=e.bid_levels,
                        asks=e.ask_levels,
                    )
                self._handle_poll_error(f"Failed to normalize orderbook: {e}", generation)
                return None
        except Exception as e:
            self._handle_poll_error(str(e) or type(e).__name__, generation)
            return None
        finally:
            self._in_flight = False

        if generation != self._generation:
            self._events.debug("poly.poll.stale", tokenId=self.token_id)
            return None

        # Success resets backoff
        self._consecutive_errors = 0
        self._current_backoff_ms = 0

        if not self._running:
            return data

        self._latest = data
        self._stats["snapshots"] += 1

        self._events.info(
            "poly.snapshot",
            tokenId=data.token_id,
            midPrice=round(data.mid_price, 4),
            bestBid=round(data.best_bid, 4),
            bestAsk=round(data.best_ask, 4),
            spreadBps=round(data.spread_bps, 2),
            depthTopN=round(data.depth_top_n, 2),
            bidLevels=data.bid_levels,
            askLevels=data.ask_levels,
        )

        for callback in self._on_snapshot:
            try:
                callback(data)
            except Exception as e:
                self._events.error(
                    "poly.snapshot.subscriber_error",
                    tokenId=self.token_id,
                    error=str(e),
                )

        return data

    def _handle_poll_error(self, error: str, generation: int) -> None:
        if generation != self._generation:
            self._events.debug("poly.poll.stale", tokenId=self.token_id, error=error)
            return

        self._consecutive_errors += 1
        self._stats["errors"] += 1

        backoff_ms = min(
            self._base_interval_ms * 2 ** (self._consecutive_errors - 1),
            self._max_backoff_ms,
        )
        self._current_backoff_ms = backoff_ms

        self._events.error(
            "poly.poll.error",
            tokenId=self.token_id,
            error=error,
            consecutiveErrors=self._consecutive_errors,
            nextBackoffMs=backoff_ms,
        )

        if self._consecutive_errors > 1:
            self._events.warn(
                "poly.poll.backoff",
                tokenId=self.token_id,
                backoffMs=backoff_ms,
                consecutiveErrors=self._consecutive_errors,
            )
