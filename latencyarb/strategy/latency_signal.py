"""
Latency arbitrage signal engine.

Keeps a short history of Polymarket snapshots and evaluates every spot move
against five gates, in order:

1. no_poly_snapshot  - no counterpart data yet
2. wide_spread       - latest spread above the maximum
3. low_depth         - latest top-N depth below the minimum
4. cooldown          - too soon after the previous signal
5. insufficient_edge - spot move not far enough ahead of the Polymarket move

The first failing gate produces a Discard; a move passing all five produces
an ArbSignal and starts a new cooldown.
"""

import logging
from collections import Counter, deque
from typing import Any, Callable, Iterable, Optional, Union

from ..logging_utils import EventLogger
from ..types import (
    ArbSignal,
    Cooldown,
    Discard,
    Direction,
    InsufficientEdge,
    LowDepth,
    NoPolySnapshot,
    PolyMarketData,
    SignalConfig,
    SignalDecision,
    SpotMove,
    WideSpread,
    wall_ms,
)

logger = logging.getLogger(__name__)

SignalCallback = Callable[[ArbSignal], Any]


class LatencySignalEngine:
    """
    Gate-based signal engine for one Polymarket instrument.

    Not thread-safe; driven from the event loop by the feeds.
    """

    def __init__(
        self,
        config: Optional[SignalConfig] = None,
        clock: Callable[[], int] = wall_ms,
        events: Optional[EventLogger] = None,
        snapshot_window_ms: int = 60_000,
        on_signal: Optional[Union[SignalCallback, Iterable[SignalCallback]]] = None,
    ):
        self.config = config or SignalConfig()
        self._clock = clock
        self._events = events or EventLogger(logger)
        self._snapshot_window_ms = snapshot_window_ms

        if on_signal is None:
            self._on_signal: list[SignalCallback] = []
        elif callable(on_signal):
            self._on_signal = [on_signal]
        else:
            self._on_signal = list(on_signal)

        self._history: deque[PolyMarketData] = deque()
        self._last_signal_ms: Optional[int] = None
        self._signals = 0
        self._discards: Counter = Counter()

        self._events.info(
            "arb.engine.init",
            minPolyDepth=self.config.min_poly_depth,
            maxPolySpreadBps=self.config.max_poly_spread_bps,
            minEdgeBps=self.config.min_edge_bps,
            cooldownMs=self.config.cooldown_ms,
        )

    @property
    def history(self) -> tuple[PolyMarketData, ...]:
        """Retained snapshots, oldest first."""
        return tuple(self._history)

    @property
    def latest_snapshot(self) -> Optional[PolyMarketData]:
        return self._history[-1] if self._history else None

    @property
    def last_signal_ms(self) -> Optional[int]:
        """Time of the last emitted signal, None before the first."""
        return self._last_signal_ms

    @property
    def stats(self) -> dict:
        """Signal count and discard counts by reason."""
        return {
            "signals": self._signals,
            "discards": {reason.value: count for reason, count in self._discards.items()},
        }

    def add_signal_listener(self, callback: SignalCallback) -> None:
        self._on_signal.append(callback)

    def update_snapshot(self, data: PolyMarketData) -> None:
        """Append a snapshot and drop those older than the history window."""
        self._history.append(data)

        cutoff = self._clock() - self._snapshot_window_ms
        self._history = deque(s for s in self._history if s.ts_local_ms >= cutoff)

        self._events.debug(
            "arb.poly_update",
            tokenId=data.token_id,
            midPrice=data.mid_price,
            bufferSize=len(self._history),
        )

    def poly_move_bps(self) -> float:
        """Mid-price return from the oldest to the newest retained snapshot."""
        if len(self._history) < 2:
            return 0.0
        oldest = self._history[0]
        latest = self._history[-1]
        return ((latest.mid_price / oldest.mid_price) - 1) * 10_000

    def on_spot_move(self, move: SpotMove) -> SignalDecision:
        """Spot feed subscriber."""
        return self._evaluate(move)

    def process_move(
        self,
        symbol: str,
        price: float,
        move_bps: float,
        direction: Direction,
    ) -> SignalDecision:
        """
        Evaluate a spot move.

        Returns:
            ArbSignal when every gate passes, else the first failing Discard
        """
        move = SpotMove(
            symbol=symbol,
            price=price,
            return_bps=move_bps,
            direction=Direction(direction),
            window_ms=0,
            ts_local_ms=self._clock(),
        )
        return self._evaluate(move)

    def _evaluate(self, move: SpotMove) -> SignalDecision:
        now = self._clock()
        cfg = self.config
        latest = self.latest_snapshot

        if latest is None:
            return self._discard(NoPolySnapshot(move))

        if latest.spread_bps > cfg.max_poly_spread_bps:
            return self._discard(WideSpread(move, latest.spread_bps, cfg.max_poly_spread_bps))

        if latest.depth_top_n < cfg.min_poly_depth:
            return self._discard(LowDepth(move, latest.depth_top_n, cfg.min_poly_depth))

        if self._last_signal_ms is not None:
            elapsed = now - self._last_signal_ms
            if elapsed < cfg.cooldown_ms:
                return self._discard(Cooldown(move, elapsed, cfg.cooldown_ms))

        poly_move = self.poly_move_bps()
        edge_bps = abs(move.return_bps) - abs(poly_move)
        if edge_bps < cfg.min_edge_bps:
            return self._discard(InsufficientEdge(move, poly_move, edge_bps, cfg.min_edge_bps))

        signal = ArbSignal(
            timestamp_ms=now,
            spot_symbol=move.symbol,
            spot_price=move.price,
            spot_move_bps=move.return_bps,
            spot_direction=move.direction,
            poly_token_id=latest.token_id,
            poly_mid_price=latest.mid_price,
            poly_spread_bps=latest.spread_bps,
            poly_depth=latest.depth_top_n,
            edge_bps=edge_bps,
        )
        self._emit(signal)
        return signal

    def _discard(self, discard: Discard) -> Discard:
        self._discards[discard.reason] += 1
        self._events.debug("arb.discard", discard.to_payload())
        return discard

    def _emit(self, signal: ArbSignal) -> None:
        self._last_signal_ms = signal.timestamp_ms
        self._signals += 1

        self._events.warn("arb.signal", signal.to_payload())

        for callback in self._on_signal:
            try:
                callback(signal)
            except Exception as e:
                self._events.error("arb.signal.subscriber_error", error=str(e))
