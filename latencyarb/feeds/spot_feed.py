"""
Binance spot trade stream.

Subscribes to the combined `<symbol>@trade` streams, keeps a downsampled
sliding window of ticks per symbol, and emits a SpotMove whenever the return
across a near-full window crosses the configured threshold.

Reconnects on disconnect with a fixed delay ladder; the attempt counter
resets once a connection opens.
"""

import asyncio
import logging
import math
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import orjson
import websockets
from websockets.exceptions import ConnectionClosed

from ..logging_utils import EventLogger
from ..scheduler import ScheduledTask, Scheduler
from ..types import PriceReturn, SpotMove, SpotTick

logger = logging.getLogger(__name__)

BINANCE_WS_BASE = "wss://stream.binance.com:9443"

# Delay before reconnect attempt N (last entry repeats)
RECONNECT_DELAYS_MS = (1000, 2000, 5000, 10000, 30000)

# A move only counts once the window spans this fraction of its configured length
MIN_WINDOW_FRACTION = 0.8

MoveCallback = Callable[[SpotMove], Any]
Connector = Callable[[str], Awaitable[Any]]


def default_connector(url: str):
    """Open a websocket with the same settings the pricer services use."""
    return websockets.connect(
        url,
        ping_interval=20,
        ping_timeout=60,
        max_size=2**20,
        compression=None,
    )


class BinanceSpotFeed:
    """
    Spot trade feed for one or more Binance symbols.

    All state is owned by the event loop thread. start() needs a running loop.

    Usage:
        feed = BinanceSpotFeed(["BTCUSDT"], scheduler, on_move=engine.on_spot_move)
        feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        symbols: list[str],
        scheduler: Scheduler,
        ws_base_url: str = BINANCE_WS_BASE,
        return_window_ms: int = 60_000,
        sample_interval_ms: int = 250,
        move_threshold_bps: float = 50.0,
        snapshot_interval_ms: int = 5000,
        on_move: Optional[Union[MoveCallback, Iterable[MoveCallback]]] = None,
        events: Optional[EventLogger] = None,
        connector: Optional[Connector] = None,
    ):
        """
        Initialize the feed.

        Args:
            symbols: Symbols to subscribe (any case)
            scheduler: Clock and timer source
            ws_base_url: Binance websocket base URL
            return_window_ms: Sliding window length
            sample_interval_ms: Minimum spacing between admitted ticks
            move_threshold_bps: Absolute return needed to emit a move
            snapshot_interval_ms: Period of the spot.snapshot report
            on_move: Move subscriber(s)
            events: Event logger
            connector: Coroutine returning an open connection for a URL
        """
        self.symbols = [s.strip().upper() for s in symbols if s.strip()]
        self._scheduler = scheduler
        self._return_window_ms = return_window_ms
        self._sample_interval_ms = sample_interval_ms
        self._move_threshold_bps = move_threshold_bps
        self._snapshot_interval_ms = snapshot_interval_ms
        self._events = events or EventLogger(logger)
        self._connector = connector or default_connector

        streams = "/".join(f"{s.lower()}@trade" for s in self.symbols)
        self.url = f"{ws_base_url.rstrip('/')}/stream?streams={streams}"

        if on_move is None:
            self._on_move: list[MoveCallback] = []
        elif callable(on_move):
            self._on_move = [on_move]
        else:
            self._on_move = list(on_move)

        # Per-symbol state
        self._windows: dict[str, deque[SpotTick]] = {}
        self._latest_price: dict[str, float] = {}
        self._last_sample_ms: dict[str, int] = {}

        # Connection state
        self._ws = None
        self._connected = False
        self._shutting_down = False
        self._reconnect_attempt = 0
        self._connection_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[ScheduledTask] = None
        self._report_task: Optional[ScheduledTask] = None

        self._stats = {
            "messages": 0,
            "ticks": 0,
            "admitted": 0,
            "moves": 0,
            "parse_errors": 0,
            "connection_failures": 0,
            "disconnects": 0,
        }

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        """Whether a connection is currently open."""
        return self._connected

    @property
    def reconnect_attempt(self) -> int:
        """Reconnect attempts since the last successful open."""
        return self._reconnect_attempt

    @property
    def stats(self) -> dict:
        """Feed statistics."""
        return dict(self._stats)

    def window(self, symbol: str) -> tuple[SpotTick, ...]:
        """Admitted ticks for a symbol, oldest first."""
        return tuple(self._windows.get(symbol.upper(), ()))

    def latest_price(self, symbol: str) -> Optional[float]:
        """Last trade price seen for a symbol (sampled or not)."""
        return self._latest_price.get(symbol.upper())

    def price_return(self, symbol: str) -> Optional[PriceReturn]:
        """Return across the current window, None with fewer than two ticks."""
        window = self._windows.get(symbol.upper())
        if not window or len(window) < 2:
            return None
        return PriceReturn.between(window[-1], window[0])

    def add_move_listener(self, callback: MoveCallback) -> None:
        """Subscribe to emitted moves."""
        self._on_move.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the stream and start the periodic snapshot report."""
        self._shutting_down = False
        self._open_connection()
        self._report_task = self._scheduler.call_every(
            self._snapshot_interval_ms, self._report_snapshot, name="spot-snapshot"
        )

    async def stop(self) -> None:
        """Stop reconnecting, cancel timers and close the connection."""
        self._shutting_down = True

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        if self._report_task is not None:
            self._report_task.cancel()
            self._report_task = None

        ws = self._ws
        if ws is not None:
            await self._close_ws(ws)

        task = self._connection_task
        self._connection_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._ws = None
        self._connected = False

    def _open_connection(self) -> None:
        loop = asyncio.get_running_loop()
        self._connection_task = loop.create_task(self._run_connection(), name="spot-ws")

    async def _run_connection(self) -> None:
        """Connect, read until the connection ends, then schedule a reconnect."""
        try:
            ws = await self._connector(self.url)
        except Exception as e:
            self._stats["connection_failures"] += 1
            self._events.error("spot.ws.connection_failed", error=str(e))
            if not self._shutting_down:
                self._schedule_reconnect()
            return

        if self._shutting_down:
            await self._close_ws(ws)
            return

        self._ws = ws
        self._connected = True
        self._reconnect_attempt = 0
        self._events.info("spot.ws.connected", symbols=self.symbols, url=self.url)

        reason = None
        try:
            async for message in ws:
                self._handle_message(message)
        except ConnectionClosed as e:
            reason = str(e)
        except Exception as e:
            reason = str(e)
            self._events.error("spot.ws.error", error=reason)
        finally:
            self._connected = False
            self._ws = None

        await self._close_ws(ws)
        self._stats["disconnects"] += 1
        self._events.warn(
            "spot.ws.disconnected",
            reconnectAttempt=self._reconnect_attempt,
            reason=reason,
        )

        if not self._shutting_down:
            self._schedule_reconnect()

    async def _close_ws(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error closing websocket: {e}")

    def _schedule_reconnect(self) -> None:
        delay = RECONNECT_DELAYS_MS[min(self._reconnect_attempt, len(RECONNECT_DELAYS_MS) - 1)]

        self._events.info(
            "spot.ws.reconnecting",
            attempt=self._reconnect_attempt + 1,
            delayMs=delay,
        )

        self._reconnect_task = self._scheduler.call_later(
            delay, self._reconnect, name="spot-reconnect"
        )

    def _reconnect(self) -> None:
        self._reconnect_task = None
        if self._shutting_down:
            return
        self._reconnect_attempt += 1
        self._open_connection()

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def _handle_message(self, raw: Union[str, bytes]) -> None:
        """Decode one combined-stream frame. Never raises."""
        self._stats["messages"] += 1

        try:
            message = orjson.loads(raw)
            data = message.get("data") if isinstance(message, dict) else None
            if not data or not data.get("p"):
                return

            price = float(data["p"])
            if not math.isfinite(price) or price <= 0:
                raise ValueError(f"invalid trade price {data['p']!r}")

            ts_exchange = data.get("T", data.get("E"))
            tick = SpotTick(
                symbol=str(data["s"]).upper(),
                price=price,
                ts_exchange_ms=int(ts_exchange),
                ts_local_ms=self._scheduler.now_ms(),
            )
        except Exception as e:
            self._stats["parse_errors"] += 1
            self._events.error("spot.ws.parse_error", error=str(e))
            return

        self.process_tick(tick)

    def process_tick(self, tick: SpotTick) -> Optional[SpotMove]:
        """
        Apply one tick: update latest price, maybe admit it into the window,
        and check for a move when the window changed.

        Returns:
            The emitted SpotMove, if any
        """
        symbol = tick.symbol
        self._latest_price[symbol] = tick.price
        self._stats["ticks"] += 1

        self._events.debug(
            "spot.tick",
            symbol=symbol,
            price=tick.price,
            latencyMs=tick.latency_ms,
            tsExchange=tick.ts_exchange_ms,
            tsLocal=tick.ts_local_ms,
        )

        last_sample = self._last_sample_ms.get(symbol)
        if last_sample is not None and tick.ts_local_ms - last_sample < self._sample_interval_ms:
            return None

        self._last_sample_ms[symbol] = tick.ts_local_ms
        window = self._windows.setdefault(symbol, deque())
        window.append(tick)
        self._stats["admitted"] += 1

        cutoff = tick.ts_local_ms - self._return_window_ms
        while window and window[0].ts_local_ms < cutoff:
            window.popleft()

        return self._check_move(window)

    def _check_move(self, window: deque[SpotTick]) -> Optional[SpotMove]:
        if len(window) < 2:
            return None

        ret = PriceReturn.between(window[-1], window[0])
        if ret.window_ms < self._return_window_ms * MIN_WINDOW_FRACTION:
            return None
        if abs(ret.return_bps) < self._move_threshold_bps:
            return None

        move = SpotMove(
            symbol=ret.symbol,
            price=ret.current_price,
            return_bps=ret.return_bps,
            direction=ret.direction,
            window_ms=ret.window_ms,
            ts_local_ms=window[-1].ts_local_ms,
        )
        self._stats["moves"] += 1

        self._events.warn(
            "spot.move",
            symbol=ret.symbol,
            returnBps=round(ret.return_bps, 2),
            direction=ret.direction.value,
            currentPrice=ret.current_price,
            pastPrice=ret.past_price,
            windowMs=ret.window_ms,
        )

        for callback in self._on_move:
            try:
                callback(move)
            except Exception as e:
                self._events.error(
                    "spot.move.subscriber_error",
                    symbol=move.symbol,
                    error=str(e),
                )

        return move

    def _report_snapshot(self) -> None:
        if not self._latest_price:
            return

        self._events.info(
            "spot.snapshot",
            prices=dict(self._latest_price),
            bufferSizes={symbol: len(window) for symbol, window in self._windows.items()},
        )
