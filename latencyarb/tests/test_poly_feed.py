"""Tests for PolymarketFeed: scheduling, backoff, no-overlap guard."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from fakes import T0, drain, make_book
from latencyarb.errors import OrderbookFetchError
from latencyarb.feeds import PolymarketFeed
from latencyarb.orderbook import ClobOrderbookSource

GOOD_BOOK = make_book(
    token_id="tok",
    bids=[("0.48", "100"), ("0.49", "50")],
    asks=[("0.52", "80"), ("0.51", "20")],
)


@pytest.fixture
def source():
    """Mock orderbook source returning a healthy book."""
    mock = AsyncMock(spec=ClobOrderbookSource)
    mock.get_orderbook.return_value = GOOD_BOOK
    return mock


@pytest.fixture
def snapshots():
    return []


@pytest.fixture
def feed(source, scheduler, events, snapshots):
    """Feed polling every 5s, publishing into `snapshots`."""
    return PolymarketFeed(
        token_id="tok",
        source=source,
        scheduler=scheduler,
        base_interval_ms=5000,
        depth_levels=10,
        on_snapshot=snapshots.append,
        events=events,
    )


class TestLifecycle:
    """Tests for start/stop."""

    def test_start_schedules_first_poll(self, feed, scheduler, emitted):
        """First poll runs one base interval after start."""
        feed.start()

        assert feed.running
        assert scheduler.pending_named("poly-poll") == [T0 + 5000]
        started = emitted("poly.feed.started")[0]
        assert started == {"tokenId": "tok", "interval": 5000, "depthLevels": 10}

    def test_double_start_warns(self, feed, scheduler, emitted):
        """A second start logs already_running and schedules nothing new."""
        feed.start()
        feed.start()

        assert len(emitted("poly.feed.already_running")) == 1
        assert len(scheduler.pending_named("poly-poll")) == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_timer(self, feed, scheduler, source, emitted):
        """After stop no poll fires."""
        feed.start()
        await feed.stop()
        await scheduler.advance(60_000)

        assert not feed.running
        assert scheduler.pending == []
        source.get_orderbook.assert_not_called()
        assert emitted("poly.feed.stopped") == [{"tokenId": "tok"}]

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, feed):
        """stop() on an idle feed is harmless."""
        await feed.stop()
        assert not feed.running


class TestPolling:
    """Tests for successful polls."""

    @pytest.mark.asyncio
    async def test_poll_publishes_snapshot(self, feed, scheduler, snapshots, emitted):
        """A good book is normalized, logged and handed to subscribers."""
        feed.start()
        await scheduler.advance(5000)

        assert len(snapshots) == 1
        data = snapshots[0]
        assert data.best_bid == pytest.approx(0.49)
        assert data.best_ask == pytest.approx(0.51)
        assert data.mid_price == pytest.approx(0.50)
        assert data.spread_bps == pytest.approx(400.0)
        assert data.depth_top_n == pytest.approx(250.0)
        assert data.ts_local_ms == T0 + 5000
        assert feed.latest == data

        payload = emitted("poly.snapshot")[0]
        assert payload["tokenId"] == "tok"
        assert payload["midPrice"] == 0.5
        assert payload["bidLevels"] == 2
        assert payload["askLevels"] == 2

    @pytest.mark.asyncio
    async def test_polls_repeat_at_base_interval(self, feed, scheduler, source):
        """Each completed poll schedules the next one base interval later."""
        feed.start()
        await scheduler.advance(5000)
        assert scheduler.pending_named("poly-poll") == [T0 + 10_000]

        await scheduler.advance(10_000)
        assert source.get_orderbook.await_count == 3

    @pytest.mark.asyncio
    async def test_subscriber_error_isolated(self, source, scheduler, events, emitted):
        """A raising subscriber does not stop later ones or the feed."""
        received = []

        def bad(data):
            raise ValueError("nope")

        feed = PolymarketFeed("tok", source, scheduler, on_snapshot=[bad, received.append], events=events)
        feed.start()
        await scheduler.advance(5000)

        assert len(received) == 1
        assert len(emitted("poly.snapshot.subscriber_error")) == 1
        assert feed.consecutive_errors == 0


class TestErrorsAndBackoff:
    """Tests for poll errors and exponential backoff."""

    @pytest.mark.asyncio
    async def test_backoff_sequence(self, feed, scheduler, source, emitted):
        """Failures back off 5s, 10s, 20s, then cap at 30s."""
        source.get_orderbook.side_effect = OrderbookFetchError("timeout")
        feed.start()

        for delay in (5000, 5000, 10_000, 20_000, 30_000, 30_000):
            await scheduler.advance(delay)

        backoffs = [p["nextBackoffMs"] for p in emitted("poly.poll.error")]
        assert backoffs == [5000, 10_000, 20_000, 30_000, 30_000, 30_000]
        assert [p["consecutiveErrors"] for p in emitted("poly.poll.error")] == [1, 2, 3, 4, 5, 6]
        assert len(emitted("poly.poll.backoff")) == 5
        assert feed.consecutive_errors == 6
        assert feed.current_backoff_ms == 30_000
        assert emitted("poly.poll.error")[0]["error"] == "timeout"

    @pytest.mark.asyncio
    async def test_success_resets_backoff(self, feed, scheduler, source):
        """A good poll resets errors and returns to the base interval."""
        source.get_orderbook.side_effect = [OrderbookFetchError("x"), OrderbookFetchError("y"), GOOD_BOOK]
        feed.start()

        await scheduler.advance(5000)
        await scheduler.advance(5000)
        assert feed.current_backoff_ms == 10_000

        await scheduler.advance(10_000)
        assert feed.consecutive_errors == 0
        assert feed.current_backoff_ms == 0
        assert scheduler.pending_named("poly-poll") == [scheduler.now_ms() + 5000]

    @pytest.mark.asyncio
    async def test_no_book_is_error(self, feed, scheduler, source, snapshots, emitted):
        """A None book counts as a poll error."""
        source.get_orderbook.return_value = None
        feed.start()
        await scheduler.advance(5000)

        assert snapshots == []
        assert emitted("poly.poll.error")[0]["error"] == "No orderbook data returned"
        assert emitted("poly.poll.backoff") == []

    @pytest.mark.asyncio
    async def test_empty_side_is_invalid(self, feed, scheduler, source, emitted):
        """An empty ask side logs poly.orderbook.invalid and a poll error."""
        source.get_orderbook.return_value = make_book(bids=[("0.5", "10")], asks=[])
        feed.start()
        await scheduler.advance(5000)

        assert emitted("poly.orderbook.invalid") == [{"tokenId": "tok", "bids": 1, "asks": 0}]
        assert feed.consecutive_errors == 1

    @pytest.mark.asyncio
    async def test_zero_price_is_invalid_prices(self, feed, scheduler, source, emitted):
        """A zero best price logs poly.orderbook.invalid_prices."""
        source.get_orderbook.return_value = make_book(bids=[("0", "10")], asks=[("0.5", "10")])
        feed.start()
        await scheduler.advance(5000)

        assert len(emitted("poly.orderbook.invalid_prices")) == 1
        assert feed.consecutive_errors == 1
        assert feed.latest is None

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_poll_error(self, feed, scheduler, source):
        """Any exception from the source becomes a poll error, not a crash."""
        source.get_orderbook.side_effect = RuntimeError("weird")
        feed.start()
        await scheduler.advance(5000)

        assert feed.consecutive_errors == 1
        assert not feed.in_flight
        assert scheduler.pending_named("poly-poll") == [T0 + 10_000]


class TestNoOverlap:
    """Tests for the in-flight guard."""

    @pytest.mark.asyncio
    async def test_hanging_fetch_blocks_further_polls(self, feed, scheduler, source, snapshots, emitted):
        """While a fetch hangs, nothing new is scheduled and direct polls are skipped."""
        release = asyncio.Event()

        async def hang(token_id):
            await release.wait()
            return GOOD_BOOK

        source.get_orderbook.side_effect = hang
        feed.start()
        await scheduler.advance(5000)

        assert feed.in_flight
        assert scheduler.pending_named("poly-poll") == []

        await scheduler.advance(60_000)
        assert await feed.poll_once() is None
        assert source.get_orderbook.await_count == 1
        assert emitted("poly.poll.skipped")[0]["reason"] == "previous poll still in flight"

        # Completing after stop publishes nothing and schedules nothing
        await feed.stop()
        release.set()
        await drain()

        assert not feed.in_flight
        assert snapshots == []
        assert scheduler.pending == []

    @pytest.mark.asyncio
    async def test_restart_during_fetch_keeps_single_poll_chain(self, feed, scheduler, source, snapshots):
        """A fetch from before stop/start neither publishes nor schedules a second chain."""
        release = asyncio.Event()

        async def hang(token_id):
            await release.wait()
            return GOOD_BOOK

        source.get_orderbook.side_effect = hang
        feed.start()
        await scheduler.advance(5000)
        assert feed.in_flight

        await feed.stop()
        feed.start()
        release.set()
        await drain()

        assert snapshots == []
        assert feed.latest is None
        assert scheduler.pending_named("poly-poll") == [T0 + 10_000]

        await scheduler.advance(5000)

        assert len(snapshots) == 1
        assert scheduler.pending_named("poly-poll") == [T0 + 15_000]

    @pytest.mark.asyncio
    async def test_stale_failure_does_not_back_off_new_run(self, feed, scheduler, source):
        """An error from a fetch of a previous run leaves the new run's backoff alone."""
        release = asyncio.Event()

        async def hang_then_fail(token_id):
            await release.wait()
            raise OrderbookFetchError("late failure")

        source.get_orderbook.side_effect = hang_then_fail
        feed.start()
        await scheduler.advance(5000)

        await feed.stop()
        feed.start()
        release.set()
        await drain()

        assert feed.consecutive_errors == 0
        assert feed.current_backoff_ms == 0
        assert scheduler.pending_named("poly-poll") == [T0 + 10_000]
