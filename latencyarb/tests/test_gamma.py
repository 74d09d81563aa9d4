"""Tests for Gamma market discovery and the token-picking CLI helpers."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from fakes import make_book, make_poly_data
from latencyarb import cli
from latencyarb.errors import GammaAPIError
from latencyarb.gamma import (
    GammaClient,
    GammaMarket,
    extract_events,
    get_synonyms,
    matches_query,
    simplify_market,
)
from latencyarb.orderbook import ClobOrderbookSource

RAW_MARKET = {
    "id": 512,
    "slug": "will-bitcoin-hit-100k",
    "question": "Will Bitcoin hit $100k in 2024?",
    "active": True,
    "closed": False,
    "outcomes": '["Yes", "No"]',
    "clobTokenIds": '["111", "222"]',
    "liquidity": "15000.5",
    "volume": 98000,
    "enableOrderBook": True,
}


def response(status=200, json_data=None, text=""):
    """aiohttp-like response usable as `async with session.get(...)`."""
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data)
    resp.text = AsyncMock(return_value=text)
    ctx = MagicMock()
    ctx.__aenter__.return_value = resp
    ctx.__aexit__.return_value = False
    return ctx


@pytest.fixture
def session():
    mock = MagicMock()
    mock.closed = False
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def client(session):
    return GammaClient("https://gamma.test/", session=session)


class TestSimplifyMarket:
    """Tests for simplify_market."""

    def test_json_string_fields(self):
        """List fields sent as JSON text are decoded."""
        market = simplify_market(RAW_MARKET)

        assert market.id == "512"
        assert market.outcomes == ["Yes", "No"]
        assert market.clob_token_ids == ["111", "222"]
        assert market.liquidity == 15000.5
        assert market.volume == 98000.0
        assert market.status == "active"
        assert market.is_active
        assert market.tradability == "confirmed"
        assert market.outcome_tokens() == [("Yes", "111"), ("No", "222")]

    def test_closed_or_inactive(self):
        assert simplify_market({**RAW_MARKET, "closed": True}).status == "closed"
        assert simplify_market({**RAW_MARKET, "active": False}).status == "closed"

    def test_missing_fields(self):
        """A sparse market still converts, with unknown tradability."""
        market = simplify_market({"id": "1", "clobTokenIds": ["9"], "liquidity": "n/a"})

        assert market.slug == ""
        assert market.outcomes == []
        assert market.liquidity is None
        assert market.enable_order_book is None
        assert market.tradability == "unknown"
        assert market.outcome_tokens() == [("Outcome 1", "9")]


class TestQueryMatching:
    """Tests for synonym-aware matching."""

    def test_synonyms(self):
        assert get_synonyms(" BTC ") == ["bitcoin"]
        assert get_synonyms("solana") == []

    def test_matches_direct_and_synonym(self):
        assert matches_query("Will Bitcoin hit $100k?", "bitcoin")
        assert matches_query("Will Bitcoin hit $100k?", "btc")
        assert matches_query("Donald wins", "trump")
        assert not matches_query("Will ETH flip?", "btc")
        assert not matches_query(None, "btc")


class TestExtractEvents:
    @pytest.mark.parametrize("data,expected", [
        ([{"id": 1}], [{"id": 1}]),
        ({"events": [{"id": 2}]}, [{"id": 2}]),
        ({"results": [{"id": 3}]}, [{"id": 3}]),
        ({"data": [{"id": 4}]}, [{"id": 4}]),
        ({"events": None}, []),
        (None, []),
    ])
    def test_shapes(self, data, expected):
        assert extract_events(data) == expected


class TestGammaClient:
    """Tests for GammaClient against a mocked aiohttp session."""

    @pytest.mark.asyncio
    async def test_search_markets(self, client, session):
        session.get.return_value = response(json_data=[RAW_MARKET])

        markets = await client.search_markets("bitcoin", limit=5)

        assert [m.slug for m in markets] == ["will-bitcoin-hit-100k"]
        session.get.assert_called_once_with(
            "https://gamma.test/markets",
            params={"query": "bitcoin", "limit": 5},
        )

    @pytest.mark.asyncio
    async def test_search_markets_http_error(self, client, session):
        session.get.return_value = response(status=500, text="boom")

        with pytest.raises(GammaAPIError, match="500"):
            await client.search_markets("bitcoin")

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self, client, session):
        session.get.side_effect = aiohttp.ClientError("down")

        with pytest.raises(GammaAPIError, match="down"):
            await client.search_markets("bitcoin")

    @pytest.mark.asyncio
    async def test_search_events(self, client, session):
        session.get.return_value = response(json_data={"events": [{"title": "BTC"}]})

        assert await client.search_events("btc") == [{"title": "BTC"}]
        assert session.get.call_args.args[0] == "https://gamma.test/search"

    @pytest.mark.asyncio
    async def test_search_events_falls_back_to_public_search(self, client, session):
        session.get.side_effect = [
            response(status=404),
            response(json_data=[{"title": "fallback"}]),
        ]

        assert await client.search_events("btc", limit=7) == [{"title": "fallback"}]

        second = session.get.call_args_list[1]
        assert second.args[0] == "https://gamma.test/public-search"
        assert second.kwargs["params"] == {"q": "btc", "limit": 7}

    @pytest.mark.asyncio
    async def test_search_events_both_fail(self, client, session):
        session.get.side_effect = [response(status=404), response(status=503, text="busy")]

        with pytest.raises(GammaAPIError, match="503"):
            await client.search_events("btc")

    @pytest.mark.asyncio
    async def test_get_market_by_slug(self, client, session):
        session.get.return_value = response(json_data=RAW_MARKET)

        market = await client.get_market_by_slug("will-bitcoin-hit-100k")

        assert market.clob_token_ids == ["111", "222"]
        session.get.assert_called_once_with("https://gamma.test/markets/will-bitcoin-hit-100k")

    @pytest.mark.asyncio
    async def test_get_market_not_found(self, client, session):
        session.get.return_value = response(status=404)
        assert await client.get_market_by_slug("nope") is None

    @pytest.mark.asyncio
    async def test_context_manager_closes_session(self, session):
        async with GammaClient(session=session):
            pass
        session.close.assert_awaited_once()


def candidate(score, operable, token_id="t"):
    market = GammaMarket(id="m", slug="s", question="q", status="active")
    return cli.TokenCandidate(
        market=market,
        outcome="Yes",
        token_id=token_id,
        metrics=make_poly_data(token_id=token_id),
        score=score,
        operable=operable,
    )


class TestTokenRanking:
    """Tests for the pick command's scoring and ranking."""

    def test_score_prefers_depth_and_tight_spread(self):
        tight = make_poly_data(spread_bps=10, depth=1000)
        wide = make_poly_data(spread_bps=300, depth=1000)
        shallow = make_poly_data(spread_bps=10, depth=100)

        assert cli.score_token(tight) > cli.score_token(wide)
        assert cli.score_token(tight) > cli.score_token(shallow)
        assert cli.score_token(tight) == pytest.approx(1000 / 11)

    def test_is_operable(self):
        market = GammaMarket(id="m", slug="s", question="q", status="active", liquidity=600.0)

        assert cli.is_operable(make_poly_data(spread_bps=100), market, 150.0, 500.0)
        assert not cli.is_operable(make_poly_data(spread_bps=200), market, 150.0, 500.0)
        assert not cli.is_operable(make_poly_data(spread_bps=100), market, 150.0, 1000.0)

        market.enable_order_book = False
        assert not cli.is_operable(make_poly_data(spread_bps=100), market, 150.0, 500.0)

    def test_rank_operable_first(self):
        ranked, found = cli.rank_candidates(
            [candidate(5.0, False, "a"), candidate(2.0, True, "b"), candidate(3.0, True, "c")],
            top=5,
        )

        assert found
        assert [c.token_id for c in ranked] == ["c", "b"]

    def test_rank_falls_back_to_best_available(self):
        ranked, found = cli.rank_candidates(
            [candidate(1.0, False, "a"), candidate(4.0, False, "b"), candidate(2.0, False, "c")],
            top=2,
        )

        assert not found
        assert [c.token_id for c in ranked] == ["b", "c"]


class TestPickFlow:
    """Tests for collect_markets and analyze_tokens."""

    @pytest.mark.asyncio
    async def test_collect_dedupes_across_queries(self):
        client = AsyncMock(spec=GammaClient)
        client.search_events.return_value = [
            {"title": "Bitcoin above 100k?", "markets": [RAW_MARKET]},
        ]

        found = await cli.collect_markets(client, ["bitcoin", "btc"], per_query=10)

        assert list(found) == ["512"]
        assert found["512"][1] == ["bitcoin", "btc"]
        client.search_markets.assert_not_called()

    @pytest.mark.asyncio
    async def test_collect_falls_back_to_market_search(self):
        client = AsyncMock(spec=GammaClient)
        client.search_events.side_effect = GammaAPIError("down")
        client.search_markets.return_value = [
            simplify_market(RAW_MARKET),
            simplify_market({**RAW_MARKET, "id": 9, "closed": True}),
        ]

        found = await cli.collect_markets(client, ["bitcoin"], per_query=10)

        assert list(found) == ["512"]

    @pytest.mark.asyncio
    async def test_analyze_skips_unusable_books(self):
        market = simplify_market(RAW_MARKET)
        source = AsyncMock(spec=ClobOrderbookSource)
        books = {
            "111": make_book(token_id="111", bids=[("0.49", "500")], asks=[("0.51", "500")]),
            "222": make_book(token_id="222", bids=[], asks=[("0.51", "500")]),
        }
        source.get_orderbook.side_effect = lambda token_id: books[token_id]

        candidates = await cli.analyze_tokens(
            source,
            {"512": (market, ["bitcoin"])},
            depth_levels=10,
            max_spread_bps=500.0,
            min_liquidity=500.0,
        )

        assert [c.token_id for c in candidates] == ["111"]
        assert candidates[0].outcome == "Yes"
        assert candidates[0].operable
        assert candidates[0].queries == ["bitcoin"]


class TestMain:
    """Tests for the CLI entry point."""

    def test_missing_query_returns_1(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("POLY_GAMMA_QUERY", raising=False)

        code = cli.main(["--env-file", str(tmp_path / "none.env"), "search"])

        assert code == 1
        assert "query is required" in capsys.readouterr().err
