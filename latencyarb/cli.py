#!/usr/bin/env python3
"""
Market discovery CLI.

Finds Polymarket markets through the Gamma API and ranks their tokens by
orderbook quality, so a token id can be chosen for POLYMARKET_TOKEN_ID.

Usage:
    latencyarb-gamma search bitcoin --limit 10
    latencyarb-gamma pick bitcoin ethereum --top 5

Both commands fall back to POLY_GAMMA_QUERY when no query is given.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import GammaAPIError, InvalidOrderbookError, LatencyArbError
from .gamma import GammaClient, GammaMarket, matches_query, simplify_market
from .logging_utils import EventLogger, setup_logging
from .orderbook import ClobOrderbookSource, OrderbookSource, normalize_orderbook
from .types import PolyMarketData, wall_ms

logger = logging.getLogger(__name__)
events = EventLogger(logger)

# Orderbooks fetched concurrently per batch
PICK_CONCURRENCY = 5


@dataclass(slots=True)
class TokenCandidate:
    """A token with its orderbook metrics and ranking score."""
    market: GammaMarket
    outcome: str
    token_id: str
    metrics: PolyMarketData
    score: float
    operable: bool
    queries: list[str] = field(default_factory=list)


def score_token(metrics: PolyMarketData) -> float:
    """Depth per unit of spread. Higher is better."""
    return metrics.depth_top_n / (1 + max(metrics.spread_bps, 0.0))


def is_operable(
    metrics: PolyMarketData,
    market: GammaMarket,
    max_spread_bps: float,
    min_liquidity: float,
) -> bool:
    """Whether a token is tight and liquid enough to trade."""
    return (
        metrics.spread_bps <= max_spread_bps
        and (market.liquidity or 0.0) >= min_liquidity
        and market.enable_order_book is not False
    )


def rank_candidates(candidates: list[TokenCandidate], top: int) -> tuple[list[TokenCandidate], bool]:
    """
    Order candidates best first and cut to `top`.

    Returns:
        (ranked, operable_found). When no candidate is operable, the best
        non-operable ones are returned instead.
    """
    ordered = sorted(candidates, key=lambda c: c.score, reverse=True)
    operable = [c for c in ordered if c.operable]
    if operable:
        return operable[:top], True
    return ordered[:top], False


async def collect_markets(
    client: GammaClient,
    queries: list[str],
    per_query: int,
) -> dict[str, tuple[GammaMarket, list[str]]]:
    """
    Search each query and collect tradable markets, deduplicated by id.

    Event search is tried first; the plain market search is the fallback
    when it yields nothing tradable.
    """
    found: dict[str, tuple[GammaMarket, list[str]]] = {}

    for query in queries:
        markets: list[GammaMarket] = []

        try:
            for event in await client.search_events(query, per_query):
                title = event.get("title", "") or ""
                for raw in event.get("markets") or []:
                    if (
                        matches_query(raw.get("question", ""), query)
                        or matches_query(title, query)
                        or matches_query(raw.get("slug", ""), query)
                    ):
                        markets.append(simplify_market(raw))
        except GammaAPIError as e:
            events.warn("gamma.search.failed", query=query, error=str(e))

        markets = [m for m in markets if m.clob_token_ids and m.enable_order_book is not False]

        if not markets:
            try:
                markets = [
                    m for m in await client.search_markets(query, per_query)
                    if m.clob_token_ids and m.is_active
                ]
                events.info("gamma.markets.fallback", query=query, count=len(markets))
            except GammaAPIError as e:
                events.warn("gamma.markets.failed", query=query, error=str(e))

        print(f'  "{query}": {len(markets)} markets')

        for market in markets:
            if market.id in found:
                found[market.id][1].append(query)
            else:
                found[market.id] = (market, [query])

    return found


async def analyze_tokens(
    source: OrderbookSource,
    markets: dict[str, tuple[GammaMarket, list[str]]],
    depth_levels: int,
    max_spread_bps: float,
    min_liquidity: float,
) -> list[TokenCandidate]:
    """Fetch and score the orderbook of every unique token."""
    items = []
    seen: set[str] = set()
    for market, queries in markets.values():
        for outcome, token_id in market.outcome_tokens():
            if token_id in seen:
                continue
            seen.add(token_id)
            items.append((market, queries, outcome, token_id))

    async def analyze(item) -> Optional[TokenCandidate]:
        market, queries, outcome, token_id = item
        try:
            book = await source.get_orderbook(token_id)
            if book is None:
                return None
            metrics = normalize_orderbook(book, depth_levels, wall_ms())
        except InvalidOrderbookError:
            return None
        except LatencyArbError as e:
            events.error("pick.token.error", tokenId=token_id, error=str(e))
            return None

        return TokenCandidate(
            market=market,
            outcome=outcome,
            token_id=token_id,
            metrics=metrics,
            score=score_token(metrics),
            operable=is_operable(metrics, market, max_spread_bps, min_liquidity),
            queries=list(queries),
        )

    candidates = []
    for i in range(0, len(items), PICK_CONCURRENCY):
        batch = items[i:i + PICK_CONCURRENCY]
        for result in await asyncio.gather(*(analyze(item) for item in batch)):
            if result is not None:
                candidates.append(result)
    return candidates


def _print_market(market: GammaMarket, index: int) -> None:
    print(f"{index}. {market.question}")
    print(f"   Slug: {market.slug}")
    print(f"   Status: {market.status.upper()}")
    if market.liquidity is not None:
        print(f"   Liquidity: ${market.liquidity:,.2f}")
    if market.volume is not None:
        print(f"   Volume: ${market.volume:,.2f}")
    print(f"   Outcomes: {', '.join(market.outcomes) if market.outcomes else 'N/A'}")
    for outcome, token_id in market.outcome_tokens():
        print(f"   Token ID ({outcome}): {token_id}")
    print("   " + "-" * 76)


def _print_candidate(candidate: TokenCandidate, index: int, depth_levels: int) -> None:
    m = candidate.metrics
    print(f"{index}. {candidate.outcome} - {candidate.market.question}")
    print(f"   Market: {candidate.market.slug}")
    print(f"   Token ID: {candidate.token_id}")
    print(f"   Spread: {m.spread_bps:.2f} bps {'(operable)' if candidate.operable else '(not operable)'}")
    print(f"   Mid Price: {m.mid_price:.4f}")
    print(f"   Depth (top {depth_levels}): {m.depth_top_n:.2f}")
    print(f"   Levels: {m.bid_levels} bids / {m.ask_levels} asks")
    if candidate.market.liquidity:
        print(f"   Liquidity: ${candidate.market.liquidity:,.2f}")
    print(f"   Score: {candidate.score:.2f} (higher is better)")
    print(f"   Query: {', '.join(candidate.queries)}")
    print("   " + "-" * 76)


async def run_search(args: argparse.Namespace, client: GammaClient) -> int:
    query = args.query
    print(f'Searching Polymarket markets for "{query}" (limit {args.limit})\n')

    markets = await client.search_markets(query, args.limit)
    if not markets:
        print("No markets found.")
        return 0

    active = [m for m in markets if m.is_active]
    closed = [m for m in markets if not m.is_active]
    print(f"Found {len(markets)} market(s): {len(active)} active, {len(closed)} closed")
    print("=" * 80)

    if active:
        print("\nACTIVE MARKETS:\n")
        for i, market in enumerate(active, 1):
            _print_market(market, i)

    if closed:
        print("\nCLOSED MARKETS:\n")
        for i, market in enumerate(closed, len(active) + 1):
            _print_market(market, i)

    print("\nSet POLYMARKET_TOKEN_ID=<token_id> in .env to follow a market.")
    return 0


async def run_pick(
    args: argparse.Namespace,
    client: GammaClient,
    source: Optional[OrderbookSource] = None,
) -> int:
    queries = args.queries
    print(f"Queries: {', '.join(queries)}")
    print(f"Max spread: {args.max_spread_bps} bps | Min liquidity: ${args.min_liquidity}\n")

    markets = await collect_markets(client, queries, args.per_query)
    if not markets:
        print("No active markets found for these queries.")
        return 0

    source = source or ClobOrderbookSource(args.clob_host)
    candidates = await analyze_tokens(
        source,
        markets,
        depth_levels=args.depth_levels,
        max_spread_bps=args.max_spread_bps,
        min_liquidity=args.min_liquidity,
    )
    if not candidates:
        print("No tokens could be analyzed. Check that the markets have orderbooks.")
        return 0

    ranked, operable_found = rank_candidates(candidates, args.top)

    print("=" * 80)
    if operable_found:
        print(f"\nTOP TOKENS ({sum(c.operable for c in candidates)} operable)\n")
    else:
        print("\nWARNING: no token passed the spread/liquidity filters. Best available:\n")

    for i, candidate in enumerate(ranked, 1):
        _print_candidate(candidate, i, args.depth_levels)

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="latencyarb-gamma",
        description="Discover Polymarket markets and pick tokens to monitor",
    )
    parser.add_argument("--env-file", default=".env", help="Env file to load (default: .env)")
    parser.add_argument("--log-level", default=None, help="debug, info, warn or error")
    parser.add_argument(
        "--gamma-url",
        default=None,
        help="Gamma API base URL (default: POLY_GAMMA_URL or the public API)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search markets and list their token ids")
    search.add_argument("query", nargs="?", help="Search text (default: POLY_GAMMA_QUERY)")
    search.add_argument("--limit", type=int, default=None, help="Max markets (default: POLY_GAMMA_LIMIT or 10)")

    pick = sub.add_parser("pick", help="Rank tokens by orderbook quality")
    pick.add_argument("queries", nargs="*", help="Search texts (default: POLY_GAMMA_QUERY)")
    pick.add_argument("--top", type=int, default=10, help="Tokens to show (default: 10)")
    pick.add_argument("--depth-levels", type=int, default=10, help="Levels per side in depth (default: 10)")
    pick.add_argument("--max-spread-bps", type=float, default=150.0, help="Operable spread cap (default: 150)")
    pick.add_argument("--min-liquidity", type=float, default=500.0, help="Operable liquidity floor (default: 500)")
    pick.add_argument("--per-query", type=int, default=25, help="Markets fetched per query (default: 25)")
    pick.add_argument(
        "--clob-host",
        default=None,
        help="CLOB host (default: POLY_CLOB_HOST or the public API)",
    )

    return parser


async def _run(args: argparse.Namespace) -> int:
    async with GammaClient(args.gamma_url) as client:
        if args.command == "search":
            return await run_search(args, client)
        return await run_pick(args, client)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file, override=False)

    try:
        setup_logging(args.log_level or os.getenv("LOG_LEVEL", "info"))
    except ValueError as e:
        parser.error(str(e))

    args.gamma_url = args.gamma_url or os.getenv("POLY_GAMMA_URL", GammaClient.DEFAULT_BASE_URL)
    default_query = os.getenv("POLY_GAMMA_QUERY")

    if args.command == "search":
        args.query = args.query or default_query
        if not args.query:
            print("Error: a query is required (argument or POLY_GAMMA_QUERY)", file=sys.stderr)
            parser.print_usage(sys.stderr)
            return 1
        if args.limit is None:
            try:
                args.limit = int(os.getenv("POLY_GAMMA_LIMIT", "10"))
            except ValueError:
                parser.error("POLY_GAMMA_LIMIT must be an integer")
    else:
        args.queries = args.queries or ([default_query] if default_query else [])
        if not args.queries:
            print("Error: at least one query is required (arguments or POLY_GAMMA_QUERY)", file=sys.stderr)
            parser.print_usage(sys.stderr)
            return 1
        args.clob_host = args.clob_host or os.getenv("POLY_CLOB_HOST", "https://clob.polymarket.com")

    try:
        return asyncio.run(_run(args))
    except GammaAPIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
