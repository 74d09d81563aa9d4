"""
Gamma API client for Polymarket market discovery.

Used by the CLI to find markets and their CLOB token ids before configuring
POLYMARKET_TOKEN_ID.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp
import orjson

from .errors import GammaAPIError
from .logging_utils import EventLogger

logger = logging.getLogger(__name__)
events = EventLogger(logger)

QUERY_SYNONYMS: dict[str, list[str]] = {
    "trump": ["donald", "donald trump"],
    "donald": ["trump"],
    "btc": ["bitcoin"],
    "bitcoin": ["btc"],
    "eth": ["ethereum"],
    "ethereum": ["eth"],
    "etf": ["spot etf", "bitcoin etf"],
}


def get_synonyms(query: str) -> list[str]:
    """Synonyms for a single-term query."""
    return QUERY_SYNONYMS.get(query.strip().lower(), [])


def matches_query(text: str, query: str) -> bool:
    """Case-insensitive substring match, also accepting synonyms of the query."""
    text_lower = (text or "").lower()
    if query.lower() in text_lower:
        return True
    return any(syn in text_lower for syn in get_synonyms(query))


@dataclass(slots=True)
class GammaMarket:
    """Market summary for display and token picking."""
    id: str
    slug: str
    question: str
    status: str  # "active" or "closed"
    outcomes: list[str] = field(default_factory=list)
    clob_token_ids: list[str] = field(default_factory=list)
    liquidity: Optional[float] = None
    volume: Optional[float] = None
    enable_order_book: Optional[bool] = None
    tradability: str = "unknown"  # "confirmed" or "unknown"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def outcome_tokens(self) -> list[tuple[str, str]]:
        """(outcome, token_id) pairs; unnamed outcomes get a positional label."""
        pairs = []
        for i, token_id in enumerate(self.clob_token_ids):
            outcome = self.outcomes[i] if i < len(self.outcomes) else f"Outcome {i + 1}"
            pairs.append((outcome, token_id))
        return pairs


def _decode_list(value: Any) -> list[str]:
    """Gamma returns some list fields JSON-encoded as strings."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = orjson.loads(value)
        except orjson.JSONDecodeError:
            return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def simplify_market(market: dict) -> GammaMarket:
    """Convert a raw Gamma market dict into a GammaMarket."""
    closed = bool(market.get("closed", False))
    active = bool(market.get("active", False))
    token_ids = _decode_list(market.get("clobTokenIds"))
    enable_order_book = market.get("enableOrderBook")

    tradability = "confirmed" if enable_order_book is True and token_ids else "unknown"

    return GammaMarket(
        id=str(market.get("id", "")),
        slug=market.get("slug", "") or "",
        question=market.get("question", "") or "",
        status="closed" if closed or not active else "active",
        outcomes=_decode_list(market.get("outcomes")),
        clob_token_ids=token_ids,
        liquidity=_to_float(market.get("liquidity")),
        volume=_to_float(market.get("volume")),
        enable_order_book=enable_order_book,
        tradability=tradability,
    )


def extract_events(data: Any) -> list[dict]:
    """Pull the event list out of any of the search response shapes."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("events", "results", "data"):
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


class GammaClient:
    """
    Client for Polymarket Gamma API.

    Read-only; used for market discovery.
    """

    DEFAULT_BASE_URL = "https://gamma-api.polymarket.com"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the Gamma client.

        Args:
            base_url: Gamma API base URL
            session: Optional pre-built session (created lazily otherwise)
        """
        self._base_url = base_url.rstrip("/")
        self._session = session

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure HTTP session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "GammaClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def search_markets(self, query: str, limit: int = 10) -> list[GammaMarket]:
        """
        Search markets by query string.

        Args:
            query: Search query (e.g., "bitcoin")
            limit: Maximum results to return

        Returns:
            List of GammaMarket
        """
        session = await self._ensure_session()
        url = f"{self._base_url}/markets"
        params = {"query": query, "limit": limit}

        events.debug("gamma.search.request", query=query, limit=limit, url=url)

        try:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise GammaAPIError(f"Search failed: {resp.status} - {text}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise GammaAPIError(f"Search request failed: {e}")

        markets = [simplify_market(m) for m in data or []]
        events.info("gamma.search.success", query=query, resultsCount=len(markets))
        return markets

    async def search_events(self, query: str, limit: int = 50) -> list[dict]:
        """
        Text search over events.

        Tries /search first and falls back to /public-search when it
        answers with a non-200 status.

        Returns:
            List of raw event dicts (each may carry a "markets" list)
        """
        session = await self._ensure_session()

        url = f"{self._base_url}/search"
        params = {
            "q": query,
            "events_status": "active",
            "keep_closed_markets": 0,
            "limit": limit,
        }

        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 200:
                    result = extract_events(await resp.json())
                    events.info("gamma.search_api.success", query=query, eventsCount=len(result))
                    return result
                events.debug("gamma.search_api.fallback", query=query, status=resp.status)

            url = f"{self._base_url}/public-search"
            params = {"q": query, "limit": limit}
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise GammaAPIError(f"Public search failed: {resp.status} - {text}")
                return extract_events(await resp.json())
        except aiohttp.ClientError as e:
            raise GammaAPIError(f"Search request failed: {e}")

    async def get_market_by_slug(self, slug: str) -> Optional[GammaMarket]:
        """
        Get a market by its URL slug.

        Returns:
            GammaMarket or None if not found
        """
        session = await self._ensure_session()
        url = f"{self._base_url}/markets/{slug}"

        try:
            async with session.get(url) as resp:
                if resp.status == 404:
                    events.warn("gamma.get_market.not_found", slug=slug)
                    return None
                if resp.status != 200:
                    text = await resp.text()
                    raise GammaAPIError(f"Get market failed: {resp.status} - {text}")
                return simplify_market(await resp.json())
        except aiohttp.ClientError as e:
            raise GammaAPIError(f"Get market request failed: {e}")
