"""
Signal engine output types.

An evaluation of a spot move yields exactly one of:
- ArbSignal: all gates passed
- one Discard variant: the first gate that failed, with that gate's context
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from .market_data import Direction, SpotMove


class DiscardReason(str, Enum):
    """Why a spot move did not produce a signal."""
    NO_POLY_SNAPSHOT = "no_poly_snapshot"
    WIDE_SPREAD = "wide_spread"
    LOW_DEPTH = "low_depth"
    COOLDOWN = "cooldown"
    INSUFFICIENT_EDGE = "insufficient_edge"


@dataclass(frozen=True, slots=True)
class SignalConfig:
    """Gate thresholds for the signal engine."""
    min_poly_depth: float = 50.0
    max_poly_spread_bps: float = 80.0
    min_edge_bps: float = 20.0
    cooldown_ms: int = 15_000


@dataclass(frozen=True, slots=True)
class ArbSignal:
    """Latency arbitrage opportunity. Immutable once emitted."""
    timestamp_ms: int
    spot_symbol: str
    spot_price: float
    spot_move_bps: float
    spot_direction: Direction
    poly_token_id: str
    poly_mid_price: float
    poly_spread_bps: float
    poly_depth: float
    edge_bps: float
    reason: str = "latency_opportunity"

    def to_payload(self) -> dict:
        """Log payload."""
        return {
            "timestamp_ms": self.timestamp_ms,
            "spot_symbol": self.spot_symbol,
            "spot_price": self.spot_price,
            "spot_move_bps": round(self.spot_move_bps, 2),
            "spot_direction": self.spot_direction.value,
            "poly_token_id": self.poly_token_id,
            "poly_mid_price": round(self.poly_mid_price, 4),
            "poly_spread_bps": round(self.poly_spread_bps, 2),
            "poly_depth": round(self.poly_depth, 2),
            "edge_bps": round(self.edge_bps, 2),
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class Discard:
    """Base for discard variants. Subclasses set `reason` and their own fields."""
    move: SpotMove

    reason: ClassVar[DiscardReason]

    def context(self) -> dict:
        """Gate-specific fields."""
        return {}

    def to_payload(self) -> dict:
        """Log payload: reason tag, the triggering move, then gate context."""
        payload = {
            "reason": self.reason.value,
            "spot_symbol": self.move.symbol,
            "spot_price": self.move.price,
            "spot_move_bps": round(self.move.return_bps, 2),
            "spot_direction": self.move.direction.value,
        }
        payload.update(self.context())
        return payload


@dataclass(frozen=True, slots=True)
class NoPolySnapshot(Discard):
    reason: ClassVar[DiscardReason] = DiscardReason.NO_POLY_SNAPSHOT


@dataclass(frozen=True, slots=True)
class WideSpread(Discard):
    spread_bps: float
    max_spread_bps: float

    reason: ClassVar[DiscardReason] = DiscardReason.WIDE_SPREAD

    def context(self) -> dict:
        return {"poly_spread_bps": self.spread_bps, "max_allowed": self.max_spread_bps}


@dataclass(frozen=True, slots=True)
class LowDepth(Discard):
    depth: float
    min_depth: float

    reason: ClassVar[DiscardReason] = DiscardReason.LOW_DEPTH

    def context(self) -> dict:
        return {"poly_depth": self.depth, "min_required": self.min_depth}


@dataclass(frozen=True, slots=True)
class Cooldown(Discard):
    elapsed_ms: int
    cooldown_ms: int

    reason: ClassVar[DiscardReason] = DiscardReason.COOLDOWN

    def context(self) -> dict:
        return {"time_since_last_ms": self.elapsed_ms, "cooldown_ms": self.cooldown_ms}


@dataclass(frozen=True, slots=True)
class InsufficientEdge(Discard):
    poly_move_bps: float
    edge_bps: float
    min_edge_bps: float

    reason: ClassVar[DiscardReason] = DiscardReason.INSUFFICIENT_EDGE

    def context(self) -> dict:
        return {
            "poly_move_bps": self.poly_move_bps,
            "edge_bps": self.edge_bps,
            "min_required": self.min_edge_bps,
        }


SignalDecision = Union[ArbSignal, Discard]
