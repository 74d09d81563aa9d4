"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .logging_utils import parse_log_level
from .types import SignalConfig


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}")


@dataclass
class AppConfig:
    """Application configuration."""

    # Logging
    log_level: str = "info"
    log_to_file: bool = True
    log_dir: str = "logs"

    # Binance spot feed
    binance_ws_base: str = "wss://stream.binance.com:9443"
    spot_symbols: list[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    spot_snapshot_interval_ms: int = 5000
    spot_return_window_ms: int = 60_000
    spot_move_threshold_bps: float = 50.0
    spot_buffer_sample_ms: int = 250

    # Polymarket market data
    polymarket_token_ids: list[str] = field(default_factory=list)
    poly_clob_host: str = "https://clob.polymarket.com"
    poly_snapshot_interval_ms: int = 5000
    poly_depth_levels: int = 10

    # Gamma market discovery
    gamma_api_url: str = "https://gamma-api.polymarket.com"
    poly_gamma_query: Optional[str] = None
    poly_gamma_limit: int = 10

    # Arbitrage strategy
    arb_min_poly_depth: float = 50.0
    arb_max_poly_spread_bps: float = 80.0
    arb_min_edge_bps: float = 20.0
    arb_cooldown_ms: int = 15_000

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Load config from environment variables.

        Raises:
            ConfigurationError: If a numeric or boolean variable cannot be parsed
        """
        return cls(
            # Logging
            log_level=os.getenv("LOG_LEVEL", "info"),
            log_to_file=_env_bool("LOG_TO_FILE", True),
            log_dir=os.getenv("LOG_DIR", "logs"),

            # Binance
            binance_ws_base=os.getenv("BINANCE_WS_BASE", "wss://stream.binance.com:9443"),
            spot_symbols=[s.upper() for s in _split_csv(os.getenv("SPOT_SYMBOLS", "BTCUSDT,ETHUSDT"))],
            spot_snapshot_interval_ms=_env_int("SPOT_SNAPSHOT_INTERVAL_MS", 5000),
            spot_return_window_ms=_env_int("SPOT_RETURN_WINDOW_MS", 60_000),
            spot_move_threshold_bps=_env_float("SPOT_MOVE_THRESHOLD_BPS", 50.0),
            spot_buffer_sample_ms=_env_int("SPOT_BUFFER_SAMPLE_MS", 250),

            # Polymarket
            polymarket_token_ids=_split_csv(os.getenv("POLYMARKET_TOKEN_ID", "")),
            poly_clob_host=os.getenv("POLY_CLOB_HOST", "https://clob.polymarket.com"),
            poly_snapshot_interval_ms=_env_int("POLY_SNAPSHOT_INTERVAL_MS", 5000),
            poly_depth_levels=_env_int("POLY_DEPTH_LEVELS", 10),

            # Gamma
            gamma_api_url=os.getenv("POLY_GAMMA_URL", "https://gamma-api.polymarket.com"),
            poly_gamma_query=os.getenv("POLY_GAMMA_QUERY") or None,
            poly_gamma_limit=_env_int("POLY_GAMMA_LIMIT", 10),

            # Arbitrage
            arb_min_poly_depth=_env_float("ARB_MIN_POLY_DEPTH", 50.0),
            arb_max_poly_spread_bps=_env_float("ARB_MAX_POLY_SPREAD_BPS", 80.0),
            arb_min_edge_bps=_env_float("ARB_MIN_EDGE_BPS", 20.0),
            arb_cooldown_ms=_env_int("ARB_COOLDOWN_MS", 15_000),
        )

    @classmethod
    def from_env_file(cls, path: str = ".env") -> "AppConfig":
        """
        Load config from .env file, then environment variables.

        Environment variables override file values.
        """
        load_dotenv(path, override=False)
        return cls.from_env()

    def validate(self, require_token: bool = True) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        try:
            parse_log_level(self.log_level)
        except ValueError:
            errors.append("LOG_LEVEL must be one of debug, info, warn, error")

        if not self.spot_symbols:
            errors.append("SPOT_SYMBOLS must list at least one symbol")

        if require_token and not self.polymarket_token_ids:
            errors.append("POLYMARKET_TOKEN_ID: Required for bot mode")

        positive_ints = {
            "SPOT_SNAPSHOT_INTERVAL_MS": self.spot_snapshot_interval_ms,
            "SPOT_RETURN_WINDOW_MS": self.spot_return_window_ms,
            "SPOT_BUFFER_SAMPLE_MS": self.spot_buffer_sample_ms,
            "POLY_SNAPSHOT_INTERVAL_MS": self.poly_snapshot_interval_ms,
            "POLY_DEPTH_LEVELS": self.poly_depth_levels,
            "POLY_GAMMA_LIMIT": self.poly_gamma_limit,
            "ARB_COOLDOWN_MS": self.arb_cooldown_ms,
        }
        for name, value in positive_ints.items():
            if value <= 0:
                errors.append(f"{name} must be positive")

        positive_floats = {
            "SPOT_MOVE_THRESHOLD_BPS": self.spot_move_threshold_bps,
            "ARB_MIN_POLY_DEPTH": self.arb_min_poly_depth,
            "ARB_MAX_POLY_SPREAD_BPS": self.arb_max_poly_spread_bps,
            "ARB_MIN_EDGE_BPS": self.arb_min_edge_bps,
        }
        for name, value in positive_floats.items():
            if not value > 0 or value == float("inf"):
                errors.append(f"{name} must be a positive finite number")

        return errors

    def signal_config(self) -> SignalConfig:
        """Gate thresholds for the signal engine."""
        return SignalConfig(
            min_poly_depth=self.arb_min_poly_depth,
            max_poly_spread_bps=self.arb_max_poly_spread_bps,
            min_edge_bps=self.arb_min_edge_bps,
            cooldown_ms=self.arb_cooldown_ms,
        )
