"""Custom exceptions for the latency arbitrage pipeline."""


class LatencyArbError(Exception):
    """Base exception for latencyarb errors."""
    pass


class ConfigurationError(LatencyArbError):
    """Raised when configuration is invalid."""
    pass


class PriceParseError(LatencyArbError, ValueError):
    """Raised when a price or size field cannot be parsed into a usable decimal."""

    def __init__(self, field: str, raw: object, detail: str = "unparseable"):
        self.field = field
        self.raw = raw
        self.detail = detail
        super().__init__(f"{field}: {detail} ({raw!r})")


class InvalidOrderbookError(LatencyArbError):
    """Raised when an orderbook snapshot cannot be normalized."""

    def __init__(
        self,
        message: str,
        bid_levels: int = 0,
        ask_levels: int = 0,
        invalid_prices: bool = False,
    ):
        self.bid_levels = bid_levels
        self.invalid_prices = invalid_prices
        self.ask_levels = ask_levels
        super().__init__(message)


class OrderbookFetchError(LatencyArbError):
    """Raised when the orderbook source fails at the transport level."""
    pass


class GammaAPIError(LatencyArbError):
    """Error from Gamma API."""
    pass
