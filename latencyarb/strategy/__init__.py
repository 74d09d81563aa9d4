"""Signal generation."""

from .latency_signal import LatencySignalEngine

__all__ = ["LatencySignalEngine"]
