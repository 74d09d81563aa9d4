"""Shared fixtures."""

import logging

import pytest

from fakes import FakeConnector, FakeScheduler
from latencyarb.logging_utils import EventLogger


@pytest.fixture
def scheduler():
    """Fresh fake scheduler at T0."""
    return FakeScheduler()


@pytest.fixture
def connector():
    """Fresh fake websocket connector."""
    return FakeConnector()


@pytest.fixture
def events(caplog):
    """Event logger whose records are captured at DEBUG."""
    caplog.set_level(logging.DEBUG, logger="latencyarb")
    return EventLogger("latencyarb.tests")


@pytest.fixture
def emitted(caplog):
    """Return payloads of captured records for an event type."""

    def _emitted(event: str) -> list[dict]:
        return [
            r.payload for r in caplog.records
            if getattr(r, "event", None) == event
        ]

    return _emitted
