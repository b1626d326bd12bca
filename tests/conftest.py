from datetime import datetime, timedelta, timezone

import pytest

from safedrive.config import Config
from safedrive.db import make_session_factory
from safedrive.engine import TelemetryEngine
from safedrive.persistence import SqlTripStore
from safedrive.schemas import Sample

T0 = datetime(2025, 8, 1, 8, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; each call returns the current instant."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def make_sample():
    """Build a sample ``offset`` seconds after T0 at NYC coordinates."""
    def _make(speed, limit=35.0, offset=0, lat=40.7128, lon=-74.0060):
        return Sample(
            latitude=lat,
            longitude=lon,
            speed=speed,
            speed_limit=limit,
            timestamp=T0 + timedelta(seconds=offset)
        )
    return _make


@pytest.fixture
def cfg():
    return Config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    return make_session_factory("sqlite://")


@pytest.fixture
def store(session_factory):
    return SqlTripStore(session_factory)


@pytest.fixture
def engine(store, cfg, clock):
    return TelemetryEngine(store, cfg, clock)
