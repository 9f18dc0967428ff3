"""Constants and stand-ins shared by the test modules."""

import asyncio
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from travel_cost_engine.domain.entities import GeoCoordinate

ZURICH = GeoCoordinate(47.3769, 8.5417)
BERN = GeoCoordinate(46.9480, 7.4474)
GENEVA = GeoCoordinate(46.2044, 6.1432)

# Distance the allowance figures below were issued against
ZURICH_BERN_KM = 93.752


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("db down"))

    async def __aexit__(self, *exc_info):
        return False


class BrokenSessionFactory:
    """Stands in for ``async_sessionmaker`` when the store is unreachable."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return _BrokenSession()


class _HangingSession:
    def __init__(self, delay: float):
        self.delay = delay

    async def __aenter__(self):
        await asyncio.sleep(self.delay)
        raise AssertionError("session should have timed out")

    async def __aexit__(self, *exc_info):
        return False


class HangingSessionFactory:
    """Stands in for ``async_sessionmaker`` when the store stops answering."""

    def __init__(self, delay: float = 10.0):
        self.delay = delay
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return _HangingSession(self.delay)


def fixed_distance(km: float):
    """Calculator stub returning *km* for every pair; records its calls."""
    calls = []

    def calculator(a: GeoCoordinate, b: GeoCoordinate) -> float:
        calls.append((a, b))
        return km

    calculator.calls = calls
    return calculator
