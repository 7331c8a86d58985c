from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from gateway import TimeEntryGateway
from tracker import TimeTracker


class FakeClock:
    """Manually advanced replacement for the gateway's wall clock."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["timetracker_test"]


@pytest.fixture
def gateway(mongo_db, clock) -> TimeEntryGateway:
    return TimeEntryGateway(mongo_db, clock=clock)


@pytest.fixture
async def tracker(gateway) -> TimeTracker:
    tracker = TimeTracker(gateway)
    await tracker.refresh()
    return tracker
