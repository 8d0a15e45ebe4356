"""
Shared test fixtures.

  • in-memory SQLite (StaticPool) with every table created
  • FakeRedis whose key expiry follows the test clock
  • a frozen clock: Monday 2025-06-02 10:00 in Asia/Ho_Chi_Minh (03:00 UTC)
  • seed helpers for venues, courts and price rules
  • a TestClient wired to all of the above
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from courtbook.config import Settings
from courtbook.database import build_session_factory, enable_sqlite_fk
from courtbook.main import create_app
from courtbook.models import Base, Courts, PriceRules, Venues
from courtbook.services.slots import BookingConfig, SlotsRedisStore
from courtbook.timezones import UTC
from tests.mocks.fake_redis import FakeRedis

VENUE_TZ = "Asia/Ho_Chi_Minh"  # UTC+7, no DST
NOW = datetime(2025, 6, 2, 3, 0, tzinfo=UTC)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def local(day: int, hour: int, minute: int = 0, month: int = 6) -> datetime:
    """UTC instant of a 2025 wall-clock time in the venue timezone."""
    return datetime(2025, month, day, hour, minute, tzinfo=UTC) - timedelta(hours=7)


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_fk)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def clock():
    return FrozenClock(NOW)


@pytest.fixture()
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture()
def config():
    return BookingConfig(default_timezone=VENUE_TZ)


@pytest.fixture()
def store(fake_redis, config, clock):
    return SlotsRedisStore(fake_redis, config, clock)


@pytest.fixture()
def seed(db):
    return Seeder(db)


@pytest.fixture()
def court(seed):
    """Active court at an active 06:00-23:00 venue, 100_000/h every day."""
    venue = seed.venue()
    court = seed.court(venue)
    seed.prices(court, "06:00", "23:00", 100_000)
    return court


@pytest.fixture()
def client(engine, fake_redis, clock):
    settings = Settings(
        log_level="WARNING",
        default_timezone=VENUE_TZ,
        sweep_interval_seconds=0,
    )
    app = create_app(settings=settings, engine=engine, redis=fake_redis, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


# ── Seed helpers ───────────────────────────────────────────────────────────


class Seeder:
    def __init__(self, db) -> None:
        self.db = db

    def venue(self, name="Riverside Club", opening="06:00", closing="23:00", timezone=VENUE_TZ, status="active"):
        venue = Venues(
            name=name,
            timezone=timezone,
            opening_time=opening,
            closing_time=closing,
            status=status,
        )
        self.db.add(venue)
        self.db.commit()
        return venue

    def court(self, venue, name="Court 1", status="active"):
        court = Courts(venue_id=venue.id, name=name, status=status)
        self.db.add(court)
        self.db.commit()
        return court

    def price(self, court, day_of_week, start, end, price, is_active=1):
        rule = PriceRules(
            court_id=court.id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            price=price,
            is_active=is_active,
        )
        self.db.add(rule)
        self.db.commit()
        return rule

    def prices(self, court, start, end, price):
        for dow in range(7):
            self.price(court, dow, start, end, price)
