from datetime import date, timedelta

import pytest

from courtbook.errors import NotFoundError
from courtbook.services.reservations import ReservationManager, ReservationRequest
from courtbook.services.slots import SlotsRedisStore, rebuild_venue_cache
from courtbook.services.slots.invalidator import get_affected_dates, invalidate_venue_cache
from tests.conftest import local
from tests.mocks.fake_redis import FailingRedis

TOMORROW = date(2025, 6, 3)


@pytest.fixture()
def manager(db, store, config, clock):
    return ReservationManager(db, store, config, clock)


def book(manager, court, day, hour, confirm=False):
    booking = manager.create(
        ReservationRequest(court_id=court.id, start_time=local(day, hour), end_time=local(day, hour + 1))
    ).booking
    if confirm:
        manager.confirm(booking.id)
    return booking


def test_get_affected_dates():
    assert get_affected_dates(date(2025, 6, 3), date(2025, 6, 5)) == [
        date(2025, 6, 3),
        date(2025, 6, 4),
        date(2025, 6, 5),
    ]
    assert get_affected_dates(date(2025, 6, 5), date(2025, 6, 4)) == [date(2025, 6, 4), date(2025, 6, 5)]


def test_invalidate_drops_both_partitions(manager, store, court):
    book(manager, court, 3, 8, confirm=True)
    book(manager, court, 3, 10)

    deleted = invalidate_venue_cache(store, court.venue_id, [TOMORROW])

    assert deleted == 2
    assert store.query_all(court.venue_id, TOMORROW).merged == []


def test_rebuild_restores_durable_view(manager, db, store, fake_redis, court, clock):
    confirmed = book(manager, court, 3, 8, confirm=True)
    lapsed = book(manager, court, 3, 10)
    cancelled = book(manager, court, 3, 16)
    manager.cancel(cancelled.id)
    clock.advance(minutes=11)
    live = book(manager, court, 3, 18)
    fake_redis.flushall()

    report = rebuild_venue_cache(db, store, court.venue_id, [TOMORROW], clock)

    assert report.dates == [TOMORROW]
    assert report.confirmed == 1
    assert report.reserved == 1
    assert report.errors == []

    day = store.query_all(court.venue_id, TOMORROW)
    assert [s.booking_id for s in day.confirmed] == [confirmed.id]
    assert [s.booking_id for s in day.reserved] == [live.id]
    assert day.reserved[0].expires_at == clock.now + timedelta(minutes=10)
    assert lapsed.id not in {s.booking_id for s in day.merged}


def test_rebuild_only_touches_requested_dates(manager, db, store, court):
    book(manager, court, 3, 8, confirm=True)
    book(manager, court, 4, 8, confirm=True)

    report = rebuild_venue_cache(db, store, court.venue_id, [date(2025, 6, 4)])

    assert report.confirmed == 1
    assert len(store.query_all(court.venue_id, TOMORROW).confirmed) == 1


def test_rebuild_unknown_venue(db, store):
    with pytest.raises(NotFoundError):
        rebuild_venue_cache(db, store, 404, [TOMORROW])


def test_rebuild_without_dates_is_a_no_op(db, store, court):
    report = rebuild_venue_cache(db, store, court.venue_id, [])

    assert report.dates == []
    assert report.deleted_keys == 0


def test_rebuild_counts_only_successful_writes(manager, db, config, clock, court, monkeypatch):
    book(manager, court, 3, 8, confirm=True)
    store = SlotsRedisStore(FailingRedis(), config, clock)
    monkeypatch.setattr(store, "delete_days", lambda venue_id, dates: 0)

    report = rebuild_venue_cache(db, store, court.venue_id, [TOMORROW], clock)

    assert report.confirmed == 0
    assert len(report.errors) == 1
