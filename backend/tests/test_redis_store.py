import json
from datetime import date, timedelta

import pytest

from courtbook.errors import DependencyError
from courtbook.services.slots.redis_store import (
    CONFIRMED,
    RESERVED,
    CachedSlot,
    SlotsRedisStore,
    slot_field,
)
from tests.conftest import VENUE_TZ, local
from tests.mocks.fake_redis import FailingRedis

VENUE = 7
DAY = date(2025, 6, 3)


def entry(start_hour, end_hour, booking_id=1, slot_id=1, court_id=3, **kwargs):
    return CachedSlot(
        court_id=court_id,
        start_time=local(3, start_hour),
        end_time=local(3, end_hour),
        booking_id=booking_id,
        slot_id=slot_id,
        **kwargs,
    )


def test_keys_are_partitioned_by_venue_and_date(store, fake_redis):
    store.put_reserved(VENUE, DAY, entry(14, 15))
    store.put_confirmed(VENUE, DAY, entry(16, 17, booking_id=2), VENUE_TZ)

    assert set(fake_redis.hashes) == {"reserved:7:2025-06-03", "confirmed:7:2025-06-03"}
    field = slot_field(3, local(3, 14), local(3, 15))
    record = json.loads(fake_redis.hashes["reserved:7:2025-06-03"][field])
    assert record["booking_id"] == 1
    assert record["status"] == RESERVED
    assert record["expires_at"] == (local(2, 10) + timedelta(minutes=10)).isoformat()


def test_confirmed_partition_expires_at_next_local_midnight(store, fake_redis):
    store.put_confirmed(VENUE, DAY, entry(14, 15), VENUE_TZ)

    assert fake_redis.expire_at["confirmed:7:2025-06-03"] == local(4, 0).timestamp()


def test_reserved_entries_lapse_with_hold(store, clock):
    store.put_reserved(VENUE, DAY, entry(14, 15))
    assert len(store.query_all(VENUE, DAY).reserved) == 1

    clock.advance(minutes=10)

    assert store.query_all(VENUE, DAY).reserved == []


def test_lapsed_entry_is_absent_even_when_hash_ttl_was_extended(store, clock, fake_redis):
    store.put_reserved(VENUE, DAY, entry(14, 15, booking_id=1))
    clock.advance(minutes=8)
    store.put_reserved(VENUE, DAY, entry(16, 17, booking_id=2, slot_id=2))
    clock.advance(minutes=3)

    day = store.query_all(VENUE, DAY)

    assert len(fake_redis.hashes["reserved:7:2025-06-03"]) == 2
    assert [s.booking_id for s in day.reserved] == [2]


def test_shorter_hold_does_not_shorten_hash_ttl(store, clock, fake_redis):
    store.put_reserved(VENUE, DAY, entry(14, 15, booking_id=1), ttl_seconds=600)
    store.put_reserved(VENUE, DAY, entry(16, 17, booking_id=2, slot_id=2), ttl_seconds=60)

    assert fake_redis.ttl("reserved:7:2025-06-03") == 600

    clock.advance(minutes=2)

    assert [s.booking_id for s in store.query_all(VENUE, DAY).reserved] == [1]


def test_malformed_entries_are_treated_as_absent(store, fake_redis):
    fake_redis.hset("confirmed:7:2025-06-03", mapping={
        "3:bad": "not json",
        "3:partial": json.dumps({"court_id": 3}),
    })
    store.put_confirmed(VENUE, DAY, entry(14, 15), VENUE_TZ)

    day = store.query_all(VENUE, DAY)

    assert [(s.court_id, s.booking_id) for s in day.confirmed] == [(3, 1)]


def test_is_available_uses_half_open_overlap(store):
    store.put_confirmed(VENUE, DAY, entry(14, 15), VENUE_TZ)
    store.put_reserved(VENUE, DAY, entry(17, 18, booking_id=2))

    assert store.is_available(VENUE, DAY, 3, local(3, 15), local(3, 16))
    assert store.is_available(VENUE, DAY, 3, local(3, 13), local(3, 14))
    assert not store.is_available(VENUE, DAY, 3, local(3, 14, 30), local(3, 15, 30))
    assert not store.is_available(VENUE, DAY, 3, local(3, 16, 30), local(3, 17, 30))
    # other court on the same day is unaffected
    assert store.is_available(VENUE, DAY, 4, local(3, 14), local(3, 15))


def test_remove_single_entry(store):
    store.put_reserved(VENUE, DAY, entry(14, 15))

    removed = store.remove(RESERVED, VENUE, DAY, 3, local(3, 14), local(3, 15))

    assert removed == 1
    assert store.query_all(VENUE, DAY).merged == []


def test_remove_all_for_booking_only_touches_that_booking(store):
    store.put_reserved(VENUE, DAY, entry(14, 15, booking_id=1))
    store.put_confirmed(VENUE, DAY, entry(9, 10, booking_id=1, slot_id=5), VENUE_TZ)
    store.put_reserved(VENUE, DAY, entry(16, 17, booking_id=2, slot_id=2))

    removed = store.remove_all_for_booking(VENUE, DAY, 1)

    assert removed == 2
    assert [s.booking_id for s in store.query_all(VENUE, DAY).merged] == [2]


def test_remove_all_for_booking_limited_to_partition(store):
    store.put_reserved(VENUE, DAY, entry(14, 15))
    store.put_confirmed(VENUE, DAY, entry(14, 15), VENUE_TZ)

    store.remove_all_for_booking(VENUE, DAY, 1, partitions=(RESERVED,))

    day = store.query_all(VENUE, DAY)
    assert day.reserved == []
    assert len(day.confirmed) == 1


def test_query_many_returns_every_pair(store):
    other_day = date(2025, 6, 4)
    store.put_confirmed(VENUE, DAY, entry(14, 15), VENUE_TZ)

    result = store.query_many([(VENUE, DAY), (VENUE, other_day), (VENUE, DAY)])

    assert set(result) == {(VENUE, DAY), (VENUE, other_day)}
    assert len(result[(VENUE, DAY)].confirmed) == 1
    assert result[(VENUE, other_day)].merged == []


def test_delete_days(store, fake_redis):
    store.put_reserved(VENUE, DAY, entry(14, 15))
    store.put_confirmed(VENUE, DAY, entry(16, 17), VENUE_TZ)

    assert store.delete_days(VENUE, [DAY]) == 2
    assert fake_redis.hashes == {}


def test_unknown_partition_is_rejected(store):
    with pytest.raises(ValueError):
        store.remove("pending", VENUE, DAY, 3, local(3, 14), local(3, 15))


def test_redis_failures_surface_as_dependency_error(config, clock):
    store = SlotsRedisStore(FailingRedis(), config, clock)

    with pytest.raises(DependencyError):
        store.query_all(VENUE, DAY)
    with pytest.raises(DependencyError):
        store.put_reserved(VENUE, DAY, entry(14, 15))
    with pytest.raises(DependencyError):
        store.remove_all_for_booking(VENUE, DAY, 1)


def test_record_round_trip_keeps_partition_status(store):
    store.put_confirmed(VENUE, DAY, entry(14, 15, status=RESERVED), VENUE_TZ)

    [slot] = store.query_all(VENUE, DAY).confirmed

    assert slot.status == CONFIRMED
    assert slot.start_time == local(3, 14)
