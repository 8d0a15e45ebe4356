from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from courtbook.models import BookedSlots, Bookings, SlotClaims
from courtbook.services.slot_claims import SlotClaimGuard, claim_buckets, is_aligned
from tests.conftest import NOW, local


def test_buckets_cover_half_open_interval():
    buckets = claim_buckets(local(3, 14), local(3, 14, 30), 5)

    assert len(buckets) == 6
    assert buckets[0] == local(3, 14)
    assert buckets[-1] == local(3, 14, 25)


def test_buckets_floor_unaligned_start():
    buckets = claim_buckets(local(3, 14, 7), local(3, 14, 20), 15)

    assert buckets == [local(3, 14), local(3, 14, 15)]


def test_bucket_size_must_divide_an_hour():
    with pytest.raises(ValueError):
        claim_buckets(local(3, 14), local(3, 15), 7)


def test_alignment():
    assert is_aligned(local(3, 14, 5), 5)
    assert not is_aligned(local(3, 14, 7), 5)
    assert not is_aligned(local(3, 14) + timedelta(seconds=30), 5)


def make_slot(db, court, start, end, expiry_at=None, status="scheduled"):
    booking = Bookings(
        venue_id=court.venue_id,
        court_id=court.id,
        start_time=start,
        end_time=end,
        status="pending",
        booking_type="single",
        total_amount=0,
    )
    slot = BookedSlots(
        booking=booking,
        court_id=court.id,
        start_time=start,
        end_time=end,
        status=status,
        expiry_at=expiry_at,
    )
    db.add_all([booking, slot])
    db.flush()
    return slot


def test_overlapping_claims_violate_unique_constraint(db, court):
    guard = SlotClaimGuard(db, 5)
    first = make_slot(db, court, local(3, 14), local(3, 15))
    guard.claim(first)
    db.commit()

    second = make_slot(db, court, local(3, 14, 30), local(3, 15, 30))
    guard.claim(second)
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_adjacent_claims_do_not_collide(db, court):
    guard = SlotClaimGuard(db, 5)
    for start, end in [(local(3, 14), local(3, 15)), (local(3, 15), local(3, 16))]:
        guard.claim(make_slot(db, court, start, end))
    db.commit()

    assert db.query(SlotClaims).count() == 24


def test_release_lapsed_frees_only_expired_holds(db, court):
    guard = SlotClaimGuard(db, 5)
    lapsed = make_slot(db, court, local(3, 14), local(3, 15), expiry_at=NOW - timedelta(minutes=1))
    live = make_slot(db, court, local(3, 16), local(3, 17), expiry_at=NOW + timedelta(minutes=5))
    guard.claim(lapsed)
    guard.claim(live)
    db.commit()

    released = guard.release_lapsed(court.id, local(3, 14), local(3, 17), NOW)
    db.commit()

    assert released == 12
    assert not guard.has_claims(lapsed)
    assert guard.has_claims(live)


def test_ensure_claimed_reclaims_free_buckets(db, court):
    guard = SlotClaimGuard(db, 5)
    slot = make_slot(db, court, local(3, 14), local(3, 15), expiry_at=NOW - timedelta(minutes=1))
    db.commit()

    guard.ensure_claimed(slot, NOW)
    db.commit()

    assert guard.has_claims(slot)
