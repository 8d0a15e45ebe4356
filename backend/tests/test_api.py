"""HTTP surface: routing, payload shapes and error mapping."""

from tests.conftest import local
from tests.mocks.fake_redis import FailingRedis


def booking_payload(court, day=3, hour=14, **extra):
    return {
        "court_id": court.id,
        "start_time": local(day, hour).isoformat(),
        "end_time": local(day, hour + 1).isoformat(),
        **extra,
    }


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"redis": True, "database": True}


def test_health_reports_redis_outage(client):
    client.app.state.redis = FailingRedis()

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json() == {"redis": False, "database": True}


def test_available_slots(client, court):
    response = client.get("/slots/available", params={"date_from": "2025-06-03", "date_to": "2025-06-03"})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["has_more"] is False
    [group] = body["slots"]
    assert group["court_id"] == court.id
    assert group["date"] == "2025-06-03"
    assert group["timezone"] == "Asia/Ho_Chi_Minh"
    assert len(group["slots"]) == 17
    assert group["slots"][0]["price"] == 100_000


def test_available_slots_validation_error(client, court):
    response = client.get("/slots/available", params={"date_from": "2025-06-05", "date_to": "2025-06-03"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_available_slots_rejects_bad_venue_ids(client):
    response = client.get("/slots/available", params={"venue_ids": "1,two"})

    assert response.status_code == 400


def test_booking_lifecycle(client, court):
    created = client.post("/bookings", json=booking_payload(court, user_id=7, annotations={"channel": "web"}))

    assert created.status_code == 201
    booking = created.json()["booking"]
    assert booking["status"] == "pending"
    assert booking["total_amount"] == 100_000
    assert booking["annotations"] == {"channel": "web"}
    assert [s["status"] for s in booking["booked_slots"]] == ["scheduled"]
    assert created.json()["cache_errors"] == []

    slots = client.get("/slots/available", params={"date_from": "2025-06-03", "date_to": "2025-06-03"})
    assert len(slots.json()["slots"][0]["slots"]) == 16

    confirmed = client.post(f"/bookings/{booking['id']}/confirm", json={"payment_reference": "PAY-9"})
    assert confirmed.status_code == 200
    assert confirmed.json()["booking"]["status"] == "confirmed"
    assert confirmed.json()["booking"]["payment_reference"] == "PAY-9"

    fetched = client.get(f"/bookings/{booking['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "confirmed"

    cancelled = client.post(f"/bookings/{booking['id']}/cancel", json={"reason": "injury"})
    assert cancelled.status_code == 200
    body = cancelled.json()
    assert body["booking"]["status"] == "cancelled"
    assert body["booking"]["cancellation_reason"] == "injury"
    assert body["refund"]["amount"] == 100_000
    assert body["refund"]["percentage"] == 100
    assert body["refund_recorded"] is True


def test_confirm_without_body(client, court):
    booking = client.post("/bookings", json=booking_payload(court)).json()["booking"]

    response = client.post(f"/bookings/{booking['id']}/confirm")

    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "confirmed"


def test_conflict_maps_to_409(client, court):
    client.post("/bookings", json=booking_payload(court))

    response = client.post("/bookings", json=booking_payload(court))

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "slot_unavailable"
    assert detail["message"]
    assert detail["details"]["court_id"] == court.id


def test_state_error_maps_to_409(client, court):
    booking = client.post("/bookings", json=booking_payload(court)).json()["booking"]
    client.post(f"/bookings/{booking['id']}/cancel")

    response = client.post(f"/bookings/{booking['id']}/confirm")

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_state"


def test_error_mapping(client, seed):
    venue = seed.venue()
    court = seed.court(venue)
    seed.price(court, 2, "06:00", "12:00", 100_000)

    unpriced = client.post("/bookings", json=booking_payload(court, hour=14))
    outside = client.post("/bookings", json=booking_payload(court, hour=4))
    missing = client.post("/bookings", json=booking_payload(court, court_id=999))
    unknown_booking = client.get("/bookings/999")
    malformed = client.post("/bookings", json={"court_id": court.id})

    assert unpriced.status_code == 422
    assert unpriced.json()["detail"]["code"] == "no_pricing_coverage"
    assert outside.status_code == 400
    assert outside.json()["detail"]["code"] == "outside_operating_hours"
    assert missing.status_code == 404
    assert unknown_booking.status_code == 404
    assert malformed.status_code == 422


def test_cache_outage_on_create_maps_to_503(client, court):
    client.app.state.redis = FailingRedis()

    response = client.post("/bookings", json=booking_payload(court))

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "dependency_unavailable"


def test_recurring_booking(client, court):
    payload = booking_payload(
        court,
        hour=18,
        recurrence={"frequency": "weekly", "days_of_week": [2, 4], "occurrences": 4},
    )

    response = client.post("/bookings", json=payload)

    assert response.status_code == 201
    booking = response.json()["booking"]
    assert booking["booking_type"] == "recurring"
    assert len(booking["booked_slots"]) == 4
    assert booking["total_amount"] == 400_000


def test_sweep_endpoint(client, court, clock):
    booking = client.post("/bookings", json=booking_payload(court)).json()["booking"]
    clock.advance(minutes=11)

    response = client.post("/internal/sweep-expired")

    assert response.status_code == 200
    body = response.json()
    assert body["expired_slot_count"] == 1
    assert body["processed_booking_ids"] == [booking["id"]]
    assert client.get(f"/bookings/{booking['id']}").json()["status"] == "expired"


def test_rebuild_endpoint(client, court, fake_redis):
    booking = client.post("/bookings", json=booking_payload(court)).json()["booking"]
    client.post(f"/bookings/{booking['id']}/confirm")
    fake_redis.flushall()

    response = client.post("/slots/rebuild", json={"venue_id": court.venue_id, "date_from": "2025-06-03"})

    assert response.status_code == 200
    body = response.json()
    assert body["dates"] == ["2025-06-03"]
    assert body["confirmed"] == 1
    assert body["errors"] == []


def test_rebuild_endpoint_rejects_wide_range(client, court):
    response = client.post(
        "/slots/rebuild",
        json={"venue_id": court.venue_id, "date_from": "2025-06-01", "date_to": "2025-09-01"},
    )

    assert response.status_code == 400


def test_rebuild_unknown_venue(client):
    response = client.post("/slots/rebuild", json={"venue_id": 404, "date_from": "2025-06-03"})

    assert response.status_code == 404
