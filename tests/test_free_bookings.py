import pytest
from sqlalchemy import select

from boxoffice.models import AuditLog, Booking
from boxoffice.seat_map import reserved_seats_for
from tests.helpers import buy, create_event, hold

pytestmark = pytest.mark.asyncio


async def _book_free(client, event_id, seats, **extra):
    body = {"user_id": "user_1", "event_id": event_id, "seat_numbers": seats, **extra}
    return await client.post("/bookings/free", json=body)


async def test_free_event_books_without_payment(client, db, notifier):
    event_id = await create_event(client, name="Open Day", is_free=True)

    r = await _book_free(client, event_id, ["A2", "A1"], customer_email="guest@example.com")
    assert r.status_code == 200, r.json()
    body = r.json()
    assert body["seat_numbers"] == ["A1", "A2"]
    assert body["total_price"] == 0
    assert body["payment_status"] == "free"
    assert body["gateway_session_id"] is None
    assert body["qr_code_url"].startswith("http://test/artifacts/")

    assert reserved_seats_for(db, event_id) == {"A1", "A2"}
    assert db.get(Booking, body["id"]).qr_code_token
    assert notifier.sent == [("confirmation", body["id"]), ("organizer", body["id"])]

    audit = db.execute(select(AuditLog).where(AuditLog.booking_id == body["id"])).scalar_one()
    assert (audit.action, audit.status, audit.detail) == ("FULFILL", "ACCEPTED", "free")


async def test_free_ticket_admits_at_the_gate(client, db):
    event_id = await create_event(client, is_free=True)
    booking = (await _book_free(client, event_id, ["B1"])).json()
    token = db.get(Booking, booking["id"]).qr_code_token

    r = await client.post("/redeem", json={"token": token, "event_id": event_id})
    assert r.json()["status"] == "ACCEPTED"


async def test_paid_event_refuses_the_free_path(client, db):
    event_id = await create_event(client)

    r = await _book_free(client, event_id, ["A1"])
    assert r.status_code == 400
    assert r.json()["reason_code"] == "EVENT_NOT_FREE"
    assert reserved_seats_for(db, event_id) == set()


async def test_taken_seat_is_refused(client, db):
    event_id = await create_event(client, is_free=True)
    assert (await _book_free(client, event_id, ["A1"])).status_code == 200

    r = await _book_free(client, event_id, ["A1", "A2"], user_id="user_2")
    assert r.status_code == 409
    assert r.json()["reason_code"] == "SEAT_ALREADY_BOOKED"
    assert r.json()["seats"] == ["A1"]
    assert reserved_seats_for(db, event_id) == {"A1"}


async def test_seat_held_by_someone_else_is_refused(client):
    event_id = await create_event(client, is_free=True)
    await hold(client, event_id, ["A3"], session_id="S_other")

    r = await _book_free(client, event_id, ["A3"])
    assert r.status_code == 409
    assert r.json()["reason_code"] == "SEAT_TEMPORARILY_HELD"


async def test_own_hold_is_released_after_booking(client):
    event_id = await create_event(client, is_free=True)
    await hold(client, event_id, ["A3", "A4"], session_id="S_mine")

    r = await _book_free(client, event_id, ["A3", "A4"], hold_session_id="S_mine")
    assert r.status_code == 200, r.json()

    held = (await client.get("/locks", params={"event_id": event_id})).json()["seats"]
    assert held == []


async def test_free_booking_needs_a_known_seat(client):
    event_id = await create_event(client, is_free=True)

    r = await _book_free(client, event_id, ["Z9"])
    assert r.status_code == 400
    assert r.json()["reason_code"] == "INVALID_SEAT"
