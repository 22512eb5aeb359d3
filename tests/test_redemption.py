import asyncio
from datetime import timedelta

import pytest
from jose import jwt

from boxoffice import config
from boxoffice.db import SessionLocal
from boxoffice.errors import WrongEvent
from boxoffice.models import Booking
from boxoffice.redemption import ALREADY_REDEEMED, REDEEMED, redeem
from tests.helpers import EVENT_DATE, buy, create_event

pytestmark = pytest.mark.asyncio


def _token(db, booking_id: str) -> str:
    db.expire_all()
    return db.get(Booking, booking_id).qr_code_token


async def _scan(client, token, event_id, key=None):
    headers = {"Idempotency-Key": key} if key else {}
    return (await client.post("/redeem", json={"token": token, "event_id": event_id}, headers=headers)).json()


async def test_ticket_admits_once(client, gateway, db):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["A1", "A2"])
    token = _token(db, booking["id"])

    first = await _scan(client, token, event_id)
    assert first["status"] == "ACCEPTED"
    assert first["booking_id"] == booking["id"]
    assert first["seat_numbers"] == ["A1", "A2"]

    second = await _scan(client, token, event_id)
    assert second["status"] == "ALREADY_REDEEMED"
    assert second["redeemed_at"] == first["redeemed_at"]

    db.expire_all()
    stored = db.get(Booking, booking["id"])
    assert stored.qr_code_scan_status is True
    assert stored.qr_code_scan_date is not None


async def test_token_for_other_event_is_refused_and_changes_nothing(client, gateway, db):
    e1 = await create_event(client, name="Night One")
    e2 = await create_event(client, name="Night Two")
    booking = await buy(client, gateway, e1, ["A1"])
    token = _token(db, booking["id"])

    r = await _scan(client, token, e2)
    assert r["status"] == "REJECTED"
    assert r["reason_code"] == "WRONG_EVENT"
    assert r["booking_id"] == booking["id"]

    db.expire_all()
    assert db.get(Booking, booking["id"]).qr_code_scan_status is False

    # still valid at the right gate
    assert (await _scan(client, token, e1))["status"] == "ACCEPTED"


async def test_expired_token_is_refused(client, gateway, db, clock):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["A1"])
    token = _token(db, booking["id"])

    clock.set(EVENT_DATE + timedelta(hours=24, seconds=1))
    r = await _scan(client, token, event_id)
    assert r["reason_code"] == "EXPIRED"

    clock.set(EVENT_DATE + timedelta(hours=23))
    assert (await _scan(client, token, event_id))["status"] == "ACCEPTED"


async def test_forged_and_garbage_tokens_are_refused(client, gateway, db):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["A1"])
    claims = jwt.get_unverified_claims(_token(db, booking["id"]))
    forged = jwt.encode(claims, "not-the-signing-secret", algorithm="HS256")

    assert (await _scan(client, "definitely-not-a-jwt", event_id))["reason_code"] == "INVALID_TOKEN"
    assert (await _scan(client, forged, event_id))["reason_code"] == "INVALID_TOKEN"

    missing_claim = dict(claims)
    missing_claim.pop("seatNumbers")
    partial = jwt.encode(missing_claim, config.TICKET_SIGNING_SECRET, algorithm="HS256")
    assert (await _scan(client, partial, event_id))["reason_code"] == "INVALID_TOKEN"


async def test_reissued_ticket_replaces_old_token(client, gateway, db, clock):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["B1"])
    old_token = _token(db, booking["id"])

    clock.advance(minutes=1)
    r = await client.post(f"/admin/bookings/{booking['id']}/reissue")
    assert r.status_code == 200
    new_token = r.json()["token"]
    assert new_token != old_token

    stale = await _scan(client, old_token, event_id)
    assert stale["reason_code"] == "BOOKING_NOT_FOUND"
    assert stale["booking_id"] == booking["id"]
    assert (await _scan(client, new_token, event_id))["status"] == "ACCEPTED"


async def test_reissue_unknown_booking_is_404(client):
    r = await client.post("/admin/bookings/bk_missing/reissue")
    assert r.status_code == 404


async def test_concurrent_scan_one_wins(client, gateway, db):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["A3"])
    token = _token(db, booking["id"])

    results = await asyncio.gather(*[_scan(client, token, event_id) for _ in range(30)])
    accepted = [x for x in results if x.get("status") == "ACCEPTED"]
    repeated = [x for x in results if x.get("status") == "ALREADY_REDEEMED"]

    assert len(accepted) == 1, f"Expected exactly 1 ACCEPTED, got {len(accepted)}"
    assert len(repeated) == 29


async def test_service_level_redeem(client, gateway, db, clock):
    e1 = await create_event(client, name="Main")
    e2 = await create_event(client, name="Other")
    booking = await buy(client, gateway, e1, ["A4"])
    token = _token(db, booking["id"])

    with pytest.raises(WrongEvent) as exc:
        redeem(db, token, e2, config.TICKET_SIGNING_SECRET, clock=clock)
    assert exc.value.details["ticket_event_id"] == e1

    result = redeem(db, token, e1, config.TICKET_SIGNING_SECRET, clock=clock)
    assert result.status == REDEEMED
    assert result.redeemed_at == clock.now()

    again = redeem(db, token, e1, config.TICKET_SIGNING_SECRET, clock=clock)
    assert again.status == ALREADY_REDEEMED
    assert again.already_redeemed


async def test_gate_decisions_are_audited(client, gateway, db):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["B2"])
    token = _token(db, booking["id"])
    await _scan(client, token, event_id)
    await _scan(client, "junk", event_id)

    logs = (await client.get("/admin/audit", params={"action": "redeem", "event_id": event_id})).json()
    assert [x["reason_code"] for x in logs] == ["INVALID_TOKEN", "OK"]
    assert logs[1]["event_name"] == "Test Event"

    bookings = (await client.get(f"/admin/events/{event_id}/bookings")).json()
    assert bookings[0]["status"] == "REDEEMED"


async def test_scan_that_loses_the_update_race_reports_already_redeemed(client, gateway, db, clock):
    event_id = await create_event(client)
    booking = await buy(client, gateway, event_id, ["A1"])
    token = _token(db, booking["id"])
    secret = config.TICKET_SIGNING_SECRET

    with SessionLocal() as slow, SessionLocal() as fast:
        # the slow scanner has already read the ticket as unused
        assert slow.get(Booking, booking["id"]).qr_code_scan_status is False

        won = redeem(fast, token, event_id, secret, clock=clock)
        clock.advance(seconds=30)
        lost = redeem(slow, token, event_id, secret, clock=clock)

    assert won.status == REDEEMED
    assert lost.status == ALREADY_REDEEMED
    assert lost.redeemed_at == won.redeemed_at
