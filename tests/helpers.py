from datetime import datetime, timezone

import httpx

from boxoffice.notifications import Notifier

EVENT_DATE = datetime(2026, 6, 1, 20, 0, tzinfo=timezone.utc)
SEATS = ["A1", "A2", "A3", "A4", "B1", "B2"]


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_booking_confirmation(self, booking, seat_map):
        if self.fail:
            raise ConnectionError("smtp unreachable")
        self.sent.append(("confirmation", booking.id))

    async def send_organizer_notification(self, booking, seat_map):
        if self.fail:
            raise ConnectionError("smtp unreachable")
        self.sent.append(("organizer", booking.id))


async def create_event(
    client: httpx.AsyncClient, name="Test Event", seats=SEATS, event_date=EVENT_DATE, venue="Main Hall", is_free=False
) -> str:
    r = await client.post(
        "/admin/events",
        json={
            "name": name,
            "seat_ids": list(seats),
            "event_date": event_date.isoformat(),
            "venue": venue,
            "is_free": is_free,
        },
    )
    r.raise_for_status()
    data = r.json()
    assert data.get("ok") is True, data
    return data["event_id"]


async def hold(client: httpx.AsyncClient, event_id: str, seats, session_id=None, user_id="user_1") -> httpx.Response:
    return await client.post(
        "/locks",
        json={"event_id": event_id, "seat_numbers": list(seats), "session_id": session_id, "user_id": user_id},
    )


async def checkout(client: httpx.AsyncClient, event_id: str, seats, hold_session_id=None, total_price=50.0, user_id="user_1") -> str:
    r = await client.post(
        "/checkout",
        json={
            "user_id": user_id,
            "event_id": event_id,
            "seat_numbers": list(seats),
            "total_price": total_price,
            "hold_session_id": hold_session_id,
            "customer_email": "buyer@example.com",
        },
    )
    r.raise_for_status()
    return r.json()["session_id"]


async def pay(client: httpx.AsyncClient, gateway, session_id: str, **kwargs) -> httpx.Response:
    payload, signature = gateway.completed_notification(session_id, **kwargs)
    return await client.post(
        "/webhooks/payment",
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


async def buy(client: httpx.AsyncClient, gateway, event_id: str, seats) -> dict:
    """Hold, check out and pay; returns the stored booking."""
    session_id = (await hold(client, event_id, seats)).json()["session_id"]
    checkout_id = await checkout(client, event_id, seats, hold_session_id=session_id)
    r = await pay(client, gateway, checkout_id)
    assert r.json()["status"] == "FULFILLED", r.json()
    return (await client.get(f"/bookings/session/{checkout_id}")).json()
