"""Checkout start: seal the buyer's intent and open a gateway session."""

from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from . import config
from .clock import Clock, SystemClock
from .errors import EmptySelection, SeatAlreadyBooked, SeatTemporarilyHeld
from .gateway import CheckoutSession, PaymentGateway
from .intent import IntentCodec, PaymentIntent
from .seat_locks import held_by_others
from .seat_map import get_event, validate_selection


def charged_amount_minor(total_price: float, fee_rate: float = config.SERVICE_FEE_RATE) -> int:
    """Amount sent to the gateway in minor units, service fee included."""
    return int(round(total_price * (1 + fee_rate) * 100))


def start_checkout(
    db: Session,
    gateway: PaymentGateway,
    codec: IntentCodec,
    *,
    user_id: str,
    event_id: str,
    seat_numbers: list[str],
    total_price: float,
    ticket_type: str = "standard",
    booking_date: datetime | None = None,
    hold_session_id: str | None = None,
    customer_email: str | None = None,
    clock: Clock | None = None,
) -> CheckoutSession:
    clock = clock or SystemClock()
    seats = sorted({s.strip() for s in seat_numbers if s and s.strip()})
    if not seats:
        raise EmptySelection()

    seat_map = get_event(db, event_id)
    validate_selection(seat_map, seats)
    sold = seat_map.sold_seats(seats)
    if sold:
        raise SeatAlreadyBooked(sold)

    now = clock.now()
    held = held_by_others(db, event_id, seats, hold_session_id, now)
    if held:
        raise SeatTemporarilyHeld(held)

    intent = PaymentIntent(
        user_id=user_id,
        event_id=event_id,
        seat_numbers=seats,
        total_price=total_price,
        booking_date=booking_date or seat_map.event_date,
        ticket_type=ticket_type,
        created_at=now,
        hold_session_id=hold_session_id,
    )
    sealed = codec.encode(intent)

    line_items = [
        {
            "price_data": {
                "currency": config.CURRENCY,
                "product_data": {
                    "name": f"Tickets for {seat_map.name}",
                    "description": f"Venue: {seat_map.venue or 'TBA'}, Seats: {', '.join(seats)}",
                },
                "unit_amount": charged_amount_minor(total_price),
            },
            "quantity": 1,
        }
    ]
    session = gateway.create_checkout_session(
        line_items=line_items,
        metadata={"intent": sealed, "created_at": now.isoformat()},
        success_url=f"{config.FRONTEND_URL}/bookings/confirmation?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{config.FRONTEND_URL}/events/{event_id}?canceled=true",
        customer_email=customer_email,
    )
    logger.info(
        f"checkout opened gateway={gateway.name} session_id={session.session_id} event_id={event_id} "
        f"seats={seats} hold_session_id={hold_session_id}"
    )
    return session
