"""Gate-side redemption. Single use is a conditional UPDATE on ``qr_code_scan_status``."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock, as_utc
from .errors import BookingNotFound, WrongEvent
from .models import Booking
from .security import verify_redemption_token

REDEEMED = "REDEEMED"
ALREADY_REDEEMED = "ALREADY_REDEEMED"


@dataclass(frozen=True)
class RedemptionResult:
    status: str
    booking_id: str
    event_id: str
    user_id: str
    seat_numbers: list
    ticket_type: str
    redeemed_at: datetime

    @property
    def already_redeemed(self) -> bool:
        return self.status == ALREADY_REDEEMED


def _result(status: str, booking: Booking) -> RedemptionResult:
    return RedemptionResult(
        status=status,
        booking_id=booking.id,
        event_id=booking.event_id,
        user_id=booking.user_id,
        seat_numbers=list(booking.seat_numbers),
        ticket_type=booking.ticket_type,
        redeemed_at=as_utc(booking.qr_code_scan_date),
    )


def redeem(db: Session, token: str, expected_event_id: str, secret: str, clock: Clock | None = None) -> RedemptionResult:
    """Consume a ticket at the gate of ``expected_event_id``.

    Raises InvalidToken, ExpiredToken, BookingNotFound or WrongEvent. A ticket
    that was already consumed is not an error: the result carries
    ``ALREADY_REDEEMED`` and the original timestamp.
    """
    now = (clock or SystemClock()).now()
    claims = verify_redemption_token(token, secret, now)

    booking = db.execute(select(Booking).where(Booking.qr_code_token == token)).scalar_one_or_none()
    if booking is None:
        raise BookingNotFound("no booking holds this token", booking_id=claims.get("bookingId"))

    if booking.qr_code_scan_status:
        return _result(ALREADY_REDEEMED, booking)

    if claims["eventId"] != expected_event_id or booking.event_id != expected_event_id:
        raise WrongEvent(
            "ticket belongs to a different event",
            booking_id=booking.id,
            ticket_event_id=claims["eventId"],
        )

    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.qr_code_scan_status.is_(False))
        .values(qr_code_scan_status=True, qr_code_scan_date=now)
    )
    db.commit()
    db.refresh(booking)

    if result.rowcount == 0:
        # another scanner won the race
        return _result(ALREADY_REDEEMED, booking)
    return _result(REDEEMED, booking)
