"""Ticket issuance: signed redemption token, then the QR artifact."""

import io
import json
from dataclasses import dataclass
from datetime import timedelta

import qrcode
from jose.exceptions import JWTError
from loguru import logger
from qrcode.exceptions import DataOverflowError
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock
from .errors import TicketIssuanceError
from .models import Booking
from .seat_map import EventSeatMap, get_event
from .security import sign_redemption_token
from .storage import ArtifactStorage

# tokens stay valid until a day after the event starts
TOKEN_GRACE = timedelta(hours=24)


@dataclass(frozen=True)
class IssuedTicket:
    token: str
    artifact_url: str


def redemption_claims(booking: Booking, seat_map: EventSeatMap) -> dict:
    return {
        "bookingId": booking.id,
        "eventId": seat_map.event_id,
        "userId": booking.user_id,
        "organizerId": seat_map.organizer_id,
        "seatNumbers": list(booking.seat_numbers),
        "ticketType": booking.ticket_type,
    }


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(version=None, error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffered = io.BytesIO()
    img.save(buffered, format="PNG")
    return buffered.getvalue()


class TicketIssuer:
    def __init__(self, secret: str, storage: ArtifactStorage, clock: Clock | None = None):
        self._secret = secret
        self._storage = storage
        self._clock = clock or SystemClock()

    def issue(self, db: Session, booking: Booking, seat_map: EventSeatMap | None = None) -> IssuedTicket:
        seat_map = seat_map or get_event(db, booking.event_id)
        expires_at = seat_map.event_date + TOKEN_GRACE

        try:
            token = sign_redemption_token(
                redemption_claims(booking, seat_map),
                self._secret,
                expires_at=expires_at,
                issued_at=self._clock.now(),
            )
        except JWTError as e:
            logger.error(f"redemption token signing failed booking_id={booking.id}: {e}")
            raise TicketIssuanceError(f"could not sign redemption token for booking {booking.id}")

        # token first: a booking with a token but no picture can still be scanned
        booking.qr_code_token = token
        db.commit()

        artifact = json.dumps(
            {
                "eventName": seat_map.name,
                "eventLocation": seat_map.venue,
                "eventDate": seat_map.event_date.isoformat(),
                "seatNumbers": list(booking.seat_numbers),
                "totalPrice": booking.total_price,
                "bookingId": booking.id,
                "token": token,
            },
            separators=(",", ":"),
        )
        try:
            url = self._storage.upload(render_qr_png(artifact), f"booking-{booking.id}.png")
        except (OSError, ValueError, DataOverflowError) as e:
            logger.error(f"ticket artifact generation failed booking_id={booking.id}: {e}")
            raise TicketIssuanceError(f"could not render ticket artifact for booking {booking.id}")

        booking.qr_code_url = url
        db.commit()
        logger.info(f"ticket issued booking_id={booking.id} event_id={seat_map.event_id} expires_at={expires_at.isoformat()}")
        return IssuedTicket(token=token, artifact_url=url)
