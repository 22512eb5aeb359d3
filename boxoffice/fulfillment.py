"""Completed payment (or free registration) -> exactly one Booking.

Sold seats and the Booking row commit in one transaction; the primary key on
reserved seats and the unique gateway session id are the real duplicate guard.
"""

import uuid
from datetime import datetime
from typing import Callable

from fastapi.concurrency import run_in_threadpool
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock
from .db import SessionLocal
from .errors import (
    BookingError,
    DecryptionError,
    EmptySelection,
    EventNotFree,
    InvalidSeat,
    SeatAlreadyBooked,
    SeatConflict,
    SeatTemporarilyHeld,
)
from .gateway import PaymentGateway, PaymentNotification
from .intent import IntentCodec, PaymentIntent
from .models import Booking
from .notifications import Notifier
from .seat_locks import held_by_others, release
from .seat_map import EventSeatMap, append_reserved_seats, get_event, reserved_seats_for, validate_selection
from .ticketing import TicketIssuer


def get_booking_by_session(db: Session, gateway_session_id: str) -> Booking | None:
    return db.execute(
        select(Booking).where(Booking.gateway_session_id == gateway_session_id)
    ).scalar_one_or_none()


class FulfillmentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        codec: IntentCodec,
        issuer: TicketIssuer,
        notifier: Notifier,
        clock: Clock | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.gateway = gateway
        self.codec = codec
        self.issuer = issuer
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.session_factory = session_factory

    # -------------------------
    # Paid bookings
    # -------------------------
    async def fulfill(self, payload: bytes, signature: str | None) -> Booking | None:
        """Handle one gateway callback.

        Returns the Booking (new or pre-existing for this gateway session), or
        None when the callback is not a completed payment. Raises
        InvalidSignature, DecryptionError, EventNotFound, InvalidSeat or
        SeatConflict without touching state.
        """
        outcome = await run_in_threadpool(self._in_session, self.record_payment, payload, signature)
        if outcome is None:
            return None
        booking, seat_map, created = outcome
        if created:
            await self._notify(booking, seat_map)
        return booking

    def record_payment(
        self, db: Session, payload: bytes, signature: str | None
    ) -> tuple[Booking, EventSeatMap, bool] | None:
        notification = self.gateway.verify_notification(payload, signature)
        if not notification.completed:
            logger.info(
                f"gateway callback ignored type={notification.event_type} session_id={notification.session_id} "
                f"payment_status={notification.payment_status}"
            )
            return None

        intent = self._decode(notification)

        existing = get_booking_by_session(db, notification.session_id)
        if existing is not None:
            logger.info(f"duplicate callback session_id={notification.session_id} booking_id={existing.id}")
            return existing, get_event(db, existing.event_id), False

        seat_map = get_event(db, intent.event_id)
        self._check_available(notification, intent, seat_map)

        booking, created = self._commit(
            db,
            intent,
            gateway_session_id=notification.session_id,
            payment_id=notification.payment_id,
            customer_email=notification.customer_email,
        )
        if created:
            self._after_commit(db, booking, seat_map, intent.hold_session_id)
        return booking, seat_map, created

    def _decode(self, notification: PaymentNotification) -> PaymentIntent:
        try:
            return self.codec.decode(notification.metadata.get("intent", ""))
        except DecryptionError as e:
            logger.error(
                f"PAID BUT UNREADABLE: intent decryption failed session_id={notification.session_id} "
                f"payment_id={notification.payment_id}: {e.message}; manual reconciliation required"
            )
            raise

    def _check_available(self, notification: PaymentNotification, intent: PaymentIntent, seat_map: EventSeatMap) -> None:
        unknown = seat_map.unknown_seats(intent.seat_numbers)
        if unknown:
            logger.error(
                f"PAID FOR UNKNOWN SEATS session_id={notification.session_id} event_id={intent.event_id} "
                f"seats={sorted(unknown)}; manual refund required"
            )
            raise InvalidSeat(unknown)

        sold = seat_map.sold_seats(intent.seat_numbers)
        if sold:
            logger.error(
                f"PAID FOR SOLD SEATS session_id={notification.session_id} payment_id={notification.payment_id} "
                f"event_id={intent.event_id} user_id={intent.user_id} seats={sorted(sold)}; manual refund required"
            )
            raise SeatConflict(sold)

    # -------------------------
    # Free bookings
    # -------------------------
    async def fulfill_free(self, **booking) -> Booking:
        """Register seats on a free event. Same commit path as a paid booking, no gateway."""
        created, seat_map = await run_in_threadpool(self._in_session, self.record_free_booking, **booking)
        await self._notify(created, seat_map)
        return created

    def record_free_booking(
        self,
        db: Session,
        *,
        user_id: str,
        event_id: str,
        seat_numbers: list[str],
        ticket_type: str = "standard",
        booking_date: datetime | None = None,
        hold_session_id: str | None = None,
        customer_email: str | None = None,
    ) -> tuple[Booking, EventSeatMap]:
        seats = sorted({s.strip() for s in seat_numbers if s and s.strip()})
        if not seats:
            raise EmptySelection()

        seat_map = get_event(db, event_id)
        if not seat_map.is_free:
            raise EventNotFree(event_id)
        validate_selection(seat_map, seats)
        sold = seat_map.sold_seats(seats)
        if sold:
            raise SeatAlreadyBooked(sold)
        held = held_by_others(db, event_id, seats, hold_session_id, self.clock.now())
        if held:
            raise SeatTemporarilyHeld(held)

        intent = PaymentIntent(
            user_id=user_id,
            event_id=event_id,
            seat_numbers=seats,
            total_price=0,
            booking_date=booking_date or seat_map.event_date,
            ticket_type=ticket_type,
            created_at=self.clock.now(),
            hold_session_id=hold_session_id,
        )
        booking, _ = self._commit(
            db,
            intent,
            customer_email=customer_email,
            payment_status="free",
            conflict=SeatAlreadyBooked,
        )
        self._after_commit(db, booking, seat_map, hold_session_id)
        return booking, seat_map

    # -------------------------
    # Shared steps
    # -------------------------
    def _in_session(self, work, *args, **kwargs):
        with self.session_factory() as db:
            result = work(db, *args, **kwargs)
            # leave the booking loaded; it outlives the session
            if result is not None:
                db.refresh(result[0])
            return result

    def _commit(
        self,
        db: Session,
        intent: PaymentIntent,
        *,
        gateway_session_id: str | None = None,
        payment_id: str | None = None,
        customer_email: str | None = None,
        payment_status: str = "paid",
        conflict: type[SeatConflict] | type[SeatAlreadyBooked] = SeatConflict,
    ) -> tuple[Booking, bool]:
        now = self.clock.now()
        booking = Booking(
            id=f"bk_{uuid.uuid4().hex}",
            user_id=intent.user_id,
            event_id=intent.event_id,
            seat_numbers=list(intent.seat_numbers),
            total_price=intent.total_price,
            ticket_type=intent.ticket_type,
            booking_date=intent.booking_date,
            payment_status=payment_status,
            customer_email=customer_email,
            qr_code_scan_status=False,
            gateway_session_id=gateway_session_id,
            gateway_payment_id=payment_id,
            created_at=now,
        )
        db.add(booking)
        append_reserved_seats(db, intent.event_id, intent.seat_numbers, booking.id, now)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if gateway_session_id is not None:
                # a concurrent delivery of the same callback got there first
                existing = get_booking_by_session(db, gateway_session_id)
                if existing is not None:
                    logger.info(f"concurrent duplicate callback session_id={gateway_session_id} booking_id={existing.id}")
                    return existing, False
            sold = reserved_seats_for(db, intent.event_id, intent.seat_numbers)
            logger.error(
                f"seats sold by a concurrent booking session_id={gateway_session_id} payment_id={payment_id} "
                f"event_id={intent.event_id} seats={sorted(sold)}"
            )
            raise conflict(sold or intent.seat_numbers)

        logger.info(
            f"booking committed booking_id={booking.id} session_id={gateway_session_id} "
            f"event_id={intent.event_id} seats={intent.seat_numbers} payment_status={payment_status}"
        )
        return booking, True

    def _after_commit(self, db: Session, booking: Booking, seat_map: EventSeatMap, hold_session_id: str | None) -> None:
        try:
            self.issuer.issue(db, booking, seat_map)
        except (BookingError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"ticket issuance failed after commit booking_id={booking.id}: {e}; reissue from admin")

        if hold_session_id:
            try:
                release(db, hold_session_id, booking.event_id)
            except SQLAlchemyError:
                db.rollback()
                logger.warning(f"hold release failed session_id={hold_session_id}; expiry will reclaim it")

    async def _notify(self, booking: Booking, seat_map: EventSeatMap) -> None:
        for send in (self.notifier.send_booking_confirmation, self.notifier.send_organizer_notification):
            try:
                await send(booking, seat_map)
            except Exception:
                logger.exception(f"notification {send.__name__} failed booking_id={booking.id}")
