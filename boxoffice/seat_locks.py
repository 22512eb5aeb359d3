"""Temporary seat holds during checkout.

One SeatLock row per (event, session) plus one SeatLockSeat claim per seat; the
claim's primary key keeps a seat in at most one hold. Reads filter on expiry.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock, as_utc
from .config import SEAT_HOLD_MINUTES
from .errors import EmptySelection, SeatAlreadyBooked, SeatTemporarilyHeld
from .models import SeatLock, SeatLockSeat
from .seat_map import get_event, validate_selection

HOLD_DURATION = timedelta(minutes=SEAT_HOLD_MINUTES)


@dataclass(frozen=True)
class LockGrant:
    event_id: str
    session_id: str
    seat_numbers: list
    expiry_time: datetime


def _normalize(seats: Iterable[str]) -> list:
    return sorted({s.strip() for s in seats if s and s.strip()})


def held_by_others(db: Session, event_id: str, seats: Iterable[str], session_id: str | None, now: datetime) -> set:
    q = select(SeatLockSeat.seat_number).where(
        SeatLockSeat.event_id == event_id,
        SeatLockSeat.seat_number.in_(list(seats)),
        SeatLockSeat.expiry_time > now,
    )
    if session_id is not None:
        q = q.where(SeatLockSeat.session_id != session_id)
    return set(db.execute(q).scalars().all())


def acquire_or_renew(
    db: Session,
    event_id: str,
    session_id: str,
    seat_numbers: Iterable[str],
    holder_user_id: str | None = None,
    clock: Clock | None = None,
    hold_duration: timedelta = HOLD_DURATION,
) -> LockGrant:
    """Grant or refresh the session's hold, replacing any earlier selection.

    Raises InvalidSeat, SeatAlreadyBooked or SeatTemporarilyHeld, each naming the
    offending seats.
    """
    clock = clock or SystemClock()
    seats = _normalize(seat_numbers)
    if not seats:
        raise EmptySelection()

    seat_map = get_event(db, event_id)
    validate_selection(seat_map, seats)

    sold = seat_map.sold_seats(seats)
    if sold:
        raise SeatAlreadyBooked(sold)

    now = clock.now()
    expiry = now + hold_duration
    try:
        # stale claims on the requested seats, and this session's previous selection
        db.execute(
            delete(SeatLockSeat).where(
                SeatLockSeat.event_id == event_id,
                SeatLockSeat.seat_number.in_(seats),
                SeatLockSeat.expiry_time <= now,
            )
        )
        db.execute(
            delete(SeatLockSeat).where(
                SeatLockSeat.event_id == event_id,
                SeatLockSeat.session_id == session_id,
            )
        )

        held = held_by_others(db, event_id, seats, session_id, now)
        if held:
            db.rollback()
            raise SeatTemporarilyHeld(held)

        lock = db.get(SeatLock, (event_id, session_id))
        if lock is None:
            lock = SeatLock(event_id=event_id, session_id=session_id, holder_user_id=holder_user_id)
            db.add(lock)
        elif holder_user_id:
            lock.holder_user_id = holder_user_id
        lock.seat_numbers = seats
        lock.expiry_time = expiry
        lock.updated_at = now

        db.add_all(
            SeatLockSeat(event_id=event_id, seat_number=s, session_id=session_id, expiry_time=expiry)
            for s in seats
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        # a concurrent submit by this same session may have written the identical hold
        own = db.execute(
            select(SeatLock).where(SeatLock.event_id == event_id, SeatLock.session_id == session_id)
        ).scalar_one_or_none()
        if own is not None and sorted(own.seat_numbers) == seats and as_utc(own.expiry_time) > now:
            return LockGrant(event_id=event_id, session_id=session_id, seat_numbers=seats, expiry_time=as_utc(own.expiry_time))
        # otherwise another session committed a claim on one of these seats first
        held = held_by_others(db, event_id, seats, session_id, now)
        logger.info(f"seat hold race lost event_id={event_id} session_id={session_id} seats={sorted(held)}")
        raise SeatTemporarilyHeld(held or seats)

    logger.debug(f"seat hold granted event_id={event_id} session_id={session_id} seats={seats} expiry={expiry.isoformat()}")
    return LockGrant(event_id=event_id, session_id=session_id, seat_numbers=seats, expiry_time=expiry)


def list_held_seats(db: Session, event_id: str, clock: Clock | None = None) -> set:
    """Seats under any live hold for the event, without saying who holds them."""
    now = (clock or SystemClock()).now()
    rows = db.execute(
        select(SeatLockSeat.seat_number).where(
            SeatLockSeat.event_id == event_id,
            SeatLockSeat.expiry_time > now,
        )
    ).scalars().all()
    return set(rows)


def get_active_lock(db: Session, event_id: str, session_id: str, clock: Clock | None = None) -> SeatLock | None:
    lock = db.get(SeatLock, (event_id, session_id))
    if lock is None:
        return None
    now = (clock or SystemClock()).now()
    if as_utc(lock.expiry_time) <= now:
        return None
    return lock


def release(db: Session, session_id: str, event_id: str) -> bool:
    """Drop the session's hold. Returns False if there was none; never raises for absence."""
    db.execute(
        delete(SeatLockSeat).where(
            SeatLockSeat.event_id == event_id,
            SeatLockSeat.session_id == session_id,
        )
    )
    result = db.execute(
        delete(SeatLock).where(
            SeatLock.event_id == event_id,
            SeatLock.session_id == session_id,
        )
    )
    db.commit()
    return result.rowcount > 0
