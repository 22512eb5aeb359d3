"""Seat map store: valid seat ids and permanently sold seats per event."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from .clock import as_utc
from .errors import EventNotFound, InvalidSeat
from .models import Event, ReservedSeat


@dataclass(frozen=True)
class EventSeatMap:
    event_id: str
    name: str
    organizer_id: str
    venue: str
    event_date: datetime
    all_seat_ids: frozenset
    permanently_reserved_seats: frozenset
    is_free: bool = False

    def unknown_seats(self, seats: Iterable[str]) -> set:
        return {s for s in seats if s not in self.all_seat_ids}

    def sold_seats(self, seats: Iterable[str]) -> set:
        return {s for s in seats if s in self.permanently_reserved_seats}


def register_event(
    db: Session,
    name: str,
    organizer_id: str,
    event_date: datetime,
    seat_ids: list[str],
    venue: str = "",
    event_id: str | None = None,
    is_free: bool = False,
) -> Event:
    # keep first occurrence order, drop duplicates
    unique_seats = list(dict.fromkeys(s.strip() for s in seat_ids if s.strip()))
    event = Event(
        id=event_id or f"evt_{uuid.uuid4().hex[:8]}",
        name=name,
        organizer_id=organizer_id,
        venue=venue,
        event_date=as_utc(event_date),
        seat_ids=unique_seats,
        is_free=is_free,
    )
    db.add(event)
    db.commit()
    return event


def reserved_seats_for(db: Session, event_id: str, seats: Iterable[str] | None = None) -> set:
    q = select(ReservedSeat.seat_number).where(ReservedSeat.event_id == event_id)
    if seats is not None:
        q = q.where(ReservedSeat.seat_number.in_(list(seats)))
    return set(db.execute(q).scalars().all())


def get_event(db: Session, event_id: str) -> EventSeatMap:
    event = db.get(Event, event_id)
    if event is None:
        raise EventNotFound(event_id)
    return EventSeatMap(
        event_id=event.id,
        name=event.name,
        organizer_id=event.organizer_id,
        venue=event.venue,
        event_date=as_utc(event.event_date),
        all_seat_ids=frozenset(event.seat_ids or ()),
        permanently_reserved_seats=frozenset(reserved_seats_for(db, event.id)),
        is_free=bool(event.is_free),
    )


def validate_selection(seat_map: EventSeatMap, seats: Iterable[str]) -> None:
    unknown = seat_map.unknown_seats(seats)
    if unknown:
        raise InvalidSeat(unknown)


def append_reserved_seats(db: Session, event_id: str, seats: Iterable[str], booking_id: str, now: datetime) -> None:
    """Stage one row per sold seat. Uniqueness is enforced by the primary key at flush/commit."""
    for seat in sorted(set(seats)):
        db.add(ReservedSeat(event_id=event_id, seat_number=seat, booking_id=booking_id, reserved_at=now))
