from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class Event(Base):
    """Seat map of one event (one sitting). Owned by the catalog, read-mostly here."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, index=True)
    organizer_id: Mapped[str] = mapped_column(String, index=True)
    venue: Mapped[str] = mapped_column(String, default="")
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    seat_ids: Mapped[list] = mapped_column(JSON, default=list)
    is_free: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ReservedSeat(Base):
    """A permanently sold seat. Rows are only ever inserted."""

    __tablename__ = "reserved_seats"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    seat_number: Mapped[str] = mapped_column(String, primary_key=True)
    booking_id: Mapped[str] = mapped_column(String, index=True)
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SeatLock(Base):
    """One temporary hold per (event, buyer session)."""

    __tablename__ = "seat_locks"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, primary_key=True)
    holder_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    seat_numbers: Mapped[list] = mapped_column(JSON, default=list)
    expiry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SeatLockSeat(Base):
    """Per-seat claim backing a SeatLock; the primary key keeps a seat in one lock at a time."""

    __tablename__ = "seat_lock_seats"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    seat_number: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    expiry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    seat_numbers: Mapped[list] = mapped_column(JSON, default=list)
    total_price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False))
    ticket_type: Mapped[str] = mapped_column(String, default="standard")
    booking_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_status: Mapped[str] = mapped_column(String, default="paid")
    customer_email: Mapped[str | None] = mapped_column(String, nullable=True)

    qr_code_token: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    qr_code_url: Mapped[str | None] = mapped_column(String, nullable=True)
    qr_code_scan_status: Mapped[bool] = mapped_column(Boolean, default=False)
    qr_code_scan_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # null for free bookings, which never pass through the gateway
    gateway_session_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[str] = mapped_column(String, index=True)
    action: Mapped[str] = mapped_column(String, index=True)  # REDEEM | FULFILL
    ip: Mapped[str] = mapped_column(String)
    user_agent: Mapped[str] = mapped_column(String)
    event_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    status: Mapped[str] = mapped_column(String)
    reason_code: Mapped[str] = mapped_column(String)
    detail: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
