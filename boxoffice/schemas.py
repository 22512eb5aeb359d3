from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HoldSeatsReq(BaseModel):
    event_id: str
    seat_numbers: list[str] = Field(min_length=1)
    session_id: str | None = None
    user_id: str | None = None


class HoldSeatsResp(BaseModel):
    session_id: str
    event_id: str
    seat_numbers: list[str]
    expiry_time: datetime
    remaining_seconds: int


class HeldSeatsResp(BaseModel):
    event_id: str
    seats: list[str]


class ReleaseReq(BaseModel):
    session_id: str
    event_id: str


class CheckoutReq(BaseModel):
    user_id: str
    event_id: str
    seat_numbers: list[str] = Field(min_length=1)
    total_price: float = Field(gt=0)
    ticket_type: str = "standard"
    booking_date: datetime | None = None
    hold_session_id: str | None = None
    customer_email: str | None = None


class FreeBookingReq(BaseModel):
    user_id: str
    event_id: str
    seat_numbers: list[str] = Field(min_length=1)
    ticket_type: str = "standard"
    booking_date: datetime | None = None
    hold_session_id: str | None = None
    customer_email: str | None = None


class CheckoutResp(BaseModel):
    session_id: str
    url: str


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    event_id: str
    seat_numbers: list[str]
    total_price: float
    ticket_type: str
    booking_date: datetime | None
    payment_status: str
    qr_code_url: str | None
    qr_code_scan_status: bool
    qr_code_scan_date: datetime | None
    gateway_session_id: str | None
    created_at: datetime


class RedeemReq(BaseModel):
    token: str
    event_id: str


class CreateEventReq(BaseModel):
    name: str
    event_date: datetime
    seat_ids: list[str] = Field(min_length=1, max_length=20000)
    organizer_id: str = "org_1"
    venue: str = ""
    is_free: bool = False
