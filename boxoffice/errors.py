class BookingError(Exception):
    reason_code = "BOOKING_ERROR"
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"status": "failed", "reason_code": self.reason_code, "message": self.message, **self.details}


# --- client-correctable seat selection errors ---

class EventNotFound(BookingError):
    reason_code = "EVENT_NOT_FOUND"
    status_code = 404

    def __init__(self, event_id: str):
        super().__init__(f"event {event_id} not found", event_id=event_id)


class SeatSelectionError(BookingError):
    """Base for errors that name the offending seats."""

    def __init__(self, message: str, seats):
        super().__init__(message, seats=sorted(seats))
        self.seats = sorted(seats)


class InvalidSeat(SeatSelectionError):
    reason_code = "INVALID_SEAT"

    def __init__(self, seats):
        super().__init__("seats do not exist in this event", seats)


class SeatAlreadyBooked(SeatSelectionError):
    reason_code = "SEAT_ALREADY_BOOKED"
    status_code = 409

    def __init__(self, seats):
        super().__init__("seats are already booked", seats)


class SeatTemporarilyHeld(SeatSelectionError):
    reason_code = "SEAT_TEMPORARILY_HELD"
    status_code = 409

    def __init__(self, seats):
        super().__init__("seats are temporarily held by another buyer", seats)


class EmptySelection(BookingError):
    reason_code = "EMPTY_SELECTION"

    def __init__(self):
        super().__init__("at least one seat must be selected")


class EventNotFree(BookingError):
    reason_code = "EVENT_NOT_FREE"

    def __init__(self, event_id: str):
        super().__init__("this event is not free; book it through checkout", event_id=event_id)


class IntentTooLarge(BookingError):
    reason_code = "INTENT_TOO_LARGE"

    def __init__(self, size: int, limit: int):
        super().__init__(f"payment intent encodes to {size} chars, limit is {limit}", size=size, limit=limit)


# --- operational errors (manual review, never auto-retried) ---

class InvalidSignature(BookingError):
    reason_code = "INVALID_SIGNATURE"


class DecryptionError(BookingError):
    reason_code = "DECRYPTION_ERROR"
    status_code = 422


class SeatConflict(SeatSelectionError):
    reason_code = "SEAT_CONFLICT"
    status_code = 409

    def __init__(self, seats):
        super().__init__("seats were sold before this payment completed", seats)


class TicketIssuanceError(BookingError):
    reason_code = "TICKET_ISSUANCE_FAILED"
    status_code = 500


# --- redemption-time errors shown to gate staff ---

class InvalidToken(BookingError):
    reason_code = "INVALID_TOKEN"
    status_code = 401


class ExpiredToken(BookingError):
    reason_code = "EXPIRED"
    status_code = 401


class WrongEvent(BookingError):
    reason_code = "WRONG_EVENT"
    status_code = 403


class BookingNotFound(BookingError):
    reason_code = "BOOKING_NOT_FOUND"
    status_code = 404
