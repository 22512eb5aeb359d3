from abc import ABC, abstractmethod
from email.message import EmailMessage

from aiosmtplib import send
from loguru import logger

from . import config
from .models import Booking
from .seat_map import EventSeatMap


class Notifier(ABC):
    """Fire-and-forget booking mail. Callers log failures; nothing is retried here."""

    @abstractmethod
    async def send_booking_confirmation(self, booking: Booking, seat_map: EventSeatMap) -> None: ...

    @abstractmethod
    async def send_organizer_notification(self, booking: Booking, seat_map: EventSeatMap) -> None: ...


class LogNotifier(Notifier):
    async def send_booking_confirmation(self, booking, seat_map):
        logger.info(
            f"[mail] booking confirmation booking_id={booking.id} to={booking.customer_email or booking.user_id} "
            f"event={seat_map.name} seats={','.join(booking.seat_numbers)}"
        )

    async def send_organizer_notification(self, booking, seat_map):
        logger.info(
            f"[mail] organizer notification organizer_id={seat_map.organizer_id} booking_id={booking.id} "
            f"seats={','.join(booking.seat_numbers)}"
        )


class SmtpNotifier(Notifier):
    def __init__(self, host: str, port: int, username: str, password: str, sender: str, organizer_emails: dict | None = None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        # organizer_id -> address; the user directory lives outside this service
        self.organizer_emails = organizer_emails or {}

    async def _send(self, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)
        await send(
            msg,
            hostname=self.host,
            port=self.port,
            start_tls=True,
            username=self.username or None,
            password=self.password or None,
        )

    async def send_booking_confirmation(self, booking, seat_map):
        if not booking.customer_email:
            logger.warning(f"[mail] no customer email for booking_id={booking.id}; confirmation skipped")
            return
        body = f"""
Hello,

Your booking is confirmed.

Event: {seat_map.name}
Venue: {seat_map.venue}
Date: {seat_map.event_date.isoformat()}
Seats: {', '.join(booking.seat_numbers)}
Total: {booking.total_price:.2f}
Booking ID: {booking.id}
Ticket: {booking.qr_code_url or 'available in your account'}

Show the QR code at the entrance.
"""
        await self._send(booking.customer_email, f"Your tickets for {seat_map.name}", body)

    async def send_organizer_notification(self, booking, seat_map):
        to_email = self.organizer_emails.get(seat_map.organizer_id)
        if not to_email:
            logger.warning(
                f"[mail] no address for organizer_id={seat_map.organizer_id}; notification skipped booking_id={booking.id}"
            )
            return
        body = f"""
New booking for {seat_map.name}.

Booking ID: {booking.id}
Seats: {', '.join(booking.seat_numbers)}
Ticket type: {booking.ticket_type}
Total: {booking.total_price:.2f}
"""
        await self._send(to_email, f"New booking: {seat_map.name}", body)


def build_notifier() -> Notifier:
    if config.SMTP_HOST:
        return SmtpNotifier(
            config.SMTP_HOST,
            config.SMTP_PORT,
            config.SMTP_USER,
            config.SMTP_PASSWORD,
            config.MAIL_FROM,
            organizer_emails=config.ORGANIZER_EMAILS,
        )
    return LogNotifier()
