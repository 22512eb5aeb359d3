import pytest
from loguru import logger

from boxoffice import config
from boxoffice.clock import Clock, FrozenClock
from boxoffice.models import Booking
from boxoffice.notifications import LogNotifier, SmtpNotifier, build_notifier
from boxoffice.seat_map import EventSeatMap
from tests.helpers import EVENT_DATE


def _booking() -> Booking:
    return Booking(
        id="bk_1",
        user_id="user_1",
        event_id="ev_1",
        seat_numbers=["A1", "A2"],
        total_price=42.0,
        ticket_type="standard",
        customer_email="buyer@example.com",
        qr_code_url=None,
    )


def _seat_map(organizer_id="org_1") -> EventSeatMap:
    return EventSeatMap(
        event_id="ev_1",
        name="Gala",
        organizer_id=organizer_id,
        venue="Main Hall",
        event_date=EVENT_DATE,
        all_seat_ids=frozenset({"A1", "A2"}),
        permanently_reserved_seats=frozenset(),
    )


@pytest.fixture
def smtp(monkeypatch):
    monkeypatch.setattr(config, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(config, "ORGANIZER_EMAILS", {"org_1": "ops@example.com"})
    notifier = build_notifier()
    notifier.outbox = []

    async def record(to_email, subject, body):
        notifier.outbox.append((to_email, subject))

    monkeypatch.setattr(notifier, "_send", record)
    return notifier


@pytest.fixture
def warnings():
    messages = []
    handler_id = logger.add(messages.append, level="WARNING", format="{message}")
    yield messages
    logger.remove(handler_id)


async def test_smtp_notifier_carries_configured_organizer_addresses(smtp):
    assert isinstance(smtp, SmtpNotifier)
    assert smtp.organizer_emails == {"org_1": "ops@example.com"}


async def test_without_smtp_host_mail_is_only_logged(monkeypatch):
    monkeypatch.setattr(config, "SMTP_HOST", "")
    assert isinstance(build_notifier(), LogNotifier)


async def test_organizer_mail_goes_to_the_mapped_address(smtp):
    await smtp.send_booking_confirmation(_booking(), _seat_map())
    await smtp.send_organizer_notification(_booking(), _seat_map())

    assert smtp.outbox == [
        ("buyer@example.com", "Your tickets for Gala"),
        ("ops@example.com", "New booking: Gala"),
    ]


async def test_unmapped_organizer_is_skipped_with_a_warning(smtp, warnings):
    await smtp.send_organizer_notification(_booking(), _seat_map(organizer_id="org_2"))

    assert smtp.outbox == []
    assert any("no address for organizer_id=org_2" in m for m in warnings)


def test_clock_cannot_be_used_without_now():
    with pytest.raises(TypeError):
        Clock()

    class Broken(Clock):
        pass

    with pytest.raises(TypeError):
        Broken()
    assert isinstance(FrozenClock(EVENT_DATE), Clock)
