# scripts/reissue_ticket.py
import argparse

from boxoffice import config
from boxoffice.db import SessionLocal
from boxoffice.models import Booking
from boxoffice.storage import LocalArtifactStorage
from boxoffice.ticketing import TicketIssuer


def main() -> None:
    parser = argparse.ArgumentParser(description="Regenerate the ticket for a confirmed booking")
    parser.add_argument("--booking-id", required=True)
    args = parser.parse_args()

    issuer = TicketIssuer(
        config.TICKET_SIGNING_SECRET,
        LocalArtifactStorage(config.ARTIFACT_DIR, config.ARTIFACT_BASE_URL),
    )
    db = SessionLocal()
    try:
        booking = db.get(Booking, args.booking_id)
        if booking is None:
            raise SystemExit(f"booking {args.booking_id} not found")
        ticket = issuer.issue(db, booking)
    finally:
        db.close()

    print(ticket.token)
    print(ticket.artifact_url)


if __name__ == "__main__":
    main()
