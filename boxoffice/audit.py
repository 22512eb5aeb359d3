from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import SessionLocal
from .models import AuditLog


def record_decision(
    decision_id: str,
    action: str,
    status: str,
    reason_code: str,
    event_id: str | None = None,
    booking_id: str | None = None,
    ip: str = "unknown",
    user_agent: str = "",
    detail: str = "",
    db: Session | None = None,
) -> None:
    """Write one audit row, on the caller's session when given. Audit failures never fail the request."""
    own = db is None
    if own:
        db = SessionLocal()
    try:
        db.add(AuditLog(
            decision_id=decision_id,
            action=action,
            ip=ip,
            user_agent=user_agent,
            event_id=event_id,
            booking_id=booking_id,
            status=status,
            reason_code=reason_code,
            detail=detail,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"audit write failed decision_id={decision_id} action={action} reason={reason_code}")
    finally:
        if own:
            db.close()
