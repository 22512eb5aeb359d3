from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import get_db
from .errors import BookingNotFound
from .models import AuditLog, Booking, Event
from .schemas import CreateEventReq
from .seat_locks import list_held_seats
from .seat_map import get_event, register_event
from .sweeper import sweep_expired_locks

router = APIRouter(prefix="/admin", tags=["admin"])


# -------------------------
# Events + bookings
# -------------------------
@router.post("/events")
def create_event(req: CreateEventReq, db: Session = Depends(get_db)):
    event = register_event(
        db,
        name=req.name,
        organizer_id=req.organizer_id,
        event_date=req.event_date,
        seat_ids=req.seat_ids,
        venue=req.venue,
        is_free=req.is_free,
    )
    return {
        "ok": True,
        "event_id": event.id,
        "name": event.name,
        "seat_count": len(event.seat_ids),
        "organizer_id": event.organizer_id,
        "is_free": event.is_free,
    }


@router.get("/events")
def list_events(db: Session = Depends(get_db)):
    rows = db.execute(select(Event).order_by(Event.created_at.desc())).scalars().all()
    return [
        {
            "event_id": e.id,
            "name": e.name,
            "organizer_id": e.organizer_id,
            "venue": e.venue,
            "event_date": str(e.event_date),
            "seat_count": len(e.seat_ids or []),
            "is_free": bool(e.is_free),
        }
        for e in rows
    ]


@router.get("/events/{event_id}/seats")
def seat_overview(event_id: str, request: Request, db: Session = Depends(get_db)):
    seat_map = get_event(db, event_id)
    held = list_held_seats(db, event_id, clock=request.app.state.clock)
    return {
        "event_id": event_id,
        "total": len(seat_map.all_seat_ids),
        "sold": sorted(seat_map.permanently_reserved_seats),
        "held": sorted(held - seat_map.permanently_reserved_seats),
    }


@router.get("/events/{event_id}/bookings")
def list_bookings(event_id: str, limit: int = 500, db: Session = Depends(get_db)):
    bookings = db.execute(
        select(Booking).where(Booking.event_id == event_id).order_by(Booking.created_at).limit(limit)
    ).scalars().all()
    return [
        {
            "booking_id": b.id,
            "event_id": b.event_id,
            "user_id": b.user_id,
            "seat_numbers": b.seat_numbers,
            "status": "REDEEMED" if b.qr_code_scan_status else "UNUSED",
            "redeemed_at": str(b.qr_code_scan_date) if b.qr_code_scan_date else None,
            "has_ticket": b.qr_code_token is not None,
            "gateway_session_id": b.gateway_session_id,
        }
        for b in bookings
    ]


@router.post("/bookings/{booking_id}/reissue")
def reissue_ticket(booking_id: str, request: Request, db: Session = Depends(get_db)):
    """Regenerate a ticket whose issuance failed or whose token must be rotated."""
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound("booking not found", booking_id=booking_id)
    ticket = request.app.state.issuer.issue(db, booking)
    return {"booking_id": booking.id, "token": ticket.token, "artifact_url": ticket.artifact_url}


# -------------------------
# Scheduler
# -------------------------
@router.get("/scheduler")
def scheduler_status(request: Request):
    tasks = request.app.state.scheduler.status()
    return {"tasks": tasks, "count": len(tasks)}


@router.post("/scheduler/{task_name}/run")
async def run_task(task_name: str, request: Request):
    try:
        result = await request.app.state.scheduler.run_now(task_name)
    except KeyError:
        return {"ok": False, "error": f"unknown task {task_name}"}
    return {"ok": True, "task": task_name, "result": result}


@router.post("/scheduler/{task_name}/pause")
def pause_task(task_name: str, request: Request):
    return {"ok": request.app.state.scheduler.stop(task_name), "task": task_name, "active": False}


@router.post("/scheduler/{task_name}/resume")
def resume_task(task_name: str, request: Request):
    return {"ok": request.app.state.scheduler.resume(task_name), "task": task_name, "active": True}


@router.post("/locks/sweep")
def sweep_locks(request: Request, db: Session = Depends(get_db)):
    return {"removed": sweep_expired_locks(db, request.app.state.clock)}


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
def get_audit(
    limit: int = 80,
    event_id: Optional[str] = None,
    action: Optional[str] = None,
    db: Session = Depends(get_db),
):
    q = db.query(AuditLog, Event).join(Event, Event.id == AuditLog.event_id, isouter=True)
    if event_id:
        q = q.filter(AuditLog.event_id == event_id)
    if action:
        q = q.filter(AuditLog.action == action.upper())
    rows = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()

    out = []
    for log, ev in rows:
        out.append({
            "created_at": str(log.created_at),
            "action": log.action,
            "booking_id": log.booking_id,
            "event_id": log.event_id,
            "event_name": ev.name if ev else None,
            "status": log.status,
            "reason_code": log.reason_code,
            "detail": log.detail,
            "decision_id": log.decision_id,
        })
    return out
