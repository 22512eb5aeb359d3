"""Deletes expired seat holds. Reads already ignore them; this keeps the tables small."""

from typing import Callable

from fastapi.concurrency import run_in_threadpool
from loguru import logger
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock
from .config import SWEEP_INTERVAL_SECONDS
from .models import SeatLock, SeatLockSeat
from .scheduler import PeriodicTask

SWEEP_TASK_NAME = "seat-lock-sweep"


def sweep_expired_locks(db: Session, clock: Clock | None = None) -> int:
    """Delete every hold whose expiry has passed. Returns the number of holds removed."""
    now = (clock or SystemClock()).now()
    db.execute(delete(SeatLockSeat).where(SeatLockSeat.expiry_time <= now))
    result = db.execute(delete(SeatLock).where(SeatLock.expiry_time <= now))
    db.commit()
    if result.rowcount:
        logger.info(f"[sweeper] removed {result.rowcount} expired seat holds")
    return result.rowcount


def build_sweep_task(
    session_factory: Callable[[], Session],
    clock: Clock | None = None,
    interval_seconds: float = SWEEP_INTERVAL_SECONDS,
) -> PeriodicTask:
    def sweep() -> int:
        with session_factory() as db:
            return sweep_expired_locks(db, clock)

    async def run() -> int:
        return await run_in_threadpool(sweep)

    return PeriodicTask(name=SWEEP_TASK_NAME, interval_seconds=interval_seconds, run=run)
