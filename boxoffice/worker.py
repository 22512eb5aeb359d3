"""Standalone periodic-task process: ``python -m boxoffice.worker``.

Runs the seat-hold sweeper outside the web process (set RUN_SWEEPER_IN_APP=false
on the API when this worker is deployed).
"""

import asyncio
import signal

from loguru import logger

from .db import Base, SessionLocal, engine
from .logging_config import setup_logging
from .scheduler import Scheduler
from .sweeper import build_sweep_task


async def main():
    setup_logging()
    Base.metadata.create_all(bind=engine)

    scheduler = Scheduler()
    scheduler.add(build_sweep_task(SessionLocal))
    scheduler.start()
    logger.info("[worker] started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await stop.wait()
    await scheduler.shutdown()
    logger.info("[worker] stopped")


if __name__ == "__main__":
    asyncio.run(main())
