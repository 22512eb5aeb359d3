"""Minimal periodic task runner: a name, an interval and an async callable."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from loguru import logger


@dataclass
class PeriodicTask:
    name: str
    interval_seconds: float
    run: Callable[[], Awaitable[object]]
    active: bool = False
    last_run_at: datetime | None = None
    last_result: object = None
    last_error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Scheduler:
    def __init__(self):
        self._tasks: dict[str, PeriodicTask] = {}
        self._handles: dict[str, asyncio.Task] = {}

    def add(self, task: PeriodicTask) -> None:
        if task.name in self._tasks:
            self.stop(task.name)
        self._tasks[task.name] = task
        logger.info(f"[scheduler] registered task={task.name} every {task.interval_seconds}s")

    def start(self) -> None:
        for name in self._tasks:
            self._start(name)

    def _start(self, name: str) -> None:
        task = self._tasks[name]
        if name in self._handles and not self._handles[name].done():
            return
        task.active = True
        self._handles[name] = asyncio.create_task(self._loop(task), name=f"periodic:{name}")

    async def _loop(self, task: PeriodicTask) -> None:
        while task.active:
            await asyncio.sleep(task.interval_seconds)
            await self._execute(task)

    async def _execute(self, task: PeriodicTask) -> object:
        try:
            result = await task.run()
        except Exception as e:
            # a failing run must not kill the loop; the next tick retries
            task.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"[scheduler] task={task.name} failed")
            return None
        task.last_run_at = datetime.now(timezone.utc)
        task.last_result = result
        task.last_error = None
        return result

    async def run_now(self, name: str) -> object:
        task = self._tasks.get(name)
        if task is None:
            raise KeyError(name)
        logger.info(f"[scheduler] manual run task={name}")
        return await self._execute(task)

    def stop(self, name: str) -> bool:
        task = self._tasks.get(name)
        if task is None:
            return False
        task.active = False
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()
        logger.info(f"[scheduler] stopped task={name}")
        return True

    def resume(self, name: str) -> bool:
        if name not in self._tasks:
            return False
        self._start(name)
        return True

    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        for name in list(self._tasks):
            self.stop(name)
        await asyncio.gather(*handles, return_exceptions=True)

    def status(self) -> list[dict]:
        return [
            {
                "name": t.name,
                "interval_seconds": t.interval_seconds,
                "active": t.active,
                "last_run_at": t.last_run_at.isoformat() if t.last_run_at else None,
                "last_result": t.last_result,
                "last_error": t.last_error,
                "created_at": t.created_at.isoformat(),
            }
            for t in self._tasks.values()
        ]
