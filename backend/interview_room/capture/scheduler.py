from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger("interview_room.capture.scheduler")

Callback = Callable[[], Any]


async def _invoke(callback: Callback) -> None:
    result = callback()
    if inspect.isawaitable(result):
        await result


class Scheduler:
    """Owns every timer of a capture client so they can be cancelled together.

    Named jobs replace an earlier job with the same name; ``shutdown()`` is
    idempotent and leaves the scheduler refusing new work.
    """

    def __init__(self):
        self._jobs: dict[str, asyncio.Task] = {}
        self._anonymous: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def is_scheduled(self, name: str) -> bool:
        task = self._jobs.get(name)
        return task is not None and not task.done()

    def call_later(self, delay_sec: float, callback: Callback, name: str | None = None) -> asyncio.Task | None:
        async def _runner():
            await asyncio.sleep(max(0.0, float(delay_sec)))
            await _invoke(callback)

        return self._track(_runner(), name)

    def every(
        self,
        interval_sec: float,
        callback: Callback,
        name: str,
        run_immediately: bool = False,
    ) -> asyncio.Task | None:
        interval = max(0.01, float(interval_sec))

        async def _runner():
            if not run_immediately:
                await asyncio.sleep(interval)
            while True:
                try:
                    await _invoke(callback)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("periodic job failed | name=%s", name)
                await asyncio.sleep(interval)

        return self._track(_runner(), name)

    def cancel(self, name: str) -> bool:
        task = self._jobs.pop(name, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        current = asyncio.current_task()
        for task in [*self._jobs.values(), *self._anonymous]:
            if task is not current and not task.done():
                task.cancel()
        self._jobs.clear()
        self._anonymous.clear()

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        current = asyncio.current_task()
        tasks = [task for task in [*self._jobs.values(), *self._anonymous] if task is not current]
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler shut down | cancelled=%s", len(tasks))

    def _track(self, coro: Awaitable, name: str | None) -> asyncio.Task | None:
        if self._closed:
            coro.close()
            logger.debug("scheduler closed; job dropped | name=%s", name)
            return None

        task = asyncio.create_task(coro)
        if name:
            previous = self._jobs.get(name)
            if previous is not None and previous is not asyncio.current_task():
                previous.cancel()
            self._jobs[name] = task
        else:
            self._anonymous.add(task)

        def _done(finished: asyncio.Task) -> None:
            if name and self._jobs.get(name) is finished:
                self._jobs.pop(name, None)
            self._anonymous.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("scheduled job failed | name=%s err=%s", name, finished.exception())

        task.add_done_callback(_done)
        return task
