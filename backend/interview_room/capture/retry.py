from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal

from interview_room.capture.scheduler import Scheduler

logger = logging.getLogger("interview_room.capture.retry")

RecoveryAction = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_sec: float = 0.5
    backoff: Literal["fixed", "exponential"] = "fixed"
    max_delay_sec: float = 10.0

    def delay_for(self, attempt: int) -> float:
        attempt = max(1, int(attempt))
        if self.backoff == "exponential":
            delay = self.base_delay_sec * (2 ** (attempt - 1))
        else:
            delay = self.base_delay_sec
        return max(0.0, min(float(delay), self.max_delay_sec))


class RecoveryPhase(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    EXHAUSTED = "exhausted"


class RecoveryTracker:
    """Bounded retry state machine for one recovery concern.

    ``schedule()`` coalesces while an attempt is pending or running. A
    failed attempt reschedules itself with the next backoff delay until the
    policy runs out, then ``on_exhausted`` fires once.
    """

    def __init__(
        self,
        name: str,
        policy: RetryPolicy,
        scheduler: Scheduler,
        on_exhausted: Callable[[], None] | None = None,
    ):
        self.name = name
        self.policy = policy
        self.scheduler = scheduler
        self.on_exhausted = on_exhausted
        self.attempts = 0
        self.phase = RecoveryPhase.IDLE
        # bumped by cancel()/reset() so an attempt already running does not reschedule
        self._token = 0

    @property
    def job_name(self) -> str:
        return f"recovery:{self.name}"

    @property
    def exhausted(self) -> bool:
        return self.phase == RecoveryPhase.EXHAUSTED

    @property
    def busy(self) -> bool:
        return self.phase in (RecoveryPhase.SCHEDULED, RecoveryPhase.RUNNING)

    def schedule(self, action: RecoveryAction, delay_sec: float | None = None) -> bool:
        if self.busy or self.exhausted:
            return False
        if self.attempts >= self.policy.max_attempts:
            self._exhaust()
            return False

        self.attempts += 1
        delay = self.policy.delay_for(self.attempts) if delay_sec is None else max(0.0, float(delay_sec))
        task = self.scheduler.call_later(delay, lambda: self._run(action), name=self.job_name)
        if task is None:
            self.attempts -= 1
            return False
        self.phase = RecoveryPhase.SCHEDULED
        logger.info(
            "recovery scheduled | name=%s attempt=%s/%s delay_sec=%.2f",
            self.name,
            self.attempts,
            self.policy.max_attempts,
            delay,
        )
        return True

    async def _run(self, action: RecoveryAction) -> None:
        token = self._token
        self.phase = RecoveryPhase.RUNNING
        try:
            ok = bool(await action())
        except Exception as exc:
            logger.warning("recovery attempt failed | name=%s attempt=%s err=%s", self.name, self.attempts, exc)
            ok = False

        if token != self._token:
            logger.info("recovery attempt finished after cancel | name=%s attempt=%s", self.name, self.attempts)
            return
        if ok:
            logger.info("recovery succeeded | name=%s attempt=%s", self.name, self.attempts)
            self.reset()
            return

        self.phase = RecoveryPhase.IDLE
        self.schedule(action)

    def _exhaust(self) -> None:
        self.phase = RecoveryPhase.EXHAUSTED
        logger.error("recovery exhausted | name=%s attempts=%s", self.name, self.attempts)
        if self.on_exhausted is not None:
            try:
                self.on_exhausted()
            except Exception:
                logger.exception("recovery exhausted callback failed | name=%s", self.name)

    def cancel(self) -> None:
        self._token += 1
        if self.phase == RecoveryPhase.SCHEDULED:
            self.scheduler.cancel(self.job_name)
        if self.phase != RecoveryPhase.EXHAUSTED:
            self.phase = RecoveryPhase.IDLE

    def reset(self) -> None:
        self._token += 1
        if self.phase == RecoveryPhase.SCHEDULED:
            self.scheduler.cancel(self.job_name)
        self.attempts = 0
        self.phase = RecoveryPhase.IDLE
