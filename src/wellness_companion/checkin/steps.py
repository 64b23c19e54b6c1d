"""Durable step runner and reply event hub.

A ``DurableStep`` records every completed step of a workflow run together
with its JSON result. Replaying a run through a new ``DurableStep`` returns
the stored results instead of repeating the side effects.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from wellness_companion.errors import ConflictError
from wellness_companion.logging import format_log_context, get_logger
from wellness_companion.storage.workflow_runs import WorkflowRun, WorkflowRunStorage

logger = get_logger(__name__)

CHECK_IN_RESPONSE_EVENT = "user-check-in-response"

_EVENT_STEP_PREFIX = "event:"


class CheckInEvents:
    """Routes named events to the run waiting for them, one waiter per user and name."""

    def __init__(self) -> None:
        self._waiters: dict[tuple[str, str], asyncio.Future] = {}

    def expect(self, user_id: str, name: str) -> asyncio.Future:
        """Register the waiter for an event.

        Raises:
            ConflictError: If another run is already waiting for the same event.
        """
        if self.is_waiting(user_id, name):
            raise ConflictError(f"A run is already waiting for '{name}' from user {user_id}")
        future = asyncio.get_running_loop().create_future()
        self._waiters[(user_id, name)] = future
        return future

    def is_waiting(self, user_id: str, name: str = CHECK_IN_RESPONSE_EVENT) -> bool:
        future = self._waiters.get((user_id, name))
        return future is not None and not future.done()

    def deliver(self, user_id: str, name: str, payload: Any) -> bool:
        """Hand a payload to the waiter. Returns False when nobody is waiting."""
        future = self._waiters.pop((user_id, name), None)
        if future is None or future.done():
            return False
        future.set_result(payload)
        return True

    def discard(self, user_id: str, name: str, future: asyncio.Future) -> None:
        if self._waiters.get((user_id, name)) is future:
            del self._waiters[(user_id, name)]


class ImmediateStep:
    """Runs steps directly without recording them."""

    async def do(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await fn()


class DurableStep:
    """Executes and records the steps of one workflow run."""

    def __init__(
        self,
        run: WorkflowRun,
        storage: WorkflowRunStorage,
        events: CheckInEvents,
        completed: dict[str, Any] | None = None,
    ) -> None:
        self.run = run
        self.storage = storage
        self.events = events
        self._completed = dict(completed or {})

    def _ctx(self, kind: str, step: str | None = None) -> str:
        return format_log_context(
            kind, component="checkin", user=self.run.user_id, run=self.run.run_id[:8], step=step
        )

    def is_done(self, name: str) -> bool:
        return name in self._completed

    async def do(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` once; on replay return its recorded result."""
        if name in self._completed:
            logger.debug(f"{self._ctx('step_skipped', name)} already completed")
            return self._completed[name]

        result = await fn()
        self.storage.record_step(self.run.run_id, name, result)
        self._completed[name] = result
        logger.info(f"{self._ctx('step_done', name)}")
        return result

    async def wait_for_event(self, name: str, timeout_seconds: float) -> Any | None:
        """Wait for a named event until the run's deadline.

        The deadline is fixed the first time the run waits and persisted, so a
        resumed run only waits for the time remaining. Returns the payload, or
        None on timeout.
        """
        step_name = f"{_EVENT_STEP_PREFIX}{name}"
        if step_name in self._completed:
            return self._completed[step_name]

        now = datetime.now(timezone.utc)
        if self.run.timeout_deadline:
            deadline = datetime.fromisoformat(self.run.timeout_deadline)
        else:
            deadline = now + timedelta(seconds=timeout_seconds)
            self.run.timeout_deadline = deadline.isoformat()
        self.run.awaited_event = name
        self.run.status = "waiting"
        self.storage.save_run(self.run)

        remaining = (deadline - now).total_seconds()
        if remaining <= 0:
            logger.info(f"{self._ctx('wait_expired')} deadline passed before waiting")
            return None

        future = self.events.expect(self.run.user_id, name)
        logger.info(f"{self._ctx('waiting')} event={name} for {int(remaining)}s")
        try:
            payload = await asyncio.wait_for(future, timeout=remaining)
        except asyncio.TimeoutError:
            logger.info(f"{self._ctx('wait_timed_out')} event={name}")
            return None
        finally:
            self.events.discard(self.run.user_id, name, future)

        self.storage.record_step(self.run.run_id, step_name, payload)
        self._completed[step_name] = payload
        return payload
