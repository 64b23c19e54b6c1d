"""Daily check-in cycle.

Two strategies run the same cycle:

- ``WorkflowCheckIn`` prompts the user, waits (bounded) for the reply,
  then analyzes, recommends, persists and summarizes. Every step is
  recorded so a run can be resumed without repeating side effects.
- ``PromptOnlyCheckIn`` only sends the prompt and marks the check-in as
  pending; the next user message completes it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from wellness_companion.channels.base import ConversationChannel
from wellness_companion.checkin.messages import (
    CHECK_IN_PROMPT,
    TIMEOUT_REMINDER,
    build_check_in_summary,
    format_summary_message,
)
from wellness_companion.checkin.steps import (
    CHECK_IN_RESPONSE_EVENT,
    CheckInEvents,
    DurableStep,
    ImmediateStep,
)
from wellness_companion.config import settings
from wellness_companion.errors import NotFoundError, UpstreamError, WellnessError
from wellness_companion.logging import format_log_context, get_logger, truncate_log_text
from wellness_companion.recommendations import select_recommendations
from wellness_companion.state import StateSlot
from wellness_companion.storage.checkins import CheckInLedger
from wellness_companion.storage.workflow_runs import WorkflowRun, WorkflowRunStorage
from wellness_companion.tone import ToneAnalysis, ToneAnalyzer

logger = get_logger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    PROMPTED = "prompted"
    AWAITING_REPLY = "awaiting_reply"
    ANALYZING = "analyzing"
    RECOMMENDING = "recommending"
    PERSISTING = "persisting"
    SUMMARIZING = "summarizing"
    TIMED_OUT = "timed_out"
    DONE = "done"
    FAILED = "failed"


class StepFailed(WellnessError):
    """A side-effecting step failed and the cycle cannot continue."""

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"Step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


class CheckInStrategy(ABC):
    """Shared collaborators and the analyze-to-summary half of the cycle."""

    def __init__(
        self,
        user_id: str,
        channel: ConversationChannel,
        ledger: CheckInLedger,
        analyzer: ToneAnalyzer,
        runs: WorkflowRunStorage | None = None,
        events: CheckInEvents | None = None,
        slot: StateSlot | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.user_id = user_id
        self.channel = channel
        self.ledger = ledger
        self.analyzer = analyzer
        self.runs = runs or WorkflowRunStorage(user_id)
        self.events = events or CheckInEvents()
        self.slot = slot
        self.timeout_seconds = timeout_seconds or settings.CHECK_IN_REPLY_TIMEOUT_SECONDS

    @abstractmethod
    async def run(self) -> WorkflowRun:
        """Start one cycle."""

    def _ctx(self, kind: str, run: WorkflowRun | None = None, step: str | None = None) -> str:
        return format_log_context(
            kind,
            component="checkin",
            user=self.user_id,
            run=run.run_id[:8] if run else None,
            step=step,
        )

    def _set_pending(self, pending: bool) -> None:
        if self.slot is not None:
            self.slot.update(pending_check_in=pending)

    def _transition(self, run: WorkflowRun, state: CycleState, status: str | None = None) -> None:
        run.state = state.value
        run.history.append(state.value)
        if status:
            run.status = status
        self.runs.save_run(run)

    def _fail(self, run: WorkflowRun, error: StepFailed) -> WorkflowRun:
        """Mark the run failed. Never raises; a failed save is only logged."""
        run.error = str(error)
        try:
            self._transition(run, CycleState.FAILED, status="failed")
        except Exception as e:
            logger.opt(exception=e).error(f"{self._ctx('fail_not_saved', run, error.step)} {e}")
        if not self.events.is_waiting(self.user_id):
            self._set_pending(False)
        logger.error(f"{self._ctx('cycle_failed', run, error.step)} {error.cause}")
        return run

    async def _send(self, text: str, step: str) -> dict[str, Any]:
        try:
            await self.channel.send_message(self.user_id, text)
        except Exception as e:
            raise StepFailed(step, UpstreamError(str(e), capability="channel")) from e
        return {"success": True}

    async def _analyze(self, reply: str) -> dict[str, Any]:
        """Analyze the reply; analyzer failures degrade to neutral/5."""
        try:
            analysis = await self.analyzer.analyze(reply)
        except Exception as e:
            logger.warning(f"{self._ctx('tone_fallback')} using neutral/5: {e}")
            analysis = ToneAnalysis.default()
        return analysis.model_dump()

    def _save(self, tone: str, reply: str, recommendations: list[str]) -> dict[str, Any]:
        summary = build_check_in_summary(tone, reply)
        try:
            record = self.ledger.upsert_check_in(tone, summary, recommendations)
        except Exception as e:
            raise StepFailed("save-check-in", e) from e
        return {"success": True, "id": record.id, "date": record.date}

    async def _complete(
        self,
        steps: DurableStep | ImmediateStep,
        reply: str,
        run: WorkflowRun | None = None,
    ) -> dict[str, Any]:
        """analyze -> recommend -> persist -> summarize.

        Raises:
            StepFailed: If persisting or sending the summary fails.
        """
        if run is not None:
            self._transition(run, CycleState.ANALYZING)
        analysis = await steps.do("analyze-emotional-tone", lambda: self._analyze(reply))
        tone = analysis["tone"]
        intensity = analysis["intensity"]

        if run is not None:
            self._transition(run, CycleState.RECOMMENDING)

        async def _recommend() -> dict[str, Any]:
            return {"recommendations": select_recommendations(tone, intensity)}

        recommendations = (await steps.do("generate-recommendations", _recommend))["recommendations"]

        if run is not None:
            self._transition(run, CycleState.PERSISTING)

        async def _persist() -> dict[str, Any]:
            return self._save(tone, reply, recommendations)

        saved = await steps.do("save-check-in", _persist)

        if run is not None:
            self._transition(run, CycleState.SUMMARIZING)
        await steps.do(
            "send-summary",
            lambda: self._send(format_summary_message(tone, recommendations), "send-summary"),
        )
        self._set_pending(False)
        return {
            "tone": tone,
            "intensity": intensity,
            "recommendations": recommendations,
            "checkInId": saved.get("id"),
        }


class WorkflowCheckIn(CheckInStrategy):
    """Prompt, wait for the reply with a timeout, then complete the check-in."""

    async def run(self) -> WorkflowRun:
        run = self.runs.create_run(CycleState.IDLE.value)
        logger.info(f"{self._ctx('cycle_started', run)}")
        return await self._execute(run, completed={})

    async def resume(self, run_id: str) -> WorkflowRun:
        """Replay a run, skipping completed steps.

        Raises:
            NotFoundError: If the run does not exist.
        """
        run = self.runs.get_run(run_id)
        if run is None:
            raise NotFoundError(f"Workflow run {run_id} not found")
        if run.is_finished:
            return run
        completed = self.runs.completed_steps(run_id)
        run.history.append(run.state)
        logger.info(f"{self._ctx('cycle_resumed', run)} completed={sorted(completed)}")
        return await self._execute(run, completed)

    async def _execute(self, run: WorkflowRun, completed: dict[str, Any]) -> WorkflowRun:
        steps = DurableStep(run, self.runs, self.events, completed)
        try:
            await steps.do(
                "send-check-in-message",
                lambda: self._send(CHECK_IN_PROMPT, "send-check-in-message"),
            )
            if run.state == CycleState.IDLE.value:
                self._transition(run, CycleState.PROMPTED)

            self._transition(run, CycleState.AWAITING_REPLY)
            self._set_pending(True)
            payload = await steps.wait_for_event(CHECK_IN_RESPONSE_EVENT, self.timeout_seconds)

            if payload is None:
                self._transition(run, CycleState.TIMED_OUT)
                await steps.do("handle-timeout", self._timeout_reminder)
                self._set_pending(False)
                self._transition(run, CycleState.DONE, status="timed_out")
                logger.info(f"{self._ctx('cycle_timed_out', run)}")
                return run

            reply = _reply_text(payload)
            logger.info(f"{self._ctx('reply_received', run)} {truncate_log_text(reply, 80)}")
            await self._complete(steps, reply, run)
            self._transition(run, CycleState.DONE, status="completed")
        except StepFailed as e:
            return self._fail(run, e)
        except Exception as e:
            return self._fail(run, StepFailed(run.state, e))

        logger.info(f"{self._ctx('cycle_completed', run)}")
        return run

    async def _timeout_reminder(self) -> dict[str, Any]:
        await self._send(TIMEOUT_REMINDER, "handle-timeout")
        return {"success": True, "timeout": True}


class PromptOnlyCheckIn(CheckInStrategy):
    """Send the prompt and let the next user message finish the check-in."""

    async def run(self) -> WorkflowRun:
        run = self.runs.create_run(CycleState.IDLE.value)
        try:
            await self._send(CHECK_IN_PROMPT, "send-check-in-message")
            self._transition(run, CycleState.PROMPTED)
            self._set_pending(True)
            self._transition(run, CycleState.DONE, status="completed")
        except StepFailed as e:
            return self._fail(run, e)
        except Exception as e:
            return self._fail(run, StepFailed(run.state, e))
        logger.info(f"{self._ctx('prompt_sent', run)} awaiting next user message")
        return run

    async def complete(self, reply: str) -> dict[str, Any]:
        """Finish a pending check-in from a user reply.

        Raises:
            StepFailed: If persisting or sending the summary fails.
        """
        result = await self._complete(ImmediateStep(), reply)
        logger.info(f"{self._ctx('pending_completed')} tone={result['tone']}")
        return result


def _reply_text(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("response", ""))
    return str(payload)


def create_check_in_strategy(mode: str | None = None, **kwargs: Any) -> CheckInStrategy:
    """Build the strategy named by ``CHECK_IN_MODE`` ("workflow" or "cron")."""
    mode = mode or settings.CHECK_IN_MODE
    if mode == "workflow":
        return WorkflowCheckIn(**kwargs)
    if mode == "cron":
        return PromptOnlyCheckIn(**kwargs)
    raise ValueError(f"Unknown check-in mode: {mode}")
