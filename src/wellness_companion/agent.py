"""Per-user wellness agent and the registry that owns them.

The agent wires the stores, the scheduler and the check-in strategies
together for one user. It owns the user's ``StateSlot``; every store it
builds publishes into that slot.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any

from wellness_companion.channels.base import ConversationChannel, InMemoryConversationChannel
from wellness_companion.checkin.messages import format_task_message
from wellness_companion.checkin.steps import CHECK_IN_RESPONSE_EVENT, CheckInEvents
from wellness_companion.checkin.workflow import (
    CheckInStrategy,
    PromptOnlyCheckIn,
    StepFailed,
    WorkflowCheckIn,
    create_check_in_strategy,
)
from wellness_companion.config import settings
from wellness_companion.errors import ValidationError
from wellness_companion.logging import format_log_context, get_logger, truncate_log_text
from wellness_companion.recommendations import select_recommendations
from wellness_companion.scheduler import (
    DAILY_CHECK_IN_CALLBACK,
    TASK_CALLBACK,
    CheckInScheduler,
    parse_schedule,
)
from wellness_companion.state import AgentState, StateSlot
from wellness_companion.storage.checkins import CheckInLedger, CheckInRecord
from wellness_companion.storage.preferences import PreferenceStore, UserPreferences
from wellness_companion.storage.scheduled_jobs import ScheduledJob
from wellness_companion.storage.workflow_runs import WorkflowRun, WorkflowRunStorage
from wellness_companion.tone import ToneAnalysis, ToneAnalyzer, get_tone_analyzer

if TYPE_CHECKING:
    from langchain_core.tools import BaseTool

logger = get_logger(__name__)


class WellnessAgent:
    """Everything the engine does for a single user."""

    def __init__(
        self,
        user_id: str,
        scheduler: CheckInScheduler,
        channel: ConversationChannel,
        events: CheckInEvents | None = None,
        analyzer: ToneAnalyzer | None = None,
        mode: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.user_id = user_id
        self.scheduler = scheduler
        self.channel = channel
        self.events = events or CheckInEvents()
        self.mode = mode or settings.CHECK_IN_MODE
        self.timeout_seconds = timeout_seconds

        self.slot = StateSlot(AgentState(user_id=user_id))
        self.preferences = PreferenceStore(user_id, self.slot)
        self.ledger = CheckInLedger(user_id, self.slot, self.preferences)
        self.runs = WorkflowRunStorage(user_id)

        self._analyzer = analyzer
        self._tasks: set[asyncio.Task] = set()
        self._check_in_task: asyncio.Task | None = None
        self._started = False

    def _ctx(self, kind: str, **fields: Any) -> str:
        return format_log_context(kind, component="agent", user=self.user_id, **fields)

    @property
    def analyzer(self) -> ToneAnalyzer:
        if self._analyzer is not None:
            return self._analyzer
        return get_tone_analyzer(self.preferences.get_model_provider())

    @property
    def state(self) -> AgentState:
        return self.slot.snapshot()

    def strategy(self, mode: str | None = None) -> CheckInStrategy:
        return create_check_in_strategy(
            mode or self.mode,
            user_id=self.user_id,
            channel=self.channel,
            ledger=self.ledger,
            analyzer=self.analyzer,
            runs=self.runs,
            events=self.events,
            slot=self.slot,
            timeout_seconds=self.timeout_seconds,
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def on_start(self) -> None:
        """Hydrate state, re-arm persisted jobs, and ensure the daily check-in."""
        if self._started:
            return
        self.preferences.get_preferences()
        self.ledger.refresh_state()
        self.scheduler.restore(self.user_id)
        await self.scheduler.ensure_daily_check_in(self.user_id)

        if self.mode == "workflow":
            for run in self.runs.list_runs(status="waiting"):
                self._check_in_task = self._spawn(
                    self.resume_check_in(run.run_id), f"resume-{run.run_id[:8]}"
                )

        self._started = True
        logger.info(f"{self._ctx('started')} mode={self.mode}")

    async def shutdown(self) -> None:
        """Cancel in-process tasks. Waiting runs stay persisted and resume on next start."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._started = False

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self.user_id}:{name}")
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.opt(exception=error).error(f"{self._ctx('task_failed', task=name)} {error}")

        task.add_done_callback(_done)
        return task

    # ========================================================================
    # Scheduled callbacks
    # ========================================================================

    async def run_callback(self, callback_name: str, payload: str | None = None) -> Any:
        """Dispatch a scheduled job to the matching agent method."""
        if callback_name == DAILY_CHECK_IN_CALLBACK:
            return await self.execute_daily_check_in(payload)
        if callback_name == TASK_CALLBACK:
            return await self.execute_task(payload)
        logger.warning(f"{self._ctx('callback_unknown', callback=callback_name)} ignored")
        return None

    async def execute_daily_check_in(self, description: str | None = None) -> asyncio.Task | None:
        """Start a check-in cycle in the background.

        Returns the running task, or None when a cycle for this user is
        still in flight or waiting for the reply. The task is registered
        before this coroutine yields, so back-to-back triggers start one cycle.
        """
        if self.check_in_in_progress():
            logger.info(f"{self._ctx('check_in_skipped')} a check-in is already awaiting a reply")
            return None
        logger.info(f"{self._ctx('check_in_triggered')} {description or ''}".rstrip())
        self._check_in_task = self._spawn(self.strategy().run(), "check-in")
        return self._check_in_task

    def check_in_in_progress(self) -> bool:
        if self._check_in_task is not None and not self._check_in_task.done():
            return True
        return self.events.is_waiting(self.user_id, CHECK_IN_RESPONSE_EVENT)

    async def execute_task(self, description: str | None = None) -> None:
        await self.channel.record_user_message(self.user_id, format_task_message(description))

    async def resume_check_in(self, run_id: str) -> WorkflowRun:
        strategy = self.strategy("workflow")
        assert isinstance(strategy, WorkflowCheckIn)
        return await strategy.resume(run_id)

    # ========================================================================
    # Inbound messages
    # ========================================================================

    async def handle_user_message(self, content: str) -> dict[str, Any]:
        """Record a user message and route it to a waiting or pending check-in."""
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is required")

        await self.channel.record_user_message(self.user_id, content)
        ctx = self._ctx("user_message")
        logger.info(f"{ctx} {truncate_log_text(content, 80)}")
        return await self.route_latest_turn()

    async def route_latest_turn(self) -> dict[str, Any]:
        """Route the newest conversation turn to a waiting or pending check-in.

        Only a user turn is routed. When the newest message is the agent's own
        (for example after a history sync) nothing is delivered or completed.
        """
        if self.channel.last_role(self.user_id) != "user":
            logger.debug(f"{self._ctx('turn_skipped')} latest message is not from the user")
            return {"delivered": False, "completed": False}
        content = self.channel.history(self.user_id)[-1].content

        if self.deliver_check_in_response(content):
            return {"delivered": True, "completed": False}

        if self.state.pending_check_in and self.mode == "cron":
            strategy = self.strategy("cron")
            assert isinstance(strategy, PromptOnlyCheckIn)
            try:
                await strategy.complete(content)
            except StepFailed as e:
                logger.error(f"{self._ctx('pending_failed', step=e.step)} {e.cause}")
                return {"delivered": False, "completed": False}
            return {"delivered": False, "completed": True}

        return {"delivered": False, "completed": False}

    def deliver_check_in_response(self, response: str) -> bool:
        """Hand a reply to the waiting check-in. Returns False when none is waiting."""
        delivered = self.events.deliver(
            self.user_id, CHECK_IN_RESPONSE_EVENT, {"response": response}
        )
        if delivered:
            logger.info(f"{self._ctx('reply_delivered')}")
        return delivered

    async def send_message(self, message: str) -> None:
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        await self.channel.send_message(self.user_id, message)

    # ========================================================================
    # Preferences
    # ========================================================================

    def update_agent_name(self, name: str) -> UserPreferences:
        return self.preferences.update_agent_name(name)

    def update_model_provider(self, provider: str) -> UserPreferences:
        return self.preferences.update_model_provider(provider)

    async def update_check_in_time(self, value: str) -> UserPreferences:
        prefs = self.preferences.update_check_in_time(value)
        await self.scheduler.reschedule_daily_check_in(self.user_id)
        return prefs

    async def update_timezone(self, name: str) -> UserPreferences:
        prefs = self.preferences.update_timezone(name)
        await self.scheduler.reschedule_daily_check_in(self.user_id)
        return prefs

    # ========================================================================
    # Check-ins and recommendations
    # ========================================================================

    def save_check_in(self, tone: str, summary: str, recommendations: list[str]) -> CheckInRecord:
        return self.ledger.upsert_check_in(tone, summary, recommendations)

    def get_check_in_history(self, limit: int = 7) -> list[CheckInRecord]:
        return self.ledger.get_history(limit)

    async def analyze_tone(self, message: str) -> ToneAnalysis:
        """Analyze a message; analyzer failures degrade to neutral/5."""
        try:
            return await self.analyzer.analyze(message)
        except Exception as e:
            logger.warning(f"{self._ctx('tone_fallback')} {e}")
            return ToneAnalysis.default()

    def get_recommendations(self, tone: str, intensity: int = 5) -> list[str]:
        return select_recommendations(tone, intensity)

    # ========================================================================
    # Scheduling
    # ========================================================================

    def schedule_task(self, when: dict[str, Any], description: str) -> str:
        return self.scheduler.schedule(
            self.user_id, parse_schedule(when), TASK_CALLBACK, description
        )

    def list_schedules(self) -> list[ScheduledJob]:
        return self.scheduler.list_jobs(self.user_id)

    def cancel_schedule(self, job_id: str) -> None:
        self.scheduler.cancel(self.user_id, job_id)

    # ========================================================================
    # Model tools
    # ========================================================================

    def tools(self) -> list[BaseTool]:
        """LangChain tools for binding to a chat model.

        Tool calls act on the agent bound to the current context, so invoke
        them inside ``with agent.bound():``.
        """
        from wellness_companion.tools import get_tools

        return get_tools()

    def bound(self) -> AbstractContextManager[WellnessAgent]:
        from wellness_companion.tools import use_agent

        return use_agent(self)


class AgentRegistry:
    """One agent per user, sharing a channel, an event hub and a scheduler."""

    def __init__(
        self,
        channel: ConversationChannel | None = None,
        scheduler: CheckInScheduler | None = None,
        events: CheckInEvents | None = None,
        analyzer: ToneAnalyzer | None = None,
        mode: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.channel = channel or InMemoryConversationChannel()
        self.events = events or CheckInEvents()
        self.scheduler = scheduler or CheckInScheduler()
        self.scheduler.set_dispatcher(self.dispatch)
        self._analyzer = analyzer
        self._mode = mode
        self._timeout_seconds = timeout_seconds
        self._agents: dict[str, WellnessAgent] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str | None = None) -> WellnessAgent:
        """Return the started agent for a user, creating it on first use."""
        user_id = user_id or settings.DEFAULT_USER_ID
        agent = self._agents.get(user_id)
        if agent is not None:
            return agent
        async with self._lock:
            agent = self._agents.get(user_id)
            if agent is None:
                agent = WellnessAgent(
                    user_id,
                    scheduler=self.scheduler,
                    channel=self.channel,
                    events=self.events,
                    analyzer=self._analyzer,
                    mode=self._mode,
                    timeout_seconds=self._timeout_seconds,
                )
                await agent.on_start()
                self._agents[user_id] = agent
        return agent

    async def dispatch(self, user_id: str, callback_name: str, payload: str | None) -> Any:
        agent = await self.get(user_id)
        return await agent.run_callback(callback_name, payload)

    def known_users(self) -> list[str]:
        """User ids that already have a database under USERS_ROOT."""
        root = settings.USERS_ROOT
        if not root.exists():
            return []
        return sorted(
            path.name for path in root.iterdir() if (path / "wellness.db").exists()
        )

    async def start(self) -> None:
        if settings.SCHEDULER_ENABLED:
            self.scheduler.start()
        for user_id in {settings.DEFAULT_USER_ID, *self.known_users()}:
            await self.get(user_id)

    async def shutdown(self) -> None:
        for agent in list(self._agents.values()):
            await agent.shutdown()
        self.scheduler.shutdown()
        self._agents.clear()
