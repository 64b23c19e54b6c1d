"""Tests for the daily check-in cycle (workflow and prompt-only strategies)."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from wellness_companion.checkin.messages import CHECK_IN_PROMPT, TIMEOUT_REMINDER
from wellness_companion.checkin.steps import CHECK_IN_RESPONSE_EVENT, CheckInEvents, DurableStep
from wellness_companion.checkin.workflow import (
    PromptOnlyCheckIn,
    WorkflowCheckIn,
    create_check_in_strategy,
)
from wellness_companion.errors import ConflictError, NotFoundError
from wellness_companion.recommendations import PROFESSIONAL_SUPPORT, RECOMMENDATIONS
from wellness_companion.storage.checkins import CheckInLedger
from wellness_companion.storage.workflow_runs import WorkflowRunStorage

from conftest import USER_ID, FailingChannel, StubAnalyzer, wait_until

FULL_HISTORY = [
    "idle",
    "prompted",
    "awaiting_reply",
    "analyzing",
    "recommending",
    "persisting",
    "summarizing",
    "done",
]


class BrokenLedger(CheckInLedger):
    def upsert_check_in(self, tone, summary, recommendations, on_date=None):
        raise sqlite3.OperationalError("database is locked")


class BrokenStepJournal(WorkflowRunStorage):
    def record_step(self, run_id, step_name, result):
        raise sqlite3.OperationalError("disk I/O error")


class ReadOnlyRuns(WorkflowRunStorage):
    def save_run(self, run):
        raise sqlite3.OperationalError("attempt to write a readonly database")


@pytest.fixture
def ledger(slot) -> CheckInLedger:
    return CheckInLedger(USER_ID, slot)


@pytest.fixture
def runs() -> WorkflowRunStorage:
    return WorkflowRunStorage(USER_ID)


def _workflow(channel, events, slot, analyzer, ledger=None, timeout_seconds=5.0) -> WorkflowCheckIn:
    return WorkflowCheckIn(
        user_id=USER_ID,
        channel=channel,
        ledger=ledger or CheckInLedger(USER_ID, slot),
        analyzer=analyzer,
        events=events,
        slot=slot,
        timeout_seconds=timeout_seconds,
    )


def _contents(channel) -> list[str]:
    return [message.content for message in channel.history(USER_ID)]


async def _reply(events, text: str) -> None:
    await wait_until(lambda: events.is_waiting(USER_ID))
    assert events.deliver(USER_ID, CHECK_IN_RESPONSE_EVENT, {"response": text})


# =============================================================================
# Workflow strategy
# =============================================================================

async def test_check_in_cycle_end_to_end(channel, events, slot, ledger, runs) -> None:
    analyzer = StubAnalyzer("positive", 6)
    workflow = _workflow(channel, events, slot, analyzer, ledger)

    task = asyncio.create_task(workflow.run())
    await wait_until(lambda: events.is_waiting(USER_ID))

    assert _contents(channel) == [CHECK_IN_PROMPT]
    assert slot.state.pending_check_in is True

    await _reply(events, "Feeling great after a morning run")
    run = await task

    assert run.status == "completed"
    assert run.history == FULL_HISTORY
    assert analyzer.calls == ["Feeling great after a morning run"]

    summary = _contents(channel)[-1]
    assert len(channel.history(USER_ID)) == 2
    assert "feeling positive" in summary
    for i, item in enumerate(RECOMMENDATIONS["positive"], start=1):
        assert f"{i}. {item}" in summary
    assert "4. " not in summary

    [record] = ledger.get_history()
    assert record.emotional_tone == "positive"
    assert record.recommendations == list(RECOMMENDATIONS["positive"])
    assert record.summary.startswith(
        "Daily check-in: User reported feeling positive. Response: Feeling great"
    )

    assert slot.state.pending_check_in is False
    assert slot.state.last_check_in == record.date
    assert set(runs.completed_steps(run.run_id)) == {
        "send-check-in-message",
        f"event:{CHECK_IN_RESPONSE_EVENT}",
        "analyze-emotional-tone",
        "generate-recommendations",
        "save-check-in",
        "send-summary",
    }
    stored = runs.get_run(run.run_id)
    assert stored.status == "completed"
    assert stored.state == "done"


async def test_reply_timeout_sends_one_reminder(channel, events, slot, ledger) -> None:
    workflow = _workflow(channel, events, slot, StubAnalyzer(), ledger, timeout_seconds=0.05)

    run = await workflow.run()

    assert run.status == "timed_out"
    assert run.state == "done"
    assert "timed_out" in run.history
    assert _contents(channel) == [CHECK_IN_PROMPT, TIMEOUT_REMINDER]
    assert ledger.get_history() == []
    assert slot.state.pending_check_in is False
    assert not events.is_waiting(USER_ID)


async def test_late_reply_is_not_delivered(channel, events, slot) -> None:
    workflow = _workflow(channel, events, slot, StubAnalyzer(), timeout_seconds=0.05)
    await workflow.run()

    assert events.deliver(USER_ID, CHECK_IN_RESPONSE_EVENT, {"response": "sorry, late"}) is False


async def test_analyzer_failure_falls_back_to_neutral(channel, events, slot, ledger) -> None:
    analyzer = StubAnalyzer(error=RuntimeError("model unavailable"))
    workflow = _workflow(channel, events, slot, analyzer, ledger)

    task = asyncio.create_task(workflow.run())
    await _reply(events, "Just a regular day")
    run = await task

    assert run.status == "completed"
    [record] = ledger.get_history()
    assert record.emotional_tone == "neutral"
    assert record.recommendations == list(RECOMMENDATIONS["neutral"])


async def test_high_intensity_negative_adds_professional_support(channel, events, slot, ledger) -> None:
    workflow = _workflow(channel, events, slot, StubAnalyzer("negative", 9), ledger)

    task = asyncio.create_task(workflow.run())
    await _reply(events, "Everything feels overwhelming")
    await task

    summary = _contents(channel)[-1]
    assert f"4. {PROFESSIONAL_SUPPORT}" in summary
    assert ledger.get_history()[0].recommendations[-1] == PROFESSIONAL_SUPPORT


async def test_prompt_send_failure_fails_run(events, slot, ledger, runs) -> None:
    channel = FailingChannel()
    workflow = _workflow(channel, events, slot, StubAnalyzer(), ledger)

    run = await workflow.run()

    assert run.status == "failed"
    assert run.state == "failed"
    assert "send-check-in-message" in run.error
    assert runs.get_run(run.run_id).status == "failed"
    assert not events.is_waiting(USER_ID)
    assert slot.state.pending_check_in is False
    assert channel.history(USER_ID) == []


async def test_summary_send_failure_keeps_saved_check_in(events, slot, ledger) -> None:
    channel = FailingChannel(fail_when="Thank you for your check-in")
    workflow = _workflow(channel, events, slot, StubAnalyzer("positive", 5), ledger)

    task = asyncio.create_task(workflow.run())
    await _reply(events, "Pretty good")
    run = await task

    assert run.status == "failed"
    assert "send-summary" in run.error
    assert len(ledger.get_history()) == 1
    assert _contents(channel) == [CHECK_IN_PROMPT]


async def test_ledger_failure_fails_run_without_summary(channel, events, slot) -> None:
    ledger = BrokenLedger(USER_ID, slot)
    workflow = _workflow(channel, events, slot, StubAnalyzer("positive", 5), ledger)

    task = asyncio.create_task(workflow.run())
    await _reply(events, "Good day")
    run = await task

    assert run.status == "failed"
    assert "save-check-in" in run.error
    assert _contents(channel) == [CHECK_IN_PROMPT]
    assert slot.state.pending_check_in is False


async def test_step_journal_failure_fails_run(channel, events, slot, ledger) -> None:
    runs = BrokenStepJournal(USER_ID)
    workflow = WorkflowCheckIn(
        USER_ID, channel, ledger, StubAnalyzer(), runs=runs, events=events, slot=slot
    )

    run = await workflow.run()

    assert run.status == "failed"
    assert "disk I/O error" in run.error
    assert runs.get_run(run.run_id).status == "failed"
    assert runs.list_runs(status="waiting") == []
    assert not events.is_waiting(USER_ID)
    assert slot.state.pending_check_in is False


async def test_run_that_cannot_be_saved_still_ends_failed(channel, events, slot, ledger) -> None:
    runs = ReadOnlyRuns(USER_ID)
    workflow = WorkflowCheckIn(
        USER_ID, channel, ledger, StubAnalyzer(), runs=runs, events=events, slot=slot
    )

    run = await workflow.run()

    assert run.status == "failed"
    assert run.state == "failed"
    assert "readonly" in run.error
    assert not events.is_waiting(USER_ID)
    assert slot.state.pending_check_in is False


async def test_second_waiter_fails_without_taking_over(channel, events, slot, ledger, runs) -> None:
    first = _workflow(channel, events, slot, StubAnalyzer("positive", 6), ledger)
    second = _workflow(channel, events, slot, StubAnalyzer("positive", 6), ledger)

    first_task = asyncio.create_task(first.run())
    await wait_until(lambda: events.is_waiting(USER_ID))
    rejected = await second.run()

    assert rejected.status == "failed"
    assert "already waiting" in rejected.error
    assert events.is_waiting(USER_ID)
    assert slot.state.pending_check_in is True

    assert events.deliver(USER_ID, CHECK_IN_RESPONSE_EVENT, {"response": "Good day"})
    completed = await first_task

    assert completed.status == "completed"
    assert runs.list_runs(status="waiting") == []
    assert len(ledger.get_history()) == 1


async def test_events_allow_one_waiter_per_user_and_name() -> None:
    events = CheckInEvents()
    future = events.expect(USER_ID, CHECK_IN_RESPONSE_EVENT)

    with pytest.raises(ConflictError):
        events.expect(USER_ID, CHECK_IN_RESPONSE_EVENT)
    assert not future.done()

    other = events.expect("bob", CHECK_IN_RESPONSE_EVENT)
    assert events.deliver(USER_ID, CHECK_IN_RESPONSE_EVENT, {"response": "hi"})
    assert future.result() == {"response": "hi"}

    # A settled waiter frees the slot
    events.expect(USER_ID, CHECK_IN_RESPONSE_EVENT)
    other.cancel()


# =============================================================================
# Resume
# =============================================================================

async def test_resume_skips_completed_prompt(channel, events, slot, ledger, runs) -> None:
    run = runs.create_run("idle")
    runs.record_step(run.run_id, "send-check-in-message", {"success": True})
    run.state = "awaiting_reply"
    runs.save_run(run)

    workflow = _workflow(channel, events, slot, StubAnalyzer("neutral", 4), ledger)
    task = asyncio.create_task(workflow.resume(run.run_id))
    await wait_until(lambda: events.is_waiting(USER_ID))

    assert channel.history(USER_ID) == []

    await _reply(events, "Okay I guess")
    resumed = await task

    assert resumed.status == "completed"
    assert len(channel.history(USER_ID)) == 1
    assert "Thank you for your check-in" in _contents(channel)[0]
    assert len(ledger.get_history()) == 1


async def test_resume_after_recorded_reply_does_not_wait_or_reanalyze(
    channel, events, slot, ledger, runs
) -> None:
    run = runs.create_run("idle")
    runs.record_step(run.run_id, "send-check-in-message", {"success": True})
    runs.record_step(run.run_id, f"event:{CHECK_IN_RESPONSE_EVENT}", {"response": "Awful week"})
    runs.record_step(
        run.run_id, "analyze-emotional-tone", {"tone": "negative", "intensity": 8, "keywords": []}
    )
    run.state = "analyzing"
    runs.save_run(run)

    analyzer = StubAnalyzer("positive", 2)
    resumed = await _workflow(channel, events, slot, analyzer, ledger).resume(run.run_id)

    assert resumed.status == "completed"
    assert analyzer.calls == []
    [record] = ledger.get_history()
    assert record.emotional_tone == "negative"
    assert record.recommendations[-1] == PROFESSIONAL_SUPPORT
    assert record.summary.endswith("Response: Awful week...")


async def test_resume_past_deadline_times_out(channel, events, slot, ledger, runs) -> None:
    run = runs.create_run("idle")
    runs.record_step(run.run_id, "send-check-in-message", {"success": True})
    run.state = "awaiting_reply"
    run.awaited_event = CHECK_IN_RESPONSE_EVENT
    run.timeout_deadline = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()
    runs.save_run(run)

    resumed = await _workflow(channel, events, slot, StubAnalyzer(), ledger).resume(run.run_id)

    assert resumed.status == "timed_out"
    assert _contents(channel) == [TIMEOUT_REMINDER]
    assert ledger.get_history() == []


async def test_resume_finished_run_is_a_no_op(channel, events, slot, runs) -> None:
    run = runs.create_run("idle")
    run.status = "completed"
    run.state = "done"
    runs.save_run(run)

    resumed = await _workflow(channel, events, slot, StubAnalyzer()).resume(run.run_id)

    assert resumed.status == "completed"
    assert channel.history(USER_ID) == []


async def test_resume_unknown_run(channel, events, slot) -> None:
    with pytest.raises(NotFoundError):
        await _workflow(channel, events, slot, StubAnalyzer()).resume("missing")


async def test_durable_step_runs_each_step_once(events, runs) -> None:
    run = runs.create_run("idle")
    calls: list[str] = []

    async def _side_effect():
        calls.append("x")
        return {"value": len(calls)}

    steps = DurableStep(run, runs, events)
    assert await steps.do("only-once", _side_effect) == {"value": 1}
    assert await steps.do("only-once", _side_effect) == {"value": 1}

    replay = DurableStep(run, runs, events, runs.completed_steps(run.run_id))
    assert await replay.do("only-once", _side_effect) == {"value": 1}
    assert calls == ["x"]


# =============================================================================
# Prompt-only strategy
# =============================================================================

async def test_prompt_only_run_marks_pending(channel, slot, ledger) -> None:
    strategy = PromptOnlyCheckIn(USER_ID, channel, ledger, StubAnalyzer(), slot=slot)

    run = await strategy.run()

    assert run.status == "completed"
    assert _contents(channel) == [CHECK_IN_PROMPT]
    assert slot.state.pending_check_in is True
    assert ledger.get_history() == []


async def test_prompt_only_complete_saves_and_summarizes(channel, slot, ledger) -> None:
    strategy = PromptOnlyCheckIn(USER_ID, channel, ledger, StubAnalyzer("negative", 8), slot=slot)
    await strategy.run()

    result = await strategy.complete("I'm exhausted and stressed")

    assert result["tone"] == "negative"
    assert result["recommendations"][-1] == PROFESSIONAL_SUPPORT
    assert slot.state.pending_check_in is False
    assert ledger.get_history()[0].emotional_tone == "negative"
    assert "4. " in _contents(channel)[-1]


async def test_prompt_only_send_failure(slot, ledger) -> None:
    strategy = PromptOnlyCheckIn(USER_ID, FailingChannel(), ledger, StubAnalyzer(), slot=slot)

    run = await strategy.run()

    assert run.status == "failed"
    assert slot.state.pending_check_in is False


async def test_prompt_only_storage_failure(channel, slot, ledger) -> None:
    runs = ReadOnlyRuns(USER_ID)
    strategy = PromptOnlyCheckIn(USER_ID, channel, ledger, StubAnalyzer(), runs=runs, slot=slot)

    run = await strategy.run()

    assert run.status == "failed"
    assert "readonly" in run.error
    assert slot.state.pending_check_in is False


def test_strategy_factory(channel, ledger) -> None:
    kwargs = {"user_id": USER_ID, "channel": channel, "ledger": ledger, "analyzer": StubAnalyzer()}
    assert isinstance(create_check_in_strategy("workflow", **kwargs), WorkflowCheckIn)
    assert isinstance(create_check_in_strategy("cron", **kwargs), PromptOnlyCheckIn)
    with pytest.raises(ValueError):
        create_check_in_strategy("hourly", **kwargs)
