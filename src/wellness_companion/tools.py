"""LangChain tools exposing the wellness capabilities to a chat model.

Tools act on the agent bound to the current context; bind one with
``use_agent(agent)`` before invoking the model.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Literal

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from wellness_companion.agent import WellnessAgent
from wellness_companion.errors import WellnessError
from wellness_companion.logging import get_logger

logger = get_logger(__name__)

_current_agent: contextvars.ContextVar[WellnessAgent | None] = contextvars.ContextVar(
    "current_wellness_agent", default=None
)


def get_current_agent() -> WellnessAgent:
    agent = _current_agent.get()
    if agent is None:
        raise RuntimeError("No wellness agent bound to the current context")
    return agent


@contextmanager
def use_agent(agent: WellnessAgent) -> Iterator[WellnessAgent]:
    token = _current_agent.set(agent)
    try:
        yield agent
    finally:
        _current_agent.reset(token)


class ScheduleWhen(BaseModel):
    """When a task should run."""

    type: Literal["scheduled", "delayed", "cron", "no-schedule"] = Field(
        description="scheduled (absolute date), delayed (seconds from now), cron (recurring)"
    )
    date: str | None = Field(default=None, description="ISO 8601 date for 'scheduled'")
    delayInSeconds: int | None = Field(default=None, description="Seconds from now for 'delayed'")
    cron: str | None = Field(default=None, description="5-field cron expression for 'cron'")


@tool
async def analyze_emotional_tone(message: str) -> dict[str, Any]:
    """Analyze the emotional tone of a user's message.

    Returns tone (positive/neutral/negative), intensity (1-10), and key
    emotional keywords. Use this when the user shares how they're feeling.

    Args:
        message: The user's message to analyze for emotional tone
    """
    analysis = await get_current_agent().analyze_tone(message)
    return analysis.model_dump()


@tool
async def perform_daily_check_in() -> str:
    """Start a daily wellness check-in with the user.

    Asks how they're feeling; their reply is analyzed and answered with
    recommendations.
    """
    agent = get_current_agent()
    task = await agent.execute_daily_check_in("Check-in requested in chat")
    if task is None:
        return "A check-in is already waiting for the user's reply."
    return "Daily check-in started. I've asked the user how they're feeling today."


@tool
def get_mindfulness_recommendations(emotional_tone: str, intensity: int = 5) -> str | list[str]:
    """Get personalized mindfulness and coping recommendations.

    Args:
        emotional_tone: The user's emotional tone (positive/neutral/negative)
        intensity: Intensity of the emotion (1-10)
    """
    try:
        return get_current_agent().get_recommendations(emotional_tone, intensity)
    except WellnessError as e:
        return f"Error getting recommendations: {e}"


@tool
def save_check_in_data(emotional_tone: str, summary: str, recommendations: list[str]) -> str:
    """Save today's check-in (replaces an earlier check-in from the same day).

    Args:
        emotional_tone: The emotional tone (positive/neutral/negative)
        summary: A brief summary of the check-in conversation
        recommendations: List of recommendations provided to the user
    """
    try:
        record = get_current_agent().save_check_in(emotional_tone, summary, recommendations)
    except WellnessError as e:
        logger.warning(f"save_check_in_data failed: {e}")
        return f"Error saving check-in: {e}"
    return f"Check-in saved successfully for {record.date}"


@tool
def get_check_in_history(limit: int = 7) -> str | list[dict[str, Any]]:
    """Get the user's check-in history with emotional tone and summaries.

    Args:
        limit: Number of check-ins to retrieve (1-30, default 7)
    """
    try:
        history = get_current_agent().get_check_in_history(limit)
    except WellnessError as e:
        return f"Error retrieving check-in history: {e}"
    if not history:
        return (
            "No check-in history found. Start your first check-in to begin "
            "tracking your wellness journey."
        )
    return [
        {
            "date": record.date,
            "tone": record.emotional_tone,
            "summary": record.summary,
            "recommendations": record.recommendations,
        }
        for record in history
    ]


@tool
def schedule_task(when: ScheduleWhen, description: str) -> str:
    """Schedule a task to be executed later, such as a wellness reminder.

    Args:
        when: When to run the task
        description: What the task is about
    """
    data = when.model_dump() if isinstance(when, BaseModel) else dict(when)
    try:
        get_current_agent().schedule_task(data, description)
    except WellnessError as e:
        return f"Error scheduling task: {e}"
    value = data.get("date") or data.get("delayInSeconds") or data.get("cron")
    return f'Task scheduled for type "{data["type"]}": {value}'


@tool
def get_scheduled_tasks() -> str | list[dict[str, Any]]:
    """List all tasks that have been scheduled, including daily check-ins."""
    jobs = get_current_agent().list_schedules()
    if not jobs:
        return "No scheduled tasks found."
    return [job.to_dict() for job in jobs]


@tool
def cancel_scheduled_task(task_id: str) -> str:
    """Cancel a scheduled task using its ID.

    Args:
        task_id: The ID of the task to cancel
    """
    try:
        get_current_agent().cancel_schedule(task_id)
    except WellnessError as e:
        return f"Error canceling task {task_id}: {e}"
    return f"Task {task_id} has been successfully canceled."


def get_tools() -> list[BaseTool]:
    """All wellness tools, in the order they are offered to the model."""
    return [
        analyze_emotional_tone,
        perform_daily_check_in,
        get_mindfulness_recommendations,
        save_check_in_data,
        get_check_in_history,
        schedule_task,
        get_scheduled_tasks,
        cancel_scheduled_task,
    ]
