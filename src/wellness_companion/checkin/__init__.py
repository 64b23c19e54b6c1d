"""Daily check-in orchestration."""

from wellness_companion.checkin.steps import CHECK_IN_RESPONSE_EVENT, CheckInEvents, DurableStep
from wellness_companion.checkin.workflow import (
    CheckInStrategy,
    CycleState,
    PromptOnlyCheckIn,
    StepFailed,
    WorkflowCheckIn,
    create_check_in_strategy,
)

__all__ = [
    "CHECK_IN_RESPONSE_EVENT",
    "CheckInEvents",
    "CheckInStrategy",
    "CycleState",
    "DurableStep",
    "PromptOnlyCheckIn",
    "StepFailed",
    "WorkflowCheckIn",
    "create_check_in_strategy",
]
