"""Per-user agent state.

The agent owns one ``StateSlot``. Stores swap a new immutable ``AgentState``
into the slot after every successful write; readers only ever see snapshots.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from typing import TYPE_CHECKING, Any

from wellness_companion.logging import format_log_context, get_logger

if TYPE_CHECKING:
    from wellness_companion.storage.preferences import UserPreferences

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckInSummary:
    """Compact view of a check-in cached in agent state."""

    date: str
    emotional_tone: str
    summary: str


@dataclass(frozen=True)
class AgentState:
    """Immutable snapshot of what the agent knows about its user."""

    user_id: str
    daily_check_ins: tuple[CheckInSummary, ...] = field(default_factory=tuple)
    last_check_in: str | None = None
    preferences: UserPreferences | None = None
    pending_check_in: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "dailyCheckIns": [asdict(item) for item in self.daily_check_ins],
            "lastCheckIn": self.last_check_in,
            "preferences": self.preferences.to_dict() if self.preferences else None,
            "pendingCheckIn": self.pending_check_in,
        }


StateObserver = Callable[[AgentState], None]


class StateSlot:
    """Holds the current ``AgentState`` and swaps it atomically."""

    def __init__(self, initial: AgentState) -> None:
        self._state = initial
        self._lock = threading.Lock()
        self._observers: list[StateObserver] = []

    @property
    def state(self) -> AgentState:
        return self._state

    def snapshot(self) -> AgentState:
        """Return the current state (frozen, safe to hand out)."""
        return self._state

    def update(self, **changes: Any) -> AgentState:
        """Replace the named fields in one swap and notify observers."""
        with self._lock:
            new_state = replace(self._state, **changes)
            self._state = new_state
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(new_state)
            except Exception as e:
                ctx = format_log_context("state", component="state", user=new_state.user_id)
                logger.warning(f"{ctx} observer failed: {e}")
        return new_state

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer. Returns a callable that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe
