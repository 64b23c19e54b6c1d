"""Error taxonomy for the check-in engine."""


class WellnessError(Exception):
    """Base class for all engine errors."""


class ValidationError(WellnessError):
    """Caller-supplied data failed a precondition (bad name, time format, tone...)."""


class NotFoundError(WellnessError):
    """A referenced job or record does not exist."""


class UpstreamError(WellnessError):
    """An external capability failed (tone analysis, LLM call, message send)."""

    def __init__(self, message: str, capability: str | None = None) -> None:
        super().__init__(message)
        self.capability = capability


class ScheduleError(WellnessError):
    """The scheduler backend failed; no partial job is left registered."""


class InvalidScheduleError(ScheduleError):
    """The trigger definition is not a recognised schedule."""


class ConflictError(WellnessError):
    """The operation clashes with work already in progress."""
