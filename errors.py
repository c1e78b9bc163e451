class EngineError(ValueError):
    """Base class for every error raised by the transaction engine."""


class ValidationError(EngineError):
    """Input rejected before any state change."""


class InvalidFrequency(ValidationError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid frequency: {value!r}")
        self.value = value


class ConflictingEndCondition(ValidationError):
    def __init__(self) -> None:
        super().__init__("Provide either end_date or occurrences, not both")


class NotFoundOrForbidden(EngineError):
    """The entity does not exist or belongs to another user.

    The message is the same in both cases.
    """


class ConsistencyViolation(EngineError):
    """The request would break a stored invariant."""
