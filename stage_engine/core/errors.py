"""Engine error taxonomy."""


class StageEngineError(Exception):
    """Base exception for pipeline stage engine errors."""

    pass


class ValidationError(StageEngineError):
    """Transition rejected (missing field, open checklist step, non-adjacent move)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ConflictError(StageEngineError):
    """Structural violation, e.g. deleting a stage that items still reference."""

    pass


class VersionConflictError(ConflictError):
    """Raised when expected_version doesn't match current version."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Version conflict: expected {expected}, got {actual}")


class NotFoundError(StageEngineError):
    """Pipeline or stage not found."""

    pass


class PersistenceError(StageEngineError):
    """Commit to storage failed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class MalformedConfigError(StageEngineError):
    """Invalid authoring input (unparseable config, bad checklist entry)."""

    pass


class ConfirmationRequiredError(StageEngineError):
    """Destructive operation attempted without a valid confirmation token."""

    pass
