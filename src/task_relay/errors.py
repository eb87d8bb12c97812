"""Error taxonomy raised by core operations."""


class RelayError(ValueError):
    """Base class for recoverable orchestration errors."""

    code = "error"
    exit_code = 1

    def __init__(self, message: str, task_id: str | None = None, field: str | None = None):
        super().__init__(message)
        self.task_id = task_id
        self.field = field


class NotFoundError(RelayError):
    code = "not_found"


class DependencyNotFoundError(RelayError):
    code = "dependency_not_found"


class InvalidTransitionError(RelayError):
    code = "invalid_transition"


class OwnerMismatchError(RelayError):
    code = "owner_mismatch"


class DependenciesUnsatisfiedError(RelayError):
    code = "dependencies_unsatisfied"


class ValidationError(RelayError):
    code = "validation"
    exit_code = 2


class SelfDependencyError(ValidationError):
    code = "self_dependency"


class CycleError(ValidationError):
    code = "cycle"


class HandoffTooShortError(ValidationError):
    code = "handoff_too_short"


class SelfUnblockError(ValidationError):
    code = "self_unblock"


class NotConfiguredError(RelayError):
    """A required setting (default project, agent command) is missing."""

    code = "not_configured"
