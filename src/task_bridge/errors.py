"""Typed failures raised by the coordination engine."""


class BridgeError(Exception):
    """Base class for every failure an engine operation can report."""

    code = "bridge_error"
    retryable = False


class NotFound(BridgeError):
    """A referenced task, clarification, or session does not exist."""

    code = "not_found"


class InvalidStateTransition(BridgeError):
    """The operation is not permitted from the task's current status."""

    code = "invalid_state_transition"

    def __init__(self, message: str, current_status: str):
        super().__init__(message)
        self.current_status = current_status


class DependencyUnmet(BridgeError):
    """A claim was attempted before every prerequisite task completed."""

    code = "dependency_unmet"

    def __init__(self, message: str, unmet: list[str]):
        super().__init__(message)
        self.unmet = unmet


class DependencyNotFound(NotFound):
    """A task referenced a dependency that does not exist."""

    code = "dependency_not_found"

    def __init__(self, message: str, missing: list[str]):
        super().__init__(message)
        self.missing = missing


class ValidationError(BridgeError):
    """The request breaks a domain rule unrelated to task status."""

    code = "validation_error"


class StorageContention(BridgeError):
    """The write lock could not be acquired within the busy timeout."""

    code = "storage_contention"
    retryable = True
