from __future__ import annotations


class TaskCreationError(Exception):
    """Base class for failures reported by the create-task endpoint.

    ``message`` is safe to return to the caller; ``reason`` is a stable
    machine-readable tag used for metrics and logs.
    """

    status_code = 400
    reason = "task_creation_failed"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingFieldError(TaskCreationError):
    reason = "missing_field"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class InvalidEnumError(TaskCreationError):
    reason = "invalid_enum"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class InvalidTimestampError(TaskCreationError):
    reason = "invalid_timestamp"


class PastDueDateError(TaskCreationError):
    reason = "past_due_date"


class NotFoundError(TaskCreationError):
    status_code = 404
    reason = "not_found"


class PersistenceError(TaskCreationError):
    status_code = 500
    reason = "persistence_error"

    def __init__(self, message: str = "Failed to create task") -> None:
        super().__init__(message)
