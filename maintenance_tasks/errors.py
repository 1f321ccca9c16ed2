"""
Error taxonomy for the task execution engine.

Lost compare-and-set races and host interruptions are deliberately absent:
they are outcomes, not errors.
"""
from typing import Dict, List


class MaintenanceTasksError(Exception):
    """Base class for every error raised by this package."""


class TaskNotFoundError(MaintenanceTasksError):
    """Raised when no task definition is registered under a name."""
    def __init__(self, name):
        self.name = name
        super().__init__(f"Task '{name}' not found")


class ValidationError(MaintenanceTasksError):
    """Raised when task parameters fail validation. Carries per-field messages."""
    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        details = '; '.join(f"{field} {', '.join(msgs)}" for field, msgs in errors.items())
        super().__init__(f"Invalid parameters: {details}")


class InclusionUndefinedError(ValidationError):
    """Raised when a computed inclusion set cannot be resolved at validation time."""
    def __init__(self, field, source):
        self.field = field
        self.source = source
        super().__init__({field: [f'has an undefined inclusion set ({source!r})']})


class AlreadyActiveError(MaintenanceTasksError):
    """Raised when starting a task that already has an active Run."""
    def __init__(self, task_name, run_id=None):
        self.task_name = task_name
        self.run_id = run_id
        suffix = f' (run {run_id})' if run_id is not None else ''
        super().__init__(f"Task '{task_name}' already has an active run{suffix}")


class CursorCorruptError(MaintenanceTasksError):
    """Raised when a stored cursor cannot be decoded."""
    def __init__(self, raw, reason=''):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Corrupt cursor {raw!r}" + (f': {reason}' if reason else ''))


class InvalidCollectionError(MaintenanceTasksError):
    """Raised when a task's collection() returns an unsupported shape."""


class ProcessingError(MaintenanceTasksError):
    """Wraps an exception raised by a task's process(item)."""
    def __init__(self, original: BaseException, item=None):
        self.original = original
        self.item = item
        super().__init__(f'{type(original).__name__}: {original}')


class RunNotFoundError(MaintenanceTasksError):
    """Raised when an operator request names a Run that does not exist."""
    def __init__(self, run_id):
        self.run_id = run_id
        super().__init__(f'Run {run_id} not found')


class InvalidTransitionError(MaintenanceTasksError):
    """Raised when an operator asks for a status change that is not allowed."""
    def __init__(self, run_id, from_status, to_status):
        self.run_id = run_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Run {run_id} cannot move from '{from_status}' to '{to_status}'")
