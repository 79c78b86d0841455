"""Error kinds and exceptions shared by the lock, coordination and retry layers."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    LOCK_ACQUISITION_FAILED = "LOCK_ACQUISITION_FAILED"
    TASK_EXECUTION_FAILED = "TASK_EXECUTION_FAILED"
    ORCHESTRATION_DEADLOCK = "ORCHESTRATION_DEADLOCK"
    ORCHESTRATION_STEP_FAILED = "ORCHESTRATION_STEP_FAILED"
    ORCHESTRATION_INVALID_GRAPH = "ORCHESTRATION_INVALID_GRAPH"
    COORDINATION_ERROR = "COORDINATION_ERROR"


# Error codes reported by executors for transient infrastructure failures.
RETRYABLE_ERROR_CODES = frozenset({"NETWORK_ERROR", "TIMEOUT_ERROR"})

_FATAL_KINDS = frozenset({ErrorKind.ORCHESTRATION_DEADLOCK, ErrorKind.ORCHESTRATION_INVALID_GRAPH})


class CoordinationFailure(RuntimeError):
    """Base exception carrying a structured error kind and code."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.COORDINATION_ERROR,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code or kind.value
        self.details = dict(details or {})


class LockContentionError(CoordinationFailure):
    def __init__(self, lock_key: str, active_lock_metadata: Optional[Dict[str, Any]] = None) -> None:
        self.lock_key = lock_key
        self.active_lock_metadata = active_lock_metadata
        super().__init__(
            f"Failed to acquire lock {lock_key}; active lock: {active_lock_metadata}",
            kind=ErrorKind.LOCK_ACQUISITION_FAILED,
            details={"lock_key": lock_key, "active_lock_metadata": active_lock_metadata},
        )


class OrchestrationDeadlockError(CoordinationFailure):
    def __init__(self, pending_steps: list[str], completed_steps: list[str]) -> None:
        self.pending_steps = pending_steps
        self.completed_steps = completed_steps
        super().__init__(
            "No executable steps found - possible circular dependency",
            kind=ErrorKind.ORCHESTRATION_DEADLOCK,
            details={"pending_steps": pending_steps, "completed_steps": completed_steps},
        )


class InvalidStepGraphError(CoordinationFailure):
    def __init__(self, message: str, *, problems: list[str]) -> None:
        self.problems = problems
        super().__init__(
            message,
            kind=ErrorKind.ORCHESTRATION_INVALID_GRAPH,
            details={"problems": problems},
        )


def error_kind_of(error: BaseException) -> str:
    """Return the grouping label used for retry accounting and escalation."""

    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind.value
    if isinstance(kind, str) and kind:
        return kind
    return type(error).__name__


def is_retryable_error(error: BaseException) -> bool:
    if isinstance(error, CoordinationFailure):
        if error.kind in _FATAL_KINDS:
            return False
        if error.kind == ErrorKind.LOCK_ACQUISITION_FAILED:
            return True
        return error.code in RETRYABLE_ERROR_CODES
    return isinstance(error, (TimeoutError, ConnectionError))
