"""JSON-serialisable result records returned by the coordination managers."""

from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from agent_coordination.core.errors import CoordinationFailure, ErrorKind
from agent_coordination.orchestrator.progress import ProgressState


class CoordinationErrorInfo(BaseModel):
    message: str
    code: str
    kind: ErrorKind
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: CoordinationFailure) -> "CoordinationErrorInfo":
        return cls(message=exc.message, code=exc.code, kind=exc.kind, details=exc.details)


class LockSummary(BaseModel):
    key: str
    acquired: bool
    released: bool
    hold_duration_ms: Optional[float] = None


class ExecutionMetadata(BaseModel):
    started_at: str
    ended_at: str
    duration_ms: float
    retry_count: int = 0


class CoordinationResult(BaseModel):
    success: bool
    result: Any = None
    error: Optional[CoordinationErrorInfo] = None
    lock_metadata: Optional[LockSummary] = None
    execution_metadata: ExecutionMetadata

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def raise_for_error(self) -> "CoordinationResult":
        if self.success or self.error is None:
            return self
        raise CoordinationFailure(
            self.error.message,
            kind=self.error.kind,
            code=self.error.code,
            details=self.error.details,
        )


class OrchestrationResult(CoordinationResult):
    orchestration_id: str
    step_statuses: Dict[str, str] = Field(default_factory=dict)
    completed_steps: List[str] = Field(default_factory=list)
    pending_steps: List[str] = Field(default_factory=list)
    progress: Optional[ProgressState] = None


class ExecutionClock:
    """Wall-clock start/end stamps plus a monotonic duration."""

    def __init__(self) -> None:
        self.started_at = datetime.now(timezone.utc).isoformat()
        self._started = time.perf_counter()

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 3)

    def finish(self, *, retry_count: int = 0) -> ExecutionMetadata:
        return ExecutionMetadata(
            started_at=self.started_at,
            ended_at=datetime.now(timezone.utc).isoformat(),
            duration_ms=self.elapsed_ms(),
            retry_count=retry_count,
        )
