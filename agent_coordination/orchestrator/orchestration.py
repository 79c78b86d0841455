"""Dependency-aware multi-step orchestration on top of CoordinationManager."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import os
import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from agent_coordination.core.config import DEFAULT_LOCK_TTL_SECONDS, Settings
from agent_coordination.core.errors import ErrorKind, InvalidStepGraphError, OrchestrationDeadlockError
from agent_coordination.core.logger import get_logger
from agent_coordination.core.metrics import record_orchestration
from agent_coordination.orchestrator.coordination import CoordinationManager, LockOptions
from agent_coordination.orchestrator.events import EventRecorder, SqlEventRecorder
from agent_coordination.orchestrator.locks import LockManager, LockMetadata
from agent_coordination.orchestrator.progress import create_progress, mark_completed
from agent_coordination.orchestrator.results import (
    CoordinationErrorInfo,
    ExecutionClock,
    LockSummary,
    OrchestrationResult,
)
from agent_coordination.orchestrator.tasks import TaskConfig, TaskExecutor, TaskRequest, TaskResult
from agent_coordination.storage.db import create_schema, get_session_factory
from agent_coordination.storage.kv import KeyValueStore


logger = get_logger("agent_coordination.orchestrator.orchestration")


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class OrchestrationStep(BaseModel):
    step_id: str = Field(min_length=1)
    task_config: TaskConfig
    dependencies: List[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    lock_ttl_seconds: Optional[int] = Field(default=None, gt=0)


def generate_orchestration_id(tenant_id: str, resource_id: str) -> str:
    return f"orch_{tenant_id[:8]}_{resource_id[:8]}_{int(time.time() * 1000)}"


def validate_step_graph(steps: Sequence[OrchestrationStep]) -> None:
    """Reject duplicate ids, non-pending steps and references to unknown steps.

    Cycles, including a step that depends on itself, are left to the round
    scheduler, which reports them as a deadlock.
    """

    problems: List[str] = []
    seen: set[str] = set()
    for step in steps:
        if step.step_id in seen:
            problems.append(f"duplicate step id {step.step_id!r}")
        seen.add(step.step_id)
        if step.status != StepStatus.PENDING:
            problems.append(f"step {step.step_id!r} was submitted with status {step.status.value!r}")

    for step in steps:
        for dependency in step.dependencies:
            if dependency not in seen:
                problems.append(f"step {step.step_id!r} depends on unknown step {dependency!r}")

    if problems:
        raise InvalidStepGraphError("Invalid orchestration step graph: " + "; ".join(problems), problems=problems)


def _ready(steps: Sequence[OrchestrationStep], statuses: Dict[str, StepStatus]) -> List[OrchestrationStep]:
    return [
        step
        for step in steps
        if statuses[step.step_id] == StepStatus.PENDING
        and all(statuses.get(dependency) == StepStatus.COMPLETED for dependency in step.dependencies)
    ]


def plan_rounds(steps: Sequence[OrchestrationStep]) -> List[List[str]]:
    """Dry run of the round scheduler: the step ids that would run in each round."""

    validate_step_graph(steps)
    statuses = {step.step_id: StepStatus.PENDING for step in steps}
    completed: List[str] = []
    rounds: List[List[str]] = []

    while any(status == StepStatus.PENDING for status in statuses.values()):
        ready = _ready(steps, statuses)
        if not ready:
            pending = [step_id for step_id, status in statuses.items() if status == StepStatus.PENDING]
            raise OrchestrationDeadlockError(pending, list(completed))
        rounds.append([step.step_id for step in ready])
        for step in ready:
            statuses[step.step_id] = StepStatus.COMPLETED
            completed.append(step.step_id)
    return rounds


class OrchestrationManager(CoordinationManager):
    """Run a step graph round by round, each step under the resource lock."""

    def __init__(
        self,
        *,
        lock_manager: LockManager,
        task_executor: TaskExecutor,
        event_recorder: EventRecorder | None = None,
        step_lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        if step_lock_ttl_seconds <= 0:
            raise ValueError("step_lock_ttl_seconds must be positive")
        super().__init__(lock_manager=lock_manager, task_executor=task_executor, event_recorder=event_recorder)
        self._step_lock_ttl_seconds = step_lock_ttl_seconds

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: KeyValueStore,
        task_executor: TaskExecutor,
        event_recorder: EventRecorder | None = None,
    ) -> "OrchestrationManager":
        if event_recorder is None and settings.events_enabled:
            create_schema()
            event_recorder = SqlEventRecorder(get_session_factory())
        return cls(
            lock_manager=LockManager.from_settings(store, settings),
            task_executor=task_executor,
            event_recorder=event_recorder,
            step_lock_ttl_seconds=settings.orchestration_step_lock_ttl_seconds,
        )

    @property
    def step_lock_ttl_seconds(self) -> int:
        return self._step_lock_ttl_seconds

    def _step_lock_options(self, orchestration_id: str, step: OrchestrationStep) -> LockOptions:
        now = time.time()
        return LockOptions(
            ttl_seconds=step.lock_ttl_seconds or self._step_lock_ttl_seconds,
            metadata=LockMetadata(
                locked_at=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
                lock_id=f"orchestration-{step.step_id}-{int(now * 1000)}",
                process_id=str(os.getpid()),
                metadata={"orchestration_id": orchestration_id, "step_id": step.step_id},
            ),
        )

    def execute(
        self,
        request: TaskRequest,
        steps: Sequence[OrchestrationStep],
        orchestration_input: Optional[Dict[str, Any]] = None,
    ) -> OrchestrationResult:
        clock = ExecutionClock()
        orchestration_id = generate_orchestration_id(request.tenant_id, request.resource_id)
        statuses = {step.step_id: StepStatus.PENDING for step in steps}
        results: Dict[str, TaskResult] = {}
        completed: List[str] = []
        progress = create_progress(total_steps=max(1, len(steps)), metadata={"orchestration_id": orchestration_id})
        last_lock: Optional[LockSummary] = None
        retry_count = 0
        error: Optional[CoordinationErrorInfo] = None
        outcome_label = "success"

        logger.info("orchestration_started", orchestration_id=orchestration_id, steps=len(steps))
        try:
            validate_step_graph(steps)
        except InvalidStepGraphError as exc:
            error = CoordinationErrorInfo.from_exception(exc)
            outcome_label = "invalid_graph"
            logger.warning("orchestration_invalid_graph", orchestration_id=orchestration_id, problems=exc.problems)

        while error is None and any(status == StepStatus.PENDING for status in statuses.values()):
            runnable = _ready(steps, statuses)
            if not runnable:
                pending = [step_id for step_id, status in statuses.items() if status == StepStatus.PENDING]
                error = CoordinationErrorInfo.from_exception(OrchestrationDeadlockError(pending, list(completed)))
                outcome_label = "deadlock"
                logger.error("orchestration_deadlock", orchestration_id=orchestration_id, pending_steps=pending)
                break

            for step in runnable:
                statuses[step.step_id] = StepStatus.RUNNING
                step_input = {
                    **(orchestration_input or {}),
                    **{dependency: results[dependency].model_dump(mode="json") for dependency in step.dependencies},
                }
                step_request = request.model_copy(
                    update={"task_sequence": len(completed) + 1, "previous_progress": progress}
                )
                outcome = self.execute_with_lock(
                    step_request,
                    step_input,
                    step.task_config,
                    self._step_lock_options(orchestration_id, step),
                )
                last_lock = outcome.lock_metadata
                retry_count += outcome.execution_metadata.retry_count

                if outcome.success and isinstance(outcome.result, TaskResult):
                    statuses[step.step_id] = StepStatus.COMPLETED
                    results[step.step_id] = outcome.result
                    completed.append(step.step_id)
                    progress = outcome.result.updated_progress
                    logger.info("orchestration_step_completed", orchestration_id=orchestration_id, step_id=step.step_id)
                    continue

                statuses[step.step_id] = StepStatus.FAILED
                step_error = outcome.error.model_dump(mode="json") if outcome.error else None
                error = CoordinationErrorInfo(
                    message=f"Orchestration step '{step.step_id}' failed",
                    code=ErrorKind.ORCHESTRATION_STEP_FAILED.value,
                    kind=ErrorKind.ORCHESTRATION_STEP_FAILED,
                    details={"step_id": step.step_id, "error": step_error},
                )
                outcome_label = "step_failed"
                logger.error(
                    "orchestration_step_failed",
                    orchestration_id=orchestration_id,
                    step_id=step.step_id,
                    error_kind=outcome.error.kind.value if outcome.error else None,
                )
                break

        if error is None:
            progress = mark_completed(progress)

        record_orchestration(status=outcome_label)
        logger.info("orchestration_finished", orchestration_id=orchestration_id, status=outcome_label)
        result = OrchestrationResult(
            success=error is None,
            result=results,
            error=error,
            lock_metadata=last_lock,
            execution_metadata=clock.finish(retry_count=retry_count),
            orchestration_id=orchestration_id,
            step_statuses={step_id: status.value for step_id, status in statuses.items()},
            completed_steps=completed,
            pending_steps=[step_id for step_id, status in statuses.items() if status == StepStatus.PENDING],
            progress=progress,
        )
        self._record(
            request,
            event_type="orchestration",
            result=result,
            extra={"orchestration_id": orchestration_id, "step_statuses": result.step_statuses},
        )
        return result
