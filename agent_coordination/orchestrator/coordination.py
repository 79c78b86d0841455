"""Lock-guarded task execution: at most one running task per tenant/resource."""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Dict, List, Optional, Sequence

from agent_coordination.core.errors import ErrorKind
from agent_coordination.core.logger import get_logger, lock_context
from agent_coordination.core.metrics import record_lock_release, record_task_execution
from agent_coordination.orchestrator.events import EventRecorder, NullEventRecorder
from agent_coordination.orchestrator.locks import LockManager, LockMetadata
from agent_coordination.orchestrator.progress import ProgressState, create_progress
from agent_coordination.orchestrator.results import (
    CoordinationErrorInfo,
    CoordinationResult,
    ExecutionClock,
    LockSummary,
)
from agent_coordination.orchestrator.tasks import TaskConfig, TaskExecutor, TaskRequest, TaskResult


logger = get_logger("agent_coordination.orchestrator.coordination")


@dataclass(frozen=True)
class LockOptions:
    ttl_seconds: Optional[int] = None
    metadata: Optional[LockMetadata] = None


@dataclass(frozen=True)
class SequenceStep:
    task_config: TaskConfig
    task_input: Dict[str, Any]
    lock_options: Optional[LockOptions] = None


def _error(kind: ErrorKind, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    return CoordinationErrorInfo(message=message, code=code or kind.value, kind=kind, details=details or {})


class CoordinationManager:
    """Run tasks under a per-resource lock and report structured results."""

    def __init__(
        self,
        *,
        lock_manager: LockManager,
        task_executor: TaskExecutor,
        event_recorder: EventRecorder | None = None,
    ) -> None:
        self._lock_manager = lock_manager
        self._task_executor = task_executor
        self._event_recorder = event_recorder or NullEventRecorder()

    @property
    def lock_manager(self) -> LockManager:
        return self._lock_manager

    def execute_with_lock(
        self,
        request: TaskRequest,
        task_input: Dict[str, Any],
        task_config: TaskConfig,
        lock_options: LockOptions | None = None,
    ) -> CoordinationResult:
        clock = ExecutionClock()
        try:
            lock_key = self._lock_manager.lock_key(request.tenant_id, request.resource_id)
        except ValueError as exc:
            return CoordinationResult(
                success=False,
                error=_error(ErrorKind.COORDINATION_ERROR, str(exc), code="VALIDATION_FAILED"),
                execution_metadata=clock.finish(),
            )

        with lock_context(request.tenant_id, request.resource_id):
            result = self._execute_locked(request, task_input, task_config, lock_options or LockOptions(), lock_key, clock)

        self._record(request, event_type="task_execution", result=result, extra={"task_name": task_config.task_name})
        return result

    def _execute_locked(
        self,
        request: TaskRequest,
        task_input: Dict[str, Any],
        task_config: TaskConfig,
        options: LockOptions,
        lock_key: str,
        clock: ExecutionClock,
    ) -> CoordinationResult:
        acquired = False
        released = False
        hold_started: Optional[float] = None
        hold_duration_ms: Optional[float] = None

        def lock_summary() -> LockSummary:
            return LockSummary(key=lock_key, acquired=acquired, released=released, hold_duration_ms=hold_duration_ms)

        try:
            lock = self._lock_manager.acquire(
                request.tenant_id,
                request.resource_id,
                ttl_seconds=options.ttl_seconds,
                metadata=options.metadata,
            )
            if not lock.success:
                active = lock.active_lock_metadata.model_dump(mode="json") if lock.active_lock_metadata else None
                logger.info("coordination_lock_unavailable", lock_key=lock_key, task_name=task_config.task_name)
                return CoordinationResult(
                    success=False,
                    error=_error(
                        ErrorKind.LOCK_ACQUISITION_FAILED,
                        f"Failed to acquire lock for {task_config.task_name}",
                        details={"active_lock_metadata": active},
                    ),
                    lock_metadata=lock_summary(),
                    execution_metadata=clock.finish(),
                )

            acquired = True
            hold_started = time.perf_counter()
            try:
                task_result = self._task_executor.execute(request, task_input, task_config)
            finally:
                released = self._release(request, lock_key)
                hold_duration_ms = round((time.perf_counter() - hold_started) * 1000, 3)
        except Exception as exc:
            if hold_started is not None and hold_duration_ms is None:
                hold_duration_ms = round((time.perf_counter() - hold_started) * 1000, 3)
            record_task_execution(
                task_name=task_config.task_name,
                status="error",
                duration_seconds=clock.elapsed_ms() / 1000,
            )
            logger.error(
                "coordination_error",
                lock_key=lock_key,
                task_name=task_config.task_name,
                lock_acquired=acquired,
                lock_released=released,
                error=str(exc),
            )
            return CoordinationResult(
                success=False,
                error=_error(
                    ErrorKind.COORDINATION_ERROR,
                    str(exc) or type(exc).__name__,
                    details={"exception": type(exc).__name__},
                ),
                lock_metadata=lock_summary(),
                execution_metadata=clock.finish(),
            )

        status = "success" if task_result.success else "failed"
        record_task_execution(
            task_name=task_config.task_name,
            status=status,
            duration_seconds=clock.elapsed_ms() / 1000,
        )
        logger.info(
            "coordination_task_finished",
            lock_key=lock_key,
            task_name=task_config.task_name,
            status=status,
            lock_released=released,
        )

        error = None
        if not task_result.success:
            task_error = task_result.error
            error = _error(
                ErrorKind.TASK_EXECUTION_FAILED,
                task_error.message if task_error else "Task execution failed",
                code=task_error.code if task_error else None,
                details=dict(task_error.details) if task_error else None,
            )
        return CoordinationResult(
            success=task_result.success,
            result=task_result,
            error=error,
            lock_metadata=lock_summary(),
            execution_metadata=clock.finish(retry_count=task_result.retry_count),
        )

    def _release(self, request: TaskRequest, lock_key: str) -> bool:
        try:
            return self._lock_manager.release(request.tenant_id, request.resource_id)
        except Exception as exc:
            record_lock_release(outcome="error")
            logger.error("lock_release_failed", lock_key=lock_key, error=str(exc))
            return False

    def execute_sequence(self, request: TaskRequest, steps: Sequence[SequenceStep]) -> CoordinationResult:
        """Run steps in order, threading progress; stop at the first failure."""

        clock = ExecutionClock()
        results: List[TaskResult] = []
        progress: ProgressState = request.previous_progress or create_progress(total_steps=max(1, len(steps)))
        needed = len(progress.completed_steps) + len(steps)
        if progress.total_steps < needed:
            progress = progress.model_copy(update={"total_steps": needed})
        error: Optional[CoordinationErrorInfo] = None
        last_lock: Optional[LockSummary] = None
        retry_count = 0

        with lock_context(request.tenant_id, request.resource_id):
            for index, step in enumerate(steps, start=1):
                step_request = request.model_copy(update={"task_sequence": index, "previous_progress": progress})
                outcome = self.execute_with_lock(step_request, step.task_input, step.task_config, step.lock_options)
                last_lock = outcome.lock_metadata
                retry_count += outcome.execution_metadata.retry_count

                if outcome.success and isinstance(outcome.result, TaskResult):
                    results.append(outcome.result)
                    progress = outcome.result.updated_progress
                    continue

                error = outcome.error or _error(ErrorKind.TASK_EXECUTION_FAILED, "Task execution failed")
                logger.warning(
                    "sequence_step_failed",
                    task_sequence=index,
                    task_name=step.task_config.task_name,
                    error_kind=error.kind.value,
                )
                break

        result = CoordinationResult(
            success=error is None,
            result=results,
            error=error,
            lock_metadata=last_lock,
            execution_metadata=clock.finish(retry_count=retry_count),
        )
        self._record(request, event_type="task_sequence", result=result, extra={"completed": len(results)})
        return result

    def is_in_progress(self, tenant_id: str, resource_id: str) -> bool:
        try:
            return self._lock_manager.check(tenant_id, resource_id) is not None
        except Exception as exc:
            logger.error("lock_check_failed", tenant_id=tenant_id, resource_id=resource_id, error=str(exc))
            return False

    def cancel(self, tenant_id: str, resource_id: str) -> bool:
        """Force-release the resource lock; a running task is not interrupted."""

        try:
            released = self._lock_manager.release(tenant_id, resource_id)
        except Exception as exc:
            logger.error("lock_cancel_failed", tenant_id=tenant_id, resource_id=resource_id, error=str(exc))
            return False
        logger.warning("coordination_cancelled", tenant_id=tenant_id, resource_id=resource_id, released=released)
        return released

    def _record(
        self,
        request: TaskRequest,
        *,
        event_type: str,
        result: CoordinationResult,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "operation": request.operation,
            "task_sequence": request.task_sequence,
            "lock": result.lock_metadata.model_dump(mode="json") if result.lock_metadata else None,
            "execution": result.execution_metadata.model_dump(mode="json"),
            "error": result.error.model_dump(mode="json") if result.error else None,
            **(extra or {}),
        }
        try:
            self._event_recorder.record(
                tenant_id=request.tenant_id,
                resource_id=request.resource_id,
                event_type=event_type,
                status="success" if result.success else "failed",
                error_kind=result.error.kind.value if result.error else None,
                payload=payload,
            )
        except Exception as exc:
            logger.error("coordination_event_record_failed", event_type=event_type, error=str(exc))
