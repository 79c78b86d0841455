"""Task executor contract plus a reference handler-dispatch implementation."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Literal, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from agent_coordination.core.errors import CoordinationFailure, ErrorKind
from agent_coordination.core.logger import get_logger
from agent_coordination.orchestrator.progress import FAILED_STEP, ProgressState, create_progress, record_step
from agent_coordination.orchestrator.retry import RetryPolicy


TaskType = Literal["analysis", "image_generation", "text_generation", "completion"]

logger = get_logger("agent_coordination.orchestrator.tasks")


class TaskRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    agent_type: Optional[str] = None
    operation: str = "task"
    task_sequence: int = Field(default=1, ge=1)
    previous_progress: Optional[ProgressState] = None
    metadata: Dict[str, JsonValue] = Field(default_factory=dict)


class TaskConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_name: str = Field(min_length=1)
    task_type: TaskType
    tool_name: str = Field(min_length=1)
    progress_percent: int = Field(ge=0, le=100)
    description: str = ""
    llm_options: Dict[str, JsonValue] = Field(default_factory=dict)


def build_task_config(
    task_name: str,
    *,
    task_type: TaskType,
    tool_name: str,
    progress_percent: int,
    description: str = "",
    llm_options: Optional[Dict[str, JsonValue]] = None,
) -> TaskConfig:
    """Build a TaskConfig, rejecting blank required fields up front."""

    required = {"task_name": task_name, "task_type": task_type, "tool_name": tool_name}
    missing = [name for name, value in required.items() if not str(value or "").strip()]
    if missing:
        raise ValueError(f"Missing required field: {', '.join(missing)}")
    return TaskConfig(
        task_name=task_name.strip(),
        task_type=task_type,
        tool_name=tool_name.strip(),
        progress_percent=progress_percent,
        description=description,
        llm_options=dict(llm_options or {}),
    )


class TaskError(BaseModel):
    message: str
    code: str = ErrorKind.TASK_EXECUTION_FAILED.value
    details: Dict[str, JsonValue] = Field(default_factory=dict)


class TaskResult(BaseModel):
    success: bool
    output: Dict[str, JsonValue] = Field(default_factory=dict)
    updated_progress: ProgressState
    error: Optional[TaskError] = None
    retry_count: int = Field(default=0, ge=0)


class TaskExecutor(Protocol):
    def execute(self, request: TaskRequest, task_input: Dict[str, Any], config: TaskConfig) -> TaskResult:
        """Run one task and report its output and updated progress."""


TaskHandler = Callable[[TaskRequest, Dict[str, Any], TaskConfig], Optional[Mapping[str, Any]]]


def _failed_progress(request: TaskRequest) -> ProgressState:
    if request.previous_progress is not None:
        return request.previous_progress
    return create_progress(current_step=FAILED_STEP)


class CallableTaskExecutor:
    """Dispatch tasks to plain callables registered by task name."""

    def __init__(self, handlers: Optional[Mapping[str, TaskHandler]] = None) -> None:
        self._handlers: Dict[str, TaskHandler] = dict(handlers or {})

    def register(self, task_name: str, handler: TaskHandler) -> None:
        if not task_name.strip():
            raise ValueError("task_name must not be blank")
        self._handlers[task_name] = handler

    def _failure(
        self,
        request: TaskRequest,
        config: TaskConfig,
        *,
        message: str,
        code: str,
        details: Optional[Dict[str, JsonValue]] = None,
    ) -> TaskResult:
        return TaskResult(
            success=False,
            output={"step": config.task_name},
            updated_progress=_failed_progress(request),
            error=TaskError(message=message, code=code, details=details or {}),
        )

    def execute(self, request: TaskRequest, task_input: Dict[str, Any], config: TaskConfig) -> TaskResult:
        handler = self._handlers.get(config.task_name)
        if handler is None:
            logger.warning("task_handler_missing", task_name=config.task_name)
            return self._failure(
                request,
                config,
                message=f"No handler registered for task {config.task_name!r}",
                code="UNKNOWN_TASK",
            )

        try:
            output = dict(handler(request, task_input, config) or {})
        except Exception as exc:
            logger.error("task_handler_failed", task_name=config.task_name, error=str(exc))
            return self._failure(
                request,
                config,
                message=str(exc) or type(exc).__name__,
                code=getattr(exc, "code", None) or ErrorKind.TASK_EXECUTION_FAILED.value,
                details={"exception": type(exc).__name__},
            )

        previous = request.previous_progress or create_progress()
        if len(previous.completed_steps) >= previous.total_steps:
            previous = previous.model_copy(update={"total_steps": len(previous.completed_steps) + 1})
        updated = record_step(
            previous,
            config.task_name,
            progress_percent=config.progress_percent,
            metadata={"task_name": config.task_name, "task_type": config.task_type},
        )
        return TaskResult(
            success=True,
            output={"step": config.task_name, **output},
            updated_progress=updated,
        )


class _FailedTaskResult(CoordinationFailure):
    def __init__(self, result: TaskResult) -> None:
        self.result = result
        error = result.error or TaskError(message="Task execution failed")
        super().__init__(
            error.message,
            kind=ErrorKind.TASK_EXECUTION_FAILED,
            code=error.code,
            details=dict(error.details),
        )


class RetryingTaskExecutor:
    """Wrap another executor and retry failed results with a RetryPolicy."""

    def __init__(
        self,
        inner: TaskExecutor,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._inner = inner
        self._policy = policy
        self._sleep = sleep

    def execute(self, request: TaskRequest, task_input: Dict[str, Any], config: TaskConfig) -> TaskResult:
        attempts = 0

        def _attempt() -> TaskResult:
            nonlocal attempts
            attempts += 1
            result = self._inner.execute(request, task_input, config)
            if not result.success:
                raise _FailedTaskResult(result)
            return result

        try:
            result = self._policy.run(_attempt, sleep=self._sleep)
        except _FailedTaskResult as failed:
            return failed.result.model_copy(update={"retry_count": attempts - 1})
        return result.model_copy(update={"retry_count": attempts - 1})
