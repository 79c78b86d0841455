"""Locks, coordination and dependency-aware orchestration."""

from agent_coordination.orchestrator.coordination import CoordinationManager, LockOptions, SequenceStep
from agent_coordination.orchestrator.locks import LockHandle, LockManager, LockMetadata, LockResult
from agent_coordination.orchestrator.orchestration import (
    OrchestrationManager,
    OrchestrationStep,
    StepStatus,
    plan_rounds,
    validate_step_graph,
)
from agent_coordination.orchestrator.progress import ProgressState
from agent_coordination.orchestrator.results import CoordinationResult, OrchestrationResult
from agent_coordination.orchestrator.retry import RetryPolicy, exponential_backoff, retry
from agent_coordination.orchestrator.tasks import (
    CallableTaskExecutor,
    RetryingTaskExecutor,
    TaskConfig,
    TaskExecutor,
    TaskRequest,
    TaskResult,
    build_task_config,
)

__all__ = [
    "CallableTaskExecutor",
    "CoordinationManager",
    "CoordinationResult",
    "LockHandle",
    "LockManager",
    "LockMetadata",
    "LockOptions",
    "LockResult",
    "OrchestrationManager",
    "OrchestrationResult",
    "OrchestrationStep",
    "ProgressState",
    "RetryPolicy",
    "RetryingTaskExecutor",
    "SequenceStep",
    "StepStatus",
    "TaskConfig",
    "TaskExecutor",
    "TaskRequest",
    "TaskResult",
    "build_task_config",
    "exponential_backoff",
    "plan_rounds",
    "retry",
    "validate_step_graph",
]
