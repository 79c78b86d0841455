"""Progress state (CSI) threaded through every coordinated step.

Every helper returns a new ``ProgressState``; instances are frozen.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator


PENDING_STEP = "pending"
COMPLETED_STEP = "completed"
FAILED_STEP = "failed"
DEFAULT_TOTAL_STEPS = 4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProgressState(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed_steps: List[str] = Field(default_factory=list)
    current_progress: int = Field(default=0, ge=0, le=100)
    total_steps: int = Field(default=DEFAULT_TOTAL_STEPS, gt=0)
    current_step: str = PENDING_STEP
    metadata: Dict[str, JsonValue] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_step_count(self) -> "ProgressState":
        if len(self.completed_steps) > self.total_steps:
            raise ValueError("completed_steps cannot exceed total_steps")
        return self

    @property
    def is_complete(self) -> bool:
        return is_complete(self)


def create_progress(
    current_step: str = PENDING_STEP,
    total_steps: int = DEFAULT_TOTAL_STEPS,
    metadata: Optional[Dict[str, JsonValue]] = None,
) -> ProgressState:
    return ProgressState(
        current_step=current_step,
        total_steps=total_steps,
        metadata={"created_at": _now(), **(metadata or {})},
    )


def _percent(completed: int, total: int) -> int:
    return min(100, round(completed / total * 100))


def advance(
    state: ProgressState,
    completed_step: str,
    next_step: str,
    metadata: Optional[Dict[str, JsonValue]] = None,
) -> ProgressState:
    """Append a completed step and recompute progress from the step count."""

    completed_steps = [*state.completed_steps, completed_step]
    if len(completed_steps) > state.total_steps:
        raise ValueError(f"step {completed_step!r} exceeds total_steps={state.total_steps}")
    progress = max(state.current_progress, _percent(len(completed_steps), state.total_steps))
    return state.model_copy(
        update={
            "completed_steps": completed_steps,
            "current_progress": progress,
            "current_step": next_step,
            "metadata": {**state.metadata, **(metadata or {}), "updated_at": _now()},
        }
    )


def record_step(
    state: ProgressState,
    step_name: str,
    *,
    progress_percent: Optional[int] = None,
    metadata: Optional[Dict[str, JsonValue]] = None,
) -> ProgressState:
    """Mark step_name as the step just completed, as task executors report it.

    An explicit ``progress_percent`` (the task's configured milestone) wins over
    the count-based value, but progress never moves backwards.
    """

    updated = advance(state, step_name, step_name, metadata)
    if progress_percent is None:
        return updated
    progress = max(state.current_progress, min(100, max(0, progress_percent)))
    return updated.model_copy(update={"current_progress": progress})


def mark_completed(state: ProgressState) -> ProgressState:
    return state.model_copy(
        update={
            "current_step": COMPLETED_STEP,
            "current_progress": 100,
            "metadata": {**state.metadata, "updated_at": _now()},
        }
    )


def merge_metadata(state: ProgressState, metadata: Dict[str, JsonValue]) -> ProgressState:
    return state.model_copy(update={"metadata": {**state.metadata, **metadata, "updated_at": _now()}})


def is_complete(state: ProgressState) -> bool:
    return (
        state.current_progress >= 100
        or len(state.completed_steps) >= state.total_steps
        or state.current_step == COMPLETED_STEP
    )


def calculate_step_progress(step_number: int, total_steps: int, *, is_completed: bool = False) -> int:
    if total_steps <= 0:
        raise ValueError("total_steps must be positive")
    if is_completed:
        return _percent(step_number, total_steps)
    # A running step reports slightly less than its completion milestone.
    return max(0, min(100, round((step_number - 0.1) / total_steps * 100)))
