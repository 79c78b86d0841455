"""Workflow definition loader (YAML step graphs)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from agent_coordination.orchestrator.orchestration import OrchestrationStep
from agent_coordination.orchestrator.tasks import TaskConfig


class WorkflowStepDefinition(BaseModel):
    step_id: str = Field(min_length=1)
    depends_on: List[str] = Field(default_factory=list)
    lock_ttl_seconds: Optional[int] = Field(default=None, gt=0)
    task: TaskConfig

    @field_validator("step_id", mode="before")
    @classmethod
    def _normalize_step_id(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("depends_on", mode="before")
    @classmethod
    def _normalize_depends_on(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value.strip()]
        return [str(item).strip() for item in value]

    def to_step(self) -> OrchestrationStep:
        return OrchestrationStep(
            step_id=self.step_id,
            task_config=self.task,
            dependencies=list(self.depends_on),
            lock_ttl_seconds=self.lock_ttl_seconds,
        )


class WorkflowDefinition(BaseModel):
    steps: List[WorkflowStepDefinition] = Field(default_factory=list)

    def to_steps(self) -> List[OrchestrationStep]:
        return [step.to_step() for step in self.steps]


def parse_workflow(content: str) -> WorkflowDefinition:
    parsed = yaml.safe_load(content) or {}
    if not isinstance(parsed, dict):
        raise ValueError("Workflow definition must be a YAML object")

    data: Dict[str, Any] = dict(parsed)
    return WorkflowDefinition.model_validate(data)


def load_workflow(path: str | Path) -> List[OrchestrationStep]:
    workflow_path = Path(path)
    if not workflow_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {workflow_path}")
    return parse_workflow(workflow_path.read_text(encoding="utf-8")).to_steps()
