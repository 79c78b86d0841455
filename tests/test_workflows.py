from __future__ import annotations

import pytest

from agent_coordination.orchestrator.orchestration import plan_rounds
from agent_coordination.orchestrator.workflows import load_workflow, parse_workflow


WORKFLOW_YAML = """
steps:
  - step_id: analyze
    task:
      task_name: analyze_brand
      task_type: analysis
      tool_name: brand_analyzer
      progress_percent: 25
  - step_id: draft
    depends_on: [analyze]
    lock_ttl_seconds: 1200
    task:
      task_name: draft_copy
      task_type: text_generation
      tool_name: writer
      progress_percent: 60
      llm_options:
        temperature: 0.4
  - step_id: image
    depends_on: analyze
    task:
      task_name: render_image
      task_type: image_generation
      tool_name: image_generator
      progress_percent: 90
"""


def test_load_workflow_builds_steps(tmp_path) -> None:
    path = tmp_path / "workflow.yaml"
    path.write_text(WORKFLOW_YAML, encoding="utf-8")

    steps = load_workflow(path)

    assert [step.step_id for step in steps] == ["analyze", "draft", "image"]
    assert steps[1].dependencies == ["analyze"]
    assert steps[1].lock_ttl_seconds == 1200
    assert steps[1].task_config.llm_options == {"temperature": 0.4}
    assert steps[2].dependencies == ["analyze"]
    assert plan_rounds(steps) == [["analyze"], ["draft", "image"]]


def test_missing_workflow_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "absent.yaml")


def test_rejects_non_mapping_document() -> None:
    with pytest.raises(ValueError):
        parse_workflow("- just\n- a list\n")


def test_rejects_invalid_step_definitions() -> None:
    with pytest.raises(ValueError):
        parse_workflow(
            """
steps:
  - step_id: analyze
    task:
      task_name: analyze_brand
      task_type: sorcery
      tool_name: brand_analyzer
      progress_percent: 25
"""
        )


def test_empty_document_has_no_steps() -> None:
    assert parse_workflow("").to_steps() == []
