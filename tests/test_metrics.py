from __future__ import annotations

from agent_coordination.core.metrics import (
    record_lock_acquire,
    record_orchestration,
    record_task_execution,
    render_prometheus_metrics,
    reset_metrics_for_tests,
)
from agent_coordination.orchestrator.coordination import CoordinationManager
from agent_coordination.orchestrator.retry import retry
from agent_coordination.orchestrator.tasks import CallableTaskExecutor, TaskRequest, build_task_config


def _render() -> str:
    return render_prometheus_metrics(app_name="agent_coordination", app_version="0.1.0", env="test")


def test_render_includes_build_info_and_counters() -> None:
    record_lock_acquire(outcome="acquired")
    record_lock_acquire(outcome="acquired")
    record_orchestration(status="deadlock")
    record_task_execution(task_name='say "hi"', status="success", duration_seconds=0.5)

    body = _render()

    assert 'coordination_build_info{app_name="agent_coordination",version="0.1.0",env="test"} 1' in body
    assert 'coordination_lock_acquire_total{outcome="acquired"} 2' in body
    assert 'coordination_orchestrations_total{status="deadlock"} 1' in body
    assert 'coordination_task_executions_total{task="say \\"hi\\"",status="success"} 1' in body
    assert 'coordination_task_duration_seconds_sum{task="say \\"hi\\""} 0.500000' in body


def test_reset_clears_counters() -> None:
    record_lock_acquire(outcome="contended")
    reset_metrics_for_tests()

    assert 'outcome="contended"' not in _render()


def test_coordination_and_retry_feed_metrics(lock_manager) -> None:
    manager = CoordinationManager(
        lock_manager=lock_manager,
        task_executor=CallableTaskExecutor({"draft": lambda request, task_input, config: {}}),
    )
    config = build_task_config("draft", task_type="completion", tool_name="writer", progress_percent=100)
    manager.execute_with_lock(TaskRequest(tenant_id="u1", resource_id="t1"), {}, config)

    attempts: list[int] = []

    def _flaky() -> str:
        attempts.append(1)
        if len(attempts) < 2:
            raise TimeoutError("slow")
        return "ok"

    retry(_flaky, sleep=lambda delay: None)

    body = _render()
    assert 'coordination_lock_acquire_total{outcome="acquired"} 1' in body
    assert 'coordination_lock_release_total{outcome="released"} 1' in body
    assert 'coordination_task_executions_total{task="draft",status="success"} 1' in body
    assert 'coordination_retry_attempts_total{kind="TimeoutError"} 1' in body
