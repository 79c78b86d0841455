"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, List, Tuple


_lock = Lock()
_started_at = time.time()

_lock_acquire_total: Dict[str, int] = defaultdict(int)
_lock_release_total: Dict[str, int] = defaultdict(int)
_task_executions_total: Dict[Tuple[str, str], int] = defaultdict(int)
_task_duration_sum: Dict[str, float] = defaultdict(float)
_task_duration_count: Dict[str, int] = defaultdict(int)
_orchestrations_total: Dict[str, int] = defaultdict(int)
_retry_attempts_total: Dict[str, int] = defaultdict(int)
_retry_escalations_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_lock_acquire(*, outcome: str) -> None:
    with _lock:
        _lock_acquire_total[_normalize_label(outcome)] += 1


def record_lock_release(*, outcome: str) -> None:
    with _lock:
        _lock_release_total[_normalize_label(outcome)] += 1


def record_task_execution(*, task_name: str, status: str, duration_seconds: float) -> None:
    task_label = _normalize_label(task_name)
    with _lock:
        _task_executions_total[(task_label, _normalize_label(status))] += 1
        _task_duration_sum[task_label] += max(duration_seconds, 0.0)
        _task_duration_count[task_label] += 1


def record_orchestration(*, status: str) -> None:
    with _lock:
        _orchestrations_total[_normalize_label(status)] += 1


def record_retry_attempt(*, kind: str) -> None:
    with _lock:
        _retry_attempts_total[_normalize_label(kind)] += 1


def record_retry_escalation(*, kind: str) -> None:
    with _lock:
        _retry_escalations_total[_normalize_label(kind)] += 1


def _counter_block(name: str, help_text: str, label: str, values: Dict[str, int]) -> List[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    for key, value in sorted(values.items()):
        lines.append(f'{name}{{{label}="{_escape_label(key)}"}} {value}')
    return lines


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        lock_acquire_total = dict(_lock_acquire_total)
        lock_release_total = dict(_lock_release_total)
        task_total = dict(_task_executions_total)
        duration_sum = dict(_task_duration_sum)
        duration_count = dict(_task_duration_count)
        orchestrations_total = dict(_orchestrations_total)
        retry_attempts_total = dict(_retry_attempts_total)
        retry_escalations_total = dict(_retry_escalations_total)

    lines = [
        "# HELP coordination_build_info Build metadata.",
        "# TYPE coordination_build_info gauge",
        (
            f'coordination_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP coordination_process_uptime_seconds Process uptime in seconds.",
        "# TYPE coordination_process_uptime_seconds gauge",
        f"coordination_process_uptime_seconds {uptime:.6f}",
    ]

    lines.extend(
        _counter_block(
            "coordination_lock_acquire_total",
            "Lock acquisition attempts by outcome.",
            "outcome",
            lock_acquire_total,
        )
    )
    lines.extend(
        _counter_block(
            "coordination_lock_release_total",
            "Lock releases by outcome.",
            "outcome",
            lock_release_total,
        )
    )

    lines.extend(
        [
            "# HELP coordination_task_executions_total Task executions by task and status.",
            "# TYPE coordination_task_executions_total counter",
        ]
    )
    for (task_name, status), value in sorted(task_total.items()):
        lines.append(
            (
                f'coordination_task_executions_total{{task="{_escape_label(task_name)}",'
                f'status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP coordination_task_duration_seconds Task execution duration summary.",
            "# TYPE coordination_task_duration_seconds summary",
        ]
    )
    for task_name, value in sorted(duration_sum.items()):
        lines.append(f'coordination_task_duration_seconds_sum{{task="{_escape_label(task_name)}"}} {value:.6f}')
    for task_name, value in sorted(duration_count.items()):
        lines.append(f'coordination_task_duration_seconds_count{{task="{_escape_label(task_name)}"}} {value}')

    lines.extend(
        _counter_block(
            "coordination_orchestrations_total",
            "Orchestration runs by final status.",
            "status",
            orchestrations_total,
        )
    )
    lines.extend(
        _counter_block(
            "coordination_retry_attempts_total",
            "Retried attempts by error kind.",
            "kind",
            retry_attempts_total,
        )
    )
    lines.extend(
        _counter_block(
            "coordination_retry_escalations_total",
            "Retry escalations by error kind.",
            "kind",
            retry_escalations_total,
        )
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _lock_acquire_total.clear()
        _lock_release_total.clear()
        _task_executions_total.clear()
        _task_duration_sum.clear()
        _task_duration_count.clear()
        _orchestrations_total.clear()
        _retry_attempts_total.clear()
        _retry_escalations_total.clear()
    _started_at = time.time()
