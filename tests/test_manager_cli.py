from __future__ import annotations

import json

import agent_coordination.orchestrator.manager as manager_module
from agent_coordination.orchestrator.locks import LockManager
from agent_coordination.storage.kv import RedisKeyValueStore


def _run(monkeypatch, argv: list[str]) -> tuple[int, dict]:
    printed: list[dict] = []
    monkeypatch.setattr(manager_module, "_print_json", printed.append)
    exit_code = manager_module.main(argv)
    return exit_code, json.loads(json.dumps(printed[-1]))


def test_status_and_cancel_use_configured_store(monkeypatch, store) -> None:
    monkeypatch.setenv("KV_BACKEND", "redis")
    monkeypatch.setattr(manager_module, "build_key_value_store", lambda settings: store)
    held = LockManager(store).acquire("u1", "t1")

    exit_code, payload = _run(monkeypatch, ["status", "--tenant", "u1", "--resource", "t1"])
    assert exit_code == 0
    assert payload["lock_key"] == "run:u1:t1"
    assert payload["locked"] is True
    assert payload["metadata"]["lock_id"] == held.metadata.lock_id

    exit_code, payload = _run(monkeypatch, ["cancel", "--tenant", "u1", "--resource", "t1"])
    assert exit_code == 0
    assert payload == {"lock_key": "run:u1:t1", "released": True}

    _, payload = _run(monkeypatch, ["status", "--tenant", "u1", "--resource", "t1"])
    assert payload["locked"] is False
    assert payload["metadata"] is None


def test_plan_prints_rounds(monkeypatch, tmp_path) -> None:
    path = tmp_path / "workflow.yaml"
    path.write_text(
        """
steps:
  - step_id: A
    task: {task_name: a, task_type: analysis, tool_name: t, progress_percent: 10}
  - step_id: B
    depends_on: [A]
    task: {task_name: b, task_type: analysis, tool_name: t, progress_percent: 50}
  - step_id: C
    depends_on: [A]
    task: {task_name: c, task_type: analysis, tool_name: t, progress_percent: 90}
""",
        encoding="utf-8",
    )

    exit_code, payload = _run(monkeypatch, ["plan", "--workflow", str(path)])

    assert exit_code == 0
    assert payload == {"rounds": [["A"], ["B", "C"]], "steps": 3}


def test_plan_reports_deadlock(monkeypatch, tmp_path) -> None:
    path = tmp_path / "cycle.yaml"
    path.write_text(
        """
steps:
  - step_id: A
    depends_on: [B]
    task: {task_name: a, task_type: analysis, tool_name: t, progress_percent: 10}
  - step_id: B
    depends_on: [A]
    task: {task_name: b, task_type: analysis, tool_name: t, progress_percent: 50}
""",
        encoding="utf-8",
    )

    exit_code, payload = _run(monkeypatch, ["plan", "--workflow", str(path)])

    assert exit_code == 1
    assert payload["error"]["kind"] == "ORCHESTRATION_DEADLOCK"
    assert payload["error"]["details"]["pending_steps"] == ["A", "B"]


def test_status_and_cancel_reject_process_local_memory_store(monkeypatch, store) -> None:
    monkeypatch.setenv("KV_BACKEND", "memory")
    LockManager(store).acquire("u1", "t1")

    for command in ("status", "cancel"):
        exit_code, payload = _run(monkeypatch, [command, "--tenant", "u1", "--resource", "t1"])
        assert exit_code == 2
        assert payload["error"]["code"] == "INVALID_INPUT"
        assert "KV_BACKEND=redis" in payload["error"]["message"]

    assert LockManager(store).check("u1", "t1") is not None


def test_invalid_identifier_is_reported(monkeypatch, store) -> None:
    monkeypatch.setenv("KV_BACKEND", "redis")
    monkeypatch.setattr(manager_module, "build_key_value_store", lambda settings: store)

    exit_code, payload = _run(monkeypatch, ["status", "--tenant", "u 1", "--resource", "t1"])

    assert exit_code == 2
    assert payload["error"]["code"] == "INVALID_INPUT"


def test_health_reports_unreachable_redis(monkeypatch) -> None:
    class _DownRedis:
        def ping(self) -> bool:
            raise ConnectionError("connection refused")

    monkeypatch.setenv("KV_BACKEND", "redis")
    monkeypatch.setenv("EVENTS_ENABLED", "false")
    monkeypatch.setattr(
        manager_module, "build_key_value_store", lambda settings: RedisKeyValueStore(_DownRedis())
    )

    exit_code, payload = _run(monkeypatch, ["health"])

    assert exit_code == 1
    assert payload == {
        "checks": {"redis": {"error": "connection refused", "ok": False}},
        "kv_backend": "redis",
        "ok": False,
    }


def test_health_with_memory_backend_has_nothing_to_check(monkeypatch) -> None:
    monkeypatch.setenv("KV_BACKEND", "memory")
    monkeypatch.setenv("EVENTS_ENABLED", "false")

    exit_code, payload = _run(monkeypatch, ["health"])

    assert exit_code == 0
    assert payload == {"checks": {}, "kv_backend": "memory", "ok": True}
