"""CLI entrypoint for inspecting locks and dry-running workflows."""

from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List, Optional

from agent_coordination.core.config import get_settings
from agent_coordination.core.errors import CoordinationFailure
from agent_coordination.orchestrator.locks import LockManager
from agent_coordination.orchestrator.orchestration import plan_rounds
from agent_coordination.orchestrator.workflows import load_workflow
from agent_coordination.storage.db import check_database
from agent_coordination.storage.kv import RedisKeyValueStore, build_key_value_store


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True))


def _build_lock_manager() -> LockManager:
    settings = get_settings()
    if settings.kv_backend.strip().lower() == "memory":
        raise ValueError("status and cancel need a shared lock store; set KV_BACKEND=redis")
    return LockManager.from_settings(build_key_value_store(settings), settings)


def lock_status(tenant_id: str, resource_id: str) -> Dict[str, Any]:
    manager = _build_lock_manager()
    metadata = manager.check(tenant_id, resource_id)
    return {
        "lock_key": manager.lock_key(tenant_id, resource_id),
        "locked": metadata is not None,
        "metadata": metadata.model_dump(mode="json") if metadata else None,
    }


def cancel_lock(tenant_id: str, resource_id: str) -> Dict[str, Any]:
    manager = _build_lock_manager()
    return {
        "lock_key": manager.lock_key(tenant_id, resource_id),
        "released": manager.release(tenant_id, resource_id),
    }


def plan_workflow(path: str) -> Dict[str, Any]:
    steps = load_workflow(path)
    rounds = plan_rounds(steps)
    return {"steps": len(steps), "rounds": rounds}


def health() -> Dict[str, Any]:
    settings = get_settings()
    checks: Dict[str, Any] = {}
    store = build_key_value_store(settings)
    if isinstance(store, RedisKeyValueStore):
        ok, error = store.ping()
        checks["redis"] = {"ok": ok, "error": error}
    if settings.events_enabled:
        ok, error = check_database()
        checks["database"] = {"ok": ok, "error": error}
    return {
        "kv_backend": settings.kv_backend,
        "ok": all(check["ok"] for check in checks.values()),
        "checks": checks,
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-coordination", description="Inspect coordination locks and workflows.")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("status", "Show the lock held for a tenant/resource."), ("cancel", "Force-release a lock.")):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("--tenant", required=True, help="Tenant identifier.")
        command.add_argument("--resource", required=True, help="Resource identifier.")

    plan = commands.add_parser("plan", help="Dry-run the round schedule of a workflow file.")
    plan.add_argument("--workflow", required=True, help="Path to a workflow YAML file.")

    commands.add_parser("health", help="Check connectivity of the configured store and event database.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        if args.command == "status":
            payload = lock_status(args.tenant, args.resource)
        elif args.command == "cancel":
            payload = cancel_lock(args.tenant, args.resource)
        elif args.command == "plan":
            payload = plan_workflow(args.workflow)
        else:
            payload = health()
    except CoordinationFailure as exc:
        _print_json({"error": {"message": exc.message, "code": exc.code, "kind": exc.kind.value, "details": exc.details}})
        return 1
    except (ValueError, FileNotFoundError) as exc:
        _print_json({"error": {"message": str(exc), "code": "INVALID_INPUT"}})
        return 2

    _print_json(payload)
    if args.command == "health" and not payload["ok"]:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
