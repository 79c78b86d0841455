"""Persistence hooks for coordination outcomes."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from agent_coordination.storage.models import CoordinationEvent


def _json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


class EventRecorder(Protocol):
    def record(
        self,
        *,
        tenant_id: str,
        resource_id: str,
        event_type: str,
        status: str,
        error_kind: Optional[str],
        payload: Mapping[str, Any],
    ) -> None:
        """Persist one coordination outcome."""


class NullEventRecorder:
    def record(
        self,
        *,
        tenant_id: str,
        resource_id: str,
        event_type: str,
        status: str,
        error_kind: Optional[str],
        payload: Mapping[str, Any],
    ) -> None:
        del tenant_id, resource_id, event_type, status, error_kind, payload


class SqlEventRecorder:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def record(
        self,
        *,
        tenant_id: str,
        resource_id: str,
        event_type: str,
        status: str,
        error_kind: Optional[str],
        payload: Mapping[str, Any],
    ) -> None:
        with self._session_factory() as session:
            session.add(
                CoordinationEvent(
                    tenant_id=tenant_id,
                    resource_id=resource_id,
                    event_type=event_type,
                    status=status,
                    error_kind=error_kind,
                    payload_json=_json(payload),
                )
            )
            session.commit()

    def list_events(self, *, tenant_id: str, resource_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            statement = (
                select(CoordinationEvent)
                .where(
                    CoordinationEvent.tenant_id == tenant_id,
                    CoordinationEvent.resource_id == resource_id,
                )
                .order_by(CoordinationEvent.created_at.asc())
                .limit(max(1, limit))
            )
            return [
                {
                    "event_type": event.event_type,
                    "status": event.status,
                    "error_kind": event.error_kind,
                    "payload": json.loads(event.payload_json),
                }
                for event in session.scalars(statement).all()
            ]
