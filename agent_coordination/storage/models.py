"""SQLAlchemy ORM models for persisted coordination outcomes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from agent_coordination.storage.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class CoordinationEvent(Base):
    """One row per lock-guarded execution, sequence or orchestration outcome."""

    __tablename__ = "coordination_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    error_kind: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_coordination_events_tenant_resource_created_at", "tenant_id", "resource_id", "created_at"),
    )
