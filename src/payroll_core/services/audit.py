"""Audit trail recording."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.models import AuditEvent


async def record_audit(
    session: AsyncSession,
    *,
    tenant_id: UUID,
    entity_type: str,
    entity_id: UUID,
    action: str,
    actor_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """Add an audit event to the caller's unit of work."""
    event = AuditEvent(
        tenant_id=tenant_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        details=details,
    )
    session.add(event)
    return event


async def list_audit_events(
    session: AsyncSession,
    tenant_id: UUID,
    entity_type: str,
    entity_id: UUID,
) -> list[AuditEvent]:
    """Audit events for one entity, oldest first."""
    result = await session.execute(
        select(AuditEvent)
        .where(
            AuditEvent.tenant_id == tenant_id,
            AuditEvent.entity_type == entity_type,
            AuditEvent.entity_id == entity_id,
        )
        .order_by(AuditEvent.created_at)
    )
    return list(result.scalars().all())


def status_change(from_status: str, to_status: str) -> str:
    """Audit action name for a status transition."""
    return f"status_change:{_plain(from_status)}:{_plain(to_status)}"


def _plain(status: str) -> str:
    return getattr(status, "value", status)
