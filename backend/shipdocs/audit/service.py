"""AuditService: append-only log of document lifecycle mutations.

Static methods so the lifecycle manager and diagnostics service can call
AuditService.log_event() without DI wiring. Events are written in the same
transaction as the change they describe, so a rolled-back change leaves no
event behind.
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.models.audit import AuditEvent


class AuditService:
    @staticmethod
    async def log_event(
        db: AsyncSession,
        *,
        event_type: str,
        entity_id: uuid.UUID | None = None,
        entity_type: str = "shipment_document",
        client_id: uuid.UUID | None = None,
        actor: str = "system",
        previous_state: dict | None = None,
        new_state: dict | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            id=uuid.uuid4(),
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            client_id=client_id,
            actor=actor,
            previous_state=previous_state,
            new_state=new_state,
        )
        db.add(event)
        await db.flush()
        return event

    @staticmethod
    async def get_events(
        db: AsyncSession,
        *,
        entity_id: uuid.UUID | None = None,
        client_id: uuid.UUID | None = None,
        event_type: str | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[AuditEvent], int]:
        """Newest events first, filtered and paginated, plus the unpaginated total."""
        conditions = []
        if entity_id is not None:
            conditions.append(AuditEvent.entity_id == entity_id)
        if client_id is not None:
            conditions.append(AuditEvent.client_id == client_id)
        if event_type:
            conditions.append(AuditEvent.event_type == event_type)

        total = (
            await db.execute(select(func.count(AuditEvent.id)).where(*conditions))
        ).scalar_one()
        result = await db.execute(
            select(AuditEvent)
            .where(*conditions)
            .order_by(AuditEvent.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def history(db: AsyncSession, document_id: uuid.UUID) -> list[AuditEvent]:
        """Every event for one document, oldest first. Survives the document's deletion."""
        result = await db.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_id == document_id)
            .order_by(AuditEvent.created_at)
        )
        return list(result.scalars().all())
