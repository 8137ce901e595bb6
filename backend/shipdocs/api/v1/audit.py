"""Audit log endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.audit.service import AuditService
from shipdocs.dependencies import get_db
from shipdocs.schemas.audit import AuditEventListResponse, AuditEventResponse

router = APIRouter()


@router.get("/events", response_model=AuditEventListResponse)
async def list_events(
    entity_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    event_type: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> AuditEventListResponse:
    events, total = await AuditService.get_events(
        db, entity_id=entity_id, client_id=client_id, event_type=event_type, page=page, per_page=per_page,
    )
    return AuditEventListResponse(
        events=[AuditEventResponse.model_validate(e) for e in events],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/documents/{document_id}", response_model=list[AuditEventResponse])
async def document_history(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[AuditEventResponse]:
    """Lifecycle of one document, oldest event first; still available after deletion."""
    return [AuditEventResponse.model_validate(e) for e in await AuditService.history(db, document_id)]
