"""Diagnostics endpoints: read-only scan, targeted fixes, bulk cleanup."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.dependencies import get_db, get_diagnostics_service
from shipdocs.diagnostics.service import DiagnosticsService
from shipdocs.schemas.diagnostics import CleanupStats, DiagnosticsReport, FixRequest, FixResponse

router = APIRouter()


@router.get("", response_model=DiagnosticsReport)
async def run_scan(
    db: AsyncSession = Depends(get_db),
    diagnostics: DiagnosticsService = Depends(get_diagnostics_service),
) -> DiagnosticsReport:
    return await diagnostics.scan(db)


@router.post("/fix", response_model=FixResponse)
async def apply_fix(
    request: FixRequest,
    db: AsyncSession = Depends(get_db),
    diagnostics: DiagnosticsService = Depends(get_diagnostics_service),
) -> FixResponse:
    """Apply one fix action from a scan finding."""
    return await diagnostics.fix(
        db, request.action, document_id=request.document_id, file_id=request.file_id
    )


@router.post("/cleanup", response_model=CleanupStats)
async def run_cleanup(
    db: AsyncSession = Depends(get_db),
    diagnostics: DiagnosticsService = Depends(get_diagnostics_service),
) -> CleanupStats:
    """Remove duplicate BOLs, orphaned derivatives and orphaned files."""
    return await diagnostics.cleanup(db)
