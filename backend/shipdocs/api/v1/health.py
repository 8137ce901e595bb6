from datetime import datetime, timezone

import aiofiles.os
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs import __version__
from shipdocs.config import settings
from shipdocs.dependencies import get_blob_store, get_db
from shipdocs.schemas.health import HealthResponse
from shipdocs.storage.blob_store import BlobStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> HealthResponse:
    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db_status = "unhealthy"

    # Check blob root
    blob_status = "healthy" if await aiofiles.os.path.isdir(blob_store.root) else "unhealthy"

    overall = "healthy" if db_status == "healthy" and blob_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        blob_store=blob_status,
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        version=__version__,
    )
