import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, Form, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.config import settings
from shipdocs.dependencies import get_db, get_diagnostics_service, get_lifecycle_manager
from shipdocs.diagnostics.service import DiagnosticsService
from shipdocs.lifecycle.manager import DocumentLifecycleManager
from shipdocs.models.document import DocumentType
from shipdocs.schemas.document import (
    BolCheckResponse,
    DeleteResponse,
    DocumentDetail,
    DocumentListResponse,
    DocumentSummary,
    FileStatusResponse,
    GenerateRequest,
    RepairRequest,
    RepairResponse,
)
from shipdocs.schemas.updates import FieldUpdateRequest
from shipdocs.services.document_service import content_disposition, read_upload

router = APIRouter()


@router.get("/check-bol/{bol_number}", response_model=BolCheckResponse)
async def check_bol(
    bol_number: str,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> BolCheckResponse:
    document = await manager.find_bol(db, bol_number)
    return BolCheckResponse(
        exists=document is not None,
        document=DocumentSummary.model_validate(document) if document else None,
    )


@router.get("/{document_id}", response_model=DocumentDetail)
async def get_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    return DocumentDetail.model_validate(await manager.get(db, document_id))


@router.delete("/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DeleteResponse:
    result = await manager.delete(db, document_id)
    return DeleteResponse(**asdict(result))


@router.patch("/{document_id}/fields", response_model=DocumentDetail)
async def update_fields(
    document_id: uuid.UUID,
    body: FieldUpdateRequest,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    document = await manager.update_fields(db, document_id, body.updates)
    return DocumentDetail.model_validate(document)


@router.post("/{document_id}/regenerate", response_model=DocumentDetail)
async def regenerate_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    return DocumentDetail.model_validate(await manager.regenerate(db, document_id))


@router.post("/{document_id}/generate/pl", response_model=DocumentDetail, status_code=201)
async def generate_packing_list(
    document_id: uuid.UUID,
    body: GenerateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    body = body or GenerateRequest()
    document = await manager.generate_packing_list(db, document_id, body.mode, body.po_number)
    return DocumentDetail.model_validate(document)


@router.post("/{document_id}/generate/coo", response_model=DocumentDetail, status_code=201)
async def generate_certificate_of_origin(
    document_id: uuid.UUID,
    body: GenerateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    body = body or GenerateRequest()
    return DocumentDetail.model_validate(await manager.generate_coo(db, document_id, body.mode))


@router.post("/{document_id}/related", response_model=DocumentDetail, status_code=201)
async def upload_related_document(
    document_id: uuid.UUID,
    file: UploadFile,
    document_type: DocumentType = Form(...),
    sub_type: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    content, filename, content_type = await read_upload(file, settings)
    document = await manager.create_related(
        db, document_id, document_type, content, filename, content_type, sub_type=sub_type
    )
    return DocumentDetail.model_validate(document)


@router.get("/{document_id}/related", response_model=DocumentListResponse)
async def list_related_documents(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentListResponse:
    documents = await manager.list_related(db, document_id)
    return DocumentListResponse(
        documents=[DocumentSummary.model_validate(d) for d in documents],
        total=len(documents),
    )


@router.get("/{document_id}/exists", response_model=FileStatusResponse)
async def file_exists(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> FileStatusResponse:
    status = await manager.describe_file(db, document_id)
    return FileStatusResponse(**asdict(status))


@router.post("/{document_id}/repair", response_model=RepairResponse)
async def repair_document(
    document_id: uuid.UUID,
    body: RepairRequest | None = None,
    db: AsyncSession = Depends(get_db),
    diagnostics: DiagnosticsService = Depends(get_diagnostics_service),
) -> RepairResponse:
    body = body or RepairRequest()
    result = await diagnostics.repair(db, document_id, candidate_file_id=body.possible_file_id)
    return RepairResponse(**asdict(result))


async def _stream(
    document_id: uuid.UUID,
    db: AsyncSession,
    manager: DocumentLifecycleManager,
    download: bool,
) -> StreamingResponse:
    document, blob, chunks = await manager.open_file(db, document_id)
    content_type = blob.content_type or document.content_type
    return StreamingResponse(
        chunks,
        media_type=content_type,
        headers={
            "Content-Disposition": content_disposition(document.file_name, content_type, download=download),
            "Content-Length": str(blob.length),
        },
    )


@router.get("/{document_id}/view")
async def view_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> StreamingResponse:
    return await _stream(document_id, db, manager, download=False)


@router.get("/{document_id}/download")
async def download_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> StreamingResponse:
    return await _stream(document_id, db, manager, download=True)
