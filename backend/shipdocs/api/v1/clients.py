import uuid

from fastapi import APIRouter, Depends, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.config import settings
from shipdocs.dependencies import get_client_directory, get_db, get_lifecycle_manager
from shipdocs.lifecycle.manager import DocumentLifecycleManager
from shipdocs.models.document import DocumentType
from shipdocs.schemas.client import ClientCreate, ClientResponse
from shipdocs.schemas.document import DocumentDetail, DocumentListResponse, DocumentSummary
from shipdocs.services.client_directory import ClientDirectory
from shipdocs.services.document_service import read_upload

router = APIRouter()


@router.post("", response_model=ClientResponse, status_code=201)
async def create_client(
    body: ClientCreate,
    db: AsyncSession = Depends(get_db),
    clients: ClientDirectory = Depends(get_client_directory),
) -> ClientResponse:
    client = await clients.create(db, body)
    return ClientResponse.model_validate(client)


@router.get("", response_model=list[ClientResponse])
async def list_clients(
    db: AsyncSession = Depends(get_db),
    clients: ClientDirectory = Depends(get_client_directory),
) -> list[ClientResponse]:
    return [ClientResponse.model_validate(c) for c in await clients.find_all(db)]


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    clients: ClientDirectory = Depends(get_client_directory),
) -> ClientResponse:
    return ClientResponse.model_validate(await clients.get(db, client_id))


@router.get("/{client_id}/documents", response_model=DocumentListResponse)
async def list_client_documents(
    client_id: uuid.UUID,
    type: DocumentType | None = None,
    db: AsyncSession = Depends(get_db),
    clients: ClientDirectory = Depends(get_client_directory),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentListResponse:
    await clients.get(db, client_id)
    documents = await manager.list_by_client(db, client_id, type)
    return DocumentListResponse(
        documents=[DocumentSummary.model_validate(d) for d in documents],
        total=len(documents),
    )


@router.post("/{client_id}/documents", response_model=DocumentDetail, status_code=201)
async def upload_bol(
    client_id: uuid.UUID,
    file: UploadFile,
    db: AsyncSession = Depends(get_db),
    manager: DocumentLifecycleManager = Depends(get_lifecycle_manager),
) -> DocumentDetail:
    """Upload a Bill of Lading; extraction and the client identity check run first."""
    content, filename, content_type = await read_upload(file, settings)
    document = await manager.create_bol(db, client_id, content, filename, content_type)
    return DocumentDetail.model_validate(document)
