from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from shipdocs.models.document import DocumentType


class DocumentSummary(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    client_id: UUID
    type: DocumentType
    sub_type: str | None = None
    file_id: UUID
    file_name: str
    content_type: str
    related_bol_id: UUID | None = None
    bol_number: str | None = None
    created_at: datetime
    updated_at: datetime


class DocumentDetail(DocumentSummary):
    bol_data: dict | None = None
    items: list | None = None
    packing_list_data: dict | None = None
    coo_data: dict | None = None


class DocumentListResponse(BaseModel):
    documents: list[DocumentSummary]
    total: int


class GenerateRequest(BaseModel):
    mode: Literal["new", "overwrite"] = "new"
    po_number: str | None = None


class DeleteResponse(BaseModel):
    deleted: bool = True
    documents_deleted: int
    blobs_deleted: int
    blob_errors: int


class FileStatusResponse(BaseModel):
    exists: bool
    file_id: UUID
    file_name: str
    reason: str | None = None
    possible_file_id: UUID | None = None
    page_count: int | None = None


class RepairRequest(BaseModel):
    possible_file_id: UUID | None = Field(None, description="Candidate blob id, tried first")


class RepairResponse(BaseModel):
    repaired: bool
    message: str
    old_file_id: UUID | None = None
    new_file_id: UUID | None = None
    bucket: str | None = None


class BolCheckResponse(BaseModel):
    exists: bool
    document: DocumentSummary | None = None
