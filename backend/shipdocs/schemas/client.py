from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=300)
    tax_id: str = Field(..., min_length=1, max_length=100)
    address: str = Field(..., min_length=1)
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    required_documents: list[str] | None = None


class ClientResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    name: str
    tax_id: str
    address: str
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    required_documents: list[str] | None = None
    last_document_date: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ClientMatch(BaseModel):
    id: UUID
    name: str
