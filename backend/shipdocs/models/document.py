import enum
import uuid

import sqlalchemy as sa
from sqlalchemy import Enum as SAEnum, JSON, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from shipdocs.models.base import Base, TimestampMixin


class DocumentType(str, enum.Enum):
    BOL = "BOL"
    PL = "PL"
    COO = "COO"
    INVOICE = "INVOICE"
    INVOICE_EXPORT = "INVOICE_EXPORT"
    COA = "COA"
    SED = "SED"
    DATA_SHEET = "DATA_SHEET"
    SAFETY_SHEET = "SAFETY_SHEET"
    INSURANCE = "INSURANCE"


# Types produced by the renderer rather than uploaded
GENERATED_TYPES = frozenset({DocumentType.PL, DocumentType.COO})


class ShipmentDocument(Base, TimestampMixin):
    __tablename__ = "shipment_documents"
    __table_args__ = (
        # bol_number is only populated on BOL rows, so this scopes to type BOL
        sa.UniqueConstraint("client_id", "bol_number", name="uq_shipment_documents_client_bol"),
        sa.Index("ix_shipment_documents_client_type", "client_id", "type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # No foreign keys on client_id / related_bol_id: dangling references are
    # a state the diagnostics service reports on.
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    type: Mapped[DocumentType] = mapped_column(
        SAEnum(
            DocumentType,
            name="shipment_document_type",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )
    sub_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    file_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    content_type: Mapped[str] = mapped_column(
        String(100), nullable=False, default="application/pdf"
    )
    related_bol_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    bol_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    bol_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    items: Mapped[list | None] = mapped_column(JSON, nullable=True)
    packing_list_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    coo_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    @property
    def is_derivative(self) -> bool:
        return self.type != DocumentType.BOL
