"""Clients, shipment documents and audit events

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DOCUMENT_TYPES = (
    "BOL",
    "PL",
    "COO",
    "INVOICE",
    "INVOICE_EXPORT",
    "COA",
    "SED",
    "DATA_SHEET",
    "SAFETY_SHEET",
    "INSURANCE",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("tax_id", sa.String(100), nullable=False),
        sa.Column("address", sa.Text, nullable=False),
        sa.Column("contact_name", sa.String(200), nullable=True),
        sa.Column("contact_email", sa.String(200), nullable=True),
        sa.Column("contact_phone", sa.String(50), nullable=True),
        sa.Column("required_documents", sa.JSON, nullable=True),
        sa.Column("last_document_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tax_id", name="uq_clients_tax_id"),
    )

    # No foreign keys on client_id / related_bol_id: dangling references are
    # reported by diagnostics rather than blocked.
    op.create_table(
        "shipment_documents",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.Enum(*DOCUMENT_TYPES, name="shipment_document_type"), nullable=False),
        sa.Column("sub_type", sa.String(50), nullable=True),
        sa.Column("file_id", UUID(as_uuid=True), nullable=False),
        sa.Column("file_name", sa.String(512), nullable=False),
        sa.Column("content_type", sa.String(100), nullable=False, server_default="application/pdf"),
        sa.Column("related_bol_id", UUID(as_uuid=True), nullable=True),
        sa.Column("bol_number", sa.String(100), nullable=True),
        sa.Column("bol_data", sa.JSON, nullable=True),
        sa.Column("items", sa.JSON, nullable=True),
        sa.Column("packing_list_data", sa.JSON, nullable=True),
        sa.Column("coo_data", sa.JSON, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "bol_number", name="uq_shipment_documents_client_bol"),
    )
    op.create_index("ix_shipment_documents_client_type", "shipment_documents", ["client_id", "type"])
    op.create_index("ix_shipment_documents_file_id", "shipment_documents", ["file_id"])
    op.create_index("ix_shipment_documents_related_bol_id", "shipment_documents", ["related_bol_id"])
    op.create_index("ix_shipment_documents_bol_number", "shipment_documents", ["bol_number"])

    op.create_table(
        "audit_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=True),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("client_id", UUID(as_uuid=True), nullable=True),
        sa.Column("actor", sa.String(200), nullable=False, server_default="system"),
        sa.Column("previous_state", sa.JSON, nullable=True),
        sa.Column("new_state", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("shipment_documents")
    op.drop_table("clients")
    sa.Enum(name="shipment_document_type").drop(op.get_bind(), checkfirst=True)
