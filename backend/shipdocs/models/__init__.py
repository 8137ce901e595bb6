from shipdocs.models.base import Base, TimestampMixin
from shipdocs.models.audit import AuditEvent
from shipdocs.models.client import Client
from shipdocs.models.document import GENERATED_TYPES, DocumentType, ShipmentDocument

__all__ = [
    "Base",
    "TimestampMixin",
    "AuditEvent",
    "Client",
    "DocumentType",
    "GENERATED_TYPES",
    "ShipmentDocument",
]
