from shipdocs.schemas.client import ClientCreate, ClientResponse
from shipdocs.schemas.diagnostics import CleanupStats, DiagnosticsReport, Finding, FixRequest, FixResponse
from shipdocs.schemas.document import DocumentDetail, DocumentListResponse, DocumentSummary
from shipdocs.schemas.extraction import BolExtraction
from shipdocs.schemas.health import HealthResponse
from shipdocs.schemas.updates import FieldUpdate, FieldUpdateRequest

__all__ = [
    "BolExtraction",
    "CleanupStats",
    "ClientCreate",
    "ClientResponse",
    "DiagnosticsReport",
    "DocumentDetail",
    "DocumentListResponse",
    "DocumentSummary",
    "FieldUpdate",
    "FieldUpdateRequest",
    "Finding",
    "FixRequest",
    "FixResponse",
    "HealthResponse",
]
