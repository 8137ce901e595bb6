"""Pydantic schemas for diagnostics scans, fixes, and cleanup."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

Severity = Literal["error", "warning", "info"]

FixAction = Literal[
    "delete-orphaned-file",
    "regenerate-missing-file",
    "repair-file-reference",
    "cleanup-duplicates",
    "cleanup-orphaned-derivatives",
]


class Finding(BaseModel):
    code: str
    severity: Severity
    message: str
    details: dict | list = Field(default_factory=dict)
    fixable: bool = False
    fix_action: FixAction | None = None


class DiagnosticsSummary(BaseModel):
    total: int = 0
    errors: int = 0
    warnings: int = 0
    info: int = 0


class DiagnosticsReport(BaseModel):
    findings: list[Finding]
    summary: DiagnosticsSummary


class FixRequest(BaseModel):
    action: FixAction
    document_id: UUID | None = None
    file_id: UUID | None = None


class FixResponse(BaseModel):
    action: FixAction
    success: bool
    message: str
    details: dict = Field(default_factory=dict)


class CleanupStats(BaseModel):
    processed: int = 0
    deleted: int = 0
    errors: int = 0
    duplicates_removed: int = 0
    orphaned_derivatives_removed: int = 0
    orphaned_blobs_removed: int = 0
