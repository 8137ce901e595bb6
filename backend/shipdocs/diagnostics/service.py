"""
DiagnosticsService: consistency scan, cleanup and repair for documents and blobs.

scan() is read-only and reports findings in a fixed order. cleanup() and the
fix actions mutate; every item they touch is handled on its own, so one
failure is logged and counted without stopping the rest.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shipdocs.errors import DocumentError, ValidationError
from shipdocs.lifecycle.manager import DocumentLifecycleManager
from shipdocs.models.client import Client
from shipdocs.models.document import GENERATED_TYPES, DocumentType, ShipmentDocument
from shipdocs.schemas.diagnostics import (
    CleanupStats,
    DiagnosticsReport,
    DiagnosticsSummary,
    Finding,
    FixAction,
    FixResponse,
)
from shipdocs.storage.blob_store import BlobFile, BlobStore

logger = logging.getLogger("shipdocs.diagnostics")


@dataclass
class RepairResult:
    repaired: bool
    message: str
    old_file_id: uuid.UUID | None = None
    new_file_id: uuid.UUID | None = None
    bucket: str | None = None


class DiagnosticsService:
    def __init__(self, blob_store: BlobStore, manager: DocumentLifecycleManager):
        self.blob_store = blob_store
        self.manager = manager

    async def _all_documents(self, db: AsyncSession) -> list[ShipmentDocument]:
        result = await db.execute(select(ShipmentDocument).order_by(ShipmentDocument.created_at))
        return list(result.scalars().all())

    @staticmethod
    def _duplicate_groups(documents: list[ShipmentDocument]) -> dict[str, list[ShipmentDocument]]:
        """BOLs sharing a BOL number (across clients), newest first in each group.

        Ties on created_at are broken by id so the survivor is stable.
        """
        groups: dict[str, list[ShipmentDocument]] = defaultdict(list)
        for doc in documents:
            if doc.type == DocumentType.BOL and doc.bol_number:
                groups[doc.bol_number].append(doc)
        return {
            number: sorted(docs, key=lambda d: (d.created_at, d.id), reverse=True)
            for number, docs in groups.items()
            if len(docs) > 1
        }

    @staticmethod
    def _orphaned_derivatives(documents: list[ShipmentDocument]) -> list[ShipmentDocument]:
        bol_ids = {d.id for d in documents if d.type == DocumentType.BOL}
        return [
            d for d in documents
            if d.type != DocumentType.BOL and d.related_bol_id not in bol_ids
        ]

    async def _orphaned_blobs(self, documents: list[ShipmentDocument]) -> list[BlobFile]:
        referenced = {d.file_id for d in documents}
        return [b for b in await self.blob_store.list_files() if b.file_id not in referenced]

    @staticmethod
    def _shared_blobs(documents: list[ShipmentDocument]) -> dict[uuid.UUID, list[ShipmentDocument]]:
        by_file: dict[uuid.UUID, list[ShipmentDocument]] = defaultdict(list)
        for doc in documents:
            by_file[doc.file_id].append(doc)
        return {file_id: docs for file_id, docs in by_file.items() if len(docs) > 1}

    async def scan(self, db: AsyncSession) -> DiagnosticsReport:
        documents = await self._all_documents(db)
        findings: list[Finding] = []

        # 1. Records whose blob is gone
        for doc in documents:
            if not await self.blob_store.exists(doc.file_id):
                findings.append(Finding(
                    code="dangling-file-reference",
                    severity="error",
                    message=f"{doc.type.value} document {doc.file_name} references a missing file",
                    details={
                        "document_id": str(doc.id),
                        "file_id": str(doc.file_id),
                        "file_name": doc.file_name,
                        "type": doc.type.value,
                        "client_id": str(doc.client_id),
                    },
                    fixable=True,
                    fix_action="regenerate-missing-file",
                ))

        # 2. Blobs nobody references (canonical bucket only)
        for blob in await self._orphaned_blobs(documents):
            findings.append(Finding(
                code="orphaned-blob",
                severity="warning",
                message=f"File {blob.filename} is not referenced by any document",
                details={
                    "file_id": str(blob.file_id),
                    "file_name": blob.filename,
                    "bucket": blob.bucket,
                    "length": blob.length,
                    "upload_date": blob.upload_date.isoformat(),
                },
                fixable=True,
                fix_action="delete-orphaned-file",
            ))

        # Blobs referenced by more than one document
        for file_id, docs in self._shared_blobs(documents).items():
            findings.append(Finding(
                code="shared-blob",
                severity="warning",
                message=f"File {file_id} is referenced by {len(docs)} documents",
                details={
                    "file_id": str(file_id),
                    "document_ids": [str(d.id) for d in docs],
                },
            ))

        # 3. BOLs without a date of issue
        undated = [
            d for d in documents
            if d.type == DocumentType.BOL and not (d.bol_data or {}).get("date_of_issue")
        ]
        if undated:
            findings.append(Finding(
                code="missing-bol-date",
                severity="warning",
                message=f"{len(undated)} BOL document(s) have no date of issue",
                details={
                    "documents": [
                        {"document_id": str(d.id), "bol_number": d.bol_number} for d in undated
                    ]
                },
            ))

        # 4. Records owned by a client that does not exist
        client_ids = set((await db.execute(select(Client.id))).scalars().all())
        dangling_clients = [d for d in documents if d.client_id not in client_ids]
        if dangling_clients:
            findings.append(Finding(
                code="dangling-client-reference",
                severity="error",
                message=f"{len(dangling_clients)} document(s) belong to a client that does not exist",
                details={
                    "documents": [
                        {"document_id": str(d.id), "client_id": str(d.client_id)}
                        for d in dangling_clients
                    ]
                },
            ))

        # 5. BOL numbers on more than one BOL
        for number, docs in self._duplicate_groups(documents).items():
            findings.append(Finding(
                code="duplicate-bol",
                severity="warning",
                message=f"BOL {number} exists {len(docs)} times",
                details={
                    "bol_number": number,
                    "document_ids": [str(d.id) for d in docs],
                    "keep": str(docs[0].id),
                },
                fixable=True,
                fix_action="cleanup-duplicates",
            ))

        # 6. Derivatives whose BOL is gone
        for doc in self._orphaned_derivatives(documents):
            findings.append(Finding(
                code="orphaned-derivative",
                severity="warning",
                message=f"{doc.type.value} document {doc.file_name} has no parent BOL",
                details={
                    "document_id": str(doc.id),
                    "related_bol_id": str(doc.related_bol_id) if doc.related_bol_id else None,
                    "type": doc.type.value,
                },
                fixable=True,
                fix_action="cleanup-orphaned-derivatives",
            ))

        summary = DiagnosticsSummary(
            total=len(findings),
            errors=sum(1 for f in findings if f.severity == "error"),
            warnings=sum(1 for f in findings if f.severity == "warning"),
            info=sum(1 for f in findings if f.severity == "info"),
        )
        logger.info(
            "Diagnostics scan: %d findings (%d errors, %d warnings)",
            summary.total,
            summary.errors,
            summary.warnings,
        )
        return DiagnosticsReport(findings=findings, summary=summary)

    # -- cleanup ---------------------------------------------------------

    async def _delete_document(self, db: AsyncSession, document_id: uuid.UUID, stats: CleanupStats) -> bool:
        stats.processed += 1
        try:
            result = await self.manager.delete(db, document_id)
        except (DocumentError, SQLAlchemyError) as e:
            await db.rollback()
            stats.errors += 1
            logger.error("Cleanup could not delete document %s: %s", document_id, e)
            return False
        stats.deleted += result.documents_deleted
        stats.errors += result.blob_errors
        return True

    async def cleanup_duplicates(self, db: AsyncSession, stats: CleanupStats | None = None) -> CleanupStats:
        """Keep the most recently created BOL per number; cascade-delete the rest."""
        stats = stats or CleanupStats()
        groups = self._duplicate_groups(await self._all_documents(db))
        # Ids only: a failed delete rolls back and expires loaded rows
        plan = [(number, docs[0].id, [d.id for d in docs[1:]]) for number, docs in groups.items()]
        for number, keep_id, extra_ids in plan:
            logger.info("BOL %s: keeping %s, removing %d duplicate(s)", number, keep_id, len(extra_ids))
            for doc_id in extra_ids:
                if await self._delete_document(db, doc_id, stats):
                    stats.duplicates_removed += 1
        return stats

    async def cleanup_orphaned_derivatives(
        self, db: AsyncSession, stats: CleanupStats | None = None
    ) -> CleanupStats:
        stats = stats or CleanupStats()
        orphans = [(d.id, d.type.value) for d in self._orphaned_derivatives(await self._all_documents(db))]
        for doc_id, doc_type in orphans:
            logger.info("Removing orphaned %s document %s", doc_type, doc_id)
            if await self._delete_document(db, doc_id, stats):
                stats.orphaned_derivatives_removed += 1
        return stats

    async def cleanup_orphaned_blobs(self, db: AsyncSession, stats: CleanupStats | None = None) -> CleanupStats:
        stats = stats or CleanupStats()
        for blob in await self._orphaned_blobs(await self._all_documents(db)):
            stats.processed += 1
            try:
                await self.blob_store.delete(blob.file_id)
            except DocumentError as e:
                stats.errors += 1
                logger.error("Cleanup could not delete orphaned blob %s: %s", blob.file_id, e.message)
                continue
            stats.orphaned_blobs_removed += 1
        return stats

    async def cleanup(self, db: AsyncSession) -> CleanupStats:
        stats = CleanupStats()
        await self.cleanup_duplicates(db, stats)
        await self.cleanup_orphaned_derivatives(db, stats)
        # Last, so blobs freed by the steps above are not counted twice
        await self.cleanup_orphaned_blobs(db, stats)
        logger.info("Cleanup finished: %s", stats.model_dump())
        return stats

    # -- repair ----------------------------------------------------------

    async def _is_referenced(self, db: AsyncSession, file_id: uuid.UUID, exclude: uuid.UUID | None = None) -> bool:
        query = select(ShipmentDocument.id).where(ShipmentDocument.file_id == file_id)
        if exclude is not None:
            query = query.where(ShipmentDocument.id != exclude)
        return (await db.execute(query.limit(1))).first() is not None

    async def repair(
        self, db: AsyncSession, document_id: uuid.UUID, candidate_file_id: uuid.UUID | None = None
    ) -> RepairResult:
        """Repoint a document at a stored file matching its name.

        The caller's candidate is tried first, then name matches in each
        bucket in configured order. Name matches already referenced by another
        document are skipped. A file found outside the canonical bucket, or an
        explicit candidate that another document uses, is copied into the
        canonical bucket before the record is updated.
        """
        document = await self.manager.get(db, document_id)
        old_file_id = document.file_id

        if await self.blob_store.exists(old_file_id):
            return RepairResult(
                repaired=False,
                message="File already exists; nothing to repair",
                old_file_id=old_file_id,
                new_file_id=old_file_id,
                bucket=self.blob_store.bucket,
            )

        found: BlobFile | None = None
        if candidate_file_id is not None:
            found = await self.blob_store.locate(candidate_file_id)
            if found is None:
                logger.info("Candidate file %s for document %s not found", candidate_file_id, document.id)
        if found is None:
            for bucket in self.blob_store.buckets:
                for match in await self.blob_store.find_by_name(document.file_name, bucket=bucket):
                    if await self._is_referenced(db, match.file_id, document.id):
                        logger.info(
                            "Skipping file %s for document %s: referenced by another document",
                            match.file_id,
                            document.id,
                        )
                        continue
                    found = match
                    break
                if found is not None:
                    break

        if found is None:
            logger.warning("No file named %s found for document %s", document.file_name, document.id)
            return RepairResult(
                repaired=False,
                message=f"No file named {document.file_name} found in any bucket",
                old_file_id=old_file_id,
            )

        new_file_id = found.file_id
        if found.bucket != self.blob_store.bucket or await self._is_referenced(db, found.file_id, document.id):
            new_file_id = await self.blob_store.copy_to_bucket(found.file_id, source_bucket=found.bucket)
            logger.info(
                "Copied file %s from bucket %s into %s as %s",
                found.file_id,
                found.bucket,
                self.blob_store.bucket,
                new_file_id,
            )

        await self.manager.set_file_reference(db, document, new_file_id, event_type="DOCUMENT_REPAIRED")
        logger.info("Repaired document %s: %s -> %s (found in %s)", document.id, old_file_id, new_file_id, found.bucket)
        return RepairResult(
            repaired=True,
            message=f"Document now references {found.filename} from bucket {found.bucket}",
            old_file_id=old_file_id,
            new_file_id=new_file_id,
            bucket=found.bucket,
        )

    # -- fix actions -----------------------------------------------------

    async def fix(
        self,
        db: AsyncSession,
        action: FixAction,
        document_id: uuid.UUID | None = None,
        file_id: uuid.UUID | None = None,
    ) -> FixResponse:
        if action == "delete-orphaned-file":
            if file_id is None:
                raise ValidationError("file_id is required for delete-orphaned-file")
            if await self._is_referenced(db, file_id):
                raise ValidationError(
                    "File is referenced by a document and cannot be deleted",
                    details={"file_id": str(file_id)},
                )
            await self.blob_store.delete(file_id)
            return FixResponse(action=action, success=True, message="Orphaned file deleted",
                               details={"file_id": str(file_id)})

        if action == "regenerate-missing-file":
            if document_id is None:
                raise ValidationError("document_id is required for regenerate-missing-file")
            document = await self.manager.get(db, document_id)
            if document.type in GENERATED_TYPES:
                document = await self.manager.regenerate(db, document_id)
                return FixResponse(action=action, success=True, message="Document regenerated",
                                   details={"document_id": str(document.id), "file_id": str(document.file_id)})
            # Uploaded documents cannot be re-derived; look for the file instead
            result = await self.repair(db, document_id)
            return FixResponse(action=action, success=result.repaired, message=result.message,
                               details=self._repair_details(result))

        if action == "repair-file-reference":
            if document_id is None:
                raise ValidationError("document_id is required for repair-file-reference")
            result = await self.repair(db, document_id, candidate_file_id=file_id)
            return FixResponse(action=action, success=result.repaired, message=result.message,
                               details=self._repair_details(result))

        if action == "cleanup-duplicates":
            stats = await self.cleanup_duplicates(db)
            return FixResponse(action=action, success=stats.errors == 0,
                               message=f"Removed {stats.duplicates_removed} duplicate BOL(s)",
                               details=stats.model_dump())

        if action == "cleanup-orphaned-derivatives":
            stats = await self.cleanup_orphaned_derivatives(db)
            return FixResponse(action=action, success=stats.errors == 0,
                               message=f"Removed {stats.orphaned_derivatives_removed} orphaned document(s)",
                               details=stats.model_dump())

        raise ValidationError(f"Unknown fix action: {action}")

    @staticmethod
    def _repair_details(result: RepairResult) -> dict:
        return {
            "old_file_id": str(result.old_file_id) if result.old_file_id else None,
            "new_file_id": str(result.new_file_id) if result.new_file_id else None,
            "bucket": result.bucket,
        }
