"""DocumentLifecycleManager: create, regenerate, edit and delete shipment documents.

Blob writes are not part of the database transaction, so every replacement
follows the same order: store the new blob, point the record at it, commit,
and only then delete the old blob. A crash at any step leaves the record
pointing at a complete blob; the worst leftover is an orphaned blob, which
diagnostics can find and clean up.
"""

import asyncio
import copy
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from shipdocs.audit.service import AuditService
from shipdocs.errors import (
    BolNotFound,
    ClientMismatch,
    DocumentError,
    DocumentNotFound,
    DuplicateBolNumber,
    ExtractionIncomplete,
    FileNotFound,
    RenderFailed,
    ValidationError,
)
from shipdocs.models.base import utcnow
from shipdocs.models.client import Client
from shipdocs.models.document import GENERATED_TYPES, DocumentType, ShipmentDocument
from shipdocs.schemas.extraction import BolExtraction
from shipdocs.schemas.updates import FieldUpdate
from shipdocs.services.claude_service import BolExtractor
from shipdocs.services.client_directory import ClientDirectory
from shipdocs.services.document_service import build_bol_data, build_items, split_address
from shipdocs.services.render_service import EXPORTER, DocumentRenderer, page_count
from shipdocs.storage.blob_store import BlobFile, BlobStore

logger = logging.getLogger("shipdocs.lifecycle")

MIN_CONSIGNEE_NAME_LENGTH = 3
DEFAULT_HS_CODE = "2710.19.30"
DEFAULT_ORIGIN = "USA"


@dataclass
class DeleteResult:
    documents_deleted: int = 0
    blobs_deleted: int = 0
    blob_errors: int = 0


@dataclass
class FileStatus:
    exists: bool
    file_id: uuid.UUID
    file_name: str
    reason: str | None = None
    possible_file_id: uuid.UUID | None = None
    page_count: int | None = None


def _snapshot(document: ShipmentDocument) -> dict:
    return {
        "type": document.type.value,
        "file_id": str(document.file_id),
        "file_name": document.file_name,
        "bol_number": document.bol_number,
        "related_bol_id": str(document.related_bol_id) if document.related_bol_id else None,
    }


def _today() -> str:
    return utcnow().strftime("%m/%d/%Y")


def _parse_liters(value) -> float:
    try:
        return float(str(value or "0").replace(",", ""))
    except ValueError:
        return 0.0


class DocumentLifecycleManager:
    def __init__(
        self,
        blob_store: BlobStore,
        extractor: BolExtractor,
        renderer: DocumentRenderer,
        clients: ClientDirectory,
    ):
        self.blob_store = blob_store
        self.extractor = extractor
        self.renderer = renderer
        self.clients = clients

    # -- lookups ---------------------------------------------------------

    async def get(self, db: AsyncSession, document_id: uuid.UUID) -> ShipmentDocument:
        document = await db.get(ShipmentDocument, document_id)
        if document is None:
            raise DocumentNotFound(
                f"Document {document_id} not found", details={"document_id": str(document_id)}
            )
        return document

    async def list_by_client(
        self, db: AsyncSession, client_id: uuid.UUID, document_type: DocumentType | None = None
    ) -> list[ShipmentDocument]:
        query = select(ShipmentDocument).where(ShipmentDocument.client_id == client_id)
        if document_type is not None:
            query = query.where(ShipmentDocument.type == document_type)
        result = await db.execute(query.order_by(ShipmentDocument.created_at.desc()))
        return list(result.scalars().all())

    async def list_related(
        self, db: AsyncSession, bol_id: uuid.UUID, document_type: DocumentType | None = None
    ) -> list[ShipmentDocument]:
        """Derivatives of a BOL, newest first."""
        query = select(ShipmentDocument).where(ShipmentDocument.related_bol_id == bol_id)
        if document_type is not None:
            query = query.where(ShipmentDocument.type == document_type)
        result = await db.execute(query.order_by(ShipmentDocument.created_at.desc()))
        return list(result.scalars().all())

    async def find_bol(self, db: AsyncSession, bol_number: str) -> ShipmentDocument | None:
        """Most recent BOL with this number, across all clients."""
        result = await db.execute(
            select(ShipmentDocument)
            .where(
                ShipmentDocument.type == DocumentType.BOL,
                ShipmentDocument.bol_number == bol_number.strip(),
            )
            .order_by(ShipmentDocument.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_client_bol(
        self, db: AsyncSession, client_id: uuid.UUID, bol_number: str
    ) -> ShipmentDocument | None:
        result = await db.execute(
            select(ShipmentDocument).where(
                ShipmentDocument.client_id == client_id,
                ShipmentDocument.type == DocumentType.BOL,
                ShipmentDocument.bol_number == bol_number,
            )
        )
        return result.scalar_one_or_none()

    async def _get_bol(self, db: AsyncSession, bol_id: uuid.UUID | None) -> ShipmentDocument:
        bol = await db.get(ShipmentDocument, bol_id) if bol_id else None
        if bol is None or bol.type != DocumentType.BOL:
            raise BolNotFound(
                f"BOL {bol_id} not found", details={"bol_id": str(bol_id) if bol_id else None}
            )
        return bol

    # -- blob helpers ----------------------------------------------------

    async def _discard_blob(self, file_id: uuid.UUID) -> None:
        """Remove a blob that was stored for a write that did not commit."""
        try:
            await self.blob_store.delete(file_id)
        except DocumentError as e:
            logger.error("Could not discard uncommitted blob %s: %s", file_id, e.message)

    async def _delete_old_blob(self, file_id: uuid.UUID, document_id: uuid.UUID) -> bool:
        try:
            await self.blob_store.delete(file_id)
            return True
        except FileNotFound:
            logger.warning("Old blob %s of document %s was already gone", file_id, document_id)
        except DocumentError as e:
            logger.error(
                "Failed to delete old blob %s of document %s: %s", file_id, document_id, e.message
            )
        return False

    async def _render(self, document_type: DocumentType, context: dict, existing_blob: bytes | None) -> bytes:
        # fpdf and pdfplumber are synchronous; run them in a worker thread
        return await asyncio.to_thread(self.renderer.render, document_type, context, existing_blob)

    async def _read_current_blob(self, document: ShipmentDocument) -> bytes | None:
        try:
            return await self.blob_store.get(document.file_id)
        except FileNotFound:
            logger.warning(
                "Current blob %s of document %s is missing; rendering without it",
                document.file_id,
                document.id,
            )
            return None

    async def _replace_blob(
        self,
        db: AsyncSession,
        document: ShipmentDocument,
        data: bytes,
        *,
        event_type: str,
        file_name: str | None = None,
        content_type: str | None = None,
        changes: dict | None = None,
    ) -> ShipmentDocument:
        """Upload new, swap the reference, commit, then delete the old blob."""
        previous = _snapshot(document)
        old_file_id = document.file_id
        file_name = file_name or document.file_name
        content_type = content_type or document.content_type

        new_file_id = await self.blob_store.put(
            file_name,
            data,
            content_type=content_type,
            metadata={"client_id": str(document.client_id), "document_id": str(document.id)},
        )

        document.file_id = new_file_id
        document.file_name = file_name
        document.content_type = content_type
        for attr, value in (changes or {}).items():
            setattr(document, attr, value)
        # Always counts as a mutation, even when only the blob changed
        document.updated_at = utcnow()

        try:
            await AuditService.log_event(
                db,
                event_type=event_type,
                entity_id=document.id,
                client_id=document.client_id,
                previous_state=previous,
                new_state=_snapshot(document),
            )
            await db.commit()
        except SQLAlchemyError:
            logger.error(
                "Commit failed while swapping document %s to blob %s; discarding new blob",
                document.id,
                new_file_id,
            )
            await db.rollback()
            await self._discard_blob(new_file_id)
            raise

        await self._delete_old_blob(old_file_id, document.id)
        logger.info(
            "Document %s now points at blob %s (was %s)", document.id, new_file_id, old_file_id
        )
        return document

    async def _insert_with_blob(
        self,
        db: AsyncSession,
        document: ShipmentDocument,
        data: bytes,
    ) -> ShipmentDocument:
        """Store a blob and insert the record that references it."""
        document.file_id = await self.blob_store.put(
            document.file_name,
            data,
            content_type=document.content_type,
            metadata={"client_id": str(document.client_id), "document_id": str(document.id)},
        )
        db.add(document)
        try:
            await db.flush()
            await AuditService.log_event(
                db,
                event_type="DOCUMENT_CREATED",
                entity_id=document.id,
                client_id=document.client_id,
                new_state=_snapshot(document),
            )
            await self.clients.touch_last_document_date(
                db, document.client_id, document.created_at or utcnow()
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            await self._discard_blob(document.file_id)
            logger.warning(
                "BOL %s already exists for client %s", document.bol_number, document.client_id
            )
            raise DuplicateBolNumber(
                f"BOL {document.bol_number} already exists for this client",
                details={"bol_number": document.bol_number, "client_id": str(document.client_id)},
            ) from e
        except SQLAlchemyError:
            await db.rollback()
            await self._discard_blob(document.file_id)
            raise

        logger.info(
            "Created %s document %s (blob %s) for client %s",
            document.type.value,
            document.id,
            document.file_id,
            document.client_id,
        )
        return document

    # -- creation --------------------------------------------------------

    @staticmethod
    def _require_extracted_fields(extraction: BolExtraction) -> None:
        missing = []
        if not (extraction.shipment_details.bol_number or "").strip():
            missing.append("shipment_details.bol_number")
        consignee = extraction.parties.consignee
        if consignee is None or len((consignee.name or "").strip()) < MIN_CONSIGNEE_NAME_LENGTH:
            missing.append("parties.consignee.name")
        shipper = extraction.parties.shipper
        if shipper is None or not (shipper.name or "").strip():
            missing.append("parties.shipper.name")
        if missing:
            raise ExtractionIncomplete(
                "Could not extract the required fields from this document; upload a clearer copy",
                details={"missing_fields": missing},
            )

    async def _check_client_identity(
        self, db: AsyncSession, client: Client, extraction: BolExtraction
    ) -> None:
        consignee = extraction.parties.consignee
        candidates = self.clients.match(consignee.name, consignee.tax_id, await self.clients.find_all(db))
        if any(c.client.id == client.id for c in candidates):
            return

        suspected = candidates[0].client if candidates else None
        logger.warning(
            "Client mismatch: consignee %r (tax id %r) does not match selected client %s (%s); suspected %s",
            consignee.name,
            consignee.tax_id,
            client.id,
            client.name,
            suspected.id if suspected else None,
        )
        raise ClientMismatch(
            f"The consignee on this BOL ({consignee.name}) does not match the selected client ({client.name})",
            details={
                "detected": {"name": consignee.name, "tax_id": consignee.tax_id},
                "selected": {"id": str(client.id), "name": client.name, "tax_id": client.tax_id},
                "suspected_client": {"id": str(suspected.id), "name": suspected.name} if suspected else None,
                "potential_matches": [
                    {"id": str(c.client.id), "name": c.client.name, "reason": c.reason}
                    for c in candidates
                ],
            },
        )

    async def create_bol(
        self,
        db: AsyncSession,
        client_id: uuid.UUID,
        data: bytes,
        filename: str,
        content_type: str,
        extraction: BolExtraction | None = None,
    ) -> ShipmentDocument:
        """Accept a raw BOL upload for a client.

        Extraction and the client identity check run before anything is
        written. An existing BOL with the same number for the same client is
        updated in place, keeping its id and created_at.
        """
        client = await self.clients.get(db, client_id)
        if extraction is None:
            extraction = await self.extractor.extract(data, content_type)

        self._require_extracted_fields(extraction)
        await self._check_client_identity(db, client, extraction)

        bol_number = extraction.shipment_details.bol_number.strip()
        bol_data = build_bol_data(extraction)
        bol_data["bol_number"] = bol_number
        items = build_items(extraction)

        existing = await self._find_client_bol(db, client_id, bol_number)
        if existing is not None:
            logger.info("BOL %s already on file as %s; replacing in place", bol_number, existing.id)
            document = await self._replace_blob(
                db,
                existing,
                data,
                event_type="DOCUMENT_REPLACED",
                file_name=filename,
                content_type=content_type,
                changes={"bol_data": bol_data, "items": items},
            )
            await self.clients.touch_last_document_date(db, client_id, utcnow())
            await db.commit()
            return document

        document = ShipmentDocument(
            id=uuid.uuid4(),
            client_id=client_id,
            type=DocumentType.BOL,
            file_name=filename,
            content_type=content_type,
            bol_number=bol_number,
            bol_data=bol_data,
            items=items,
        )
        return await self._insert_with_blob(db, document, data)

    async def create_related(
        self,
        db: AsyncSession,
        bol_id: uuid.UUID,
        document_type: DocumentType,
        data: bytes,
        filename: str,
        content_type: str,
        sub_type: str | None = None,
    ) -> ShipmentDocument:
        if document_type == DocumentType.BOL:
            raise ValidationError("A BOL cannot be attached to another BOL", details={"bol_id": str(bol_id)})
        bol = await self._get_bol(db, bol_id)

        document = ShipmentDocument(
            id=uuid.uuid4(),
            client_id=bol.client_id,
            type=document_type,
            sub_type=sub_type,
            file_name=filename,
            content_type=content_type,
            related_bol_id=bol.id,
        )
        return await self._insert_with_blob(db, document, data)

    # -- generated documents ---------------------------------------------

    @staticmethod
    def _render_context(bol: ShipmentDocument, client: Client | None, **sections) -> dict:
        return {
            "bol_data": bol.bol_data or {},
            "items": bol.items or [],
            "client": {
                "name": client.name if client else "",
                "tax_id": client.tax_id if client else "",
                "address": client.address if client else "",
            },
            **sections,
        }

    async def generate_packing_list(
        self,
        db: AsyncSession,
        bol_id: uuid.UUID,
        mode: str = "new",
        po_number: str | None = None,
    ) -> ShipmentDocument:
        """Generate a Packing List for a BOL.

        ``new`` creates ``{bol}-PL-{n}``; ``overwrite`` re-renders the newest
        existing PL in place (or creates the first one).
        """
        bol = await self._get_bol(db, bol_id)
        client = await self.clients.get(db, bol.client_id)
        bol_number = (bol.bol_data or {}).get("bol_number") or bol.bol_number
        existing = await self.list_related(db, bol.id, DocumentType.PL)

        target = existing[0] if mode == "overwrite" and existing else None
        if target is not None:
            previous = target.packing_list_data or {}
            number = previous.get("document_number") or f"{bol_number}-PL-1"
            if po_number is None:
                po_number = previous.get("po_number", "")
        else:
            number = f"{bol_number}-PL-{len(existing) + 1}"

        packing_list_data = {
            "document_number": number,
            "date": (bol.bol_data or {}).get("date_of_issue") or _today(),
            "po_number": po_number or "",
            "address": {"company": client.name, **split_address(client.address)},
        }
        context = self._render_context(bol, client, packing_list_data=packing_list_data)

        if target is not None:
            pdf = await self._render(DocumentType.PL, context, await self._read_current_blob(target))
            return await self._replace_blob(
                db,
                target,
                pdf,
                event_type="DOCUMENT_REGENERATED",
                content_type="application/pdf",
                changes={"packing_list_data": packing_list_data},
            )

        pdf = await self._render(DocumentType.PL, context, None)
        document = ShipmentDocument(
            id=uuid.uuid4(),
            client_id=bol.client_id,
            type=DocumentType.PL,
            file_name=f"{number}.pdf",
            content_type="application/pdf",
            related_bol_id=bol.id,
            packing_list_data=packing_list_data,
        )
        return await self._insert_with_blob(db, document, pdf)

    async def generate_coo(self, db: AsyncSession, bol_id: uuid.UUID, mode: str = "new") -> ShipmentDocument:
        bol = await self._get_bol(db, bol_id)
        client = await self.clients.get(db, bol.client_id)
        bol_number = (bol.bol_data or {}).get("bol_number") or bol.bol_number
        existing = await self.list_related(db, bol.id, DocumentType.COO)

        target = existing[0] if mode == "overwrite" and existing else None
        if target is not None:
            number = (target.coo_data or {}).get("certificate_number") or f"{bol_number}-COO"
        elif existing:
            number = f"{bol_number}-COO-{len(existing) + 1}"
        else:
            number = f"{bol_number}-COO"

        coo_data = {
            "certificate_number": number,
            "date_of_issue": (bol.bol_data or {}).get("date_of_issue") or _today(),
            "exporter_info": dict(EXPORTER),
            "importer_info": {"name": client.name, "address": client.address or "", "tax_id": client.tax_id or ""},
            "product_info": [
                {
                    "description": item.get("product") or item.get("description", ""),
                    "hs_code": DEFAULT_HS_CODE,
                    "origin": DEFAULT_ORIGIN,
                    "quantity": {"value": _parse_liters((item.get("quantity") or {}).get("litros")), "unit": "L"},
                }
                for item in bol.items or []
            ],
        }
        context = self._render_context(bol, client, coo_data=coo_data)

        if target is not None:
            pdf = await self._render(DocumentType.COO, context, await self._read_current_blob(target))
            return await self._replace_blob(
                db,
                target,
                pdf,
                event_type="DOCUMENT_REGENERATED",
                content_type="application/pdf",
                changes={"coo_data": coo_data},
            )

        pdf = await self._render(DocumentType.COO, context, None)
        document = ShipmentDocument(
            id=uuid.uuid4(),
            client_id=bol.client_id,
            type=DocumentType.COO,
            file_name=f"{number}.pdf",
            content_type="application/pdf",
            related_bol_id=bol.id,
            coo_data=coo_data,
        )
        return await self._insert_with_blob(db, document, pdf)

    async def regenerate(self, db: AsyncSession, document_id: uuid.UUID) -> ShipmentDocument:
        """Re-render a generated document from its current record data.

        The new PDF is rendered and stored before the record is touched; id,
        created_at and file_name never change.
        """
        document = await self.get(db, document_id)
        if document.type not in GENERATED_TYPES:
            raise ValidationError(
                f"Documents of type {document.type.value} cannot be regenerated",
                details={"document_id": str(document.id), "type": document.type.value},
            )
        bol = await self._get_bol(db, document.related_bol_id)
        client = await self.clients.find_by_id(db, document.client_id)

        if document.type == DocumentType.PL:
            context = self._render_context(bol, client, packing_list_data=document.packing_list_data or {})
        else:
            context = self._render_context(bol, client, coo_data=document.coo_data or {})

        pdf = await self._render(document.type, context, await self._read_current_blob(document))
        return await self._replace_blob(
            db, document, pdf, event_type="DOCUMENT_REGENERATED", content_type="application/pdf"
        )

    # -- edits -----------------------------------------------------------

    async def update_fields(
        self, db: AsyncSession, document_id: uuid.UUID, updates: list[FieldUpdate]
    ) -> ShipmentDocument:
        document = await self.get(db, document_id)

        for update in updates:
            if document.type != update.applies_to:
                raise ValidationError(
                    f"{update.op} applies to {update.applies_to.value} documents, not {document.type.value}",
                    details={"document_id": str(document.id), "op": update.op},
                )

        previous = {}
        changed = {}
        for update in updates:
            section = copy.deepcopy(getattr(document, update.section) or {})
            previous.setdefault(update.path, section.get(update.key))
            section[update.key] = update.value
            setattr(document, update.section, section)
            flag_modified(document, update.section)
            changed[update.path] = update.value

        document.updated_at = utcnow()
        await AuditService.log_event(
            db,
            event_type="DOCUMENT_UPDATED",
            entity_id=document.id,
            client_id=document.client_id,
            previous_state=previous,
            new_state=changed,
        )
        await db.flush()
        logger.info("Updated %s on document %s", ", ".join(changed), document.id)
        return document

    async def update_field(
        self, db: AsyncSession, document_id: uuid.UUID, update: FieldUpdate
    ) -> ShipmentDocument:
        return await self.update_fields(db, document_id, [update])

    # -- deletion --------------------------------------------------------

    async def delete(self, db: AsyncSession, document_id: uuid.UUID) -> DeleteResult:
        """Delete a document; for a BOL, its derivatives go with it.

        Records are removed in one transaction. Blobs are deleted afterwards,
        one at a time, and a failure on one does not stop the others.
        """
        document = await self.get(db, document_id)
        client_id = document.client_id

        doomed = []
        if document.type == DocumentType.BOL:
            doomed.extend(await self.list_related(db, document.id))
        doomed.append(document)

        blobs = [(d.id, d.file_id) for d in doomed]
        for d in doomed:
            await db.delete(d)
        await db.flush()

        await self.clients.recompute_last_document_date(db, client_id)
        await AuditService.log_event(
            db,
            event_type="DOCUMENT_DELETED",
            entity_id=document.id,
            client_id=client_id,
            previous_state=_snapshot(document),
            new_state={"cascaded": [str(d.id) for d in doomed if d.id != document.id]},
        )
        await db.commit()

        result = DeleteResult(documents_deleted=len(doomed))
        for doc_id, file_id in blobs:
            if await self._delete_old_blob(file_id, doc_id):
                result.blobs_deleted += 1
            else:
                result.blob_errors += 1

        logger.info(
            "Deleted document %s: %d records, %d blobs, %d blob errors",
            document_id,
            result.documents_deleted,
            result.blobs_deleted,
            result.blob_errors,
        )
        return result

    # -- files -----------------------------------------------------------

    async def describe_file(self, db: AsyncSession, document_id: uuid.UUID) -> FileStatus:
        document = await self.get(db, document_id)
        status = FileStatus(exists=False, file_id=document.file_id, file_name=document.file_name)

        blob = await self.blob_store.stat(document.file_id)
        if blob is None:
            status.reason = "File not found in blob store"
            for bucket in self.blob_store.buckets:
                matches = await self.blob_store.find_by_name(document.file_name, bucket=bucket)
                if matches:
                    status.possible_file_id = matches[0].file_id
                    break
            logger.warning(
                "Document %s references missing blob %s (possible match: %s)",
                document.id,
                document.file_id,
                status.possible_file_id,
            )
            return status

        status.exists = True
        if blob.content_type == "application/pdf":
            data = await self.blob_store.get(document.file_id)
            try:
                status.page_count = await asyncio.to_thread(page_count, data)
            except RenderFailed as e:
                logger.warning("Blob %s of document %s is not a readable PDF: %s", blob.file_id, document.id, e)
        return status

    async def open_file(
        self, db: AsyncSession, document_id: uuid.UUID
    ) -> tuple[ShipmentDocument, BlobFile, AsyncIterator[bytes]]:
        """Resolve a document's blob for streaming. Raises FileNotFound if it is gone."""
        document = await self.get(db, document_id)
        blob = await self.blob_store.stat(document.file_id)
        if blob is None:
            logger.error("Document %s references missing blob %s", document.id, document.file_id)
            raise FileNotFound(
                f"File for document {document.id} not found",
                details={"document_id": str(document.id), "file_id": str(document.file_id)},
            )
        return document, blob, self.blob_store.iter_chunks(document.file_id)

    async def set_file_reference(
        self, db: AsyncSession, document: ShipmentDocument, file_id: uuid.UUID, *, event_type: str
    ) -> ShipmentDocument:
        """Point a record at an already-stored blob."""
        previous = _snapshot(document)
        document.file_id = file_id
        document.updated_at = utcnow()
        await AuditService.log_event(
            db,
            event_type=event_type,
            entity_id=document.id,
            client_id=document.client_id,
            previous_state=previous,
            new_state=_snapshot(document),
        )
        await db.commit()
        return document

