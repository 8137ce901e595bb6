"""Tests for DiagnosticsService scan, cleanup, repair and fix actions."""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import delete

from shipdocs.audit.service import AuditService
from shipdocs.diagnostics.service import DiagnosticsService
from shipdocs.errors import ValidationError
from shipdocs.models.client import Client
from shipdocs.models.document import ShipmentDocument
from conftest import SAMPLE_PDF, add_client, make_extraction


@pytest.fixture
def diagnostics(blob_store, manager) -> DiagnosticsService:
    return DiagnosticsService(blob_store, manager)


async def scan(database, diagnostics):
    async with database.session() as db:
        return await diagnostics.scan(db)


def codes(report) -> list[str]:
    return [f.code for f in report.findings]


async def create_bol(database, manager, client, **extraction_kwargs):
    extraction = make_extraction(consignee=client.name, consignee_tax_id=client.tax_id, **extraction_kwargs)
    async with database.session() as db:
        return await manager.create_bol(db, client.id, SAMPLE_PDF, "bol.pdf", "application/pdf", extraction)


async def remove_row(database, model, row_id):
    async with database.session() as db:
        await db.execute(delete(model).where(model.id == row_id))


class TestScan:
    @pytest.mark.asyncio
    async def test_clean_state(self, database, diagnostics, bol):
        report = await scan(database, diagnostics)
        assert report.findings == []
        assert report.summary.total == 0

    @pytest.mark.asyncio
    async def test_findings_in_fixed_order(self, database, manager, diagnostics, blob_store, acme):
        first = await create_bol(database, manager, acme, bol_number="BOL-A", date_of_issue=None)
        await create_bol(database, manager, acme, bol_number="BOL-B", date_of_issue=None)
        await blob_store.delete(first.file_id)
        await remove_row(database, Client, acme.id)

        report = await scan(database, diagnostics)

        assert codes(report) == ["dangling-file-reference", "missing-bol-date", "dangling-client-reference"]
        undated = report.findings[1]
        assert len(undated.details["documents"]) == 2
        assert len(report.findings[2].details["documents"]) == 2
        assert report.summary.errors == 2
        assert report.summary.warnings == 1
        assert report.findings[0].fix_action == "regenerate-missing-file"

    @pytest.mark.asyncio
    async def test_orphaned_blob_and_derivative(self, database, manager, diagnostics, blob_store, bol):
        async with database.session() as db:
            pl = await manager.generate_packing_list(db, bol.id)
        await remove_row(database, ShipmentDocument, bol.id)

        report = await scan(database, diagnostics)

        assert codes(report) == ["orphaned-blob", "orphaned-derivative"]
        assert report.findings[0].details["file_id"] == str(bol.file_id)
        assert report.findings[1].details["document_id"] == str(pl.id)

    @pytest.mark.asyncio
    async def test_blob_shared_by_two_documents(self, database, manager, diagnostics, blob_store, bol):
        async with database.session() as db:
            pl = await manager.generate_packing_list(db, bol.id)
            row = await db.get(ShipmentDocument, pl.id)
            row.file_id = bol.file_id

        report = await scan(database, diagnostics)

        assert codes(report) == ["orphaned-blob", "shared-blob"]
        shared = report.findings[1]
        assert shared.details["file_id"] == str(bol.file_id)
        assert set(shared.details["document_ids"]) == {str(bol.id), str(pl.id)}
        assert not shared.fixable

    @pytest.mark.asyncio
    async def test_legacy_bucket_blobs_not_reported_as_orphans(self, database, diagnostics, blob_store, bol):
        await blob_store.put("old.pdf", b"legacy", bucket="fs")
        assert "orphaned-blob" not in codes(await scan(database, diagnostics))


class TestDuplicates:
    @pytest.mark.asyncio
    async def test_one_finding_and_cleanup_keeps_newest(self, database, manager, diagnostics, blob_store, acme):
        beta = await add_client(database, "Beta Industries", "J-22222222-2")
        older = await create_bol(database, manager, acme)
        newer = await create_bol(database, manager, beta)
        async with database.session() as db:
            await manager.generate_packing_list(db, older.id)
            row = await db.get(ShipmentDocument, older.id)
            row.created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)

        report = await scan(database, diagnostics)
        duplicates = [f for f in report.findings if f.code == "duplicate-bol"]
        assert len(duplicates) == 1
        assert duplicates[0].details["keep"] == str(newer.id)
        assert set(duplicates[0].details["document_ids"]) == {str(older.id), str(newer.id)}

        async with database.session() as db:
            stats = await diagnostics.cleanup(db)

        assert stats.duplicates_removed == 1
        assert stats.deleted == 2
        assert stats.errors == 0
        async with database.session() as db:
            assert (await manager.find_bol(db, "MEDU1234567")).id == newer.id
            assert await manager.list_related(db, older.id) == []
        assert [f.file_id for f in await blob_store.list_files()] == [newer.file_id]
        assert "duplicate-bol" not in codes(await scan(database, diagnostics))


    @pytest.mark.asyncio
    async def test_tie_on_created_at_keeps_highest_id(self, database, manager, diagnostics, acme):
        beta = await add_client(database, "Beta Industries", "J-22222222-2")
        first = await create_bol(database, manager, acme)
        second = await create_bol(database, manager, beta)
        stamp = datetime(2026, 3, 1, tzinfo=timezone.utc)
        async with database.session() as db:
            for doc_id in (first.id, second.id):
                (await db.get(ShipmentDocument, doc_id)).created_at = stamp

        expected = max(first.id, second.id)
        for _ in range(2):
            report = await scan(database, diagnostics)
            finding = next(f for f in report.findings if f.code == "duplicate-bol")
            assert finding.details["keep"] == str(expected)

        async with database.session() as db:
            await diagnostics.cleanup_duplicates(db)
        async with database.session() as db:
            assert (await manager.find_bol(db, "MEDU1234567")).id == expected


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_orphans(self, database, manager, diagnostics, blob_store, bol):
        async with database.session() as db:
            await manager.generate_coo(db, bol.id)
        await remove_row(database, ShipmentDocument, bol.id)
        stray = await blob_store.put("stray.pdf", b"stray")

        async with database.session() as db:
            stats = await diagnostics.cleanup(db)

        assert stats.orphaned_derivatives_removed == 1
        # The deleted BOL's blob and the stray upload
        assert stats.orphaned_blobs_removed == 2
        assert await blob_store.list_files() == []
        assert not await blob_store.exists(stray)
        assert (await scan(database, diagnostics)).findings == []


class TestRepair:
    @pytest.mark.asyncio
    async def test_nothing_to_repair(self, database, diagnostics, bol):
        async with database.session() as db:
            result = await diagnostics.repair(db, bol.id)

        assert not result.repaired
        assert result.message == "File already exists; nothing to repair"
        assert result.new_file_id == bol.file_id

    @pytest.mark.asyncio
    async def test_copies_from_legacy_bucket(self, database, manager, diagnostics, blob_store, bol):
        await blob_store.delete(bol.file_id)
        legacy_id = await blob_store.put(bol.file_name, SAMPLE_PDF, content_type="application/pdf", bucket="fs")

        async with database.session() as db:
            result = await diagnostics.repair(db, bol.id)

        assert result.repaired
        assert result.bucket == "fs"
        assert result.old_file_id == bol.file_id
        assert result.new_file_id != legacy_id
        assert await blob_store.get(result.new_file_id) == SAMPLE_PDF
        async with database.session() as db:
            reloaded = await manager.get(db, bol.id)
            events, total = await AuditService.get_events(db, entity_id=bol.id, event_type="DOCUMENT_REPAIRED")
        assert reloaded.file_id == result.new_file_id
        assert total == 1

    @pytest.mark.asyncio
    async def test_relinks_unreferenced_canonical_blob(self, database, diagnostics, blob_store, bol):
        await blob_store.delete(bol.file_id)
        found_id = await blob_store.put(bol.file_name, SAMPLE_PDF, content_type="application/pdf")

        async with database.session() as db:
            result = await diagnostics.repair(db, bol.id)

        assert result.repaired
        assert result.new_file_id == found_id
        assert len(await blob_store.list_files()) == 1

    @pytest.mark.asyncio
    async def test_candidate_referenced_elsewhere_is_copied(self, database, manager, diagnostics, blob_store, bol):
        async with database.session() as db:
            pl = await manager.generate_packing_list(db, bol.id)
        await blob_store.delete(bol.file_id)

        async with database.session() as db:
            result = await diagnostics.repair(db, bol.id, candidate_file_id=pl.file_id)

        assert result.repaired
        assert result.new_file_id not in (pl.file_id, bol.file_id)
        assert await blob_store.exists(pl.file_id)

    @pytest.mark.asyncio
    async def test_name_match_used_by_another_client_is_skipped(self, database, manager, diagnostics, blob_store, acme):
        beta = await add_client(database, "Beta Industries", "J-22222222-2")
        mine = await create_bol(database, manager, acme, bol_number="BOL-ACME")
        theirs = await create_bol(database, manager, beta, bol_number="BOL-BETA")
        assert mine.file_name == theirs.file_name
        await blob_store.delete(mine.file_id)

        async with database.session() as db:
            result = await diagnostics.repair(db, mine.id)

        assert not result.repaired
        assert result.new_file_id is None
        assert [f.file_id for f in await blob_store.list_files()] == [theirs.file_id]
        async with database.session() as db:
            assert (await manager.get(db, mine.id)).file_id == mine.file_id

    @pytest.mark.asyncio
    async def test_name_match_prefers_unreferenced_blob(self, database, manager, diagnostics, blob_store, acme):
        beta = await add_client(database, "Beta Industries", "J-22222222-2")
        mine = await create_bol(database, manager, acme, bol_number="BOL-ACME")
        await blob_store.delete(mine.file_id)
        spare = await blob_store.put(mine.file_name, b"%PDF acme copy", content_type="application/pdf")
        theirs = await create_bol(database, manager, beta, bol_number="BOL-BETA")

        async with database.session() as db:
            result = await diagnostics.repair(db, mine.id)

        assert result.repaired
        assert result.new_file_id == spare
        assert await blob_store.get(theirs.file_id) == SAMPLE_PDF

    @pytest.mark.asyncio
    async def test_no_match_anywhere(self, database, diagnostics, blob_store, bol):
        await blob_store.delete(bol.file_id)

        async with database.session() as db:
            result = await diagnostics.repair(db, bol.id, candidate_file_id=uuid.uuid4())

        assert not result.repaired
        assert result.new_file_id is None


class TestFix:
    @pytest.mark.asyncio
    async def test_delete_orphaned_file(self, database, diagnostics, blob_store, bol):
        stray = await blob_store.put("stray.pdf", b"stray")

        async with database.session() as db:
            response = await diagnostics.fix(db, "delete-orphaned-file", file_id=stray)

        assert response.success
        assert not await blob_store.exists(stray)

    @pytest.mark.asyncio
    async def test_delete_orphaned_file_refuses_referenced(self, database, diagnostics, blob_store, bol):
        async with database.session() as db:
            with pytest.raises(ValidationError):
                await diagnostics.fix(db, "delete-orphaned-file", file_id=bol.file_id)
        assert await blob_store.exists(bol.file_id)

    @pytest.mark.asyncio
    async def test_regenerate_missing_generated_file(self, database, manager, diagnostics, blob_store, bol):
        async with database.session() as db:
            pl = await manager.generate_packing_list(db, bol.id)
        await blob_store.delete(pl.file_id)

        async with database.session() as db:
            response = await diagnostics.fix(db, "regenerate-missing-file", document_id=pl.id)

        assert response.success
        assert await blob_store.exists(uuid.UUID(response.details["file_id"]))
        assert (await scan(database, diagnostics)).findings == []

    @pytest.mark.asyncio
    async def test_regenerate_missing_uploaded_file_falls_back_to_repair(self, database, diagnostics, blob_store, bol):
        await blob_store.delete(bol.file_id)
        await blob_store.put(bol.file_name, SAMPLE_PDF, content_type="application/pdf", bucket="fs")

        async with database.session() as db:
            response = await diagnostics.fix(db, "regenerate-missing-file", document_id=bol.id)

        assert response.success
        assert response.details["bucket"] == "fs"

    @pytest.mark.asyncio
    async def test_requires_target(self, database, diagnostics):
        async with database.session() as db:
            with pytest.raises(ValidationError):
                await diagnostics.fix(db, "repair-file-reference")
            with pytest.raises(ValidationError):
                await diagnostics.fix(db, "delete-orphaned-file")
