"""Tests for the deal document sync orchestrator.

Uses the in-memory doubles from conftest.py: no Drive, Pipedrive or
database access.
"""

from __future__ import annotations

import pytest

from src.dealdocs.documents.errors import SharedDriveUnavailableError
from src.dealdocs.documents.naming import DEFAULT_ORG_FOLDER
from src.dealdocs.documents.schemas import (
    DealRef,
    FolderLabelAttributes,
    ReconcileOutcome,
    SourceFile,
    SyncResult,
)
from src.dealdocs.documents.sync import (
    DRIVE_DISABLED_WARNING,
    DRIVE_NOT_CONFIGURED_WARNING,
    DealDocumentSync,
    dedupe_source_files,
)


@pytest.fixture
def make_sync(content_store, source_store, ledger, no_wait_policy):
    def _make(**overrides) -> DealDocumentSync:
        kwargs = {
            "shared_drive_id": "shared-drive-1",
            "permission_domain": "gepgroup.es",
            "retry_policy": no_wait_policy,
        }
        kwargs.update(overrides)
        return DealDocumentSync(content_store, source_store, ledger, **kwargs)

    return _make


def _files(*ids: str) -> list[SourceFile]:
    return [SourceFile(source_file_id=i, display_name=f"doc-{i}.pdf") for i in ids]


class TestDedupe:
    def test_drops_blank_and_repeated_ids(self):
        files = [
            SourceFile(source_file_id="1", display_name="first"),
            SourceFile(source_file_id=" "),
            SourceFile(source_file_id="1", display_name="second"),
            SourceFile(source_file_id="2"),
        ]
        result = dedupe_source_files(files)
        assert [f.source_file_id for f in result] == ["1", "2"]
        assert result[0].display_name == "first"


class TestSyncDealDocuments:
    async def test_invoice_example(self, make_sync, source_store, ledger, deal):
        source_store.add("9", mime_type="application/pdf")

        result = await make_sync().sync_deal_documents(
            deal, "42", [SourceFile(source_file_id="9", display_name="invoice.PDF")]
        )

        assert result.imported == 1
        assert result.skipped == 0
        assert result.warnings == []
        row = ledger.rows["9"]
        assert row.source_file_id == "9"
        assert row.file_name == "invoice.PDF"
        assert row.file_type == "application/pdf"

    async def test_second_run_imports_nothing(self, make_sync, content_store, ledger, deal):
        files = _files("1", "2", "3")

        first = await make_sync().sync_deal_documents(deal, "42", files)
        second = await make_sync().sync_deal_documents(deal, "42", files)

        assert first.imported == 3
        assert second.imported == 0
        assert second.skipped == 3
        assert second.warnings == []
        assert {r.outcome for r in second.files} == {ReconcileOutcome.SKIPPED}
        assert len(ledger.rows) == 3
        assert len(content_store.upload_calls) == 3

    async def test_rerun_after_ledger_write_failure_relinks(
        self, make_sync, content_store, ledger, deal
    ):
        ledger.fail_upsert_ids.add("2")

        first = await make_sync().sync_deal_documents(deal, "42", _files("1", "2"))

        assert first.imported == 1
        outcomes = {r.source_file_id: r.outcome for r in first.files}
        assert outcomes == {"1": ReconcileOutcome.UPLOADED, "2": ReconcileOutcome.FAILED}
        assert "ledger write failed" in first.warnings[0]
        assert set(ledger.rows) == {"1"}

        ledger.fail_upsert_ids.clear()
        second = await make_sync().sync_deal_documents(deal, "42", _files("1", "2"))

        outcomes = {r.source_file_id: r.outcome for r in second.files}
        assert outcomes == {"1": ReconcileOutcome.SKIPPED, "2": ReconcileOutcome.RELINKED}
        assert second.imported == 0
        assert second.warnings == []
        assert len(content_store.upload_calls) == 2
        uploaded_2 = [
            file_id
            for file_id, data in content_store.files.items()
            if data["app_properties"].get("sourceFileId") == "2"
        ]
        assert ledger.rows["2"].remote_file_id == uploaded_2[0]
        assert len(uploaded_2) == 1

    async def test_lost_upload_response_leaves_one_remote_copy(
        self, make_sync, content_store, ledger, deal
    ):
        content_store.lost_response_ids.add("3")

        result = await make_sync().sync_deal_documents(deal, "42", _files("3"))

        assert result.imported == 1
        assert result.warnings == []
        copies = [
            file_id
            for file_id, data in content_store.files.items()
            if data["app_properties"].get("sourceFileId") == "3"
        ]
        assert copies == [ledger.rows["3"].remote_file_id]

    async def test_one_failing_file_does_not_affect_siblings(
        self, make_sync, content_store, ledger, deal
    ):
        content_store.fail_upload_ids.add("2")

        result = await make_sync().sync_deal_documents(deal, "42", _files("1", "2", "3"))

        assert result.imported == 2
        assert result.skipped == 1
        assert len(result.warnings) == 1
        assert "(id 2)" in result.warnings[0]
        assert "doc-2.pdf" in result.warnings[0]
        assert set(ledger.rows) == {"1", "3"}

    async def test_files_land_in_org_and_deal_folders(self, make_sync, content_store, deal):
        result = await make_sync().sync_deal_documents(deal, "42", _files("1"))

        org_id = content_store.folders[("shared-drive-1", "ACME Formación")]
        deal_label = "05-03-2024 - Presupuesto 42 - Curso de Excel avanzado"
        deal_folder_id = content_store.folders[(org_id, deal_label)]
        assert content_store.files[result.files[0].remote_file_id]["folder_id"] == deal_folder_id

    async def test_missing_organization_uses_default_folder(self, make_sync, content_store):
        deal = DealRef(deal_id="42", added_at="2024-03-05 10:15:00")

        await make_sync().sync_deal_documents(deal, "42", _files("1"), organization_name=None)

        assert ("shared-drive-1", DEFAULT_ORG_FOLDER) in content_store.folders

    async def test_duplicate_ids_are_processed_once(self, make_sync, content_store, deal):
        result = await make_sync().sync_deal_documents(deal, "42", _files("1", "1", "2"))

        assert result.imported + result.skipped == 2
        assert len(content_store.upload_calls) == 2

    async def test_empty_file_list(self, make_sync, content_store, deal):
        result = await make_sync().sync_deal_documents(deal, "42", [])

        assert result == SyncResult()
        assert content_store.validate_calls == 0

    async def test_disabled_drive_skips_everything(self, make_sync, content_store, deal):
        result = await make_sync(enabled=False).sync_deal_documents(deal, "42", _files("1", "2"))

        assert result.imported == 0
        assert result.skipped == 2
        assert result.warnings == [DRIVE_DISABLED_WARNING]
        assert content_store.validate_calls == 0
        assert content_store.upload_calls == []

    async def test_unconfigured_drive_skips_everything(self, make_sync, content_store, deal):
        result = await make_sync(shared_drive_id="").sync_deal_documents(deal, "42", _files("1"))

        assert result.skipped == 1
        assert result.warnings == [DRIVE_NOT_CONFIGURED_WARNING]
        assert content_store.validate_calls == 0

    async def test_invalid_shared_drive_raises(
        self, make_sync, content_store, ledger, deal, shared_root_error
    ):
        content_store.root_error = shared_root_error

        with pytest.raises(SharedDriveUnavailableError):
            await make_sync().sync_deal_documents(deal, "42", _files("1"))

        assert content_store.ensure_folder_calls == []
        assert ledger.rows == {}

    async def test_folder_failure_degrades_to_warning(self, make_sync, content_store, deal):
        content_store.folder_error = RuntimeError("rate limit exceeded")

        result = await make_sync().sync_deal_documents(deal, "42", _files("1", "2"))

        assert result.imported == 0
        assert result.skipped == 2
        assert result.warnings == ["DRIVE_FOLDER_UNAVAILABLE: rate limit exceeded"]
        assert content_store.upload_calls == []

    async def test_ledger_read_failure_degrades_to_warning(
        self, make_sync, content_store, ledger, deal
    ):
        ledger.fail_reads = True

        result = await make_sync().sync_deal_documents(deal, "42", _files("1"))

        assert result.skipped == 1
        assert result.warnings == ["LEDGER_UNAVAILABLE: connection refused"]
        assert content_store.upload_calls == []

    async def test_enrichment_labels_the_deal_folder(
        self, make_sync, content_store, deal, make_label_resolver
    ):
        labels = make_label_resolver(
            FolderLabelAttributes(budget_number="P-18", service_label="PRL")
        )

        await make_sync(label_resolver=labels).sync_deal_documents(deal, "42", _files("1"))

        org_id = content_store.folders[("shared-drive-1", "ACME Formación")]
        assert (org_id, "05-03-2024 - P-18 - PRL") in content_store.folders

    async def test_concurrency_one_processes_all(self, make_sync, ledger, deal):
        result = await make_sync(concurrency=1).sync_deal_documents(
            deal, "42", _files("1", "2", "3", "4")
        )

        assert result.imported == 4
        assert [r.source_file_id for r in result.files] == ["1", "2", "3", "4"]
