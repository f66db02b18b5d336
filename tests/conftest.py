"""Shared test doubles and fixtures for deal document sync tests.

Provides in-memory implementations of the four collaborator interfaces:
- FakeContentStore: folder tree, files with application properties, permissions
- FakeSourceStore: CRM downloads keyed by source file id
- FakeLedgerStore: deal_files rows keyed by record id
- FakeLabelResolver: fixed or failing folder label attributes

Failure injection is done by setting attributes on the fakes
(``fail_upload_ids``, ``lost_response_ids``, ``fail_upsert_ids``, ...).
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.dealdocs.documents.adapter import (
    ContentStore,
    FolderLabelResolver,
    LedgerStore,
    SourceFileStore,
)
from src.dealdocs.documents.errors import (
    DriveApiError,
    SharedDriveUnavailableError,
    SourceSystemError,
)
from src.dealdocs.documents.retry import RetryPolicy
from src.dealdocs.documents.schemas import (
    DealRef,
    DownloadedFile,
    FolderLabelAttributes,
    LedgerRecord,
    LedgerUpsert,
    RemoteFileMetadata,
    UploadResult,
)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class FakeContentStore(ContentStore):
    """In-memory Drive folder tree."""

    def __init__(self) -> None:
        self.folders: dict[tuple[str, str], str] = {}
        self.files: dict[str, dict] = {}
        self.permissions: list[tuple[str, str, str]] = []
        self.ensure_folder_calls: list[tuple[str, str | None, str]] = []
        self.upload_calls: list[str] = []
        self.validate_calls = 0
        self.root_error: Exception | None = None
        self.folder_error: Exception | None = None
        self.permission_error: Exception | None = None
        self.fail_upload_ids: set[str] = set()
        self.lost_response_ids: set[str] = set()
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def add_file(
        self,
        folder_id: str,
        name: str,
        app_properties: dict[str, str] | None = None,
        file_id: str | None = None,
    ) -> str:
        file_id = file_id or self._next_id("file")
        self.files[file_id] = {
            "name": name,
            "folder_id": folder_id,
            "app_properties": dict(app_properties or {}),
            "mime_type": None,
            "content": b"",
            "trashed": False,
        }
        return file_id

    async def validate_root(self, root_id: str) -> None:
        self.validate_calls += 1
        if self.root_error is not None:
            raise self.root_error

    async def ensure_folder(self, root_id: str, parent_id: str | None, name: str) -> str:
        self.ensure_folder_calls.append((root_id, parent_id, name))
        if self.folder_error is not None:
            raise self.folder_error
        key = (parent_id or root_id, name)
        if key not in self.folders:
            self.folders[key] = self._next_id("folder")
        return self.folders[key]

    async def find_by_app_properties(
        self, folder_id: str, properties: dict[str, str]
    ) -> str | None:
        for file_id, data in self.files.items():
            if data["trashed"] or data["folder_id"] != folder_id:
                continue
            if all(data["app_properties"].get(k) == v for k, v in properties.items()):
                return file_id
        return None

    async def get_metadata(self, file_id: str) -> RemoteFileMetadata | None:
        data = self.files.get(file_id)
        if data is None or data["trashed"]:
            return None
        return RemoteFileMetadata(
            file_id=file_id,
            name=data["name"],
            web_view_link=f"https://drive.google.com/file/d/{file_id}/view",
        )

    async def upload(
        self,
        folder_id: str,
        name: str,
        mime_type: str | None,
        content: bytes,
        app_properties: dict[str, str],
    ) -> UploadResult:
        self.upload_calls.append(name)
        if app_properties.get("sourceFileId") in self.fail_upload_ids:
            raise DriveApiError("upload rejected", status=500)
        file_id = self.add_file(folder_id, name, app_properties)
        self.files[file_id]["mime_type"] = mime_type
        self.files[file_id]["content"] = content
        source_file_id = app_properties.get("sourceFileId")
        if source_file_id in self.lost_response_ids:
            # The file is stored but the caller never sees the response.
            self.lost_response_ids.discard(source_file_id)
            raise TimeoutError("upload response timed out")
        return UploadResult(
            file_id=file_id,
            name=name,
            web_view_link=f"https://drive.google.com/file/d/{file_id}/view",
        )

    async def grant_domain_permission(self, file_id: str, domain: str, role: str) -> None:
        if self.permission_error is not None:
            raise self.permission_error
        self.permissions.append((file_id, domain, role))


class FakeSourceStore(SourceFileStore):
    """In-memory CRM file downloads."""

    def __init__(self) -> None:
        self.downloads: dict[str, DownloadedFile] = {}
        self.download_calls: list[str] = []
        self.fail_ids: set[str] = set()

    def add(
        self,
        source_file_id: str,
        content: bytes = b"%PDF-1.4",
        mime_type: str | None = "application/pdf",
        header_name: str | None = None,
    ) -> None:
        self.downloads[source_file_id] = DownloadedFile(
            content=content, mime_type=mime_type, file_name_from_header=header_name
        )

    async def download_file(self, source_file_id: str) -> DownloadedFile:
        self.download_calls.append(source_file_id)
        if source_file_id in self.fail_ids:
            raise SourceSystemError(f"download of {source_file_id} failed", status=500)
        if source_file_id not in self.downloads:
            self.add(source_file_id)
        return self.downloads[source_file_id]


class FakeLedgerStore(LedgerStore):
    """In-memory deal_files ledger."""

    def __init__(self) -> None:
        self.rows: dict[str, LedgerRecord] = {}
        self.upsert_calls: list[str] = []
        self.fail_reads = False
        self.fail_upsert_ids: set[str] = set()

    def seed(self, record: LedgerRecord) -> LedgerRecord:
        self.rows[record.id] = record
        return record

    async def find_existing_for_deal(self, deal_id: str) -> list[LedgerRecord]:
        if self.fail_reads:
            raise RuntimeError("connection refused")
        return [r for r in self.rows.values() if r.deal_id == deal_id]

    async def upsert(self, record_id: str, fields: LedgerUpsert) -> LedgerRecord:
        self.upsert_calls.append(record_id)
        if fields.source_file_id in self.fail_upsert_ids:
            raise RuntimeError("ledger write failed")
        previous = self.rows.get(record_id)
        record = LedgerRecord(
            id=record_id,
            created_at=previous.created_at if previous else datetime.now(timezone.utc),
            **fields.model_dump(),
        )
        self.rows[record_id] = record
        return record


class FakeLabelResolver(FolderLabelResolver):
    """Returns fixed attributes, or raises ``error`` when set."""

    def __init__(
        self,
        attributes: FolderLabelAttributes | None = None,
        error: Exception | None = None,
    ) -> None:
        self.attributes = attributes or FolderLabelAttributes()
        self.error = error
        self.calls = 0

    async def resolve_folder_label_attributes(self, deal: DealRef) -> FolderLabelAttributes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.attributes


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def content_store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def source_store() -> FakeSourceStore:
    return FakeSourceStore()


@pytest.fixture
def ledger() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def no_wait_policy() -> RetryPolicy:
    """Three attempts without waiting between them."""
    return RetryPolicy(attempts=3, delays=(0.0,))


@pytest.fixture
def deal() -> DealRef:
    return DealRef(
        deal_id="42",
        title="Curso de Excel avanzado",
        added_at="2024-03-05 10:15:00",
        organization_name="ACME Formación",
    )


@pytest.fixture
def shared_root_error() -> SharedDriveUnavailableError:
    return SharedDriveUnavailableError("shared drive shared-drive-1 is not accessible")


@pytest.fixture
def make_label_resolver():
    """Factory for FakeLabelResolver instances."""
    return FakeLabelResolver
