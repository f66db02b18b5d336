"""Collaborator interfaces consumed by the document sync core.

Concrete implementations:
- GoogleDriveContentStore (services/drive) implements ContentStore
- PipedriveClient (services/pipedrive) implements SourceFileStore
- PipedriveFolderLabelResolver (services/pipedrive) implements FolderLabelResolver
- DealFileRepository (documents/repository.py) implements LedgerStore

Tests substitute in-memory doubles for all four.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.dealdocs.documents.schemas import (
    DealRef,
    DownloadedFile,
    FolderLabelAttributes,
    LedgerRecord,
    LedgerUpsert,
    RemoteFileMetadata,
    UploadResult,
)


class ContentStore(ABC):
    """Remote content store holding uploaded copies in a folder tree.

    Methods:
        validate_root: Confirm the shared root exists and is reachable.
        ensure_folder: Find-or-create a folder by (parent, exact name).
        find_by_app_properties: Find a file in a folder by application properties.
        get_metadata: Current metadata of a file, None if gone.
        upload: Store bytes as a new file with application properties.
        grant_domain_permission: Give a whole domain standing access.
    """

    @abstractmethod
    async def validate_root(self, root_id: str) -> None:
        """Raise SharedDriveUnavailableError if the root cannot be used."""
        ...

    @abstractmethod
    async def ensure_folder(self, root_id: str, parent_id: str | None, name: str) -> str:
        """Return the id of folder ``name`` under ``parent_id`` (root when None), creating it if missing."""
        ...

    @abstractmethod
    async def find_by_app_properties(
        self, folder_id: str, properties: dict[str, str]
    ) -> str | None:
        """Return the id of a file in ``folder_id`` whose application properties match."""
        ...

    @abstractmethod
    async def get_metadata(self, file_id: str) -> RemoteFileMetadata | None:
        """Return file metadata, or None when the file no longer resolves."""
        ...

    @abstractmethod
    async def upload(
        self,
        folder_id: str,
        name: str,
        mime_type: str | None,
        content: bytes,
        app_properties: dict[str, str],
    ) -> UploadResult:
        """Upload ``content`` into ``folder_id``."""
        ...

    @abstractmethod
    async def grant_domain_permission(self, file_id: str, domain: str, role: str) -> None:
        """Grant ``role`` on ``file_id`` to everyone in ``domain``."""
        ...


class SourceFileStore(ABC):
    """Source system (CRM) holding the authoritative files of a deal."""

    @abstractmethod
    async def download_file(self, source_file_id: str) -> DownloadedFile:
        """Download a file's bytes and headers."""
        ...


class LedgerStore(ABC):
    """Relational ledger recording the last known sync outcome per file."""

    @abstractmethod
    async def find_existing_for_deal(self, deal_id: str) -> list[LedgerRecord]:
        """Return every ledger row of a deal."""
        ...

    @abstractmethod
    async def upsert(self, record_id: str, fields: LedgerUpsert) -> LedgerRecord:
        """Insert or update the row ``record_id`` and return it."""
        ...


class FolderLabelResolver(ABC):
    """Optional enrichment supplying deal attributes for the folder label."""

    @abstractmethod
    async def resolve_folder_label_attributes(self, deal: DealRef) -> FolderLabelAttributes:
        """Resolve budget number and service label for a deal."""
        ...
