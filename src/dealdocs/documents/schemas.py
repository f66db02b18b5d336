"""Pydantic schemas for deal document synchronization.

Defines the typed payloads exchanged with every collaborator:
- Inputs from the CRM: SourceFile, DealRef, DownloadedFile, FolderLabelAttributes
- Remote store payloads: RemoteFileMetadata, UploadResult, DealFolder
- Ledger payloads: LedgerRecord, LedgerUpsert
- Results: ReconcileOutcome, FileSyncReport, SyncResult

CRM values are coerced once here (integer ids to strings, Pipedrive
"YYYY-MM-DD HH:MM:SS" UTC timestamps to aware datetimes) so the sync core
never inspects raw API dictionaries.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def parse_source_timestamp(value: Any) -> datetime | None:
    """Parse a CRM timestamp into an aware UTC datetime.

    Accepts datetimes, ISO strings and Pipedrive's space-separated format.
    Values without an explicit offset are treated as UTC. Returns None for
    blank or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    candidate = trimmed if "T" in trimmed else trimmed.replace(" ", "T", 1)
    if candidate.endswith(("z", "Z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ── CRM Inputs ──────────────────────────────────────────────────────────────


class SourceFile(BaseModel):
    """A file attached to a deal in the CRM. Read-only input to a sync."""

    source_file_id: str
    display_name: str | None = None
    mime_type: str | None = None
    added_at: datetime | None = None

    @field_validator("source_file_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("added_at", mode="before")
    @classmethod
    def _coerce_added_at(cls, value: Any) -> datetime | None:
        return parse_source_timestamp(value)


class DealRef(BaseModel):
    """The deal a sync runs for.

    ``custom_fields`` holds the CRM's custom attribute values keyed by field
    key; only the folder-label enrichment collaborator reads it.
    """

    deal_id: str
    title: str | None = None
    added_at: datetime | None = None
    organization_name: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("deal_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("added_at", mode="before")
    @classmethod
    def _coerce_added_at(cls, value: Any) -> datetime | None:
        return parse_source_timestamp(value)


class DownloadedFile(BaseModel):
    """Bytes and headers returned by a CRM file download."""

    content: bytes
    mime_type: str | None = None
    file_name_from_header: str | None = None


class FolderLabelAttributes(BaseModel):
    """Deal attributes used to label the deal folder."""

    budget_number: str | None = None
    service_label: str | None = None


# ── Remote Store Payloads ───────────────────────────────────────────────────


class RemoteFileMetadata(BaseModel):
    """Current metadata of a file in the remote content store."""

    file_id: str
    name: str | None = None
    web_view_link: str | None = None


class UploadResult(BaseModel):
    """Result of uploading a file to the remote content store."""

    file_id: str
    name: str | None = None
    web_view_link: str | None = None


class DealFolder(BaseModel):
    """Resolved destination folders for one deal."""

    root_id: str
    organization_folder_id: str
    deal_folder_id: str
    deal_folder_name: str


# ── Ledger Payloads ─────────────────────────────────────────────────────────


class LedgerUpsert(BaseModel):
    """Fields written by a ledger upsert."""

    deal_id: str
    source_file_id: str
    file_name: str
    file_type: str | None = None
    file_url: str | None = None
    web_view_link: str | None = None
    remote_file_id: str | None = None
    permission_pending: bool = False
    added_at: datetime | None = None
    uploaded_at: datetime | None = None
    updated_at: datetime | None = None


class LedgerRecord(BaseModel):
    """One row of the deal_files ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    deal_id: str
    source_file_id: str
    file_name: str | None = None
    file_type: str | None = None
    file_url: str | None = None
    web_view_link: str | None = None
    remote_file_id: str | None = None
    permission_pending: bool = False
    added_at: datetime | None = None
    uploaded_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class ReconcileOutcome(str, Enum):
    """What the reconciler did for one source file."""

    SKIPPED = "skipped"
    RELINKED = "relinked"
    UPLOADED = "uploaded"
    REUPLOADED = "reuploaded"
    FAILED = "failed"

    @property
    def imported(self) -> bool:
        return self in (ReconcileOutcome.UPLOADED, ReconcileOutcome.REUPLOADED)


class FileSyncReport(BaseModel):
    """Per-file result of a sync run."""

    source_file_id: str
    file_name: str | None = None
    outcome: ReconcileOutcome
    remote_file_id: str | None = None
    warning: str | None = None


class SyncResult(BaseModel):
    """Summary of a deal document sync."""

    imported: int = 0
    skipped: int = 0
    warnings: list[str] = Field(default_factory=list)
    files: list[FileSyncReport] = Field(default_factory=list)
