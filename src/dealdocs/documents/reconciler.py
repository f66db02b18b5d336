"""Per-file reconciliation between CRM files, the Drive folder and the ledger.

For one source file and its known ledger row, the first matching state wins:

1. The ledger has a remote file id whose metadata still resolves:
   refresh name and links from Drive -> SKIPPED. A permission grant left
   pending by an earlier run is attempted again here.
2. A file in the deal folder carries matching application properties
   ``{dealId, sourceFileId}``: adopt its id -> RELINKED.
3. Otherwise download from the CRM, upload with application properties,
   grant the domain read permission -> UPLOADED (REUPLOADED when a stale
   ledger row existed). Upload retries first look for a file committed by
   the failed attempt, so a lost response never produces a second copy.

Every branch ends in exactly one ledger upsert keyed by the existing row id
(or the source file id for a new row). Any failure is caught per file and
reported as a warning; sibling files are never affected.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from src.dealdocs.documents.adapter import ContentStore, LedgerStore, SourceFileStore
from src.dealdocs.documents.errors import PermissionGrantError
from src.dealdocs.documents.naming import resolve_file_name
from src.dealdocs.documents.retry import RetryPolicy, with_retry
from src.dealdocs.documents.schemas import (
    FileSyncReport,
    LedgerRecord,
    LedgerUpsert,
    ReconcileOutcome,
    RemoteFileMetadata,
    SourceFile,
    UploadResult,
)

logger = structlog.get_logger(__name__)


def build_app_properties(deal_id: str, source_file_id: str) -> dict[str, str]:
    """Application properties stamped on every uploaded file."""
    return {"dealId": deal_id, "sourceFileId": source_file_id}


def format_file_warning(name: str, source_file_id: str, message: str) -> str:
    return f"could not sync file '{name}' (id {source_file_id}): {message}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentReconciler:
    """Reconciles the source files of one deal against Drive and the ledger.

    The ``existing`` mapping is shared with the orchestrator and keyed by
    source file id. Each reconcile() call reads and writes only its own key.

    Args:
        store: Remote content store.
        source: CRM file source.
        ledger: Ledger store.
        deal_id: Deal being synced.
        deal_folder_id: Resolved deal folder in the content store.
        existing: Ledger rows of the deal keyed by source file id.
        permission_domain: Domain granted standing access to uploads.
        permission_role: Role granted to ``permission_domain``.
        retry_policy: Retry schedule for remote calls.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        store: ContentStore,
        source: SourceFileStore,
        ledger: LedgerStore,
        *,
        deal_id: str,
        deal_folder_id: str,
        existing: dict[str, LedgerRecord],
        permission_domain: str,
        permission_role: str = "reader",
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._source = source
        self._ledger = ledger
        self._deal_id = deal_id
        self._deal_folder_id = deal_folder_id
        self._existing = existing
        self._permission_domain = permission_domain
        self._permission_role = permission_role
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock

    async def reconcile(self, source_file: SourceFile) -> FileSyncReport:
        """Reconcile one source file. Never raises for per-file failures."""
        source_file_id = source_file.source_file_id
        existing = self._existing.get(source_file_id)

        try:
            report = await self._try_existing_pointer(source_file, existing)
            if report is None:
                report = await self._try_relink(source_file, existing)
            if report is None:
                report = await self._upload(source_file, existing)
            return report
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            name = (
                source_file.display_name
                or (existing.file_name if existing else None)
                or f"Documento {source_file_id}"
            )
            current = self._existing.get(source_file_id)
            logger.error(
                "reconciler.file_failed",
                deal_id=self._deal_id,
                source_file_id=source_file_id,
                file_name=name,
                remote_file_id=current.remote_file_id if current else None,
                error=message,
            )
            return FileSyncReport(
                source_file_id=source_file_id,
                file_name=name,
                outcome=ReconcileOutcome.FAILED,
                remote_file_id=current.remote_file_id if current else None,
                warning=format_file_warning(name, source_file_id, message),
            )

    # ── States ──────────────────────────────────────────────────────────────

    async def _get_metadata(self, file_id: str) -> RemoteFileMetadata | None:
        return await with_retry(
            lambda: self._store.get_metadata(file_id),
            self._retry_policy,
            operation_name="get_metadata",
        )

    async def _try_existing_pointer(
        self, source_file: SourceFile, existing: LedgerRecord | None
    ) -> FileSyncReport | None:
        if existing is None or not existing.remote_file_id:
            return None

        metadata = await self._get_metadata(existing.remote_file_id)
        if metadata is None:
            logger.warning(
                "reconciler.stale_remote_pointer",
                deal_id=self._deal_id,
                source_file_id=source_file.source_file_id,
                remote_file_id=existing.remote_file_id,
            )
            return None

        permission_error: Exception | None = None
        if existing.permission_pending:
            permission_error = await self._grant_permission(existing.remote_file_id)
            if permission_error is None:
                logger.info(
                    "reconciler.pending_permission_granted",
                    deal_id=self._deal_id,
                    source_file_id=source_file.source_file_id,
                    remote_file_id=existing.remote_file_id,
                )

        record = await self._refresh_from_metadata(
            source_file,
            existing,
            metadata,
            permission_pending=permission_error is not None,
        )
        if permission_error is not None:
            raise self._permission_failure(record.remote_file_id, permission_error)

        logger.info(
            "reconciler.skip_existing",
            deal_id=self._deal_id,
            source_file_id=source_file.source_file_id,
            file_name=record.file_name,
            remote_file_id=record.remote_file_id,
        )
        return FileSyncReport(
            source_file_id=source_file.source_file_id,
            file_name=record.file_name,
            outcome=ReconcileOutcome.SKIPPED,
            remote_file_id=record.remote_file_id,
        )

    async def _try_relink(
        self, source_file: SourceFile, existing: LedgerRecord | None
    ) -> FileSyncReport | None:
        properties = build_app_properties(self._deal_id, source_file.source_file_id)
        found_id = await with_retry(
            lambda: self._store.find_by_app_properties(self._deal_folder_id, properties),
            self._retry_policy,
            operation_name="find_by_app_properties",
        )
        if not found_id:
            return None

        metadata = await self._get_metadata(found_id)
        if metadata is None:
            return None
        metadata = metadata.model_copy(update={"file_id": found_id})

        record = await self._refresh_from_metadata(
            source_file,
            existing,
            metadata,
            permission_pending=existing.permission_pending if existing else False,
        )
        logger.info(
            "reconciler.relinked",
            deal_id=self._deal_id,
            source_file_id=source_file.source_file_id,
            file_name=record.file_name,
            remote_file_id=found_id,
        )
        return FileSyncReport(
            source_file_id=source_file.source_file_id,
            file_name=record.file_name,
            outcome=ReconcileOutcome.RELINKED,
            remote_file_id=found_id,
        )

    async def _upload(
        self, source_file: SourceFile, existing: LedgerRecord | None
    ) -> FileSyncReport:
        source_file_id = source_file.source_file_id

        download = await with_retry(
            lambda: self._source.download_file(source_file_id),
            self._retry_policy,
            operation_name="download_file",
        )
        mime_type = download.mime_type or source_file.mime_type
        file_name = resolve_file_name(
            download.file_name_from_header,
            source_file.display_name,
            source_file_id,
            mime_type,
        )

        properties = build_app_properties(self._deal_id, source_file_id)
        attempts = 0

        async def _upload_once() -> UploadResult:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                committed = await self._find_committed_upload(properties, file_name)
                if committed is not None:
                    return committed
            return await self._store.upload(
                self._deal_folder_id,
                file_name,
                mime_type,
                download.content,
                properties,
            )

        uploaded = await with_retry(
            _upload_once,
            self._retry_policy,
            operation_name="upload",
        )

        permission_error = await self._grant_permission(uploaded.file_id)

        # The upload is verified at this point, so it always gets a ledger row.
        record = await self._write(
            source_file,
            existing,
            file_name=file_name,
            file_type=mime_type,
            link=uploaded.web_view_link,
            remote_file_id=uploaded.file_id,
            permission_pending=permission_error is not None,
        )

        if permission_error is not None:
            raise self._permission_failure(uploaded.file_id, permission_error)

        outcome = ReconcileOutcome.REUPLOADED if existing else ReconcileOutcome.UPLOADED
        logger.info(
            "reconciler.uploaded",
            deal_id=self._deal_id,
            source_file_id=source_file_id,
            file_name=file_name,
            remote_file_id=uploaded.file_id,
            action=outcome.value,
        )
        return FileSyncReport(
            source_file_id=source_file_id,
            file_name=record.file_name,
            outcome=outcome,
            remote_file_id=uploaded.file_id,
        )

    async def _find_committed_upload(
        self, properties: dict[str, str], file_name: str
    ) -> UploadResult | None:
        """Return the file a failed upload attempt committed anyway, if any."""
        found_id = await self._store.find_by_app_properties(self._deal_folder_id, properties)
        if not found_id:
            return None
        metadata = await self._store.get_metadata(found_id)
        if metadata is None:
            return None
        logger.warning(
            "reconciler.upload_adopted_after_retry",
            deal_id=self._deal_id,
            source_file_id=properties["sourceFileId"],
            remote_file_id=found_id,
        )
        return UploadResult(
            file_id=found_id,
            name=metadata.name or file_name,
            web_view_link=metadata.web_view_link,
        )

    # ── Permissions ─────────────────────────────────────────────────────────

    async def _grant_permission(self, file_id: str) -> Exception | None:
        """Grant the domain permission on ``file_id``. Returns the error on failure."""
        try:
            await with_retry(
                lambda: self._store.grant_domain_permission(
                    file_id, self._permission_domain, self._permission_role
                ),
                self._retry_policy,
                operation_name="grant_domain_permission",
            )
        except Exception as exc:
            return exc
        return None

    def _permission_failure(self, file_id: str | None, error: Exception) -> PermissionGrantError:
        failure = PermissionGrantError(
            f"uploaded as {file_id} but granting {self._permission_role} "
            f"to {self._permission_domain} failed: "
            f"{str(error) or type(error).__name__}"
        )
        failure.__cause__ = error
        return failure

    # ── Ledger ──────────────────────────────────────────────────────────────

    async def _refresh_from_metadata(
        self,
        source_file: SourceFile,
        existing: LedgerRecord | None,
        metadata: RemoteFileMetadata,
        *,
        permission_pending: bool,
    ) -> LedgerRecord:
        file_name = resolve_file_name(
            metadata.name,
            source_file.display_name,
            source_file.source_file_id,
            source_file.mime_type,
        )
        link = metadata.web_view_link
        if not link and existing is not None:
            link = existing.web_view_link or existing.file_url
        return await self._write(
            source_file,
            existing,
            file_name=file_name,
            file_type=source_file.mime_type or (existing.file_type if existing else None),
            link=link,
            remote_file_id=metadata.file_id,
            permission_pending=permission_pending,
        )

    async def _write(
        self,
        source_file: SourceFile,
        existing: LedgerRecord | None,
        *,
        file_name: str,
        file_type: str | None,
        link: str | None,
        remote_file_id: str | None,
        permission_pending: bool,
    ) -> LedgerRecord:
        """Upsert the ledger row of ``source_file`` and publish it to the shared map."""
        now = self._clock()
        record_id = existing.id if existing else source_file.source_file_id
        fields = LedgerUpsert(
            deal_id=self._deal_id,
            source_file_id=source_file.source_file_id,
            file_name=file_name,
            file_type=file_type,
            file_url=link,
            web_view_link=link,
            remote_file_id=remote_file_id or (existing.remote_file_id if existing else None),
            permission_pending=permission_pending,
            added_at=source_file.added_at or (existing.added_at if existing else None),
            uploaded_at=(existing.uploaded_at if existing and existing.uploaded_at else now),
            updated_at=now,
        )
        record = await self._ledger.upsert(record_id, fields)
        self._existing[source_file.source_file_id] = record
        return record
