"""Deal document sync orchestration.

Wires the pieces together for one deal:
1. Short-circuit on an empty file list or a disabled/unconfigured Drive
2. Validate the shared drive once (the only step allowed to raise)
3. Resolve the organization and deal folders (barrier before fan-out)
4. Load the deal's ledger rows keyed by source file id
5. Reconcile every file under the bounded concurrency runner
6. Aggregate counts, warnings and per-file reports

Configuration problems and per-file failures degrade to warnings so a deal
import never fails because its documents could not be mirrored.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

import structlog

from src.dealdocs.core.monitoring import track_document_sync
from src.dealdocs.documents.adapter import (
    ContentStore,
    FolderLabelResolver,
    LedgerStore,
    SourceFileStore,
)
from src.dealdocs.documents.concurrency import run_bounded
from src.dealdocs.documents.errors import SharedDriveUnavailableError
from src.dealdocs.documents.folders import FolderPathResolver
from src.dealdocs.documents.reconciler import DocumentReconciler, format_file_warning
from src.dealdocs.documents.retry import RetryPolicy
from src.dealdocs.documents.schemas import (
    DealRef,
    FileSyncReport,
    LedgerRecord,
    ReconcileOutcome,
    SourceFile,
    SyncResult,
)

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 3

DRIVE_DISABLED_WARNING = (
    "DRIVE_DISABLED: check the service account variables and its permissions "
    "on the shared drive"
)
DRIVE_NOT_CONFIGURED_WARNING = (
    "DRIVE_NOT_CONFIGURED: no shared drive id or service account is configured"
)


def dedupe_source_files(files: Sequence[SourceFile]) -> list[SourceFile]:
    """Drop files without an id and repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[SourceFile] = []
    for source_file in files:
        file_id = (source_file.source_file_id or "").strip()
        if not file_id or file_id in seen:
            continue
        seen.add(file_id)
        unique.append(source_file)
    return unique


class DealDocumentSync:
    """Synchronizes a deal's CRM files into the shared drive and the ledger.

    Args:
        store: Remote content store (Google Drive).
        source: CRM file source (Pipedrive).
        ledger: deal_files ledger.
        label_resolver: Optional deal-attribute enrichment for folder labels.
        shared_drive_id: Root of the folder tree. Empty means not configured.
        enabled: False when Drive sync is administratively disabled.
        permission_domain: Domain granted read access to every upload.
        permission_role: Role granted to ``permission_domain``.
        concurrency: Maximum files reconciled at once.
        retry_policy: Retry schedule for every remote call.
    """

    def __init__(
        self,
        store: ContentStore,
        source: SourceFileStore,
        ledger: LedgerStore,
        *,
        label_resolver: FolderLabelResolver | None = None,
        shared_drive_id: str | None,
        enabled: bool = True,
        permission_domain: str,
        permission_role: str = "reader",
        concurrency: int = DEFAULT_CONCURRENCY,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._ledger = ledger
        self._label_resolver = label_resolver
        self._shared_drive_id = shared_drive_id or ""
        self._enabled = enabled
        self._permission_domain = permission_domain
        self._permission_role = permission_role
        self._concurrency = concurrency
        self._retry_policy = retry_policy or RetryPolicy()

    async def sync_deal_documents(
        self,
        deal: DealRef,
        deal_id: str,
        source_files: Sequence[SourceFile],
        organization_name: str | None = None,
    ) -> SyncResult:
        """Mirror ``source_files`` of a deal into Drive and the ledger.

        Args:
            deal: Deal metadata (creation date, title, custom fields).
            deal_id: Deal id used for the ledger and application properties.
            source_files: Files currently attached to the deal in the CRM.
            organization_name: Organization the deal belongs to.

        Returns:
            SyncResult with imported/skipped counts, warnings and per-file reports.

        Raises:
            SharedDriveUnavailableError: The shared drive could not be validated.
        """
        files = dedupe_source_files(source_files)
        if not files:
            return SyncResult()

        async with track_document_sync() as tracker:
            if not self._enabled:
                tracker["failure_code"] = "DRIVE_DISABLED"
                return self._all_skipped(files, DRIVE_DISABLED_WARNING)
            if not self._shared_drive_id:
                tracker["failure_code"] = "DRIVE_NOT_CONFIGURED"
                return self._all_skipped(files, DRIVE_NOT_CONFIGURED_WARNING)

            try:
                await self._store.validate_root(self._shared_drive_id)
            except SharedDriveUnavailableError as exc:
                logger.error(
                    "document_sync.shared_drive_invalid",
                    deal_id=deal_id,
                    code=exc.code,
                    error=str(exc),
                )
                raise

            folders = FolderPathResolver(
                self._store,
                label_resolver=self._label_resolver,
                retry_policy=self._retry_policy,
            )
            try:
                deal_label = await folders.resolve_folder_label(deal)
                deal_folder = await folders.resolve_deal_folder(
                    self._shared_drive_id,
                    organization_name if organization_name is not None else deal.organization_name,
                    deal_label,
                )
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error("document_sync.folder_failed", deal_id=deal_id, error=message)
                tracker["failure_code"] = "DRIVE_FOLDER_UNAVAILABLE"
                return self._all_skipped(files, f"DRIVE_FOLDER_UNAVAILABLE: {message}")

            try:
                existing_rows = await self._ledger.find_existing_for_deal(deal_id)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error("document_sync.ledger_failed", deal_id=deal_id, error=message)
                tracker["failure_code"] = "LEDGER_UNAVAILABLE"
                return self._all_skipped(files, f"LEDGER_UNAVAILABLE: {message}")

            existing: dict[str, LedgerRecord] = {
                row.source_file_id: row for row in existing_rows if row.source_file_id
            }

            reconciler = DocumentReconciler(
                self._store,
                self._source,
                self._ledger,
                deal_id=deal_id,
                deal_folder_id=deal_folder.deal_folder_id,
                existing=existing,
                permission_domain=self._permission_domain,
                permission_role=self._permission_role,
                retry_policy=self._retry_policy,
            )

            async def _worker(source_file: SourceFile, index: int) -> FileSyncReport:
                return await reconciler.reconcile(source_file)

            reports = await run_bounded(files, self._concurrency, _worker)
            result = self._aggregate(files, reports)

            tracker["outcomes"] = Counter(report.outcome.value for report in result.files)
            logger.info(
                "document_sync.completed",
                deal_id=deal_id,
                deal_folder=deal_folder.deal_folder_name,
                files=len(files),
                imported=result.imported,
                skipped=result.skipped,
                warnings=len(result.warnings),
            )
            return result

    @staticmethod
    def _all_skipped(files: Sequence[SourceFile], warning: str) -> SyncResult:
        logger.warning("document_sync.degraded", files=len(files), warning=warning)
        return SyncResult(imported=0, skipped=len(files), warnings=[warning])

    @staticmethod
    def _aggregate(
        files: Sequence[SourceFile], reports: Sequence[FileSyncReport | None]
    ) -> SyncResult:
        result = SyncResult()
        for source_file, report in zip(files, reports):
            if report is None:
                report = FileSyncReport(
                    source_file_id=source_file.source_file_id,
                    file_name=source_file.display_name,
                    outcome=ReconcileOutcome.FAILED,
                    warning=format_file_warning(
                        source_file.display_name or f"Documento {source_file.source_file_id}",
                        source_file.source_file_id,
                        "unexpected error",
                    ),
                )
            result.files.append(report)
            if report.outcome.imported:
                result.imported += 1
            else:
                result.skipped += 1
            if report.warning:
                result.warnings.append(report.warning)
        return result
