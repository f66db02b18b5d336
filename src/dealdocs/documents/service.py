"""Deal document service -- the entry point shared by the API and the CLI.

DealDocumentService fetches a deal and its attachments from Pipedrive and
hands them to DealDocumentSync. A fresh TTLCache and label resolver are
built for every run so CRM field metadata is never shared across runs.
"""

from __future__ import annotations

import structlog

from src.dealdocs.config import Settings
from src.dealdocs.documents.adapter import ContentStore, LedgerStore
from src.dealdocs.documents.retry import RetryPolicy
from src.dealdocs.documents.schemas import LedgerRecord, SyncResult
from src.dealdocs.documents.sync import DealDocumentSync
from src.dealdocs.services.pipedrive.cache import TTLCache
from src.dealdocs.services.pipedrive.client import PipedriveClient
from src.dealdocs.services.pipedrive.labels import PipedriveFolderLabelResolver

logger = structlog.get_logger(__name__)


class DealDocumentService:
    """Runs deal document syncs against the configured collaborators.

    Args:
        pipedrive: CRM client (deal lookup, file listing, downloads).
        store: Remote content store.
        ledger: deal_files ledger.
        settings: Drive, permission and tuning configuration.
    """

    def __init__(
        self,
        pipedrive: PipedriveClient,
        store: ContentStore,
        ledger: LedgerStore,
        settings: Settings,
    ) -> None:
        self._pipedrive = pipedrive
        self._store = store
        self._ledger = ledger
        self._settings = settings
        self._retry_policy = RetryPolicy.from_schedule(
            settings.SYNC_RETRY_DELAYS, attempts=settings.SYNC_RETRY_ATTEMPTS
        )

    def _build_sync(self) -> DealDocumentSync:
        settings = self._settings
        label_resolver = PipedriveFolderLabelResolver(
            self._pipedrive,
            TTLCache(settings.PIPEDRIVE_FIELDS_CACHE_TTL),
            budget_field_key=settings.PIPEDRIVE_BUDGET_FIELD_KEY,
            service_field_key=settings.PIPEDRIVE_SERVICE_FIELD_KEY,
        )
        return DealDocumentSync(
            self._store,
            self._pipedrive,
            self._ledger,
            label_resolver=label_resolver,
            shared_drive_id=(
                settings.GOOGLE_DRIVE_SHARED_DRIVE_ID if settings.drive_configured() else ""
            ),
            enabled=not settings.GOOGLE_DRIVE_DISABLED,
            permission_domain=settings.DRIVE_PERMISSION_DOMAIN,
            permission_role=settings.DRIVE_PERMISSION_ROLE,
            concurrency=settings.SYNC_CONCURRENCY,
            retry_policy=self._retry_policy,
        )

    async def sync_deal(self, deal_id: str) -> SyncResult:
        """Fetch a deal and its files from Pipedrive and sync them.

        Raises:
            SourceSystemError: The deal or its file list could not be fetched.
            SharedDriveUnavailableError: The shared drive failed validation.
        """
        deal = await self._pipedrive.get_deal(deal_id)
        files = await self._pipedrive.list_deal_files(deal_id)
        logger.info("document_service.sync_started", deal_id=deal_id, files=len(files))
        return await self._build_sync().sync_deal_documents(
            deal,
            deal.deal_id,
            files,
            organization_name=deal.organization_name,
        )

    async def list_documents(self, deal_id: str) -> list[LedgerRecord]:
        """Return the ledger rows of a deal."""
        return await self._ledger.find_existing_for_deal(deal_id)

    async def aclose(self) -> None:
        await self._pipedrive.aclose()


def build_document_service(settings: Settings) -> DealDocumentService:
    """Wire the Pipedrive, Drive and ledger implementations from settings."""
    from src.dealdocs.core.database import get_session
    from src.dealdocs.documents.repository import DealFileRepository
    from src.dealdocs.services.drive import DriveAuthManager, GoogleDriveContentStore

    pipedrive = PipedriveClient(
        api_token=settings.PIPEDRIVE_API_TOKEN,
        base_url=settings.PIPEDRIVE_BASE_URL,
        timeout=settings.PIPEDRIVE_TIMEOUT,
    )
    auth = DriveAuthManager(
        service_account_file=settings.get_service_account_path() or "",
        delegated_user_email=settings.GOOGLE_DRIVE_IMPERSONATE_EMAIL,
    )
    return DealDocumentService(
        pipedrive=pipedrive,
        store=GoogleDriveContentStore(auth),
        ledger=DealFileRepository(session_factory=get_session),
        settings=settings,
    )
