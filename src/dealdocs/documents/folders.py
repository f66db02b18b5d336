"""Deal folder resolution: organization folder -> deal folder under a shared root.

Folders are create-once, reuse-thereafter. Resolution is "find by
(parent, exact name), create if missing" and is retried like any other
remote call. Two concurrent resolutions may both miss the lookup; the Drive
adapter converges both callers on the earliest-created folder, and the
practical call pattern is a single writer per deal.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.dealdocs.documents.adapter import ContentStore, FolderLabelResolver
from src.dealdocs.documents.naming import normalize_name, resolve_organization_folder_name
from src.dealdocs.documents.retry import RetryPolicy, with_retry
from src.dealdocs.documents.schemas import DealFolder, DealRef, FolderLabelAttributes

logger = structlog.get_logger(__name__)

SUBFOLDER_SEPARATOR = " - "
DEFAULT_SERVICE_LABEL = "Formación"


def date_label(added_at: datetime) -> str:
    """Format a timestamp as DD-MM-YYYY in UTC."""
    if added_at.tzinfo is not None:
        added_at = added_at.astimezone(timezone.utc)
    return added_at.strftime("%d-%m-%Y")


def build_deal_folder_label(
    deal_id: str,
    added_at: datetime,
    attributes: FolderLabelAttributes | None = None,
    title: str | None = None,
) -> str:
    """Build the deterministic deal folder name.

    Format: ``"<DD-MM-YYYY> - <budget number> - <service label>"``. The
    budget falls back to ``"Presupuesto <deal_id>"``; the service label
    falls back to the deal title, then ``"Formación"``.
    """
    attributes = attributes or FolderLabelAttributes()
    budget = normalize_name(attributes.budget_number, f"Presupuesto {deal_id}")
    service = normalize_name(
        attributes.service_label or title,
        DEFAULT_SERVICE_LABEL,
    )
    raw_label = SUBFOLDER_SEPARATOR.join([date_label(added_at), budget, service])
    return normalize_name(raw_label, raw_label)


class FolderPathResolver:
    """Resolves and caches the two-level folder path of a deal.

    One instance is meant to live for a single sync run: its cache maps
    ``(root, parent, name)`` to folder ids and is never shared across runs.

    Args:
        store: Remote content store.
        label_resolver: Optional enrichment for budget/service labels.
        retry_policy: Retry schedule for folder calls.
    """

    def __init__(
        self,
        store: ContentStore,
        label_resolver: FolderLabelResolver | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._label_resolver = label_resolver
        self._retry_policy = retry_policy or RetryPolicy()
        self._cache: dict[tuple[str, str | None, str], str] = {}

    async def resolve_folder_label(self, deal: DealRef) -> str:
        """Build the deal folder label, never failing on enrichment errors."""
        attributes = FolderLabelAttributes()
        if self._label_resolver is not None:
            try:
                attributes = await self._label_resolver.resolve_folder_label_attributes(deal)
            except Exception as exc:
                logger.warning(
                    "folders.label_enrichment_failed",
                    deal_id=deal.deal_id,
                    error=str(exc) or type(exc).__name__,
                )
                attributes = FolderLabelAttributes()

        added_at = deal.added_at or datetime.now(timezone.utc)
        return build_deal_folder_label(deal.deal_id, added_at, attributes, deal.title)

    async def ensure_folder(self, root_id: str, parent_id: str | None, name: str) -> str:
        """Find-or-create a folder, memoized for the lifetime of this resolver."""
        key = (root_id, parent_id, name)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        folder_id = await with_retry(
            lambda: self._store.ensure_folder(root_id, parent_id, name),
            self._retry_policy,
            operation_name="ensure_folder",
        )
        self._cache[key] = folder_id
        return folder_id

    async def resolve_deal_folder(
        self, root_id: str, organization_name: str | None, deal_label: str
    ) -> DealFolder:
        """Resolve organization folder then deal folder under ``root_id``.

        Args:
            root_id: Shared drive id.
            organization_name: Raw organization name (normalized here).
            deal_label: Deal folder label from resolve_folder_label().

        Returns:
            DealFolder with both folder ids.
        """
        org_folder_name = resolve_organization_folder_name(organization_name)
        org_folder_id = await self.ensure_folder(root_id, None, org_folder_name)
        deal_folder_id = await self.ensure_folder(root_id, org_folder_id, deal_label)

        logger.info(
            "folders.deal_folder_resolved",
            organization_folder=org_folder_name,
            deal_folder=deal_label,
            deal_folder_id=deal_folder_id,
        )
        return DealFolder(
            root_id=root_id,
            organization_folder_id=org_folder_id,
            deal_folder_id=deal_folder_id,
            deal_folder_name=deal_label,
        )
