"""Folder label enrichment from Pipedrive custom fields.

Reads the budget number and service type of a deal from two configured
custom fields. Enum and set fields store option ids on the deal, so the
ids are translated to option labels using the deal field definitions,
which are cached per run in a TTLCache.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.dealdocs.documents.adapter import FolderLabelResolver
from src.dealdocs.documents.schemas import DealRef, FolderLabelAttributes
from src.dealdocs.services.pipedrive.cache import TTLCache
from src.dealdocs.services.pipedrive.client import DealFieldDefinition, PipedriveClient

logger = structlog.get_logger(__name__)

DEAL_FIELDS_CACHE_KEY = "deal_fields"


def _scalar(value: Any) -> Any:
    """Unwrap Pipedrive's object-shaped values (``{"value": ..., "name": ...}``)."""
    if isinstance(value, dict):
        for key in ("value", "name", "label", "id"):
            if value.get(key) not in (None, ""):
                return value[key]
        return None
    return value


def translate_field_value(field: DealFieldDefinition | None, value: Any) -> str | None:
    """Render a custom field value as text, mapping option ids to labels.

    Set fields hold comma-separated option ids; their labels are joined
    with ", ". Unknown ids are kept as-is.
    """
    value = _scalar(value)
    if value is None:
        return None
    if isinstance(value, list):
        parts = [str(_scalar(v)) for v in value if _scalar(v) is not None]
    else:
        parts = [p.strip() for p in str(value).split(",")] if field and field.options else [str(value)]
    parts = [p for p in parts if p.strip()]
    if not parts:
        return None

    if field and field.options:
        labels = {option.id: option.label for option in field.options}
        parts = [labels.get(p, p) for p in parts]
    text = ", ".join(parts).strip()
    return text or None


class PipedriveFolderLabelResolver(FolderLabelResolver):
    """Resolves budget number and service label from deal custom fields.

    Args:
        client: Pipedrive client used to fetch deal field definitions.
        cache: Per-run cache for the field definitions.
        budget_field_key: Custom field key holding the budget number.
        service_field_key: Custom field key holding the service type.
    """

    def __init__(
        self,
        client: PipedriveClient,
        cache: TTLCache,
        budget_field_key: str | None = None,
        service_field_key: str | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._budget_field_key = budget_field_key or None
        self._service_field_key = service_field_key or None

    async def _fields_by_key(self) -> dict[str, DealFieldDefinition]:
        fields = await self._cache.get_or_load(DEAL_FIELDS_CACHE_KEY, self._client.get_deal_fields)
        return {field.key: field for field in fields}

    async def resolve_folder_label_attributes(self, deal: DealRef) -> FolderLabelAttributes:
        if not self._budget_field_key and not self._service_field_key:
            return FolderLabelAttributes()

        fields = await self._fields_by_key()

        def _read(key: str | None) -> str | None:
            if not key:
                return None
            return translate_field_value(fields.get(key), deal.custom_fields.get(key))

        attributes = FolderLabelAttributes(
            budget_number=_read(self._budget_field_key),
            service_label=_read(self._service_field_key),
        )
        logger.debug(
            "pipedrive.folder_label_resolved",
            deal_id=deal.deal_id,
            budget_number=attributes.budget_number,
            service_label=attributes.service_label,
        )
        return attributes
