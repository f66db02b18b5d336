"""Async Pipedrive API client for deals, deal files and file downloads.

Responses are validated into typed schemas here, at the boundary, so the
document sync core never sees raw Pipedrive dictionaries. Retries are the
caller's concern (the reconciler wraps download_file with with_retry).
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import unquote

import httpx
import structlog
from pydantic import BaseModel, Field, field_validator

from src.dealdocs.documents.adapter import SourceFileStore
from src.dealdocs.documents.errors import SourceSystemError
from src.dealdocs.documents.schemas import DealRef, DownloadedFile, SourceFile

logger = structlog.get_logger(__name__)

PAGE_LIMIT = 100

_CUSTOM_FIELD_KEY_RE = re.compile(r"^[0-9a-f]{40}$")
_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*([^;]+)", re.IGNORECASE)
_EXT_VALUE_RE = re.compile(r"^([A-Za-z0-9!#$%&+^_`{}~-]*)'[^']*'(.*)$")
_FILENAME_RE = re.compile(r"filename\s*=\s*\"?([^\";]+)\"?", re.IGNORECASE)


# ── Schemas ─────────────────────────────────────────────────────────────────


class DealFieldOption(BaseModel):
    """One option of an enum/set custom field."""

    id: str
    label: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class DealFieldDefinition(BaseModel):
    """Definition of a deal field (standard or custom)."""

    key: str
    name: str | None = None
    field_type: str | None = None
    options: list[DealFieldOption] = Field(default_factory=list)

    @field_validator("options", mode="before")
    @classmethod
    def _coerce_options(cls, value: Any) -> Any:
        return value or []


# ── Helpers ─────────────────────────────────────────────────────────────────


def extract_filename_from_disposition(header: str | None) -> str | None:
    """Extract the filename from a Content-Disposition header.

    Prefers the RFC 5987 ``filename*`` form over ``filename``. Its
    ``charset'language'`` prefix is stripped and the percent-encoded value is
    decoded with that charset (UTF-8 when absent or unknown).
    """
    if not header:
        return None
    star = _FILENAME_STAR_RE.search(header)
    if star:
        raw = star.group(1).strip().strip('"')
        charset, value = "utf-8", raw
        ext_value = _EXT_VALUE_RE.match(raw)
        if ext_value:
            charset = ext_value.group(1) or "utf-8"
            value = ext_value.group(2)
        try:
            return unquote(value, encoding=charset, errors="strict")
        except LookupError:
            return unquote(value, encoding="utf-8", errors="replace")
        except UnicodeDecodeError:
            return value
    plain = _FILENAME_RE.search(header)
    if plain:
        return plain.group(1).strip()
    return None


def clean_mime_type(value: str | None) -> str | None:
    """Drop MIME parameters (``; charset=...``) and lower-case the type."""
    if not value:
        return None
    cleaned = value.split(";", 1)[0].strip().lower()
    return cleaned or None


def _organization_name(deal: dict[str, Any]) -> str | None:
    org = deal.get("org_id")
    if isinstance(org, dict) and org.get("name"):
        return str(org["name"])
    name = deal.get("org_name")
    return str(name) if name else None


def deal_ref_from_payload(deal: dict[str, Any]) -> DealRef:
    """Map a Pipedrive deal payload to DealRef, keeping only custom field values."""
    custom_fields = {
        key: value for key, value in deal.items() if _CUSTOM_FIELD_KEY_RE.match(str(key))
    }
    return DealRef(
        deal_id=deal.get("id"),
        title=deal.get("title"),
        added_at=deal.get("add_time"),
        organization_name=_organization_name(deal),
        custom_fields=custom_fields,
    )


def source_file_from_payload(payload: dict[str, Any]) -> SourceFile | None:
    """Map a Pipedrive file payload to SourceFile.

    Returns None for entries that are not real deal attachments: activity
    attachments, remote links (Drive, Gravatar) and entries without an id.
    """
    file_id = payload.get("id")
    if file_id is None or str(file_id).strip() == "":
        return None
    if payload.get("activity_id") is not None:
        return None
    if payload.get("remote_id") is not None or payload.get("remote_location") is not None:
        return None

    name = str(payload.get("file_name") or "")
    if "?" in name:
        name = name.split("?", 1)[0]

    return SourceFile(
        source_file_id=str(file_id),
        display_name=name or None,
        mime_type=payload.get("file_type") or None,
        added_at=payload.get("add_time"),
    )


# ── Client ──────────────────────────────────────────────────────────────────


class PipedriveClient(SourceFileStore):
    """Async wrapper around the Pipedrive v1 REST API.

    Args:
        api_token: Pipedrive API token (sent as the api_token query param).
        base_url: API base URL.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.pipedrive.com/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            params={"api_token": api_token},
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise SourceSystemError(f"Pipedrive GET {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise SourceSystemError(
                f"Pipedrive GET {path} failed: {response.status_code} {response.text[:200]}".strip(),
                status=response.status_code,
            )
        return response

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._get(path, params)
        payload = response.json()
        if not isinstance(payload, dict) or payload.get("success") is False:
            raise SourceSystemError(f"Pipedrive GET {path} returned an unsuccessful payload")
        return payload

    async def _get_paginated(self, path: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        start = 0
        while True:
            payload = await self._get_json(path, {"start": start, "limit": PAGE_LIMIT})
            items.extend(payload.get("data") or [])
            pagination = (payload.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                break
            start = pagination.get("next_start", start + PAGE_LIMIT)
        return items

    async def get_deal(self, deal_id: str) -> DealRef:
        """Fetch a deal and map it to DealRef."""
        payload = await self._get_json(f"/deals/{deal_id}")
        data = payload.get("data")
        if not data:
            raise SourceSystemError(f"Pipedrive deal {deal_id} not found", status=404)
        return deal_ref_from_payload(data)

    async def list_deal_files(self, deal_id: str) -> list[SourceFile]:
        """Fetch the real attachments of a deal, deduplicated by file id."""
        seen: set[str] = set()
        files: list[SourceFile] = []
        for payload in await self._get_paginated(f"/deals/{deal_id}/files"):
            if payload.get("deal_id") is not None and str(payload["deal_id"]) != str(deal_id):
                continue
            source_file = source_file_from_payload(payload)
            if source_file is None or source_file.source_file_id in seen:
                continue
            seen.add(source_file.source_file_id)
            files.append(source_file)
        logger.info("pipedrive.deal_files_listed", deal_id=deal_id, files=len(files))
        return files

    async def get_deal_fields(self) -> list[DealFieldDefinition]:
        """Fetch every deal field definition (custom field keys and options)."""
        return [
            DealFieldDefinition.model_validate(item)
            for item in await self._get_paginated("/dealFields")
            if item.get("key")
        ]

    async def download_file(self, source_file_id: str) -> DownloadedFile:
        """Download a file's bytes with its content type and header filename."""
        response = await self._get(f"/files/{source_file_id}/download")
        return DownloadedFile(
            content=response.content,
            mime_type=clean_mime_type(response.headers.get("content-type")),
            file_name_from_header=extract_filename_from_disposition(
                response.headers.get("content-disposition")
            ),
        )
