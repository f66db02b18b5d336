"""Google Drive v3 implementation of the ContentStore interface.

All Google API calls are blocking and run through asyncio.to_thread() so
they never stall the event loop while other files are being reconciled.
Shared-drive flags (supportsAllDrives / includeItemsFromAllDrives) are set
on every request.
"""

from __future__ import annotations

import asyncio
import io
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from src.dealdocs.documents.adapter import ContentStore
from src.dealdocs.documents.errors import DriveApiError, SharedDriveUnavailableError
from src.dealdocs.documents.schemas import RemoteFileMetadata, UploadResult
from src.dealdocs.services.drive.auth import DriveAuthManager

logger = structlog.get_logger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_UPLOAD_MIME_TYPE = "application/octet-stream"

T = TypeVar("T")


def escape_query_value(value: str) -> str:
    """Escape a value for use inside a single-quoted Drive query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_folder_query(parent_id: str, name: str) -> str:
    return " and ".join(
        [
            f"'{escape_query_value(parent_id)}' in parents",
            f"mimeType = '{FOLDER_MIME_TYPE}'",
            "trashed = false",
            f"name = '{escape_query_value(name)}'",
        ]
    )


def build_app_properties_query(folder_id: str, properties: dict[str, str]) -> str:
    clauses = [f"'{escape_query_value(folder_id)}' in parents", "trashed = false"]
    for key, value in sorted(properties.items()):
        clauses.append(
            "appProperties has { "
            f"key='{escape_query_value(key)}' and value='{escape_query_value(value)}'"
            " }"
        )
    return " and ".join(clauses)


def _http_status(exc: HttpError) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None and getattr(exc, "resp", None) is not None:
        status = getattr(exc.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class GoogleDriveContentStore(ContentStore):
    """Async wrapper around the Drive v3 API for the deal folder tree.

    Args:
        auth_manager: Provides the cached Drive service.
    """

    def __init__(self, auth_manager: DriveAuthManager) -> None:
        self._auth = auth_manager

    async def _execute(self, operation: str, build_request: Callable[[Any], Any]) -> Any:
        """Build and execute one request in a worker thread, mapping HttpError.

        Each request runs over its own authorized transport so concurrent
        worker threads never share an httplib2 connection.
        """

        def _run() -> Any:
            service = self._auth.get_drive_service()
            return build_request(service).execute(http=self._auth.authorized_http())

        try:
            return await asyncio.to_thread(_run)
        except HttpError as exc:
            status = _http_status(exc)
            raise DriveApiError(
                f"Drive {operation} failed ({status}): {exc}", status=status
            ) from exc

    # ── Root ────────────────────────────────────────────────────────────────

    async def validate_root(self, root_id: str) -> None:
        """Check the shared drive is reachable.

        Any failure (API error, network timeout, credential refresh, unreadable
        key file) raises SharedDriveUnavailableError.
        """
        try:
            drive = await self._execute(
                "drives.get",
                lambda s: s.drives().get(driveId=root_id, fields="id, name"),
            )
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            raise SharedDriveUnavailableError(
                f"shared drive {root_id} is not accessible: {message}"
            ) from exc
        if not drive or not drive.get("id"):
            raise SharedDriveUnavailableError(f"shared drive {root_id} returned no id")
        logger.debug("drive.shared_drive_validated", root_id=root_id, name=drive.get("name"))

    # ── Folders ─────────────────────────────────────────────────────────────

    async def _list_folders(self, root_id: str, parent_id: str, name: str) -> list[dict]:
        response = await self._execute(
            "files.list",
            lambda s: s.files().list(
                q=build_folder_query(parent_id, name),
                corpora="drive",
                driveId=root_id,
                includeItemsFromAllDrives=True,
                supportsAllDrives=True,
                fields="files(id, name, createdTime)",
                orderBy="createdTime",
                pageSize=10,
            ),
        )
        return [f for f in (response or {}).get("files", []) if f.get("id")]

    async def ensure_folder(self, root_id: str, parent_id: str | None, name: str) -> str:
        """Find-or-create a folder.

        Two concurrent callers may both miss the lookup and both create. The
        post-create re-list returns folders oldest first, so both callers end
        up using the earliest-created folder.
        """
        parent = parent_id or root_id
        existing = await self._list_folders(root_id, parent, name)
        if existing:
            return str(existing[0]["id"])

        created = await self._execute(
            "files.create",
            lambda s: s.files().create(
                body={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent]},
                fields="id",
                supportsAllDrives=True,
            ),
        )
        created_id = str(created["id"])
        logger.info("drive.folder_created", parent_id=parent, name=name, folder_id=created_id)

        converged = await self._list_folders(root_id, parent, name)
        if converged and str(converged[0]["id"]) != created_id:
            logger.warning(
                "drive.folder_duplicate_detected",
                parent_id=parent,
                name=name,
                created_id=created_id,
                kept_id=converged[0]["id"],
            )
            return str(converged[0]["id"])
        return created_id

    # ── Files ───────────────────────────────────────────────────────────────

    async def find_by_app_properties(
        self, folder_id: str, properties: dict[str, str]
    ) -> str | None:
        response = await self._execute(
            "files.list",
            lambda s: s.files().list(
                q=build_app_properties_query(folder_id, properties),
                corpora="allDrives",
                includeItemsFromAllDrives=True,
                supportsAllDrives=True,
                fields="files(id)",
                pageSize=1,
            ),
        )
        files = (response or {}).get("files", [])
        if files and files[0].get("id"):
            return str(files[0]["id"])
        return None

    async def get_metadata(self, file_id: str) -> RemoteFileMetadata | None:
        try:
            data = await self._execute(
                "files.get",
                lambda s: s.files().get(
                    fileId=file_id,
                    fields="id, name, webViewLink, trashed",
                    supportsAllDrives=True,
                ),
            )
        except DriveApiError as exc:
            if exc.status == 404:
                return None
            raise
        if not data or data.get("trashed"):
            return None
        return RemoteFileMetadata(
            file_id=str(data.get("id") or file_id),
            name=data.get("name"),
            web_view_link=data.get("webViewLink"),
        )

    async def upload(
        self,
        folder_id: str,
        name: str,
        mime_type: str | None,
        content: bytes,
        app_properties: dict[str, str],
    ) -> UploadResult:
        media_type = mime_type or DEFAULT_UPLOAD_MIME_TYPE
        result = await self._execute(
            "files.create",
            lambda s: s.files().create(
                body={
                    "name": name,
                    "parents": [folder_id],
                    "appProperties": dict(app_properties),
                },
                media_body=MediaIoBaseUpload(io.BytesIO(content), mimetype=media_type, resumable=False),
                fields="id, name, webViewLink",
                supportsAllDrives=True,
            ),
        )
        if not result or not result.get("id"):
            raise DriveApiError("Drive upload returned no file id")
        logger.info("drive.file_uploaded", folder_id=folder_id, name=name, file_id=result["id"])
        return UploadResult(
            file_id=str(result["id"]),
            name=result.get("name") or name,
            web_view_link=result.get("webViewLink"),
        )

    async def grant_domain_permission(self, file_id: str, domain: str, role: str) -> None:
        await self._execute(
            "permissions.create",
            lambda s: s.permissions().create(
                fileId=file_id,
                body={
                    "type": "domain",
                    "role": role,
                    "domain": domain,
                    "allowFileDiscovery": False,
                },
                fields="id",
                supportsAllDrives=True,
            ),
        )
