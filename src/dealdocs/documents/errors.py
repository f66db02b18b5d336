"""Error taxonomy for document synchronization.

Every error carries a stable ``code`` so the HTTP layer and the warning
strings can report it without parsing messages.
"""

from __future__ import annotations


class DocumentSyncError(Exception):
    """Base class for document sync failures."""

    code = "DOCUMENT_SYNC_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class SharedDriveUnavailableError(DocumentSyncError):
    """The shared drive root could not be validated. Aborts the whole sync."""

    code = "DRIVE_NOT_ACCESSIBLE"


class DriveApiError(DocumentSyncError):
    """A Google Drive API call failed."""

    code = "DRIVE_API_ERROR"

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.status = status


class SourceSystemError(DocumentSyncError):
    """A Pipedrive API call failed."""

    code = "PIPEDRIVE_API_ERROR"

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class PermissionGrantError(DocumentSyncError):
    """The uploaded file was stored but the domain permission was not granted."""

    code = "DRIVE_PERMISSION_FAILED"


class RetryExhaustedError(DocumentSyncError):
    """Raised when retries run out and the last error had no usable message."""

    code = "RETRY_EXHAUSTED"
