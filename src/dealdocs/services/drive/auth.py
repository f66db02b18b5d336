"""Google Drive authentication with a service account and optional delegation.

Caches the credentials and the Drive v3 service instance to avoid rebuilding
them and the discovery document on every API call. The service's own httplib2
connection is not thread-safe, so every request executes over a fresh
AuthorizedHttp from authorized_http().
"""

from __future__ import annotations

from typing import Any

import google_auth_httplib2
import httplib2
import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

logger = structlog.get_logger(__name__)

DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive",
]

DEFAULT_HTTP_TIMEOUT = 60.0


class DriveAuthManager:
    """Manages Drive API authentication with service account credentials.

    Args:
        service_account_file: Path to the service account JSON key.
        delegated_user_email: Optional user to impersonate via domain-wide
            delegation. Shared drives normally work without it.
        http_timeout: Socket timeout in seconds for each request transport.
    """

    def __init__(
        self,
        service_account_file: str,
        delegated_user_email: str | None = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._service_account_file = service_account_file
        self._delegated_user_email = delegated_user_email or None
        self._http_timeout = http_timeout
        self._credentials: service_account.Credentials | None = None
        self._service: Any | None = None

    def get_credentials(self) -> service_account.Credentials:
        """Get the cached service account credentials."""
        if self._credentials is None:
            credentials = service_account.Credentials.from_service_account_file(
                self._service_account_file,
                scopes=DRIVE_SCOPES,
            )
            if self._delegated_user_email:
                credentials = credentials.with_subject(self._delegated_user_email)
            self._credentials = credentials
        return self._credentials

    def get_drive_service(self) -> Any:
        """Get the cached Drive API v3 Resource object."""
        if self._service is None:
            logger.info(
                "building_drive_service",
                delegated_user_email=self._delegated_user_email,
            )
            self._service = build(
                "drive",
                "v3",
                credentials=self.get_credentials(),
                cache_discovery=False,
            )
        return self._service

    def authorized_http(self) -> google_auth_httplib2.AuthorizedHttp:
        """Return a new authorized transport for a single request."""
        return google_auth_httplib2.AuthorizedHttp(
            self.get_credentials(),
            http=httplib2.Http(timeout=self._http_timeout),
        )
