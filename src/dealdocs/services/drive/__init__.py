"""Google Drive integration for the deal folder tree.

Provides DriveAuthManager (service account credentials, cached Drive v3
service) and GoogleDriveContentStore (ContentStore over the Drive API with
async wrapping via asyncio.to_thread).
"""

from src.dealdocs.services.drive.auth import DriveAuthManager
from src.dealdocs.services.drive.content_store import GoogleDriveContentStore

__all__ = [
    "DriveAuthManager",
    "GoogleDriveContentStore",
]
