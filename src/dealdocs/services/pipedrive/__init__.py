"""Pipedrive CRM integration.

Provides PipedriveClient (deals, deal files, downloads, deal fields over
httpx), PipedriveFolderLabelResolver (folder label enrichment from custom
fields) and TTLCache (per-run metadata cache).
"""

from src.dealdocs.services.pipedrive.cache import TTLCache
from src.dealdocs.services.pipedrive.client import PipedriveClient
from src.dealdocs.services.pipedrive.labels import PipedriveFolderLabelResolver

__all__ = [
    "PipedriveClient",
    "PipedriveFolderLabelResolver",
    "TTLCache",
]
