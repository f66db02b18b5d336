"""Deal document synchronization -- mirrors CRM deal files into the shared drive.

Provides the reconciliation engine (DocumentReconciler, DealDocumentSync),
its primitives (name normalization, retry, bounded concurrency, folder
resolution), collaborator interfaces, schemas, and the deal_files ledger
repository.
"""

from src.dealdocs.documents.adapter import (
    ContentStore,
    FolderLabelResolver,
    LedgerStore,
    SourceFileStore,
)
from src.dealdocs.documents.errors import (
    DocumentSyncError,
    SharedDriveUnavailableError,
)
from src.dealdocs.documents.reconciler import DocumentReconciler
from src.dealdocs.documents.retry import RetryPolicy, with_retry
from src.dealdocs.documents.schemas import (
    DealRef,
    LedgerRecord,
    ReconcileOutcome,
    SourceFile,
    SyncResult,
)
from src.dealdocs.documents.sync import DealDocumentSync

__all__ = [
    "ContentStore",
    "DealDocumentSync",
    "DealRef",
    "DocumentReconciler",
    "DocumentSyncError",
    "FolderLabelResolver",
    "LedgerRecord",
    "LedgerStore",
    "ReconcileOutcome",
    "RetryPolicy",
    "SharedDriveUnavailableError",
    "SourceFile",
    "SourceFileStore",
    "SyncResult",
    "with_retry",
]
