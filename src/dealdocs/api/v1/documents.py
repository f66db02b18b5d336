"""REST API endpoints for deal document synchronization.

Provides a trigger for a single deal sync and a read-only view of the
deal_files ledger. The DealDocumentService is read from app.state; both
endpoints return 503 when it was not initialized at startup.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.dealdocs.documents.errors import DocumentSyncError
from src.dealdocs.documents.schemas import LedgerRecord, SyncResult

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/deals", tags=["documents"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class DealDocumentResponse(BaseModel):
    """One ledger row, with datetimes serialized to ISO strings."""

    id: str
    deal_id: str
    source_file_id: str
    file_name: str | None = None
    file_type: str | None = None
    file_url: str | None = None
    web_view_link: str | None = None
    remote_file_id: str | None = None
    permission_pending: bool = False
    added_at: str | None = None
    uploaded_at: str | None = None
    updated_at: str | None = None


class SyncErrorResponse(BaseModel):
    """Body returned when a sync aborts."""

    code: str
    detail: str


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_document_service(request: Request) -> Any:
    """Retrieve DealDocumentService from app.state, 503 if not available."""
    service = getattr(request.app.state, "document_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Document sync not initialized",
        )
    return service


def _record_to_response(record: LedgerRecord) -> DealDocumentResponse:
    return DealDocumentResponse(
        id=record.id,
        deal_id=record.deal_id,
        source_file_id=record.source_file_id,
        file_name=record.file_name,
        file_type=record.file_type,
        file_url=record.file_url,
        web_view_link=record.web_view_link,
        remote_file_id=record.remote_file_id,
        permission_pending=record.permission_pending,
        added_at=record.added_at.isoformat() if record.added_at else None,
        uploaded_at=record.uploaded_at.isoformat() if record.uploaded_at else None,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post(
    "/{deal_id}/documents/sync",
    response_model=SyncResult,
    responses={502: {"model": SyncErrorResponse}},
)
async def sync_deal_documents(deal_id: str, request: Request) -> Any:
    """Mirror a deal's Pipedrive files into the shared drive and the ledger.

    Per-file problems are reported as warnings in the result. A 502 is
    returned only when the run aborts (shared drive unusable, Pipedrive
    deal or file list unavailable).
    """
    service = _get_document_service(request)
    try:
        return await service.sync_deal(deal_id)
    except DocumentSyncError as exc:
        logger.warning("documents_api.sync_failed", deal_id=deal_id, code=exc.code, error=exc.message)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"code": exc.code, "detail": exc.message},
        )


@router.get("/{deal_id}/documents", response_model=list[DealDocumentResponse])
async def list_deal_documents(deal_id: str, request: Request) -> list[DealDocumentResponse]:
    """List the ledger rows recorded for a deal."""
    service = _get_document_service(request)
    records = await service.list_documents(deal_id)
    return [_record_to_response(r) for r in records]
