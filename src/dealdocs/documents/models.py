"""Ledger table recording, per deal and CRM file, the last known Drive sync outcome."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text, UniqueConstraint, false, func
from sqlalchemy.orm import Mapped, mapped_column

from src.dealdocs.core.database import Base


class DealFileModel(Base):
    """One CRM file of a deal mirrored into the shared drive.

    ``id`` defaults to the CRM file id when the row is first created and
    stays stable across re-syncs. At most one row exists per
    (deal_id, source_file_id), enforced by unique constraint.
    """

    __tablename__ = "deal_files"
    __table_args__ = (
        UniqueConstraint(
            "deal_id",
            "source_file_id",
            name="uq_deal_files_deal_source",
        ),
        Index("ix_deal_files_deal_id", "deal_id"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    deal_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_file_id: Mapped[str] = mapped_column(String(100), nullable=False)
    file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    web_view_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    remote_file_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    permission_pending: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    added_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=True,
    )
