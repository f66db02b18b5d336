"""Tests for deal folder labels and folder path resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.dealdocs.documents.errors import SourceSystemError
from src.dealdocs.documents.folders import (
    FolderPathResolver,
    build_deal_folder_label,
    date_label,
)
from src.dealdocs.documents.naming import DEFAULT_ORG_FOLDER
from src.dealdocs.documents.schemas import DealRef, FolderLabelAttributes

ADDED_AT = datetime(2024, 3, 5, 10, 15, tzinfo=timezone.utc)


class TestFolderLabel:
    def test_full_label(self):
        label = build_deal_folder_label(
            "42",
            ADDED_AT,
            FolderLabelAttributes(budget_number="PO-7", service_label="Curso Excel"),
            title="ignored title",
        )
        assert label == "05-03-2024 - PO-7 - Curso Excel"

    def test_fallbacks(self):
        assert build_deal_folder_label("42", ADDED_AT) == "05-03-2024 - Presupuesto 42 - Formación"

    def test_title_used_when_no_service_label(self):
        label = build_deal_folder_label("42", ADDED_AT, FolderLabelAttributes(), title="Taller")
        assert label == "05-03-2024 - Presupuesto 42 - Taller"

    def test_label_parts_are_normalized(self):
        label = build_deal_folder_label(
            "42", ADDED_AT, FolderLabelAttributes(budget_number="PO/7", service_label="  A:B  ")
        )
        assert label == "05-03-2024 - PO-7 - A-B"

    def test_date_uses_utc(self):
        local = datetime(2024, 3, 6, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        assert date_label(local) == "05-03-2024"


class TestFolderPathResolver:
    async def test_creates_org_then_deal_folder(self, content_store, deal, no_wait_policy):
        resolver = FolderPathResolver(content_store, retry_policy=no_wait_policy)

        label = await resolver.resolve_folder_label(deal)
        folder = await resolver.resolve_deal_folder("shared-drive-1", deal.organization_name, label)

        assert label == "05-03-2024 - Presupuesto 42 - Curso de Excel avanzado"
        assert content_store.folders[("shared-drive-1", "ACME Formación")] == folder.organization_folder_id
        assert content_store.folders[(folder.organization_folder_id, label)] == folder.deal_folder_id
        assert folder.root_id == "shared-drive-1"
        assert folder.deal_folder_name == label

    async def test_repeat_resolution_is_cached(self, content_store, no_wait_policy):
        resolver = FolderPathResolver(content_store, retry_policy=no_wait_policy)

        first = await resolver.resolve_deal_folder("shared-drive-1", "ACME", "label")
        second = await resolver.resolve_deal_folder("shared-drive-1", "ACME", "label")

        assert first == second
        assert len(content_store.ensure_folder_calls) == 2

    async def test_new_resolver_reuses_existing_folders(self, content_store, no_wait_policy):
        first = await FolderPathResolver(content_store, retry_policy=no_wait_policy).resolve_deal_folder(
            "shared-drive-1", "ACME", "label"
        )
        second = await FolderPathResolver(content_store, retry_policy=no_wait_policy).resolve_deal_folder(
            "shared-drive-1", "ACME", "label"
        )

        assert first.deal_folder_id == second.deal_folder_id
        assert len(content_store.folders) == 2

    async def test_missing_organization_uses_default_folder(self, content_store, no_wait_policy):
        resolver = FolderPathResolver(content_store, retry_policy=no_wait_policy)

        await resolver.resolve_deal_folder("shared-drive-1", None, "label")

        assert ("shared-drive-1", DEFAULT_ORG_FOLDER) in content_store.folders

    async def test_enrichment_attributes_are_used(self, content_store, deal, make_label_resolver):
        labels = make_label_resolver(
            FolderLabelAttributes(budget_number="P-2024-018", service_label="Prevención")
        )
        resolver = FolderPathResolver(content_store, label_resolver=labels)

        assert await resolver.resolve_folder_label(deal) == "05-03-2024 - P-2024-018 - Prevención"

    async def test_enrichment_failure_falls_back(self, content_store, make_label_resolver):
        labels = make_label_resolver(error=SourceSystemError("dealFields unavailable"))
        resolver = FolderPathResolver(content_store, label_resolver=labels)
        deal = DealRef(deal_id="7", added_at="2023-12-31T23:00:00Z")

        assert await resolver.resolve_folder_label(deal) == "31-12-2023 - Presupuesto 7 - Formación"
        assert labels.calls == 1

    async def test_folder_errors_are_retried_then_raised(self, content_store, no_wait_policy):
        content_store.folder_error = RuntimeError("backend error")
        resolver = FolderPathResolver(content_store, retry_policy=no_wait_policy)

        with pytest.raises(RuntimeError, match="backend error"):
            await resolver.ensure_folder("shared-drive-1", None, "ACME")

        assert len(content_store.ensure_folder_calls) == 3
