"""Tests for the repair item status aggregator."""

import pytest

from inspections.factories import (
    RepairItemFactory,
    RepairLabourFactory,
    RepairOptionFactory,
    RepairPartFactory,
)
from inspections.services.workflow import ItemState, derive_item_statuses


def state(**kwargs):
    values = {
        "labour_status": "pending",
        "parts_status": "pending",
        "quote_status": "pending",
    }
    values.update(kwargs)
    return ItemState(**values)


class TestDeriveItemStatuses:
    def test_first_line_starts_work(self):
        changes = derive_item_statuses(state(), 1, 0)
        assert changes == {"labour_status": "in_progress"}

    def test_no_change_when_consistent(self):
        current = state(labour_status="in_progress", parts_status="pending")
        assert derive_item_statuses(current, 2, 0) == {}

    def test_completion_never_inferred_from_lines(self):
        current = state(labour_status="in_progress")
        assert "labour_status" not in derive_item_statuses(current, 5, 0)

    def test_complete_reverts_when_lines_removed(self):
        current = state(
            labour_status="complete",
            parts_status="complete",
            quote_status="ready",
        )
        changes = derive_item_statuses(current, 0, 1)
        assert changes["labour_status"] == "pending"
        assert changes["labour_completed_by"] is None
        assert changes["labour_completed_at"] is None
        assert changes["quote_status"] == "pending"

    def test_complete_kept_when_not_required(self):
        current = state(
            labour_status="complete",
            parts_status="complete",
            no_labour_required=True,
        )
        assert derive_item_statuses(current, 0, 1) == {
            "quote_status": "ready"
        }

    def test_in_progress_reverts_to_pending(self):
        current = state(parts_status="in_progress")
        assert derive_item_statuses(current, 0, 0) == {
            "parts_status": "pending"
        }

    def test_quote_ready_when_both_complete(self):
        current = state(labour_status="complete", parts_status="complete")
        assert derive_item_statuses(current, 1, 1) == {
            "quote_status": "ready"
        }

    def test_quote_frozen_after_customer_decision(self):
        current = state(
            labour_status="complete",
            parts_status="complete",
            quote_status="ready",
            has_decision=True,
        )
        changes = derive_item_statuses(current, 0, 1)
        assert changes["labour_status"] == "pending"
        assert "quote_status" not in changes

    @pytest.mark.parametrize("labour", ["pending", "in_progress", "complete"])
    @pytest.mark.parametrize("parts", ["pending", "in_progress", "complete"])
    @pytest.mark.parametrize("quote", ["pending", "ready"])
    @pytest.mark.parametrize("counts", [(0, 0), (1, 0), (0, 2), (3, 1)])
    def test_derivation_is_idempotent(self, labour, parts, quote, counts):
        first = state(
            labour_status=labour, parts_status=parts, quote_status=quote
        )
        changes = derive_item_statuses(first, *counts)
        fields = {
            key: value
            for key, value in changes.items()
            if key in ("labour_status", "parts_status", "quote_status")
        }
        second = state(
            labour_status=fields.get("labour_status", labour),
            parts_status=fields.get("parts_status", parts),
            quote_status=fields.get("quote_status", quote),
        )
        assert derive_item_statuses(second, *counts) == {}


@pytest.mark.django_db
class TestRefreshItemWorkflow:
    def test_persists_and_is_idempotent(self):
        from inspections.services.workflow import refresh_item_workflow

        item = RepairItemFactory()
        RepairLabourFactory(repair_item=item)

        assert refresh_item_workflow(item) == {"labour_status": "in_progress"}
        assert item.labour_status == "in_progress"
        assert refresh_item_workflow(item) == {}

    def test_option_lines_count_towards_item(self):
        from inspections.services.workflow import refresh_item_workflow

        item = RepairItemFactory()
        option = RepairOptionFactory(repair_item=item)
        RepairPartFactory(repair_item=None, repair_option=option)

        refresh_item_workflow(item)
        item.refresh_from_db()
        assert item.parts_status == "in_progress"

    def test_reverse_transition_clears_completion(self, advisor):
        from django.utils import timezone

        from inspections.services.workflow import refresh_item_workflow

        item = RepairItemFactory(
            labour_status="complete",
            labour_completed_by=advisor,
            labour_completed_at=timezone.now(),
        )

        changes = refresh_item_workflow(item)
        assert changes["labour_status"] == "pending"
        item.refresh_from_db()
        assert item.labour_completed_by is None
        assert item.labour_completed_at is None


@pytest.mark.django_db
class TestJobWorkflowSummary:
    def test_summary_rolls_up_items(self, job):
        from inspections.services.workflow import job_workflow_summary

        RepairItemFactory(
            job=job,
            labour_status="complete",
            parts_status="complete",
            quote_status="ready",
        )
        RepairItemFactory(job=job, labour_status="in_progress")

        summary = job_workflow_summary(job)
        assert summary["item_count"] == 2
        assert summary["labour"] == "in_progress"
        assert summary["quote"] == "in_progress"
        assert summary["sent"] == "pending"

    def test_empty_job(self, job):
        from inspections.services.workflow import job_workflow_summary

        summary = job_workflow_summary(job)
        assert summary["labour"] == "na"
        assert summary["quote"] == "na"
