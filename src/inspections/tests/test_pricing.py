"""Tests for labour and parts lines, options and completion flags."""

from decimal import Decimal

import pytest

from django.core.exceptions import ValidationError

from inspections.exceptions import Forbidden, PreconditionFailed
from inspections.factories import RepairItemFactory, RepairOptionFactory
from inspections.models import AuditLog, InspectionJob, StatusHistory


class TestLineTotals:
    def test_labour_discount(self):
        from inspections.services.pricing import labour_line_total

        assert labour_line_total("1.5", "80", "10") == Decimal("108.00")

    def test_labour_rounds_half_up(self):
        from inspections.services.pricing import labour_line_total

        assert labour_line_total("0.333", "10") == Decimal("3.33")
        assert labour_line_total("0.125", "1") == Decimal("0.13")

    def test_part_total(self):
        from inspections.services.pricing import part_line_total

        assert part_line_total(2, "12.50") == Decimal("25.00")


@pytest.mark.django_db
class TestAddLines:
    def test_add_labour_updates_status_and_totals(self, job, advisor):
        from inspections.services.pricing import add_labour

        item = RepairItemFactory(job=job)
        line = add_labour(
            advisor,
            item=item,
            description="Replace pads",
            hours="1.5",
            rate="80",
            discount_percent="10",
        )

        assert line.total == Decimal("108.00")
        item.refresh_from_db()
        assert item.labour_status == "in_progress"
        assert item.labour_total == Decimal("108.00")
        assert item.vat_amount == Decimal("21.60")
        assert item.total_inc_vat == Decimal("129.60")
        job.refresh_from_db()
        assert job.total_amount == Decimal("129.60")
        assert AuditLog.objects.filter(
            action="labour.add", resource_id=str(item.pk)
        ).exists()

    def test_vat_exempt_labour(self, job, advisor):
        from inspections.services.pricing import add_labour, add_part

        item = RepairItemFactory(job=job)
        add_labour(
            advisor,
            item=item,
            description="MOT",
            hours="1",
            rate="100",
            is_vat_exempt=True,
        )
        add_part(advisor, item=item, description="Bulb", sell_price="50")

        item.refresh_from_db()
        assert item.subtotal == Decimal("150.00")
        assert item.vat_amount == Decimal("10.00")
        assert item.total_inc_vat == Decimal("160.00")

    def test_technician_cannot_price(self, job, technician):
        from inspections.services.pricing import add_part

        item = RepairItemFactory(job=job)
        with pytest.raises(Forbidden):
            add_part(technician, item=item, description="Oil", sell_price=9)

    def test_line_needs_exactly_one_owner(self, job, advisor):
        from inspections.services.pricing import add_part

        item = RepairItemFactory(job=job)
        option = RepairOptionFactory(repair_item=item)
        with pytest.raises(ValidationError):
            add_part(
                advisor,
                item=item,
                option=option,
                description="Oil",
                sell_price=9,
            )
        with pytest.raises(ValidationError):
            add_part(advisor, description="Oil", sell_price=9)

    def test_rejects_non_positive_hours(self, job, advisor):
        from inspections.services.pricing import add_labour

        item = RepairItemFactory(job=job)
        with pytest.raises(ValidationError, match="hours"):
            add_labour(
                advisor, item=item, description="Fit", hours=0, rate=80
            )


@pytest.mark.django_db
class TestPricingStarted:
    def test_first_line_moves_job_into_pricing(
        self, make_job, advisor, technician
    ):
        from inspections.services.pricing import add_part

        job = make_job("tech_completed", technician=technician)
        item = RepairItemFactory(job=job)
        add_part(advisor, item=item, description="Pads", sell_price="40")

        job.refresh_from_db()
        assert job.status == "awaiting_pricing"
        history = StatusHistory.objects.get(job=job)
        assert history.source == "system"
        assert history.notes == "Pricing started"

    def test_stale_cached_job_still_moves_into_pricing(
        self, make_job, advisor, technician
    ):
        from inspections.services.pricing import add_part

        job = make_job("in_progress", technician=technician)
        item = RepairItemFactory(job=job)
        assert item.job.status == "in_progress"
        InspectionJob.objects.filter(pk=job.pk).update(
            status="tech_completed"
        )

        add_part(advisor, item=item, description="Pads", sell_price="40")

        job.refresh_from_db()
        assert job.status == "awaiting_pricing"

    def test_other_statuses_untouched(self, make_job, advisor, technician):
        from inspections.services.pricing import add_part

        job = make_job("awaiting_review", technician=technician)
        item = RepairItemFactory(job=job)
        add_part(advisor, item=item, description="Pads", sell_price="40")

        job.refresh_from_db()
        assert job.status == "awaiting_review"
        assert not StatusHistory.objects.filter(job=job).exists()


@pytest.mark.django_db
class TestDeleteLines:
    def test_deleting_last_line_reverts_completion(self, job, advisor):
        from inspections.services.pricing import (
            add_labour,
            delete_labour,
            mark_labour_complete,
        )

        item = RepairItemFactory(job=job)
        line = add_labour(
            advisor, item=item, description="Fit", hours=1, rate=80
        )
        mark_labour_complete(item, advisor)
        assert item.labour_status == "complete"

        delete_labour(line, advisor)
        item.refresh_from_db()
        assert item.labour_status == "pending"
        assert item.labour_completed_by is None
        assert item.labour_total == Decimal("0.00")


@pytest.mark.django_db
class TestCompletion:
    def test_complete_requires_lines_or_flag(self, job, advisor):
        from inspections.services.pricing import mark_parts_complete

        item = RepairItemFactory(job=job)
        with pytest.raises(PreconditionFailed):
            mark_parts_complete(item, advisor)

    def test_not_required_allows_completion(self, job, advisor):
        from inspections.services.pricing import (
            mark_parts_complete,
            set_no_parts_required,
        )

        item = RepairItemFactory(job=job)
        set_no_parts_required(item, advisor)
        mark_parts_complete(item, advisor)
        item.refresh_from_db()
        assert item.parts_status == "complete"
        assert item.parts_completed_by == advisor

    def test_quote_ready_once_both_sides_complete(self, job, advisor):
        from inspections.services.pricing import (
            add_labour,
            mark_labour_complete,
            mark_parts_complete,
            set_no_parts_required,
        )

        item = RepairItemFactory(job=job)
        add_labour(advisor, item=item, description="Fit", hours=1, rate=80)
        mark_labour_complete(item, advisor)
        assert item.quote_status == "pending"

        set_no_parts_required(item, advisor)
        mark_parts_complete(item, advisor)
        item.refresh_from_db()
        assert item.quote_status == "ready"


@pytest.mark.django_db
class TestOptions:
    def test_recommended_option_is_unique(self, job, advisor):
        from inspections.services.pricing import add_option

        item = RepairItemFactory(job=job)
        first = add_option(item, advisor, "Budget", is_recommended=True)
        second = add_option(item, advisor, "Premium", is_recommended=True)

        first.refresh_from_db()
        assert first.is_recommended is False
        assert second.is_recommended is True
        assert second.sort_order == 1

    def test_selected_option_prices_item(self, job, advisor):
        from inspections.services.pricing import (
            add_labour,
            add_option,
            select_option,
        )

        item = RepairItemFactory(job=job)
        option = add_option(item, advisor, "Premium")
        add_labour(
            advisor, option=option, description="Fit", hours=2, rate=50
        )

        select_option(item, option, advisor)
        item.refresh_from_db()
        assert item.selected_option == option
        assert item.total_inc_vat == Decimal("120.00")

    def test_option_from_other_item_rejected(self, job, advisor):
        from inspections.services.pricing import select_option

        item = RepairItemFactory(job=job)
        foreign = RepairOptionFactory()
        with pytest.raises(PreconditionFailed):
            select_option(item, foreign, advisor)
