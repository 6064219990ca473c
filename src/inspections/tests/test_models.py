"""Model-level rules: immutable history, line ownership, item nesting."""

from datetime import timedelta

import pytest

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from inspections.factories import (
    InspectionJobFactory,
    RepairItemFactory,
    RepairLabourFactory,
    RepairOptionFactory,
    SiteFactory,
)
from inspections.models import InspectionJob, RepairItem, StatusHistory


@pytest.mark.django_db
class TestStatusHistory:
    def test_rows_cannot_be_edited(self, job):
        row = StatusHistory.objects.create(
            job=job, from_status=None, to_status="created"
        )
        row.notes = "rewritten"
        with pytest.raises(ValidationError):
            row.save()

    def test_rows_cannot_be_deleted(self, job):
        row = StatusHistory.objects.create(
            job=job, from_status="created", to_status="assigned"
        )
        with pytest.raises(ValidationError):
            row.delete()
        assert StatusHistory.objects.filter(pk=row.pk).exists()


@pytest.mark.django_db
class TestInspectionJob:
    def test_allowed_transitions(self):
        job = InspectionJob(status="paused")
        assert job.can_transition_to("in_progress")
        assert not job.can_transition_to("sent")
        assert job.allowed_transitions == [
            "in_progress",
            "tech_completed",
            "cancelled",
        ]

    def test_final_statuses_have_no_exits(self):
        for status in InspectionJob.FINAL_STATUSES:
            assert InspectionJob(status=status).allowed_transitions == []

    def test_token_expiry(self):
        job = InspectionJob(token_expires_at=None)
        assert job.is_token_expired is False
        job.token_expires_at = timezone.now() - timedelta(seconds=1)
        assert job.is_token_expired is True

    def test_str(self):
        job = InspectionJobFactory(vehicle__registration="AB12 CDE")
        assert str(job) == f"VHC #{job.pk} (AB12 CDE) - Created"


@pytest.mark.django_db
class TestSite:
    def test_site_names_unique_per_organization(self, site):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                SiteFactory(organization=site.organization, name=site.name)
        SiteFactory(name=site.name)


@pytest.mark.django_db
class TestRepairLines:
    def test_line_needs_an_owner(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RepairLabourFactory(repair_item=None, repair_option=None)

    def test_line_cannot_have_two_owners(self):
        option = RepairOptionFactory()
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RepairLabourFactory(
                    repair_item=option.repair_item, repair_option=option
                )


@pytest.mark.django_db
class TestRepairItem:
    def test_nesting_limited_to_one_level(self, job):
        parent = RepairItemFactory(job=job, is_group=True)
        child = RepairItemFactory(job=job, parent=parent)
        grandchild = RepairItemFactory.build(job=job, parent=child)

        with pytest.raises(ValidationError):
            grandchild.clean()

    def test_child_must_share_parent_job(self, job):
        parent = RepairItemFactory(job=job, is_group=True)
        stray = RepairItemFactory.build(
            job=InspectionJobFactory(), parent=parent
        )
        with pytest.raises(ValidationError):
            stray.clean()

    def test_top_level_excludes_children_and_deleted(self, job):
        parent = RepairItemFactory(job=job, is_group=True)
        RepairItemFactory(job=job, parent=parent)
        RepairItemFactory(job=job, deleted_at=timezone.now())

        assert list(RepairItem.objects.top_level().filter(job=job)) == [
            parent
        ]

    def test_effective_total_prefers_selected_option(self, job):
        item = RepairItemFactory(job=job, total_inc_vat=50)
        assert item.effective_total == 50

        option = RepairOptionFactory(repair_item=item)
        item.selected_option = option
        assert item.effective_total == option.total_inc_vat
