"""Tests for the job status transition engine."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from django.utils import timezone

from inspections.exceptions import (
    Forbidden,
    InvalidTransition,
    PreconditionFailed,
)
from inspections.factories import RepairItemFactory
from inspections.models import InspectionJob, StatusHistory

ALL_STATUSES = [value for value, _ in InspectionJob.STATUS_CHOICES]

DISALLOWED_PAIRS = [
    (current, requested)
    for current in ALL_STATUSES
    for requested in ALL_STATUSES
    if requested != current
    and requested not in InspectionJob.VALID_TRANSITIONS[current]
]


class TestTransitionTable:
    def test_every_status_has_a_table_entry(self):
        assert set(InspectionJob.VALID_TRANSITIONS) == set(ALL_STATUSES)

    def test_table_targets_are_known_statuses(self):
        for targets in InspectionJob.VALID_TRANSITIONS.values():
            assert set(targets) <= set(ALL_STATUSES)

    def test_final_statuses_have_no_exits(self):
        assert InspectionJob.VALID_TRANSITIONS["completed"] == []
        assert InspectionJob.VALID_TRANSITIONS["cancelled"] == []

    def test_only_self_edge_is_resend(self):
        self_edges = [
            status
            for status, targets in InspectionJob.VALID_TRANSITIONS.items()
            if status in targets
        ]
        assert self_edges == ["sent"]

    @pytest.mark.parametrize("current,requested", DISALLOWED_PAIRS)
    def test_pairs_outside_table_are_rejected(self, current, requested):
        from inspections.services.state import validate_transition

        job = InspectionJob(status=current)
        with pytest.raises(InvalidTransition) as exc_info:
            validate_transition(job, requested, actor=None)
        assert exc_info.value.detail["current_status"] == current
        assert exc_info.value.detail["requested_status"] == requested
        assert exc_info.value.detail["allowed"] == (
            InspectionJob.VALID_TRANSITIONS[current]
        )

    def test_unknown_status_rejected(self):
        from inspections.services.state import validate_transition

        job = InspectionJob(status="created")
        with pytest.raises(InvalidTransition, match="not a valid status"):
            validate_transition(job, "bogus")


@pytest.mark.django_db
class TestTransitionJob:
    def test_valid_transition_writes_status_and_history(
        self, make_job, advisor, technician
    ):
        from inspections.services.state import transition_job

        job = make_job("tech_completed", technician=technician)
        result = transition_job(job, "awaiting_review", advisor, "Check it")

        assert result.changed is True
        assert result.previous_status == "tech_completed"
        assert result.status == "awaiting_review"
        job.refresh_from_db()
        assert job.status == "awaiting_review"

        history = StatusHistory.objects.get(job=job)
        assert history.from_status == "tech_completed"
        assert history.to_status == "awaiting_review"
        assert history.changed_by == advisor
        assert history.source == "user"
        assert history.notes == "Check it"

    def test_system_actor_recorded_as_system(self, make_job, technician):
        from inspections.services.state import transition_job

        job = make_job("tech_completed", technician=technician)
        result = transition_job(job, "awaiting_pricing", actor=None)
        assert result.history.source == "system"
        assert result.history.changed_by is None

    def test_invalid_transition_writes_nothing(self, job, advisor):
        from inspections.services.state import transition_job

        with pytest.raises(InvalidTransition) as exc_info:
            transition_job(job, "sent", advisor)
        assert exc_info.value.status_code == 400
        job.refresh_from_db()
        assert job.status == "created"
        assert not StatusHistory.objects.filter(job=job).exists()

    def test_one_history_row_per_change(self, make_job, technician):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=technician)
        transition_job(job, "in_progress", technician)
        transition_job(job, "paused", technician)
        transition_job(job, "in_progress", technician)
        rows = list(
            StatusHistory.objects.filter(job=job).values_list(
                "from_status", "to_status"
            )
        )
        assert rows == [
            ("assigned", "in_progress"),
            ("in_progress", "paused"),
            ("paused", "in_progress"),
        ]

    def test_lost_race_raises_and_writes_nothing(
        self, make_job, advisor, technician
    ):
        from inspections.services.state import transition_job

        job = make_job("tech_completed", technician=technician)
        # Another request moved the job on after this copy was loaded
        InspectionJob.objects.filter(pk=job.pk).update(
            status="awaiting_pricing"
        )

        with pytest.raises(PreconditionFailed):
            transition_job(job, "awaiting_review", advisor)

        job.refresh_from_db()
        assert job.status == "awaiting_pricing"
        assert not StatusHistory.objects.filter(job=job).exists()


@pytest.mark.django_db
class TestNoOpPolicy:
    def test_same_status_without_note_writes_nothing(self, job, advisor):
        from inspections.services.state import transition_job

        result = transition_job(job, "created", advisor)
        assert result.changed is False
        assert result.history is None
        assert not StatusHistory.objects.filter(job=job).exists()

    def test_same_status_with_note_records_history(
        self, job, advisor, settings
    ):
        from inspections.services.state import transition_job

        settings.VHC_RECORD_NOOP_WITH_NOTE = True
        result = transition_job(job, "created", advisor, "Customer called")
        assert result.changed is False
        history = StatusHistory.objects.get(job=job)
        assert history.from_status == "created"
        assert history.to_status == "created"
        assert history.notes == "Customer called"

    def test_same_status_with_note_ignored_when_disabled(
        self, job, advisor, settings
    ):
        from inspections.services.state import transition_job

        settings.VHC_RECORD_NOOP_WITH_NOTE = False
        result = transition_job(job, "created", advisor, "Customer called")
        assert result.changed is False
        assert not StatusHistory.objects.filter(job=job).exists()

    def test_noop_still_checks_capability(self, job, viewer):
        from inspections.services.state import transition_job

        with pytest.raises(Forbidden):
            transition_job(job, "created", viewer, "note")


@pytest.mark.django_db
class TestCapabilities:
    def test_viewer_cannot_transition(self, make_job, viewer, technician):
        from inspections.services.state import transition_job

        job = make_job("tech_completed", technician=technician)
        with pytest.raises(Forbidden) as exc_info:
            transition_job(job, "awaiting_review", viewer)
        assert exc_info.value.status_code == 403

    def test_technician_limited_to_own_jobs(
        self, make_job, technician, second_technician
    ):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=second_technician)
        with pytest.raises(Forbidden):
            transition_job(job, "in_progress", technician)

    def test_technician_cannot_drive_advisor_states(
        self, make_job, technician
    ):
        from inspections.services.state import transition_job

        job = make_job("tech_completed", technician=technician)
        with pytest.raises(Forbidden):
            transition_job(job, "ready_to_send", technician)

    def test_advisor_cannot_cancel(self, job, advisor):
        from inspections.services.state import transition_job

        with pytest.raises(Forbidden):
            transition_job(job, "cancelled", advisor)

    def test_admin_can_cancel(self, job, admin_user):
        from inspections.services.state import transition_job

        result = transition_job(job, "cancelled", admin_user, "Duplicate")
        assert result.status == "cancelled"

    def test_system_limited_to_system_targets(self, job):
        from inspections.services.state import transition_job

        with pytest.raises(Forbidden):
            transition_job(job, "cancelled", actor=None)

    def test_technician_may_self_assign(self, job, technician):
        from inspections.services.state import transition_job

        result = transition_job(
            job, "assigned", technician, updates={"technician": technician}
        )
        assert result.status == "assigned"
        job.refresh_from_db()
        assert job.technician == technician


@pytest.mark.django_db
class TestGuards:
    def test_completed_only_through_close_gate(self, make_job, admin_user):
        from inspections.services.state import transition_job

        job = make_job("authorized")
        with pytest.raises(PreconditionFailed, match="closing"):
            transition_job(job, "completed", admin_user)

    def test_work_states_need_technician(self, make_job, admin_user):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=None)
        with pytest.raises(PreconditionFailed, match="technician"):
            transition_job(job, "in_progress", admin_user)

    def test_assigned_needs_technician(self, job, advisor):
        from inspections.services.state import transition_job

        with pytest.raises(PreconditionFailed, match="technician"):
            transition_job(job, "assigned", advisor)

    def test_sent_needs_public_token(self, make_job, advisor):
        from inspections.services.state import transition_job

        job = make_job("ready_to_send")
        with pytest.raises(PreconditionFailed, match="customer link"):
            transition_job(job, "sent", advisor)

    def test_sent_rejects_expired_link(self, make_job, advisor):
        from inspections.services.state import transition_job

        job = make_job(
            "expired",
            public_token="d" * 64,
            token_expires_at=timezone.now() - timedelta(days=1),
        )
        with pytest.raises(PreconditionFailed, match="expired"):
            transition_job(job, "sent", advisor)
        job.refresh_from_db()
        assert job.status == "expired"

    def test_sent_with_fresh_link(self, make_job, advisor):
        from inspections.services.state import transition_job

        job = make_job(
            "expired",
            public_token="d" * 64,
            token_expires_at=timezone.now() - timedelta(days=1),
        )
        result = transition_job(
            job,
            "sent",
            advisor,
            updates={
                "token_expires_at": timezone.now() + timedelta(days=7)
            },
        )
        assert result.status == "sent"

    def test_authorized_needs_item_outcomes(self, make_job, advisor):
        from inspections.services.state import transition_job

        job = make_job("ready_to_send")
        RepairItemFactory(job=job, outcome_status="authorised")
        pending = RepairItemFactory(job=job, name="Wipers")

        with pytest.raises(PreconditionFailed) as exc_info:
            transition_job(job, "authorized", advisor)
        assert exc_info.value.detail["undecided_items"] == [
            {"id": pending.pk, "name": "Wipers"}
        ]
        job.refresh_from_db()
        assert job.status == "ready_to_send"

        pending.outcome_status = "deferred"
        pending.save()
        result = transition_job(job, "authorized", advisor)
        assert result.status == "authorized"

    def test_declined_ignores_deleted_and_child_items(
        self, make_job, advisor
    ):
        from inspections.services.state import transition_job

        job = make_job("opened")
        group = RepairItemFactory(job=job, outcome_status="declined")
        RepairItemFactory(job=job, parent=group)
        RepairItemFactory(job=job, deleted_at=timezone.now())

        result = transition_job(job, "declined", advisor)
        assert result.status == "declined"

    def test_customer_response_skips_outcome_check(self, make_job):
        from inspections.services.state import transition_job

        job = make_job("opened")
        RepairItemFactory(job=job)
        result = transition_job(job, "authorized", actor=None)
        assert result.status == "authorized"


@pytest.mark.django_db
class TestLifecycleTimestamps:
    def test_technician_started_at_set_once(self, make_job, technician):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=technician)
        transition_job(job, "in_progress", technician)
        first_start = job.technician_started_at
        assert first_start is not None

        transition_job(job, "paused", technician)
        transition_job(job, "in_progress", technician)
        job.refresh_from_db()
        assert job.technician_started_at == first_start

    def test_arrival_from_booking(self, make_job, advisor):
        from inspections.services.state import transition_job

        job = make_job("awaiting_arrival")
        transition_job(job, "created", advisor)
        job.refresh_from_db()
        assert job.arrived_at is not None
        assert job.checked_in_at is None

    def test_fully_responded(self, make_job):
        from inspections.services.state import transition_job

        job = make_job("opened")
        transition_job(job, "authorized", actor=None)
        job.refresh_from_db()
        assert job.first_responded_at is not None
        assert job.fully_responded_at is not None


@pytest.mark.django_db
class TestSideEffects:
    def test_status_change_notified_after_commit(
        self, make_job, technician, django_capture_on_commit_callbacks
    ):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=technician)
        with patch(
            "inspections.services.notifications.notify_status_changed"
        ) as notify:
            with django_capture_on_commit_callbacks(execute=True):
                transition_job(job, "in_progress", technician)

        notify.assert_called_once_with(
            job, "assigned", "in_progress", technician
        )

    def test_nothing_dispatched_when_write_fails(
        self, make_job, advisor, technician, django_capture_on_commit_callbacks
    ):
        from inspections.services.state import transition_job

        job = make_job("tech_completed", technician=technician)
        InspectionJob.objects.filter(pk=job.pk).update(status="cancelled")

        with patch(
            "inspections.services.notifications.notify_status_changed"
        ) as notify:
            with django_capture_on_commit_callbacks(execute=True) as cbs:
                with pytest.raises(PreconditionFailed):
                    transition_job(job, "awaiting_review", advisor)

        assert cbs == []
        notify.assert_not_called()

    def test_failing_notifier_does_not_break_transition(
        self, make_job, technician, django_capture_on_commit_callbacks
    ):
        from inspections.services.state import transition_job

        def broken_notifier(*args, **kwargs):
            raise RuntimeError("channel layer down")

        job = make_job("assigned", technician=technician)
        with patch(
            "inspections.services.notifications.notify_status_changed",
            new=broken_notifier,
        ):
            with django_capture_on_commit_callbacks(execute=True):
                result = transition_job(job, "in_progress", technician)

        assert result.changed is True
        job.refresh_from_db()
        assert job.status == "in_progress"

    def test_tech_completed_queues_item_generation(
        self, make_job, technician, django_capture_on_commit_callbacks
    ):
        from inspections.services.state import transition_job

        job = make_job("in_progress", technician=technician)
        with patch(
            "inspections.tasks.auto_generate_repair_items.delay"
        ) as delay:
            with django_capture_on_commit_callbacks(execute=True):
                transition_job(job, "tech_completed", technician)

        delay.assert_called_once_with(job.pk)

    def test_full_response_cancels_reminders(
        self, make_job, django_capture_on_commit_callbacks
    ):
        from inspections.services.state import transition_job

        job = make_job("opened")
        with patch(
            "inspections.services.reminders.cancel_reminders"
        ) as cancel:
            with django_capture_on_commit_callbacks(execute=True):
                transition_job(job, "declined", actor=None)

        cancel.assert_called_once_with(job)


@pytest.mark.django_db
class TestInMemoryJob:
    def test_failed_write_leaves_job_untouched(self, make_job, technician):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=technician)
        with patch(
            "inspections.services.state.record_status_change",
            side_effect=RuntimeError("history table locked"),
        ):
            with pytest.raises(RuntimeError):
                transition_job(job, "in_progress", technician)

        assert job.status == "assigned"
        assert job.technician_started_at is None
        job.refresh_from_db()
        assert job.status == "assigned"

    def test_side_effects_see_committed_job(
        self, make_job, technician, django_capture_on_commit_callbacks
    ):
        from inspections.services.state import transition_job

        job = make_job("assigned", technician=technician)
        with patch(
            "inspections.services.notifications.notify_status_changed"
        ) as notify:
            with django_capture_on_commit_callbacks(execute=True):
                transition_job(job, "in_progress", technician)

        notified_job = notify.call_args.args[0]
        assert notified_job is not job
        assert notified_job.status == "in_progress"
        assert notified_job.technician_started_at is not None
