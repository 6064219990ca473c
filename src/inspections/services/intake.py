"""Job intake: booking, arrival, check-in and technician assignment."""

import logging

from django.db import transaction

from ..exceptions import Forbidden, PreconditionFailed
from ..models import InspectionJob
from .audit import log_audit
from .history import record_status_change
from .permissions import (
    can_manage_items,
    can_skip_checkin,
    get_user_role,
)
from .state import transition_job

logger = logging.getLogger(__name__)


def _require_status(job, *statuses, action):
    if job.status not in statuses:
        raise PreconditionFailed(
            f"Cannot {action} a job that is '{job.status}'.",
            current_status=job.status,
            expected_status=list(statuses),
        )


def initial_status(organization, technician=None, awaiting_arrival=False):
    if technician is not None:
        return "assigned"
    if organization.get_setting("checkin_enabled", False):
        return "awaiting_checkin"
    if awaiting_arrival:
        return "awaiting_arrival"
    return "created"


def create_job(
    organization,
    actor,
    *,
    vehicle=None,
    customer=None,
    site=None,
    technician=None,
    advisor=None,
    awaiting_arrival=False,
    notes="",
):
    """Open a health check and record its first history row."""
    if not can_manage_items(actor):
        raise Forbidden("Only service advisors can create health checks.")
    if site is not None and site.organization_id != organization.pk:
        raise PreconditionFailed(
            "The site belongs to another organization.", site_id=site.pk
        )

    status = initial_status(organization, technician, awaiting_arrival)
    with transaction.atomic():
        job = InspectionJob.objects.create(
            organization=organization,
            site=site,
            vehicle=vehicle,
            customer=customer or (vehicle.customer if vehicle else None),
            technician=technician,
            advisor=advisor or actor,
            status=status,
        )
        record_status_change(
            job, None, status, actor, notes or "Health check created"
        )
        log_audit(
            "job.create",
            actor,
            "inspection_job",
            job.pk,
            {"status": status},
        )
    logger.info("Job %s created as %s", job.pk, status)
    return job


def mark_arrived(job, actor, notes=""):
    """The booked vehicle is on site."""
    _require_status(job, "awaiting_arrival", action="mark arrived")
    target = (
        "awaiting_checkin"
        if job.organization.get_setting("checkin_enabled", False)
        else "created"
    )
    return transition_job(
        job, target, actor=actor, note=notes or "Vehicle arrived"
    )


def mark_no_show(job, actor, notes=""):
    _require_status(job, "awaiting_arrival", action="mark as no-show")
    return transition_job(
        job, "no_show", actor=actor, note=notes or "Vehicle did not arrive"
    )


def reschedule(job, actor, notes=""):
    _require_status(job, "no_show", action="reschedule")
    return transition_job(
        job,
        "awaiting_arrival",
        actor=actor,
        note=notes or "Booking rescheduled",
    )


def complete_checkin(job, actor, notes=""):
    """Finish check-in; flagged check-in findings become repair items."""
    _require_status(job, "awaiting_checkin", action="complete check-in")
    return transition_job(
        job, "created", actor=actor, note=notes or "Check-in completed"
    )


def skip_checkin(job, actor, reason=""):
    if not can_skip_checkin(actor):
        raise Forbidden(
            "Only an admin can skip check-in.",
            current_status=job.status,
            requested_status="created",
        )
    _require_status(job, "awaiting_checkin", action="skip check-in for")
    return transition_job(
        job,
        "created",
        actor=actor,
        note=f"Check-in skipped: {reason}" if reason else "Check-in skipped",
    )


def assign_technician(job, actor, technician):
    """Put ``technician`` on the job.

    A ``created`` job moves to ``assigned``; in any other open status
    only the technician changes. Technicians may only assign themselves.
    """
    role = get_user_role(actor)
    if role == "technician" and technician.pk != actor.pk:
        raise Forbidden(
            "Technicians can only assign themselves.", job_id=job.pk
        )
    if role == "viewer":
        raise Forbidden("You cannot assign technicians.", job_id=job.pk)
    if get_user_role(technician) not in ("technician", "admin"):
        raise PreconditionFailed(
            "That user is not a technician.", technician_id=technician.pk
        )

    if job.status == "created":
        return transition_job(
            job,
            "assigned",
            actor=actor,
            note=f"Assigned to {technician.get_display_name()}",
            updates={"technician": technician},
        )

    if job.status in InspectionJob.FINAL_STATUSES:
        raise PreconditionFailed(
            f"Cannot assign a technician to a job that is '{job.status}'.",
            current_status=job.status,
        )
    if role == "technician" and job.technician_id not in (None, actor.pk):
        raise Forbidden(
            "This job is assigned to another technician.", job_id=job.pk
        )

    previous = job.technician_id
    with transaction.atomic():
        rows = InspectionJob.objects.filter(
            pk=job.pk, status=job.status
        ).update(technician=technician)
        if rows == 0:
            raise PreconditionFailed(
                "The job was changed by someone else. Reload and try again.",
                current_status=job.status,
            )
        job.technician = technician
        log_audit(
            "job.assign",
            actor,
            "inspection_job",
            job.pk,
            {"from": previous, "to": technician.pk},
        )
    return None


def _cancel_reminders(job):
    from .reminders import cancel_reminders

    try:
        cancel_reminders(job)
    except Exception:
        logger.exception("Failed to cancel reminders for job %s", job.pk)


def cancel_job(job, actor, reason=""):
    with transaction.atomic():
        result = transition_job(
            job,
            "cancelled",
            actor=actor,
            note=f"Cancelled: {reason}" if reason else "Cancelled",
        )
        transaction.on_commit(lambda: _cancel_reminders(job))
    return result
