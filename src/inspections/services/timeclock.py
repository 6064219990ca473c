"""Technician clock-in/clock-out with stale session recovery."""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import Forbidden, NotClockedIn, PreconditionFailed
from ..models import InspectionJob, TimeEntry
from . import notifications
from .permissions import can_clock
from .state import transition_job

logger = logging.getLogger(__name__)

RESUMABLE_STATUSES = ("assigned", "paused")
CLOCKED_STATUSES = ("in_progress", "paused", "assigned")


@dataclass
class ClockResult:
    entry: TimeEntry
    job_status: str
    recovered_entry: Optional[TimeEntry] = None


def elapsed_minutes(start, end):
    """Whole minutes between two instants, rounded half up."""
    seconds = (end - start).total_seconds()
    return max(0, int(seconds / 60 + 0.5))


def _close_entry(entry, now, auto_closed=False):
    entry.clock_out_at = now
    entry.duration_minutes = elapsed_minutes(entry.clock_in_at, now)
    entry.auto_closed = auto_closed
    entry.save(
        update_fields=["clock_out_at", "duration_minutes", "auto_closed"]
    )
    return entry


def _check_capability(job, technician):
    if not can_clock(technician, job):
        raise Forbidden(
            "Only the assigned technician or an admin can clock in or out.",
            job_id=job.pk,
        )


def clock_in(job: InspectionJob, technician) -> ClockResult:
    """Start a work session for ``technician`` on ``job``.

    An entry left open by a crashed session is closed first, with its
    duration counted up to now. Moves an assigned or paused job to
    in_progress.
    """
    _check_capability(job, technician)

    with transaction.atomic():
        locked = InspectionJob.objects.select_for_update().get(pk=job.pk)
        now = timezone.now()

        recovered = (
            TimeEntry.objects.select_for_update()
            .filter(
                job=locked, technician=technician, clock_out_at__isnull=True
            )
            .first()
        )
        if recovered is not None:
            _close_entry(recovered, now, auto_closed=True)
            logger.warning(
                "Recovered open time entry %s for technician %s on job %s "
                "(%s min)",
                recovered.pk,
                technician.pk,
                locked.pk,
                recovered.duration_minutes,
            )

        try:
            with transaction.atomic():
                entry = TimeEntry.objects.create(
                    job=locked, technician=technician, clock_in_at=now
                )
        except IntegrityError:
            raise PreconditionFailed(
                "Already clocked in on this job.", job_id=locked.pk
            )

        if locked.status in RESUMABLE_STATUSES:
            transition_job(
                locked,
                "in_progress",
                actor=technician,
                note="Technician clocked in",
            )

        transaction.on_commit(
            lambda: notifications.notify_technician_clocked_in(
                locked, technician, entry
            )
        )

    job.refresh_from_db()
    return ClockResult(
        entry=entry, job_status=locked.status, recovered_entry=recovered
    )


def clock_out(job: InspectionJob, technician, complete=True) -> ClockResult:
    """End the technician's open session on ``job``.

    With ``complete`` the job moves to tech_completed, otherwise to
    paused. Raises NotClockedIn when there is no open entry.
    """
    _check_capability(job, technician)

    with transaction.atomic():
        locked = InspectionJob.objects.select_for_update().get(pk=job.pk)
        entry = (
            TimeEntry.objects.select_for_update()
            .filter(
                job=locked, technician=technician, clock_out_at__isnull=True
            )
            .first()
        )
        if entry is None:
            raise NotClockedIn(job_id=locked.pk, technician_id=technician.pk)

        _close_entry(entry, timezone.now())

        target = "tech_completed" if complete else "paused"
        if locked.status in CLOCKED_STATUSES and locked.status != target:
            transition_job(
                locked,
                target,
                actor=technician,
                note=(
                    "Technician completed check"
                    if complete
                    else "Technician clocked out (paused)"
                ),
            )

        transaction.on_commit(
            lambda: notifications.notify_technician_clocked_out(
                locked, technician, entry, complete
            )
        )

    job.refresh_from_db()
    return ClockResult(entry=entry, job_status=locked.status)


def job_time_summary(job: InspectionJob):
    entries = list(
        TimeEntry.objects.filter(job=job)
        .select_related("technician")
        .order_by("clock_in_at", "pk")
    )
    return {
        "entries": [
            {
                "id": entry.pk,
                "technician_id": entry.technician_id,
                "technician_name": entry.technician.get_display_name(),
                "clock_in_at": entry.clock_in_at.isoformat(),
                "clock_out_at": (
                    entry.clock_out_at.isoformat()
                    if entry.clock_out_at
                    else None
                ),
                "duration_minutes": entry.duration_minutes,
                "auto_closed": entry.auto_closed,
            }
            for entry in entries
        ],
        "total_minutes": sum(e.duration_minutes or 0 for e in entries),
        "open_entries": sum(1 for e in entries if e.is_open),
    }
