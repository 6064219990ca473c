"""Inspection job state machine and transition engine.

Every status change goes through ``transition_job``. It validates the
request against the transition table, the actor's capabilities and the
state guards (in that order), then writes the new status with a single
conditional UPDATE keyed on the status it observed, plus one history
row, in one transaction. Notifications, reminders and item generation
run only after that transaction commits.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..exceptions import Forbidden, InvalidTransition, PreconditionFailed
from ..models import InspectionJob, RepairItem, StatusHistory
from . import notifications
from .history import record_status_change
from .permissions import can_transition

logger = logging.getLogger(__name__)

# Statuses in which somebody has to be holding the spanner
TECHNICIAN_WORK_STATUSES = (
    "assigned",
    "in_progress",
    "paused",
    "tech_completed",
)

DECIDED_OUTCOMES = ("authorised", "declined", "deferred")


@dataclass
class TransitionResult:
    job: InspectionJob
    previous_status: str
    status: str
    history: Optional[StatusHistory]
    changed: bool


def _effective_technician_id(job, updates):
    if "technician" in updates:
        technician = updates["technician"]
        return technician.pk if technician is not None else None
    if "technician_id" in updates:
        return updates["technician_id"]
    return job.technician_id


def _check_guards(job, new_status, actor, updates, via_close_gate):
    if new_status == "completed" and not via_close_gate:
        raise PreconditionFailed(
            "Jobs can only be completed by closing them.",
            current_status=job.status,
            requested_status=new_status,
        )

    if (
        new_status in TECHNICIAN_WORK_STATUSES
        and _effective_technician_id(job, updates) is None
    ):
        raise PreconditionFailed(
            "A technician must be assigned first.",
            current_status=job.status,
            requested_status=new_status,
        )

    if new_status == "sent":
        token = updates.get("public_token", job.public_token)
        expires_at = updates.get("token_expires_at", job.token_expires_at)
        if not token or not expires_at:
            raise PreconditionFailed(
                "The job needs a customer link before it can be sent.",
                current_status=job.status,
                requested_status=new_status,
            )
        if expires_at <= timezone.now():
            raise PreconditionFailed(
                "The customer link has expired. Publish a new link.",
                current_status=job.status,
                requested_status=new_status,
                token_expires_at=expires_at.isoformat(),
            )

    if (
        new_status in InspectionJob.FULLY_RESPONDED_STATUSES
        and actor is not None
    ):
        undecided = undecided_items(job)
        if undecided:
            raise PreconditionFailed(
                "Every repair item needs an outcome before recording "
                "authorization.",
                current_status=job.status,
                requested_status=new_status,
                undecided_items=undecided,
            )


def undecided_items(job):
    """Top-level items without an authorised, declined or deferred
    outcome."""
    return [
        {"id": item.pk, "name": item.name}
        for item in RepairItem.objects.top_level()
        .filter(job=job)
        .exclude(outcome_status__in=DECIDED_OUTCOMES)
        .order_by("pk")
    ]


def validate_transition(
    job: InspectionJob,
    new_status: str,
    actor=None,
    *,
    updates=None,
    via_close_gate=False,
) -> None:
    """Validate and raise if the status transition is not allowed.

    Raises InvalidTransition, Forbidden or PreconditionFailed.
    """
    updates = updates or {}

    if new_status not in dict(InspectionJob.STATUS_CHOICES):
        raise InvalidTransition(
            job.status,
            new_status,
            job.allowed_transitions,
            message=f"'{new_status}' is not a valid status.",
        )

    if not job.can_transition_to(new_status):
        raise InvalidTransition(
            job.status, new_status, job.allowed_transitions
        )

    if not can_transition(
        actor,
        job,
        new_status,
        technician_id=_effective_technician_id(job, updates),
    ):
        raise Forbidden(
            f"You cannot move this job to '{new_status}'.",
            current_status=job.status,
            requested_status=new_status,
        )

    _check_guards(job, new_status, actor, updates, via_close_gate)


def _lifecycle_updates(job, previous, new_status, now):
    """Timestamps recorded by each status change."""
    updates = {}
    if new_status == "awaiting_checkin":
        updates["arrived_at"] = now
    elif new_status == "created":
        if previous == "awaiting_arrival":
            updates["arrived_at"] = now
        elif previous == "awaiting_checkin":
            updates["checked_in_at"] = now
    elif new_status == "in_progress":
        # First start only; resuming after a pause keeps the original
        if job.technician_started_at is None:
            updates["technician_started_at"] = now
    elif new_status == "tech_completed":
        updates["technician_completed_at"] = now
    elif new_status == "sent":
        updates["sent_at"] = now
    elif new_status == "opened":
        if job.first_opened_at is None:
            updates["first_opened_at"] = now
    elif new_status == "partial_response":
        if job.first_responded_at is None:
            updates["first_responded_at"] = now
    elif new_status in InspectionJob.FULLY_RESPONDED_STATUSES:
        if job.first_responded_at is None:
            updates["first_responded_at"] = now
        updates["fully_responded_at"] = now
    elif new_status == "completed":
        updates["closed_at"] = now
    return updates


def _safely(effect, job, *args):
    try:
        effect(job, *args)
    except Exception:
        logger.exception(
            "Side effect %s failed for job %s", effect.__name__, job.pk
        )


def _schedule_job_reminders(job):
    from .reminders import schedule_reminders

    org = job.organization
    if not org.get_setting("reminders_enabled", True):
        return
    schedule_reminders(job, job.sent_at, job.token_expires_at, org.settings)


def _cancel_job_reminders(job):
    from .reminders import cancel_reminders

    cancel_reminders(job)


def _enqueue_item_generation(job):
    from ..tasks import auto_generate_repair_items

    auto_generate_repair_items.delay(job.pk)


def _enqueue_checkin_items(job):
    from ..tasks import auto_create_items_from_flagged_findings

    auto_create_items_from_flagged_findings.delay(
        job.pk, job.organization_id
    )


def _dispatch_side_effects(job_id, previous, new_status, actor):
    job = (
        InspectionJob.objects.select_related("organization")
        .filter(pk=job_id)
        .first()
    )
    if job is None:
        logger.warning("Job %s vanished before side effects ran", job_id)
        return
    _safely(
        notifications.notify_status_changed, job, previous, new_status, actor
    )
    if new_status == "sent":
        _safely(_schedule_job_reminders, job)
    elif new_status in InspectionJob.FULLY_RESPONDED_STATUSES:
        _safely(_cancel_job_reminders, job)
    elif new_status == "tech_completed":
        _safely(_enqueue_item_generation, job)
    elif new_status == "created" and previous == "awaiting_checkin":
        _safely(_enqueue_checkin_items, job)


def _record_noop(job, actor, note, source):
    if not can_transition(actor, job, job.status):
        raise Forbidden(
            f"You cannot move this job to '{job.status}'.",
            current_status=job.status,
            requested_status=job.status,
        )
    history = None
    if note and settings.VHC_RECORD_NOOP_WITH_NOTE:
        history = record_status_change(
            job, job.status, job.status, actor, note, source
        )
    return TransitionResult(job, job.status, job.status, history, False)


def transition_job(
    job: InspectionJob,
    new_status: str,
    actor=None,
    note: str = "",
    *,
    source: Optional[str] = None,
    updates: Optional[dict] = None,
    via_close_gate: bool = False,
) -> TransitionResult:
    """Validate and perform a status transition.

    ``actor=None`` means the system is acting. ``updates`` are extra
    job fields written in the same conditional UPDATE (tokens, closer,
    technician). Re-requesting the current status is a no-op unless the
    table lists it as a self-edge (a re-send).

    Returns a TransitionResult; the passed ``job`` is updated in place
    once the write succeeds. If an enclosing transaction later rolls
    back, callers must refresh ``job`` from the database.
    Raises InvalidTransition, Forbidden or PreconditionFailed without
    writing anything.
    """
    updates = dict(updates or {})
    previous = job.status

    if new_status == previous and not job.can_transition_to(new_status):
        return _record_noop(job, actor, note, source)

    validate_transition(
        job,
        new_status,
        actor,
        updates=updates,
        via_close_gate=via_close_gate,
    )

    now = timezone.now()
    fields = _lifecycle_updates(job, previous, new_status, now)
    fields.update(updates)
    fields["status"] = new_status
    fields["updated_at"] = now

    with transaction.atomic():
        rows = InspectionJob.objects.filter(
            pk=job.pk, status=previous
        ).update(**fields)
        if rows == 0:
            raise PreconditionFailed(
                "The job was changed by someone else. Reload and try again.",
                current_status=previous,
                requested_status=new_status,
            )
        history = record_status_change(
            job, previous, new_status, actor, note, source
        )
        transaction.on_commit(
            lambda: _dispatch_side_effects(
                job.pk, previous, new_status, actor
            )
        )

    for name, value in fields.items():
        setattr(job, name, value)

    logger.info(
        "Job %s: %s -> %s by %s",
        job.pk,
        previous,
        new_status,
        actor.pk if actor else "system",
    )
    return TransitionResult(job, previous, new_status, history, True)
