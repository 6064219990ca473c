"""Close gate: a job completes only when every repair item is settled."""

import logging

from django.db import transaction

from ..exceptions import Forbidden, IncompleteWork, PendingOutcomes
from ..models import InspectionJob, RepairItem
from .permissions import can_close_job
from .state import transition_job, validate_transition

logger = logging.getLogger(__name__)


def _item_ref(item):
    return {"id": item.pk, "name": item.name}


def find_blocking_items(job):
    """Return ``(pending, incomplete)`` item references.

    ``pending`` lists top-level items without a terminal outcome;
    ``incomplete`` lists authorised (or customer-approved) items whose
    work has not been marked complete.
    """
    items = list(
        RepairItem.objects.top_level().filter(job=job).order_by("pk")
    )
    pending = [
        _item_ref(item)
        for item in items
        if item.outcome_status not in RepairItem.TERMINAL_OUTCOMES
    ]
    incomplete = [
        _item_ref(item)
        for item in items
        if (
            item.outcome_status == "authorised"
            or item.customer_approved is True
        )
        and item.outcome_status not in ("declined", "deferred", "deleted")
        and item.work_completed_at is None
    ]
    return pending, incomplete


def check_can_close(job):
    """Raise PendingOutcomes or IncompleteWork if the job may not close."""
    pending, incomplete = find_blocking_items(job)
    if pending:
        raise PendingOutcomes(pending)
    if incomplete:
        raise IncompleteWork(incomplete)


def can_complete(job):
    """The close verdict without changing anything."""
    pending, incomplete = find_blocking_items(job)
    return {
        "can_complete": not pending and not incomplete,
        "pending_outcomes": pending,
        "incomplete_work": incomplete,
        "transition_allowed": job.can_transition_to("completed"),
    }


def close_job(job: InspectionJob, actor):
    """Close the job: status completed, closer and close time recorded."""
    if not can_close_job(actor):
        raise Forbidden(
            "Only service advisors can close a health check.",
            job_id=job.pk,
        )

    with transaction.atomic():
        locked = InspectionJob.objects.select_for_update().get(pk=job.pk)
        validate_transition(locked, "completed", actor, via_close_gate=True)
        check_can_close(locked)
        result = transition_job(
            locked,
            "completed",
            actor=actor,
            note="Health check closed by advisor",
            updates={"closed_by": actor},
            via_close_gate=True,
        )

    job.refresh_from_db()
    logger.info("Job %s closed by user %s", job.pk, actor.pk)
    return result
