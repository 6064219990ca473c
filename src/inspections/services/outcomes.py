"""Advisor outcomes on repair items and advisor-recorded authorization."""

import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from ..exceptions import Forbidden, NotFound, PreconditionFailed
from ..models import CustomerDecision, InspectionJob, RepairItem
from .audit import log_audit
from .permissions import can_manage_items
from .state import transition_job, undecided_items

logger = logging.getLogger(__name__)

ADVISOR_AUTHORIZABLE_STATUSES = (
    "ready_to_send",
    "sent",
    "delivered",
    "opened",
    "partial_response",
    "expired",
)

OFFLINE_AUTHORIZATION_METHODS = ("in_person", "phone", "not_sent")

# Fields cleared whenever an outcome is replaced
_OUTCOME_DETAIL_RESET = {
    "deferred_until": None,
    "deferred_notes": "",
    "declined_reason": "",
    "declined_notes": "",
    "deleted_reason": "",
    "deleted_notes": "",
    "deleted_at": None,
    "deleted_by": None,
}


def _require_advisor(actor):
    if not can_manage_items(actor):
        raise Forbidden("Only service advisors can set repair outcomes.")


def _set_outcome(item, actor, outcome, action, metadata=None, **fields):
    values = dict(_OUTCOME_DETAIL_RESET)
    values.update(fields)
    values.update(
        outcome_status=outcome,
        outcome_set_by=actor,
        outcome_set_at=timezone.now(),
        outcome_source="manual",
    )
    with transaction.atomic():
        RepairItem.objects.filter(pk=item.pk).update(**values)
        item.refresh_from_db()
        log_audit(action, actor, "repair_item", item.pk, metadata)
    return item


def authorise_item(item, actor):
    _require_advisor(actor)
    return _set_outcome(
        item,
        actor,
        "authorised",
        "repair_item.authorise",
        customer_approved=True,
        customer_approved_at=timezone.now(),
    )


def defer_item(item, actor, deferred_until, notes=""):
    _require_advisor(actor)
    if deferred_until is None or deferred_until <= timezone.localdate():
        raise ValidationError("Deferred date must be in the future.")
    return _set_outcome(
        item,
        actor,
        "deferred",
        "repair_item.defer",
        {"deferred_until": deferred_until.isoformat()},
        deferred_until=deferred_until,
        deferred_notes=notes,
    )


def decline_item(item, actor, reason, notes=""):
    _require_advisor(actor)
    if not reason:
        raise ValidationError("A reason is required to decline an item.")
    return _set_outcome(
        item,
        actor,
        "declined",
        "repair_item.decline",
        {"reason": reason},
        declined_reason=reason,
        declined_notes=notes,
        customer_approved=False,
    )


def delete_item(item, actor, reason, notes=""):
    """Soft delete; the item and its children drop out of the close
    gate and customer aggregation."""
    _require_advisor(actor)
    if not reason:
        raise ValidationError("A reason is required to delete an item.")
    now = timezone.now()
    with transaction.atomic():
        _set_outcome(
            item,
            actor,
            "deleted",
            "repair_item.delete",
            {"reason": reason},
            deleted_reason=reason,
            deleted_notes=notes,
            deleted_at=now,
            deleted_by=actor,
        )
        item.children.filter(deleted_at__isnull=True).update(
            deleted_at=now, deleted_by=actor
        )
    return item


def reset_item_outcome(item, actor):
    """Return the item to ``ready``, discarding any recorded decision."""
    _require_advisor(actor)
    previous = item.outcome_status
    with transaction.atomic():
        removed, _ = CustomerDecision.objects.filter(
            repair_item=item
        ).delete()
        _set_outcome(
            item,
            actor,
            "ready",
            "repair_item.reset",
            {
                "previous_outcome": previous,
                "customer_decision_removed": bool(removed),
            },
            customer_approved=None,
            customer_approved_at=None,
            customer_declined_reason="",
        )
    return item


def mark_work_complete(item, actor):
    _require_advisor(actor)
    approved = (
        item.outcome_status == "authorised" or item.customer_approved is True
    )
    if not approved:
        raise PreconditionFailed(
            "Only authorised work can be marked complete.",
            item_id=item.pk,
            outcome_status=item.outcome_status,
        )
    with transaction.atomic():
        RepairItem.objects.filter(pk=item.pk).update(
            work_completed_at=timezone.now(), work_completed_by=actor
        )
        item.refresh_from_db()
        log_audit("repair_item.work_complete", actor, "repair_item", item.pk)
    return item


# --- Bulk -----------------------------------------------------------------


def _items_for_job(job, item_ids):
    if not isinstance(item_ids, (list, tuple)):
        raise ValidationError("item_ids must be a list of ids.")
    try:
        item_ids = [int(pk) for pk in item_ids]
    except (TypeError, ValueError):
        raise ValidationError("item_ids must be numeric ids.")
    items = list(RepairItem.objects.filter(job=job, pk__in=item_ids))
    missing = sorted(set(item_ids) - {item.pk for item in items})
    if missing:
        raise NotFound(
            "Some repair items were not found on this job.",
            missing_ids=missing,
        )
    return items


def _bulk(job, item_ids, actor, action, apply):
    _require_advisor(actor)
    with transaction.atomic():
        items = [apply(item) for item in _items_for_job(job, item_ids)]
        log_audit(
            action,
            actor,
            "inspection_job",
            job.pk,
            {"item_ids": [item.pk for item in items]},
        )
    return items


def bulk_authorise(job, item_ids, actor):
    return _bulk(
        job,
        item_ids,
        actor,
        "repair_item.bulk_authorise",
        lambda item: authorise_item(item, actor),
    )


def bulk_defer(job, item_ids, actor, deferred_until, notes=""):
    return _bulk(
        job,
        item_ids,
        actor,
        "repair_item.bulk_defer",
        lambda item: defer_item(item, actor, deferred_until, notes),
    )


def bulk_decline(job, item_ids, actor, reason, notes=""):
    return _bulk(
        job,
        item_ids,
        actor,
        "repair_item.bulk_decline",
        lambda item: decline_item(item, actor, reason, notes),
    )


def bulk_delete(job, item_ids, actor, reason, notes=""):
    return _bulk(
        job,
        item_ids,
        actor,
        "repair_item.bulk_delete",
        lambda item: delete_item(item, actor, reason, notes),
    )


# --- Advisor-recorded authorization ---------------------------------------


def record_advisor_authorization(job: InspectionJob, actor, method, notes=""):
    """Record an authorization taken in person or by phone.

    Every top-level item must already carry an authorised, declined or
    deferred outcome. The job becomes authorized when any item was
    authorised, otherwise declined.
    """
    _require_advisor(actor)
    if method not in OFFLINE_AUTHORIZATION_METHODS:
        raise ValidationError(
            f"Authorization method must be one of: "
            f"{', '.join(OFFLINE_AUTHORIZATION_METHODS)}."
        )

    with transaction.atomic():
        locked = InspectionJob.objects.select_for_update().get(pk=job.pk)
        if locked.status not in ADVISOR_AUTHORIZABLE_STATUSES:
            raise PreconditionFailed(
                f"Cannot record authorization while the job is "
                f"'{locked.status}'.",
                current_status=locked.status,
            )

        undecided = undecided_items(locked)
        if undecided:
            raise PreconditionFailed(
                "Every repair item needs an outcome before recording "
                "authorization.",
                undecided_items=undecided,
            )

        any_authorised = (
            RepairItem.objects.top_level()
            .filter(job=locked, outcome_status="authorised")
            .exists()
        )
        result = transition_job(
            locked,
            "authorized" if any_authorised else "declined",
            actor=actor,
            note=notes or f"Authorization recorded ({method})",
            updates={"authorization_method": method},
        )

    job.refresh_from_db()
    return result
