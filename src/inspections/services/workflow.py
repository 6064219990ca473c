"""Derived labour, parts and quote status for repair items.

``derive_item_statuses`` is a pure function over an item's stored flags
and its current line counts. ``refresh_item_workflow`` feeds it from the
database and writes back only what changed, so it can be run any number
of times: with no intervening line change the second run is a no-op.
"""

import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from ..models import RepairItem, RepairLabour, RepairPart

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemState:
    labour_status: str
    parts_status: str
    quote_status: str
    no_labour_required: bool = False
    no_parts_required: bool = False
    has_decision: bool = False

    @classmethod
    def from_item(cls, item):
        return cls(
            labour_status=item.labour_status,
            parts_status=item.parts_status,
            quote_status=item.quote_status,
            no_labour_required=item.no_labour_required,
            no_parts_required=item.no_parts_required,
            has_decision=item.has_customer_decision,
        )


def _derive_side(status, line_count, not_required):
    """Return the new status for one side (labour or parts) and whether
    its completion record must be cleared."""
    if status == "pending" and line_count > 0:
        return "in_progress", False
    if status == "complete" and line_count == 0 and not not_required:
        return "pending", True
    if status == "in_progress" and line_count == 0:
        return "pending", False
    return status, False


def derive_item_statuses(state: ItemState, labour_count, parts_count) -> dict:
    """Return the fields that must change for the item to be consistent
    with its line counts. Empty when nothing changes.

    Completion is never inferred from lines; it is only ever removed
    when the lines behind it disappear.
    """
    changes = {}

    labour, clear_labour = _derive_side(
        state.labour_status, labour_count, state.no_labour_required
    )
    if labour != state.labour_status:
        changes["labour_status"] = labour
    if clear_labour:
        changes["labour_completed_by"] = None
        changes["labour_completed_at"] = None

    parts, clear_parts = _derive_side(
        state.parts_status, parts_count, state.no_parts_required
    )
    if parts != state.parts_status:
        changes["parts_status"] = parts
    if clear_parts:
        changes["parts_completed_by"] = None
        changes["parts_completed_at"] = None

    # A decided item keeps the quote the customer saw
    if not state.has_decision:
        both_complete = labour == "complete" and parts == "complete"
        if state.quote_status == "pending" and both_complete:
            changes["quote_status"] = "ready"
        elif state.quote_status == "ready" and not both_complete:
            changes["quote_status"] = "pending"

    return changes


def line_counts(item):
    """Labour and parts lines on the item and on any of its options."""
    owned = Q(repair_item=item) | Q(repair_option__repair_item=item)
    return (
        RepairLabour.objects.filter(owned).count(),
        RepairPart.objects.filter(owned).count(),
    )


def refresh_item_workflow(item: RepairItem) -> dict:
    """Recompute and persist the item's derived statuses.

    Returns the changed fields (empty when already consistent). The
    passed ``item`` is updated in place.
    """
    with transaction.atomic():
        locked = RepairItem.objects.select_for_update().get(pk=item.pk)
        labour_count, parts_count = line_counts(locked)
        changes = derive_item_statuses(
            ItemState.from_item(locked), labour_count, parts_count
        )
        if changes:
            RepairItem.objects.filter(pk=locked.pk).update(
                updated_at=timezone.now(), **changes
            )

    if changes:
        item.refresh_from_db()
        logger.debug("Repair item %s workflow: %s", item.pk, changes)
    return changes


def _summarise(statuses):
    if not statuses:
        return "na"
    if all(s == "complete" for s in statuses):
        return "complete"
    if any(s in ("in_progress", "complete") for s in statuses):
        return "in_progress"
    return "pending"


def job_workflow_summary(job):
    """Roll item statuses up to the job for staff dashboards."""
    items = list(
        RepairItem.objects.top_level()
        .filter(job=job)
        .values_list("labour_status", "parts_status", "quote_status")
    )
    if items:
        quotes = [q for _, _, q in items]
        if all(q == "ready" for q in quotes):
            quote = "complete"
        elif any(q == "ready" for q in quotes):
            quote = "in_progress"
        else:
            quote = "pending"
    else:
        quote = "na"
    return {
        "labour": _summarise([labour for labour, _, _ in items]),
        "parts": _summarise([parts for _, parts, _ in items]),
        "quote": quote,
        "sent": "complete" if job.sent_at else "pending",
        "item_count": len(items),
    }
