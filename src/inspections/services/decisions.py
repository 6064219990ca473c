"""Customer portal decisions and the job-level response aggregator.

Customers act through a public token. Each decision is stored once per
repair item; after every decision the aggregator recomputes the job's
response status from the stored decisions, never from a delta, so it
can run any number of times and concurrently for the same job.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from ..exceptions import LinkExpired, NotFound, PreconditionFailed
from ..models import CustomerDecision, InspectionJob, RepairItem
from . import notifications
from .audit import log_audit
from .pricing import recalculate_totals
from .state import transition_job

logger = logging.getLogger(__name__)


@dataclass
class DecisionCounts:
    total: int
    decided: int
    approved: int
    declined: int


@dataclass
class AggregationResult:
    status: str
    changed: bool
    counts: DecisionCounts
    previous_status: str = ""


@dataclass
class ClientInfo:
    """Request metadata stored with a decision."""

    ip_address: str = None
    user_agent: str = ""
    extra: dict = field(default_factory=dict)


def target_status_for(counts: DecisionCounts):
    """Job status implied by the decision counts, or None for no change.

    A mix of approvals and declines counts as authorized: at least one
    approval leaves the workshop with work to do.
    """
    if counts.decided == 0:
        return None
    if counts.decided < counts.total:
        return "partial_response"
    if counts.declined == counts.total:
        return "declined"
    return "authorized"


def count_decisions(job) -> DecisionCounts:
    counts = RepairItem.objects.top_level().filter(job=job).aggregate(
        total=Count("pk"),
        decided=Count("pk", filter=Q(customer_approved__isnull=False)),
        approved=Count("pk", filter=Q(customer_approved=True)),
        declined=Count("pk", filter=Q(customer_approved=False)),
    )
    return DecisionCounts(**counts)


def aggregate_customer_decisions(job: InspectionJob) -> AggregationResult:
    """Fold the stored item decisions into the job's response status.

    Locks the job row and retries from fresh state when a concurrent
    writer wins the conditional update.
    """
    attempts = settings.VHC_DECISION_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                locked = InspectionJob.objects.select_for_update().get(
                    pk=job.pk
                )
                counts = count_decisions(locked)
                target = target_status_for(counts)
                previous = locked.status

                if target is None or target == previous:
                    return AggregationResult(previous, False, counts, previous)

                if not locked.can_transition_to(target):
                    logger.info(
                        "Job %s is %s; customer response %s not applied",
                        locked.pk,
                        previous,
                        target,
                    )
                    return AggregationResult(previous, False, counts, previous)

                transition_job(
                    locked,
                    target,
                    actor=None,
                    note=(
                        f"Customer responded: {counts.approved} approved, "
                        f"{counts.declined} declined of {counts.total}"
                    ),
                )
            job.refresh_from_db()
            return AggregationResult(target, True, counts, previous)
        except PreconditionFailed:
            if attempt == attempts:
                raise
            logger.info(
                "Job %s changed during decision aggregation, retrying (%d)",
                job.pk,
                attempt,
            )


def decision_amounts(job):
    """Approved and declined totals; approvals priced by the selected
    option when there is one."""
    approved = Decimal("0.00")
    declined = Decimal("0.00")
    items = (
        RepairItem.objects.top_level()
        .filter(job=job, customer_approved__isnull=False)
        .select_related("selected_option")
    )
    for item in items:
        if item.customer_approved:
            approved += item.effective_total
        else:
            declined += item.total_inc_vat
    return {"approved": approved, "declined": declined}


# --- Portal ---------------------------------------------------------------


def get_job_for_token(token):
    """Resolve a customer link. Raises NotFound or LinkExpired."""
    if not token:
        raise NotFound("Health check not found.")
    try:
        job = InspectionJob.objects.select_related(
            "organization", "vehicle", "customer"
        ).get(public_token=token)
    except InspectionJob.DoesNotExist:
        raise NotFound("Health check not found.")
    if job.is_token_expired:
        raise LinkExpired(
            "This health check link has expired. Please contact the "
            "workshop for a new link.",
            expired_at=job.token_expires_at.isoformat(),
        )
    return job


def record_customer_view(job):
    """Count a portal view; the first view marks the job opened."""
    now = timezone.now()
    InspectionJob.objects.filter(pk=job.pk).update(
        customer_view_count=F("customer_view_count") + 1,
        customer_last_viewed_at=now,
    )
    job.refresh_from_db()
    if job.status in ("sent", "delivered"):
        try:
            transition_job(
                job, "opened", actor=None, note="Customer opened the link"
            )
        except PreconditionFailed:
            # A concurrent view got there first
            job.refresh_from_db()
    return job


def _decidable_item(job, item_id):
    if job.status not in InspectionJob.AWAITING_RESPONSE_STATUSES:
        raise PreconditionFailed(
            "This health check is no longer awaiting your response.",
            current_status=job.status,
        )
    try:
        return RepairItem.objects.top_level().get(job=job, pk=item_id)
    except RepairItem.DoesNotExist:
        raise NotFound("Repair item not found.", item_id=item_id)


def _store_decision(item, decision, client, **fields):
    client = client or ClientInfo()
    try:
        with transaction.atomic():
            return CustomerDecision.objects.create(
                repair_item=item,
                decision=decision,
                ip_address=client.ip_address,
                user_agent=client.user_agent[:500],
                **fields,
            )
    except IntegrityError:
        raise PreconditionFailed(
            "A decision has already been recorded for this item.",
            item_id=item.pk,
        )


def _as_id(value, field_name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a numeric id.")


def _approve(job, item, option_id, notes, signature_data, client):
    options = list(item.options.all())
    option = None
    if options:
        if option_id is None:
            raise PreconditionFailed(
                "Please choose one of the options for this item.",
                item_id=item.pk,
                option_ids=[o.pk for o in options],
            )
        option_id = _as_id(option_id, "selected_option_id")
        option = next((o for o in options if o.pk == option_id), None)
        if option is None:
            raise NotFound(
                "That option does not belong to this item.",
                item_id=item.pk,
                option_id=option_id,
            )

    now = timezone.now()
    _store_decision(
        item,
        "approved",
        client,
        selected_option=option,
        notes=notes,
        signature_data=signature_data,
        decided_at=now,
    )
    RepairItem.objects.filter(pk=item.pk).update(
        customer_approved=True,
        customer_approved_at=now,
        selected_option=option,
        outcome_status="authorised",
        outcome_set_at=now,
        outcome_set_by=None,
        outcome_source="online",
    )
    item.refresh_from_db()
    if option is not None:
        recalculate_totals(item)
    log_audit(
        "repair_item.customer_approve",
        None,
        "repair_item",
        item.pk,
        {"option_id": option.pk if option else None},
        actor_type="customer",
    )
    return item


def _decline(job, item, reason, notes, client):
    now = timezone.now()
    _store_decision(
        item, "declined", client, reason=reason, notes=notes, decided_at=now
    )
    RepairItem.objects.filter(pk=item.pk).update(
        customer_approved=False,
        customer_approved_at=now,
        customer_declined_reason=reason,
        selected_option=None,
        outcome_status="declined",
        outcome_set_at=now,
        outcome_set_by=None,
        outcome_source="online",
        declined_reason=reason,
        declined_notes=notes,
    )
    item.refresh_from_db()
    log_audit(
        "repair_item.customer_decline",
        None,
        "repair_item",
        item.pk,
        {"reason": reason},
        actor_type="customer",
    )
    return item


def _finish(job, action):
    result = aggregate_customer_decisions(job)
    amounts = decision_amounts(job)
    transaction.on_commit(
        lambda: notifications.notify_customer_action(job, action, amounts)
    )
    return result


def approve_item(
    job,
    item_id,
    selected_option_id=None,
    notes="",
    signature_data="",
    client=None,
):
    """Customer approves one item, choosing an option if it has any."""
    with transaction.atomic():
        item = _decidable_item(job, item_id)
        _approve(job, item, selected_option_id, notes, signature_data, client)
        result = _finish(job, "approved")
    return item, result


def decline_item(job, item_id, reason="", notes="", client=None):
    with transaction.atomic():
        item = _decidable_item(job, item_id)
        _decline(job, item, reason, notes, client)
        result = _finish(job, "declined")
    return item, result


def _undecided_items(job):
    if job.status not in InspectionJob.AWAITING_RESPONSE_STATUSES:
        raise PreconditionFailed(
            "This health check is no longer awaiting your response.",
            current_status=job.status,
        )
    return list(
        RepairItem.objects.top_level()
        .filter(job=job, customer_approved__isnull=True)
        .prefetch_related("options")
    )


def _default_option(item):
    options = list(item.options.all())
    if not options:
        return None
    recommended = [o for o in options if o.is_recommended]
    return (recommended or options)[0].pk


def approve_all(job, selections=None, signature_data="", client=None):
    """Approve every undecided item.

    ``selections`` maps item id to option id; items with options but no
    selection get the recommended option, else the first.
    """
    selections = selections or {}
    if not isinstance(selections, dict):
        raise ValidationError("selections must map item ids to option ids.")
    selections = {
        _as_id(k, "selections"): v for k, v in selections.items()
    }
    with transaction.atomic():
        items = _undecided_items(job)
        for item in items:
            option_id = selections.get(item.pk) or _default_option(item)
            _approve(job, item, option_id, "", signature_data, client)
        result = _finish(job, "approved_all")
    return items, result


def decline_all(job, reason="", notes="", client=None):
    with transaction.atomic():
        items = _undecided_items(job)
        for item in items:
            _decline(job, item, reason, notes, client)
        result = _finish(job, "declined_all")
    return items, result
