"""JSON endpoints for workshop staff and the public customer portal."""

import functools
import json
import logging
from datetime import date

from django_ratelimit.decorators import ratelimit

from django.contrib.auth import get_user_model
from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .exceptions import NotFound, WorkflowError
from .models import InspectionJob, RepairItem
from .services import (
    closure,
    decisions,
    intake,
    outcomes,
    pricing,
    publishing,
    timeclock,
)
from .services.history import job_timeline
from .services.permissions import can_view_job, get_user_role
from .services.state import transition_job
from .services.workflow import job_workflow_summary

logger = logging.getLogger(__name__)

User = get_user_model()


class BadRequest(Exception):
    pass


def _json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, ValueError):
        raise BadRequest("Invalid JSON")
    if not isinstance(data, dict):
        raise BadRequest("Expected a JSON object")
    return data


def _validation_message(exc):
    return "; ".join(exc.messages) if exc.messages else str(exc)


def workflow_view(view):
    """Translate service rejections into JSON error responses."""

    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except WorkflowError as exc:
            return JsonResponse(exc.as_dict(), status=exc.status_code)
        except ValidationError as exc:
            return JsonResponse(
                {
                    "error": _validation_message(exc),
                    "code": "VALIDATION_ERROR",
                },
                status=400,
            )
        except BadRequest as exc:
            return JsonResponse(
                {"error": str(exc), "code": "BAD_REQUEST"}, status=400
            )

    return wrapper


def _job_for_user(request, job_id):
    """Load a job the user may see; other organizations' jobs 404."""
    job = (
        InspectionJob.objects.select_related(
            "organization", "site", "vehicle", "customer"
        )
        .filter(pk=job_id)
        .first()
    )
    if job is None or not can_view_job(request.user, job):
        raise NotFound("Health check not found.", job_id=job_id)
    return job


def _item_for_user(request, item_id):
    item = (
        RepairItem.objects.select_related("job")
        .filter(pk=item_id, deleted_at__isnull=True)
        .first()
    )
    if item is None or not can_view_job(request.user, item.job):
        raise NotFound("Repair item not found.", item_id=item_id)
    return item


def _job_payload(job):
    return {
        "id": job.pk,
        "status": job.status,
        "allowed_transitions": job.allowed_transitions,
        "technician_id": job.technician_id,
        "advisor_id": job.advisor_id,
        "sent_at": job.sent_at.isoformat() if job.sent_at else None,
        "token_expires_at": (
            job.token_expires_at.isoformat() if job.token_expires_at else None
        ),
        "closed_at": job.closed_at.isoformat() if job.closed_at else None,
        "total_amount": str(job.total_amount),
    }


def _result_payload(result):
    if result is None:
        return {"changed": False}
    return {
        "changed": result.changed,
        "previous_status": result.previous_status,
        "status": result.status,
    }


def _respond(job, result=None, **extra):
    job.refresh_from_db()
    return JsonResponse(
        {"job": _job_payload(job), **_result_payload(result), **extra}
    )


# --- Staff: jobs ----------------------------------------------------------


@login_required
@require_GET
@workflow_view
def job_detail(request, job_id):
    job = _job_for_user(request, job_id)
    return JsonResponse(
        {
            "job": _job_payload(job),
            "role": get_user_role(request.user),
            "timeline": job_timeline(job),
            "workflow": job_workflow_summary(job),
        }
    )


@login_required
@require_POST
@workflow_view
def job_change_status(request, job_id):
    """Generic status change, validated by the transition engine."""
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    new_status = data.get("status", "")
    if not new_status:
        raise BadRequest("status is required")
    result = transition_job(
        job, new_status, actor=request.user, note=data.get("notes", "")
    )
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_arrive(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = intake.mark_arrived(job, request.user, data.get("notes", ""))
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_no_show(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = intake.mark_no_show(job, request.user, data.get("notes", ""))
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_reschedule(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = intake.reschedule(job, request.user, data.get("notes", ""))
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_checkin(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    if data.get("skip"):
        result = intake.skip_checkin(
            job, request.user, data.get("reason", "")
        )
    else:
        result = intake.complete_checkin(
            job, request.user, data.get("notes", "")
        )
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_assign(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    technician_id = data.get("technician_id") or request.user.pk
    technician = User.objects.filter(pk=technician_id).first()
    if technician is None:
        raise NotFound("Technician not found.", technician_id=technician_id)
    result = intake.assign_technician(job, request.user, technician)
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_cancel(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = intake.cancel_job(job, request.user, data.get("reason", ""))
    return _respond(job, result)


# --- Staff: time tracking -------------------------------------------------


@login_required
@require_POST
@workflow_view
def job_clock_in(request, job_id):
    job = _job_for_user(request, job_id)
    result = timeclock.clock_in(job, request.user)
    return JsonResponse(
        {
            "time_entry_id": result.entry.pk,
            "clock_in_at": result.entry.clock_in_at.isoformat(),
            "job_status": result.job_status,
            "recovered_entry_id": (
                result.recovered_entry.pk if result.recovered_entry else None
            ),
        }
    )


@login_required
@require_POST
@workflow_view
def job_clock_out(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = timeclock.clock_out(
        job, request.user, complete=bool(data.get("complete", True))
    )
    return JsonResponse(
        {
            "time_entry_id": result.entry.pk,
            "duration_minutes": result.entry.duration_minutes,
            "job_status": result.job_status,
        }
    )


@login_required
@require_GET
@workflow_view
def job_time_entries(request, job_id):
    job = _job_for_user(request, job_id)
    return JsonResponse(timeclock.job_time_summary(job))


# --- Staff: closing, sending, authorization -------------------------------


@login_required
@require_GET
@workflow_view
def job_can_complete(request, job_id):
    job = _job_for_user(request, job_id)
    return JsonResponse(closure.can_complete(job))


@login_required
@require_POST
@workflow_view
def job_close(request, job_id):
    job = _job_for_user(request, job_id)
    result = closure.close_job(job, request.user)
    return _respond(job, result)


@login_required
@require_POST
@workflow_view
def job_publish(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = publishing.publish_job(
        job,
        request.user,
        expires_in_days=data.get("expires_in_days"),
        notes=data.get("notes", ""),
    )
    return _respond(job, result, public_token=job.public_token)


@login_required
@require_POST
@workflow_view
def job_authorize(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    result = outcomes.record_advisor_authorization(
        job, request.user, data.get("method", ""), data.get("notes", "")
    )
    return _respond(job, result)


# --- Staff: repair items --------------------------------------------------


def _parse_date(value):
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("deferred_until must be an ISO date.")


def _item_payload(item):
    return {
        "id": item.pk,
        "name": item.name,
        "labour_status": item.labour_status,
        "parts_status": item.parts_status,
        "quote_status": item.quote_status,
        "outcome_status": item.outcome_status,
        "customer_approved": item.customer_approved,
        "total_inc_vat": str(item.total_inc_vat),
        "work_completed_at": (
            item.work_completed_at.isoformat()
            if item.work_completed_at
            else None
        ),
    }


@login_required
@require_POST
@workflow_view
def item_outcome(request, item_id):
    """Set an advisor outcome on one repair item."""
    item = _item_for_user(request, item_id)
    data = _json_body(request)
    action = data.get("action", "")
    actor = request.user
    reason = data.get("reason", "")
    notes = data.get("notes", "")

    if action == "authorise":
        outcomes.authorise_item(item, actor)
    elif action == "defer":
        deferred_until = _parse_date(data.get("deferred_until"))
        outcomes.defer_item(item, actor, deferred_until, notes)
    elif action == "decline":
        outcomes.decline_item(item, actor, reason, notes)
    elif action == "delete":
        outcomes.delete_item(item, actor, reason, notes)
    elif action == "reset":
        outcomes.reset_item_outcome(item, actor)
    elif action == "work_complete":
        outcomes.mark_work_complete(item, actor)
    else:
        raise BadRequest(f"Unknown action '{action}'")
    return JsonResponse({"item": _item_payload(item)})


@login_required
@require_POST
@workflow_view
def job_bulk_outcome(request, job_id):
    job = _job_for_user(request, job_id)
    data = _json_body(request)
    action = data.get("action", "")
    item_ids = data.get("item_ids") or []
    actor = request.user
    reason = data.get("reason", "")
    notes = data.get("notes", "")

    if action == "authorise":
        items = outcomes.bulk_authorise(job, item_ids, actor)
    elif action == "defer":
        deferred_until = _parse_date(data.get("deferred_until"))
        items = outcomes.bulk_defer(
            job, item_ids, actor, deferred_until, notes
        )
    elif action == "decline":
        items = outcomes.bulk_decline(job, item_ids, actor, reason, notes)
    elif action == "delete":
        items = outcomes.bulk_delete(job, item_ids, actor, reason, notes)
    else:
        raise BadRequest(f"Unknown action '{action}'")
    return JsonResponse({"items": [_item_payload(i) for i in items]})


@login_required
@require_POST
@workflow_view
def item_add_labour(request, item_id):
    item = _item_for_user(request, item_id)
    data = _json_body(request)
    line = pricing.add_labour(
        request.user,
        item=item,
        description=data.get("description", ""),
        hours=data.get("hours", 0),
        rate=data.get("rate", 0),
        discount_percent=data.get("discount_percent", 0),
        is_vat_exempt=bool(data.get("is_vat_exempt", False)),
    )
    item.refresh_from_db()
    return JsonResponse(
        {"labour_id": line.pk, "item": _item_payload(item)}, status=201
    )


@login_required
@require_POST
@workflow_view
def item_add_part(request, item_id):
    item = _item_for_user(request, item_id)
    data = _json_body(request)
    line = pricing.add_part(
        request.user,
        item=item,
        description=data.get("description", ""),
        sell_price=data.get("sell_price", 0),
        quantity=data.get("quantity", 1),
        unit_cost=data.get("unit_cost", 0),
        part_number=data.get("part_number", ""),
    )
    item.refresh_from_db()
    return JsonResponse(
        {"part_id": line.pk, "item": _item_payload(item)}, status=201
    )


@login_required
@require_POST
@workflow_view
def item_complete_side(request, item_id, side):
    item = _item_for_user(request, item_id)
    if side == "labour":
        pricing.mark_labour_complete(item, request.user)
    elif side == "parts":
        pricing.mark_parts_complete(item, request.user)
    else:
        raise NotFound(f"Unknown work side '{side}'.")
    item.refresh_from_db()
    return JsonResponse({"item": _item_payload(item)})


# --- Public customer portal -----------------------------------------------


def _client_info(request):
    return decisions.ClientInfo(
        ip_address=request.META.get("REMOTE_ADDR"),
        user_agent=request.META.get("HTTP_USER_AGENT", ""),
    )


def _portal_payload(job):
    items = (
        RepairItem.objects.top_level()
        .filter(job=job)
        .prefetch_related("options")
        .order_by("pk")
    )
    return {
        "status": job.status,
        "registration": job.vehicle.registration if job.vehicle else "",
        "expires_at": job.token_expires_at.isoformat(),
        "items": [
            {
                "id": item.pk,
                "name": item.name,
                "description": item.description,
                "rag_status": item.rag_status,
                "total_inc_vat": str(item.total_inc_vat),
                "customer_approved": item.customer_approved,
                "options": [
                    {
                        "id": option.pk,
                        "name": option.name,
                        "is_recommended": option.is_recommended,
                        "total_inc_vat": str(option.total_inc_vat),
                    }
                    for option in item.options.all()
                ],
            }
            for item in items
        ],
    }


def _decision_response(job, result):
    job.refresh_from_db()
    return JsonResponse(
        {
            "status": job.status,
            "changed": result.changed,
            "total": result.counts.total,
            "decided": result.counts.decided,
            "approved": result.counts.approved,
            "declined": result.counts.declined,
        }
    )


@ratelimit(key="ip", rate="30/m", method="GET", block=True)
@require_GET
@workflow_view
def portal_view(request, token):
    job = decisions.get_job_for_token(token)
    decisions.record_customer_view(job)
    return JsonResponse(_portal_payload(job))


@csrf_exempt
@ratelimit(key="ip", rate="20/m", method="POST", block=True)
@require_POST
@workflow_view
def portal_approve_item(request, token, item_id):
    job = decisions.get_job_for_token(token)
    data = _json_body(request)
    _, result = decisions.approve_item(
        job,
        item_id,
        selected_option_id=data.get("selected_option_id"),
        notes=data.get("notes", ""),
        signature_data=data.get("signature_data", ""),
        client=_client_info(request),
    )
    return _decision_response(job, result)


@csrf_exempt
@ratelimit(key="ip", rate="20/m", method="POST", block=True)
@require_POST
@workflow_view
def portal_decline_item(request, token, item_id):
    job = decisions.get_job_for_token(token)
    data = _json_body(request)
    _, result = decisions.decline_item(
        job,
        item_id,
        reason=data.get("reason", ""),
        notes=data.get("notes", ""),
        client=_client_info(request),
    )
    return _decision_response(job, result)


@csrf_exempt
@ratelimit(key="ip", rate="10/m", method="POST", block=True)
@require_POST
@workflow_view
def portal_approve_all(request, token):
    job = decisions.get_job_for_token(token)
    data = _json_body(request)
    _, result = decisions.approve_all(
        job,
        selections=data.get("selections"),
        signature_data=data.get("signature_data", ""),
        client=_client_info(request),
    )
    return _decision_response(job, result)


@csrf_exempt
@ratelimit(key="ip", rate="10/m", method="POST", block=True)
@require_POST
@workflow_view
def portal_decline_all(request, token):
    job = decisions.get_job_for_token(token)
    data = _json_body(request)
    _, result = decisions.decline_all(
        job,
        reason=data.get("reason", ""),
        notes=data.get("notes", ""),
        client=_client_info(request),
    )
    return _decision_response(job, result)

