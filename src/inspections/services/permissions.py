"""Workflow roles and per-transition capabilities."""

from django.contrib.auth import get_user_model

from ..models import InspectionJob

User = get_user_model()

# Statuses the system (no user) may drive: customer portal activity,
# pricing cascade and link expiry.
SYSTEM_TARGETS = frozenset(
    {
        "awaiting_pricing",
        "delivered",
        "opened",
        "partial_response",
        "authorized",
        "declined",
        "expired",
    }
)

# Clock-driven statuses belong to the technician doing the work.
TECHNICIAN_TARGETS = frozenset(
    {"assigned", "in_progress", "paused", "tech_completed"}
)

ADVISOR_TARGETS = frozenset(
    {
        "awaiting_arrival",
        "awaiting_checkin",
        "no_show",
        "created",
        "assigned",
        "awaiting_review",
        "awaiting_pricing",
        "awaiting_parts",
        "ready_to_send",
        "sent",
        "authorized",
        "declined",
        "completed",
    }
)

ADMIN_ONLY_TARGETS = frozenset({"cancelled"})


def get_user_role(user: User) -> str:
    """Determine the user's workflow role.

    Returns one of: 'admin', 'advisor', 'technician' or 'viewer'.

    Uses permission-based checks rather than group names, so
    deployments that rename groups keep working.
    """
    if user is None or not user.is_authenticated:
        return "viewer"

    if user.is_superuser:
        return "admin"

    if user.has_perm("inspections.can_override_workflow"):
        return "admin"

    if user.has_perm("inspections.can_advise_jobs"):
        return "advisor"

    if user.has_perm("inspections.can_inspect_vehicles"):
        return "technician"

    return "viewer"


def is_assigned_technician(user: User, job: InspectionJob) -> bool:
    return user is not None and job.technician_id == user.pk


def can_transition(
    user, job: InspectionJob, new_status: str, technician_id=None
) -> bool:
    """Check whether ``user`` may move ``job`` to ``new_status``.

    ``user=None`` means the system itself is acting. ``technician_id``
    overrides the job's technician when the same write assigns one.
    """
    if user is None:
        return new_status in SYSTEM_TARGETS

    role = get_user_role(user)

    if role == "admin":
        return True

    if new_status in ADMIN_ONLY_TARGETS:
        return False

    if role == "advisor":
        return new_status in ADVISOR_TARGETS

    if role == "technician":
        if technician_id is None:
            technician_id = job.technician_id
        return new_status in TECHNICIAN_TARGETS and technician_id == user.pk

    return False


def can_clock(user: User, job: InspectionJob) -> bool:
    """Only the assigned technician or an admin may clock in or out."""
    role = get_user_role(user)
    if role == "admin":
        return True
    return role == "technician" and is_assigned_technician(user, job)


def can_close_job(user: User) -> bool:
    return get_user_role(user) in ("admin", "advisor")


def can_manage_items(user: User) -> bool:
    """Pricing, outcomes and publishing are advisor work."""
    return get_user_role(user) in ("admin", "advisor")


def can_skip_checkin(user: User) -> bool:
    return get_user_role(user) == "admin"


def can_view_job(user: User, job: InspectionJob) -> bool:
    """Staff see only jobs in their own organization."""
    if user.is_superuser:
        return True
    return (
        user.organization_id is not None
        and user.organization_id == job.organization_id
    )
