"""Sending a health check to the customer and expiring stale links."""

import logging
import secrets
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..exceptions import PreconditionFailed, WorkflowError
from ..models import InspectionJob
from .audit import log_audit
from .state import transition_job

logger = logging.getLogger(__name__)

PUBLISHABLE_STATUSES = ("ready_to_send", "sent", "expired")


def generate_public_token():
    return secrets.token_hex(32)


def link_expiry_days(job, expires_in_days=None):
    if expires_in_days is not None:
        return int(expires_in_days)
    return int(
        job.organization.get_setting(
            "link_expiry_days", settings.VHC_LINK_EXPIRY_DAYS
        )
    )


def publish_job(job: InspectionJob, actor, expires_in_days=None, notes=""):
    """Issue a fresh customer link and move the job to ``sent``.

    Works from ready_to_send, and again from sent (re-send) or expired
    (re-issue). Any earlier link stops working.
    """
    if job.status not in PUBLISHABLE_STATUSES:
        raise PreconditionFailed(
            f"Cannot send a health check that is '{job.status}'.",
            current_status=job.status,
            requested_status="sent",
        )

    days = link_expiry_days(job, expires_in_days)
    if days < 1:
        raise PreconditionFailed(
            "Link expiry must be at least one day.", expires_in_days=days
        )

    token = generate_public_token()
    expires_at = timezone.now() + timedelta(days=days)
    resend = job.status != "ready_to_send"

    with transaction.atomic():
        result = transition_job(
            job,
            "sent",
            actor=actor,
            note=notes or ("Link re-sent" if resend else "Sent to customer"),
            updates={
                "public_token": token,
                "token_expires_at": expires_at,
                "expired_notification_sent_at": None,
            },
        )
        log_audit(
            "job.publish",
            actor,
            "inspection_job",
            job.pk,
            {"expires_at": expires_at.isoformat(), "resend": resend},
        )

    logger.info("Job %s sent to customer, link expires %s", job.pk, expires_at)
    return result


def expire_overdue_links(now=None):
    """Move jobs whose customer link has lapsed to ``expired``.

    Returns the number of jobs expired. A job that changes under the
    sweep is skipped and picked up next run if still overdue.
    """
    now = now or timezone.now()
    overdue = InspectionJob.objects.filter(
        status__in=InspectionJob.AWAITING_RESPONSE_STATUSES,
        token_expires_at__lte=now,
    ).select_related("organization", "vehicle")

    expired = 0
    for job in overdue:
        try:
            transition_job(
                job,
                "expired",
                actor=None,
                note="Customer link expired",
                updates={"expired_notification_sent_at": now},
            )
        except WorkflowError as exc:
            logger.info("Skipped expiring job %s: %s", job.pk, exc)
            continue
        expired += 1

    if expired:
        logger.info("Expired %d overdue customer links", expired)
    return expired
