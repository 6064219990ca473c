"""Celery tasks for the inspections app."""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(OSError,),
    max_retries=3,
    retry_backoff=30,
    retry_backoff_max=300,
)
def send_customer_reminder(self, reminder_id: int):
    """Email the customer a reminder to review their health check.

    The row is re-checked here, so a reminder cancelled after it was
    queued is never delivered.
    """
    from django.conf import settings
    from django.core.mail import send_mail
    from django.utils import timezone

    from .models import InspectionJob, ReminderSchedule

    try:
        reminder = ReminderSchedule.objects.select_related(
            "job__customer", "job__vehicle"
        ).get(pk=reminder_id)
    except ReminderSchedule.DoesNotExist:
        return "missing"

    if reminder.status != "pending":
        return reminder.status

    # Early delivery from the broker (or eager mode): leave it queued
    if reminder.send_at > timezone.now():
        return "not_due"

    job = reminder.job
    email = job.customer.email if job.customer_id else ""
    if (
        job.status not in InspectionJob.AWAITING_RESPONSE_STATUSES
        or job.is_token_expired
        or not email
    ):
        ReminderSchedule.objects.filter(
            pk=reminder.pk, status="pending"
        ).update(status="skipped")
        return "skipped"

    registration = job.vehicle.registration if job.vehicle_id else ""
    send_mail(
        subject=f"Your vehicle health check {registration}".strip(),
        message=(
            "Your vehicle health check is waiting for your decision.\n\n"
            f"{settings.SITE_URL}/vhc/{job.public_token}/"
        ),
        from_email=None,
        recipient_list=[email],
    )
    ReminderSchedule.objects.filter(pk=reminder.pk, status="pending").update(
        status="sent", sent_at=timezone.now()
    )
    logger.info(
        "Sent reminder %s for job %s", reminder.reminder_number, job.pk
    )
    return "sent"


@shared_task
def expire_overdue_links():
    """Periodic sweep: move jobs whose customer link has lapsed to
    expired."""
    from .services.publishing import expire_overdue_links as sweep

    return sweep()


@shared_task
def auto_generate_repair_items(job_id: int):
    """Create repair items for flagged findings once the technician
    has finished."""
    from .models import InspectionJob
    from .services.generation import generate_items_from_findings

    try:
        job = InspectionJob.objects.get(pk=job_id)
    except InspectionJob.DoesNotExist:
        return 0
    return len(generate_items_from_findings(job, source="inspection"))


@shared_task
def auto_create_items_from_flagged_findings(job_id: int, organization_id: int):
    """Create repair items for findings flagged during check-in."""
    from .models import InspectionJob
    from .services.generation import generate_items_from_findings

    try:
        job = InspectionJob.objects.get(
            pk=job_id, organization_id=organization_id
        )
    except InspectionJob.DoesNotExist:
        logger.warning(
            "Check-in item generation: job %s not found in org %s",
            job_id,
            organization_id,
        )
        return 0
    return len(generate_items_from_findings(job, source="checkin"))
