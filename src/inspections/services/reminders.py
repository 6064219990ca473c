"""Customer follow-up reminders for sent health checks."""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..models import ReminderSchedule
from ..tasks import send_customer_reminder

logger = logging.getLogger(__name__)


def reminder_offsets(org_settings=None):
    """Return ``[(reminder_number, hours), ...]`` for an organization.

    An organization's ``reminder_schedule`` overrides the default
    hour offsets from settings.
    """
    custom = (org_settings or {}).get("reminder_schedule") or []
    if custom:
        return sorted(
            (int(entry["reminder_number"]), float(entry["hours"]))
            for entry in custom
        )
    return [
        (number, float(hours))
        for number, hours in enumerate(
            settings.VHC_DEFAULT_REMINDER_SCHEDULE, start=1
        )
    ]


def schedule_reminders(job, sent_at, expires_at, org_settings=None):
    """Queue reminders for a newly sent job.

    Any reminders still pending from an earlier send are cancelled
    first. Reminders that would fall at or after link expiry, or that
    are already in the past, are skipped. Returns the created rows.
    """
    now = timezone.now()
    created = []
    with transaction.atomic():
        cancel_reminders(job)
        for number, hours in reminder_offsets(org_settings):
            send_at = sent_at + timedelta(hours=hours)
            if expires_at and send_at >= expires_at:
                logger.debug(
                    "Skipping reminder %s for job %s: after link expiry",
                    number,
                    job.pk,
                )
                continue
            if send_at <= now:
                continue
            created.append(
                ReminderSchedule.objects.create(
                    job=job, reminder_number=number, send_at=send_at
                )
            )

    for reminder in created:
        result = send_customer_reminder.apply_async(
            args=[reminder.pk], eta=reminder.send_at
        )
        ReminderSchedule.objects.filter(pk=reminder.pk).update(
            task_id=result.id or ""
        )
        reminder.task_id = result.id or ""

    logger.info("Scheduled %d reminder(s) for job %s", len(created), job.pk)
    return created


def cancel_reminders(job):
    """Cancel every pending reminder for the job.

    Queued tasks re-check their row before sending, so marking the rows
    is enough. Returns the number cancelled.
    """
    cancelled = ReminderSchedule.objects.filter(
        job=job, status="pending"
    ).update(status="cancelled")
    if cancelled:
        logger.info("Cancelled %d reminder(s) for job %s", cancelled, job.pk)
    return cancelled
