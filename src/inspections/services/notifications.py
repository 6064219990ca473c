"""Staff notifications over the channel layer.

Every send is fire-and-forget: failures are logged and never reach the
caller.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from django.utils import timezone

logger = logging.getLogger(__name__)


def _send(job, event, payload):
    message = {
        "type": "workflow.event",
        "event": event,
        "job_id": job.pk,
        "timestamp": timezone.now().isoformat(),
        **payload,
    }
    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return False
        async_to_sync(channel_layer.group_send)(
            job.notification_group, message
        )
    except Exception:
        logger.exception(
            "Failed to send %s notification for job %s", event, job.pk
        )
        return False
    return True


def notify_status_changed(job, from_status, to_status, actor=None):
    return _send(
        job,
        "status_changed",
        {
            "from_status": from_status,
            "to_status": to_status,
            "changed_by": actor.get_display_name() if actor else "system",
            "registration": job.vehicle.registration if job.vehicle_id else "",
        },
    )


def notify_technician_clocked_in(job, technician, entry):
    return _send(
        job,
        "technician_clocked_in",
        {
            "technician_id": technician.pk,
            "technician_name": technician.get_display_name(),
            "time_entry_id": entry.pk,
        },
    )


def notify_technician_clocked_out(job, technician, entry, completed):
    return _send(
        job,
        "technician_clocked_out",
        {
            "technician_id": technician.pk,
            "technician_name": technician.get_display_name(),
            "time_entry_id": entry.pk,
            "duration_minutes": entry.duration_minutes,
            "completed": completed,
        },
    )


def notify_customer_action(job, action, amounts):
    """``amounts`` maps labels to Decimal totals; sent as strings."""
    return _send(
        job,
        "customer_action",
        {
            "action": action,
            "amounts": {key: str(value) for key, value in amounts.items()},
        },
    )
