"""Best-effort audit trail for pricing and outcome mutations."""

import logging

from django.db import DatabaseError, transaction

from ..models import AuditLog

logger = logging.getLogger(__name__)


def log_audit(
    action,
    actor=None,
    resource_type="",
    resource_id="",
    metadata=None,
    actor_type=None,
):
    """Record an audit entry.

    Runs in its own savepoint so a failed insert never poisons the
    caller's transaction. Returns the entry, or None when it could not
    be written.
    """
    if actor_type is None:
        actor_type = "user" if actor is not None else "system"
    try:
        with transaction.atomic():
            return AuditLog.objects.create(
                action=action,
                actor=actor,
                actor_type=actor_type,
                resource_type=resource_type,
                resource_id=str(resource_id),
                metadata=metadata or {},
            )
    except DatabaseError:
        logger.exception(
            "Failed to write audit entry %s for %s:%s",
            action,
            resource_type,
            resource_id,
        )
        return None
