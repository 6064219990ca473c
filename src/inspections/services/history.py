"""Append-only status history for inspection jobs."""

from ..models import StatusHistory


def record_status_change(
    job, from_status, to_status, actor=None, notes="", source=None
):
    """Append one history row. ``from_status`` is None on creation."""
    if source is None:
        source = "user" if actor is not None else "system"
    return StatusHistory.objects.create(
        job=job,
        from_status=from_status,
        to_status=to_status,
        changed_by=actor,
        source=source,
        notes=notes or "",
    )


def job_timeline(job):
    """Return the job's history, oldest first, as plain dicts."""
    rows = job.history.select_related("changed_by").order_by(
        "created_at", "pk"
    )
    return [
        {
            "from_status": row.from_status,
            "to_status": row.to_status,
            "changed_by": (
                row.changed_by.get_display_name() if row.changed_by else None
            ),
            "source": row.source,
            "notes": row.notes,
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]
