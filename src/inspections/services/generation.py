"""Repair items generated from flagged inspection findings."""

import logging

from django.db import transaction
from django.db.models import Count, Q

from ..models import Finding, InspectionJob, RepairItem

logger = logging.getLogger(__name__)

FLAGGED_RAG = ("red", "amber")


def refresh_rag_counts(job):
    """Recount the job's red/amber/green findings."""
    counts = Finding.objects.filter(job=job).aggregate(
        red_count=Count("pk", filter=Q(rag_status="red")),
        amber_count=Count("pk", filter=Q(rag_status="amber")),
        green_count=Count("pk", filter=Q(rag_status="green")),
    )
    InspectionJob.objects.filter(pk=job.pk).update(**counts)
    for name, value in counts.items():
        setattr(job, name, value)
    return counts


def generate_items_from_findings(job, source=None):
    """Create one repair item per red or amber finding not yet linked
    to an item.

    Safe to run more than once: linked findings are skipped.
    """
    with transaction.atomic():
        findings = Finding.objects.select_for_update().filter(
            job=job,
            rag_status__in=FLAGGED_RAG,
            repair_item__isnull=True,
        )
        if source:
            findings = findings.filter(source=source)

        created = []
        for finding in findings:
            item = RepairItem.objects.create(
                job=job,
                name=finding.name,
                description=finding.description,
                rag_status=finding.rag_status,
            )
            Finding.objects.filter(pk=finding.pk).update(repair_item=item)
            created.append(item)

        refresh_rag_counts(job)

    if created:
        logger.info(
            "Generated %d repair item(s) for job %s from %s findings",
            len(created),
            job.pk,
            source or "all",
        )
    return created
