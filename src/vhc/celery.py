"""Celery configuration for the VHC workflow project."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "vhc.settings")

app = Celery("vhc")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

# Synced into django_celery_beat's tables by the DatabaseScheduler
app.conf.beat_schedule = {
    "expire-overdue-customer-links": {
        "task": "inspections.tasks.expire_overdue_links",
        "schedule": 60.0
        * int(os.environ.get("VHC_EXPIRY_SWEEP_MINUTES", "15")),
    },
}
