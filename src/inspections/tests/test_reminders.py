"""Tests for customer reminder scheduling and delivery."""

from datetime import timedelta

import pytest

from django.core import mail
from django.utils import timezone

from inspections.models import ReminderSchedule


class TestReminderOffsets:
    def test_defaults_from_settings(self, settings):
        from inspections.services.reminders import reminder_offsets

        settings.VHC_DEFAULT_REMINDER_SCHEDULE = [4, 24]
        assert reminder_offsets() == [(1, 4.0), (2, 24.0)]

    def test_organization_override_sorted(self):
        from inspections.services.reminders import reminder_offsets

        custom = {
            "reminder_schedule": [
                {"reminder_number": 2, "hours": 72},
                {"reminder_number": 1, "hours": 12},
            ]
        }
        assert reminder_offsets(custom) == [(1, 12.0), (2, 72.0)]


@pytest.mark.django_db
class TestScheduleReminders:
    def test_skips_reminders_after_expiry(self, make_job, settings):
        from inspections.services.reminders import schedule_reminders

        settings.VHC_DEFAULT_REMINDER_SCHEDULE = [4, 24, 48]
        job = make_job("sent")
        now = timezone.now()

        created = schedule_reminders(job, now, now + timedelta(hours=30))

        assert [r.reminder_number for r in created] == [1, 2]
        assert all(r.status == "pending" for r in created)
        assert all(r.task_id for r in created)

    def test_skips_reminders_in_the_past(self, make_job, settings):
        from inspections.services.reminders import schedule_reminders

        settings.VHC_DEFAULT_REMINDER_SCHEDULE = [4, 24]
        job = make_job("sent")
        sent_at = timezone.now() - timedelta(hours=10)

        created = schedule_reminders(job, sent_at, None)
        assert [r.reminder_number for r in created] == [2]

    def test_resend_cancels_earlier_reminders(self, make_job):
        from inspections.services.reminders import schedule_reminders

        job = make_job("sent")
        now = timezone.now()
        first = schedule_reminders(job, now, now + timedelta(days=7))
        schedule_reminders(job, now, now + timedelta(days=7))

        for reminder in first:
            reminder.refresh_from_db()
            assert reminder.status == "cancelled"
        assert ReminderSchedule.objects.filter(
            job=job, status="pending"
        ).count() == len(first)

    def test_cancel_leaves_sent_rows(self, make_job):
        from inspections.services.reminders import cancel_reminders

        job = make_job("sent")
        now = timezone.now()
        ReminderSchedule.objects.create(
            job=job, reminder_number=1, send_at=now, status="sent"
        )
        ReminderSchedule.objects.create(
            job=job, reminder_number=2, send_at=now + timedelta(hours=4)
        )

        assert cancel_reminders(job) == 1
        assert set(
            ReminderSchedule.objects.values_list("status", flat=True)
        ) == {"sent", "cancelled"}


@pytest.mark.django_db
class TestSendCustomerReminder:
    def _reminder(self, job, **kwargs):
        kwargs.setdefault("send_at", timezone.now() - timedelta(minutes=1))
        return ReminderSchedule.objects.create(
            job=job, reminder_number=1, **kwargs
        )

    def _live_job(self, make_job, status="sent"):
        return make_job(
            status,
            public_token="d" * 64,
            token_expires_at=timezone.now() + timedelta(days=2),
        )

    def test_sends_email(self, make_job, settings):
        from inspections.tasks import send_customer_reminder

        settings.SITE_URL = "https://vhc.example.com"
        job = self._live_job(make_job)
        reminder = self._reminder(job)

        assert send_customer_reminder.delay(reminder.pk).get() == "sent"

        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == [job.customer.email]
        assert f"https://vhc.example.com/vhc/{'d' * 64}/" in message.body
        reminder.refresh_from_db()
        assert reminder.status == "sent"
        assert reminder.sent_at is not None

    def test_missing_reminder(self, db):
        from inspections.tasks import send_customer_reminder

        assert send_customer_reminder.delay(999999).get() == "missing"

    def test_not_due_yet(self, make_job):
        from inspections.tasks import send_customer_reminder

        job = self._live_job(make_job)
        reminder = self._reminder(
            job, send_at=timezone.now() + timedelta(hours=1)
        )

        assert send_customer_reminder.delay(reminder.pk).get() == "not_due"
        reminder.refresh_from_db()
        assert reminder.status == "pending"

    def test_cancelled_reminder_not_sent(self, make_job):
        from inspections.tasks import send_customer_reminder

        job = self._live_job(make_job)
        reminder = self._reminder(job, status="cancelled")

        assert send_customer_reminder.delay(reminder.pk).get() == "cancelled"
        assert mail.outbox == []

    def test_skipped_once_customer_responded(self, make_job):
        from inspections.tasks import send_customer_reminder

        job = self._live_job(make_job, status="authorized")
        reminder = self._reminder(job)

        assert send_customer_reminder.delay(reminder.pk).get() == "skipped"
        reminder.refresh_from_db()
        assert reminder.status == "skipped"
        assert mail.outbox == []

    def test_skipped_without_customer_email(self, make_job):
        from inspections.tasks import send_customer_reminder

        job = self._live_job(make_job)
        job.customer.email = ""
        job.customer.save()
        reminder = self._reminder(job)

        assert send_customer_reminder.delay(reminder.pk).get() == "skipped"
