from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import inspections.models

JOB_STATUS_CHOICES = [
    ("awaiting_arrival", "Awaiting Arrival"),
    ("awaiting_checkin", "Awaiting Check-in"),
    ("no_show", "No Show"),
    ("created", "Created"),
    ("assigned", "Assigned"),
    ("in_progress", "In Progress"),
    ("paused", "Paused"),
    ("tech_completed", "Technician Completed"),
    ("awaiting_review", "Awaiting Review"),
    ("awaiting_pricing", "Awaiting Pricing"),
    ("awaiting_parts", "Awaiting Parts"),
    ("ready_to_send", "Ready to Send"),
    ("sent", "Sent"),
    ("delivered", "Delivered"),
    ("opened", "Opened"),
    ("partial_response", "Partial Response"),
    ("authorized", "Authorized"),
    ("declined", "Declined"),
    ("expired", "Expired"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
]

RAG_CHOICES = [("red", "Red"), ("amber", "Amber"), ("green", "Green")]

WORK_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("in_progress", "In Progress"),
    ("complete", "Complete"),
]

ZERO = Decimal("0.00")


def money():
    return models.DecimalField(decimal_places=2, default=ZERO, max_digits=10)


def user_fk(related_name="+"):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
    )


def auto_id():
    return models.BigAutoField(
        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", auto_id()),
                ("name", models.CharField(max_length=200, unique=True)),
                (
                    "settings",
                    models.JSONField(
                        blank=True,
                        default=inspections.models.default_org_settings,
                        help_text=(
                            "Workflow options: checkin_enabled, "
                            "reminders_enabled, reminder_schedule "
                            "([{hours, reminder_number}]), "
                            "link_expiry_days"
                        ),
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Site",
            fields=[
                ("id", auto_id()),
                ("name", models.CharField(max_length=200)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sites",
                        to="inspections.organization",
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("organization", "name"),
                        name="unique_site_name_per_org",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", auto_id()),
                ("first_name", models.CharField(max_length=100)),
                ("last_name", models.CharField(blank=True, max_length=100)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("mobile", models.CharField(blank=True, max_length=30)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="customers",
                        to="inspections.organization",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Vehicle",
            fields=[
                ("id", auto_id()),
                (
                    "registration",
                    models.CharField(db_index=True, max_length=20),
                ),
                ("make", models.CharField(blank=True, max_length=100)),
                ("model", models.CharField(blank=True, max_length=100)),
                (
                    "customer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="vehicles",
                        to="inspections.customer",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="InspectionJob",
            fields=[
                ("id", auto_id()),
                (
                    "status",
                    models.CharField(
                        choices=JOB_STATUS_CHOICES,
                        default="created",
                        max_length=20,
                    ),
                ),
                ("arrived_at", models.DateTimeField(blank=True, null=True)),
                (
                    "checked_in_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "technician_started_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "technician_completed_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                (
                    "first_opened_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "first_responded_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "fully_responded_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "public_token",
                    models.CharField(
                        blank=True, max_length=64, null=True, unique=True
                    ),
                ),
                (
                    "token_expires_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "expired_notification_sent_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "customer_view_count",
                    models.PositiveIntegerField(default=0),
                ),
                (
                    "customer_last_viewed_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "authorization_method",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("online", "Online"),
                            ("in_person", "In Person"),
                            ("phone", "Phone"),
                            ("not_sent", "Not Sent"),
                        ],
                        max_length=20,
                    ),
                ),
                ("red_count", models.PositiveIntegerField(default=0)),
                ("amber_count", models.PositiveIntegerField(default=0)),
                ("green_count", models.PositiveIntegerField(default=0)),
                ("total_labour", money()),
                ("total_parts", money()),
                ("total_amount", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="jobs",
                        to="inspections.organization",
                    ),
                ),
                (
                    "site",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="inspections.site",
                    ),
                ),
                (
                    "vehicle",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="inspections.vehicle",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="inspections.customer",
                    ),
                ),
                ("technician", user_fk("assigned_jobs")),
                ("advisor", user_fk("advised_jobs")),
                ("closed_by", user_fk("closed_jobs")),
            ],
            options={
                "ordering": ["-created_at"],
                "permissions": [
                    (
                        "can_override_workflow",
                        "Can cancel jobs and skip check-in",
                    ),
                    (
                        "can_advise_jobs",
                        "Can price, send, authorize and close inspection "
                        "jobs",
                    ),
                    (
                        "can_inspect_vehicles",
                        "Can clock in and complete vehicle inspections",
                    ),
                ],
                "indexes": [
                    models.Index(fields=["status"], name="idx_job_status"),
                    models.Index(
                        fields=["status", "token_expires_at"],
                        name="idx_job_status_token_expiry",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StatusHistory",
            fields=[
                ("id", auto_id()),
                (
                    "from_status",
                    models.CharField(
                        blank=True,
                        choices=JOB_STATUS_CHOICES,
                        help_text=(
                            "Empty for the row written when the job is "
                            "created"
                        ),
                        max_length=20,
                        null=True,
                    ),
                ),
                (
                    "to_status",
                    models.CharField(
                        choices=JOB_STATUS_CHOICES, max_length=20
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[("user", "User"), ("system", "System")],
                        default="user",
                        max_length=10,
                    ),
                ),
                ("notes", models.TextField(blank=True)),
                (
                    "created_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="history",
                        to="inspections.inspectionjob",
                    ),
                ),
                ("changed_by", user_fk("status_changes")),
            ],
            options={
                "ordering": ["created_at", "pk"],
                "verbose_name_plural": "status history",
            },
        ),
        migrations.CreateModel(
            name="TimeEntry",
            fields=[
                ("id", auto_id()),
                (
                    "clock_in_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "clock_out_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "duration_minutes",
                    models.PositiveIntegerField(blank=True, null=True),
                ),
                (
                    "auto_closed",
                    models.BooleanField(
                        default=False,
                        help_text=(
                            "Closed by a later clock-in rather than a "
                            "clock-out"
                        ),
                    ),
                ),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="time_entries",
                        to="inspections.inspectionjob",
                    ),
                ),
                (
                    "technician",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="time_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["clock_in_at", "pk"],
                "verbose_name_plural": "time entries",
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(clock_out_at__isnull=True),
                        fields=("job", "technician"),
                        name="unique_open_time_entry",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RepairItem",
            fields=[
                ("id", auto_id()),
                ("is_group", models.BooleanField(default=False)),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                (
                    "rag_status",
                    models.CharField(
                        blank=True, choices=RAG_CHOICES, max_length=5
                    ),
                ),
                (
                    "labour_status",
                    models.CharField(
                        choices=WORK_STATUS_CHOICES,
                        default="pending",
                        max_length=12,
                    ),
                ),
                (
                    "parts_status",
                    models.CharField(
                        choices=WORK_STATUS_CHOICES,
                        default="pending",
                        max_length=12,
                    ),
                ),
                (
                    "quote_status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("ready", "Ready")],
                        default="pending",
                        max_length=12,
                    ),
                ),
                ("labour_completed_by", user_fk()),
                (
                    "labour_completed_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("parts_completed_by", user_fk()),
                (
                    "parts_completed_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("no_labour_required", models.BooleanField(default=False)),
                ("no_labour_required_by", user_fk()),
                (
                    "no_labour_required_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("no_parts_required", models.BooleanField(default=False)),
                ("no_parts_required_by", user_fk()),
                (
                    "no_parts_required_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "outcome_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("ready", "Ready"),
                            ("incomplete", "Incomplete"),
                            ("authorised", "Authorised"),
                            ("deferred", "Deferred"),
                            ("declined", "Declined"),
                            ("deleted", "Deleted"),
                        ],
                        max_length=12,
                        null=True,
                    ),
                ),
                ("outcome_set_by", user_fk()),
                (
                    "outcome_set_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "outcome_source",
                    models.CharField(
                        blank=True,
                        choices=[("manual", "Manual"), ("online", "Online")],
                        max_length=10,
                    ),
                ),
                ("deferred_until", models.DateField(blank=True, null=True)),
                ("deferred_notes", models.TextField(blank=True)),
                (
                    "declined_reason",
                    models.CharField(blank=True, max_length=200),
                ),
                ("declined_notes", models.TextField(blank=True)),
                (
                    "deleted_reason",
                    models.CharField(blank=True, max_length=200),
                ),
                ("deleted_notes", models.TextField(blank=True)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                ("deleted_by", user_fk()),
                (
                    "customer_approved",
                    models.BooleanField(
                        blank=True,
                        help_text=(
                            "Empty until the customer decides; then "
                            "approved or not"
                        ),
                        null=True,
                    ),
                ),
                (
                    "customer_approved_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "customer_declined_reason",
                    models.CharField(blank=True, max_length=200),
                ),
                (
                    "work_completed_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("work_completed_by", user_fk()),
                ("labour_total", money()),
                ("parts_total", money()),
                ("subtotal", money()),
                ("vat_amount", money()),
                ("total_inc_vat", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="repair_items",
                        to="inspections.inspectionjob",
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="children",
                        to="inspections.repairitem",
                    ),
                ),
            ],
            options={"ordering": ["created_at", "pk"]},
        ),
        migrations.CreateModel(
            name="RepairOption",
            fields=[
                ("id", auto_id()),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("is_recommended", models.BooleanField(default=False)),
                ("sort_order", models.PositiveIntegerField(default=0)),
                ("labour_total", money()),
                ("parts_total", money()),
                ("subtotal", money()),
                ("vat_amount", money()),
                ("total_inc_vat", money()),
                (
                    "repair_item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="options",
                        to="inspections.repairitem",
                    ),
                ),
            ],
            options={"ordering": ["sort_order", "pk"]},
        ),
        migrations.AddField(
            model_name="repairitem",
            name="selected_option",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="inspections.repairoption",
            ),
        ),
        migrations.CreateModel(
            name="Finding",
            fields=[
                ("id", auto_id()),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                (
                    "rag_status",
                    models.CharField(choices=RAG_CHOICES, max_length=5),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("inspection", "Inspection"),
                            ("checkin", "Check-in"),
                        ],
                        default="inspection",
                        max_length=12,
                    ),
                ),
                (
                    "location_label",
                    models.CharField(blank=True, max_length=100),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="findings",
                        to="inspections.inspectionjob",
                    ),
                ),
                (
                    "repair_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="findings",
                        to="inspections.repairitem",
                    ),
                ),
            ],
            options={"ordering": ["created_at", "pk"]},
        ),
        migrations.CreateModel(
            name="RepairLabour",
            fields=[
                ("id", auto_id()),
                ("description", models.CharField(max_length=200)),
                (
                    "hours",
                    models.DecimalField(decimal_places=2, max_digits=6),
                ),
                (
                    "rate",
                    models.DecimalField(decimal_places=2, max_digits=8),
                ),
                (
                    "discount_percent",
                    models.DecimalField(
                        decimal_places=2, default=ZERO, max_digits=5
                    ),
                ),
                ("is_vat_exempt", models.BooleanField(default=False)),
                ("total", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("created_by", user_fk()),
                (
                    "repair_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="labour_lines",
                        to="inspections.repairitem",
                    ),
                ),
                (
                    "repair_option",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="labour_lines",
                        to="inspections.repairoption",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "pk"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("repair_item__isnull", False),
                                ("repair_option__isnull", True),
                            ),
                            models.Q(
                                ("repair_item__isnull", True),
                                ("repair_option__isnull", False),
                            ),
                            _connector="OR",
                        ),
                        name="labour_single_owner",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RepairPart",
            fields=[
                ("id", auto_id()),
                ("description", models.CharField(max_length=200)),
                ("part_number", models.CharField(blank=True, max_length=100)),
                (
                    "quantity",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("1"), max_digits=8
                    ),
                ),
                ("unit_cost", money()),
                (
                    "sell_price",
                    models.DecimalField(decimal_places=2, max_digits=10),
                ),
                ("total", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("created_by", user_fk()),
                (
                    "repair_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="part_lines",
                        to="inspections.repairitem",
                    ),
                ),
                (
                    "repair_option",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="part_lines",
                        to="inspections.repairoption",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "pk"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("repair_item__isnull", False),
                                ("repair_option__isnull", True),
                            ),
                            models.Q(
                                ("repair_item__isnull", True),
                                ("repair_option__isnull", False),
                            ),
                            _connector="OR",
                        ),
                        name="part_single_owner",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="CustomerDecision",
            fields=[
                ("id", auto_id()),
                (
                    "decision",
                    models.CharField(
                        choices=[
                            ("approved", "Approved"),
                            ("declined", "Declined"),
                        ],
                        max_length=10,
                    ),
                ),
                ("reason", models.CharField(blank=True, max_length=200)),
                ("notes", models.TextField(blank=True)),
                ("signature_data", models.TextField(blank=True)),
                (
                    "ip_address",
                    models.GenericIPAddressField(blank=True, null=True),
                ),
                ("user_agent", models.CharField(blank=True, max_length=500)),
                (
                    "decided_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "repair_item",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="customer_decision",
                        to="inspections.repairitem",
                    ),
                ),
                (
                    "selected_option",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="inspections.repairoption",
                    ),
                ),
            ],
            options={"ordering": ["decided_at", "pk"]},
        ),
        migrations.CreateModel(
            name="ReminderSchedule",
            fields=[
                ("id", auto_id()),
                ("reminder_number", models.PositiveSmallIntegerField()),
                ("send_at", models.DateTimeField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("cancelled", "Cancelled"),
                            ("skipped", "Skipped"),
                        ],
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("task_id", models.CharField(blank=True, max_length=255)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reminders",
                        to="inspections.inspectionjob",
                    ),
                ),
            ],
            options={
                "ordering": ["send_at", "pk"],
                "indexes": [
                    models.Index(
                        fields=["job", "status"],
                        name="idx_reminder_job_status",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", auto_id()),
                ("action", models.CharField(db_index=True, max_length=50)),
                (
                    "actor_type",
                    models.CharField(
                        choices=[
                            ("user", "User"),
                            ("customer", "Customer"),
                            ("system", "System"),
                        ],
                        default="user",
                        max_length=10,
                    ),
                ),
                ("resource_type", models.CharField(max_length=50)),
                ("resource_id", models.CharField(max_length=50)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "created_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("actor", user_fk("audit_entries")),
            ],
            options={
                "ordering": ["-created_at", "-pk"],
                "indexes": [
                    models.Index(
                        fields=["resource_type", "resource_id"],
                        name="idx_audit_resource",
                    )
                ],
            },
        ),
    ]
