"""Models for the inspections app."""

import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.dispatch import receiver
from django.utils import timezone

from .signals import pricing_started

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def default_org_settings():
    return {
        "checkin_enabled": False,
        "reminders_enabled": True,
        "reminder_schedule": [],
        "link_expiry_days": None,
    }


class Organization(models.Model):
    """A dealer group or independent workshop."""

    name = models.CharField(max_length=200, unique=True)
    settings = models.JSONField(
        default=default_org_settings,
        blank=True,
        help_text=(
            "Workflow options: checkin_enabled, reminders_enabled, "
            "reminder_schedule ([{hours, reminder_number}]), "
            "link_expiry_days"
        ),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def get_setting(self, key, default=None):
        value = (self.settings or {}).get(key)
        return default if value is None else value


class Site(models.Model):
    """A physical workshop belonging to an organization."""

    organization = models.ForeignKey(
        Organization, on_delete=models.CASCADE, related_name="sites"
    )
    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "name"],
                name="unique_site_name_per_org",
            ),
        ]

    def __str__(self):
        return self.name


class Customer(models.Model):
    organization = models.ForeignKey(
        Organization, on_delete=models.CASCADE, related_name="customers"
    )
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    email = models.EmailField(blank=True)
    mobile = models.CharField(max_length=30, blank=True)

    def __str__(self):
        return f"{self.first_name} {self.last_name}".strip()


class Vehicle(models.Model):
    customer = models.ForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="vehicles",
    )
    registration = models.CharField(max_length=20, db_index=True)
    make = models.CharField(max_length=100, blank=True)
    model = models.CharField(max_length=100, blank=True)

    def __str__(self):
        return self.registration


class InspectionJob(models.Model):
    """A vehicle health check: one per vehicle visit.

    Status and lifecycle timestamps are written only through
    ``services.state.transition_job``.
    """

    STATUS_CHOICES = [
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

    # Reachable from every state after the technician has finished
    _CLOSABLE = ["completed", "cancelled"]

    VALID_TRANSITIONS = {
        "awaiting_arrival": [
            "awaiting_checkin",
            "created",
            "no_show",
            "cancelled",
        ],
        "awaiting_checkin": ["created", "cancelled"],
        "no_show": ["awaiting_arrival", "cancelled"],
        "created": ["assigned", "cancelled"],
        "assigned": ["in_progress", "paused", "tech_completed", "cancelled"],
        "in_progress": ["paused", "tech_completed", "cancelled"],
        "paused": ["in_progress", "tech_completed", "cancelled"],
        "tech_completed": [
            "awaiting_review",
            "awaiting_pricing",
            "ready_to_send",
        ]
        + _CLOSABLE,
        "awaiting_review": ["awaiting_pricing", "ready_to_send"] + _CLOSABLE,
        "awaiting_pricing": ["awaiting_parts", "ready_to_send"] + _CLOSABLE,
        "awaiting_parts": ["ready_to_send"] + _CLOSABLE,
        "ready_to_send": ["sent", "authorized", "declined"] + _CLOSABLE,
        "sent": [
            "sent",
            "delivered",
            "opened",
            "partial_response",
            "authorized",
            "declined",
            "expired",
        ]
        + _CLOSABLE,
        "delivered": [
            "opened",
            "partial_response",
            "authorized",
            "declined",
            "expired",
        ]
        + _CLOSABLE,
        "opened": ["partial_response", "authorized", "declined", "expired"]
        + _CLOSABLE,
        "partial_response": ["authorized", "declined", "expired"]
        + _CLOSABLE,
        "authorized": _CLOSABLE,
        "declined": _CLOSABLE,
        "expired": ["sent", "authorized", "declined"] + _CLOSABLE,
        "completed": [],
        "cancelled": [],
    }

    # Statuses in which the customer link is live and awaiting decisions
    AWAITING_RESPONSE_STATUSES = (
        "sent",
        "delivered",
        "opened",
        "partial_response",
    )
    FULLY_RESPONDED_STATUSES = ("authorized", "declined")
    FINAL_STATUSES = ("completed", "cancelled")

    AUTHORIZATION_METHOD_CHOICES = [
        ("online", "Online"),
        ("in_person", "In Person"),
        ("phone", "Phone"),
        ("not_sent", "Not Sent"),
    ]

    organization = models.ForeignKey(
        Organization, on_delete=models.CASCADE, related_name="jobs"
    )
    site = models.ForeignKey(
        Site,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="jobs",
    )
    vehicle = models.ForeignKey(
        Vehicle,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="jobs",
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="jobs",
    )
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_jobs",
    )
    advisor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="advised_jobs",
    )
    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default="created"
    )

    arrived_at = models.DateTimeField(null=True, blank=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    technician_started_at = models.DateTimeField(null=True, blank=True)
    technician_completed_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    first_opened_at = models.DateTimeField(null=True, blank=True)
    first_responded_at = models.DateTimeField(null=True, blank=True)
    fully_responded_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    closed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="closed_jobs",
    )

    public_token = models.CharField(
        max_length=64, unique=True, null=True, blank=True
    )
    token_expires_at = models.DateTimeField(null=True, blank=True)
    expired_notification_sent_at = models.DateTimeField(null=True, blank=True)
    customer_view_count = models.PositiveIntegerField(default=0)
    customer_last_viewed_at = models.DateTimeField(null=True, blank=True)
    authorization_method = models.CharField(
        max_length=20, choices=AUTHORIZATION_METHOD_CHOICES, blank=True
    )

    red_count = models.PositiveIntegerField(default=0)
    amber_count = models.PositiveIntegerField(default=0)
    green_count = models.PositiveIntegerField(default=0)

    total_labour = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    total_parts = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    total_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="idx_job_status"),
            models.Index(
                fields=["status", "token_expires_at"],
                name="idx_job_status_token_expiry",
            ),
        ]
        permissions = [
            (
                "can_override_workflow",
                "Can cancel jobs and skip check-in",
            ),
            (
                "can_advise_jobs",
                "Can price, send, authorize and close inspection jobs",
            ),
            (
                "can_inspect_vehicles",
                "Can clock in and complete vehicle inspections",
            ),
        ]

    def __str__(self):
        reg = self.vehicle.registration if self.vehicle_id else "no vehicle"
        return f"VHC #{self.pk} ({reg}) - {self.get_status_display()}"

    def can_transition_to(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    @property
    def allowed_transitions(self):
        return list(self.VALID_TRANSITIONS.get(self.status, []))

    @property
    def is_token_expired(self):
        return bool(
            self.token_expires_at and self.token_expires_at <= timezone.now()
        )

    @property
    def notification_group(self):
        if self.site_id:
            return f"site_{self.site_id}"
        return f"org_{self.organization_id}"


class StatusHistory(models.Model):
    """Immutable record of one job status change."""

    SOURCE_CHOICES = [
        ("user", "User"),
        ("system", "System"),
    ]

    job = models.ForeignKey(
        InspectionJob, on_delete=models.CASCADE, related_name="history"
    )
    from_status = models.CharField(
        max_length=20,
        choices=InspectionJob.STATUS_CHOICES,
        null=True,
        blank=True,
        help_text="Empty for the row written when the job is created",
    )
    to_status = models.CharField(
        max_length=20, choices=InspectionJob.STATUS_CHOICES
    )
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="status_changes",
    )
    source = models.CharField(
        max_length=10, choices=SOURCE_CHOICES, default="user"
    )
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "pk"]
        verbose_name_plural = "status history"

    def __str__(self):
        return f"#{self.job_id}: {self.from_status or '-'} -> {self.to_status}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError(
                "Status history is immutable and cannot be modified."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Status history is immutable and cannot be deleted."
        )


class TimeEntry(models.Model):
    """One technician work session on a job."""

    job = models.ForeignKey(
        InspectionJob, on_delete=models.CASCADE, related_name="time_entries"
    )
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="time_entries",
    )
    clock_in_at = models.DateTimeField(default=timezone.now)
    clock_out_at = models.DateTimeField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)
    auto_closed = models.BooleanField(
        default=False,
        help_text="Closed by a later clock-in rather than a clock-out",
    )

    class Meta:
        ordering = ["clock_in_at", "pk"]
        verbose_name_plural = "time entries"
        constraints = [
            models.UniqueConstraint(
                fields=["job", "technician"],
                condition=Q(clock_out_at__isnull=True),
                name="unique_open_time_entry",
            ),
        ]

    def __str__(self):
        return f"{self.technician} on #{self.job_id} @ {self.clock_in_at}"

    @property
    def is_open(self):
        return self.clock_out_at is None


class Finding(models.Model):
    """A single inspection result line recorded by the technician."""

    RAG_CHOICES = [
        ("red", "Red"),
        ("amber", "Amber"),
        ("green", "Green"),
    ]

    SOURCE_CHOICES = [
        ("inspection", "Inspection"),
        ("checkin", "Check-in"),
    ]

    job = models.ForeignKey(
        InspectionJob, on_delete=models.CASCADE, related_name="findings"
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    rag_status = models.CharField(max_length=5, choices=RAG_CHOICES)
    source = models.CharField(
        max_length=12, choices=SOURCE_CHOICES, default="inspection"
    )
    location_label = models.CharField(max_length=100, blank=True)
    repair_item = models.ForeignKey(
        "RepairItem",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="findings",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "pk"]

    def __str__(self):
        return f"{self.name} ({self.rag_status})"


class RepairItemQuerySet(models.QuerySet):
    def top_level(self):
        """Non-deleted items without a parent."""
        return self.filter(parent__isnull=True, deleted_at__isnull=True)


class RepairItem(models.Model):
    """A recommended repair, priced by the advisor and decided on by
    the customer.

    Items form a two-level tree: a group may hold child items. Outcome
    enforcement and customer aggregation consider top-level items only.
    """

    WORK_STATUS_CHOICES = [
        ("pending", "Pending"),
        ("in_progress", "In Progress"),
        ("complete", "Complete"),
    ]

    QUOTE_STATUS_CHOICES = [
        ("pending", "Pending"),
        ("ready", "Ready"),
    ]

    OUTCOME_CHOICES = [
        ("ready", "Ready"),
        ("incomplete", "Incomplete"),
        ("authorised", "Authorised"),
        ("deferred", "Deferred"),
        ("declined", "Declined"),
        ("deleted", "Deleted"),
    ]

    TERMINAL_OUTCOMES = ("authorised", "deferred", "declined", "deleted")

    OUTCOME_SOURCE_CHOICES = [
        ("manual", "Manual"),
        ("online", "Online"),
    ]

    job = models.ForeignKey(
        InspectionJob, on_delete=models.CASCADE, related_name="repair_items"
    )
    parent = models.ForeignKey(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="children",
    )
    is_group = models.BooleanField(default=False)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    rag_status = models.CharField(
        max_length=5, choices=Finding.RAG_CHOICES, blank=True
    )

    labour_status = models.CharField(
        max_length=12, choices=WORK_STATUS_CHOICES, default="pending"
    )
    parts_status = models.CharField(
        max_length=12, choices=WORK_STATUS_CHOICES, default="pending"
    )
    quote_status = models.CharField(
        max_length=12, choices=QUOTE_STATUS_CHOICES, default="pending"
    )
    labour_completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    labour_completed_at = models.DateTimeField(null=True, blank=True)
    parts_completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    parts_completed_at = models.DateTimeField(null=True, blank=True)
    no_labour_required = models.BooleanField(default=False)
    no_labour_required_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    no_labour_required_at = models.DateTimeField(null=True, blank=True)
    no_parts_required = models.BooleanField(default=False)
    no_parts_required_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    no_parts_required_at = models.DateTimeField(null=True, blank=True)

    outcome_status = models.CharField(
        max_length=12, choices=OUTCOME_CHOICES, null=True, blank=True
    )
    outcome_set_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    outcome_set_at = models.DateTimeField(null=True, blank=True)
    outcome_source = models.CharField(
        max_length=10, choices=OUTCOME_SOURCE_CHOICES, blank=True
    )
    deferred_until = models.DateField(null=True, blank=True)
    deferred_notes = models.TextField(blank=True)
    declined_reason = models.CharField(max_length=200, blank=True)
    declined_notes = models.TextField(blank=True)
    deleted_reason = models.CharField(max_length=200, blank=True)
    deleted_notes = models.TextField(blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    customer_approved = models.BooleanField(
        null=True,
        blank=True,
        help_text="Empty until the customer decides; then approved or not",
    )
    customer_approved_at = models.DateTimeField(null=True, blank=True)
    customer_declined_reason = models.CharField(max_length=200, blank=True)
    selected_option = models.ForeignKey(
        "RepairOption",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    work_completed_at = models.DateTimeField(null=True, blank=True)
    work_completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    labour_total = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    parts_total = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    subtotal = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    vat_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    total_inc_vat = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = RepairItemQuerySet.as_manager()

    class Meta:
        ordering = ["created_at", "pk"]

    def __str__(self):
        return self.name

    def clean(self):
        if self.parent_id and self.parent.parent_id:
            raise ValidationError(
                "Repair items may only be nested one level deep."
            )
        if self.parent_id and self.parent.job_id != self.job_id:
            raise ValidationError(
                "A child repair item must belong to its parent's job."
            )

    @property
    def has_customer_decision(self):
        return (
            self.customer_approved is not None
            or self.outcome_status in self.TERMINAL_OUTCOMES
        )

    @property
    def effective_total(self):
        """Price the customer agreed to: the selected option's, if any."""
        if self.selected_option_id:
            return self.selected_option.total_inc_vat
        return self.total_inc_vat


class RepairOption(models.Model):
    """An alternative priced path within a repair item."""

    repair_item = models.ForeignKey(
        RepairItem, on_delete=models.CASCADE, related_name="options"
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    is_recommended = models.BooleanField(default=False)
    sort_order = models.PositiveIntegerField(default=0)

    labour_total = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    parts_total = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    subtotal = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    vat_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    total_inc_vat = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )

    class Meta:
        ordering = ["sort_order", "pk"]

    def __str__(self):
        return f"{self.repair_item.name}: {self.name}"


# Line items hang off an item or an option, never both
_ONE_OWNER = Q(repair_item__isnull=False, repair_option__isnull=True) | Q(
    repair_item__isnull=True, repair_option__isnull=False
)


class RepairLabour(models.Model):
    repair_item = models.ForeignKey(
        RepairItem,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="labour_lines",
    )
    repair_option = models.ForeignKey(
        RepairOption,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="labour_lines",
    )
    description = models.CharField(max_length=200)
    hours = models.DecimalField(max_digits=6, decimal_places=2)
    rate = models.DecimalField(max_digits=8, decimal_places=2)
    discount_percent = models.DecimalField(
        max_digits=5, decimal_places=2, default=ZERO
    )
    is_vat_exempt = models.BooleanField(default=False)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "pk"]
        constraints = [
            models.CheckConstraint(
                condition=_ONE_OWNER, name="labour_single_owner"
            ),
        ]

    def __str__(self):
        return f"{self.description} ({self.hours}h)"


class RepairPart(models.Model):
    repair_item = models.ForeignKey(
        RepairItem,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="part_lines",
    )
    repair_option = models.ForeignKey(
        RepairOption,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="part_lines",
    )
    description = models.CharField(max_length=200)
    part_number = models.CharField(max_length=100, blank=True)
    quantity = models.DecimalField(
        max_digits=8, decimal_places=2, default=Decimal("1")
    )
    unit_cost = models.DecimalField(
        max_digits=10, decimal_places=2, default=ZERO
    )
    sell_price = models.DecimalField(max_digits=10, decimal_places=2)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "pk"]
        constraints = [
            models.CheckConstraint(
                condition=_ONE_OWNER, name="part_single_owner"
            ),
        ]

    def __str__(self):
        return f"{self.description} x{self.quantity}"


class CustomerDecision(models.Model):
    """The customer's one and only answer on a repair item."""

    DECISION_CHOICES = [
        ("approved", "Approved"),
        ("declined", "Declined"),
    ]

    repair_item = models.OneToOneField(
        RepairItem, on_delete=models.CASCADE, related_name="customer_decision"
    )
    decision = models.CharField(max_length=10, choices=DECISION_CHOICES)
    selected_option = models.ForeignKey(
        RepairOption,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    reason = models.CharField(max_length=200, blank=True)
    notes = models.TextField(blank=True)
    signature_data = models.TextField(blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=500, blank=True)
    decided_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["decided_at", "pk"]

    def __str__(self):
        return f"{self.repair_item} - {self.decision}"


class ReminderSchedule(models.Model):
    """A customer follow-up reminder queued for a sent job."""

    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("sent", "Sent"),
        ("cancelled", "Cancelled"),
        ("skipped", "Skipped"),
    ]

    job = models.ForeignKey(
        InspectionJob, on_delete=models.CASCADE, related_name="reminders"
    )
    reminder_number = models.PositiveSmallIntegerField()
    send_at = models.DateTimeField()
    status = models.CharField(
        max_length=10, choices=STATUS_CHOICES, default="pending"
    )
    task_id = models.CharField(max_length=255, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["send_at", "pk"]
        indexes = [
            models.Index(
                fields=["job", "status"], name="idx_reminder_job_status"
            ),
        ]

    def __str__(self):
        return f"Reminder {self.reminder_number} for #{self.job_id}"


class AuditLog(models.Model):
    ACTOR_TYPE_CHOICES = [
        ("user", "User"),
        ("customer", "Customer"),
        ("system", "System"),
    ]

    action = models.CharField(max_length=50, db_index=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_entries",
    )
    actor_type = models.CharField(
        max_length=10, choices=ACTOR_TYPE_CHOICES, default="user"
    )
    resource_type = models.CharField(max_length=50)
    resource_id = models.CharField(max_length=50)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-pk"]
        indexes = [
            models.Index(
                fields=["resource_type", "resource_id"],
                name="idx_audit_resource",
            ),
        ]

    def __str__(self):
        return f"{self.action} {self.resource_type}:{self.resource_id}"


@receiver(pricing_started)
def advance_job_to_pricing(sender, job, **kwargs):
    """Move a technician-completed job into pricing when the first
    labour or parts line is added."""
    from .exceptions import WorkflowError
    from .services.state import transition_job

    # The item's cached job can lag behind the database
    job.refresh_from_db(fields=["status"])
    if job.status != "tech_completed":
        return
    try:
        transition_job(
            job,
            "awaiting_pricing",
            actor=None,
            note="Pricing started",
        )
    except WorkflowError:
        # Another request moved the job on first
        logger.info(
            "Job %s left tech_completed before pricing could start",
            job.pk,
        )
