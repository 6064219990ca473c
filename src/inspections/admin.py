"""Admin configuration for the inspections app using django-unfold.

Workflow state is changed through the services layer, so status and
history fields are read-only here.
"""

from unfold.admin import ModelAdmin, TabularInline
from unfold.contrib.filters.admin import (
    ChoicesDropdownFilter,
    RelatedDropdownFilter,
)
from unfold.decorators import display

from django.contrib import admin

from .models import (
    AuditLog,
    Customer,
    Finding,
    InspectionJob,
    Organization,
    ReminderSchedule,
    RepairItem,
    RepairLabour,
    RepairOption,
    RepairPart,
    Site,
    StatusHistory,
    TimeEntry,
    Vehicle,
)

JOB_STATUS_LABELS = {
    "awaiting_arrival": "default",
    "awaiting_checkin": "default",
    "no_show": "danger",
    "created": "info",
    "assigned": "info",
    "in_progress": "warning",
    "paused": "warning",
    "tech_completed": "info",
    "awaiting_review": "info",
    "awaiting_pricing": "info",
    "awaiting_parts": "warning",
    "ready_to_send": "info",
    "sent": "info",
    "delivered": "info",
    "opened": "info",
    "partial_response": "warning",
    "authorized": "success",
    "declined": "danger",
    "expired": "danger",
    "completed": "success",
    "cancelled": "default",
}


class SiteInline(TabularInline):
    model = Site
    extra = 0
    fields = ["name", "is_active"]


@admin.register(Organization)
class OrganizationAdmin(ModelAdmin):
    list_display = ["name", "display_checkin", "display_reminders"]
    search_fields = ["name"]
    inlines = [SiteInline]

    @display(description="Check-in", boolean=True)
    def display_checkin(self, obj):
        return bool(obj.get_setting("checkin_enabled", False))

    @display(description="Reminders", boolean=True)
    def display_reminders(self, obj):
        return bool(obj.get_setting("reminders_enabled", True))


@admin.register(Site)
class SiteAdmin(ModelAdmin):
    list_display = ["name", "organization", "is_active"]
    list_filter = [("organization", RelatedDropdownFilter)]
    search_fields = ["name"]


@admin.register(Customer)
class CustomerAdmin(ModelAdmin):
    list_display = ["__str__", "email", "mobile", "organization"]
    search_fields = ["first_name", "last_name", "email"]


@admin.register(Vehicle)
class VehicleAdmin(ModelAdmin):
    list_display = ["registration", "make", "model", "customer"]
    search_fields = ["registration"]


class StatusHistoryInline(TabularInline):
    model = StatusHistory
    extra = 0
    can_delete = False
    fields = [
        "from_status",
        "to_status",
        "changed_by",
        "source",
        "notes",
        "created_at",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class TimeEntryInline(TabularInline):
    model = TimeEntry
    extra = 0
    can_delete = False
    fields = [
        "technician",
        "clock_in_at",
        "clock_out_at",
        "duration_minutes",
        "auto_closed",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class FindingInline(TabularInline):
    model = Finding
    extra = 0
    fields = ["name", "rag_status", "source", "location_label", "repair_item"]
    readonly_fields = ["repair_item"]


@admin.register(InspectionJob)
class InspectionJobAdmin(ModelAdmin):
    list_display = [
        "display_header",
        "display_status",
        "organization",
        "technician",
        "advisor",
        "total_amount",
        "created_at",
    ]
    list_filter = [
        ("status", ChoicesDropdownFilter),
        ("organization", RelatedDropdownFilter),
        ("site", RelatedDropdownFilter),
    ]
    search_fields = ["vehicle__registration", "customer__last_name"]
    date_hierarchy = "created_at"
    readonly_fields = [
        "status",
        "arrived_at",
        "checked_in_at",
        "technician_started_at",
        "technician_completed_at",
        "sent_at",
        "first_opened_at",
        "first_responded_at",
        "fully_responded_at",
        "closed_at",
        "closed_by",
        "public_token",
        "token_expires_at",
        "expired_notification_sent_at",
        "customer_view_count",
        "customer_last_viewed_at",
        "authorization_method",
        "red_count",
        "amber_count",
        "green_count",
        "total_labour",
        "total_parts",
        "total_amount",
    ]
    inlines = [StatusHistoryInline, TimeEntryInline, FindingInline]

    @display(description="Health check", header=True, ordering="pk")
    def display_header(self, obj):
        registration = obj.vehicle.registration if obj.vehicle else ""
        return f"#{obj.pk}", registration

    @display(description="Status", label=JOB_STATUS_LABELS)
    def display_status(self, obj):
        return obj.status


class RepairOptionInline(TabularInline):
    model = RepairOption
    extra = 0
    fields = ["name", "is_recommended", "sort_order", "total_inc_vat"]
    readonly_fields = ["total_inc_vat"]


class RepairLabourInline(TabularInline):
    model = RepairLabour
    fk_name = "repair_item"
    extra = 0
    fields = ["description", "hours", "rate", "discount_percent", "total"]
    readonly_fields = fields


class RepairPartInline(TabularInline):
    model = RepairPart
    fk_name = "repair_item"
    extra = 0
    fields = ["description", "part_number", "quantity", "sell_price", "total"]
    readonly_fields = fields


@admin.register(RepairItem)
class RepairItemAdmin(ModelAdmin):
    list_display = [
        "name",
        "job",
        "display_outcome",
        "labour_status",
        "parts_status",
        "quote_status",
        "customer_approved",
        "total_inc_vat",
    ]
    list_filter = [
        ("outcome_status", ChoicesDropdownFilter),
        ("quote_status", ChoicesDropdownFilter),
    ]
    search_fields = ["name", "job__vehicle__registration"]
    readonly_fields = [
        "labour_status",
        "parts_status",
        "quote_status",
        "outcome_status",
        "outcome_set_by",
        "outcome_set_at",
        "outcome_source",
        "customer_approved",
        "customer_approved_at",
        "selected_option",
        "labour_total",
        "parts_total",
        "subtotal",
        "vat_amount",
        "total_inc_vat",
    ]
    inlines = [RepairOptionInline, RepairLabourInline, RepairPartInline]

    @display(
        description="Outcome",
        label={
            "ready": "info",
            "incomplete": "warning",
            "authorised": "success",
            "deferred": "warning",
            "declined": "danger",
            "deleted": "default",
        },
    )
    def display_outcome(self, obj):
        return obj.outcome_status


@admin.register(TimeEntry)
class TimeEntryAdmin(ModelAdmin):
    list_display = [
        "job",
        "technician",
        "clock_in_at",
        "clock_out_at",
        "duration_minutes",
        "auto_closed",
    ]
    list_filter = ["auto_closed", ("technician", RelatedDropdownFilter)]
    readonly_fields = [
        "job",
        "technician",
        "clock_in_at",
        "clock_out_at",
        "duration_minutes",
        "auto_closed",
    ]


@admin.register(ReminderSchedule)
class ReminderScheduleAdmin(ModelAdmin):
    list_display = [
        "job",
        "reminder_number",
        "send_at",
        "display_status",
        "sent_at",
    ]
    list_filter = [("status", ChoicesDropdownFilter)]
    readonly_fields = ["task_id", "sent_at"]

    @display(
        description="Status",
        label={
            "pending": "info",
            "sent": "success",
            "cancelled": "default",
            "skipped": "warning",
        },
    )
    def display_status(self, obj):
        return obj.status


@admin.register(AuditLog)
class AuditLogAdmin(ModelAdmin):
    list_display = [
        "action",
        "actor",
        "actor_type",
        "resource_type",
        "resource_id",
        "created_at",
    ]
    list_filter = [("actor_type", ChoicesDropdownFilter)]
    search_fields = ["action", "resource_id"]
    date_hierarchy = "created_at"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
