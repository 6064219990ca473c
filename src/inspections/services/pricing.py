"""Labour and parts lines, pricing options and completion flags.

Every change to a line or a no-requirement flag re-runs the item
aggregator. Adding a line also raises ``pricing_started`` so a job the
technician has just finished moves into pricing.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from ..exceptions import Forbidden, PreconditionFailed
from ..models import (
    InspectionJob,
    RepairItem,
    RepairLabour,
    RepairOption,
    RepairPart,
)
from ..signals import pricing_started
from .audit import log_audit
from .permissions import can_manage_items
from .workflow import line_counts, refresh_item_workflow

logger = logging.getLogger(__name__)

PENNY = Decimal("0.01")

LABOUR_FIELDS = {
    "description",
    "hours",
    "rate",
    "discount_percent",
    "is_vat_exempt",
}
PART_FIELDS = {
    "description",
    "part_number",
    "quantity",
    "unit_cost",
    "sell_price",
}


def _money(value):
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)


def labour_line_total(hours, rate, discount_percent=0):
    gross = Decimal(hours) * Decimal(rate)
    return _money(gross * (1 - Decimal(discount_percent) / 100))


def part_line_total(quantity, sell_price):
    return _money(Decimal(quantity) * Decimal(sell_price))


def _require_pricing_role(actor):
    if not can_manage_items(actor):
        raise Forbidden("Only service advisors can price repair items.")


def _owning_item(item, option):
    if (item is None) == (option is None):
        raise ValidationError(
            "A line belongs to either a repair item or an option."
        )
    return item if item is not None else option.repair_item


def _line_totals(labour_lines, part_lines):
    vat_rate = Decimal(str(settings.VHC_VAT_RATE))
    labour_total = sum((line.total for line in labour_lines), Decimal(0))
    parts_total = sum((line.total for line in part_lines), Decimal(0))
    vatable = parts_total + sum(
        (line.total for line in labour_lines if not line.is_vat_exempt),
        Decimal(0),
    )
    subtotal = labour_total + parts_total
    vat_amount = _money(vatable * vat_rate)
    return {
        "labour_total": _money(labour_total),
        "parts_total": _money(parts_total),
        "subtotal": _money(subtotal),
        "vat_amount": vat_amount,
        "total_inc_vat": _money(subtotal + vat_amount),
    }


def recalculate_job_totals(job):
    totals = RepairItem.objects.top_level().filter(job=job).aggregate(
        total_labour=Sum("labour_total"),
        total_parts=Sum("parts_total"),
        total_amount=Sum("total_inc_vat"),
    )
    totals = {key: value or Decimal("0.00") for key, value in totals.items()}
    InspectionJob.objects.filter(pk=job.pk).update(**totals)
    return totals


def recalculate_totals(item):
    """Recompute option totals, the item's totals (from its selected
    option when it has one) and the job totals."""
    for option in item.options.all():
        RepairOption.objects.filter(pk=option.pk).update(
            **_line_totals(
                list(option.labour_lines.all()), list(option.part_lines.all())
            )
        )

    if item.selected_option_id:
        source = RepairOption.objects.get(pk=item.selected_option_id)
    else:
        source = item
    totals = _line_totals(
        list(source.labour_lines.all()), list(source.part_lines.all())
    )
    RepairItem.objects.filter(pk=item.pk).update(**totals)
    for name, value in totals.items():
        setattr(item, name, value)
    recalculate_job_totals(item.job)
    return totals


def _after_line_change(item, action, actor, metadata, added=False):
    refresh_item_workflow(item)
    recalculate_totals(item)
    log_audit(action, actor, "repair_item", item.pk, metadata)
    if added:
        pricing_started.send(sender=RepairItem, job=item.job, item=item)


def _apply_fields(line, allowed, fields):
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(
            f"Cannot update field(s): {', '.join(sorted(unknown))}."
        )
    for name, value in fields.items():
        setattr(line, name, value)


def _number(value, field_name):
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a number.")
    if not number.is_finite():
        raise ValidationError(f"{field_name} must be a number.")
    return number


def _validate_labour(hours, rate, discount_percent):
    hours = _number(hours, "hours")
    rate = _number(rate, "rate")
    discount_percent = _number(discount_percent, "discount_percent")
    if hours <= 0:
        raise ValidationError("Labour hours must be greater than zero.")
    if rate < 0:
        raise ValidationError("Labour rate cannot be negative.")
    if not 0 <= discount_percent <= 100:
        raise ValidationError("Discount must be between 0 and 100 percent.")
    return hours, rate, discount_percent


def _validate_part(quantity, sell_price, unit_cost=0):
    quantity = _number(quantity, "quantity")
    sell_price = _number(sell_price, "sell_price")
    unit_cost = _number(unit_cost, "unit_cost")
    if quantity <= 0:
        raise ValidationError("Part quantity must be greater than zero.")
    if sell_price < 0:
        raise ValidationError("Sell price cannot be negative.")
    return quantity, sell_price, unit_cost


# --- Labour ---------------------------------------------------------------


def add_labour(
    actor,
    *,
    item=None,
    option=None,
    description,
    hours,
    rate,
    discount_percent=0,
    is_vat_exempt=False,
):
    _require_pricing_role(actor)
    owner = _owning_item(item, option)
    hours, rate, discount_percent = _validate_labour(
        hours, rate, discount_percent
    )

    with transaction.atomic():
        line = RepairLabour.objects.create(
            repair_item=item,
            repair_option=option,
            description=description,
            hours=hours,
            rate=rate,
            discount_percent=discount_percent,
            is_vat_exempt=is_vat_exempt,
            total=labour_line_total(hours, rate, discount_percent),
            created_by=actor,
        )
        _after_line_change(
            owner,
            "labour.add",
            actor,
            {"labour_id": line.pk, "total": str(line.total)},
            added=True,
        )
    return line


def update_labour(line, actor, **fields):
    _require_pricing_role(actor)
    _apply_fields(line, LABOUR_FIELDS, fields)
    line.hours, line.rate, line.discount_percent = _validate_labour(
        line.hours, line.rate, line.discount_percent
    )
    line.total = labour_line_total(
        line.hours, line.rate, line.discount_percent
    )
    owner = _owning_item(line.repair_item, line.repair_option)

    with transaction.atomic():
        line.save()
        _after_line_change(
            owner,
            "labour.update",
            actor,
            {"labour_id": line.pk, "fields": sorted(fields)},
        )
    return line


def delete_labour(line, actor):
    _require_pricing_role(actor)
    owner = _owning_item(line.repair_item, line.repair_option)
    line_id = line.pk

    with transaction.atomic():
        line.delete()
        _after_line_change(
            owner, "labour.delete", actor, {"labour_id": line_id}
        )


# --- Parts ----------------------------------------------------------------


def add_part(
    actor,
    *,
    item=None,
    option=None,
    description,
    sell_price,
    quantity=1,
    unit_cost=0,
    part_number="",
):
    _require_pricing_role(actor)
    owner = _owning_item(item, option)
    quantity, sell_price, unit_cost = _validate_part(
        quantity, sell_price, unit_cost
    )

    with transaction.atomic():
        line = RepairPart.objects.create(
            repair_item=item,
            repair_option=option,
            description=description,
            part_number=part_number,
            quantity=quantity,
            unit_cost=unit_cost,
            sell_price=sell_price,
            total=part_line_total(quantity, sell_price),
            created_by=actor,
        )
        _after_line_change(
            owner,
            "parts.add",
            actor,
            {"part_id": line.pk, "total": str(line.total)},
            added=True,
        )
    return line


def update_part(line, actor, **fields):
    _require_pricing_role(actor)
    _apply_fields(line, PART_FIELDS, fields)
    line.quantity, line.sell_price, line.unit_cost = _validate_part(
        line.quantity, line.sell_price, line.unit_cost
    )
    line.total = part_line_total(line.quantity, line.sell_price)
    owner = _owning_item(line.repair_item, line.repair_option)

    with transaction.atomic():
        line.save()
        _after_line_change(
            owner,
            "parts.update",
            actor,
            {"part_id": line.pk, "fields": sorted(fields)},
        )
    return line


def delete_part(line, actor):
    _require_pricing_role(actor)
    owner = _owning_item(line.repair_item, line.repair_option)
    line_id = line.pk

    with transaction.atomic():
        line.delete()
        _after_line_change(owner, "parts.delete", actor, {"part_id": line_id})


# --- Options --------------------------------------------------------------


def add_option(item, actor, name, description="", is_recommended=False):
    _require_pricing_role(actor)
    with transaction.atomic():
        if is_recommended:
            item.options.update(is_recommended=False)
        option = RepairOption.objects.create(
            repair_item=item,
            name=name,
            description=description,
            is_recommended=is_recommended,
            sort_order=item.options.count(),
        )
        log_audit(
            "repair_item.option_add",
            actor,
            "repair_item",
            item.pk,
            {"option_id": option.pk},
        )
    return option


def delete_option(option, actor):
    _require_pricing_role(actor)
    item = option.repair_item
    option_id = option.pk

    with transaction.atomic():
        if item.selected_option_id == option_id:
            RepairItem.objects.filter(pk=item.pk).update(selected_option=None)
            item.selected_option = None
        option.delete()
        _after_line_change(
            item, "repair_item.option_delete", actor, {"option_id": option_id}
        )


def select_option(item, option, actor):
    """Choose which option prices the item."""
    _require_pricing_role(actor)
    if option is not None and option.repair_item_id != item.pk:
        raise PreconditionFailed(
            "That option belongs to a different repair item.",
            item_id=item.pk,
            option_id=option.pk,
        )
    with transaction.atomic():
        RepairItem.objects.filter(pk=item.pk).update(selected_option=option)
        item.selected_option = option
        recalculate_totals(item)
        log_audit(
            "repair_item.select_option",
            actor,
            "repair_item",
            item.pk,
            {"option_id": option.pk if option else None},
        )
    return item


# --- Completion and no-requirement flags ----------------------------------


def _mark_complete(item, actor, side):
    _require_pricing_role(actor)
    with transaction.atomic():
        locked = RepairItem.objects.select_for_update().get(pk=item.pk)
        labour_count, parts_count = line_counts(locked)
        count = labour_count if side == "labour" else parts_count
        if count == 0 and not getattr(locked, f"no_{side}_required"):
            raise PreconditionFailed(
                f"Add {side} or mark the item as needing no {side} "
                f"before completing it.",
                item_id=item.pk,
            )
        RepairItem.objects.filter(pk=item.pk).update(
            **{
                f"{side}_status": "complete",
                f"{side}_completed_by": actor,
                f"{side}_completed_at": timezone.now(),
            }
        )
        item.refresh_from_db()
        # Quote becomes ready once the other side is complete too
        refresh_item_workflow(item)
        log_audit(f"{side}.complete", actor, "repair_item", item.pk)
    return item


def mark_labour_complete(item, actor):
    return _mark_complete(item, actor, "labour")


def mark_parts_complete(item, actor):
    return _mark_complete(item, actor, "parts")


def _set_not_required(item, actor, side, value):
    _require_pricing_role(actor)
    flag = f"no_{side}_required"
    fields = {
        flag: value,
        f"{flag}_by": actor if value else None,
        f"{flag}_at": timezone.now() if value else None,
    }
    with transaction.atomic():
        RepairItem.objects.filter(pk=item.pk).update(**fields)
        item.refresh_from_db()
        refresh_item_workflow(item)
        log_audit(
            f"{side}.{flag}", actor, "repair_item", item.pk, {"value": value}
        )
    return item


def set_no_labour_required(item, actor, value=True):
    return _set_not_required(item, actor, "labour", value)


def set_no_parts_required(item, actor, value=True):
    return _set_not_required(item, actor, "parts", value)
