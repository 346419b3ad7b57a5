"""Reconciliation engine — quantity arithmetic for receiving line items.

Pure functions, no I/O.  Used by the grading step (is every item
reconciled?), the review step (draft summary) and the commit protocol's
defensive re-check.

Rules:
    - total_graded  = grade_a + grade_b + grade_c
    - remaining     = received_quantity - returned_quantity
    - is_reconciled = total_graded == received_quantity   (exact)

Quantities are Decimals already quantized to QUANTITY_PLACES by the
schemas, so equality is exact at that precision.  Floats are never used.
"""

from dataclasses import dataclass
from decimal import Decimal

from freshintake.schemas.receiving import (
    ZERO,
    Draft,
    DraftSummary,
    FinalizedItem,
    GradedItem,
    ItemSummary,
    MeasuredItem,
    quantize,
)


@dataclass(frozen=True)
class ItemReconciliation:
    total_graded: Decimal
    remaining: Decimal | None
    is_reconciled: bool


def format_quantity(value: Decimal) -> str:
    """Render a quantity without trailing zeros or exponent (95.000 → 95)."""
    normalized = value.normalize()
    return format(normalized, "f")


def total_graded(item) -> Decimal:
    if not isinstance(item, GradedItem):
        return ZERO
    return quantize(item.grade_a + item.grade_b + item.grade_c)


def returned_quantity(item) -> Decimal:
    if isinstance(item, FinalizedItem):
        return item.returned_quantity
    return ZERO


def reconcile_item(item) -> ItemReconciliation:
    """Compute graded total, remaining stock and the reconciliation flag."""
    graded = total_graded(item)
    if not isinstance(item, MeasuredItem):
        # Nothing measured yet, so nothing to reconcile against
        return ItemReconciliation(total_graded=graded, remaining=None, is_reconciled=False)

    remaining = quantize(item.received_quantity - returned_quantity(item))
    return ItemReconciliation(
        total_graded=graded,
        remaining=remaining,
        is_reconciled=graded == item.received_quantity,
    )


def grading_mismatch(item_received: Decimal, grade_a: Decimal, grade_b: Decimal, grade_c: Decimal) -> Decimal:
    """Signed difference between the graded total and the received quantity."""
    return quantize(grade_a + grade_b + grade_c - item_received)


def delivery_discrepancy(ordered: Decimal, received: Decimal) -> str | None:
    """Informational over/under-delivery message, or None when exact."""
    if received > ordered:
        return f"Over-delivered by {format_quantity(received - ordered)}"
    if received < ordered:
        return f"Under-delivered by {format_quantity(ordered - received)}"
    return None


def clamp_return(requested: Decimal, received: Decimal) -> Decimal:
    """A line can never return more than was received."""
    return min(requested, received)


def summarize_item(item) -> ItemSummary:
    rec = reconcile_item(item)
    measured = isinstance(item, MeasuredItem)
    graded = isinstance(item, GradedItem)
    return ItemSummary(
        item_id=item.item_id,
        name=item.produce_ref.name,
        unit=item.produce_ref.unit,
        stage=item.stage,
        ordered_quantity=item.ordered_quantity,
        received_quantity=item.received_quantity if measured else None,
        grade_a=item.grade_a if graded else ZERO,
        grade_b=item.grade_b if graded else ZERO,
        grade_c=item.grade_c if graded else ZERO,
        total_graded=rec.total_graded,
        returned_quantity=returned_quantity(item),
        remaining=rec.remaining,
        is_reconciled=rec.is_reconciled,
    )


def summarize_draft(draft: Draft) -> DraftSummary:
    """Per-item and whole-draft totals shown on the review step."""
    items = [summarize_item(item) for item in draft.items]

    def _sum(values) -> Decimal:
        return quantize(sum(values, ZERO))

    return DraftSummary(
        items=items,
        total_ordered=_sum(i.ordered_quantity for i in items),
        total_received=_sum(i.received_quantity or ZERO for i in items),
        total_grade_a=_sum(i.grade_a for i in items),
        total_grade_b=_sum(i.grade_b for i in items),
        total_grade_c=_sum(i.grade_c for i in items),
        total_returned=_sum(i.returned_quantity for i in items),
        total_remaining=_sum(i.remaining or ZERO for i in items),
        all_reconciled=bool(items) and all(i.is_reconciled for i in items),
    )
