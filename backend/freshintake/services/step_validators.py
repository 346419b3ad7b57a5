"""Step validators for the receiving wizard.

One pure function per step.  Each takes the current Draft plus that step's
form and returns either ``StepOk`` (carrying the updated draft and any
informational notices) or ``StepFailure`` (which step, a user-facing
message, and the offending item ids / field names).  Expected invalid
input never raises; the router renders a failure inline.

A step only writes the fields it owns.  Re-running an earlier step on an
item that has already reached a later stage keeps the later data: the
item keeps its stage and only the owned fields change.

``validate_for_commit`` re-checks every step invariant against the
accumulated draft before the commit protocol touches the record store.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from freshintake.schemas.receiving import (
    STAGE_ORDER,
    ZERO,
    CreatedItem,
    DropConfirmation,
    Draft,
    FinalizedItem,
    GradedItem,
    MeasuredItem,
    ProduceRef,
    Step1Form,
    Step2Form,
    Step3Form,
    Step4Form,
    Step5Form,
)
from freshintake.services.reconciliation import (
    clamp_return,
    delivery_discrepancy,
    format_quantity,
    reconcile_item,
)

MISSING_FIELDS_MESSAGE = "Please fill in all required fields"


# ── Results ─────────────────────────────────────────────────


@dataclass(frozen=True)
class StepNotice:
    """Informational message about one item; never blocks progression."""
    item_id: int
    message: str


@dataclass(frozen=True)
class StepOk:
    draft: Draft
    notices: list[StepNotice] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class StepFailure:
    step: int
    message: str
    item_ids: list[int] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False

    def to_details(self) -> dict:
        return {
            "step": self.step,
            "item_ids": self.item_ids,
            "fields": self.fields,
        }


StepResult = StepOk | StepFailure


# ── Helpers ─────────────────────────────────────────────────


def _promote(item, target: type, **updates):
    """Apply ``updates`` to ``item``, moving it forward to ``target`` stage.

    Items already past ``target`` keep their own stage so that data
    entered in later steps survives an earlier step being re-submitted.
    """
    target_stage = target.model_fields["stage"].default
    cls = type(item) if STAGE_ORDER[item.stage] >= STAGE_ORDER[target_stage] else target
    data = item.model_dump(exclude={"stage"})
    data.update(updates)
    return cls(**data)


def _bounded_returns(item, received: Decimal) -> dict:
    """Re-clamp an existing return after the received quantity changed."""
    if not isinstance(item, FinalizedItem):
        return {}
    returned = clamp_return(item.returned_quantity, received)
    updates = {"returned_quantity": returned}
    if returned == ZERO:
        updates["return_reason"] = None
    return updates


def _unknown_item_ids(draft: Draft, item_ids) -> list[int]:
    return [item_id for item_id in item_ids if draft.get_item(item_id) is None]


def _require_intake(draft: Draft, step: int) -> StepFailure | None:
    if draft.is_empty:
        return StepFailure(step, "Complete the order intake first", fields=["items"])
    return None


def _require_stage(draft: Draft, step: int, stage: str, message: str) -> StepFailure | None:
    behind = [
        item.item_id for item in draft.items
        if STAGE_ORDER[item.stage] < STAGE_ORDER[stage]
    ]
    if behind:
        return StepFailure(step, message, item_ids=behind)
    return None


def suggest_drop_time(now: datetime) -> datetime:
    """Default shown when the 'dropped' toggle is first switched on.

    Minute precision, matching a datetime-local input.  Only a suggestion:
    step 2 still requires the value to be submitted explicitly.
    """
    return now.replace(second=0, microsecond=0)


# ── Step 1: client order intake ─────────────────────────────


def apply_step1(
    draft: Draft,
    form: Step1Form,
    catalog: Mapping[str, ProduceRef],
) -> StepResult:
    """Record who placed the order and which produce lines were requested.

    ``catalog`` maps produce ids to catalog refs; a produce id that does not
    resolve counts as a missing selection.
    """
    missing_fields = []
    if not form.client_id:
        missing_fields.append("client_id")
    if form.order_date is None:
        missing_fields.append("order_date")
    if not form.items:
        missing_fields.append("items")

    # Assign local sequence numbers to new lines
    given_ids = [line.item_id for line in form.items if line.item_id is not None]
    if len(given_ids) != len(set(given_ids)):
        duplicates = sorted({i for i in given_ids if given_ids.count(i) > 1})
        return StepFailure(1, "Duplicate item ids", item_ids=duplicates)
    next_id = max(given_ids + [item.item_id for item in draft.items], default=0) + 1

    lines = []
    for line in form.items:
        item_id = line.item_id
        if item_id is None:
            item_id = next_id
            next_id += 1
        lines.append((item_id, line))

    bad_items = [
        item_id for item_id, line in lines
        if not line.produce_id
        or line.produce_id not in catalog
        or line.ordered_quantity is None
        or line.ordered_quantity <= 0
    ]
    if missing_fields or bad_items:
        return StepFailure(
            1, MISSING_FIELDS_MESSAGE, item_ids=bad_items, fields=missing_fields,
        )

    items = []
    for item_id, line in lines:
        updates = {
            "produce_ref": catalog[line.produce_id],
            "ordered_quantity": line.ordered_quantity,
        }
        existing = draft.get_item(item_id)
        if existing is None:
            items.append(CreatedItem(item_id=item_id, **updates))
        else:
            items.append(_promote(existing, CreatedItem, **updates))

    return StepOk(draft.model_copy(update={
        "client_id": form.client_id,
        "order_date": form.order_date,
        "items": items,
    }))


# ── Step 2: drop confirmation ───────────────────────────────


def apply_step2(draft: Draft, form: Step2Form) -> StepResult:
    failure = _require_intake(draft, 2)
    if failure:
        return failure

    if form.is_dropped and form.drop_time is None:
        return StepFailure(2, "Please specify the drop-off time", fields=["drop_time"])

    confirmation = DropConfirmation(
        is_dropped=form.is_dropped,
        drop_time=form.drop_time if form.is_dropped else None,
        notes=form.notes,
    )
    return StepOk(draft.model_copy(update={"drop_confirmation": confirmation}))


# ── Step 3: field measurement ───────────────────────────────


def apply_step3(draft: Draft, form: Step3Form) -> StepResult:
    """Record received quantities.

    Zero is a valid measurement; a missing value is not.  Differences from
    the ordered quantity are reported as notices only.
    """
    failure = _require_intake(draft, 3)
    if failure:
        return failure

    inputs = {m.item_id: m for m in form.items}
    unknown = _unknown_item_ids(draft, inputs)
    if unknown:
        return StepFailure(3, "Unknown items in measurement", item_ids=unknown)

    missing, negative = [], []
    for item in draft.items:
        m = inputs.get(item.item_id)
        if m is None:
            if not isinstance(item, MeasuredItem):
                missing.append(item.item_id)
        elif m.received_quantity is None:
            missing.append(item.item_id)
        elif m.received_quantity < 0:
            negative.append(item.item_id)

    if missing:
        return StepFailure(
            3, "Please enter received quantities for all items",
            item_ids=missing, fields=["received_quantity"],
        )
    if negative:
        return StepFailure(
            3, "Received quantities cannot be negative",
            item_ids=negative, fields=["received_quantity"],
        )

    items, notices = [], []
    for item in draft.items:
        m = inputs.get(item.item_id)
        if m is not None:
            item = _promote(
                item, MeasuredItem,
                received_quantity=m.received_quantity,
                field_notes=m.notes,
                **_bounded_returns(item, m.received_quantity),
            )
        items.append(item)
        message = delivery_discrepancy(item.ordered_quantity, item.received_quantity)
        if message:
            notices.append(StepNotice(item.item_id, message))

    return StepOk(draft.model_copy(update={"items": items}), notices)


# ── Step 4: sorting & grading ───────────────────────────────


def apply_step4(draft: Draft, form: Step4Form) -> StepResult:
    """Split each received quantity into A/B/C grades.

    The grades of every item must add up to its received quantity exactly.
    """
    failure = _require_intake(draft, 4) or _require_stage(
        draft, 4, "measured", "Please enter received quantities before grading",
    )
    if failure:
        return failure

    inputs = {g.item_id: g for g in form.items}
    unknown = _unknown_item_ids(draft, inputs)
    if unknown:
        return StepFailure(4, "Unknown items in grading", item_ids=unknown)

    negative = [
        g.item_id for g in form.items
        if min(g.grade_a, g.grade_b, g.grade_c) < 0
    ]
    if negative:
        return StepFailure(
            4, "Graded quantities cannot be negative",
            item_ids=negative, fields=["grade_a", "grade_b", "grade_c"],
        )

    items = []
    for item in draft.items:
        g = inputs.get(item.item_id)
        if g is not None:
            item = _promote(
                item, GradedItem,
                grade_a=g.grade_a, grade_b=g.grade_b, grade_c=g.grade_c,
                grading_notes=g.notes,
            )
        elif not isinstance(item, GradedItem):
            item = _promote(item, GradedItem)
        items.append(item)

    mismatched = [item for item in items if not reconcile_item(item).is_reconciled]
    if mismatched:
        names = ", ".join(item.produce_ref.name for item in mismatched)
        return StepFailure(
            4,
            f"Please ensure graded quantities match received quantities for: {names}",
            item_ids=[item.item_id for item in mismatched],
        )

    return StepOk(draft.model_copy(update={"items": items}))


# ── Step 5: returns & adjustments ───────────────────────────


def apply_step5(draft: Draft, form: Step5Form) -> StepResult:
    """Record returns.

    Returned quantities are capped at the received quantity on entry
    rather than rejected.  With ``has_returns`` off every item is reset to
    no return, whatever the form carries.
    """
    failure = _require_intake(draft, 5) or _require_stage(
        draft, 5, "graded", "Please grade all items before recording returns",
    )
    if failure:
        return failure

    if not form.has_returns:
        items = [
            _promote(item, FinalizedItem, returned_quantity=ZERO, return_reason=None, return_notes=None)
            for item in draft.items
        ]
        return StepOk(draft.model_copy(update={"items": items, "has_returns": False}))

    inputs = {r.item_id: r for r in form.items}
    unknown = _unknown_item_ids(draft, inputs)
    if unknown:
        return StepFailure(5, "Unknown items in returns", item_ids=unknown)

    negative = [r.item_id for r in form.items if r.returned_quantity < 0]
    if negative:
        return StepFailure(
            5, "Returned quantities cannot be negative",
            item_ids=negative, fields=["returned_quantity"],
        )

    items, notices, unexplained = [], [], []
    for item in draft.items:
        r = inputs.get(item.item_id)
        if r is None:
            if isinstance(item, FinalizedItem):
                items.append(item)
                continue
            requested, reason, notes = ZERO, None, None
        else:
            requested, reason, notes = r.returned_quantity, r.return_reason, r.notes

        returned = clamp_return(requested, item.received_quantity)
        if returned < requested:
            notices.append(StepNotice(
                item.item_id,
                f"Return capped at received quantity ({format_quantity(returned)})",
            ))
        if returned == ZERO:
            reason = None
        elif reason is None:
            unexplained.append(item.item_id)

        items.append(_promote(
            item, FinalizedItem,
            returned_quantity=returned, return_reason=reason, return_notes=notes,
        ))

    if unexplained:
        return StepFailure(
            5, "Please specify return reasons for all returned items",
            item_ids=unexplained, fields=["return_reason"],
        )

    return StepOk(draft.model_copy(update={"items": items, "has_returns": True}), notices)


# ── Step 6: review (defensive re-check) ─────────────────────


def validate_for_commit(draft: Draft) -> StepFailure | None:
    """Re-validate every step invariant against the accumulated draft.

    Returns the earliest failing step, or None when the draft is safe to
    commit.  Guards against drafts edited outside the wizard.
    """
    missing_fields = []
    if not draft.client_id:
        missing_fields.append("client_id")
    if draft.order_date is None:
        missing_fields.append("order_date")
    if not draft.items:
        missing_fields.append("items")
    if missing_fields:
        return StepFailure(1, MISSING_FIELDS_MESSAGE, fields=missing_fields)

    if draft.drop_confirmation is None:
        return StepFailure(2, "Please confirm whether the order was dropped", fields=["is_dropped"])

    failure = (
        _require_stage(draft, 3, "measured", "Please enter received quantities for all items")
        or _require_stage(draft, 4, "graded", "Please grade all items")
        or _require_stage(draft, 5, "finalized", "Please record returns for all items")
    )
    if failure:
        return failure

    mismatched = [item for item in draft.items if not reconcile_item(item).is_reconciled]
    if mismatched:
        names = ", ".join(item.produce_ref.name for item in mismatched)
        return StepFailure(
            4,
            f"Please ensure graded quantities match received quantities for: {names}",
            item_ids=[item.item_id for item in mismatched],
        )

    over_returned = [
        item.item_id for item in draft.items
        if item.returned_quantity > item.received_quantity
    ]
    if over_returned:
        return StepFailure(5, "Returned quantity exceeds received quantity", item_ids=over_returned)

    if not draft.has_returns:
        stray = [item.item_id for item in draft.items if item.returned_quantity > 0]
        if stray:
            return StepFailure(5, "Returns recorded but 'has returns' is off", item_ids=stray)

    unexplained = [
        item.item_id for item in draft.items
        if (item.returned_quantity > 0) != (item.return_reason is not None)
    ]
    if unexplained:
        return StepFailure(
            5, "Please specify return reasons for all returned items",
            item_ids=unexplained, fields=["return_reason"],
        )

    return None


STEP_VALIDATORS = {
    2: apply_step2,
    3: apply_step3,
    4: apply_step4,
    5: apply_step5,
}
