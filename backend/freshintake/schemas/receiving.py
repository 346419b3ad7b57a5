"""Pydantic schemas for the 6-step receiving wizard.

Three groups:

  - The Draft value object threaded through the wizard.  Each line item is
    one of four stage models (created → measured → graded → finalized);
    a stage only carries the fields that are valid once the matching step
    has been passed, so "received quantity not entered yet" is a
    CreatedItem rather than a None on a catch-all record.
  - Step form payloads (StepNForm).  These are deliberately lax: required
    fields are Optional so that missing input reaches the step validator
    and comes back as a StepFailure instead of a request parse error.
  - Response models for the receiving router.

Quantities are Decimals quantized to QUANTITY_PLACES on entry and are
compared exactly at that precision.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

QUANTITY_PLACES = Decimal("0.001")
# Largest value a NUMERIC(12, 3) column holds
MAX_QUANTITY = Decimal("999999999.999")
TOTAL_STEPS = 6


def quantize(value: Decimal) -> Decimal:
    """Round a quantity to the fixed comparison precision."""
    try:
        return value.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Quantity {value} is out of range")


# Bounds are checked before rounding, so a bounded value never rounds past them
Quantity = Annotated[Decimal, Field(ge=0, le=MAX_QUANTITY), AfterValidator(quantize)]
PositiveQuantity = Annotated[Decimal, Field(gt=0, le=MAX_QUANTITY), AfterValidator(quantize)]
# Form input: sign and presence are checked by the step validators
QuantityInput = Annotated[
    Decimal, Field(ge=-MAX_QUANTITY, le=MAX_QUANTITY), AfterValidator(quantize)
]

ZERO = quantize(Decimal("0"))


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _naive_utc(value: datetime | None) -> datetime | None:
    """Store timestamps as naive UTC, matching the timestamp columns."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ReturnReason(str, Enum):
    DAMAGED = "Damaged"
    OVER_DELIVERED = "Over-delivered"
    WRONG_ITEM = "Wrong item"
    QUALITY_ISSUES = "Quality issues"
    OTHER = "Other"


class WizardState(str, Enum):
    STEP_1 = "step_1"
    STEP_2 = "step_2"
    STEP_3 = "step_3"
    STEP_4 = "step_4"
    STEP_5 = "step_5"
    STEP_6 = "step_6"
    COMMITTED = "committed"

    @classmethod
    def for_step(cls, step: int) -> "WizardState":
        return cls(f"step_{step}")


# ── Draft value object ──────────────────────────────────────

class ProduceRef(BaseModel):
    """Catalog entry an order line points at."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    unit: str


class CreatedItem(BaseModel):
    """Order line as captured at intake (step 1)."""
    model_config = ConfigDict(frozen=True)

    stage: Literal["created"] = "created"
    item_id: int = Field(..., ge=1)
    produce_ref: ProduceRef
    ordered_quantity: PositiveQuantity


class MeasuredItem(CreatedItem):
    """Line with a field-measured quantity (step 3)."""
    stage: Literal["measured"] = "measured"
    received_quantity: Quantity
    field_notes: str | None = None


class GradedItem(MeasuredItem):
    """Line sorted into A/B/C tiers (step 4)."""
    stage: Literal["graded"] = "graded"
    grade_a: Quantity = ZERO
    grade_b: Quantity = ZERO
    grade_c: Quantity = ZERO
    grading_notes: str | None = None


class FinalizedItem(GradedItem):
    """Line with returns recorded (step 5); ready to commit."""
    stage: Literal["finalized"] = "finalized"
    returned_quantity: Quantity = ZERO
    return_reason: ReturnReason | None = None
    return_notes: str | None = None


DraftItem = Annotated[
    Union[CreatedItem, MeasuredItem, GradedItem, FinalizedItem],
    Field(discriminator="stage"),
]

STAGE_ORDER = {"created": 1, "measured": 2, "graded": 3, "finalized": 4}


class DropConfirmation(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_dropped: bool = False
    drop_time: datetime | None = None
    notes: str | None = None

    naive_drop_time = field_validator("drop_time")(_naive_utc)

    @model_validator(mode="after")
    def _drop_time_iff_dropped(self):
        if self.is_dropped and self.drop_time is None:
            raise ValueError("drop_time is required when the order is dropped")
        if not self.is_dropped and self.drop_time is not None:
            raise ValueError("drop_time must be empty when the order is not dropped")
        return self


class Draft(BaseModel):
    """The working, not-yet-committed receiving record."""
    model_config = ConfigDict(frozen=True)

    draft_id: str
    client_id: str | None = None
    order_date: date | None = None
    items: list[DraftItem] = Field(default_factory=list)
    drop_confirmation: DropConfirmation | None = None
    has_returns: bool = False
    current_step: int = Field(1, ge=1, le=TOTAL_STEPS)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def empty(cls, draft_id: str) -> "Draft":
        return cls(draft_id=draft_id)

    @property
    def is_empty(self) -> bool:
        return self.client_id is None and not self.items

    def get_item(self, item_id: int):
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None


# ── Step forms ──────────────────────────────────────────────

class IntakeItemInput(BaseModel):
    item_id: int | None = Field(None, ge=1)
    produce_id: str | None = None
    ordered_quantity: QuantityInput | None = None

    blank_to_none = field_validator("produce_id", "ordered_quantity", mode="before")(_blank_to_none)


class Step1Form(BaseModel):
    """Client order intake: who ordered what."""
    client_id: str | None = None
    order_date: date | None = None
    items: list[IntakeItemInput] = Field(default_factory=list)

    blank_to_none = field_validator("client_id", "order_date", mode="before")(_blank_to_none)


class Step2Form(BaseModel):
    """Drop confirmation."""
    is_dropped: bool = False
    drop_time: datetime | None = None
    notes: str | None = None

    blank_to_none = field_validator("drop_time", "notes", mode="before")(_blank_to_none)
    naive_drop_time = field_validator("drop_time")(_naive_utc)


class MeasurementInput(BaseModel):
    item_id: int
    received_quantity: QuantityInput | None = None
    notes: str | None = None

    blank_to_none = field_validator("received_quantity", "notes", mode="before")(_blank_to_none)


class Step3Form(BaseModel):
    """Field measurement of received quantities."""
    items: list[MeasurementInput] = Field(default_factory=list)


class GradingInput(BaseModel):
    item_id: int
    grade_a: QuantityInput = ZERO
    grade_b: QuantityInput = ZERO
    grade_c: QuantityInput = ZERO
    notes: str | None = None

    blank_to_none = field_validator("notes", mode="before")(_blank_to_none)


class Step4Form(BaseModel):
    """Sorting & grading."""
    items: list[GradingInput] = Field(default_factory=list)


class ReturnInput(BaseModel):
    item_id: int
    returned_quantity: QuantityInput = ZERO
    return_reason: ReturnReason | None = None
    notes: str | None = None

    blank_to_none = field_validator("return_reason", "notes", mode="before")(_blank_to_none)


class Step5Form(BaseModel):
    """Returns & adjustments."""
    has_returns: bool = False
    items: list[ReturnInput] = Field(default_factory=list)


STEP_FORMS: dict[int, type[BaseModel]] = {
    1: Step1Form,
    2: Step2Form,
    3: Step3Form,
    4: Step4Form,
    5: Step5Form,
}


# ── Responses ───────────────────────────────────────────────

class StepNoticeOut(BaseModel):
    item_id: int
    message: str


class ItemSummary(BaseModel):
    item_id: int
    name: str
    unit: str
    stage: str
    ordered_quantity: Decimal
    received_quantity: Decimal | None = None
    grade_a: Decimal = ZERO
    grade_b: Decimal = ZERO
    grade_c: Decimal = ZERO
    total_graded: Decimal = ZERO
    returned_quantity: Decimal = ZERO
    remaining: Decimal | None = None
    is_reconciled: bool = False


class DraftSummary(BaseModel):
    items: list[ItemSummary]
    total_ordered: Decimal
    total_received: Decimal
    total_grade_a: Decimal
    total_grade_b: Decimal
    total_grade_c: Decimal
    total_returned: Decimal
    total_remaining: Decimal
    all_reconciled: bool


class DraftProgress(BaseModel):
    draft_id: str
    state: WizardState
    current_step: int
    draft: Draft
    summary: DraftSummary
    notices: list[StepNoticeOut] = []


class StepFormState(BaseModel):
    """Prefilled values for a step's form, built from the draft."""
    draft_id: str
    step: int
    form: dict


class SubmitResult(BaseModel):
    draft_id: str
    state: WizardState
    receiving_id: str
    item_count: int
    created: bool


class ClientRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class ProduceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: str | None = None
    unit: str


class ReferenceLists(BaseModel):
    clients: list[ClientRef]
    produce: list[ProduceOut]


class ReceivingItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_number: int
    produce_id: str | None = None
    name: str
    unit: str | None = None
    ordered_quantity: Decimal
    received_quantity: Decimal
    grade_a: Decimal
    grade_b: Decimal
    grade_c: Decimal
    returned_quantity: Decimal
    return_reason: str | None = None


class ReceivingRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    client_name: str | None = None
    order_date: date
    is_dropped: bool
    drop_time: datetime | None = None
    has_returns: bool
    created_at: datetime
    items: list[ReceivingItemOut] = []


class ReceivingStats(BaseModel):
    """Dashboard counters over all committed receiving records."""
    total: int
    dropped: int
    with_returns: int
