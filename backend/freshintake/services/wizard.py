"""Receiving wizard — navigation state machine over the draft store.

States: STEP_1 … STEP_6, then COMMITTED.

    start(form)        step 1 on a fresh draft; saved draft moves to step 2
    next(step, form)   validate the current step; save + advance on success
    back()             move the cursor back one step, data untouched
    submit()           at step 6 only; commit, then clear the draft
    abandon()          clear the draft
    form_state(step)   prefill values for a step's form

A failed step never touches the store.  A failed commit leaves the draft
at step 6 so the user can retry.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable

from freshintake.config import Settings, settings as default_settings
from freshintake.middleware.exceptions import (
    BusinessLogicError,
    ResourceNotFoundError,
    StepOutOfOrderError,
)
from freshintake.schemas.receiving import (
    TOTAL_STEPS,
    Draft,
    FinalizedItem,
    GradedItem,
    MeasuredItem,
    ProduceRef,
    ReturnReason,
    Step1Form,
    WizardState,
)
from freshintake.services.commit import CommitResult, commit_draft
from freshintake.services.draft_store import DraftStore
from freshintake.services.reconciliation import summarize_draft
from freshintake.services.record_store import RecordStore
from freshintake.services.step_validators import (
    STEP_VALIDATORS,
    StepFailure,
    StepNotice,
    apply_step1,
    suggest_drop_time,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    draft: Draft
    failure: StepFailure | None = None
    notices: list[StepNotice] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def state(self) -> WizardState:
        return WizardState.for_step(self.draft.current_step)


@dataclass(frozen=True)
class SubmitOutcome:
    draft_id: str
    result: CommitResult
    state: WizardState = WizardState.COMMITTED


def _text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


async def load_catalog(store: RecordStore, produce_ids=None) -> dict[str, ProduceRef]:
    """Produce catalog as ProduceRefs keyed by id, optionally narrowed."""
    where = {"id": sorted(produce_ids)} if produce_ids is not None else None
    rows = await store.select("produce", where=where, order_by="name")
    return {
        row["id"]: ProduceRef(id=row["id"], name=row["name"], unit=row["unit"])
        for row in rows
    }


class ReceivingWizard:
    def __init__(
        self,
        draft_store: DraftStore,
        record_store: RecordStore,
        catalog: Mapping[str, ProduceRef] | None = None,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.draft_store = draft_store
        self.record_store = record_store
        self.catalog = catalog
        self.settings = settings
        self.clock = clock

    @property
    def draft_id(self) -> str:
        return self.draft_store.draft_id

    async def _load_existing(self) -> Draft:
        if not await self.draft_store.exists():
            raise ResourceNotFoundError("Receiving draft", self.draft_id)
        return await self.draft_store.load()

    async def _catalog_for(self, form: Step1Form) -> Mapping[str, ProduceRef]:
        if self.catalog is not None:
            return self.catalog
        wanted = {line.produce_id for line in form.items if line.produce_id}
        return await load_catalog(self.record_store, wanted)

    async def _advance(self, draft: Draft, step: int, result) -> StepOutcome:
        if isinstance(result, StepFailure):
            logger.info(
                f"Draft {self.draft_id} step {step} rejected: {result.message}",
                extra={"draft_id": self.draft_id, "step": step, "item_ids": result.item_ids},
            )
            return StepOutcome(draft, failure=result)

        updated = result.draft.model_copy(update={
            "current_step": min(step + 1, TOTAL_STEPS),
            "updated_at": self.clock(),
        })
        await self.draft_store.save(updated)
        return StepOutcome(updated, notices=result.notices)

    # ── Transitions ──────────────────────────────────────────

    async def progress(self) -> Draft:
        return await self._load_existing()

    async def start(self, form: Step1Form) -> StepOutcome:
        if await self.draft_store.exists():
            raise BusinessLogicError(
                f"Receiving draft {self.draft_id} has already been started",
                error_code="DRAFT_EXISTS",
            )
        draft = Draft.empty(self.draft_id)
        result = apply_step1(draft, form, await self._catalog_for(form))
        outcome = await self._advance(draft, 1, result)
        if outcome.ok:
            logger.info(
                f"Started receiving draft {self.draft_id}",
                extra={"draft_id": self.draft_id},
            )
        return outcome

    async def next(self, step: int, form) -> StepOutcome:
        draft = await self._load_existing()
        if step != draft.current_step:
            raise StepOutOfOrderError(step, draft.current_step)
        if step == TOTAL_STEPS:
            raise BusinessLogicError(
                "The review step is completed by submitting the draft",
                error_code="SUBMIT_REQUIRED",
            )

        if step == 1:
            result = apply_step1(draft, form, await self._catalog_for(form))
        else:
            result = STEP_VALIDATORS[step](draft, form)
        return await self._advance(draft, step, result)

    async def back(self) -> Draft:
        draft = await self._load_existing()
        if draft.current_step == 1:
            return draft
        updated = draft.model_copy(update={
            "current_step": draft.current_step - 1,
            "updated_at": self.clock(),
        })
        await self.draft_store.save(updated)
        return updated

    async def submit(self) -> SubmitOutcome:
        draft = await self._load_existing()
        if draft.current_step != TOTAL_STEPS:
            raise StepOutOfOrderError(TOTAL_STEPS, draft.current_step)

        result = await commit_draft(draft, self.record_store, self.settings)
        await self.draft_store.clear()
        return SubmitOutcome(draft_id=draft.draft_id, result=result)

    async def abandon(self) -> None:
        if not await self.draft_store.exists():
            raise ResourceNotFoundError("Receiving draft", self.draft_id)
        await self.draft_store.clear()
        logger.info(f"Abandoned receiving draft {self.draft_id}", extra={"draft_id": self.draft_id})

    # ── Prefill ──────────────────────────────────────────────

    async def form_state(self, step: int) -> dict:
        """Values a step's screen loads on mount."""
        if not 1 <= step <= TOTAL_STEPS:
            raise BusinessLogicError(f"Unknown wizard step {step}", error_code="UNKNOWN_STEP")
        draft = await self.draft_store.load()
        if step > 1 and draft.is_empty:
            raise ResourceNotFoundError("Receiving draft", self.draft_id)
        return _FORM_BUILDERS[step](draft, self.clock())


def _step1_form(draft: Draft, now: datetime) -> dict:
    lines = [
        {
            "item_id": item.item_id,
            "produce_id": item.produce_ref.id,
            "ordered_quantity": _text(item.ordered_quantity),
        }
        for item in draft.items
    ]
    return {
        "client_id": draft.client_id,
        "order_date": draft.order_date.isoformat() if draft.order_date else None,
        "items": lines or [{"item_id": 1, "produce_id": None, "ordered_quantity": None}],
    }


def _step2_form(draft: Draft, now: datetime) -> dict:
    drop = draft.drop_confirmation
    return {
        "is_dropped": drop.is_dropped if drop else False,
        "drop_time": drop.drop_time.isoformat() if drop and drop.drop_time else None,
        "notes": drop.notes if drop else None,
        "suggested_drop_time": suggest_drop_time(now).isoformat(),
    }


def _step3_form(draft: Draft, now: datetime) -> dict:
    return {"items": [
        {
            "item_id": item.item_id,
            "name": item.produce_ref.name,
            "unit": item.produce_ref.unit,
            "ordered_quantity": _text(item.ordered_quantity),
            # Unset until measured; zero is a real measurement
            "received_quantity": _text(item.received_quantity) if isinstance(item, MeasuredItem) else None,
            "notes": item.field_notes if isinstance(item, MeasuredItem) else None,
        }
        for item in draft.items
    ]}


def _step4_form(draft: Draft, now: datetime) -> dict:
    items = []
    for item in draft.items:
        graded = isinstance(item, GradedItem)
        items.append({
            "item_id": item.item_id,
            "name": item.produce_ref.name,
            "unit": item.produce_ref.unit,
            "received_quantity": _text(item.received_quantity) if isinstance(item, MeasuredItem) else None,
            "grade_a": str(item.grade_a) if graded else "0.000",
            "grade_b": str(item.grade_b) if graded else "0.000",
            "grade_c": str(item.grade_c) if graded else "0.000",
            "notes": item.grading_notes if graded else None,
        })
    return {"items": items}


def _step5_form(draft: Draft, now: datetime) -> dict:
    items = []
    for item in draft.items:
        final = isinstance(item, FinalizedItem)
        items.append({
            "item_id": item.item_id,
            "name": item.produce_ref.name,
            "unit": item.produce_ref.unit,
            "received_quantity": _text(item.received_quantity) if isinstance(item, MeasuredItem) else None,
            "returned_quantity": str(item.returned_quantity) if final else "0.000",
            "return_reason": item.return_reason.value if final and item.return_reason else None,
            "notes": item.return_notes if final else None,
        })
    return {
        "has_returns": draft.has_returns,
        "items": items,
        "return_reasons": [reason.value for reason in ReturnReason],
    }


def _step6_form(draft: Draft, now: datetime) -> dict:
    return {"summary": summarize_draft(draft).model_dump(mode="json")}


_FORM_BUILDERS = {
    1: _step1_form,
    2: _step2_form,
    3: _step3_form,
    4: _step4_form,
    5: _step5_form,
    6: _step6_form,
}
