"""Receiving wizard — 6-step intake of a client's produce order.

Endpoints:
  GET    /api/receiving/reference                → clients + produce catalog
  POST   /api/receiving/drafts                   → start a draft (step 1)
  GET    /api/receiving/drafts/{id}              → progress + summary
  GET    /api/receiving/drafts/{id}/step/{n}/form → prefill for step n
  PATCH  /api/receiving/drafts/{id}/step/{n}     → submit step n (1..5)
  POST   /api/receiving/drafts/{id}/back         → previous step
  POST   /api/receiving/drafts/{id}/submit       → commit (step 6)
  DELETE /api/receiving/drafts/{id}              → abandon
  GET    /api/receiving/records                  → recently committed records
  GET    /api/receiving/records/stats            → dashboard counters

Steps:
  1. Client order intake   2. Drop confirmation   3. Field measurement
  4. Sorting & grading     5. Returns             6. Review & submit

A rejected step answers 422 with the failing step, item ids and fields in
``details``; the draft is left unchanged.
"""

import uuid
from typing import Callable

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from freshintake.config import settings
from freshintake.database import get_db, get_session_factory
from freshintake.middleware.exceptions import DraftValidationError
from freshintake.models.client import Client
from freshintake.models.produce import Produce
from freshintake.models.receiving import ReceivingRecord
from freshintake.schemas.receiving import (
    STEP_FORMS,
    TOTAL_STEPS,
    ClientRef,
    Draft,
    DraftProgress,
    ProduceOut,
    ReceivingItemOut,
    ReceivingRecordOut,
    ReceivingStats,
    ReferenceLists,
    Step1Form,
    StepFormState,
    StepNoticeOut,
    SubmitResult,
    WizardState,
)
from freshintake.services.draft_store import DbDraftStore, DraftStore, RedisDraftStore
from freshintake.services.reconciliation import summarize_draft
from freshintake.services.record_store import RecordStore, SqlRecordStore
from freshintake.services.wizard import ReceivingWizard, StepOutcome
from freshintake.utils.cache import cached, get_redis

router = APIRouter()


# ── Dependencies ─────────────────────────────────────────────

def get_record_store() -> RecordStore:
    return SqlRecordStore(get_session_factory())


async def get_draft_stores(
    db: AsyncSession = Depends(get_db),
) -> Callable[[str], DraftStore]:
    """Factory of draft stores for the configured backend."""
    if settings.draft_backend == "redis":
        client = await get_redis()
        return lambda draft_id: RedisDraftStore(client, draft_id, settings.draft_ttl_seconds)
    return lambda draft_id: DbDraftStore(db, draft_id)


def _wizard(draft_id: str, draft_stores, record_store: RecordStore) -> ReceivingWizard:
    return ReceivingWizard(draft_stores(draft_id), record_store)


# ── Helpers ──────────────────────────────────────────────────

def _progress(draft: Draft, outcome: StepOutcome | None = None) -> DraftProgress:
    notices = outcome.notices if outcome else []
    return DraftProgress(
        draft_id=draft.draft_id,
        state=WizardState.for_step(draft.current_step),
        current_step=draft.current_step,
        draft=draft,
        summary=summarize_draft(draft),
        notices=[StepNoticeOut(item_id=n.item_id, message=n.message) for n in notices],
    )


def _checked(outcome: StepOutcome) -> DraftProgress:
    if outcome.failure:
        raise DraftValidationError(outcome.failure)
    return _progress(outcome.draft, outcome)


# ── Reference data ───────────────────────────────────────────

@router.get("/reference", response_model=ReferenceLists)
@cached(ttl=settings.reference_cache_ttl, prefix="reference")
async def get_reference_lists(db: AsyncSession = Depends(get_db)):
    """Active clients and the produce catalog for the intake form."""
    clients = await db.execute(
        select(Client).where(Client.is_active.is_(True)).order_by(Client.name)
    )
    produce = await db.execute(select(Produce).order_by(Produce.name))
    return ReferenceLists(
        clients=[ClientRef.model_validate(c) for c in clients.scalars().all()],
        produce=[ProduceOut.model_validate(p) for p in produce.scalars().all()],
    )


# ── Drafts ───────────────────────────────────────────────────

@router.post("/drafts", response_model=DraftProgress, status_code=status.HTTP_201_CREATED)
async def start_draft(
    form: Step1Form,
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    wizard = _wizard(str(uuid.uuid4()), draft_stores, record_store)
    return _checked(await wizard.start(form))


@router.get("/drafts/{draft_id}", response_model=DraftProgress)
async def get_draft(
    draft_id: str,
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    draft = await _wizard(draft_id, draft_stores, record_store).progress()
    return _progress(draft)


@router.get("/drafts/{draft_id}/step/{step}/form", response_model=StepFormState)
async def get_step_form(
    draft_id: str,
    step: int = Path(..., ge=1, le=TOTAL_STEPS),
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    form = await _wizard(draft_id, draft_stores, record_store).form_state(step)
    return StepFormState(draft_id=draft_id, step=step, form=form)


@router.patch("/drafts/{draft_id}/step/{step}", response_model=DraftProgress)
async def submit_step(
    draft_id: str,
    step: int = Path(..., ge=1, le=TOTAL_STEPS - 1),
    body: dict = Body(...),
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    form = STEP_FORMS[step].model_validate(body)
    outcome = await _wizard(draft_id, draft_stores, record_store).next(step, form)
    return _checked(outcome)


@router.post("/drafts/{draft_id}/back", response_model=DraftProgress)
async def go_back(
    draft_id: str,
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    draft = await _wizard(draft_id, draft_stores, record_store).back()
    return _progress(draft)


@router.post(
    "/drafts/{draft_id}/submit",
    response_model=SubmitResult,
    status_code=status.HTTP_201_CREATED,
)
async def submit_draft(
    draft_id: str,
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    outcome = await _wizard(draft_id, draft_stores, record_store).submit()
    return SubmitResult(
        draft_id=outcome.draft_id,
        state=outcome.state,
        receiving_id=outcome.result.receiving_id,
        item_count=outcome.result.item_count,
        created=outcome.result.created,
    )


@router.delete("/drafts/{draft_id}", status_code=status.HTTP_204_NO_CONTENT)
async def abandon_draft(
    draft_id: str,
    draft_stores=Depends(get_draft_stores),
    record_store: RecordStore = Depends(get_record_store),
):
    await _wizard(draft_id, draft_stores, record_store).abandon()


# ── Committed records ────────────────────────────────────────

@router.get("/records", response_model=list[ReceivingRecordOut])
async def list_records(
    limit: int = Query(settings.recent_records_limit, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Most recent receiving records, newest first."""
    result = await db.execute(
        select(ReceivingRecord)
        .options(
            selectinload(ReceivingRecord.client),
            selectinload(ReceivingRecord.items),
        )
        .order_by(ReceivingRecord.created_at.desc())
        .limit(limit)
    )
    return [
        ReceivingRecordOut(
            id=record.id,
            client_id=record.client_id,
            client_name=record.client.name if record.client else None,
            order_date=record.order_date,
            is_dropped=record.is_dropped,
            drop_time=record.drop_time,
            has_returns=record.has_returns,
            created_at=record.created_at,
            items=[ReceivingItemOut.model_validate(item) for item in record.items],
        )
        for record in result.scalars().all()
    ]


@router.get("/records/stats", response_model=ReceivingStats)
async def record_stats(db: AsyncSession = Depends(get_db)):
    """Total, dropped and with-returns counts for the receiving dashboard."""
    result = await db.execute(
        select(
            func.count(ReceivingRecord.id),
            func.coalesce(func.sum(case((ReceivingRecord.is_dropped.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((ReceivingRecord.has_returns.is_(True), 1), else_=0)), 0),
        )
    )
    total, dropped, with_returns = result.one()
    return ReceivingStats(total=total, dropped=dropped, with_returns=with_returns)
