"""Commit protocol — turn a finished receiving draft into a permanent record.

Sequence (see commit_draft):

  1. Re-validate the draft (nothing is written when it fails)
  2. Check the client and every produce ref still exist
  3. Look up the header by idempotency key
       found, complete    → return it (created=False)
       found, short rows  → insert only the missing item rows
  4. Insert header + items
       transactional store      → one transaction
       non-transactional store  → per-row inserts, compensating delete
                                  of the header if an item insert fails

Every store call gets a per-call timeout.  Transient failures (timeouts,
dropped connections, a concurrent submit winning the idempotency key)
retry the whole lookup+write with exponential backoff; the lookup makes a
retry after an ambiguous failure safe.  The whole commit runs under a hard
deadline.

Failures are classified into TransientStoreError, ReferenceNotFoundError,
PartialCommitError or CommitError and logged once with the stage,
collection, operation and record index of the failing call.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from freshintake.config import Settings, settings as default_settings
from freshintake.middleware.exceptions import (
    CommitError,
    DraftValidationError,
    PartialCommitError,
    ReferenceNotFoundError,
    TransientStoreError,
)
from freshintake.schemas.receiving import Draft
from freshintake.services.record_store import RecordStore
from freshintake.services.step_validators import validate_for_commit

logger = logging.getLogger(__name__)

HEADERS = "receiving_records"
ITEMS = "receiving_items"


@dataclass(frozen=True)
class CommitResult:
    receiving_id: str
    item_count: int
    created: bool


def idempotency_key(draft_id: str) -> str:
    return f"receiving:{draft_id}"


def build_header(draft: Draft) -> dict:
    drop = draft.drop_confirmation
    return {
        "idempotency_key": idempotency_key(draft.draft_id),
        "client_id": draft.client_id,
        "order_date": draft.order_date,
        "is_dropped": drop.is_dropped,
        "drop_time": drop.drop_time,
        "drop_notes": drop.notes,
        "has_returns": draft.has_returns,
        "item_count": len(draft.items),
    }


def build_item_rows(draft: Draft, receiving_id: str) -> list[dict]:
    return [
        {
            "receiving_id": receiving_id,
            "line_number": item.item_id,
            "produce_id": item.produce_ref.id,
            "name": item.produce_ref.name,
            "unit": item.produce_ref.unit,
            "ordered_quantity": item.ordered_quantity,
            "received_quantity": item.received_quantity,
            "grade_a": item.grade_a,
            "grade_b": item.grade_b,
            "grade_c": item.grade_c,
            "returned_quantity": item.returned_quantity,
            "return_reason": item.return_reason.value if item.return_reason else None,
            "return_notes": item.return_notes,
            "field_notes": item.field_notes,
            "grading_notes": item.grading_notes,
        }
        for item in draft.items
    ]


# ── Failure classification ──────────────────────────────────

TRANSIENT = "transient"
CONFLICT = "conflict"
REFERENCE = "reference"
FATAL = "fatal"


class StoreCallFailed(Exception):
    """A record-store call failed; remembers where in the sequence."""

    def __init__(
        self,
        cause: BaseException,
        stage: str,
        collection: str,
        operation: str,
        record_index: int | None = None,
    ):
        self.cause = cause
        self.stage = stage
        self.collection = collection
        self.operation = operation
        self.record_index = record_index
        self.kind = classify(cause, collection)
        super().__init__(f"{operation} on {collection} failed at {stage}: {cause!r}")

    @property
    def retry_safe(self) -> bool:
        return self.kind in (TRANSIENT, CONFLICT)

    def location(self) -> dict:
        return {
            "stage": self.stage,
            "collection": self.collection,
            "operation": self.operation,
            "record_index": self.record_index,
        }


def classify(exc: BaseException, collection: str) -> str:
    if isinstance(exc, IntegrityError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if "foreign key" in message:
            return REFERENCE
        if "unique" in message and collection == HEADERS:
            # Another submit of the same draft got the idempotency key first
            return CONFLICT
        return FATAL
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, OperationalError, InterfaceError)):
        return TRANSIENT
    return FATAL


# ── Protocol ────────────────────────────────────────────────

class CommitProtocol:
    def __init__(self, store: RecordStore, settings: Settings = default_settings):
        self.store = store
        self.settings = settings

    async def commit(self, draft: Draft) -> CommitResult:
        failure = validate_for_commit(draft)
        if failure:
            logger.warning(
                f"Draft {draft.draft_id} failed pre-commit validation at step {failure.step}",
                extra={"draft_id": draft.draft_id, "step": failure.step},
            )
            raise DraftValidationError(failure)

        try:
            result = await asyncio.wait_for(
                self._commit(draft), timeout=self.settings.commit_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            error = TransientStoreError(
                "Saving the receiving record took too long. Please try again.",
                stage="deadline",
            )
            self._log_failure(draft, error, exc)
            raise error from exc

        logger.info(
            f"Committed receiving {result.receiving_id} for draft {draft.draft_id} "
            f"({result.item_count} items, created={result.created})",
            extra={"draft_id": draft.draft_id, "receiving_id": result.receiving_id},
        )
        return result

    async def _commit(self, draft: Draft) -> CommitResult:
        await self._retrying(draft, lambda: self._check_references(draft))
        return await self._retrying(draft, lambda: self._write_once(draft))

    async def _retrying(self, draft: Draft, attempt_fn):
        attempt = 0
        while True:
            attempt += 1
            try:
                return await attempt_fn()
            except StoreCallFailed as failed:
                if failed.retry_safe and attempt < self.settings.commit_max_attempts:
                    delay = self.settings.commit_backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        f"Commit attempt {attempt} for draft {draft.draft_id} hit a "
                        f"{failed.kind} failure; retrying in {delay:.2f}s",
                        extra={"draft_id": draft.draft_id, "attempt": attempt, **failed.location()},
                    )
                    await asyncio.sleep(delay)
                    continue
                error = self._to_commit_error(failed)
                self._log_failure(draft, error, failed.cause)
                raise error from failed.cause
            except PartialCommitError as error:
                self._log_failure(draft, error, error.__cause__)
                raise

    async def _call(self, factory, *, stage, collection, operation, record_index=None):
        """Run one store call under the per-call timeout, tagging failures."""
        try:
            return await asyncio.wait_for(
                factory(), timeout=self.settings.store_call_timeout_seconds,
            )
        except StoreCallFailed:
            raise
        except Exception as exc:
            raise StoreCallFailed(exc, stage, collection, operation, record_index) from exc

    # ── Steps ────────────────────────────────────────────────

    async def _check_references(self, draft: Draft) -> None:
        clients = await self._call(
            lambda: self.store.select(
                "clients", where={"id": draft.client_id, "is_active": True},
            ),
            stage="reference_check", collection="clients", operation="select",
        )
        produce_ids = sorted({item.produce_ref.id for item in draft.items})
        produce = await self._call(
            lambda: self.store.select("produce", where={"id": produce_ids}),
            stage="reference_check", collection="produce", operation="select",
        )

        missing = {}
        if not clients:
            missing["client_id"] = [draft.client_id]
        found = {row["id"] for row in produce}
        missing_produce = [pid for pid in produce_ids if pid not in found]
        if missing_produce:
            missing["produce_id"] = missing_produce
        if missing:
            error = ReferenceNotFoundError(missing)
            self._log_failure(draft, error)
            raise error

    async def _write_once(self, draft: Draft) -> CommitResult:
        key = idempotency_key(draft.draft_id)
        existing = await self._call(
            lambda: self.store.select(HEADERS, where={"idempotency_key": key}),
            stage="lookup", collection=HEADERS, operation="select",
        )
        if existing:
            return await self._complete_existing(draft, existing[0])
        if self.store.supports_transactions:
            return await self._write_atomic(draft)
        return await self._write_compensating(draft)

    async def _complete_existing(self, draft: Draft, header: dict) -> CommitResult:
        receiving_id = header["id"]
        rows = await self._call(
            lambda: self.store.select(ITEMS, where={"receiving_id": receiving_id}),
            stage="lookup", collection=ITEMS, operation="select",
        )
        present = {row["line_number"] for row in rows}
        wanted = build_item_rows(draft, receiving_id)
        missing = [
            (index, row) for index, row in enumerate(wanted)
            if row["line_number"] not in present
        ]
        if not missing:
            logger.info(
                f"Draft {draft.draft_id} was already committed as {receiving_id}",
                extra={"draft_id": draft.draft_id, "receiving_id": receiving_id},
            )
            return CommitResult(receiving_id, len(rows), created=False)

        logger.warning(
            f"Completing receiving {receiving_id}: {len(missing)} of {len(wanted)} item rows missing",
            extra={"draft_id": draft.draft_id, "receiving_id": receiving_id},
        )
        for index, row in missing:
            await self._insert_item(self.store, index, row)
        return CommitResult(receiving_id, len(wanted), created=False)

    async def _write_atomic(self, draft: Draft) -> CommitResult:
        async with self.store.transaction() as tx:
            header = await self._insert_header(tx, draft)
            rows = build_item_rows(draft, header["id"])
            for index, row in enumerate(rows):
                await self._insert_item(tx, index, row)
        return CommitResult(header["id"], len(rows), created=True)

    async def _write_compensating(self, draft: Draft) -> CommitResult:
        header = await self._insert_header(self.store, draft)
        rows = build_item_rows(draft, header["id"])
        try:
            for index, row in enumerate(rows):
                await self._insert_item(self.store, index, row)
        except StoreCallFailed as failed:
            await self._compensate(header["id"], failed)
            raise
        return CommitResult(header["id"], len(rows), created=True)

    async def _insert_header(self, store, draft: Draft) -> dict:
        return await self._call(
            lambda: store.insert(HEADERS, build_header(draft)),
            stage="header", collection=HEADERS, operation="insert",
        )

    async def _insert_item(self, store, index: int, row: dict) -> dict:
        return await self._call(
            lambda: store.insert(ITEMS, row),
            stage="item", collection=ITEMS, operation="insert", record_index=index,
        )

    async def _compensate(self, receiving_id: str, failed: StoreCallFailed) -> None:
        """Undo a half-written record so the store never shows it."""
        where_items = {"receiving_id": receiving_id}
        where_header = {"id": receiving_id}
        last_error = None
        for attempt in range(1, self.settings.commit_max_attempts + 1):
            try:
                await self._call(
                    lambda: self.store.delete(ITEMS, where_items),
                    stage="compensation", collection=ITEMS, operation="delete",
                )
                await self._call(
                    lambda: self.store.delete(HEADERS, where_header),
                    stage="compensation", collection=HEADERS, operation="delete",
                )
            except StoreCallFailed as exc:
                last_error = exc
                if not exc.retry_safe or attempt == self.settings.commit_max_attempts:
                    break
                await asyncio.sleep(self.settings.commit_backoff_seconds * (2 ** (attempt - 1)))
                continue
            logger.warning(
                f"Rolled back receiving {receiving_id} after item {failed.record_index} failed",
                extra={"receiving_id": receiving_id, **failed.location()},
            )
            return

        raise PartialCommitError(
            receiving_id,
            collection=failed.collection,
            operation=failed.operation,
            record_index=failed.record_index,
        ) from (last_error.cause if last_error else None)

    # ── Errors ───────────────────────────────────────────────

    def _to_commit_error(self, failed: StoreCallFailed) -> CommitError:
        location = failed.location()
        if failed.kind in (TRANSIENT, CONFLICT):
            return TransientStoreError(**location)
        if failed.kind == REFERENCE:
            return ReferenceNotFoundError({}, **location)
        return CommitError(
            f"Failed to save the receiving record ({failed.operation} on {failed.collection})",
            retryable=False,
            **location,
        )

    def _log_failure(self, draft: Draft, error: CommitError, cause: BaseException | None = None) -> None:
        logger.error(
            f"Receiving commit failed for draft {draft.draft_id}: {error.error_code} - {error.message}",
            extra={"draft_id": draft.draft_id, "error_code": error.error_code, **error.details},
            exc_info=cause,
        )


async def commit_draft(
    draft: Draft,
    store: RecordStore,
    settings: Settings = default_settings,
) -> CommitResult:
    """Write ``draft`` to ``store`` atomically and idempotently."""
    return await CommitProtocol(store, settings).commit(draft)
