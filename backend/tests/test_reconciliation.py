"""Reconciliation engine tests."""

from decimal import Decimal

import pytest

from freshintake.schemas.receiving import CreatedItem, GradedItem, MeasuredItem
from freshintake.services.reconciliation import (
    clamp_return,
    delivery_discrepancy,
    format_quantity,
    reconcile_item,
    summarize_draft,
)


@pytest.mark.unit
class TestReconcileItem:

    def test_graded_total_matches_received(self, tomato):
        item = GradedItem(
            item_id=1, produce_ref=tomato, ordered_quantity=Decimal("100"),
            received_quantity=Decimal("95"),
            grade_a=Decimal("60"), grade_b=Decimal("30"), grade_c=Decimal("5"),
        )
        rec = reconcile_item(item)
        assert rec.total_graded == Decimal("95")
        assert rec.remaining == Decimal("95")
        assert rec.is_reconciled

    def test_decimal_sums_compare_exactly(self, tomato):
        # 0.1 + 0.2 would not equal 0.3 in binary floating point
        item = GradedItem(
            item_id=1, produce_ref=tomato, ordered_quantity=Decimal("1"),
            received_quantity=Decimal("0.3"),
            grade_a=Decimal("0.1"), grade_b=Decimal("0.2"),
        )
        assert reconcile_item(item).is_reconciled

    def test_unmeasured_item_is_not_reconciled(self, tomato):
        item = CreatedItem(item_id=1, produce_ref=tomato, ordered_quantity=Decimal("10"))
        rec = reconcile_item(item)
        assert rec.remaining is None
        assert not rec.is_reconciled

    def test_measured_but_ungraded_item(self, tomato):
        item = MeasuredItem(
            item_id=1, produce_ref=tomato, ordered_quantity=Decimal("10"),
            received_quantity=Decimal("10"),
        )
        rec = reconcile_item(item)
        assert rec.total_graded == Decimal("0")
        assert not rec.is_reconciled

    def test_zero_received_reconciles_with_zero_grades(self, tomato):
        item = GradedItem(
            item_id=1, produce_ref=tomato, ordered_quantity=Decimal("10"),
            received_quantity=Decimal("0"),
        )
        assert reconcile_item(item).is_reconciled

    def test_remaining_subtracts_returns(self, finalized_draft):
        rec = reconcile_item(finalized_draft.items[0])
        assert rec.remaining == Decimal("90")


@pytest.mark.unit
class TestDeliveryDiscrepancy:

    def test_over_delivery(self):
        assert delivery_discrepancy(Decimal("100"), Decimal("104.5")) == "Over-delivered by 4.5"

    def test_under_delivery(self):
        assert delivery_discrepancy(Decimal("100"), Decimal("95")) == "Under-delivered by 5"

    def test_exact_delivery(self):
        assert delivery_discrepancy(Decimal("100"), Decimal("100.000")) is None


@pytest.mark.unit
class TestHelpers:

    def test_clamp_return_never_exceeds_received(self):
        assert clamp_return(Decimal("200"), Decimal("95")) == Decimal("95")
        assert clamp_return(Decimal("3"), Decimal("95")) == Decimal("3")

    def test_format_quantity_drops_trailing_zeros(self):
        assert format_quantity(Decimal("95.000")) == "95"
        assert format_quantity(Decimal("100.250")) == "100.25"
        assert format_quantity(Decimal("0.000")) == "0"


@pytest.mark.unit
class TestSummarizeDraft:

    def test_totals(self, two_item_draft):
        summary = summarize_draft(two_item_draft)
        assert summary.total_ordered == Decimal("140")
        assert summary.total_received == Decimal("135")
        assert summary.total_grade_a == Decimal("100")
        assert summary.total_returned == Decimal("5")
        assert summary.total_remaining == Decimal("130")
        assert summary.all_reconciled
        assert [i.name for i in summary.items] == ["Tomato", "Onion"]

    def test_empty_draft_is_not_reconciled(self, finalized_draft):
        empty = finalized_draft.model_copy(update={"items": []})
        assert summarize_draft(empty).all_reconciled is False
