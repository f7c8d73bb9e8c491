"""Tests for disposal creation and lifecycle."""

from datetime import date

import pytest

from fishfarm.db import q
from fishfarm.errors import ConflictError, NotFoundError, ValidationError
from fishfarm.services.disposals import (
    approve_disposal,
    cancel_disposal,
    complete_disposal,
    create_disposal,
    disposal_stats,
    list_disposal_items,
    list_disposals,
)
from fishfarm.services.eligibility import EligibilityPolicy, find_disposal_candidates
from fishfarm.services.storage import get_location


@pytest.fixture
def candidates(conn, add_location, add_stock):
    store = add_location("Cold Room A")
    add_stock(location_id=store, pieces=10, weight_grams=5000.0, days_old=40)
    add_stock(location_id=store, pieces=4, weight_grams=2000.0, days_old=35)
    add_stock(location_id=store, pieces=8, weight_grams=4000.0, days_old=2)
    return find_disposal_candidates(conn, EligibilityPolicy(min_age_days=30))


def count(conn, table):
    return int(q(conn, f"SELECT COUNT(*) AS n FROM {table}")[0]["n"])


class TestCreateDisposal:
    def test_creates_record_items_and_flips_stock(self, conn, candidates, reason_id, stock_row) -> None:
        assert len(candidates) == 2
        res = create_disposal(conn, reason_id=reason_id("Age"), items=candidates, method="compost", disposal_cost=150)

        assert res.disposal_number == f"DISP-{date.today():%Y%m%d}-001"
        assert res.total_pieces == 14
        assert res.total_weight_kg == pytest.approx(7.0)
        assert res.item_count == 2

        items = list_disposal_items(conn, res.disposal_id)
        assert {i["stock_record_id"] for i in items} == {c.stock_record_id for c in candidates}
        assert all(i["disposal_reason"] == "Age" for i in items)
        assert all(i["storage_location_name"] == "Cold Room A" for i in items)
        for c in candidates:
            assert stock_row(c.stock_record_id)["status"] == "disposed"

        header = list_disposals(conn)[0]
        assert header["status"] == "pending"
        assert header["disposal_method"] == "compost"
        assert header["disposal_reason"] == "Age"

    def test_usage_cache_follows_disposal(self, conn, candidates, reason_id) -> None:
        create_disposal(conn, reason_id=reason_id(), items=candidates)
        store = candidates[0].storage_location_id
        assert get_location(conn, store).current_usage_kg == pytest.approx(4.0)

    def test_disposed_stock_leaves_candidate_list(self, conn, candidates, reason_id) -> None:
        create_disposal(conn, reason_id=reason_id(), items=candidates)
        assert find_disposal_candidates(conn, EligibilityPolicy(min_age_days=30)) == []

    def test_sequence_numbers_increment(self, conn, candidates, reason_id) -> None:
        create_disposal(conn, reason_id=reason_id(), items=candidates[:1])
        res = create_disposal(conn, reason_id=reason_id(), items=candidates[1:])
        assert res.disposal_number.endswith("-002")

    def test_no_items_rejected(self, conn, reason_id) -> None:
        with pytest.raises(ValidationError):
            create_disposal(conn, reason_id=reason_id(), items=[])

    def test_bad_method_and_cost_rejected(self, conn, candidates, reason_id) -> None:
        with pytest.raises(ValidationError):
            create_disposal(conn, reason_id=reason_id(), items=candidates, method="incinerate")
        with pytest.raises(ValidationError):
            create_disposal(conn, reason_id=reason_id(), items=candidates, disposal_cost=-5)

    def test_unknown_reason_writes_nothing(self, conn, candidates, stock_row) -> None:
        with pytest.raises(NotFoundError):
            create_disposal(conn, reason_id=999, items=candidates)
        assert count(conn, "disposal_records") == 0
        assert stock_row(candidates[0].stock_record_id)["status"] == "available"


class TestConcurrentDisposal:
    def test_stale_selection_rejected_and_rolled_back(self, conn, candidates, reason_id, stock_row) -> None:
        first, second = candidates
        create_disposal(conn, reason_id=reason_id(), items=[second])

        # Same list fetched before the first disposal committed
        with pytest.raises(ConflictError):
            create_disposal(conn, reason_id=reason_id(), items=[first, second])

        assert count(conn, "disposal_records") == 1
        assert count(conn, "disposal_items") == 1
        assert stock_row(first.stock_record_id)["status"] == "available"

    def test_duplicate_selection_rejected(self, conn, candidates, reason_id) -> None:
        with pytest.raises(ValidationError):
            create_disposal(conn, reason_id=reason_id(), items=[candidates[0], candidates[0]])


class TestLifecycle:
    def test_approve_then_complete(self, conn, candidates, reason_id) -> None:
        res = create_disposal(conn, reason_id=reason_id(), items=candidates)
        approve_disposal(conn, res.disposal_id, "manager")
        complete_disposal(conn, res.disposal_id, disposal_date=date(2026, 5, 1))
        row = list_disposals(conn)[0]
        assert row["status"] == "completed"
        assert row["approved_by"] == "manager"
        assert row["disposal_date"] == "2026-05-01"

    def test_complete_requires_approval(self, conn, candidates, reason_id) -> None:
        res = create_disposal(conn, reason_id=reason_id(), items=candidates)
        with pytest.raises(ConflictError):
            complete_disposal(conn, res.disposal_id)

    def test_missing_disposal(self, conn) -> None:
        with pytest.raises(NotFoundError):
            approve_disposal(conn, 12345)

    def test_cancel_restores_stock(self, conn, candidates, reason_id, stock_row) -> None:
        res = create_disposal(conn, reason_id=reason_id(), items=candidates)
        assert cancel_disposal(conn, res.disposal_id) == 2
        assert list_disposals(conn)[0]["status"] == "cancelled"
        for c in candidates:
            assert stock_row(c.stock_record_id)["status"] == "available"
        store = candidates[0].storage_location_id
        assert get_location(conn, store).current_usage_kg == pytest.approx(11.0)

    def test_cannot_cancel_approved(self, conn, candidates, reason_id) -> None:
        res = create_disposal(conn, reason_id=reason_id(), items=candidates)
        approve_disposal(conn, res.disposal_id)
        with pytest.raises(ConflictError):
            cancel_disposal(conn, res.disposal_id)


class TestStats:
    def test_empty(self, conn) -> None:
        stats = disposal_stats(conn)
        assert stats.total_disposals == 0
        assert stats.top_disposal_reason == "Age"

    def test_totals(self, conn, candidates, reason_id) -> None:
        create_disposal(conn, reason_id=reason_id("Storage Inactive"), items=candidates[:1], disposal_cost=100)
        create_disposal(conn, reason_id=reason_id("Storage Inactive"), items=candidates[1:], disposal_cost=50)
        stats = disposal_stats(conn)
        assert stats.total_disposals == 2
        assert stats.pending_disposals == 2
        assert stats.recent_disposals == 2
        assert stats.total_disposed_weight == pytest.approx(7.0)
        assert stats.total_disposal_cost == pytest.approx(150.0)
        assert stats.top_disposal_reason == "Storage Inactive"
