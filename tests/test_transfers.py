"""Tests for transfer creation, batch grouping and approval."""

import pytest

from fishfarm.db import q, x
from fishfarm.errors import CapacityError, ConflictError, ValidationError
from fishfarm.models import TransferRecord, TransferStatus
from fishfarm.services import transfers
from fishfarm.services.storage import get_location, load_stock_records, usage
from fishfarm.services.transfers import (
    TransferLineInput,
    approve_transfer,
    complete_transfer,
    create_batch_transfer,
    decline_transfer,
    flatten_views,
    group_transfers,
    load_transfers,
    transfer_history,
)

T = "2026-06-01T10:00:00.000001+00:00"


def tr(id, *, size=1, qty=50, weight=10.0, created_at=T, notes="x", src="A", dst="B"):
    return TransferRecord(
        id=id,
        from_storage=src,
        to_storage=dst,
        size=size,
        quantity=qty,
        weight_kg=weight,
        notes=notes,
        status=TransferStatus.PENDING,
        created_at=created_at,
    )


def shape(views):
    return [(v.id, v.is_batch, v.batch_sizes, v.total_batch_quantity, v.total_batch_weight) for v in views]


class TestGrouping:
    def test_same_key_becomes_one_batch(self) -> None:
        views = group_transfers([tr(1, size=1, qty=50), tr(2, size=2, qty=30)])
        assert len(views) == 1
        view = views[0]
        assert view.is_batch
        assert view.batch_sizes == (1, 2)
        assert view.total_batch_quantity == 80
        assert view.id == 1

    def test_totals_equal_member_sums(self) -> None:
        members = [tr(1, size=1, qty=50, weight=12.5), tr(2, size=2, qty=30, weight=9.25), tr(3, size=4, qty=7, weight=3.1)]
        view = group_transfers(members)[0]
        assert view.total_batch_quantity == sum(m.quantity for m in view.batch_transfers)
        assert view.total_batch_weight == sum(m.weight_kg for m in view.batch_transfers)

    def test_grouping_is_idempotent(self) -> None:
        transfers = [
            tr(1, size=1),
            tr(2, size=2),
            tr(3, size=1, notes="other"),
            tr(4, size=5, created_at="2026-06-02T09:00:00+00:00"),
        ]
        once = group_transfers(transfers)
        twice = group_transfers(flatten_views(once))
        assert shape(once) == shape(twice)

    def test_any_key_difference_splits(self) -> None:
        views = group_transfers(
            [
                tr(1),
                tr(2, notes="y"),
                tr(3, dst="C"),
                tr(4, created_at="2026-06-01T10:00:00.000002+00:00"),
            ]
        )
        assert len(views) == 4
        assert not any(v.is_batch for v in views)

    def test_missing_notes_match_empty_notes(self) -> None:
        views = group_transfers([tr(1, notes=""), tr(2, size=2, notes=None)])
        assert len(views) == 1

    def test_single_member_is_plain_view(self) -> None:
        view = group_transfers([tr(7, size=3, qty=12, weight=4.0)])[0]
        assert not view.is_batch
        assert view.batch_sizes == (3,)
        assert view.quantity == 12

    def test_newest_first(self) -> None:
        views = group_transfers(
            [
                tr(1, created_at="2026-06-01T10:00:00+00:00"),
                tr(2, created_at="2026-06-03T10:00:00+00:00"),
                tr(3, created_at="2026-06-02T10:00:00+00:00"),
            ]
        )
        assert [v.id for v in views] == [2, 3, 1]

    def test_same_instant_identical_notes_merge(self) -> None:
        # Two separate requests that share route, timestamp and notes are indistinguishable.
        views = group_transfers([tr(1, size=1, notes=""), tr(2, size=6, notes="")])
        assert len(views) == 1 and views[0].is_batch


@pytest.fixture
def stores(add_location):
    return add_location("Source", capacity_kg=1000.0), add_location("Dest", capacity_kg=1000.0)


class TestCreate:
    def test_lines_share_timestamp_and_notes(self, conn, stores) -> None:
        src, dst = stores
        ids = create_batch_transfer(
            conn,
            from_storage_id=src,
            to_storage_id=dst,
            lines=[TransferLineInput(1, 50, 10.0), TransferLineInput(2, 30, 9.0)],
            notes=" rebalance ",
            requested_by="clerk",
        )
        assert len(ids) == 2
        rows = load_transfers(conn)
        assert {r.created_at for r in rows} == {rows[0].created_at}
        assert {r.notes for r in rows} == {"rebalance"}
        assert all(r.status is TransferStatus.PENDING for r in rows)

        views = transfer_history(conn)
        assert len(views) == 1
        assert views[0].batch_sizes == (1, 2)
        assert views[0].to_storage_name == "Dest"

    def test_same_route_rejected(self, conn, stores) -> None:
        src, _ = stores
        with pytest.raises(ValidationError):
            create_batch_transfer(conn, from_storage_id=src, to_storage_id=src, lines=[TransferLineInput(1, 5, 1.0)])

    def test_inactive_destination_rejected(self, conn, stores, add_location) -> None:
        src, _ = stores
        closed = add_location("Closed", status="inactive")
        with pytest.raises(ValidationError):
            create_batch_transfer(conn, from_storage_id=src, to_storage_id=closed, lines=[TransferLineInput(1, 5, 1.0)])

    def test_bad_lines_rejected(self, conn, stores) -> None:
        src, dst = stores
        for lines in ([], [TransferLineInput(1, 0, 1.0)], [TransferLineInput(11, 5, 1.0)], [TransferLineInput(1, 5, 1.0), TransferLineInput(1, 2, 1.0)]):
            with pytest.raises(ValidationError):
                create_batch_transfer(conn, from_storage_id=src, to_storage_id=dst, lines=lines)

    def test_duplicate_pending_rejected(self, conn, stores) -> None:
        src, dst = stores
        create_batch_transfer(conn, from_storage_id=src, to_storage_id=dst, lines=[TransferLineInput(1, 5, 2.0)])
        with pytest.raises(ConflictError):
            create_batch_transfer(conn, from_storage_id=src, to_storage_id=dst, lines=[TransferLineInput(1, 5, 2.005)])
        assert len(load_transfers(conn)) == 1


class TestApprove:
    def test_batch_approval_moves_stock_oldest_first(self, conn, stores, add_stock, stock_row) -> None:
        src, dst = stores
        old = add_stock(location_id=src, size_class=1, pieces=40, weight_grams=20000.0, days_old=50)
        new = add_stock(location_id=src, size_class=1, pieces=40, weight_grams=16000.0, days_old=5)
        size2 = add_stock(location_id=src, size_class=2, pieces=30, weight_grams=9000.0, days_old=10)

        ids = create_batch_transfer(
            conn,
            from_storage_id=src,
            to_storage_id=dst,
            lines=[TransferLineInput(1, 50, 24.0), TransferLineInput(2, 30, 9.0)],
        )
        approved = approve_transfer(conn, ids[0], "manager")
        assert sorted(approved) == sorted(ids)
        assert all(t.status is TransferStatus.APPROVED for t in load_transfers(conn))

        assert stock_row(old)["storage_location_id"] == dst
        assert stock_row(size2)["storage_location_id"] == dst
        remainder = stock_row(new)
        assert remainder["storage_location_id"] == src
        assert remainder["total_pieces"] == 30
        assert remainder["total_weight_grams"] == pytest.approx(12000.0)

        split = [r for r in load_stock_records(conn) if r.storage_location_id == dst and r.id not in (old, size2)]
        assert len(split) == 1
        assert split[0].total_pieces == 10
        assert split[0].total_weight_grams == pytest.approx(4000.0)
        assert split[0].sorting_batch_id == stock_row(new)["sorting_batch_id"]
        assert split[0].created_at == remainder["created_at"]

        assert usage(conn, src) == pytest.approx(12.0)
        assert usage(conn, dst) == pytest.approx(33.0)
        assert get_location(conn, dst).current_usage_kg == pytest.approx(33.0)

    def test_insufficient_stock_rolls_back_whole_batch(self, conn, stores, add_stock, stock_row) -> None:
        src, dst = stores
        rec1 = add_stock(location_id=src, size_class=1, pieces=40, weight_grams=8000.0)
        add_stock(location_id=src, size_class=2, pieces=5, weight_grams=1000.0)
        ids = create_batch_transfer(
            conn,
            from_storage_id=src,
            to_storage_id=dst,
            lines=[TransferLineInput(1, 10, 2.0), TransferLineInput(2, 30, 6.0)],
        )
        with pytest.raises(CapacityError):
            approve_transfer(conn, ids[0], "manager")
        assert all(t.status is TransferStatus.PENDING for t in load_transfers(conn))
        assert stock_row(rec1)["storage_location_id"] == src
        assert stock_row(rec1)["total_pieces"] == 40

    def test_destination_capacity_enforced(self, conn, add_location, add_stock) -> None:
        src = add_location("Source", capacity_kg=1000.0)
        dst = add_location("Small", capacity_kg=3.0)
        add_stock(location_id=src, size_class=1, pieces=10, weight_grams=5000.0)
        ids = create_batch_transfer(conn, from_storage_id=src, to_storage_id=dst, lines=[TransferLineInput(1, 10, 5.0)])
        with pytest.raises(CapacityError):
            approve_transfer(conn, ids[0], "manager")
        assert usage(conn, dst) == 0.0

    def test_decline_fans_out_without_moving_stock(self, conn, stores, add_stock, stock_row) -> None:
        src, dst = stores
        rec1 = add_stock(location_id=src, size_class=1)
        ids = create_batch_transfer(
            conn,
            from_storage_id=src,
            to_storage_id=dst,
            lines=[TransferLineInput(1, 5, 1.0), TransferLineInput(2, 5, 1.0)],
        )
        assert sorted(decline_transfer(conn, ids[0], "manager")) == sorted(ids)
        assert all(t.status is TransferStatus.DECLINED for t in load_transfers(conn))
        assert stock_row(rec1)["storage_location_id"] == src

    def test_only_pending_can_be_approved(self, conn, stores, add_stock) -> None:
        src, dst = stores
        add_stock(location_id=src, size_class=1)
        ids = create_batch_transfer(conn, from_storage_id=src, to_storage_id=dst, lines=[TransferLineInput(1, 5, 2.5)])
        decline_transfer(conn, ids[0], "manager")
        with pytest.raises(ConflictError):
            approve_transfer(conn, ids[0], "manager")

    def test_complete_after_approval(self, conn, stores, add_stock) -> None:
        src, dst = stores
        add_stock(location_id=src, size_class=1)
        ids = create_batch_transfer(conn, from_storage_id=src, to_storage_id=dst, lines=[TransferLineInput(1, 5, 2.5)])
        with pytest.raises(ConflictError):
            complete_transfer(conn, ids[0])
        approve_transfer(conn, ids[0], "manager")
        assert complete_transfer(conn, ids[0]) == ids
        row = q(conn, "SELECT status, completed_at FROM transfers WHERE id=?", (ids[0],))[0]
        assert row["status"] == "completed"
        assert row["completed_at"]


def insert_transfer(conn, src, dst, *, size, qty, created_at, notes=""):
    return x(
        conn,
        """
        INSERT INTO transfers (from_storage_location_id, to_storage_location_id, size_class,
                               quantity, weight_kg, notes, status, created_at)
        VALUES (?, ?, ?, ?, ?, ?, 'pending', ?)
        """,
        (src, dst, size, qty, qty * 0.5, notes, created_at),
    )


class TestHistoryLimit:
    @pytest.fixture
    def crowded(self, conn, stores):
        """A two-size batch behind 199 newer single transfers: 201 rows, 200 batches."""
        src, dst = stores
        old = [
            insert_transfer(conn, src, dst, size=1, qty=10, created_at="2024-01-01T08:00:00+00:00"),
            insert_transfer(conn, src, dst, size=2, qty=10, created_at="2024-01-01T08:00:00+00:00"),
        ]
        for i in range(199):
            insert_transfer(conn, src, dst, size=3, qty=1, created_at=f"2025-03-01T08:{i // 60:02d}:{i % 60:02d}+00:00")
        return old

    def test_batch_at_the_cutoff_keeps_every_member(self, conn, crowded) -> None:
        views = transfer_history(conn)
        assert len(views) == 200
        oldest = views[-1]
        assert oldest.is_batch
        assert oldest.batch_sizes == (1, 2)
        assert oldest.total_batch_quantity == 20
        assert [t.id for t in oldest.batch_transfers] == crowded

    def test_limit_counts_batches_not_rows(self, conn, crowded) -> None:
        views = transfer_history(conn, limit=199)
        assert len(views) == 199
        assert not any(v.is_batch for v in views)
        assert len(load_transfers(conn, limit=200)) == 201

    def test_declining_the_shown_batch_touches_only_its_members(self, conn, crowded) -> None:
        shown = transfer_history(conn)[-1]
        declined = decline_transfer(conn, shown.id, "manager")
        assert sorted(declined) == sorted(t.id for t in shown.batch_transfers)

    def test_status_filter_applies_to_whole_batches(self, conn, crowded) -> None:
        decline_transfer(conn, crowded[0], "manager")
        rows = load_transfers(conn, status="declined", limit=1)
        assert sorted(r.id for r in rows) == crowded


def test_retry_settings_reach_the_store(conn, stores, add_stock, monkeypatch) -> None:
    seen = []
    real_atomic = transfers.atomic

    def recording(c, operation, **kwargs):
        seen.append(kwargs)
        return real_atomic(c, operation, **kwargs)

    monkeypatch.setattr(transfers, "atomic", recording)
    src, dst = stores
    add_stock(location_id=src, size_class=1)
    ids = create_batch_transfer(
        conn, from_storage_id=src, to_storage_id=dst, lines=[TransferLineInput(1, 5, 2.5)], attempts=5, retry_delay=0.1
    )
    approve_transfer(conn, ids[0], "manager", attempts=5, retry_delay=0.1)
    complete_transfer(conn, ids[0], attempts=5, retry_delay=0.1)
    assert seen == [{"attempts": 5, "delay": 0.1}] * 3
