from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Mapping, Optional, Sequence

from fishfarm.db import atomic, q, u, x
from fishfarm.errors import CapacityError, ConflictError, NotFoundError, ValidationError
from fishfarm.models import DispatchStatus, OrderStatus, OutletOrder, StockRecord, StockStatus, check_size_class
from fishfarm.services.sizing import unit_weight
from fishfarm.services.storage import ACTIVE_STOCK_WHERE, STOCK_SELECT, get_stock_record, reconcile_usage
from fishfarm.utils import grams_to_kg, iso_now, iso_today

logger = logging.getLogger(__name__)


@dataclass
class PickSelection:
    stock_record_id: int
    quantity: int


@dataclass(frozen=True)
class PickLine:
    stock_record_id: int
    size_class: int
    quantity: int
    weight_grams: float
    remaining_pieces: int


@dataclass
class PickResult:
    order_id: int
    lines: list[PickLine] = field(default_factory=list)
    total_weight_kg: float = 0.0
    total_pieces: int = 0
    size_breakdown: dict[int, int] = field(default_factory=dict)
    dispatch_id: Optional[int] = None

    @property
    def fish_ids(self) -> list[int]:
        return [l.stock_record_id for l in self.lines]


# -------------------------
# Orders
# -------------------------

def _generate_order_number(conn, day: date) -> str:
    prefix = f"ORD-{day.strftime('%Y%m%d')}-"
    r = q(conn, "SELECT COUNT(1) AS n FROM outlet_orders WHERE order_number LIKE ?", (prefix + "%",))
    n = int(r[0]["n"]) if r else 0
    return f"{prefix}{n + 1:03d}"


def create_outlet_order(
    conn,
    *,
    outlet_name: str,
    size_quantities: Mapping[int, int],
    use_any_size: bool = False,
    total_value: float = 0.0,
    notes: Optional[str] = None,
    status: str = "pending",
) -> int:
    if not (outlet_name or "").strip():
        raise ValidationError("Outlet name is required.")
    sizes = {}
    for size, pieces in (size_quantities or {}).items():
        sc = check_size_class(size, "outlet order")
        if int(pieces) <= 0:
            raise ValidationError(f"Pieces for size {sc} must be > 0.")
        sizes[sc] = int(pieces)
    if not sizes:
        raise ValidationError("An order needs at least one size line.")

    order_id = x(
        conn,
        """
        INSERT INTO outlet_orders (order_number, outlet_name, size_quantities, use_any_size, total_value, status, notes, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            _generate_order_number(conn, date.today()),
            outlet_name.strip(),
            json.dumps({str(k): v for k, v in sorted(sizes.items())}),
            1 if use_any_size else 0,
            float(total_value or 0),
            OrderStatus(status).value,
            notes,
            iso_now(),
        ),
    )
    logger.info("Outlet order %s created for %s", order_id, outlet_name)
    return order_id


def get_order(conn, order_id: int) -> OutletOrder:
    rows = q(conn, "SELECT * FROM outlet_orders WHERE id=?", (int(order_id),))
    if not rows:
        raise NotFoundError(f"Outlet order {order_id} does not exist.")
    return OutletOrder.from_row(rows[0])


def list_orders(conn, status: Optional[str] = None) -> list[OutletOrder]:
    if status:
        rows = q(conn, "SELECT * FROM outlet_orders WHERE status=? ORDER BY created_at, id", (str(status),))
    else:
        rows = q(conn, "SELECT * FROM outlet_orders ORDER BY created_at DESC, id DESC")
    return [OutletOrder.from_row(r) for r in rows]


def confirm_order(conn, order_id: int) -> None:
    n = u(conn, "UPDATE outlet_orders SET status='confirmed' WHERE id=? AND status='pending'", (int(order_id),))
    if n != 1:
        order = get_order(conn, order_id)
        raise ConflictError(f"Order {order.order_number} is {order.status.value}, expected pending.")
    logger.info("Outlet order %s confirmed", order_id)


def list_dispatches(conn, limit: int = 100):
    return q(
        conn,
        """
        SELECT d.*, o.order_number, o.outlet_name
        FROM dispatch_records d
        JOIN outlet_orders o ON o.id = d.outlet_order_id
        ORDER BY d.created_at DESC, d.id DESC
        LIMIT ?
        """,
        (int(limit),),
    )


# -------------------------
# Picking
# -------------------------

def plan_picks(records: Mapping[int, StockRecord], selections: Sequence[PickSelection]) -> list[PickLine]:
    """
    Check selections against the records they reference and price each one
    by the record's own unit weight. Repeated selections of one record are
    summed before checking, so the total can never exceed what it holds.
    """
    wanted: dict[int, int] = {}
    for s in selections:
        qty = int(s.quantity)
        if qty <= 0:
            raise ValidationError(f"Pick quantity for stock record {s.stock_record_id} must be > 0.")
        wanted[int(s.stock_record_id)] = wanted.get(int(s.stock_record_id), 0) + qty
    if not wanted:
        raise ValidationError("Select at least one stock record to pick.")

    lines: list[PickLine] = []
    for rec_id, qty in wanted.items():
        rec = records.get(rec_id)
        if rec is None:
            raise NotFoundError(f"Stock record {rec_id} does not exist.")
        if rec.status is StockStatus.DISPOSED or rec.total_pieces <= 0:
            raise ConflictError(f"Stock record {rec_id} is no longer available.")
        if qty > rec.total_pieces:
            raise CapacityError(f"Stock record {rec_id} has {rec.total_pieces} pieces, {qty} requested.")

        if qty == rec.total_pieces:
            grams = rec.total_weight_grams
        else:
            grams = qty * unit_weight(rec.total_weight_grams, rec.total_pieces)
        lines.append(
            PickLine(
                stock_record_id=rec_id,
                size_class=rec.size_class,
                quantity=qty,
                weight_grams=grams,
                remaining_pieces=rec.total_pieces - qty,
            )
        )
    return lines


def summarize(order_id: int, lines: Sequence[PickLine]) -> PickResult:
    breakdown: dict[int, int] = {}
    for l in lines:
        breakdown[l.size_class] = breakdown.get(l.size_class, 0) + l.quantity
    return PickResult(
        order_id=int(order_id),
        lines=list(lines),
        total_weight_kg=round(grams_to_kg(sum(l.weight_grams for l in lines)), 3),
        total_pieces=sum(l.quantity for l in lines),
        size_breakdown=dict(sorted(breakdown.items())),
    )


def check_against_order(order: OutletOrder, breakdown: Mapping[int, int]) -> None:
    if order.use_any_size:
        return
    for size, pieces in breakdown.items():
        requested = order.size_quantities.get(size)
        if requested is None:
            raise ValidationError(f"Size {size} is not part of order {order.order_number}.")
        if pieces > requested:
            raise ValidationError(f"Size {size}: {pieces} picked but order {order.order_number} requests {requested}.")


def pick(
    conn,
    order_id: int,
    selections: Sequence[PickSelection],
    *,
    driver: Optional[str] = None,
    picking_date: Optional[str] = None,
    picking_time: Optional[str] = None,
    dispatched_by: Optional[str] = None,
    notes: Optional[str] = None,
    dispatch_date: Optional[str] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> PickResult:
    """
    Commit a pick for a confirmed order: decrement the picked records, write
    the dispatch snapshot and mark the order dispatched in one transaction.
    """

    def _pick() -> PickResult:
        order = get_order(conn, order_id)
        if order.status is not OrderStatus.CONFIRMED:
            raise ConflictError(f"Order {order.order_number} is {order.status.value}; only confirmed orders can be picked.")

        records = {}
        for s in selections:
            rid = int(s.stock_record_id)
            if rid not in records:
                records[rid] = get_stock_record(conn, rid)

        result = summarize(order.id, plan_picks(records, selections))
        check_against_order(order, result.size_breakdown)

        for line in result.lines:
            rec = records[line.stock_record_id]
            n = u(
                conn,
                """
                UPDATE stock_records
                SET total_pieces = total_pieces - ?,
                    total_weight_grams = CASE WHEN total_pieces - ? = 0 THEN 0
                                              ELSE MAX(total_weight_grams - ?, 0) END
                WHERE id=? AND status='available' AND total_pieces=?
                """,
                (line.quantity, line.quantity, line.weight_grams, line.stock_record_id, rec.total_pieces),
            )
            if n != 1:
                raise ConflictError(f"Stock record {line.stock_record_id} changed while picking. Refresh and retry.")

        result.dispatch_id = x(
            conn,
            """
            INSERT INTO dispatch_records (
                outlet_order_id, fish_ids, destination, dispatch_date, total_weight, total_pieces,
                size_breakdown, total_value, status, assigned_driver, picking_date, picking_time,
                dispatched_by, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.id,
                json.dumps(result.fish_ids),
                order.outlet_name,
                dispatch_date or iso_today(),
                result.total_weight_kg,
                result.total_pieces,
                json.dumps({str(k): v for k, v in result.size_breakdown.items()}),
                order.total_value,
                DispatchStatus.SCHEDULED.value,
                driver,
                picking_date,
                picking_time,
                dispatched_by,
                notes,
                iso_now(),
            ),
        )
        x(
            conn,
            "UPDATE outlet_orders SET status='dispatched', dispatch_date=? WHERE id=?",
            (dispatch_date or iso_today(), order.id),
        )
        reconcile_usage(conn, [r.storage_location_id for r in records.values()])
        return result

    result = atomic(conn, _pick, attempts=attempts, delay=retry_delay)
    logger.info(
        "Order %s picked: %s piece(s), %.3f kg, dispatch %s",
        order_id,
        result.total_pieces,
        result.total_weight_kg,
        result.dispatch_id,
    )
    return result


def approve_dispatch(
    conn,
    order_id: int,
    selections: Sequence[PickSelection],
    *,
    driver: Optional[str],
    picking_date: Optional[str],
    picking_time: Optional[str] = None,
    approved_by: Optional[str] = None,
    notes: Optional[str] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> PickResult:
    if not (driver or "").strip():
        raise ValidationError("Assign a driver before approving the dispatch.")
    if not picking_date:
        raise ValidationError("A picking date is required.")
    return pick(
        conn,
        order_id,
        selections,
        driver=driver.strip(),
        picking_date=str(picking_date),
        picking_time=picking_time,
        dispatched_by=approved_by,
        notes=notes,
        attempts=attempts,
        retry_delay=retry_delay,
    )


def suggest_picks(
    conn,
    size_quantities: Mapping[int, int],
    storage_location_id: Optional[int] = None,
) -> list[PickSelection]:
    """Oldest-first selections covering {size: pieces}."""
    out: list[PickSelection] = []
    for size, pieces in sorted(size_quantities.items()):
        sc = check_size_class(size, "pick suggestion")
        need = int(pieces)
        if need <= 0:
            continue

        sql = f"{STOCK_SELECT} WHERE s.size_class=? AND {ACTIVE_STOCK_WHERE}"
        params: list = [sc]
        if storage_location_id is not None:
            sql += " AND s.storage_location_id=?"
            params.append(int(storage_location_id))
        sql += " ORDER BY COALESCE(b.processing_date, s.created_at) ASC, s.created_at ASC, s.id ASC"

        for rec in (StockRecord.from_row(r) for r in q(conn, sql, params)):
            if need <= 0:
                break
            take = min(need, rec.total_pieces)
            out.append(PickSelection(stock_record_id=rec.id, quantity=take))
            need -= take

        if need > 0:
            raise CapacityError(f"Only {int(pieces) - need} of {pieces} pieces of size {sc} are in stock.")
    return out
