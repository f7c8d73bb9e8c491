from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Sequence

from fishfarm.db import atomic, q, u, x
from fishfarm.errors import ConflictError, NotFoundError, ValidationError
from fishfarm.models import DisposalMethod, DisposalStatus, parse_enum
from fishfarm.services.eligibility import CandidateItem
from fishfarm.services.storage import get_stock_record, reconcile_usage
from fishfarm.utils import grams_to_kg, iso_now, parse_iso_date

logger = logging.getLogger(__name__)


@dataclass
class DisposalResult:
    disposal_id: int
    disposal_number: str
    total_weight_kg: float
    total_pieces: int
    item_count: int


@dataclass
class DisposalStats:
    total_disposals: int = 0
    total_disposed_weight: float = 0.0
    total_disposal_cost: float = 0.0
    pending_disposals: int = 0
    recent_disposals: int = 0
    average_disposal_age: float = 0.0
    top_disposal_reason: str = "Age"
    monthly_disposal_trend: float = 0.0


def list_disposal_reasons(conn):
    return q(conn, "SELECT * FROM disposal_reasons WHERE is_active=1 ORDER BY name")


def _generate_disposal_number(conn, day: date) -> str:
    """
    Consistent system code:
      DISP-{YYYYMMDD}-{NNN}
    """
    prefix = f"DISP-{day.strftime('%Y%m%d')}-"
    r = q(conn, "SELECT COUNT(1) AS n FROM disposal_records WHERE disposal_number LIKE ?", (prefix + "%",))
    n = int(r[0]["n"]) if r else 0
    return f"{prefix}{n + 1:03d}"


def create_disposal(
    conn,
    *,
    reason_id: int,
    items: Sequence[CandidateItem],
    method: str = "waste",
    disposal_cost: float = 0.0,
    notes: Optional[str] = None,
    disposal_location: Optional[str] = None,
    disposed_by: Optional[str] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> DisposalResult:
    """
    Create a disposal record with one item per selected stock record and flip
    those records to 'disposed', all in one transaction. If any record was
    disposed or consumed in the meantime the whole disposal is rejected.
    """
    if not items:
        raise ValidationError("Select at least one item to dispose.")
    if reason_id is None:
        raise ValidationError("A disposal reason is required.")
    method_enum = parse_enum(DisposalMethod, method, "disposal")
    try:
        cost = float(disposal_cost or 0)
    except (TypeError, ValueError):
        raise ValidationError("Disposal cost must be a number.")
    if cost < 0:
        raise ValidationError("Disposal cost must be >= 0.")

    ids = [int(i.stock_record_id) for i in items]
    if len(set(ids)) != len(ids):
        raise ValidationError("The same stock record was selected more than once.")

    def _create() -> DisposalResult:
        reason = q(conn, "SELECT id, name FROM disposal_reasons WHERE id=? AND is_active=1", (int(reason_id),))
        if not reason:
            raise NotFoundError(f"Disposal reason {reason_id} does not exist.")

        now = iso_now()
        number = _generate_disposal_number(conn, date.today())
        disposal_id = x(
            conn,
            """
            INSERT INTO disposal_records (
                disposal_number, disposal_reason_id, disposal_method, disposal_location,
                disposal_cost, notes, disposed_by, status, total_weight_kg, total_pieces,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', 0, 0, ?, ?)
            """,
            (
                number,
                int(reason_id),
                method_enum.value,
                (disposal_location or "").strip() or None,
                cost,
                (notes or "").strip() or None,
                disposed_by,
                now,
                now,
            ),
        )

        total_kg = 0.0
        total_pcs = 0
        touched: set[int] = set()
        for item in items:
            rec = get_stock_record(conn, item.stock_record_id)
            flipped = u(
                conn,
                """
                UPDATE stock_records SET status='disposed'
                WHERE id=? AND status='available' AND total_pieces > 0 AND total_weight_grams > 0
                """,
                (rec.id,),
            )
            if flipped != 1:
                raise ConflictError(
                    f"Stock record {rec.id} was already disposed or dispatched. Refresh the candidate list."
                )

            weight_kg = grams_to_kg(rec.total_weight_grams)
            x(
                conn,
                """
                INSERT INTO disposal_items (
                    disposal_record_id, stock_record_id, size_class, quantity, weight_kg,
                    batch_number, storage_location_name, farmer_name, processing_date,
                    quality_notes, disposal_reason, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(disposal_id),
                    rec.id,
                    rec.size_class,
                    rec.total_pieces,
                    weight_kg,
                    item.batch_number or rec.batch_number,
                    item.storage_location_name,
                    item.farmer_name or rec.farmer_name,
                    (item.processing_date or rec.processing_date).isoformat()
                    if (item.processing_date or rec.processing_date)
                    else None,
                    item.quality_notes,
                    item.disposal_reason.value,
                    now,
                ),
            )
            total_kg += weight_kg
            total_pcs += rec.total_pieces
            if rec.storage_location_id is not None:
                touched.add(rec.storage_location_id)

        x(
            conn,
            "UPDATE disposal_records SET total_weight_kg=?, total_pieces=? WHERE id=?",
            (round(total_kg, 3), int(total_pcs), int(disposal_id)),
        )
        reconcile_usage(conn, touched)
        return DisposalResult(
            disposal_id=int(disposal_id),
            disposal_number=number,
            total_weight_kg=round(total_kg, 3),
            total_pieces=int(total_pcs),
            item_count=len(items),
        )

    result = atomic(conn, _create, attempts=attempts, delay=retry_delay)
    logger.info(
        "Disposal %s created: %s item(s), %.3f kg",
        result.disposal_number,
        result.item_count,
        result.total_weight_kg,
    )
    return result


def _transition(conn, disposal_id: int, *, expected: DisposalStatus, target: DisposalStatus, extra_sql: str = "", extra_params: tuple = ()) -> None:
    n = u(
        conn,
        f"UPDATE disposal_records SET status=?, updated_at=?{extra_sql} WHERE id=? AND status=?",
        (target.value, iso_now(), *extra_params, int(disposal_id), expected.value),
    )
    if n == 1:
        return
    rows = q(conn, "SELECT status FROM disposal_records WHERE id=?", (int(disposal_id),))
    if not rows:
        raise NotFoundError(f"Disposal {disposal_id} does not exist.")
    raise ConflictError(f"Disposal {disposal_id} is {rows[0]['status']}, expected {expected.value}.")


def approve_disposal(
    conn,
    disposal_id: int,
    approved_by: Optional[str] = None,
    *,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> None:
    atomic(
        conn,
        lambda: _transition(
            conn,
            disposal_id,
            expected=DisposalStatus.PENDING,
            target=DisposalStatus.APPROVED,
            extra_sql=", approved_by=?",
            extra_params=(approved_by,),
        ),
        attempts=attempts,
        delay=retry_delay,
    )
    logger.info("Disposal %s approved by %s", disposal_id, approved_by)


def complete_disposal(
    conn,
    disposal_id: int,
    *,
    disposal_date: Optional[date] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> None:
    day = (disposal_date or date.today()).isoformat()
    atomic(
        conn,
        lambda: _transition(
            conn,
            disposal_id,
            expected=DisposalStatus.APPROVED,
            target=DisposalStatus.COMPLETED,
            extra_sql=", disposal_date=?",
            extra_params=(day,),
        ),
        attempts=attempts,
        delay=retry_delay,
    )
    logger.info("Disposal %s completed on %s", disposal_id, day)


def cancel_disposal(conn, disposal_id: int, *, attempts: int = 3, retry_delay: float = 0.5) -> int:
    """Cancel a pending disposal and return its stock to 'available'. Returns records restored."""

    def _cancel() -> int:
        _transition(conn, disposal_id, expected=DisposalStatus.PENDING, target=DisposalStatus.CANCELLED)
        items = q(
            conn,
            """
            SELECT di.stock_record_id, s.storage_location_id
            FROM disposal_items di
            JOIN stock_records s ON s.id = di.stock_record_id
            WHERE di.disposal_record_id=?
            """,
            (int(disposal_id),),
        )
        restored = 0
        for it in items:
            restored += u(
                conn,
                "UPDATE stock_records SET status='available' WHERE id=? AND status='disposed'",
                (int(it["stock_record_id"]),),
            )
        reconcile_usage(conn, [it["storage_location_id"] for it in items])
        return restored

    restored = atomic(conn, _cancel, attempts=attempts, delay=retry_delay)
    logger.info("Disposal %s cancelled, %s stock record(s) restored", disposal_id, restored)
    return restored


def list_disposals(conn, limit: int = 50, offset: int = 0):
    return q(
        conn,
        """
        SELECT d.*, r.name AS disposal_reason
        FROM disposal_records d
        LEFT JOIN disposal_reasons r ON r.id = d.disposal_reason_id
        ORDER BY d.created_at DESC, d.id DESC
        LIMIT ? OFFSET ?
        """,
        (int(limit), int(offset)),
    )


def list_disposal_items(conn, disposal_id: int):
    return q(conn, "SELECT * FROM disposal_items WHERE disposal_record_id=? ORDER BY id", (int(disposal_id),))


def _previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def disposal_stats(conn, *, today: Optional[date] = None) -> DisposalStats:
    today = today or date.today()
    rows = list_disposals(conn, limit=1_000_000)
    if not rows:
        return DisposalStats()

    stats = DisposalStats(
        total_disposals=len(rows),
        total_disposed_weight=round(sum(float(r["total_weight_kg"] or 0) for r in rows), 3),
        total_disposal_cost=round(sum(float(r["disposal_cost"] or 0) for r in rows), 2),
        pending_disposals=sum(1 for r in rows if r["status"] == DisposalStatus.PENDING.value),
    )

    week_ago = today - timedelta(days=7)
    stats.recent_disposals = sum(1 for r in rows if (parse_iso_date(r["created_at"]) or date.min) >= week_ago)

    ages = []
    for r in rows:
        if r["status"] != DisposalStatus.COMPLETED.value:
            continue
        created = parse_iso_date(r["created_at"])
        disposed = parse_iso_date(r["disposal_date"])
        if created and disposed:
            ages.append((disposed - created).days)
    stats.average_disposal_age = sum(ages) / len(ages) if ages else 0.0

    reasons = Counter(r["disposal_reason"] or "Unknown" for r in rows)
    stats.top_disposal_reason = reasons.most_common(1)[0][0] if reasons else "Age"

    prev_y, prev_m = _previous_month(today.year, today.month)
    current = previous = 0
    for r in rows:
        d = parse_iso_date(r["created_at"])
        if d is None:
            continue
        if (d.year, d.month) == (today.year, today.month):
            current += 1
        elif (d.year, d.month) == (prev_y, prev_m):
            previous += 1
    stats.monthly_disposal_trend = ((current - previous) / previous * 100.0) if previous else 0.0
    return stats
