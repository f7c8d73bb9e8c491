"""
Transfers between storage locations.

A multi-size move is stored as one transfers row per size class, all sharing
the same route, creation timestamp and notes. group_transfers() rebuilds the
logical batches at read time from that key; nothing batch-shaped is stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Sequence

from fishfarm.db import atomic, q, u, x
from fishfarm.errors import CapacityError, ConflictError, NotFoundError, ValidationError
from fishfarm.models import StockRecord, TransferRecord, TransferStatus, check_size_class
from fishfarm.services.sizing import unit_weight
from fishfarm.services.storage import (
    ACTIVE_STOCK_WHERE,
    STOCK_SELECT,
    get_location,
    reconcile_usage,
    usage,
)
from fishfarm.utils import iso_now, iso_now_precise

logger = logging.getLogger(__name__)

WEIGHT_DUPLICATE_TOLERANCE_KG = 0.01


@dataclass
class TransferLineInput:
    size: int
    quantity: int
    weight_kg: float


@dataclass(frozen=True)
class TransferView:
    """One row of the transfer report: a single transfer or a reconstructed batch."""

    id: int
    from_storage: object
    to_storage: object
    size: int
    quantity: int
    weight_kg: float
    notes: str
    status: TransferStatus
    created_at: str
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    from_storage_name: Optional[str] = None
    to_storage_name: Optional[str] = None
    is_batch: bool = False
    batch_sizes: tuple = ()
    total_batch_quantity: int = 0
    total_batch_weight: float = 0.0
    batch_transfers: tuple = field(default_factory=tuple)

    def as_row(self) -> dict:
        return {
            "id": self.id,
            "from_storage": self.from_storage_name or self.from_storage,
            "to_storage": self.to_storage_name or self.to_storage,
            "sizes": ", ".join(str(s) for s in self.batch_sizes),
            "quantity": self.total_batch_quantity,
            "weight_kg": round(self.total_batch_weight, 3),
            "notes": self.notes,
            "status": self.status.value,
            "created_at": self.created_at,
            "created_by": self.created_by or "System",
            "approved_by": self.approved_by,
            "is_batch": self.is_batch,
        }


def batch_key(t: TransferRecord) -> tuple:
    return (t.from_storage, t.to_storage, t.created_at, t.notes or "")


def _single_view(t: TransferRecord) -> TransferView:
    return TransferView(
        id=t.id,
        from_storage=t.from_storage,
        to_storage=t.to_storage,
        size=t.size,
        quantity=t.quantity,
        weight_kg=t.weight_kg,
        notes=t.notes or "",
        status=t.status,
        created_at=t.created_at,
        created_by=t.created_by,
        approved_by=t.approved_by,
        from_storage_name=t.from_storage_name,
        to_storage_name=t.to_storage_name,
        batch_sizes=(t.size,),
        total_batch_quantity=t.quantity,
        total_batch_weight=t.weight_kg,
        batch_transfers=(t,),
    )


def _batch_view(members: Sequence[TransferRecord]) -> TransferView:
    first = members[0]
    sizes = tuple(sorted({m.size for m in members}))
    total_qty = sum(m.quantity for m in members)
    total_kg = sum(m.weight_kg for m in members)
    return replace(
        _single_view(first),
        size=sizes[0],
        quantity=total_qty,
        weight_kg=total_kg,
        is_batch=True,
        batch_sizes=sizes,
        total_batch_quantity=total_qty,
        total_batch_weight=total_kg,
        batch_transfers=tuple(members),
    )


def group_transfers(transfers: Iterable[TransferRecord]) -> list[TransferView]:
    """
    Group by (source, destination, created_at, notes). Groups of one come
    back as single views; larger groups as one batch view whose id is the
    first member's id. Newest first.
    """
    groups: dict[tuple, list[TransferRecord]] = {}
    for t in transfers:
        groups.setdefault(batch_key(t), []).append(t)

    views = [_single_view(m[0]) if len(m) == 1 else _batch_view(m) for m in groups.values()]
    views.sort(key=lambda v: (v.created_at, v.id), reverse=True)
    return views


def flatten_views(views: Iterable[TransferView]) -> list[TransferRecord]:
    out: list[TransferRecord] = []
    for v in views:
        out.extend(v.batch_transfers)
    return out


# -------------------------
# Store access
# -------------------------

TRANSFER_SELECT = """
    SELECT
      t.id,
      t.from_storage_location_id AS from_storage,
      t.to_storage_location_id AS to_storage,
      fs.name AS from_storage_name,
      ts.name AS to_storage_name,
      t.size_class AS size,
      t.quantity, t.weight_kg, t.notes, t.status, t.created_at,
      t.requested_by AS created_by, t.approved_by
    FROM transfers t
    LEFT JOIN storage_locations fs ON fs.id = t.from_storage_location_id
    LEFT JOIN storage_locations ts ON ts.id = t.to_storage_location_id
"""


def load_transfers(conn, *, status: Optional[str] = None, limit: int = 200) -> list[TransferRecord]:
    """
    Rows of the newest `limit` batches. The limit counts batch keys, not rows,
    so a batch is always loaded with all of its members.
    """
    key_where = "WHERE status=?" if status else ""
    row_where = "WHERE t.status=?" if status else ""
    status_params = (str(status),) if status else ()
    rows = q(
        conn,
        f"""
        WITH batch_keys AS (
            SELECT from_storage_location_id AS k_from, to_storage_location_id AS k_to,
                   created_at AS k_created, COALESCE(notes, '') AS k_notes, MIN(id) AS k_first
            FROM transfers
            {key_where}
            GROUP BY k_from, k_to, k_created, k_notes
            ORDER BY k_created DESC, k_first ASC
            LIMIT ?
        )
        {TRANSFER_SELECT}
        JOIN batch_keys k
          ON k.k_from = t.from_storage_location_id AND k.k_to = t.to_storage_location_id
         AND k.k_created = t.created_at AND k.k_notes = COALESCE(t.notes, '')
        {row_where}
        ORDER BY t.created_at DESC, t.id ASC
        """,
        status_params + (int(limit),) + status_params,
    )
    return [TransferRecord.from_row(r) for r in rows]


def transfer_history(conn, limit: int = 200) -> list[TransferView]:
    return group_transfers(load_transfers(conn, limit=limit))


def get_transfer(conn, transfer_id: int) -> TransferRecord:
    rows = q(conn, f"{TRANSFER_SELECT} WHERE t.id=?", (int(transfer_id),))
    if not rows:
        raise NotFoundError(f"Transfer {transfer_id} does not exist.")
    return TransferRecord.from_row(rows[0])


def batch_members(conn, transfer_id: int, *, status: TransferStatus) -> list[TransferRecord]:
    """Every transfer sharing the representative's batch key and the given status."""
    rep = get_transfer(conn, transfer_id)
    rows = q(
        conn,
        f"""
        {TRANSFER_SELECT}
        WHERE t.from_storage_location_id=? AND t.to_storage_location_id=?
          AND t.created_at=? AND t.notes=? AND t.status=?
        ORDER BY t.id ASC
        """,
        (rep.from_storage, rep.to_storage, rep.created_at, rep.notes or "", status.value),
    )
    return [TransferRecord.from_row(r) for r in rows]


def create_batch_transfer(
    conn,
    *,
    from_storage_id: int,
    to_storage_id: int,
    lines: Sequence[TransferLineInput],
    notes: Optional[str] = None,
    requested_by: Optional[str] = None,
    created_at: Optional[str] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> list[int]:
    if not lines:
        raise ValidationError("At least one size line is required.")
    if int(from_storage_id) == int(to_storage_id):
        raise ValidationError("Source and destination storage must differ.")

    clean: list[TransferLineInput] = []
    for line in lines:
        size = check_size_class(line.size, "transfer")
        if int(line.quantity) <= 0:
            raise ValidationError(f"Quantity for size {size} must be > 0.")
        if float(line.weight_kg) < 0:
            raise ValidationError(f"Weight for size {size} must be >= 0.")
        clean.append(TransferLineInput(size=size, quantity=int(line.quantity), weight_kg=float(line.weight_kg)))
    if len({c.size for c in clean}) != len(clean):
        raise ValidationError("Each size may appear only once in a transfer.")

    note = (notes or "").strip()
    stamp = created_at or iso_now_precise()

    def _create() -> list[int]:
        get_location(conn, from_storage_id)
        dest = get_location(conn, to_storage_id)
        if not dest.is_active:
            raise ValidationError(f"Destination '{dest.name}' is {dest.status.value}.")

        pending = q(
            conn,
            """
            SELECT size_class, quantity, weight_kg FROM transfers
            WHERE from_storage_location_id=? AND to_storage_location_id=? AND status='pending'
            """,
            (int(from_storage_id), int(to_storage_id)),
        )
        for l in clean:
            for p in pending:
                if (
                    int(p["size_class"]) == l.size
                    and int(p["quantity"]) == l.quantity
                    and abs(float(p["weight_kg"]) - l.weight_kg) < WEIGHT_DUPLICATE_TOLERANCE_KG
                ):
                    raise ConflictError("A transfer request for these items already exists.")

        ids = []
        for l in clean:
            ids.append(
                x(
                    conn,
                    """
                    INSERT INTO transfers (
                        from_storage_location_id, to_storage_location_id, size_class,
                        quantity, weight_kg, notes, status, requested_by, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                    """,
                    (int(from_storage_id), int(to_storage_id), l.size, l.quantity, l.weight_kg, note, requested_by, stamp),
                )
            )
        return ids

    ids = atomic(conn, _create, attempts=attempts, delay=retry_delay)
    logger.info("Transfer requested %s -> %s for %s size(s): ids %s", from_storage_id, to_storage_id, len(ids), ids)
    return ids


def _move_stock(conn, t: TransferRecord) -> float:
    """Move t.quantity pieces of t.size from source to destination, oldest first. Returns grams moved."""
    rows = q(
        conn,
        f"""
        {STOCK_SELECT}
        WHERE s.storage_location_id=? AND s.size_class=? AND {ACTIVE_STOCK_WHERE}
        ORDER BY COALESCE(b.processing_date, s.created_at) ASC, s.id ASC
        """,
        (t.from_storage, t.size),
    )
    remaining = int(t.quantity)
    moved_grams = 0.0
    for rec in (StockRecord.from_row(r) for r in rows):
        if remaining <= 0:
            break
        take = min(remaining, rec.total_pieces)

        if take == rec.total_pieces:
            n = u(
                conn,
                """
                UPDATE stock_records
                SET storage_location_id=?, transfer_id=?, transfer_source_storage_id=?
                WHERE id=? AND status='available' AND total_pieces=? AND storage_location_id=?
                """,
                (t.to_storage, t.id, t.from_storage, rec.id, rec.total_pieces, t.from_storage),
            )
            grams = rec.total_weight_grams
        else:
            grams = round(take * unit_weight(rec.total_weight_grams, rec.total_pieces), 3)
            n = u(
                conn,
                """
                UPDATE stock_records
                SET total_pieces = total_pieces - ?, total_weight_grams = MAX(total_weight_grams - ?, 0)
                WHERE id=? AND status='available' AND total_pieces=?
                """,
                (take, grams, rec.id, rec.total_pieces),
            )
            if n == 1:
                x(
                    conn,
                    """
                    INSERT INTO stock_records (
                        sorting_batch_id, size_class, total_pieces, total_weight_grams,
                        storage_location_id, status, transfer_id, transfer_source_storage_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, 'available', ?, ?, ?)
                    """,
                    (rec.sorting_batch_id, rec.size_class, take, grams, t.to_storage, t.id, t.from_storage, rec.created_at),
                )
        if n != 1:
            raise ConflictError(f"Stock record {rec.id} changed while transfer {t.id} was being approved.")
        moved_grams += grams
        remaining -= take

    if remaining > 0:
        raise CapacityError(
            f"Source storage has only {int(t.quantity) - remaining} of {t.quantity} pieces of size {t.size}."
        )
    return moved_grams


def _fan_out(conn, transfer_id: int, *, target: TransferStatus, actor: Optional[str], move: bool) -> list[int]:
    rep = get_transfer(conn, transfer_id)
    if rep.status is not TransferStatus.PENDING:
        raise ConflictError(f"Transfer {transfer_id} is already {rep.status.value}.")

    members = batch_members(conn, transfer_id, status=TransferStatus.PENDING)
    now = iso_now()
    for m in members:
        if move:
            _move_stock(conn, m)
        n = u(
            conn,
            "UPDATE transfers SET status=?, approved_by=?, approved_at=? WHERE id=? AND status='pending'",
            (target.value, actor, now, m.id),
        )
        if n != 1:
            raise ConflictError(f"Transfer {m.id} was updated by another user.")

    if move:
        dest = get_location(conn, rep.to_storage)
        if dest.capacity_kg > 0 and usage(conn, dest.id) > dest.capacity_kg:
            raise CapacityError(f"Destination '{dest.name}' would exceed its {dest.capacity_kg:g} kg capacity.")
        reconcile_usage(conn, [rep.from_storage, rep.to_storage])
    return [m.id for m in members]


def approve_transfer(
    conn, transfer_id: int, approver_id: Optional[str], *, attempts: int = 3, retry_delay: float = 0.5
) -> list[int]:
    """
    Approve a transfer or, when it belongs to a batch, every pending member of
    that batch. Stock moves with the approval; any failure leaves nothing moved.
    Returns the ids approved.
    """
    ids = atomic(
        conn,
        lambda: _fan_out(conn, transfer_id, target=TransferStatus.APPROVED, actor=approver_id, move=True),
        attempts=attempts,
        delay=retry_delay,
    )
    logger.info("Transfer %s approved by %s (%s member(s))", transfer_id, approver_id, len(ids))
    return ids


def decline_transfer(
    conn, transfer_id: int, approver_id: Optional[str], *, attempts: int = 3, retry_delay: float = 0.5
) -> list[int]:
    ids = atomic(
        conn,
        lambda: _fan_out(conn, transfer_id, target=TransferStatus.DECLINED, actor=approver_id, move=False),
        attempts=attempts,
        delay=retry_delay,
    )
    logger.info("Transfer %s declined by %s (%s member(s))", transfer_id, approver_id, len(ids))
    return ids


def complete_transfer(
    conn,
    transfer_id: int,
    completed_by: Optional[str] = None,
    *,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> list[int]:
    def _complete() -> list[int]:
        rep = get_transfer(conn, transfer_id)
        if rep.status is not TransferStatus.APPROVED:
            raise ConflictError(f"Transfer {transfer_id} is {rep.status.value}, expected approved.")
        members = batch_members(conn, transfer_id, status=TransferStatus.APPROVED)
        now = iso_now()
        for m in members:
            if u(conn, "UPDATE transfers SET status='completed', completed_at=? WHERE id=? AND status='approved'", (now, m.id)) != 1:
                raise ConflictError(f"Transfer {m.id} was updated by another user.")
        return [m.id for m in members]

    ids = atomic(conn, _complete, attempts=attempts, delay=retry_delay)
    logger.info("Transfer %s completed by %s (%s member(s))", transfer_id, completed_by, len(ids))
    return ids
