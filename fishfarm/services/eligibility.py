"""
Disposal candidate selection.

find_eligible() is a pure function of (stock records, storage locations,
policy, today). find_disposal_candidates() loads those inputs from the store
with usage recomputed from stock, never from the cached counter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional, Sequence

from fishfarm.errors import ValidationError
from fishfarm.models import (
    NO_STORAGE_PLACEHOLDER,
    DisposalReason,
    StockRecord,
    StockStatus,
    StorageLocation,
    StorageStatus,
)
from fishfarm.services.storage import compute_usage, is_over_capacity, load_locations, load_stock_records

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibilityPolicy:
    """
    min_age_days=0 means no age filter. max_age_days turns the age test into a
    closed range when it exceeds min_age_days. A date range, when given,
    replaces the age test: records processed outside it are never candidates.
    inactive_storage_only ignores age entirely.
    """

    min_age_days: int = 30
    max_age_days: Optional[int] = None
    inactive_storage_only: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def __post_init__(self) -> None:
        if self.min_age_days is None or int(self.min_age_days) < 0:
            raise ValidationError("Minimum age (days) must be >= 0.")
        if self.max_age_days is not None and int(self.max_age_days) < 0:
            raise ValidationError("Maximum age (days) must be >= 0.")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("Date range start is after its end.")

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None or self.date_to is not None

    @property
    def has_age_range(self) -> bool:
        return self.max_age_days is not None and int(self.max_age_days) > int(self.min_age_days)


@dataclass(frozen=True)
class StorageHealth:
    has_location: bool
    resolvable: bool
    active: bool
    over_capacity: bool

    @property
    def missing_or_inactive(self) -> bool:
        return not self.has_location or not self.resolvable or not self.active

    @property
    def unhealthy(self) -> bool:
        return self.missing_or_inactive or self.over_capacity


@dataclass(frozen=True)
class CandidateItem:
    stock_record_id: int
    size_class: int
    total_pieces: int
    total_weight_grams: float
    storage_location_name: str
    days_in_storage: int
    disposal_reason: DisposalReason
    storage_location_id: Optional[int] = None
    storage_status: str = "unknown"
    batch_number: Optional[str] = None
    farmer_name: Optional[str] = None
    processing_date: Optional[date] = None
    quality_notes: str = ""


def assess_storage(
    record: StockRecord,
    locations: Mapping[int, StorageLocation],
    usage_by_location: Mapping[int, float],
) -> StorageHealth:
    if record.storage_location_id is None:
        return StorageHealth(has_location=False, resolvable=False, active=False, over_capacity=False)
    loc = locations.get(record.storage_location_id)
    if loc is None:
        return StorageHealth(has_location=True, resolvable=False, active=False, over_capacity=False)
    used = usage_by_location.get(loc.id, 0.0)
    return StorageHealth(
        has_location=True,
        resolvable=True,
        active=loc.status is StorageStatus.ACTIVE,
        over_capacity=is_over_capacity(used, loc.capacity_kg),
    )


def is_age_eligible(days_in_storage: int, policy: EligibilityPolicy) -> bool:
    if int(policy.min_age_days) == 0:
        return True
    if policy.has_age_range:
        return int(policy.min_age_days) <= days_in_storage <= int(policy.max_age_days)
    return days_in_storage >= int(policy.min_age_days)


def in_date_range(processing_date: date, policy: EligibilityPolicy) -> bool:
    if policy.date_from and processing_date < policy.date_from:
        return False
    if policy.date_to and processing_date > policy.date_to:
        return False
    return True


def assign_reason(
    *,
    has_location: bool,
    resolvable: bool,
    active: bool,
    over_capacity: bool,
    age_eligible: bool,
) -> Optional[DisposalReason]:
    # First match wins.
    if not has_location:
        return DisposalReason.NO_STORAGE_LOCATION
    if not resolvable:
        return DisposalReason.STORAGE_NOT_FOUND
    if not active:
        return DisposalReason.STORAGE_INACTIVE
    if over_capacity:
        return DisposalReason.STORAGE_OVER_CAPACITY
    if age_eligible:
        return DisposalReason.AGE
    return None


def find_eligible(
    records: Sequence[StockRecord],
    locations: Mapping[int, StorageLocation],
    policy: EligibilityPolicy,
    *,
    today: date,
    usage_by_location: Optional[Mapping[int, float]] = None,
) -> list[CandidateItem]:
    if usage_by_location is None:
        usage_by_location = compute_usage(records)

    out: list[CandidateItem] = []
    for r in records:
        if r.status is StockStatus.DISPOSED or r.total_weight_grams <= 0 or r.total_pieces <= 0:
            continue
        if r.processing_date is None or r.processing_date > today:
            continue

        days = (today - r.processing_date).days

        if policy.has_date_range:
            if not in_date_range(r.processing_date, policy):
                continue
            age_ok = True
        else:
            age_ok = is_age_eligible(days, policy)

        health = assess_storage(r, locations, usage_by_location)

        if policy.inactive_storage_only:
            eligible = health.missing_or_inactive
        else:
            eligible = age_ok or health.unhealthy
        if not eligible:
            continue

        reason = assign_reason(
            has_location=health.has_location,
            resolvable=health.resolvable,
            active=health.active,
            over_capacity=health.over_capacity,
            age_eligible=age_ok,
        )
        if reason is None:
            continue

        loc = locations.get(r.storage_location_id) if r.storage_location_id is not None else None
        farmer = r.farmer_name or "Unknown Farmer"
        out.append(
            CandidateItem(
                stock_record_id=r.id,
                size_class=r.size_class,
                total_pieces=r.total_pieces,
                total_weight_grams=r.total_weight_grams,
                storage_location_name=loc.name if loc else NO_STORAGE_PLACEHOLDER,
                days_in_storage=days,
                disposal_reason=reason,
                storage_location_id=r.storage_location_id,
                storage_status=loc.status.value if loc else "unknown",
                batch_number=r.batch_number or (f"BATCH-{r.sorting_batch_id}" if r.sorting_batch_id else None),
                farmer_name=farmer,
                processing_date=r.processing_date,
                quality_notes=f"Fish from {farmer}",
            )
        )

    out.sort(key=lambda c: (-c.days_in_storage, c.stock_record_id))
    logger.debug("Eligibility: %s of %s records are disposal candidates", len(out), len(records))
    return out


def find_disposal_candidates(conn, policy: EligibilityPolicy, *, today: Optional[date] = None) -> list[CandidateItem]:
    records = load_stock_records(conn)
    locations = load_locations(conn)
    return find_eligible(
        records,
        locations,
        policy,
        today=today or date.today(),
        usage_by_location=compute_usage(records),
    )
