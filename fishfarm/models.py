"""
Entity schemas and closed status/reason enumerations.

Rows come out of sqlite3 (or any mapping) and are parsed with from_row(),
which fails fast on missing required fields instead of defaulting silently.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional

from fishfarm.errors import ValidationError
from fishfarm.utils import parse_iso_date

MIN_SIZE_CLASS = 0
MAX_SIZE_CLASS = 10

NO_STORAGE_PLACEHOLDER = "No Storage Assigned"


class StockStatus(str, Enum):
    AVAILABLE = "available"
    DISPOSED = "disposed"


class StorageStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class DisposalMethod(str, Enum):
    WASTE = "waste"
    COMPOST = "compost"
    DONATION = "donation"
    RETURN_TO_FARMER = "return_to_farmer"


class DisposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransferStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DispatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"


class DisposalReason(str, Enum):
    # Declaration order is the assignment priority.
    NO_STORAGE_LOCATION = "No Storage Location"
    STORAGE_NOT_FOUND = "Storage Not Found"
    STORAGE_INACTIVE = "Storage Inactive"
    STORAGE_OVER_CAPACITY = "Storage Over Capacity"
    AGE = "Age"


def _keys(row: Any) -> set:
    return set(row.keys())


def _req(row: Any, key: str, entity: str) -> Any:
    if key not in _keys(row) or row[key] is None:
        raise ValidationError(f"{entity}: missing required field '{key}'.")
    return row[key]


def _opt(row: Any, key: str, default: Any = None) -> Any:
    if key not in _keys(row):
        return default
    v = row[key]
    return default if v is None else v


def parse_enum(enum_cls, value: Any, entity: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{entity}: invalid value {value!r} (expected one of: {allowed}).")


def check_size_class(size_class: Any, entity: str = "size class") -> int:
    try:
        sc = int(size_class)
    except (TypeError, ValueError):
        raise ValidationError(f"{entity}: size class must be an integer.")
    if sc < MIN_SIZE_CLASS or sc > MAX_SIZE_CLASS:
        raise ValidationError(f"{entity}: size class {sc} outside {MIN_SIZE_CLASS}-{MAX_SIZE_CLASS}.")
    return sc


@dataclass(frozen=True)
class SizeClassThreshold:
    class_number: int
    min_weight_grams: float
    max_weight_grams: float
    description: str = ""

    @classmethod
    def from_row(cls, row) -> "SizeClassThreshold":
        lo = float(_req(row, "min_weight_grams", "size threshold"))
        hi = float(_req(row, "max_weight_grams", "size threshold"))
        if hi < lo:
            raise ValidationError("size threshold: max_weight_grams is below min_weight_grams.")
        return cls(
            class_number=check_size_class(_req(row, "class_number", "size threshold"), "size threshold"),
            min_weight_grams=lo,
            max_weight_grams=hi,
            description=str(_opt(row, "description", "")),
        )


@dataclass(frozen=True)
class StorageLocation:
    id: int
    name: str
    capacity_kg: float
    current_usage_kg: float
    status: StorageStatus
    location_type: str = "cold_storage"
    temperature_c: Optional[float] = None
    humidity_pct: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.status is StorageStatus.ACTIVE

    @classmethod
    def from_row(cls, row) -> "StorageLocation":
        return cls(
            id=int(_req(row, "id", "storage location")),
            name=str(_req(row, "name", "storage location")),
            capacity_kg=float(_opt(row, "capacity_kg", 0.0)),
            current_usage_kg=float(_opt(row, "current_usage_kg", 0.0)),
            status=parse_enum(StorageStatus, _req(row, "status", "storage location"), "storage location"),
            location_type=str(_opt(row, "location_type", "cold_storage")),
            temperature_c=_opt(row, "temperature_c"),
            humidity_pct=_opt(row, "humidity_pct"),
        )


@dataclass(frozen=True)
class StockRecord:
    id: int
    size_class: int
    total_pieces: int
    total_weight_grams: float
    storage_location_id: Optional[int]
    sorting_batch_id: Optional[int]
    created_at: str
    status: StockStatus = StockStatus.AVAILABLE
    processing_date: Optional[date] = None
    batch_number: Optional[str] = None
    farmer_name: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Counts toward aggregation: not disposed and not fully consumed."""
        return self.status is StockStatus.AVAILABLE and self.total_pieces > 0 and self.total_weight_grams > 0

    @classmethod
    def from_row(cls, row) -> "StockRecord":
        pieces = int(_req(row, "total_pieces", "stock record"))
        grams = float(_req(row, "total_weight_grams", "stock record"))
        if pieces < 0 or grams < 0:
            raise ValidationError("stock record: pieces and weight must be non-negative.")
        loc = _opt(row, "storage_location_id")
        batch_id = _opt(row, "sorting_batch_id")

        # Processing date comes from the batch context; fall back to the batch creation day.
        processing = parse_iso_date(_opt(row, "processing_date")) or parse_iso_date(_opt(row, "batch_created_at"))
        return cls(
            id=int(_req(row, "id", "stock record")),
            size_class=check_size_class(_req(row, "size_class", "stock record"), "stock record"),
            total_pieces=pieces,
            total_weight_grams=grams,
            storage_location_id=int(loc) if loc is not None else None,
            sorting_batch_id=int(batch_id) if batch_id is not None else None,
            created_at=str(_req(row, "created_at", "stock record")),
            status=parse_enum(StockStatus, _req(row, "status", "stock record"), "stock record"),
            processing_date=processing,
            batch_number=_opt(row, "batch_number"),
            farmer_name=_opt(row, "farmer_name"),
        )


@dataclass(frozen=True)
class TransferRecord:
    id: int
    from_storage: Any
    to_storage: Any
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

    @classmethod
    def from_row(cls, row) -> "TransferRecord":
        return cls(
            id=int(_req(row, "id", "transfer")),
            from_storage=_req(row, "from_storage", "transfer"),
            to_storage=_req(row, "to_storage", "transfer"),
            size=check_size_class(_req(row, "size", "transfer"), "transfer"),
            quantity=int(_req(row, "quantity", "transfer")),
            weight_kg=float(_opt(row, "weight_kg", 0.0)),
            notes=str(_opt(row, "notes", "")),
            status=parse_enum(TransferStatus, _req(row, "status", "transfer"), "transfer"),
            created_at=str(_req(row, "created_at", "transfer")),
            created_by=_opt(row, "created_by"),
            approved_by=_opt(row, "approved_by"),
            from_storage_name=_opt(row, "from_storage_name"),
            to_storage_name=_opt(row, "to_storage_name"),
        )


@dataclass(frozen=True)
class OutletOrder:
    id: int
    order_number: str
    outlet_name: str
    status: OrderStatus
    size_quantities: dict = field(default_factory=dict)
    use_any_size: bool = False
    total_value: float = 0.0

    @classmethod
    def from_row(cls, row) -> "OutletOrder":
        raw = _opt(row, "size_quantities", "{}")
        try:
            parsed = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except ValueError:
            raise ValidationError("outlet order: size_quantities is not valid JSON.")
        return cls(
            id=int(_req(row, "id", "outlet order")),
            order_number=str(_req(row, "order_number", "outlet order")),
            outlet_name=str(_req(row, "outlet_name", "outlet order")),
            status=parse_enum(OrderStatus, _req(row, "status", "outlet order"), "outlet order"),
            size_quantities={int(k): int(v) for k, v in parsed.items()},
            use_any_size=bool(_opt(row, "use_any_size", 0)),
            total_value=float(_opt(row, "total_value", 0.0)),
        )
