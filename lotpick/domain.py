"""Plain domain objects shared by the engines and the repositories."""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from .exceptions import ValidationError


def to_quantity(value: Any) -> Decimal:
    """Finite Decimal from a number or numeric string; anything else is a ValidationError."""

    if isinstance(value, bool):
        raise ValidationError(f"Invalid quantity: {value!r}", code="invalid_quantity")
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid quantity: {value!r}", code="invalid_quantity") from exc
    if not quantity.is_finite():
        raise ValidationError(f"Invalid quantity: {value!r}", code="invalid_quantity")
    return quantity


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ExpiryStatus(str, Enum):
    expired = "expired"
    expiring = "expiring"
    ok = "ok"


class Urgency(str, Enum):
    expired = "expired"
    critical = "critical"
    warning = "warning"
    info = "info"


class PickingStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (PickingStatus.completed, PickingStatus.cancelled)


class ReservationStatus(str, Enum):
    active = "active"
    committed = "committed"
    released = "released"


@dataclass(frozen=True)
class ItemRef:
    id: str
    code: str
    name: str
    lot_tracking: bool = False


@dataclass(frozen=True)
class LocationRef:
    id: str
    code: str
    name: str


@dataclass
class StockLot:
    id: str
    item_id: str
    location_id: str
    lot_number: str
    quantity: Decimal
    reserved_quantity: Decimal = Decimal("0")
    expiry_date: Optional[dt.date] = None
    production_date: Optional[dt.date] = None
    bin_location: Optional[str] = None
    bin_zone: Optional[str] = None
    version: int = 1

    def __post_init__(self) -> None:
        self.quantity = to_quantity(self.quantity)
        self.reserved_quantity = to_quantity(self.reserved_quantity)

    @property
    def available_quantity(self) -> Decimal:
        return self.quantity - self.reserved_quantity


@dataclass(frozen=True)
class LotCandidate:
    """A lot enriched with availability and expiry classification."""

    lot: StockLot
    available_quantity: Decimal
    expiry_status: ExpiryStatus
    days_until_expiry: Optional[int]


@dataclass(frozen=True)
class PickSuggestion:
    lot: LotCandidate
    pick_quantity: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    item_id: Optional[str]
    location_id: Optional[str]
    required_quantity: Decimal
    lots: list[LotCandidate]
    suggestion: list[PickSuggestion]
    total_available: Decimal
    can_fulfill: bool

    @property
    def allocated_quantity(self) -> Decimal:
        return sum((s.pick_quantity for s in self.suggestion), Decimal("0"))

    @property
    def shortfall(self) -> Decimal:
        return max(self.required_quantity - self.allocated_quantity, Decimal("0"))


@dataclass
class PickingOrderLine:
    id: str
    order_id: str
    item_id: str
    required_quantity: Decimal
    picked_quantity: Decimal = Decimal("0")
    picked: bool = False
    bin_location: Optional[str] = None
    zone: Optional[str] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[dt.date] = None
    picked_at: Optional[dt.datetime] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.required_quantity = to_quantity(self.required_quantity)
        self.picked_quantity = to_quantity(self.picked_quantity)

    @property
    def fulfilled(self) -> bool:
        return self.picked and self.picked_quantity >= self.required_quantity


@dataclass
class PickingOrder:
    id: str
    picking_number: str
    status: PickingStatus = PickingStatus.open
    source_document_id: Optional[str] = None
    source_document_type: str = "goods_issue"
    location_id: Optional[str] = None
    picker_id: Optional[str] = None
    created_at: dt.datetime = field(default_factory=utcnow)
    updated_at: dt.datetime = field(default_factory=utcnow)
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    notes: Optional[str] = None
    version: int = 1
    consumption_pending: bool = False
    lines: list[PickingOrderLine] = field(default_factory=list)

    def line(self, line_id: str) -> Optional[PickingOrderLine]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None


@dataclass(frozen=True)
class ReservationLine:
    lot_id: str
    lot_number: str
    quantity: Decimal


@dataclass
class Reservation:
    token: str
    item_id: str
    location_id: str
    lines: list[ReservationLine]
    status: ReservationStatus = ReservationStatus.active
    order_id: Optional[str] = None
    created_at: dt.datetime = field(default_factory=utcnow)
    closed_at: Optional[dt.datetime] = None

    @property
    def quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class AuditEvent:
    entity: str
    entity_id: str
    action: str
    payload: dict[str, Any]
    user_id: Optional[str] = None
    ts: dt.datetime = field(default_factory=utcnow)


@dataclass
class User:
    id: str
    username: str
    password_hash: str
    role: str = "operator"
    active: bool = True
    created_at: dt.datetime = field(default_factory=utcnow)
