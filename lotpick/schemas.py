from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str
    password: str


class UserProfile(BaseModel):
    id: str
    username: str
    role: str
    active: bool
    created_at: dt.datetime


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)


class LotEntry(BaseModel):
    id: str
    item_id: str
    location_id: str
    lot_number: str
    expiry_date: Optional[dt.date] = None
    production_date: Optional[dt.date] = None
    quantity: float
    reserved_quantity: float
    available_quantity: float
    bin_location: Optional[str] = None
    bin_zone: Optional[str] = None
    version: int


class LotCandidateEntry(LotEntry):
    expiry_status: str
    days_until_expiry: Optional[int] = None


class PickSuggestionEntry(BaseModel):
    lot: LotCandidateEntry
    pick_quantity: float


class AllocationResponse(BaseModel):
    item_id: Optional[str] = None
    location_id: Optional[str] = None
    required_quantity: float
    lots: list[LotCandidateEntry]
    suggestion: list[PickSuggestionEntry]
    total_available: float
    can_fulfill: bool
    shortfall: float


class ReservationRequest(BaseModel):
    item_id: str = Field(min_length=1)
    location_id: str = Field(min_length=1)
    quantity: float = Field(gt=0, allow_inf_nan=False)
    order_id: Optional[str] = None
    allow_partial: bool = False


class ReservationLineResponse(BaseModel):
    lot_id: str
    lot_number: str
    quantity: float


class ReservationResponse(BaseModel):
    token: str
    item_id: str
    location_id: str
    order_id: Optional[str] = None
    status: str
    quantity: float
    created_at: dt.datetime
    closed_at: Optional[dt.datetime] = None
    lines: list[ReservationLineResponse] = Field(default_factory=list)


class ReleaseStaleRequest(BaseModel):
    ttl_minutes: Optional[int] = Field(default=None, ge=1)


class PickingLineInput(BaseModel):
    item_id: str = Field(min_length=1)
    required_quantity: float = Field(gt=0, allow_inf_nan=False)
    bin_location: Optional[str] = Field(default=None, max_length=64)
    zone: Optional[str] = Field(default=None, max_length=64)
    lot_number: Optional[str] = Field(default=None, max_length=64)
    expiry_date: Optional[dt.date] = None
    notes: Optional[str] = None


class AllocationLineInput(BaseModel):
    item_id: str = Field(min_length=1)
    location_id: str = Field(min_length=1)
    quantity: float = Field(gt=0, allow_inf_nan=False)


class PickingOrderCreate(BaseModel):
    picking_number: str = Field(min_length=1, max_length=64)
    source_document_id: Optional[str] = None
    source_document_type: str = Field(default="goods_issue", max_length=32)
    location_id: Optional[str] = None
    notes: Optional[str] = None
    lines: list[PickingLineInput] = Field(default_factory=list)
    allocate: list[AllocationLineInput] = Field(default_factory=list)


class PickingLineResponse(BaseModel):
    id: str
    item_id: str
    required_quantity: float
    picked_quantity: float
    picked: bool
    lot_number: Optional[str] = None
    expiry_date: Optional[dt.date] = None
    bin_location: Optional[str] = None
    zone: Optional[str] = None
    picked_at: Optional[dt.datetime] = None
    notes: Optional[str] = None


class PickingOrderResponse(BaseModel):
    id: str
    picking_number: str
    status: str
    source_document_id: Optional[str] = None
    source_document_type: str
    location_id: Optional[str] = None
    picker_id: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    notes: Optional[str] = None
    version: int
    consumption_pending: bool = False
    route_path: str = ""
    lines: list[PickingLineResponse] = Field(default_factory=list)


class AssignPickerRequest(VersionedRequest):
    picker_id: Optional[str] = None


class LineUpdateRequest(VersionedRequest):
    picked_quantity: float = Field(allow_inf_nan=False)
    picked: bool
    lot_number: Optional[str] = Field(default=None, max_length=64)


class ReopenIdleRequest(BaseModel):
    idle_minutes: Optional[int] = Field(default=None, ge=1)


class ExpiryAlertEntry(BaseModel):
    lot_id: str
    lot_number: str
    item_id: str
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    location_id: str
    location_code: Optional[str] = None
    location_name: Optional[str] = None
    bin_location: Optional[str] = None
    expiry_date: dt.date
    quantity: float
    days_until_expiry: int
    is_expired: bool
    urgency: str


class ExpirySummaryResponse(BaseModel):
    lookahead_days: int
    total: int
    expired: int
    critical: int
    warning: int
    info: int
    quantity_at_risk: float
    expired_quantity: float


class AuditEntry(BaseModel):
    entity: str
    entity_id: str
    action: str
    payload_json: dict
    user_id: Optional[str] = None
    ts: dt.datetime
