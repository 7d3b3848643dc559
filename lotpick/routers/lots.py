from typing import Optional

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..allocation import AllocationEngine
from ..auth import get_current_user
from ..deps import get_allocation_engine, get_store
from ..domain import AllocationPlan, LotCandidate, StockLot
from ..rbac import require_role

router = APIRouter()


def _lot_fields(lot: StockLot) -> dict:
    return {
        "id": lot.id,
        "item_id": lot.item_id,
        "location_id": lot.location_id,
        "lot_number": lot.lot_number,
        "expiry_date": lot.expiry_date,
        "production_date": lot.production_date,
        "quantity": float(lot.quantity),
        "reserved_quantity": float(lot.reserved_quantity),
        "available_quantity": float(lot.available_quantity),
        "bin_location": lot.bin_location,
        "bin_zone": lot.bin_zone,
        "version": lot.version,
    }


def _build_candidate(candidate: LotCandidate) -> schemas.LotCandidateEntry:
    return schemas.LotCandidateEntry(
        **_lot_fields(candidate.lot),
        expiry_status=candidate.expiry_status.value,
        days_until_expiry=candidate.days_until_expiry,
    )


def _build_allocation_response(plan: AllocationPlan) -> schemas.AllocationResponse:
    return schemas.AllocationResponse(
        item_id=plan.item_id,
        location_id=plan.location_id,
        required_quantity=float(plan.required_quantity),
        lots=[_build_candidate(c) for c in plan.lots],
        suggestion=[
            schemas.PickSuggestionEntry(lot=_build_candidate(s.lot), pick_quantity=float(s.pick_quantity))
            for s in plan.suggestion
        ],
        total_available=float(plan.total_available),
        can_fulfill=plan.can_fulfill,
        shortfall=float(plan.shortfall),
    )


@router.get("/", response_model=list[schemas.LotEntry])
async def list_lots(
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    lot_number: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    store=Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.LotEntry]:
    require_role(user, "operator")
    rows = await store.list_lots(item_id=item_id, location_id=location_id, lot_number=lot_number, limit=limit)
    return [schemas.LotEntry(**_lot_fields(row)) for row in rows]


@router.get("/allocation", response_model=schemas.AllocationResponse)
async def allocate(
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    required_quantity: float = Query(0, ge=0, allow_inf_nan=False),
    engine: AllocationEngine = Depends(get_allocation_engine),
    user=Depends(get_current_user),
) -> schemas.AllocationResponse:
    require_role(user, "operator")
    plan = await engine.allocate(item_id, location_id, required_quantity)
    return _build_allocation_response(plan)
