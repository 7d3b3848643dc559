"""Routers for picking orders: creation, assignment, line confirmation, completion."""

import datetime as dt
from typing import Optional, Sequence

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..auth import get_current_user
from ..deps import get_state_machine
from ..domain import PickingOrder, PickingOrderLine, PickingStatus
from ..picking import PickingOrderStateMachine
from ..rbac import require_role
from ..routing import route_summary

router = APIRouter()


def _build_order_response(
    order: PickingOrder, lines: Sequence[PickingOrderLine]
) -> schemas.PickingOrderResponse:
    return schemas.PickingOrderResponse(
        id=order.id,
        picking_number=order.picking_number,
        status=order.status.value,
        source_document_id=order.source_document_id,
        source_document_type=order.source_document_type,
        location_id=order.location_id,
        picker_id=order.picker_id,
        created_at=order.created_at,
        updated_at=order.updated_at,
        started_at=order.started_at,
        completed_at=order.completed_at,
        notes=order.notes,
        version=order.version,
        consumption_pending=order.consumption_pending,
        route_path=route_summary(lines),
        lines=[
            schemas.PickingLineResponse(
                id=line.id,
                item_id=line.item_id,
                required_quantity=float(line.required_quantity),
                picked_quantity=float(line.picked_quantity),
                picked=line.picked,
                lot_number=line.lot_number,
                expiry_date=line.expiry_date,
                bin_location=line.bin_location,
                zone=line.zone,
                picked_at=line.picked_at,
                notes=line.notes,
            )
            for line in lines
        ],
    )


def _respond(order: PickingOrder, machine: PickingOrderStateMachine) -> schemas.PickingOrderResponse:
    return _build_order_response(order, machine.route_optimizer.sort_by_route(order.lines))


@router.get("/", response_model=list[schemas.PickingOrderResponse])
async def list_orders(
    status_filter: Optional[PickingStatus] = None,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> list[schemas.PickingOrderResponse]:
    require_role(user, "operator")
    orders = await machine.list_orders(status_filter)
    return [_respond(order, machine) for order in orders]


@router.post("/", response_model=schemas.PickingOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: schemas.PickingOrderCreate,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> schemas.PickingOrderResponse:
    require_role(user, "supervisor")
    options = {
        "source_document_id": payload.source_document_id,
        "source_document_type": payload.source_document_type,
        "location_id": payload.location_id,
        "notes": payload.notes,
        "user_id": user.id,
    }
    if payload.allocate:
        requests = [(r.item_id, r.location_id, r.quantity) for r in payload.allocate]
        order = await machine.create_order_from_allocation(payload.picking_number, requests, **options)
    else:
        order = await machine.create_order(
            payload.picking_number,
            [line.model_dump() for line in payload.lines],
            **options,
        )
    return _respond(order, machine)


@router.post("/reopen-idle", response_model=list[schemas.PickingOrderResponse])
async def reopen_idle(
    payload: schemas.ReopenIdleRequest,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> list[schemas.PickingOrderResponse]:
    require_role(user, "supervisor")
    idle_for = dt.timedelta(minutes=payload.idle_minutes) if payload.idle_minutes else None
    reopened = await machine.reopen_idle_orders(idle_for)
    return [_respond(order, machine) for order in reopened]


@router.patch("/lines/{line_id}", response_model=schemas.PickingOrderResponse)
async def update_line(
    line_id: str,
    payload: schemas.LineUpdateRequest,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> schemas.PickingOrderResponse:
    require_role(user, "operator")
    order = await machine.update_line(
        line_id,
        payload.picked_quantity,
        payload.picked,
        lot_number=payload.lot_number,
        expected_version=payload.expected_version,
        user_id=user.id,
    )
    return _respond(order, machine)


@router.get("/{order_id}", response_model=schemas.PickingOrderResponse)
async def get_order(
    order_id: str,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> schemas.PickingOrderResponse:
    require_role(user, "operator")
    order, lines = await machine.route(order_id)
    return _build_order_response(order, lines)


@router.post("/{order_id}/assign", response_model=schemas.PickingOrderResponse)
async def assign_picker(
    order_id: str,
    payload: schemas.AssignPickerRequest,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> schemas.PickingOrderResponse:
    require_role(user, "supervisor")
    order = await machine.assign_picker(
        order_id,
        payload.picker_id,
        expected_version=payload.expected_version,
        user_id=user.id,
    )
    return _respond(order, machine)


@router.post("/{order_id}/complete", response_model=schemas.PickingOrderResponse)
async def complete_order(
    order_id: str,
    payload: schemas.VersionedRequest,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> schemas.PickingOrderResponse:
    require_role(user, "operator")
    order = await machine.complete(
        order_id, expected_version=payload.expected_version, user_id=user.id
    )
    return _respond(order, machine)


@router.post("/{order_id}/cancel", response_model=schemas.PickingOrderResponse)
async def cancel_order(
    order_id: str,
    payload: schemas.VersionedRequest,
    machine: PickingOrderStateMachine = Depends(get_state_machine),
    user=Depends(get_current_user),
) -> schemas.PickingOrderResponse:
    require_role(user, "supervisor")
    order = await machine.cancel(order_id, expected_version=payload.expected_version, user_id=user.id)
    return _respond(order, machine)
