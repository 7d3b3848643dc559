import datetime as dt

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..auth import get_current_user
from ..deps import get_reservation_service
from ..domain import Reservation
from ..rbac import require_role
from ..reservations import ReservationService

router = APIRouter()


def _build_reservation_response(reservation: Reservation) -> schemas.ReservationResponse:
    return schemas.ReservationResponse(
        token=reservation.token,
        item_id=reservation.item_id,
        location_id=reservation.location_id,
        order_id=reservation.order_id,
        status=reservation.status.value,
        quantity=float(reservation.quantity),
        created_at=reservation.created_at,
        closed_at=reservation.closed_at,
        lines=[
            schemas.ReservationLineResponse(
                lot_id=line.lot_id,
                lot_number=line.lot_number,
                quantity=float(line.quantity),
            )
            for line in reservation.lines
        ],
    )


@router.post("/", response_model=schemas.ReservationResponse, status_code=status.HTTP_201_CREATED)
async def reserve(
    payload: schemas.ReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    user=Depends(get_current_user),
) -> schemas.ReservationResponse:
    require_role(user, "operator")
    reservation = await service.reserve(
        payload.item_id,
        payload.location_id,
        payload.quantity,
        order_id=payload.order_id,
        allow_partial=payload.allow_partial,
        user_id=user.id,
    )
    return _build_reservation_response(reservation)


@router.post("/release-stale", response_model=list[schemas.ReservationResponse])
async def release_stale(
    payload: schemas.ReleaseStaleRequest,
    service: ReservationService = Depends(get_reservation_service),
    user=Depends(get_current_user),
) -> list[schemas.ReservationResponse]:
    require_role(user, "supervisor")
    ttl = dt.timedelta(minutes=payload.ttl_minutes) if payload.ttl_minutes else None
    released = await service.release_stale(ttl)
    return [_build_reservation_response(r) for r in released]


@router.post("/{token}/commit", response_model=schemas.ReservationResponse)
async def commit(
    token: str,
    service: ReservationService = Depends(get_reservation_service),
    user=Depends(get_current_user),
) -> schemas.ReservationResponse:
    require_role(user, "operator")
    return _build_reservation_response(await service.commit(token, user_id=user.id))


@router.post("/{token}/release", response_model=schemas.ReservationResponse)
async def release(
    token: str,
    service: ReservationService = Depends(get_reservation_service),
    user=Depends(get_current_user),
) -> schemas.ReservationResponse:
    require_role(user, "operator")
    return _build_reservation_response(await service.release(token, user_id=user.id))
