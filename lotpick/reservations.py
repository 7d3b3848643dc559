"""Atomic lot reservations on top of the FEFO allocation plan."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, List, Optional

from . import settings
from .allocation import AllocationEngine
from .domain import (
    AllocationPlan,
    AuditEvent,
    PickingStatus,
    Reservation,
    ReservationLine,
    ReservationStatus,
    new_id,
    utcnow,
)
from .exceptions import InsufficientStock, NotFound, OptimisticLockFailure, ReservationClosed
from .repositories.base import OrderRepository, ReservationRepository

logger = logging.getLogger("lotpick.reservations")


class ReservationService:
    """
    Holds stock for an item at a location until the hold is committed
    (stock consumed) or released. Holds taken for a picking order live as
    long as the order: the stale sweep only frees them once the order is
    cancelled or gone.
    """

    def __init__(
        self,
        engine: AllocationEngine,
        reservations: ReservationRepository,
        now: Callable[[], dt.datetime] = utcnow,
        ttl: Optional[dt.timedelta] = None,
        orders: Optional[OrderRepository] = None,
    ):
        self.engine = engine
        self.reservations = reservations
        self.orders = orders
        self.now = now
        self.ttl = dt.timedelta(minutes=settings.RESERVATION_TTL_MINUTES) if ttl is None else ttl

    async def reserve_plan(
        self,
        item_id: str,
        location_id: str,
        required_quantity: Any,
        order_id: Optional[str] = None,
        allow_partial: bool = False,
        user_id: Optional[str] = None,
    ) -> tuple[AllocationPlan, Reservation]:
        plan = await self.engine.allocate(item_id, location_id, required_quantity)
        if not plan.suggestion:
            raise InsufficientStock(f"No available stock for item {item_id} at {location_id}")
        if not plan.can_fulfill and not allow_partial:
            raise InsufficientStock(
                f"Only {plan.total_available} of {plan.required_quantity} available for item {item_id}"
            )

        reservation = Reservation(
            token=new_id(),
            item_id=item_id,
            location_id=location_id,
            order_id=order_id,
            created_at=self.now(),
            lines=[
                ReservationLine(
                    lot_id=s.lot.lot.id,
                    lot_number=s.lot.lot.lot_number,
                    quantity=s.pick_quantity,
                )
                for s in plan.suggestion
            ],
        )
        expected_versions = {s.lot.lot.id: s.lot.lot.version for s in plan.suggestion}
        audit = AuditEvent(
            entity="reservation",
            entity_id=reservation.token,
            action="reserved",
            payload={
                "item_id": item_id,
                "location_id": location_id,
                "order_id": order_id,
                "lots": [
                    {"lot_number": line.lot_number, "quantity": str(line.quantity)}
                    for line in reservation.lines
                ],
            },
            user_id=user_id,
            ts=reservation.created_at,
        )
        reservation = await self.reservations.create_reservation(reservation, expected_versions, audit)
        logger.info(
            "Reserved %s of item %s at %s across %d lot(s) (token %s)",
            reservation.quantity,
            item_id,
            location_id,
            len(reservation.lines),
            reservation.token,
        )
        return plan, reservation

    async def reserve(
        self,
        item_id: str,
        location_id: str,
        required_quantity: Any,
        order_id: Optional[str] = None,
        allow_partial: bool = False,
        user_id: Optional[str] = None,
    ) -> Reservation:
        _, reservation = await self.reserve_plan(
            item_id,
            location_id,
            required_quantity,
            order_id=order_id,
            allow_partial=allow_partial,
            user_id=user_id,
        )
        return reservation

    async def _close(
        self, token: str, status: ReservationStatus, user_id: Optional[str]
    ) -> Reservation:
        reservation = await self.reservations.get_reservation(token)
        if reservation.status is status:
            return reservation
        if reservation.status is not ReservationStatus.active:
            raise ReservationClosed(f"Reservation is already {reservation.status.value}")

        closed_at = self.now()
        audit = AuditEvent(
            entity="reservation",
            entity_id=token,
            action=status.value,
            payload={"quantity": str(reservation.quantity), "order_id": reservation.order_id},
            user_id=user_id,
            ts=closed_at,
        )
        reservation = await self.reservations.close_reservation(token, status, closed_at, audit)
        logger.info("Reservation %s %s", token, status.value)
        return reservation

    async def commit(self, token: str, user_id: Optional[str] = None) -> Reservation:
        return await self._close(token, ReservationStatus.committed, user_id)

    async def release(self, token: str, user_id: Optional[str] = None) -> Reservation:
        return await self._close(token, ReservationStatus.released, user_id)

    async def _settle_order(
        self, order_id: str, status: ReservationStatus, user_id: Optional[str]
    ) -> List[Reservation]:
        settled = []
        for reservation in await self.reservations.list_order_reservations(order_id):
            settled.append(await self._close(reservation.token, status, user_id))
        return settled

    async def commit_order(self, order_id: str, user_id: Optional[str] = None) -> List[Reservation]:
        """Consume every hold still active for the order."""
        return await self._settle_order(order_id, ReservationStatus.committed, user_id)

    async def release_order(self, order_id: str, user_id: Optional[str] = None) -> List[Reservation]:
        return await self._settle_order(order_id, ReservationStatus.released, user_id)

    async def _order_released(self, order_id: str) -> bool:
        if self.orders is None:
            return False
        try:
            order = await self.orders.get_order(order_id)
        except NotFound:
            return True
        return order.status is PickingStatus.cancelled

    async def release_stale(self, ttl: Optional[dt.timedelta] = None) -> List[Reservation]:
        cutoff = self.now() - (self.ttl if ttl is None else ttl)
        released = []
        for reservation in await self.reservations.list_active_reservations(cutoff):
            if reservation.order_id is not None and not await self._order_released(reservation.order_id):
                continue
            try:
                released.append(await self.release(reservation.token))
            except (ReservationClosed, OptimisticLockFailure):
                logger.info("Reservation %s closed while releasing stale holds", reservation.token)
        if released:
            logger.warning("Released %d stale reservation(s) older than %s", len(released), cutoff)
        return released
