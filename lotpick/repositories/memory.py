"""In-process store: one table per entity keyed by id, each row versioned.

Rows handed out are copies, so callers only change stored state through the
compare-and-swap writes below.
"""

from __future__ import annotations

import copy
import datetime as dt
import threading
from typing import Iterable, List, Mapping, Optional

from ..domain import (
    AuditEvent,
    ItemRef,
    LocationRef,
    PickingOrder,
    PickingStatus,
    Reservation,
    ReservationStatus,
    StockLot,
    User,
)
from ..exceptions import NotFound, OptimisticLockFailure
from .base import (
    AuditRepository,
    LotRepository,
    OrderRepository,
    ReservationRepository,
    UserRepository,
)


class MemoryStore(LotRepository, ReservationRepository, OrderRepository, AuditRepository, UserRepository):

    def __init__(
        self,
        lots: Iterable[StockLot] = (),
        items: Iterable[ItemRef] = (),
        locations: Iterable[LocationRef] = (),
        users: Iterable[User] = (),
    ):
        self._lock = threading.RLock()
        self.lots: dict[str, StockLot] = {}
        self.items: dict[str, ItemRef] = {item.id: item for item in items}
        self.locations: dict[str, LocationRef] = {loc.id: loc for loc in locations}
        self.orders: dict[str, PickingOrder] = {}
        self.reservations: dict[str, Reservation] = {}
        self.users: dict[str, User] = {user.id: user for user in users}
        self.audit: list[AuditEvent] = []
        for lot in lots:
            self.add_lot(lot)

    # -- seeding -----------------------------------------------------------

    def add_lot(self, lot: StockLot) -> StockLot:
        with self._lock:
            self.lots[lot.id] = copy.deepcopy(lot)
        return lot

    def add_item(self, item: ItemRef) -> None:
        self.items[item.id] = item

    def add_location(self, location: LocationRef) -> None:
        self.locations[location.id] = location

    def add_user(self, user: User) -> None:
        self.users[user.id] = user

    def _record(self, audit: Optional[AuditEvent]) -> None:
        if audit is not None:
            self.audit.append(audit)

    # -- lots --------------------------------------------------------------

    async def get_lots(self, item_id: str, location_id: str) -> List[StockLot]:
        with self._lock:
            return [
                copy.deepcopy(lot)
                for lot in self.lots.values()
                if lot.item_id == item_id and lot.location_id == location_id and lot.quantity > 0
            ]

    async def list_lots(
        self,
        item_id: Optional[str] = None,
        location_id: Optional[str] = None,
        lot_number: Optional[str] = None,
        limit: int = 100,
    ) -> List[StockLot]:
        with self._lock:
            rows = [lot for lot in self.lots.values() if lot.quantity > 0]
        if item_id:
            rows = [lot for lot in rows if lot.item_id == item_id]
        if location_id:
            rows = [lot for lot in rows if lot.location_id == location_id]
        if lot_number:
            needle = lot_number.casefold()
            rows = [lot for lot in rows if needle in lot.lot_number.casefold()]
        rows.sort(key=lambda lot: (lot.expiry_date is None, lot.expiry_date or dt.date.max))
        return [copy.deepcopy(lot) for lot in rows[:limit]]

    async def get_lots_expiring_before(self, cutoff: dt.date) -> List[StockLot]:
        with self._lock:
            rows = [
                copy.deepcopy(lot)
                for lot in self.lots.values()
                if lot.quantity > 0 and lot.expiry_date is not None and lot.expiry_date <= cutoff
            ]
        rows.sort(key=lambda lot: lot.expiry_date)
        return rows

    async def get_item(self, item_id: str) -> Optional[ItemRef]:
        return self.items.get(item_id)

    async def get_location(self, location_id: str) -> Optional[LocationRef]:
        return self.locations.get(location_id)

    # -- reservations ------------------------------------------------------

    async def create_reservation(
        self,
        reservation: Reservation,
        expected_versions: Mapping[str, int],
        audit: Optional[AuditEvent] = None,
    ) -> Reservation:
        with self._lock:
            for line in reservation.lines:
                lot = self.lots.get(line.lot_id)
                if lot is None:
                    raise NotFound(f"Lot {line.lot_id} not found", code="lot.not_found")
                if lot.version != expected_versions.get(line.lot_id) or lot.available_quantity < line.quantity:
                    raise OptimisticLockFailure(
                        f"Lot {lot.lot_number} changed since allocation", code="lot.version_conflict"
                    )
            for line in reservation.lines:
                lot = self.lots[line.lot_id]
                lot.reserved_quantity += line.quantity
                lot.version += 1
            self.reservations[reservation.token] = copy.deepcopy(reservation)
            self._record(audit)
        return reservation

    async def get_reservation(self, token: str) -> Reservation:
        with self._lock:
            reservation = self.reservations.get(token)
            if reservation is None:
                raise NotFound("Reservation not found", code="reservation.not_found")
            return copy.deepcopy(reservation)

    async def close_reservation(
        self,
        token: str,
        status: ReservationStatus,
        closed_at: dt.datetime,
        audit: Optional[AuditEvent] = None,
    ) -> Reservation:
        with self._lock:
            reservation = self.reservations.get(token)
            if reservation is None:
                raise NotFound("Reservation not found", code="reservation.not_found")
            if reservation.status is not ReservationStatus.active:
                raise OptimisticLockFailure(
                    "Reservation was closed concurrently", code="reservation.version_conflict"
                )
            for line in reservation.lines:
                lot = self.lots[line.lot_id]
                lot.reserved_quantity -= line.quantity
                if status is ReservationStatus.committed:
                    lot.quantity -= line.quantity
                lot.version += 1
            reservation.status = status
            reservation.closed_at = closed_at
            self._record(audit)
            return copy.deepcopy(reservation)

    async def list_active_reservations(self, created_before: dt.datetime) -> List[Reservation]:
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self.reservations.values()
                if r.status is ReservationStatus.active and r.created_at < created_before
            ]

    async def list_order_reservations(self, order_id: str) -> List[Reservation]:
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self.reservations.values()
                if r.status is ReservationStatus.active and r.order_id == order_id
            ]

    # -- picking orders ----------------------------------------------------

    async def get_order(self, order_id: str) -> PickingOrder:
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                raise NotFound("Picking order not found", code="picking.not_found")
            return copy.deepcopy(order)

    async def get_order_for_line(self, line_id: str) -> PickingOrder:
        with self._lock:
            for order in self.orders.values():
                if order.line(line_id) is not None:
                    return copy.deepcopy(order)
        raise NotFound("Picking line not found", code="picking.line_not_found")

    async def list_orders(self, status: Optional[PickingStatus] = None) -> List[PickingOrder]:
        with self._lock:
            rows = [o for o in self.orders.values() if status is None or o.status is status]
            rows.sort(key=lambda o: o.created_at, reverse=True)
            return [copy.deepcopy(o) for o in rows]

    async def list_idle_orders(
        self, status: PickingStatus, updated_before: dt.datetime
    ) -> List[PickingOrder]:
        with self._lock:
            return [
                copy.deepcopy(o)
                for o in self.orders.values()
                if o.status is status and o.updated_at < updated_before
            ]

    async def add_order(self, order: PickingOrder, audit: Optional[AuditEvent] = None) -> PickingOrder:
        with self._lock:
            self.orders[order.id] = copy.deepcopy(order)
            self._record(audit)
        return order

    async def save_order(
        self,
        order: PickingOrder,
        expected_version: int,
        audit: Optional[AuditEvent] = None,
    ) -> PickingOrder:
        with self._lock:
            stored = self.orders.get(order.id)
            if stored is None:
                raise NotFound("Picking order not found", code="picking.not_found")
            if stored.version != expected_version:
                raise OptimisticLockFailure(
                    f"Picking order {stored.picking_number} was modified concurrently",
                    code="picking.version_conflict",
                )
            order.version = expected_version + 1
            self.orders[order.id] = copy.deepcopy(order)
            self._record(audit)
        return order

    # -- audit and users ---------------------------------------------------

    async def record_event(self, audit: AuditEvent) -> None:
        with self._lock:
            self.audit.append(audit)

    async def list_events(self, limit: int = 100) -> List[AuditEvent]:
        with self._lock:
            return list(reversed(self.audit))[:limit]

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None
