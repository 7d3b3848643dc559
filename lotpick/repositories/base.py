from __future__ import annotations

import datetime as dt
from abc import ABC, abstractmethod
from typing import List, Mapping, Optional

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


class LotRepository(ABC):

    @abstractmethod
    async def get_lots(self, item_id: str, location_id: str) -> List[StockLot]:
        """Lots of one item at one location with quantity > 0."""

    @abstractmethod
    async def list_lots(
        self,
        item_id: Optional[str] = None,
        location_id: Optional[str] = None,
        lot_number: Optional[str] = None,
        limit: int = 100,
    ) -> List[StockLot]:
        pass

    @abstractmethod
    async def get_lots_expiring_before(self, cutoff: dt.date) -> List[StockLot]:
        """Lots with quantity > 0 and an expiry date on or before ``cutoff``."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[ItemRef]:
        pass

    @abstractmethod
    async def get_location(self, location_id: str) -> Optional[LocationRef]:
        pass


class ReservationRepository(ABC):

    @abstractmethod
    async def create_reservation(
        self,
        reservation: Reservation,
        expected_versions: Mapping[str, int],
        audit: Optional[AuditEvent] = None,
    ) -> Reservation:
        """
        Increment ``reserved_quantity`` on every lot of the reservation in one
        transaction. Each lot must still be at ``expected_versions[lot_id]``
        and have enough available quantity, otherwise nothing is written and
        OptimisticLockFailure is raised.
        """

    @abstractmethod
    async def get_reservation(self, token: str) -> Reservation:
        pass

    @abstractmethod
    async def close_reservation(
        self,
        token: str,
        status: ReservationStatus,
        closed_at: dt.datetime,
        audit: Optional[AuditEvent] = None,
    ) -> Reservation:
        """
        Commit (consume) or release an active reservation atomically.
        Raises OptimisticLockFailure when the reservation is no longer active.
        """

    @abstractmethod
    async def list_active_reservations(self, created_before: dt.datetime) -> List[Reservation]:
        pass

    @abstractmethod
    async def list_order_reservations(self, order_id: str) -> List[Reservation]:
        """Active reservations taken for one picking order."""


class OrderRepository(ABC):

    @abstractmethod
    async def get_order(self, order_id: str) -> PickingOrder:
        pass

    @abstractmethod
    async def get_order_for_line(self, line_id: str) -> PickingOrder:
        pass

    @abstractmethod
    async def list_orders(self, status: Optional[PickingStatus] = None) -> List[PickingOrder]:
        pass

    @abstractmethod
    async def list_idle_orders(
        self, status: PickingStatus, updated_before: dt.datetime
    ) -> List[PickingOrder]:
        pass

    @abstractmethod
    async def add_order(self, order: PickingOrder, audit: Optional[AuditEvent] = None) -> PickingOrder:
        pass

    @abstractmethod
    async def save_order(
        self,
        order: PickingOrder,
        expected_version: int,
        audit: Optional[AuditEvent] = None,
    ) -> PickingOrder:
        """
        Persist the order header and its lines if the stored version still
        equals ``expected_version``; the stored version is then bumped by one.
        """


class AuditRepository(ABC):

    @abstractmethod
    async def record_event(self, audit: AuditEvent) -> None:
        """Store a standalone event, outside any other write."""

    @abstractmethod
    async def list_events(self, limit: int = 100) -> List[AuditEvent]:
        """Most recent first."""


class UserRepository(ABC):

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]:
        pass
