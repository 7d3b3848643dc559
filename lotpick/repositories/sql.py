"""Async SQLAlchemy implementation of the repositories.

Each write runs in the session's transaction and commits once; a failed
compare-and-swap rolls back everything written before it.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .. import models
from ..domain import (
    AuditEvent,
    ItemRef,
    LocationRef,
    PickingOrder,
    PickingOrderLine,
    PickingStatus,
    Reservation,
    ReservationLine,
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


def _to_lot(row: models.StockLot) -> StockLot:
    return StockLot(
        id=row.id,
        item_id=row.item_id,
        location_id=row.location_id,
        lot_number=row.lot_number,
        quantity=row.quantity,
        reserved_quantity=row.reserved_quantity,
        expiry_date=row.expiry_date,
        production_date=row.production_date,
        bin_location=row.bin_location,
        bin_zone=row.bin_zone,
        version=row.version,
    )


def _to_order(row: models.PickingOrder) -> PickingOrder:
    return PickingOrder(
        id=row.id,
        picking_number=row.picking_number,
        status=PickingStatus(row.status),
        source_document_id=row.source_document_id,
        source_document_type=row.source_document_type,
        location_id=row.location_id,
        picker_id=row.picker_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        notes=row.notes,
        version=row.version,
        consumption_pending=row.consumption_pending,
        lines=[
            PickingOrderLine(
                id=line.id,
                order_id=row.id,
                item_id=line.item_id,
                required_quantity=line.required_quantity,
                picked_quantity=line.picked_quantity,
                picked=line.picked,
                bin_location=line.bin_location,
                zone=line.zone,
                lot_number=line.lot_number,
                expiry_date=line.expiry_date,
                picked_at=line.picked_at,
                notes=line.notes,
            )
            for line in row.lines
        ],
    )


def _to_reservation(row: models.Reservation) -> Reservation:
    return Reservation(
        token=row.token,
        item_id=row.item_id,
        location_id=row.location_id,
        order_id=row.picking_order_id,
        status=ReservationStatus(row.status),
        created_at=row.created_at,
        closed_at=row.closed_at,
        lines=[
            ReservationLine(lot_id=line.lot_id, lot_number=line.lot_number, quantity=line.quantity)
            for line in row.lines
        ],
    )


def _to_audit(row: models.Audit) -> AuditEvent:
    return AuditEvent(
        entity=row.entity,
        entity_id=row.entity_id,
        action=row.action,
        payload=row.payload_json or {},
        user_id=row.user_id,
        ts=row.ts,
    )


def _to_user(row: models.User) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        role=row.role,
        active=row.active,
        created_at=row.created_at,
    )


class SQLStore(LotRepository, ReservationRepository, OrderRepository, AuditRepository, UserRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _record(self, audit: Optional[AuditEvent]) -> None:
        if audit is None:
            return
        self.session.add(
            models.Audit(
                entity=audit.entity,
                entity_id=audit.entity_id,
                action=audit.action,
                payload_json=audit.payload,
                user_id=audit.user_id,
                ts=audit.ts,
            )
        )

    # -- lots --------------------------------------------------------------

    async def get_lots(self, item_id: str, location_id: str) -> List[StockLot]:
        result = await self.session.execute(
            select(models.StockLot)
            .where(
                models.StockLot.item_id == item_id,
                models.StockLot.location_id == location_id,
                models.StockLot.quantity > 0,
            )
            .order_by(
                models.StockLot.expiry_date.asc().nulls_last(),
                models.StockLot.production_date.asc().nulls_first(),
            )
        )
        return [_to_lot(row) for row in result.scalars().all()]

    async def list_lots(
        self,
        item_id: Optional[str] = None,
        location_id: Optional[str] = None,
        lot_number: Optional[str] = None,
        limit: int = 100,
    ) -> List[StockLot]:
        query = select(models.StockLot).where(models.StockLot.quantity > 0)
        if item_id:
            query = query.where(models.StockLot.item_id == item_id)
        if location_id:
            query = query.where(models.StockLot.location_id == location_id)
        if lot_number:
            query = query.where(models.StockLot.lot_number.ilike(f"%{lot_number}%"))
        query = query.order_by(models.StockLot.expiry_date.asc().nulls_last()).limit(limit)
        result = await self.session.execute(query)
        return [_to_lot(row) for row in result.scalars().all()]

    async def get_lots_expiring_before(self, cutoff: dt.date) -> List[StockLot]:
        result = await self.session.execute(
            select(models.StockLot)
            .where(
                models.StockLot.quantity > 0,
                models.StockLot.expiry_date.is_not(None),
                models.StockLot.expiry_date <= cutoff,
            )
            .order_by(models.StockLot.expiry_date.asc())
        )
        return [_to_lot(row) for row in result.scalars().all()]

    async def get_item(self, item_id: str) -> Optional[ItemRef]:
        row = await self.session.get(models.Item, item_id)
        if row is None:
            return None
        return ItemRef(id=row.id, code=row.code, name=row.name, lot_tracking=row.lot_tracking)

    async def get_location(self, location_id: str) -> Optional[LocationRef]:
        row = await self.session.get(models.Location, location_id)
        if row is None:
            return None
        return LocationRef(id=row.id, code=row.code, name=row.name)

    # -- reservations ------------------------------------------------------

    async def _load_reservation(self, token: str) -> models.Reservation:
        result = await self.session.execute(
            select(models.Reservation)
            .where(models.Reservation.token == token)
            .options(selectinload(models.Reservation.lines))
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound("Reservation not found", code="reservation.not_found")
        return row

    async def create_reservation(
        self,
        reservation: Reservation,
        expected_versions: Mapping[str, int],
        audit: Optional[AuditEvent] = None,
    ) -> Reservation:
        try:
            for line in reservation.lines:
                lot = models.StockLot
                result = await self.session.execute(
                    update(lot)
                    .where(
                        lot.id == line.lot_id,
                        lot.version == expected_versions[line.lot_id],
                        lot.quantity - lot.reserved_quantity >= line.quantity,
                    )
                    .values(
                        reserved_quantity=lot.reserved_quantity + line.quantity,
                        version=lot.version + 1,
                        updated_at=func.now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise OptimisticLockFailure(
                        f"Lot {line.lot_number} changed since allocation", code="lot.version_conflict"
                    )
            self.session.add(
                models.Reservation(
                    token=reservation.token,
                    item_id=reservation.item_id,
                    location_id=reservation.location_id,
                    picking_order_id=reservation.order_id,
                    status=reservation.status.value,
                    created_at=reservation.created_at,
                    lines=[
                        models.ReservationLine(
                            lot_id=line.lot_id, lot_number=line.lot_number, quantity=line.quantity
                        )
                        for line in reservation.lines
                    ],
                )
            )
            self._record(audit)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        self.session.expire_all()
        return reservation

    async def get_reservation(self, token: str) -> Reservation:
        return _to_reservation(await self._load_reservation(token))

    async def close_reservation(
        self,
        token: str,
        status: ReservationStatus,
        closed_at: dt.datetime,
        audit: Optional[AuditEvent] = None,
    ) -> Reservation:
        row = await self._load_reservation(token)
        try:
            result = await self.session.execute(
                update(models.Reservation)
                .where(
                    models.Reservation.token == token,
                    models.Reservation.status == ReservationStatus.active.value,
                )
                .values(status=status.value, closed_at=closed_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise OptimisticLockFailure(
                    "Reservation was closed concurrently", code="reservation.version_conflict"
                )
            consumed = status is ReservationStatus.committed
            for line in row.lines:
                lot = models.StockLot
                values = {
                    "reserved_quantity": lot.reserved_quantity - line.quantity,
                    "version": lot.version + 1,
                    "updated_at": func.now(),
                }
                if consumed:
                    values["quantity"] = lot.quantity - line.quantity
                await self.session.execute(
                    update(lot)
                    .where(lot.id == line.lot_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            self._record(audit)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        self.session.expire_all()
        return _to_reservation(await self._load_reservation(token))

    async def list_active_reservations(self, created_before: dt.datetime) -> List[Reservation]:
        result = await self.session.execute(
            select(models.Reservation)
            .where(
                models.Reservation.status == ReservationStatus.active.value,
                models.Reservation.created_at < created_before,
            )
            .options(selectinload(models.Reservation.lines))
        )
        return [_to_reservation(row) for row in result.scalars().all()]

    async def list_order_reservations(self, order_id: str) -> List[Reservation]:
        result = await self.session.execute(
            select(models.Reservation)
            .where(
                models.Reservation.status == ReservationStatus.active.value,
                models.Reservation.picking_order_id == order_id,
            )
            .order_by(models.Reservation.created_at.asc())
            .options(selectinload(models.Reservation.lines))
        )
        return [_to_reservation(row) for row in result.scalars().all()]

    # -- picking orders ----------------------------------------------------

    def _order_query(self):
        return select(models.PickingOrder).options(selectinload(models.PickingOrder.lines))

    async def get_order(self, order_id: str) -> PickingOrder:
        result = await self.session.execute(
            self._order_query().where(models.PickingOrder.id == order_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound("Picking order not found", code="picking.not_found")
        return _to_order(row)

    async def get_order_for_line(self, line_id: str) -> PickingOrder:
        result = await self.session.execute(
            select(models.PickingOrderLine.picking_order_id).where(models.PickingOrderLine.id == line_id)
        )
        order_id = result.scalar_one_or_none()
        if order_id is None:
            raise NotFound("Picking line not found", code="picking.line_not_found")
        return await self.get_order(order_id)

    async def list_orders(self, status: Optional[PickingStatus] = None) -> List[PickingOrder]:
        query = self._order_query().order_by(models.PickingOrder.created_at.desc())
        if status is not None:
            query = query.where(models.PickingOrder.status == status.value)
        result = await self.session.execute(query)
        return [_to_order(row) for row in result.scalars().all()]

    async def list_idle_orders(
        self, status: PickingStatus, updated_before: dt.datetime
    ) -> List[PickingOrder]:
        result = await self.session.execute(
            self._order_query().where(
                models.PickingOrder.status == status.value,
                models.PickingOrder.updated_at < updated_before,
            )
        )
        return [_to_order(row) for row in result.scalars().all()]

    async def add_order(self, order: PickingOrder, audit: Optional[AuditEvent] = None) -> PickingOrder:
        row = models.PickingOrder(
            id=order.id,
            picking_number=order.picking_number,
            source_document_id=order.source_document_id,
            source_document_type=order.source_document_type,
            location_id=order.location_id,
            picker_id=order.picker_id,
            status=order.status.value,
            notes=order.notes,
            version=order.version,
            consumption_pending=order.consumption_pending,
            created_at=order.created_at,
            updated_at=order.updated_at,
            lines=[
                models.PickingOrderLine(
                    id=line.id,
                    position=position,
                    item_id=line.item_id,
                    required_quantity=line.required_quantity,
                    picked_quantity=line.picked_quantity,
                    picked=line.picked,
                    lot_number=line.lot_number,
                    expiry_date=line.expiry_date,
                    bin_location=line.bin_location,
                    zone=line.zone,
                    notes=line.notes,
                )
                for position, line in enumerate(order.lines)
            ],
        )
        self.session.add(row)
        self._record(audit)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        self.session.expire_all()
        return order

    async def save_order(
        self,
        order: PickingOrder,
        expected_version: int,
        audit: Optional[AuditEvent] = None,
    ) -> PickingOrder:
        try:
            result = await self.session.execute(
                update(models.PickingOrder)
                .where(
                    models.PickingOrder.id == order.id,
                    models.PickingOrder.version == expected_version,
                )
                .values(
                    status=order.status.value,
                    picker_id=order.picker_id,
                    notes=order.notes,
                    started_at=order.started_at,
                    completed_at=order.completed_at,
                    updated_at=order.updated_at,
                    consumption_pending=order.consumption_pending,
                    version=expected_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise OptimisticLockFailure(
                    f"Picking order {order.picking_number} was modified concurrently",
                    code="picking.version_conflict",
                )
            for line in order.lines:
                await self.session.execute(
                    update(models.PickingOrderLine)
                    .where(
                        models.PickingOrderLine.id == line.id,
                        models.PickingOrderLine.picking_order_id == order.id,
                    )
                    .values(
                        picked_quantity=line.picked_quantity,
                        picked=line.picked,
                        picked_at=line.picked_at,
                        lot_number=line.lot_number,
                    )
                    .execution_options(synchronize_session=False)
                )
            self._record(audit)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        self.session.expire_all()
        order.version = expected_version + 1
        return order

    # -- audit and users ---------------------------------------------------

    async def record_event(self, audit: AuditEvent) -> None:
        self._record(audit)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def list_events(self, limit: int = 100) -> List[AuditEvent]:
        result = await self.session.execute(
            select(models.Audit).order_by(models.Audit.ts.desc()).limit(limit)
        )
        return [_to_audit(row) for row in result.scalars().all()]

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self.session.get(models.User, user_id)
        return _to_user(row) if row is not None else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.session.execute(select(models.User).where(models.User.username == username))
        row = result.scalar_one_or_none()
        return _to_user(row) if row is not None else None
