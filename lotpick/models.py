"""SQLAlchemy models for the lot allocation and picking service."""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Item(Base):
    """Read-only item master data maintained elsewhere."""

    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    lot_tracking = Column(Boolean, nullable=False, default=False)


class Location(Base):
    """Read-only warehouse location master data."""

    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)


class StockLot(Base):
    """Quantity of one item lot stored in one bin of a location."""

    __tablename__ = "stock_lots"

    id = Column(String(36), primary_key=True, default=_uuid)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False)
    lot_number = Column(String(64), nullable=False)
    expiry_date = Column(Date)
    production_date = Column(Date)
    quantity = Column(Numeric(12, 3), nullable=False, default=0)
    reserved_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    bin_location = Column(String(64))
    bin_zone = Column(String(64))
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index(
            "stock_lots_item_location_lot_bin_uq",
            item_id,
            location_id,
            lot_number,
            func.coalesce(bin_location, ""),
            unique=True,
        ),
        Index("stock_lots_expiry_idx", expiry_date),
    )


class PickingOrder(Base):
    __tablename__ = "picking_orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    picking_number = Column(String(64), nullable=False, unique=True)
    source_document_id = Column(String(36))
    source_document_type = Column(String(32), nullable=False, default="goods_issue")
    location_id = Column(String(36), ForeignKey("locations.id"))
    picker_id = Column(String(36))
    status = Column(String(16), nullable=False, default="open", index=True)
    notes = Column(Text)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    consumption_pending = Column(Boolean, nullable=False, default=False)

    lines = relationship(
        "PickingOrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PickingOrderLine.position",
    )


class PickingOrderLine(Base):
    __tablename__ = "picking_order_lines"

    id = Column(String(36), primary_key=True, default=_uuid)
    picking_order_id = Column(String(36), ForeignKey("picking_orders.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False)
    required_quantity = Column(Numeric(12, 3), nullable=False)
    picked_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    picked = Column(Boolean, nullable=False, default=False)
    lot_number = Column(String(64))
    expiry_date = Column(Date)
    bin_location = Column(String(64))
    zone = Column(String(64))
    picked_at = Column(DateTime(timezone=True))
    notes = Column(Text)

    order = relationship("PickingOrder", back_populates="lines")


class Reservation(Base):
    __tablename__ = "reservations"

    token = Column(String(36), primary_key=True, default=_uuid)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False)
    picking_order_id = Column(String(36), index=True)
    status = Column(String(16), nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    closed_at = Column(DateTime(timezone=True))

    lines = relationship("ReservationLine", back_populates="reservation", cascade="all, delete-orphan")


class ReservationLine(Base):
    __tablename__ = "reservation_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_token = Column(String(36), ForeignKey("reservations.token", ondelete="CASCADE"), nullable=False)
    lot_id = Column(String(36), ForeignKey("stock_lots.id"), nullable=False)
    lot_number = Column(String(64), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)

    reservation = relationship("Reservation", back_populates="lines")


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(64), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="operator")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Audit(Base):
    __tablename__ = "audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(32), nullable=False)
    payload_json = Column(JSON, nullable=False, default=dict)
    user_id = Column(String(36))
    ts = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
