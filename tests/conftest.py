import asyncio
import datetime as dt
from decimal import Decimal

import pytest

from lotpick.domain import ItemRef, LocationRef, StockLot
from lotpick.repositories import MemoryStore

TODAY = dt.date(2024, 4, 2)
NOW = dt.datetime(2024, 4, 2, 9, 30, tzinfo=dt.timezone.utc)


def run(coro):
    return asyncio.run(coro)


def make_lot(lot_id, quantity, expiry_in=None, produced_ago=None, reserved=0, **kwargs):
    kwargs.setdefault("item_id", "item-1")
    kwargs.setdefault("location_id", "loc-1")
    return StockLot(
        id=lot_id,
        lot_number=kwargs.pop("lot_number", f"LOT-{lot_id}"),
        quantity=Decimal(quantity),
        reserved_quantity=Decimal(reserved),
        expiry_date=TODAY + dt.timedelta(days=expiry_in) if expiry_in is not None else None,
        production_date=TODAY - dt.timedelta(days=produced_ago) if produced_ago is not None else None,
        **kwargs,
    )


class Clock:
    """Mutable wall clock for services that take a ``now`` callable."""

    def __init__(self, now=NOW):
        self.current = now

    def __call__(self):
        return self.current

    def advance(self, **delta):
        self.current += dt.timedelta(**delta)


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore(
        lots=[
            make_lot("A", 10, expiry_in=5, bin_location="A-01-01", bin_zone="Ambient"),
            make_lot("B", 5, expiry_in=40, bin_location="C-01-02", bin_zone="Cold"),
        ],
        items=[ItemRef(id="item-1", code="ART-102", name="Energy Drink 500ml", lot_tracking=True)],
        locations=[LocationRef(id="loc-1", code="MAIN", name="Main warehouse")],
    )


@pytest.fixture()
def order_lines():
    return [
        {"id": "line-1", "item_id": "item-1", "required_quantity": 4, "bin_location": "C-01-01", "zone": "Cold"},
        {"id": "line-2", "item_id": "item-2", "required_quantity": 2, "bin_location": "A-01-02", "zone": "Ambient"},
    ]
