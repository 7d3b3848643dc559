import datetime as dt
from decimal import Decimal

import pytest

from conftest import TODAY, run
from lotpick.allocation import AllocationEngine
from lotpick.domain import ReservationStatus
from lotpick.exceptions import InsufficientStock, NotFound, OptimisticLockFailure, ReservationClosed
from lotpick.repositories import MemoryStore
from lotpick.reservations import ReservationService


@pytest.fixture()
def service(store: MemoryStore, clock) -> ReservationService:
    engine = AllocationEngine(store, clock=lambda: TODAY)
    return ReservationService(engine, store, now=clock, ttl=dt.timedelta(minutes=30))


def _reserved(store: MemoryStore) -> dict:
    return {lot_id: lot.reserved_quantity for lot_id, lot in store.lots.items()}


def test_reserve_increments_reserved_quantity_per_lot(service, store) -> None:
    reservation = run(service.reserve("item-1", "loc-1", 12, order_id="order-1"))

    assert reservation.status is ReservationStatus.active
    assert [(line.lot_id, line.quantity) for line in reservation.lines] == [
        ("A", Decimal("10")),
        ("B", Decimal("2")),
    ]
    assert _reserved(store) == {"A": Decimal("10"), "B": Decimal("2")}
    assert store.lots["A"].version == 2
    assert store.audit[-1].action == "reserved"


def test_second_reservation_sees_first_one(service, store) -> None:
    run(service.reserve("item-1", "loc-1", 12))

    with pytest.raises(InsufficientStock):
        run(service.reserve("item-1", "loc-1", 5))

    partial = run(service.reserve("item-1", "loc-1", 5, allow_partial=True))
    assert partial.quantity == Decimal("3")
    assert _reserved(store) == {"A": Decimal("10"), "B": Decimal("5")}


def test_no_stock_at_all_is_insufficient(service) -> None:
    with pytest.raises(InsufficientStock):
        run(service.reserve("item-1", "loc-9", 1, allow_partial=True))


def test_stale_lot_version_aborts_whole_reservation(store, clock) -> None:
    engine = AllocationEngine(store, clock=lambda: TODAY)
    service = ReservationService(engine, store, now=clock)
    plan = run(engine.allocate("item-1", "loc-1", 12))

    # a concurrent writer bumps lot B between planning and reserving
    store.lots["B"].version += 1

    class StalePlanEngine:
        async def allocate(self, *args):
            return plan

    service.engine = StalePlanEngine()
    with pytest.raises(OptimisticLockFailure):
        run(service.reserve("item-1", "loc-1", 12))

    assert _reserved(store) == {"A": Decimal("0"), "B": Decimal("0")}
    assert store.reservations == {}


def test_commit_consumes_stock(service, store) -> None:
    reservation = run(service.reserve("item-1", "loc-1", 12))

    committed = run(service.commit(reservation.token))

    assert committed.status is ReservationStatus.committed
    assert committed.closed_at is not None
    assert store.lots["A"].quantity == 0
    assert store.lots["B"].quantity == Decimal("3")
    assert _reserved(store) == {"A": Decimal("0"), "B": Decimal("0")}


def test_release_returns_stock(service, store) -> None:
    reservation = run(service.reserve("item-1", "loc-1", 12))

    released = run(service.release(reservation.token))

    assert released.status is ReservationStatus.released
    assert store.lots["A"].quantity == Decimal("10")
    assert _reserved(store) == {"A": Decimal("0"), "B": Decimal("0")}


def test_repeat_close_is_a_noop(service, store) -> None:
    reservation = run(service.reserve("item-1", "loc-1", 4))
    run(service.commit(reservation.token))
    again = run(service.commit(reservation.token))

    assert again.status is ReservationStatus.committed
    assert store.lots["A"].quantity == Decimal("6")


def test_release_after_commit_is_rejected(service) -> None:
    reservation = run(service.reserve("item-1", "loc-1", 4))
    run(service.commit(reservation.token))

    with pytest.raises(ReservationClosed):
        run(service.release(reservation.token))


def test_unknown_token(service) -> None:
    with pytest.raises(NotFound):
        run(service.commit("missing"))


def test_release_stale_only_touches_old_active_reservations(service, store, clock) -> None:
    old = run(service.reserve("item-1", "loc-1", 3))
    committed = run(service.reserve("item-1", "loc-1", 2))
    run(service.commit(committed.token))
    clock.advance(minutes=45)
    fresh = run(service.reserve("item-1", "loc-1", 1))

    released = run(service.release_stale())

    assert [r.token for r in released] == [old.token]
    assert run(service.reservations.get_reservation(fresh.token)).status is ReservationStatus.active
    assert store.lots["A"].reserved_quantity == Decimal("1")


def test_release_stale_frees_holds_of_missing_orders_only_with_order_lookup(service, store, clock) -> None:
    orphan = run(service.reserve("item-1", "loc-1", 3, order_id="order-gone"))
    clock.advance(minutes=45)

    assert run(service.release_stale()) == []

    service.orders = store
    released = run(service.release_stale())
    assert [r.token for r in released] == [orphan.token]
    assert store.lots["A"].reserved_quantity == Decimal("0")
