import copy
import datetime as dt
from decimal import Decimal

import pytest

from conftest import TODAY, run
from lotpick.allocation import AllocationEngine
from lotpick.domain import PickingStatus, ReservationStatus
from lotpick.exceptions import (
    IncompleteLines,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OptimisticLockFailure,
    OverPick,
    ValidationError,
)
from lotpick.picking import PickingOrderStateMachine, consumption_requests
from lotpick.repositories import MemoryStore
from lotpick.reservations import ReservationService
from lotpick.routing import AsEnteredRouteOptimizer


@pytest.fixture()
def machine(store: MemoryStore, clock) -> PickingOrderStateMachine:
    return PickingOrderStateMachine(store, over_pick_policy="reject", now=clock)


@pytest.fixture()
def order(machine, order_lines):
    return run(machine.create_order("PO-20240402-0001", order_lines, source_document_id="doc-1"))


def _pick_all(machine, order):
    for line in order.lines:
        order = run(machine.update_line(line.id, line.required_quantity, True))
    return order


def test_new_order_is_open_with_lines(order) -> None:
    assert order.status is PickingStatus.open
    assert order.version == 1
    assert [line.required_quantity for line in order.lines] == [Decimal("4"), Decimal("2")]
    assert all(not line.picked for line in order.lines)


def test_create_rejects_non_positive_quantities(machine) -> None:
    with pytest.raises(ValidationError):
        run(machine.create_order("PO-1", [{"item_id": "item-1", "required_quantity": 0}]))


def test_assigning_picker_starts_order(machine, order, clock) -> None:
    updated = run(machine.assign_picker(order.id, "emp-002"))

    assert updated.status is PickingStatus.in_progress
    assert updated.picker_id == "emp-002"
    assert updated.started_at == clock.current
    assert updated.version == 2


def test_reassigning_or_clearing_picker_keeps_in_progress(machine, order) -> None:
    run(machine.assign_picker(order.id, "emp-002"))
    run(machine.assign_picker(order.id, "emp-003"))
    cleared = run(machine.assign_picker(order.id, None))

    assert cleared.status is PickingStatus.in_progress
    assert cleared.picker_id is None


def test_clearing_picker_on_open_order_stays_open(machine, order) -> None:
    updated = run(machine.assign_picker(order.id, None))
    assert updated.status is PickingStatus.open


def test_first_picked_line_starts_order(machine, order) -> None:
    updated = run(machine.update_line("line-1", 4, True, lot_number="LOT-A"))

    assert updated.status is PickingStatus.in_progress
    line = updated.line("line-1")
    assert line.picked and line.picked_at is not None
    assert line.lot_number == "LOT-A"


def test_unpicked_quantity_update_does_not_start_order(machine, order) -> None:
    updated = run(machine.update_line("line-1", 2, False))

    assert updated.status is PickingStatus.open
    assert updated.line("line-1").picked_at is None


def test_negative_quantity_is_clamped(machine, order) -> None:
    updated = run(machine.update_line("line-1", -3, False))
    assert updated.line("line-1").picked_quantity == 0


def test_over_pick_rejected_by_default(machine, order, store) -> None:
    before = copy.deepcopy(store.orders[order.id])

    with pytest.raises(OverPick):
        run(machine.update_line("line-1", 5, True))

    assert store.orders[order.id] == before


def test_over_pick_flag_policy_accepts(store, clock, order) -> None:
    machine = PickingOrderStateMachine(store, over_pick_policy="flag", now=clock)

    updated = run(machine.update_line("line-1", 6, True))

    assert updated.line("line-1").picked_quantity == Decimal("6")
    assert store.audit[-1].payload["over_picked"] is True


def test_unknown_policy_is_a_configuration_error(store) -> None:
    with pytest.raises(ValueError):
        PickingOrderStateMachine(store, over_pick_policy="ignore")


def test_complete_requires_every_line_fully_picked(machine, order, store) -> None:
    run(machine.update_line("line-1", 4, True))
    run(machine.update_line("line-2", 1, True))
    before = copy.deepcopy(store.orders[order.id])

    with pytest.raises(IncompleteLines) as excinfo:
        run(machine.complete(order.id))

    assert excinfo.value.line_ids == ["line-2"]
    assert store.orders[order.id] == before


def test_complete_rejects_unflagged_full_quantity(machine, order) -> None:
    run(machine.update_line("line-1", 4, True))
    run(machine.update_line("line-2", 2, False))

    with pytest.raises(IncompleteLines):
        run(machine.complete(order.id))


def test_complete_success_and_idempotent(machine, order, clock) -> None:
    _pick_all(machine, order)

    completed = run(machine.complete(order.id))
    assert completed.status is PickingStatus.completed
    assert completed.completed_at == clock.current

    clock.advance(minutes=5)
    again = run(machine.complete(order.id))
    assert again.completed_at == completed.completed_at
    assert again.version == completed.version


def test_completion_hooks_receive_consumption(store, clock, order) -> None:
    received = []

    async def hook(completed, requests):
        received.append((completed.id, requests))

    machine = PickingOrderStateMachine(store, now=clock, completion_hooks=[hook])
    run(machine.update_line("line-1", 4, True, lot_number="LOT-A"))
    run(machine.update_line("line-2", 2, True))

    run(machine.complete(order.id))

    assert len(received) == 1
    order_id, requests = received[0]
    assert order_id == order.id
    assert [(r.item_id, r.lot_number, r.quantity) for r in requests] == [
        ("item-1", "LOT-A", Decimal("4")),
        ("item-2", None, Decimal("2")),
    ]


def test_failed_hook_leaves_consumption_pending_and_retries(store, clock, order) -> None:
    calls = []

    async def flaky_hook(completed, requests):
        calls.append(completed.id)
        if len(calls) == 1:
            raise RuntimeError("stock service unavailable")

    machine = PickingOrderStateMachine(store, now=clock, completion_hooks=[flaky_hook])
    _pick_all(machine, order)

    with pytest.raises(RuntimeError):
        run(machine.complete(order.id))

    stored = run(store.get_order(order.id))
    assert stored.status is PickingStatus.completed
    assert stored.consumption_pending is True

    retried = run(machine.complete(order.id))
    assert retried.consumption_pending is False
    assert retried.completed_at == stored.completed_at

    run(machine.complete(order.id))
    assert calls == [order.id, order.id]
    assert [e.action for e in store.audit][-2:] == ["completed", "consumption_dispatched"]


def test_non_finite_picked_quantity_is_rejected(machine, order, store) -> None:
    before = copy.deepcopy(store.orders[order.id])

    for bad in (float("nan"), float("inf"), "abc"):
        with pytest.raises(ValidationError) as excinfo:
            run(machine.update_line("line-1", bad, True))
        assert excinfo.value.code == "invalid_quantity"

    assert store.orders[order.id] == before


def test_terminal_orders_reject_changes(machine, order) -> None:
    _pick_all(machine, order)
    run(machine.complete(order.id))

    with pytest.raises(InvalidTransition):
        run(machine.update_line("line-1", 1, True))
    with pytest.raises(InvalidTransition):
        run(machine.assign_picker(order.id, "emp-9"))
    with pytest.raises(InvalidTransition):
        run(machine.cancel(order.id))


def test_cancel_then_complete_is_invalid(machine, order) -> None:
    cancelled = run(machine.cancel(order.id))
    assert cancelled.status is PickingStatus.cancelled

    with pytest.raises(InvalidTransition):
        run(machine.complete(order.id))


def test_stale_expected_version_is_rejected(machine, order) -> None:
    run(machine.update_line("line-1", 1, False, expected_version=1))

    with pytest.raises(OptimisticLockFailure):
        run(machine.update_line("line-2", 2, True, expected_version=1))
    with pytest.raises(OptimisticLockFailure):
        run(machine.complete(order.id, expected_version=1))


def test_concurrent_session_loses_compare_and_swap(machine, order, store) -> None:
    # two sessions load the same version; the second write must fail
    stale = run(store.get_order(order.id))
    run(machine.update_line("line-1", 4, True))

    stale.notes = "late write"
    with pytest.raises(OptimisticLockFailure):
        run(store.save_order(stale, stale.version))


def test_unknown_ids(machine) -> None:
    with pytest.raises(NotFound):
        run(machine.get_order("missing"))
    with pytest.raises(NotFound):
        run(machine.update_line("missing", 1, True))


def test_empty_order_completes(machine) -> None:
    order = run(machine.create_order("PO-EMPTY", []))
    assert run(machine.complete(order.id)).status is PickingStatus.completed


def test_route_orders_lines_by_zone(machine, order) -> None:
    _, lines = run(machine.route(order.id))
    assert [line.id for line in lines] == ["line-2", "line-1"]

    machine.route_optimizer = AsEnteredRouteOptimizer()
    _, lines = run(machine.route(order.id))
    assert [line.id for line in lines] == ["line-1", "line-2"]


def test_reopen_idle_orders(machine, order, store, clock) -> None:
    busy = run(machine.create_order("PO-2", [{"item_id": "item-1", "required_quantity": 1}]))
    run(machine.assign_picker(order.id, "emp-002"))
    run(machine.update_line("line-1", 4, True))
    clock.advance(hours=5)
    run(machine.assign_picker(busy.id, "emp-003"))

    reopened = run(machine.reopen_idle_orders(dt.timedelta(hours=4)))

    assert [o.id for o in reopened] == [order.id]
    stored = run(store.get_order(order.id))
    assert stored.status is PickingStatus.open
    assert stored.picker_id is None
    assert stored.line("line-1").picked is True
    assert run(store.get_order(busy.id)).status is PickingStatus.in_progress


def test_list_orders_by_status(machine, order) -> None:
    other = run(machine.create_order("PO-2", []))
    run(machine.cancel(other.id))

    assert [o.id for o in run(machine.list_orders(PickingStatus.open))] == [order.id]
    assert len(run(machine.list_orders())) == 2


@pytest.fixture()
def reservations(store, clock) -> ReservationService:
    engine = AllocationEngine(store, clock=lambda: TODAY)
    return ReservationService(engine, store, now=clock, orders=store)


@pytest.fixture()
def allocating_machine(store, clock, reservations) -> PickingOrderStateMachine:
    return PickingOrderStateMachine(store, now=clock, reservations=reservations)


def _reserved(store: MemoryStore) -> dict:
    return {lot_id: lot.reserved_quantity for lot_id, lot in store.lots.items()}


def test_create_from_allocation_reserves_lots(allocating_machine, store) -> None:
    created = run(allocating_machine.create_order_from_allocation("PO-PLAN", [("item-1", "loc-1", 12)]))

    assert [(line.lot_number, line.required_quantity) for line in created.lines] == [
        ("LOT-A", Decimal("10")),
        ("LOT-B", Decimal("2")),
    ]
    assert _reserved(store) == {"A": Decimal("10"), "B": Decimal("2")}
    held = run(store.list_order_reservations(created.id))
    assert [r.quantity for r in held] == [Decimal("12")]


def test_second_order_over_same_stock_is_rejected(allocating_machine, store) -> None:
    run(allocating_machine.create_order_from_allocation("PO-1", [("item-1", "loc-1", 12)]))

    with pytest.raises(InsufficientStock):
        run(allocating_machine.create_order_from_allocation("PO-2", [("item-1", "loc-1", 12)]))

    assert len(store.orders) == 1
    assert _reserved(store) == {"A": Decimal("10"), "B": Decimal("2")}


def test_failed_allocation_releases_earlier_holds(allocating_machine, store) -> None:
    with pytest.raises(InsufficientStock):
        run(
            allocating_machine.create_order_from_allocation(
                "PO-1", [("item-1", "loc-1", 4), ("item-1", "loc-9", 1)]
            )
        )

    assert store.orders == {}
    assert _reserved(store) == {"A": Decimal("0"), "B": Decimal("0")}
    assert [r.status for r in store.reservations.values()] == [ReservationStatus.released]


def test_allocation_needs_reservation_service(machine) -> None:
    with pytest.raises(ValueError):
        run(machine.create_order_from_allocation("PO-1", [("item-1", "loc-1", 1)]))


def test_completing_allocated_order_consumes_reserved_stock(allocating_machine, store) -> None:
    created = run(allocating_machine.create_order_from_allocation("PO-1", [("item-1", "loc-1", 12)]))
    _pick_all(allocating_machine, created)

    completed = run(allocating_machine.complete(created.id))

    assert completed.consumption_pending is False
    assert store.lots["A"].quantity == 0
    assert store.lots["B"].quantity == Decimal("3")
    assert _reserved(store) == {"A": Decimal("0"), "B": Decimal("0")}


def test_cancelling_allocated_order_releases_stock(allocating_machine, store) -> None:
    created = run(allocating_machine.create_order_from_allocation("PO-1", [("item-1", "loc-1", 12)]))

    run(allocating_machine.cancel(created.id))

    assert _reserved(store) == {"A": Decimal("0"), "B": Decimal("0")}
    assert store.lots["A"].quantity == Decimal("10")


def test_stale_sweep_keeps_holds_of_live_orders(allocating_machine, reservations, store, clock) -> None:
    live = run(allocating_machine.create_order_from_allocation("PO-1", [("item-1", "loc-1", 4)]))
    loose = run(reservations.reserve("item-1", "loc-1", 1))
    clock.advance(hours=2)

    released = run(reservations.release_stale(dt.timedelta(minutes=30)))

    assert [r.token for r in released] == [loose.token]
    assert run(store.list_order_reservations(live.id))


def test_transitions_are_audited(machine, order, store) -> None:
    run(machine.assign_picker(order.id, "emp-002", user_id="user-1"))

    actions = [event.action for event in store.audit]
    assert actions == ["created", "picker_assigned"]
    assert store.audit[-1].user_id == "user-1"
    assert store.audit[-1].payload["status"] == "in_progress"


def test_consumption_skips_unpicked_lines(order) -> None:
    order.lines[0].picked_quantity = Decimal("4")
    assert [r.item_id for r in consumption_requests(order)] == ["item-1"]
