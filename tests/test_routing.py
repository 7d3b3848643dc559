import datetime as dt

import pytest

from lotpick.domain import PickingOrderLine
from lotpick.routing import (
    AsEnteredRouteOptimizer,
    BinZoneRouteOptimizer,
    get_route_optimizer,
    route_summary,
)


def _line(line_id, bin_location=None, zone=None, expiry=None):
    return PickingOrderLine(
        id=line_id,
        order_id="order-1",
        item_id="item-1",
        required_quantity=1,
        bin_location=bin_location,
        zone=zone,
        expiry_date=expiry,
    )


def _ids(lines):
    return [line.id for line in lines]


def test_sorts_by_zone_then_bin_segments() -> None:
    lines = [
        _line("cold-2", "C-01-02", "Cold"),
        _line("ambient-10", "A-10-01", "Ambient"),
        _line("ambient-2", "A-2-05", "Ambient"),
        _line("cold-1", "C-01-01", "cold"),
        _line("bulk", "B-02-01", "Bulk"),
    ]

    ordered = BinZoneRouteOptimizer().sort_by_route(lines)

    assert _ids(ordered) == ["ambient-2", "ambient-10", "bulk", "cold-1", "cold-2"]


def test_missing_zone_and_bin_go_last() -> None:
    lines = [
        _line("nowhere"),
        _line("no-zone", "A-01-01"),
        _line("zoned", "B-01-01", "Bulk"),
        _line("zone-no-bin", None, "Bulk"),
    ]

    ordered = BinZoneRouteOptimizer().sort_by_route(lines)

    assert _ids(ordered) == ["zoned", "zone-no-bin", "no-zone", "nowhere"]


def test_same_bin_prefers_earlier_expiry_and_keeps_input_order_on_ties() -> None:
    early = dt.date(2024, 5, 1)
    lines = [
        _line("late", "A-01-01", "Ambient", dt.date(2024, 9, 1)),
        _line("tie-1", "A-01-01", "Ambient"),
        _line("early", "A-01-01", "Ambient", early),
        _line("tie-2", "A-01-01", "Ambient"),
    ]

    ordered = BinZoneRouteOptimizer().sort_by_route(lines)

    assert _ids(ordered) == ["early", "late", "tie-1", "tie-2"]


def test_sort_does_not_mutate_input() -> None:
    lines = [_line("b", "B-01-01"), _line("a", "A-01-01")]
    snapshot = list(lines)

    ordered = BinZoneRouteOptimizer().sort_by_route(lines)

    assert lines == snapshot
    assert ordered is not lines


def test_as_entered_strategy_keeps_order() -> None:
    lines = [_line("b", "B-01-01"), _line("a", "A-01-01")]
    assert _ids(AsEnteredRouteOptimizer().sort_by_route(lines)) == ["b", "a"]


def test_strategy_lookup() -> None:
    assert isinstance(get_route_optimizer("bin_zone"), BinZoneRouteOptimizer)
    with pytest.raises(ValueError):
        get_route_optimizer("tsp")


def test_route_summary() -> None:
    lines = [_line("a", "A-01-01"), _line("b"), _line("c", "C-01-02")]
    assert route_summary(lines) == "A-01-01 → ? → C-01-02"
