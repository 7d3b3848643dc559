"""Walking-order strategies for picking lines.

The bin/zone sort approximates a short walk; it is not a shortest-path
solver.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Protocol, Sequence, TypeVar

from .domain import PickingOrderLine

LineT = TypeVar("LineT", bound=PickingOrderLine)

_SEGMENT_SPLIT = re.compile(r"[-/.\s]+")


class RouteOptimizer(Protocol):

    def sort_by_route(self, lines: Sequence[LineT]) -> list[LineT]:
        ...


def _bin_key(bin_location: str | None) -> tuple:
    if not bin_location:
        return (1, ())
    segments = []
    for segment in _SEGMENT_SPLIT.split(bin_location.strip()):
        if not segment:
            continue
        if segment.isdigit():
            segments.append((0, int(segment), ""))
        else:
            segments.append((1, 0, segment.casefold()))
    return (0, tuple(segments))


class BinZoneRouteOptimizer:
    """Zone, then aisle/rack/position from the bin code, then expiry."""

    def route_key(self, line: PickingOrderLine) -> tuple:
        zone = (line.zone or "").strip()
        return (
            not zone,
            zone.casefold(),
            _bin_key(line.bin_location),
            line.expiry_date is None,
            line.expiry_date or dt.date.max,
        )

    def sort_by_route(self, lines: Sequence[LineT]) -> list[LineT]:
        return sorted(lines, key=self.route_key)


class AsEnteredRouteOptimizer:

    def sort_by_route(self, lines: Sequence[LineT]) -> list[LineT]:
        return list(lines)


ROUTE_OPTIMIZERS: dict[str, type] = {
    "bin_zone": BinZoneRouteOptimizer,
    "as_entered": AsEnteredRouteOptimizer,
}


def get_route_optimizer(name: str) -> RouteOptimizer:
    try:
        return ROUTE_OPTIMIZERS[name]()
    except KeyError as exc:
        raise ValueError(f"Unknown route strategy: {name}") from exc


def route_summary(lines: Sequence[PickingOrderLine]) -> str:
    return " → ".join(line.bin_location or "?" for line in lines)
