"""FEFO lot allocation.

Lots are ranked earliest expiry first (lots without expiry last); equal
expiry falls back to FIFO on production date (lots without one first).
Expired lots and lots with nothing available are never suggested.
"""

from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from .domain import (
    AllocationPlan,
    ExpiryStatus,
    LotCandidate,
    PickSuggestion,
    StockLot,
    new_id,
    to_quantity,
)
from .exceptions import ValidationError
from .expiry import ExpiryClassifier
from .repositories.base import LotRepository

logger = logging.getLogger("lotpick.allocation")

ZERO = Decimal("0")


def fefo_sort_key(lot: StockLot) -> tuple:
    return (
        lot.expiry_date is None,
        lot.expiry_date or dt.date.min,
        lot.production_date is not None,
        lot.production_date or dt.date.min,
        lot.lot_number,
        lot.id,
    )


def rank_lots(lots: Iterable[StockLot]) -> list[StockLot]:
    return sorted(lots, key=fefo_sort_key)


class AllocationEngine:
    """
    Builds an advisory allocation plan for one item at one location.
    Never writes; reserving the plan is ReservationService's job.
    """

    def __init__(
        self,
        lots: LotRepository,
        classifier: Optional[ExpiryClassifier] = None,
        clock: Callable[[], dt.date] = dt.date.today,
    ):
        self.lots = lots
        self.classifier = classifier or ExpiryClassifier()
        self.clock = clock

    def enrich(self, lots: Iterable[StockLot], today: dt.date) -> list[LotCandidate]:
        enriched = []
        for lot in rank_lots(lots):
            classification = self.classifier.classify(lot.expiry_date, today)
            enriched.append(
                LotCandidate(
                    lot=lot,
                    available_quantity=lot.available_quantity,
                    expiry_status=classification.status,
                    days_until_expiry=classification.days_until_expiry,
                )
            )
        return enriched

    def plan(
        self,
        lots: Iterable[StockLot],
        required_quantity: Any,
        today: dt.date,
        item_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> AllocationPlan:
        required = to_quantity(required_quantity)
        if required < 0:
            raise ValidationError(
                "Required quantity cannot be negative", code="allocation.invalid_quantity"
            )

        enriched = self.enrich(lots, today)
        candidates = [
            c for c in enriched
            if c.expiry_status is not ExpiryStatus.expired and c.available_quantity > 0
        ]

        remaining = required
        suggestion = []
        for candidate in candidates:
            if remaining <= 0:
                break
            pick_qty = min(candidate.available_quantity, remaining)
            suggestion.append(PickSuggestion(lot=candidate, pick_quantity=pick_qty))
            remaining -= pick_qty

        return AllocationPlan(
            item_id=item_id,
            location_id=location_id,
            required_quantity=required,
            lots=enriched,
            suggestion=suggestion,
            total_available=sum((c.available_quantity for c in candidates), ZERO),
            can_fulfill=remaining <= 0,
        )

    async def allocate(
        self,
        item_id: Optional[str],
        location_id: Optional[str],
        required_quantity: Any = 0,
    ) -> AllocationPlan:
        today = self.clock()
        if not item_id or not location_id:
            return self.plan([], required_quantity, today, item_id, location_id)

        lots = await self.lots.get_lots(item_id, location_id)
        plan = self.plan(lots, required_quantity, today, item_id, location_id)
        logger.debug(
            "Allocated %s of %s for item %s at %s from %d lot(s)",
            plan.allocated_quantity,
            plan.required_quantity,
            item_id,
            location_id,
            len(plan.suggestion),
        )
        return plan


def lines_from_plan(plan: AllocationPlan, order_id: str = "") -> list[dict[str, Any]]:
    """Picking line drafts, one per suggested lot, in FEFO order."""

    drafts = []
    for suggestion in plan.suggestion:
        lot = suggestion.lot.lot
        drafts.append(
            {
                "id": new_id(),
                "order_id": order_id,
                "item_id": lot.item_id,
                "required_quantity": suggestion.pick_quantity,
                "lot_number": lot.lot_number,
                "expiry_date": lot.expiry_date,
                "bin_location": lot.bin_location,
                "zone": lot.bin_zone,
            }
        )
    return drafts
