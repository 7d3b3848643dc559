from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from . import settings
from .domain import ItemRef, LocationRef, StockLot, Urgency
from .expiry import ExpiryClassifier
from .repositories.base import LotRepository


@dataclass(frozen=True)
class ExpiryAlert:
    lot: StockLot
    item: Optional[ItemRef]
    location: Optional[LocationRef]
    days_until_expiry: int
    urgency: Urgency

    @property
    def is_expired(self) -> bool:
        return self.days_until_expiry < 0


@dataclass
class ExpirySummary:
    lookahead_days: int
    counts: dict[Urgency, int] = field(default_factory=lambda: {u: 0 for u in Urgency})
    quantity_at_risk: Decimal = Decimal("0")
    expired_quantity: Decimal = Decimal("0")

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class AlertsService:
    """
    Cross-location expiring-stock feed for dashboards and notifications.
    """

    def __init__(
        self,
        lots: LotRepository,
        classifier: Optional[ExpiryClassifier] = None,
        clock: Callable[[], dt.date] = dt.date.today,
        lookahead_days: Optional[int] = None,
    ):
        self.lots = lots
        self.classifier = classifier or ExpiryClassifier()
        self.clock = clock
        self.lookahead_days = settings.ALERT_LOOKAHEAD_DAYS if lookahead_days is None else lookahead_days

    async def expiring_across_locations(self, days: Optional[int] = None) -> list[ExpiryAlert]:
        if days is None:
            days = self.lookahead_days
        today = self.clock()
        cutoff = today + dt.timedelta(days=days)

        lots = await self.lots.get_lots_expiring_before(cutoff)
        lots.sort(key=lambda lot: lot.expiry_date)

        items: dict[str, Optional[ItemRef]] = {}
        locations: dict[str, Optional[LocationRef]] = {}
        alerts = []
        for lot in lots:
            if lot.item_id not in items:
                items[lot.item_id] = await self.lots.get_item(lot.item_id)
            if lot.location_id not in locations:
                locations[lot.location_id] = await self.lots.get_location(lot.location_id)

            days_left = self.classifier.days_until(lot.expiry_date, today)
            alerts.append(
                ExpiryAlert(
                    lot=lot,
                    item=items[lot.item_id],
                    location=locations[lot.location_id],
                    days_until_expiry=days_left,
                    urgency=self.classifier.urgency(days_left),
                )
            )
        return alerts

    async def summary(self, days: Optional[int] = None) -> ExpirySummary:
        alerts = await self.expiring_across_locations(days)
        result = ExpirySummary(lookahead_days=days if days is not None else self.lookahead_days)
        for alert in alerts:
            result.counts[alert.urgency] += 1
            if alert.is_expired:
                result.expired_quantity += alert.lot.quantity
            else:
                result.quantity_at_risk += alert.lot.quantity
        return result
