from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Optional

from .domain import ExpiryStatus, Urgency

DEFAULT_WARNING_DAYS = 30

CRITICAL_DAYS = 7
WARNING_DAYS = 14


def _as_date(value: dt.date) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class ExpiryClassification:
    status: ExpiryStatus
    days_until_expiry: Optional[int]


class ExpiryClassifier:
    """
    Maps a lot's expiry date to a status (picker view) or an urgency (alerts).
    """

    def __init__(self, warning_days: int = DEFAULT_WARNING_DAYS):
        self.warning_days = warning_days

    def days_until(self, expiry_date: Optional[dt.date], today: dt.date) -> Optional[int]:
        if expiry_date is None:
            return None
        delta = _as_date(expiry_date) - _as_date(today)
        return math.ceil(delta.total_seconds() / 86400)

    def classify(
        self,
        expiry_date: Optional[dt.date],
        today: dt.date,
        warning_days: Optional[int] = None,
    ) -> ExpiryClassification:
        if warning_days is None:
            warning_days = self.warning_days

        days = self.days_until(expiry_date, today)
        if days is None:
            return ExpiryClassification(ExpiryStatus.ok, None)
        if days < 0:
            return ExpiryClassification(ExpiryStatus.expired, days)
        if days <= warning_days:
            return ExpiryClassification(ExpiryStatus.expiring, days)
        return ExpiryClassification(ExpiryStatus.ok, days)

    @staticmethod
    def urgency(days_until_expiry: int) -> Urgency:
        if days_until_expiry < 0:
            return Urgency.expired
        if days_until_expiry <= CRITICAL_DAYS:
            return Urgency.critical
        if days_until_expiry <= WARNING_DAYS:
            return Urgency.warning
        return Urgency.info
