"""Domain errors raised by the allocation, reservation and picking services.

Every error carries a stable ``code`` that the HTTP layer forwards verbatim.
"""

from __future__ import annotations

from typing import Sequence


class LotpickError(Exception):
    code = "lotpick.error"

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code


class NotFound(LotpickError):
    code = "not_found"


class ValidationError(LotpickError):
    code = "validation_error"


class IncompleteLines(ValidationError):
    code = "picking.incomplete_lines"

    def __init__(self, line_ids: Sequence[str]) -> None:
        self.line_ids = list(line_ids)
        super().__init__(f"{len(self.line_ids)} line(s) must be fully picked before completion")


class InvalidTransition(ValidationError):
    code = "picking.invalid_transition"

    def __init__(self, transition: str, status: str) -> None:
        self.transition = transition
        self.status = status
        super().__init__(f"Cannot {transition} a picking order in status '{status}'")


class OverPick(ValidationError):
    code = "picking.over_pick"


class InsufficientStock(ValidationError):
    code = "reservation.insufficient_stock"


class ReservationClosed(ValidationError):
    code = "reservation.closed"


class OptimisticLockFailure(LotpickError):
    """A write lost a compare-and-swap race; refetch and retry."""

    code = "version_conflict"
