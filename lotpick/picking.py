"""Picking order lifecycle.

    open ──assign_picker / first_line_picked──▶ in_progress
    in_progress ──reopen──▶ open
    open | in_progress ──complete──▶ completed   (terminal)
    open | in_progress ──cancel──▶ cancelled     (terminal)

Every write is a compare-and-swap on the order version; line updates bump the
order version too, so two sessions working the same order cannot interleave.

Completion is saved together with a ``consumption_pending`` flag. The order's
reservations are committed and the completion hooks run afterwards; the flag
is cleared only once all of them succeeded, and calling ``complete`` again on a
pending order dispatches again. Hooks must therefore tolerate repeats.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, Tuple

from . import settings
from .allocation import lines_from_plan
from .domain import (
    AuditEvent,
    PickingOrder,
    PickingOrderLine,
    PickingStatus,
    new_id,
    to_quantity,
    utcnow,
)
from .exceptions import (
    IncompleteLines,
    InvalidTransition,
    OptimisticLockFailure,
    OverPick,
    ValidationError,
)
from .repositories.base import OrderRepository
from .reservations import ReservationService
from .routing import RouteOptimizer, get_route_optimizer

logger = logging.getLogger("lotpick.picking")

OVER_PICK_POLICIES = ("reject", "flag")

TRANSITIONS: dict[str, tuple[frozenset[PickingStatus], PickingStatus]] = {
    "assign_picker": (frozenset({PickingStatus.open}), PickingStatus.in_progress),
    "first_line_picked": (frozenset({PickingStatus.open}), PickingStatus.in_progress),
    "reopen": (frozenset({PickingStatus.in_progress}), PickingStatus.open),
    "complete": (
        frozenset({PickingStatus.open, PickingStatus.in_progress}),
        PickingStatus.completed,
    ),
    "cancel": (
        frozenset({PickingStatus.open, PickingStatus.in_progress}),
        PickingStatus.cancelled,
    ),
}


def can_transition(order: PickingOrder, name: str) -> bool:
    sources, _ = TRANSITIONS[name]
    return order.status in sources


def apply_transition(order: PickingOrder, name: str, now: dt.datetime) -> PickingStatus:
    if not can_transition(order, name):
        raise InvalidTransition(name, order.status.value)
    _, target = TRANSITIONS[name]
    previous = order.status
    order.status = target
    if target is PickingStatus.in_progress:
        order.started_at = order.started_at or now
    elif target is PickingStatus.open:
        order.started_at = None
    elif target is PickingStatus.completed:
        order.completed_at = now
    return previous


@dataclass(frozen=True)
class ConsumptionRequest:
    """Stock to decrement once an order completes."""

    item_id: str
    lot_number: Optional[str]
    quantity: Decimal
    bin_location: Optional[str]


def consumption_requests(order: PickingOrder) -> list[ConsumptionRequest]:
    return [
        ConsumptionRequest(
            item_id=line.item_id,
            lot_number=line.lot_number,
            quantity=line.picked_quantity,
            bin_location=line.bin_location,
        )
        for line in order.lines
        if line.picked_quantity > 0
    ]


CompletionHook = Callable[[PickingOrder, list[ConsumptionRequest]], Awaitable[None]]

# (item_id, location_id, quantity)
AllocationRequest = Tuple[str, str, Any]


class PickingOrderStateMachine:

    def __init__(
        self,
        orders: OrderRepository,
        route_optimizer: Optional[RouteOptimizer] = None,
        over_pick_policy: Optional[str] = None,
        now: Callable[[], dt.datetime] = utcnow,
        completion_hooks: Iterable[CompletionHook] = (),
        idle_for: Optional[dt.timedelta] = None,
        reservations: Optional[ReservationService] = None,
    ):
        policy = over_pick_policy or settings.OVER_PICK_POLICY
        if policy not in OVER_PICK_POLICIES:
            raise ValueError(f"Unknown over-pick policy: {policy}")
        self.orders = orders
        self.route_optimizer = route_optimizer or get_route_optimizer(settings.ROUTE_STRATEGY)
        self.over_pick_policy = policy
        self.now = now
        self.completion_hooks = list(completion_hooks)
        self.idle_for = dt.timedelta(minutes=settings.ORDER_IDLE_MINUTES) if idle_for is None else idle_for
        self.reservations = reservations

    # -- reads -------------------------------------------------------------

    async def get_order(self, order_id: str) -> PickingOrder:
        return await self.orders.get_order(order_id)

    async def list_orders(self, status: Optional[PickingStatus] = None) -> list[PickingOrder]:
        return await self.orders.list_orders(status)

    async def route(self, order_id: str) -> tuple[PickingOrder, list[PickingOrderLine]]:
        order = await self.orders.get_order(order_id)
        return order, self.route_optimizer.sort_by_route(order.lines)

    # -- writes ------------------------------------------------------------

    async def _save(
        self,
        order: PickingOrder,
        loaded_version: int,
        action: str,
        payload: Mapping[str, Any],
        user_id: Optional[str],
    ) -> PickingOrder:
        order.updated_at = self.now()
        audit = AuditEvent(
            entity="picking_order",
            entity_id=order.id,
            action=action,
            payload={"picking_number": order.picking_number, "status": order.status.value, **payload},
            user_id=user_id,
            ts=order.updated_at,
        )
        return await self.orders.save_order(order, loaded_version, audit)

    @staticmethod
    def _check_version(order: PickingOrder, expected_version: Optional[int]) -> int:
        if expected_version is not None and expected_version != order.version:
            raise OptimisticLockFailure(
                f"Picking order {order.picking_number} is at version {order.version}, not {expected_version}",
                code="picking.version_conflict",
            )
        return order.version

    async def create_order(
        self,
        picking_number: str,
        lines: Sequence[Mapping[str, Any]],
        source_document_id: Optional[str] = None,
        source_document_type: str = "goods_issue",
        location_id: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> PickingOrder:
        if not picking_number:
            raise ValidationError("Picking number is required", code="picking.invalid_number")

        now = self.now()
        order = PickingOrder(
            id=order_id or new_id(),
            picking_number=picking_number,
            source_document_id=source_document_id,
            source_document_type=source_document_type,
            location_id=location_id,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        for draft in lines:
            required = to_quantity(draft["required_quantity"])
            if required <= 0:
                raise ValidationError(
                    "Required quantity must be greater than zero", code="picking.invalid_quantity"
                )
            order.lines.append(
                PickingOrderLine(
                    id=draft.get("id") or new_id(),
                    order_id=order.id,
                    item_id=draft["item_id"],
                    required_quantity=required,
                    bin_location=draft.get("bin_location"),
                    zone=draft.get("zone"),
                    lot_number=draft.get("lot_number"),
                    expiry_date=draft.get("expiry_date"),
                    notes=draft.get("notes"),
                )
            )

        audit = AuditEvent(
            entity="picking_order",
            entity_id=order.id,
            action="created",
            payload={
                "picking_number": picking_number,
                "source_document_id": source_document_id,
                "lines": len(order.lines),
            },
            user_id=user_id,
            ts=now,
        )
        order = await self.orders.add_order(order, audit)
        logger.info("Created picking order %s with %d line(s)", picking_number, len(order.lines))
        return order

    async def create_order_from_allocation(
        self, picking_number: str, requests: Sequence[AllocationRequest], **kwargs: Any
    ) -> PickingOrder:
        """
        Reserve FEFO lots for every ``(item_id, location_id, quantity)``
        request and open an order with one line per reserved lot. The
        reservations carry the order id; if any request cannot be reserved or
        the order cannot be stored, the holds taken so far are released.
        """

        if self.reservations is None:
            raise ValueError("Creating orders from allocation needs a reservation service")

        order_id = new_id()
        user_id = kwargs.get("user_id")
        held = []
        try:
            drafts: list[dict[str, Any]] = []
            for item_id, location_id, quantity in requests:
                plan, reservation = await self.reservations.reserve_plan(
                    item_id, location_id, quantity, order_id=order_id, user_id=user_id
                )
                held.append(reservation)
                drafts.extend(lines_from_plan(plan, order_id))
            return await self.create_order(picking_number, drafts, order_id=order_id, **kwargs)
        except Exception:
            for reservation in held:
                try:
                    await self.reservations.release(reservation.token, user_id)
                except Exception:
                    logger.exception("Could not release reservation %s", reservation.token)
            raise
    async def assign_picker(
        self,
        order_id: str,
        picker_id: Optional[str],
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> PickingOrder:
        order = await self.orders.get_order(order_id)
        loaded_version = self._check_version(order, expected_version)
        if order.status.terminal:
            raise InvalidTransition("assign_picker", order.status.value)

        order.picker_id = picker_id
        if picker_id is not None and can_transition(order, "assign_picker"):
            apply_transition(order, "assign_picker", self.now())

        order = await self._save(order, loaded_version, "picker_assigned", {"picker_id": picker_id}, user_id)
        logger.info("Picking order %s assigned to %s", order.picking_number, picker_id)
        return order

    async def update_line(
        self,
        line_id: str,
        picked_quantity: Any,
        picked: bool,
        lot_number: Optional[str] = None,
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> PickingOrder:
        order = await self.orders.get_order_for_line(line_id)
        loaded_version = self._check_version(order, expected_version)
        if order.status.terminal:
            raise InvalidTransition("update_line", order.status.value)

        line = order.line(line_id)
        quantity = max(to_quantity(picked_quantity), Decimal("0"))
        over_picked = quantity > line.required_quantity
        if over_picked and self.over_pick_policy == "reject":
            raise OverPick(
                f"Picked quantity {quantity} exceeds required {line.required_quantity}"
            )
        if over_picked:
            logger.warning(
                "Line %s of %s over-picked: %s of %s",
                line_id,
                order.picking_number,
                quantity,
                line.required_quantity,
            )

        now = self.now()
        line.picked_quantity = quantity
        line.picked = picked
        line.picked_at = now if picked else None
        if lot_number:
            line.lot_number = lot_number
        if picked and can_transition(order, "first_line_picked"):
            apply_transition(order, "first_line_picked", now)

        return await self._save(
            order,
            loaded_version,
            "line_updated",
            {
                "line_id": line_id,
                "picked_quantity": str(quantity),
                "picked": picked,
                "lot_number": line.lot_number,
                "over_picked": over_picked,
            },
            user_id,
        )

    async def complete(
        self,
        order_id: str,
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> PickingOrder:
        order = await self.orders.get_order(order_id)
        if order.status is PickingStatus.completed:
            if order.consumption_pending:
                logger.info("Retrying consumption for completed order %s", order.picking_number)
                return await self._dispatch_consumption(order, user_id)
            return order

        loaded_version = self._check_version(order, expected_version)
        if not can_transition(order, "complete"):
            raise InvalidTransition("complete", order.status.value)

        incomplete = [line.id for line in order.lines if not line.fulfilled]
        if incomplete:
            logger.info(
                "Rejected completion of %s: %d line(s) incomplete", order.picking_number, len(incomplete)
            )
            raise IncompleteLines(incomplete)

        apply_transition(order, "complete", self.now())
        order.consumption_pending = True
        order = await self._save(order, loaded_version, "completed", {}, user_id)
        logger.info("Picking order %s completed", order.picking_number)
        return await self._dispatch_consumption(order, user_id)

    async def _dispatch_consumption(self, order: PickingOrder, user_id: Optional[str]) -> PickingOrder:
        if self.reservations is not None:
            await self.reservations.commit_order(order.id, user_id)

        requests = consumption_requests(order)
        for hook in self.completion_hooks:
            try:
                await hook(order, requests)
            except Exception:
                logger.exception(
                    "Completion hook failed for %s; consumption stays pending", order.picking_number
                )
                raise

        loaded_version = order.version
        order.consumption_pending = False
        return await self._save(
            order, loaded_version, "consumption_dispatched", {"requests": len(requests)}, user_id
        )

    async def cancel(
        self,
        order_id: str,
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> PickingOrder:
        order = await self.orders.get_order(order_id)
        loaded_version = self._check_version(order, expected_version)
        apply_transition(order, "cancel", self.now())
        order = await self._save(order, loaded_version, "cancelled", {}, user_id)
        if self.reservations is not None:
            await self.reservations.release_order(order.id, user_id)
        logger.info("Picking order %s cancelled", order.picking_number)
        return order

    async def reopen_idle_orders(self, idle_for: Optional[dt.timedelta] = None) -> list[PickingOrder]:
        cutoff = self.now() - (self.idle_for if idle_for is None else idle_for)
        reopened = []
        for order in await self.orders.list_idle_orders(PickingStatus.in_progress, cutoff):
            loaded_version = order.version
            previous_picker = order.picker_id
            order.picker_id = None
            apply_transition(order, "reopen", self.now())
            try:
                order = await self._save(
                    order, loaded_version, "reopened", {"previous_picker_id": previous_picker}, None
                )
            except OptimisticLockFailure:
                logger.info("Skipped reopening %s: modified concurrently", order.picking_number)
                continue
            reopened.append(order)
        if reopened:
            logger.warning("Reopened %d idle picking order(s) untouched since %s", len(reopened), cutoff)
        return reopened
