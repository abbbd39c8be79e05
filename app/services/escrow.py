"""Escrow engine: the per-order state machine.

    PENDING  --seller ships-->      SHIPPED    (escrow held, tracking attached)
    SHIPPED  --buyer confirms-->    COMPLETED  (escrow released)
    PENDING  --purchase rollback--> CANCELLED

Every transition is a conditional update on (status, version). A matched
update is final and its new state is returned without reading it back. When
it matches nothing the row is re-read: a moved status is an illegal
transition, an unchanged status with a newer version is a concurrent write
(Conflict).
"""

import enum
import logging

from app.errors import (
    AlreadySettled,
    Conflict,
    Forbidden,
    InvalidTransition,
    MissingTracking,
    NotFound,
)
from app.store import LedgerStore, snapshot, utcnow
from app.utils.operation_log import record_operation
from models.order import Escrow, Order

logger = logging.getLogger("ecoswap.escrow")


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EscrowStatus(str, enum.Enum):
    HELD = "held"
    RELEASED = "released"


TRANSITIONS = frozenset({
    (OrderStatus.PENDING, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.COMPLETED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
})


def check_transition(current: str, target: OrderStatus) -> None:
    try:
        current_status = OrderStatus(current)
    except ValueError:
        raise InvalidTransition(f"Unknown order status {current!r}")
    if (current_status, target) not in TRANSITIONS:
        raise InvalidTransition(f"Cannot move order from {current_status.value} to {target.value}")


class EscrowEngine:
    def __init__(self, store: LedgerStore):
        self.store = store

    async def _transition(self, order: Order, target: OrderStatus, **values) -> Order:
        check_transition(order.status, target)
        changes = {"status": target.value, **values}
        applied = await self.store.update_order_if(order.id, order.status, order.version, changes)
        if applied:
            logger.info("ORDER_TRANSITION order=%s %s->%s", order.id, order.status, target.value)
            return snapshot(order, version=order.version + 1, **changes)
        current = await self.store.get_order(order.id)
        if current is None:
            raise NotFound("Order not found")
        if current.status != order.status:
            raise InvalidTransition(f"Order moved to {current.status} concurrently")
        raise Conflict("Order was modified concurrently")

    async def mark_shipped(self, seller_id: str, order_id: int, tracking_number: str | None) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.seller_id != seller_id:
            raise Forbidden("Only the seller can mark an order as shipped")
        tracking = (tracking_number or "").strip()
        if not tracking:
            raise MissingTracking()
        order = await self._transition(order, OrderStatus.SHIPPED, tracking_number=tracking, shipped_at=utcnow())
        await record_operation(
            self.store,
            user_id=seller_id,
            action="order_shipped",
            order_id=order.id,
            listing_id=order.listing_id,
            detail={"tracking_number": tracking},
        )
        return order

    async def complete(self, order: Order) -> Order:
        return await self._transition(order, OrderStatus.COMPLETED, completed_at=utcnow())

    async def cancel(self, order: Order) -> Order:
        """Internal only: used by purchase rollback."""
        return await self._transition(order, OrderStatus.CANCELLED)

    async def release(self, order: Order, escrow: Escrow) -> Escrow:
        """Claim the escrow for settlement (held -> released).

        This conditional update is the exactly-once gate for settlement: of
        any number of concurrent callers, one matches the row.
        """
        check_transition(order.status, OrderStatus.COMPLETED)
        if escrow.status != EscrowStatus.HELD.value:
            raise AlreadySettled("Escrow already released")
        changes = {"status": EscrowStatus.RELEASED.value, "released_at": utcnow()}
        applied = await self.store.update_escrow_if(escrow.id, EscrowStatus.HELD.value, escrow.version, changes)
        if applied:
            logger.info("ESCROW_RELEASED order=%s amount=%s", order.id, escrow.amount)
            return snapshot(escrow, version=escrow.version + 1, **changes)
        current = await self.store.get_escrow(order.id)
        if current is None or current.status != EscrowStatus.HELD.value:
            raise AlreadySettled("Escrow already released")
        raise Conflict("Escrow was modified concurrently")

    async def restore(self, escrow: Escrow) -> None:
        """Undo a release whose payout could not be credited."""
        applied = await self.store.update_escrow_if(
            escrow.id,
            EscrowStatus.RELEASED.value,
            escrow.version,
            {"status": EscrowStatus.HELD.value, "released_at": None},
        )
        if not applied:
            raise Conflict(f"Escrow {escrow.id} changed before it could be restored")
        logger.warning("ESCROW_RESTORED order=%s", escrow.order_id)
