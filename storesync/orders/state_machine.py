"""Order lifecycle graph.

PENDING -> CONFIRMED -> SHIPPED -> DELIVERED is the forward path. Any
non-terminal status may move to CANCELLED. DELIVERED and CANCELLED are
terminal.
"""
import logging
from typing import Dict, FrozenSet, List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.errors import AlreadyCancelled, IllegalTransition
from ..inventory.ledger import StockLedger
from .model import Order, OrderStatus

_logger = logging.getLogger(__name__)

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Position on the forward path, used to tell progress from regression.
PROGRESS = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 3,
}


def is_terminal(status: OrderStatus) -> bool:
    return not TRANSITIONS[status]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(order_id: int, current: OrderStatus, target: OrderStatus) -> None:
    if current is OrderStatus.CANCELLED and target is OrderStatus.CANCELLED:
        raise AlreadyCancelled(order_id)
    if not can_transition(current, target):
        raise IllegalTransition(current, target)


def path_to(current: OrderStatus, target: OrderStatus) -> Optional[List[OrderStatus]]:
    """Forward steps leading from ``current`` to ``target``, or None.

    Cancellation is always a single step. Used when the remote platform
    reports a status several steps ahead of the local one.
    """
    if target is OrderStatus.CANCELLED:
        return [target] if can_transition(current, target) else None
    if current not in PROGRESS or target not in PROGRESS:
        return None
    if PROGRESS[target] <= PROGRESS[current]:
        return None
    ordered = sorted(PROGRESS, key=PROGRESS.get)
    return ordered[PROGRESS[current] + 1:PROGRESS[target] + 1]


class OrderStateMachine:
    """Applies transitions and their stock side effects."""

    def __init__(self, ledger: StockLedger):
        self._ledger = ledger

    async def apply(self, session: AsyncSession, order: Order, target: OrderStatus) -> None:
        """Move ``order`` to ``target`` inside the caller's transaction.

        The status column is compare-and-set, so of two concurrent cancels
        only one restores stock; the other observes CANCELLED and fails.
        """
        current = order.status
        while True:
            check_transition(order.id, current, target)
            stmt = (
                sa.update(Order)
                .where(Order.id == order.id, Order.status == current)
                .values(status=target)
                .execution_options(synchronize_session=False)
            )
            res = await session.execute(stmt)
            if (res.rowcount or 0) > 0:
                break
            current = await session.scalar(sa.select(Order.status).where(Order.id == order.id))

        if target is OrderStatus.CANCELLED and order.stock_reserved:
            for item in order.items:
                await self._ledger.restore(session, item.product_id, item.quantity)
        await session.refresh(order, attribute_names=["status", "updated_at"])
        _logger.debug("Order transitioned | order_id=%s from=%s to=%s", order.id, current.value, target.value)
