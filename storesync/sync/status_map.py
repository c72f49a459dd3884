"""Local order status <-> remote financial status.

The local->remote direction is lossy: CONFIRMED, SHIPPED and DELIVERED all
become "paid" because the remote platform has nothing finer. No new remote
states are invented to compensate.
"""
from typing import Optional

from ..orders.model import OrderStatus
from ..orders.state_machine import PROGRESS

REMOTE_PENDING = "pending"
REMOTE_PAID = "paid"
REMOTE_REFUNDED = "refunded"

_TO_REMOTE = {
    OrderStatus.PENDING: REMOTE_PENDING,
    OrderStatus.CONFIRMED: REMOTE_PAID,
    OrderStatus.SHIPPED: REMOTE_PAID,
    OrderStatus.DELIVERED: REMOTE_PAID,
    OrderStatus.CANCELLED: REMOTE_REFUNDED,
}

_TO_LOCAL = {
    REMOTE_PENDING: OrderStatus.PENDING,
    REMOTE_PAID: OrderStatus.CONFIRMED,
    REMOTE_REFUNDED: OrderStatus.CANCELLED,
}


def remote_of(status: OrderStatus) -> str:
    return _TO_REMOTE[status]


def local_of(financial_status: Optional[str]) -> OrderStatus:
    # Unknown remote states fall back to PENDING.
    return _TO_LOCAL.get((financial_status or "").strip().lower(), OrderStatus.PENDING)


def reconciled_status(current: OrderStatus, financial_status: Optional[str]) -> Optional[OrderStatus]:
    """Status to apply locally for a remote status, or None to leave it.

    Only forward progress or cancellation is applied. A remote "paid" seen
    against a SHIPPED order is the lossy collapse, not a regression request.
    """
    target = local_of(financial_status)
    if target is current or current in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
        return None
    if target is OrderStatus.CANCELLED:
        return target
    if PROGRESS[target] > PROGRESS[current]:
        return target
    return None
