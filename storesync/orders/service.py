import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..common.errors import InvalidOrder, NotFound
from ..customers.model import Customer
from ..inventory.ledger import StockLedger
from ..inventory.model import Product
from ..sync.tasks import ORDER, PushTask, Submit
from .model import Order, OrderItem, OrderStatus
from .state_machine import OrderStateMachine

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItemRequest:
    product_id: int
    quantity: int


class OrderService:
    """Owns the order lifecycle.

    Every mutation is one transaction covering the order row and the stock
    reservations it implies. Successful changes are handed to ``submit`` as
    push candidates after commit; a failing hand-off never undoes them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        ledger: StockLedger,
        machine: OrderStateMachine,
        submit: Submit = None,
    ):
        self._session_factory = session_factory
        self._ledger = ledger
        self._machine = machine
        self._submit = submit

    async def create_order(
        self,
        owner_id: int,
        customer_id: int,
        items: Sequence[LineItemRequest],
        shipping_address: Optional[str] = None,
        billing_address: Optional[str] = None,
    ) -> Order:
        if not items:
            raise InvalidOrder("An order needs at least one item")
        for item in items:
            if item.quantity <= 0:
                raise InvalidOrder(f"Quantity must be positive for product {item.product_id}")

        async with self._session_factory() as session:
            async with session.begin():
                customer = await session.get(Customer, customer_id)
                if customer is None or customer.owner_id != owner_id or not customer.is_active:
                    raise NotFound("customer", customer_id)

                order = Order(
                    owner_id=owner_id,
                    customer_id=customer_id,
                    status=OrderStatus.PENDING,
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                    stock_reserved=True,
                    items=[],
                )
                total = Decimal("0.00")
                for item in items:
                    price = await self._price_of(session, owner_id, item.product_id)
                    await self._ledger.reserve(session, owner_id, item.product_id, item.quantity)
                    line = OrderItem(product_id=item.product_id, quantity=item.quantity, unit_price=price)
                    order.items.append(line)
                    total += line.total_price
                order.total = total
                session.add(order)
                await session.flush()

        _logger.info("Order created | order_id=%s owner_id=%s total=%s", order.id, owner_id, order.total)
        self._hand_off(PushTask(ORDER, owner_id, order.id))
        return order

    async def transition(self, owner_id: int, order_id: int, target: OrderStatus) -> Order:
        async with self._session_factory() as session:
            async with session.begin():
                order = await self.load_for_update(session, owner_id, order_id)
                await self._machine.apply(session, order, target)

        _logger.info("Order status changed | order_id=%s status=%s", order_id, order.status.value)
        self._hand_off(PushTask(ORDER, owner_id, order.id))
        return order

    async def cancel_order(self, owner_id: int, order_id: int) -> Order:
        return await self.transition(owner_id, order_id, OrderStatus.CANCELLED)

    async def load_for_update(self, session: AsyncSession, owner_id: int, order_id: int) -> Order:
        stmt = sa.select(Order).where(Order.id == order_id, Order.owner_id == owner_id).with_for_update()
        order = (await session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFound("order", order_id)
        return order

    async def get_order(self, owner_id: int, order_id: int) -> Order:
        async with self._session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None or order.owner_id != owner_id:
                raise NotFound("order", order_id)
            return order

    async def list_orders(
        self,
        owner_id: int,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[int] = None,
        limit: Optional[int] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[Order]:
        stmt = sa.select(Order).where(Order.owner_id == owner_id)
        if created_from is not None:
            stmt = stmt.where(Order.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(Order.created_at <= created_to)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        if customer_id is not None:
            stmt = stmt.where(Order.customer_id == customer_id)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())

    async def count_by_status(self, owner_id: int, status: OrderStatus) -> int:
        stmt = sa.select(sa.func.count(Order.id)).where(Order.owner_id == owner_id, Order.status == status)
        async with self._session_factory() as session:
            return int(await session.scalar(stmt) or 0)

    async def revenue_by_status(self, owner_id: int, status: OrderStatus) -> Decimal:
        stmt = sa.select(sa.func.sum(Order.total)).where(Order.owner_id == owner_id, Order.status == status)
        async with self._session_factory() as session:
            value = await session.scalar(stmt)
        return Decimal(str(value)) if value is not None else Decimal("0.00")

    async def _price_of(self, session: AsyncSession, owner_id: int, product_id: int) -> Decimal:
        stmt = sa.select(Product.price).where(
            Product.id == product_id, Product.owner_id == owner_id, Product.is_active.is_(True)
        )
        row = (await session.execute(stmt)).first()
        if row is None:
            raise NotFound("product", product_id)
        return Decimal(row[0])

    def _hand_off(self, task: PushTask) -> None:
        if self._submit is None:
            return
        try:
            self._submit(task)
        except Exception:
            _logger.exception("Failed to hand off push task | task=%s", task)
