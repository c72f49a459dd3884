import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.errors import InsufficientStock, InvalidOrder, NotFound
from .model import Product

_logger = logging.getLogger(__name__)


class StockLedger:
    """Per-product stock counter.

    Both operations run inside the caller's session so a reservation commits
    or rolls back together with the order mutation that triggered it.
    """

    async def reserve(self, session: AsyncSession, owner_id: int, product_id: int, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidOrder(f"Quantity must be positive, got {quantity}")
        # Check and decrement in one statement; the row write lock serialises
        # concurrent reservations against the same product.
        stmt = (
            sa.update(Product)
            .where(
                Product.id == product_id,
                Product.owner_id == owner_id,
                Product.is_active.is_(True),
                Product.stock >= quantity,
            )
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        res = await session.execute(stmt)
        if (res.rowcount or 0) > 0:
            _logger.debug("Reserved stock | product_id=%s qty=%s", product_id, quantity)
            return

        available = await self._current_stock(session, owner_id, product_id)
        if available is None:
            raise NotFound("product", product_id)
        _logger.info(
            "Reservation refused | product_id=%s requested=%s available=%s", product_id, quantity, available
        )
        raise InsufficientStock(product_id, quantity, available)

    async def restore(self, session: AsyncSession, product_id: int, quantity: int) -> None:
        stmt = (
            sa.update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        _logger.debug("Restored stock | product_id=%s qty=%s", product_id, quantity)

    async def _current_stock(self, session: AsyncSession, owner_id: int, product_id: int):
        stmt = sa.select(Product.stock).where(
            Product.id == product_id, Product.owner_id == owner_id, Product.is_active.is_(True)
        )
        row = (await session.execute(stmt)).first()
        return int(row[0]) if row else None
