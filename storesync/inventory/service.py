import logging
from decimal import Decimal
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..common.errors import Duplicate, InvalidInput, NotFound
from ..sync.tasks import PRODUCT, PushTask, Submit
from .model import Product

_logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, session_factory: async_sessionmaker, submit: Submit = None):
        self._session_factory = session_factory
        self._submit = submit

    async def create_product(
        self,
        owner_id: int,
        name: str,
        price: Decimal,
        stock: int = 0,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Product:
        if stock < 0:
            raise InvalidInput("Stock cannot be negative")
        async with self._session_factory() as session:
            async with session.begin():
                exists = await session.scalar(
                    sa.select(Product.id).where(
                        Product.owner_id == owner_id, Product.name == name, Product.is_active.is_(True)
                    )
                )
                if exists:
                    raise Duplicate(f"Product with name '{name}' already exists")
                product = Product(
                    owner_id=owner_id,
                    name=name,
                    description=description,
                    category=category,
                    price=Decimal(str(price)),
                    stock=stock,
                    is_active=True,
                )
                session.add(product)
                await session.flush()
        _logger.info("Product created | product_id=%s owner_id=%s", product.id, owner_id)
        self._hand_off(PushTask(PRODUCT, owner_id, product.id))
        return product

    async def update_product(
        self,
        owner_id: int,
        product_id: int,
        name: Optional[str] = None,
        price: Optional[Decimal] = None,
        stock: Optional[int] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Product:
        if stock is not None and stock < 0:
            raise InvalidInput("Stock cannot be negative")
        async with self._session_factory() as session:
            async with session.begin():
                product = await self._load(session, owner_id, product_id)
                if name is not None:
                    product.name = name
                if price is not None:
                    product.price = Decimal(str(price))
                if stock is not None:
                    product.stock = stock
                if description is not None:
                    product.description = description
                if category is not None:
                    product.category = category
        # Unsynced products are picked up by the create path of the same push.
        self._hand_off(PushTask(PRODUCT, owner_id, product.id))
        return product

    async def deactivate_product(self, owner_id: int, product_id: int) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                product = await self._load(session, owner_id, product_id)
                product.is_active = False
        # The remote platform has no delete; the remote record is left alone.
        _logger.info("Product deactivated | product_id=%s", product_id)

    async def get_product(self, owner_id: int, product_id: int) -> Product:
        async with self._session_factory() as session:
            return await self._load(session, owner_id, product_id)

    async def list_products(self, owner_id: int, category: Optional[str] = None) -> List[Product]:
        stmt = sa.select(Product).where(Product.owner_id == owner_id, Product.is_active.is_(True))
        if category:
            stmt = stmt.where(Product.category == category)
        async with self._session_factory() as session:
            res = await session.execute(stmt.order_by(Product.id))
            return list(res.scalars().all())

    async def search_products(self, owner_id: int, query: str) -> List[Product]:
        """Active products whose name or description contains ``query``, case-insensitively."""
        stmt = sa.select(Product).where(
            Product.owner_id == owner_id,
            Product.is_active.is_(True),
            sa.or_(Product.name.icontains(query, autoescape=True), Product.description.icontains(query, autoescape=True)),
        )
        async with self._session_factory() as session:
            res = await session.execute(stmt.order_by(Product.id))
            return list(res.scalars().all())

    async def _load(self, session, owner_id: int, product_id: int) -> Product:
        product = await session.get(Product, product_id)
        if product is None or product.owner_id != owner_id or not product.is_active:
            raise NotFound("product", product_id)
        return product

    def _hand_off(self, task: PushTask) -> None:
        if self._submit is None:
            return
        try:
            self._submit(task)
        except Exception:
            _logger.exception("Failed to hand off push task | task=%s", task)
