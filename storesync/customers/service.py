import logging
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..common.errors import Duplicate, InsufficientLoyaltyPoints, NotFound
from ..sync.tasks import CUSTOMER, PushTask, Submit
from .model import Customer

_logger = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, session_factory: async_sessionmaker, submit: Submit = None):
        self._session_factory = session_factory
        self._submit = submit

    async def create_customer(
        self,
        owner_id: int,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> Customer:
        async with self._session_factory() as session:
            async with session.begin():
                if email:
                    taken = await session.scalar(
                        sa.select(Customer.id).where(
                            Customer.owner_id == owner_id, Customer.email == email, Customer.is_active.is_(True)
                        )
                    )
                    if taken:
                        raise Duplicate(f"Customer with email '{email}' already exists")
                customer = Customer(
                    owner_id=owner_id,
                    name=name,
                    email=email,
                    phone=phone,
                    address=address,
                    loyalty_points=0,
                    is_active=True,
                )
                session.add(customer)
                await session.flush()
        _logger.info("Customer created | customer_id=%s owner_id=%s", customer.id, owner_id)
        self._hand_off(PushTask(CUSTOMER, owner_id, customer.id))
        return customer

    async def update_customer(
        self,
        owner_id: int,
        customer_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> Customer:
        async with self._session_factory() as session:
            async with session.begin():
                customer = await self._load(session, owner_id, customer_id)
                for field, value in (("name", name), ("email", email), ("phone", phone), ("address", address)):
                    if value is not None:
                        setattr(customer, field, value)
        self._hand_off(PushTask(CUSTOMER, owner_id, customer.id))
        return customer

    async def get_customer(self, owner_id: int, customer_id: int) -> Customer:
        async with self._session_factory() as session:
            return await self._load(session, owner_id, customer_id)

    async def list_customers(self, owner_id: int) -> List[Customer]:
        stmt = sa.select(Customer).where(Customer.owner_id == owner_id, Customer.is_active.is_(True))
        async with self._session_factory() as session:
            res = await session.execute(stmt.order_by(Customer.id))
            return list(res.scalars().all())

    async def search_customers(self, owner_id: int, query: str) -> List[Customer]:
        stmt = sa.select(Customer).where(
            Customer.owner_id == owner_id,
            Customer.is_active.is_(True),
            sa.or_(Customer.name.icontains(query, autoescape=True), Customer.email.icontains(query, autoescape=True)),
        )
        async with self._session_factory() as session:
            res = await session.execute(stmt.order_by(Customer.id))
            return list(res.scalars().all())

    async def add_loyalty_points(self, owner_id: int, customer_id: int, points: int) -> Customer:
        async with self._session_factory() as session:
            async with session.begin():
                customer = await self._load(session, owner_id, customer_id)
                customer.loyalty_points += points
        return customer

    async def use_loyalty_points(self, owner_id: int, customer_id: int, points: int) -> Customer:
        async with self._session_factory() as session:
            async with session.begin():
                customer = await self._load(session, owner_id, customer_id)
                if customer.loyalty_points < points:
                    raise InsufficientLoyaltyPoints(
                        f"Customer {customer_id} has {customer.loyalty_points} points, needs {points}"
                    )
                customer.loyalty_points -= points
        return customer

    async def _load(self, session, owner_id: int, customer_id: int) -> Customer:
        customer = await session.get(Customer, customer_id)
        if customer is None or customer.owner_id != owner_id or not customer.is_active:
            raise NotFound("customer", customer_id)
        return customer

    def _hand_off(self, task: PushTask) -> None:
        if self._submit is None:
            return
        try:
            self._submit(task)
        except Exception:
            _logger.exception("Failed to hand off push task | task=%s", task)
