"""
Pytest configuration and fixtures.
Every test gets its own file-backed SQLite database and an in-memory
stand-in for the remote shop platform.
"""
import asyncio
import itertools
from decimal import Decimal

import pytest

from storesync.common.database import init_db, make_engine, make_session_factory
from storesync.customers.model import Customer
from storesync.inventory.model import Product
from storesync.remote.client import Page
from storesync.services import build_services

OWNER = 1
SHOP = "demo-store.myshopify.com"
SECRET = "test-webhook-secret"


class FakeRemoteClient:
    """In-memory remote platform."""

    def __init__(self):
        self.collections = {"products": [], "customers": [], "orders": []}
        self.fetches = []
        self.created = []
        self.updated = []
        self.fail_with = None
        self.create_delay = 0.0
        self._ids = itertools.count(5000)

    async def get_collection(self, resource, limit, page_token=None):
        self.fetches.append((resource, limit, page_token))
        if self.fail_with is not None:
            raise self.fail_with
        return Page(records=list(self.collections.get(resource, []))[:limit])

    async def create(self, resource, payload):
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_with is not None:
            raise self.fail_with
        record = dict(payload, id=next(self._ids))
        if resource == "products":
            record["variants"] = [dict(payload["variants"][0], id=next(self._ids))]
        self.created.append((resource, record))
        return record

    async def update(self, resource, remote_id, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self.updated.append((resource, remote_id, payload))
        return dict(payload)

    async def close(self):
        pass


class RecordingDispatcher:
    """Collects push tasks instead of running them."""

    def __init__(self):
        self.tasks = []

    def start(self):
        pass

    def submit(self, task):
        self.tasks.append(task)

    async def join(self):
        pass

    async def stop(self):
        pass


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def remote():
    return FakeRemoteClient()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def services(session_factory, remote, dispatcher):
    svc = build_services(session_factory, client_factory=lambda domain, token: remote, dispatcher=dispatcher)
    await svc.registry.connect(OWNER, SHOP, "shpat_test")
    return svc


@pytest.fixture
def make_product(session_factory):
    counter = itertools.count(1)

    async def _make(owner_id=OWNER, stock=5, price="10.00", name=None, **extra):
        async with session_factory() as session:
            async with session.begin():
                product = Product(
                    owner_id=owner_id,
                    name=name or f"Product {next(counter)}",
                    stock=stock,
                    price=Decimal(price),
                    **{"is_active": True, **extra},
                )
                session.add(product)
        return product

    return _make


@pytest.fixture
def make_customer(session_factory):
    counter = itertools.count(1)

    async def _make(owner_id=OWNER, name="Ada Lovelace", **extra):
        n = next(counter)
        async with session_factory() as session:
            async with session.begin():
                customer = Customer(
                    owner_id=owner_id,
                    name=name,
                    email=extra.pop("email", f"customer{n}@example.com"),
                    **{"is_active": True, "loyalty_points": 0, **extra},
                )
                session.add(customer)
        return customer

    return _make


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id):
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return _stock
