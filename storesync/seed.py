import asyncio
from decimal import Decimal

import sqlalchemy as sa

from .common.config import settings
from .common.database import init_db, make_engine, make_session_factory
from .customers.model import Customer
from .inventory.model import Product
from .services import build_services


SAMPLE_PRODUCTS = [
    {"name": "Laptop Pro 14", "stock": 20, "price": "1499.00", "category": "Computers"},
    {"name": "Wireless Mouse", "stock": 150, "price": "24.99", "category": "Accessories"},
    {"name": "Mechanical Keyboard", "stock": 80, "price": "89.99", "category": "Accessories"},
    {"name": "USB-C Hub", "stock": 120, "price": "39.99", "category": "Accessories"},
    {"name": "Noise-cancelling Headphones", "stock": 35, "price": "199.99", "category": "Audio"},
    {"name": "Portable SSD 1TB", "stock": 60, "price": "99.99", "category": "Storage"},
]

SAMPLE_CUSTOMERS = [
    {"name": "Ada Lovelace", "email": "ada@example.com", "address": "12 Analytical St"},
    {"name": "Grace Hopper", "email": "grace@example.com", "address": "1 Compiler Ave"},
]


async def seed(owner_id: int = settings.DEFAULT_OWNER_ID) -> None:
    engine = make_engine()
    await init_db(engine)
    session_factory = make_session_factory(engine)
    services = build_services(session_factory)
    services.dispatcher.start()

    if settings.DEFAULT_ACCESS_TOKEN:
        await services.registry.connect(owner_id, settings.DEFAULT_SHOP_DOMAIN, settings.DEFAULT_ACCESS_TOKEN)

    added = 0
    async with session_factory() as session:
        existing = set((await session.execute(sa.select(Product.name).where(Product.owner_id == owner_id))).scalars())
        known_emails = set(
            (await session.execute(sa.select(Customer.email).where(Customer.owner_id == owner_id))).scalars()
        )
    for p in SAMPLE_PRODUCTS:
        if p["name"] in existing:
            continue
        await services.products.create_product(
            owner_id, name=p["name"], price=Decimal(p["price"]), stock=p["stock"], category=p["category"]
        )
        added += 1
    for c in SAMPLE_CUSTOMERS:
        if c["email"] in known_emails:
            continue
        await services.customers.create_customer(owner_id, name=c["name"], email=c["email"], address=c["address"])
        added += 1
    # Seeded records are pushed when the owner has a shop connection.
    await services.dispatcher.join()
    await services.close()
    print(f"Seed complete. Added {added} records for owner {owner_id}.")
    await engine.dispose()


async def amain():
    await seed()


if __name__ == "__main__":
    asyncio.run(amain())
