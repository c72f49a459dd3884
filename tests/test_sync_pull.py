from decimal import Decimal

import pytest
import sqlalchemy as sa

from storesync.common.errors import NotFound, RemoteUnavailable
from storesync.customers.model import Customer
from storesync.inventory.model import Product
from storesync.orders.model import Order, OrderStatus
from storesync.orders.service import LineItemRequest


def remote_product(remote_id=900, variant_id=901, title="Remote Lamp", price="45.00", stock=12):
    return {
        "id": remote_id,
        "title": title,
        "body_html": "<p>Warm light</p>",
        "variants": [{"id": variant_id, "price": price, "inventory_quantity": stock}],
    }


async def _link_order(session_factory, order_id, external_id):
    async with session_factory() as session:
        async with session.begin():
            await session.execute(sa.update(Order).where(Order.id == order_id).values(external_id=external_id))


async def _placed_order(services, make_product, make_customer, stock=5, quantity=2, statuses=()):
    product = await make_product(stock=stock)
    customer = await make_customer()
    order = await services.orders.create_order(1, customer.id, [LineItemRequest(product.id, quantity)])
    for status in statuses:
        await services.orders.transition(1, order.id, status)
    return product, order


class TestPullProducts:
    async def test_new_remote_product_is_created(self, services, session_factory, remote):
        remote.collections["products"] = [remote_product()]

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["products"]["created"] == 1
        async with session_factory() as session:
            product = await session.scalar(sa.select(Product).where(Product.external_id == "900"))
        assert product.name == "Remote Lamp"
        assert product.price == Decimal("45.00")
        assert product.stock == 12
        assert product.external_variant_id == "901"

    async def test_second_pull_converges(self, services, session_factory, remote):
        remote.collections["products"] = [remote_product()]

        await services.coordinator.pull_and_reconcile(1)
        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["products"] == {"updated": 1}
        async with session_factory() as session:
            assert await session.scalar(sa.select(sa.func.count(Product.id))) == 1

    async def test_remote_overwrites_catalogue_fields(self, services, remote, make_product):
        product = await make_product(stock=3, price="1.00", external_id="900", external_variant_id="901")
        remote.collections["products"] = [remote_product(stock=40, price="50.00")]

        await services.coordinator.pull_and_reconcile(1)

        stored = await services.products.get_product(1, product.id)
        assert stored.stock == 40
        assert stored.price == Decimal("50.00")
        assert stored.name == "Remote Lamp"

    async def test_negative_remote_inventory_is_clamped(self, services, remote, make_product):
        product = await make_product(stock=3, external_id="900", external_variant_id="901")
        remote.collections["products"] = [remote_product(stock=-4)]

        await services.coordinator.pull_and_reconcile(1)

        assert (await services.products.get_product(1, product.id)).stock == 0

    async def test_bad_record_does_not_stop_the_page(self, services, remote):
        remote.collections["products"] = [remote_product(remote_id=1, price="not-a-price"), remote_product(remote_id=2)]

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["products"] == {"failed": 1, "created": 1}

    async def test_product_without_variants_is_skipped(self, services, remote):
        remote.collections["products"] = [{"id": 5, "title": "Bare", "variants": []}]

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["products"] == {"skipped": 1}


class TestPullCustomers:
    async def test_customer_created_then_updated(self, services, session_factory, remote):
        remote.collections["customers"] = [
            {"id": 31, "first_name": "Remote", "last_name": "Buyer", "email": "buyer@example.com"}
        ]
        await services.coordinator.pull_and_reconcile(1)
        remote.collections["customers"][0]["email"] = "new@example.com"

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["customers"] == {"updated": 1}
        async with session_factory() as session:
            customers = (await session.execute(sa.select(Customer))).scalars().all()
        assert [(c.name, c.email, c.external_id) for c in customers] == [("Remote Buyer", "new@example.com", "31")]


class TestPullOrders:
    async def test_shipped_order_is_not_regressed_by_paid(self, services, make_product, make_customer, remote, session_factory):
        _, order = await _placed_order(
            services, make_product, make_customer, statuses=(OrderStatus.CONFIRMED, OrderStatus.SHIPPED)
        )
        await _link_order(session_factory, order.id, "700")
        remote.collections["orders"] = [{"id": 700, "financial_status": "paid"}]

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["orders"] == {"unchanged": 1}
        assert (await services.orders.get_order(1, order.id)).status is OrderStatus.SHIPPED

    async def test_paid_confirms_pending_order(self, services, make_product, make_customer, remote, session_factory):
        _, order = await _placed_order(services, make_product, make_customer)
        await _link_order(session_factory, order.id, "700")
        remote.collections["orders"] = [{"id": 700, "financial_status": "paid"}]

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["orders"] == {"updated": 1}
        assert (await services.orders.get_order(1, order.id)).status is OrderStatus.CONFIRMED

    async def test_refund_cancels_and_restores_stock(
        self, services, make_product, make_customer, remote, session_factory, stock_of
    ):
        product, order = await _placed_order(
            services, make_product, make_customer, stock=5, quantity=2, statuses=(OrderStatus.CONFIRMED,)
        )
        await _link_order(session_factory, order.id, "700")
        assert await stock_of(product.id) == 3
        remote.collections["orders"] = [{"id": 700, "financial_status": "refunded"}]

        await services.coordinator.pull_and_reconcile(1)
        await services.coordinator.pull_and_reconcile(1)

        assert (await services.orders.get_order(1, order.id)).status is OrderStatus.CANCELLED
        assert await stock_of(product.id) == 5

    async def test_unmatched_remote_order_is_adopted(self, services, make_product, remote, stock_of):
        product = await make_product(stock=8, external_id="900", external_variant_id="901")
        remote.collections["orders"] = [
            {
                "id": 800,
                "financial_status": "paid",
                "line_items": [{"variant_id": 901, "quantity": 3, "price": "9.50"}],
                "customer": {"id": 55, "first_name": "Remote", "last_name": "Buyer", "email": "rb@example.com"},
                "shipping_address": {"address1": "5 Harbour Rd"},
            }
        ]

        report = await services.coordinator.pull_and_reconcile(1)
        again = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["orders"] == {"created": 1}
        assert again.counts["orders"] == {"unchanged": 1}
        (order,) = await services.orders.list_orders(1)
        assert order.external_id == "800"
        assert order.status is OrderStatus.CONFIRMED
        assert order.stock_reserved is False
        assert order.total == Decimal("28.50")
        assert order.shipping_address == "5 Harbour Rd"
        assert (await services.customers.get_customer(1, order.customer_id)).external_id == "55"
        assert await stock_of(product.id) == 8

    async def test_adopted_order_cancel_does_not_restore(self, services, make_product, remote, stock_of):
        product = await make_product(stock=8, external_id="900", external_variant_id="901")
        remote.collections["orders"] = [
            {"id": 800, "financial_status": "pending", "line_items": [{"variant_id": 901, "quantity": 2}]}
        ]
        await services.coordinator.pull_and_reconcile(1)
        (order,) = await services.orders.list_orders(1)

        await services.orders.cancel_order(1, order.id)

        assert await stock_of(product.id) == 8

    async def test_remote_order_with_unknown_variant_is_skipped(self, services, remote):
        remote.collections["orders"] = [
            {"id": 801, "financial_status": "paid", "line_items": [{"variant_id": 12345, "quantity": 1}]}
        ]

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.counts["orders"] == {"skipped": 1}
        assert await services.orders.list_orders(1) == []


class TestPullFailures:
    async def test_owner_without_connection(self, services):
        with pytest.raises(NotFound):
            await services.coordinator.pull_and_reconcile(2)

    async def test_remote_outage_is_reported_per_resource(self, services, remote):
        remote.fail_with = RemoteUnavailable("503")

        report = await services.coordinator.pull_and_reconcile(1)

        assert report.failed_resources == ["products", "customers", "orders"]
        assert report.to_dict()["counts"] == {}

    async def test_page_size_is_bounded(self, services, remote):
        await services.coordinator.pull_and_reconcile(1)

        assert [f[0] for f in remote.fetches] == ["products", "customers", "orders"]
        assert all(limit == 250 for _, limit, _ in remote.fetches)
