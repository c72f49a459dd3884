"""Push and pull synchronisation with the remote shop platform.

Push sends one local entity to the remote: create when it has no external
id yet, update otherwise. The external id is claimed with a conditional
update, so of two concurrent first pushes only one id is ever stored; the
loser's remote record is left orphaned and logged.

Pull fetches a bounded page of remote records and correlates each one with
local state by (owner, external id).

Remote failures never leave this module: push and pull report them as
outcomes and log them.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..common.config import MAX_PAGE_LIMIT, settings
from ..common.errors import NotFound, RemoteError, RemoteRejected, RemoteUnavailable
from ..common.metrics import SYNC_PULL_RECORDS_TOTAL, SYNC_PUSH_TOTAL
from ..customers.model import Customer
from ..inventory.model import Product
from ..orders.model import Order, OrderItem
from ..orders.state_machine import OrderStateMachine, path_to
from ..remote.client import RemoteClient
from .status_map import local_of, reconciled_status, remote_of
from .tasks import CUSTOMER, ORDER, PRODUCT, PushTask

_logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
LOST_RACE = "lost_race"
FAILED = "failed"

VENDOR = "storesync"


@dataclass
class _Prepared:
    external_id: Optional[str]
    payload: Dict[str, Any]


@dataclass
class PullReport:
    owner_id: int
    counts: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: defaultdict(int)))
    failed_resources: List[str] = field(default_factory=list)

    def record(self, resource: str, outcome: str) -> None:
        self.counts[resource][outcome] += 1
        SYNC_PULL_RECORDS_TOTAL.labels(resource=resource, outcome=outcome).inc()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "counts": {res: dict(outcomes) for res, outcomes in self.counts.items()},
            "failed_resources": list(self.failed_resources),
        }


def _remote_id(value: Optional[str]):
    # The remote platform expects numeric ids where they are numeric.
    if value is not None and value.isdigit():
        return int(value)
    return value


def _decimal(value) -> Decimal:
    if value in (None, ""):
        return Decimal("0.00")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def _stock(value) -> int:
    stock = int(value or 0)
    if stock < 0:
        _logger.info("Remote reports negative inventory %s, storing 0", stock)
        return 0
    return stock


def _address(data) -> Optional[str]:
    if isinstance(data, dict):
        return data.get("address1") or None
    return data or None


class SyncCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        clients,
        machine: OrderStateMachine,
        page_limit: Optional[int] = None,
        max_pages: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._clients = clients
        self._machine = machine
        self._page_limit = min(page_limit or settings.SYNC_PAGE_LIMIT, MAX_PAGE_LIMIT)
        self._max_pages = max(1, max_pages or settings.SYNC_MAX_PAGES)
        self._timeout = timeout or settings.REMOTE_TIMEOUT_SECONDS
        self._push_handlers: Dict[str, Callable[[int, int], Awaitable[str]]] = {
            ORDER: self.push_order,
            PRODUCT: self.push_product,
            CUSTOMER: self.push_customer,
        }

    # Push

    async def push(self, task: PushTask) -> str:
        return await self._push_handlers[task.kind](task.owner_id, task.entity_id)

    async def push_product(self, owner_id: int, product_id: int) -> str:
        return await self._push("products", Product, owner_id, product_id, self._prepare_product, self._product_ids)

    async def push_customer(self, owner_id: int, customer_id: int) -> str:
        return await self._push(
            "customers", Customer, owner_id, customer_id, self._prepare_customer, self._record_id
        )

    async def push_order(self, owner_id: int, order_id: int) -> str:
        return await self._push("orders", Order, owner_id, order_id, self._prepare_order, self._record_id)

    async def _push(self, resource, model, owner_id: int, entity_id: int, prepare, ids_of) -> str:
        outcome = await self._push_once(resource, model, owner_id, entity_id, prepare, ids_of)
        SYNC_PUSH_TOTAL.labels(resource=resource, outcome=outcome).inc()
        return outcome

    async def _push_once(self, resource, model, owner_id, entity_id, prepare, ids_of) -> str:
        try:
            client: Optional[RemoteClient] = await self._clients.for_owner(owner_id)
            if client is None:
                _logger.debug("No shop connection, %s %s not pushed | owner_id=%s", resource, entity_id, owner_id)
                return SKIPPED

            async with self._session_factory() as session:
                entity = await session.get(model, entity_id)
                if entity is None or entity.owner_id != owner_id:
                    _logger.warning("Push target vanished | resource=%s id=%s", resource, entity_id)
                    return SKIPPED
                prepared = await prepare(session, entity)
            if prepared is None:
                return SKIPPED

            if prepared.external_id is not None:
                await self._call(client.update(resource, prepared.external_id, prepared.payload))
                _logger.info("Pushed update | resource=%s id=%s remote_id=%s", resource, entity_id, prepared.external_id)
                return UPDATED

            record = await self._call(client.create(resource, prepared.payload))
            values = ids_of(record)
            if await self._claim(model, entity_id, values):
                _logger.info("Pushed create | resource=%s id=%s remote_id=%s", resource, entity_id, values["external_id"])
                return CREATED
            _logger.warning(
                "Lost push race, remote record orphaned | resource=%s id=%s orphan_remote_id=%s",
                resource,
                entity_id,
                values["external_id"],
            )
            return LOST_RACE
        except RemoteError as e:
            _logger.warning("Push failed | resource=%s id=%s err=%s", resource, entity_id, e)
            return FAILED
        except Exception:
            _logger.exception("Unexpected push failure | resource=%s id=%s", resource, entity_id)
            return FAILED

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise RemoteUnavailable(f"Remote call timed out after {self._timeout}s") from e

    async def _claim(self, model, entity_id: int, values: Dict[str, str]) -> bool:
        # First successful push wins; the external id is never overwritten.
        stmt = (
            sa.update(model)
            .where(model.id == entity_id, model.external_id.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                res = await session.execute(stmt)
        return (res.rowcount or 0) > 0

    @staticmethod
    def _record_id(record: Dict[str, Any]) -> Dict[str, str]:
        return {"external_id": str(record["id"])}

    @staticmethod
    def _product_ids(record: Dict[str, Any]) -> Dict[str, str]:
        variants = record.get("variants") or []
        if not variants:
            raise RemoteRejected(200, "Created product has no variants")
        return {"external_id": str(record["id"]), "external_variant_id": str(variants[0]["id"])}

    async def _prepare_product(self, session: AsyncSession, product: Product) -> _Prepared:
        if product.external_id:
            return _Prepared(
                product.external_id,
                {
                    "id": _remote_id(product.external_id),
                    "title": product.name,
                    "body_html": product.description or "",
                    "variants": [
                        {
                            "id": _remote_id(product.external_variant_id),
                            "price": str(product.price),
                            "inventory_quantity": product.stock,
                        }
                    ],
                },
            )
        return _Prepared(
            None,
            {
                "title": product.name,
                "body_html": product.description or "",
                "vendor": VENDOR,
                "product_type": product.category or "General",
                "variants": [
                    {
                        "price": str(product.price),
                        "inventory_quantity": product.stock,
                        "inventory_management": "shopify",
                    }
                ],
            },
        )

    async def _prepare_customer(self, session: AsyncSession, customer: Customer) -> _Prepared:
        payload = {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "email": customer.email,
            "phone": customer.phone or "",
        }
        if customer.external_id:
            payload["id"] = _remote_id(customer.external_id)
            return _Prepared(customer.external_id, payload)
        payload["addresses"] = [{"address1": customer.address or ""}]
        return _Prepared(None, payload)

    async def _prepare_order(self, session: AsyncSession, order: Order) -> Optional[_Prepared]:
        if order.external_id:
            return _Prepared(
                order.external_id,
                {"id": _remote_id(order.external_id), "financial_status": remote_of(order.status)},
            )

        line_items = []
        for item in order.items:
            product = await session.get(Product, item.product_id)
            if product is None or not product.external_variant_id:
                _logger.info("Order %s not pushed: product %s not synced yet", order.id, item.product_id)
                return None
            line_items.append(
                {
                    "variant_id": _remote_id(product.external_variant_id),
                    "quantity": item.quantity,
                    "price": str(item.unit_price),
                }
            )
        payload: Dict[str, Any] = {
            "line_items": line_items,
            "shipping_address": {"address1": order.shipping_address or ""},
            "billing_address": {"address1": order.billing_address or ""},
            "financial_status": remote_of(order.status),
            "inventory_behaviour": "bypass",
        }
        if order.customer_id is not None:
            customer = await session.get(Customer, order.customer_id)
            if customer is None or not customer.external_id:
                _logger.info("Order %s not pushed: customer %s not synced yet", order.id, order.customer_id)
                return None
            payload["customer"] = {"id": _remote_id(customer.external_id)}
        return _Prepared(None, payload)

    # Pull

    async def pull_and_reconcile(self, owner_id: int) -> PullReport:
        client = await self._clients.for_owner(owner_id)
        if client is None:
            raise NotFound("shop_connection", owner_id)

        report = PullReport(owner_id=owner_id)
        # Catalogue and customers first so orders can resolve their references.
        for resource, reconcile in (
            ("products", self.reconcile_product),
            ("customers", self.reconcile_customer),
            ("orders", self.reconcile_order),
        ):
            try:
                records = await self._fetch(client, resource)
            except RemoteError as e:
                _logger.warning("Pull failed | owner_id=%s resource=%s err=%s", owner_id, resource, e)
                report.failed_resources.append(resource)
                continue
            for record in records:
                try:
                    outcome = await reconcile(owner_id, record)
                except Exception:
                    _logger.exception("Error reconciling remote %s %s", resource, record.get("id"))
                    outcome = FAILED
                report.record(resource, outcome)
        _logger.info("Pull finished | %s", report.to_dict())
        return report

    async def _fetch(self, client: RemoteClient, resource: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        token = None
        for _ in range(self._max_pages):
            page = await self._call(client.get_collection(resource, self._page_limit, token))
            records.extend(page.records)
            token = page.next_token
            if not token:
                break
        return records

    async def _in_transaction(self, work):
        # A concurrent pull or webhook may insert the same external id first;
        # the retry then finds it and takes the update path.
        for attempt in (1, 2):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await work(session)
            except IntegrityError:
                if attempt == 2:
                    raise
                _logger.info("Concurrent insert of the same remote record, retrying")

    async def reconcile_product(self, owner_id: int, record: Dict[str, Any]) -> str:
        variants = record.get("variants") or []
        if not variants:
            _logger.info("Remote product %s has no variants, skipped", record.get("id"))
            return SKIPPED
        external_id = str(record["id"])
        variant = variants[0]
        fields = {
            "name": record.get("title") or "",
            "description": record.get("body_html"),
            "price": _decimal(variant.get("price")),
            "stock": _stock(variant.get("inventory_quantity")),
        }

        async def work(session: AsyncSession) -> str:
            product = await session.scalar(
                sa.select(Product).where(Product.owner_id == owner_id, Product.external_id == external_id)
            )
            if product is None:
                session.add(
                    Product(
                        owner_id=owner_id,
                        external_id=external_id,
                        external_variant_id=str(variant["id"]),
                        is_active=True,
                        **fields,
                    )
                )
                return CREATED
            # Catalogue data is owned by the remote.
            for name, value in fields.items():
                setattr(product, name, value)
            return UPDATED

        return await self._in_transaction(work)

    async def reconcile_customer(self, owner_id: int, record: Dict[str, Any]) -> str:
        async def work(session: AsyncSession) -> str:
            _, outcome = await self._upsert_customer(session, owner_id, record)
            return outcome

        return await self._in_transaction(work)

    async def _upsert_customer(self, session: AsyncSession, owner_id: int, record: Dict[str, Any]):
        external_id = str(record["id"])
        name = f"{record.get('first_name') or ''} {record.get('last_name') or ''}".strip()
        customer = await session.scalar(
            sa.select(Customer).where(Customer.owner_id == owner_id, Customer.external_id == external_id)
        )
        if customer is None:
            customer = Customer(
                owner_id=owner_id,
                external_id=external_id,
                name=name or record.get("email") or external_id,
                email=record.get("email"),
                phone=record.get("phone"),
                loyalty_points=0,
                is_active=True,
            )
            session.add(customer)
            await session.flush()
            return customer, CREATED
        if name:
            customer.name = name
        customer.email = record.get("email")
        customer.phone = record.get("phone")
        return customer, UPDATED

    async def reconcile_order(self, owner_id: int, record: Dict[str, Any]) -> str:
        external_id = str(record["id"])
        financial_status = record.get("financial_status")

        async def work(session: AsyncSession) -> str:
            stmt = (
                sa.select(Order)
                .where(Order.owner_id == owner_id, Order.external_id == external_id)
                .with_for_update()
            )
            order = (await session.execute(stmt)).scalar_one_or_none()
            if order is None:
                return await self._adopt_order(session, owner_id, external_id, record)

            target = reconciled_status(order.status, financial_status)
            if target is None:
                return UNCHANGED
            for step in path_to(order.status, target) or []:
                await self._machine.apply(session, order, step)
            _logger.info("Order %s reconciled to %s from remote", order.id, order.status.value)
            return UPDATED

        return await self._in_transaction(work)

    async def _adopt_order(self, session: AsyncSession, owner_id: int, external_id: str, record: Dict[str, Any]) -> str:
        items = []
        for line in record.get("line_items") or []:
            variant_id = line.get("variant_id")
            product_id = None
            if variant_id is not None:
                product_id = await session.scalar(
                    sa.select(Product.id).where(
                        Product.owner_id == owner_id, Product.external_variant_id == str(variant_id)
                    )
                )
            quantity = int(line.get("quantity") or 0)
            if product_id is None or quantity <= 0:
                _logger.info("Remote order %s references unknown variant %s, skipped", external_id, variant_id)
                return SKIPPED
            items.append(OrderItem(product_id=product_id, quantity=quantity, unit_price=_decimal(line.get("price"))))
        if not items:
            _logger.info("Remote order %s has no line items, skipped", external_id)
            return SKIPPED

        customer_id = None
        if isinstance(record.get("customer"), dict) and record["customer"].get("id") is not None:
            customer, _ = await self._upsert_customer(session, owner_id, record["customer"])
            customer_id = customer.id

        # The remote already consumed this inventory; nothing is reserved here.
        order = Order(
            owner_id=owner_id,
            customer_id=customer_id,
            status=local_of(record.get("financial_status")),
            external_id=external_id,
            shipping_address=_address(record.get("shipping_address")),
            billing_address=_address(record.get("billing_address")),
            stock_reserved=False,
            items=items,
        )
        order.total = sum((item.total_price for item in items), Decimal("0.00"))
        session.add(order)
        await session.flush()
        _logger.info("Adopted remote order %s as order %s", external_id, order.id)
        return CREATED
