from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from .common.config import Settings, settings as default_settings
from .customers.service import CustomerService
from .inventory.ledger import StockLedger
from .inventory.service import ProductService
from .orders.service import OrderService
from .orders.state_machine import OrderStateMachine
from .remote.registry import ClientFactory, ShopRegistry
from .remote.client import ShopifyClient
from .sync.coordinator import SyncCoordinator
from .sync.dispatcher import KafkaSyncChannel, LocalSyncDispatcher
from .webhooks.ingestor import WebhookIngestor


@dataclass
class Services:
    registry: ShopRegistry
    ledger: StockLedger
    machine: OrderStateMachine
    coordinator: SyncCoordinator
    dispatcher: object
    orders: OrderService
    products: ProductService
    customers: CustomerService
    webhooks: WebhookIngestor

    async def close(self) -> None:
        await self.dispatcher.stop()
        await self.registry.close()


def build_services(
    session_factory: async_sessionmaker,
    config: Optional[Settings] = None,
    client_factory: ClientFactory = ShopifyClient,
    dispatcher=None,
) -> Services:
    config = config or default_settings
    registry = ShopRegistry(session_factory, client_factory)
    ledger = StockLedger()
    machine = OrderStateMachine(ledger)
    coordinator = SyncCoordinator(
        session_factory,
        registry,
        machine,
        page_limit=config.SYNC_PAGE_LIMIT,
        max_pages=config.SYNC_MAX_PAGES,
        timeout=config.REMOTE_TIMEOUT_SECONDS,
    )
    if dispatcher is None:
        if config.SYNC_TRANSPORT == "kafka":
            dispatcher = KafkaSyncChannel(
                config.SYNC_TOPIC,
                publishers=config.SYNC_WORKERS,
                queue_size=config.SYNC_QUEUE_SIZE,
                timeout=config.REMOTE_TIMEOUT_SECONDS,
            )
        else:
            dispatcher = LocalSyncDispatcher(
                coordinator.push, workers=config.SYNC_WORKERS, queue_size=config.SYNC_QUEUE_SIZE
            )
    submit = dispatcher.submit
    return Services(
        registry=registry,
        ledger=ledger,
        machine=machine,
        coordinator=coordinator,
        dispatcher=dispatcher,
        orders=OrderService(session_factory, ledger, machine, submit),
        products=ProductService(session_factory, submit),
        customers=CustomerService(session_factory, submit),
        webhooks=WebhookIngestor(config.WEBHOOK_SECRET, registry, coordinator),
    )
