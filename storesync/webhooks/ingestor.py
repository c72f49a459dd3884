"""Verification and idempotent application of inbound webhooks.

RECEIVED -> VERIFIED -> APPLIED, or RECEIVED -> REJECTED. A verified event
whose handler fails is FAILED: the sender sees a server error and redelivers.
Handlers correlate by external id before creating anything, so a redelivery
converges on the same local state.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Type

from ..common.errors import SignatureInvalid
from ..common.metrics import WEBHOOK_EVENTS_TOTAL
from ..remote.registry import ShopRegistry
from ..sync.coordinator import SyncCoordinator
from .events import AppUninstalled, CustomerCreate, OrderCreate, ProductUpdate, WebhookEvent, parse_event
from .signature import verify

_logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


STATUS_CODES = {
    Outcome.APPLIED: 200,
    Outcome.IGNORED: 200,
    Outcome.REJECTED: 401,
    Outcome.FAILED: 500,
}


@dataclass(frozen=True)
class WebhookResult:
    outcome: Outcome
    detail: str = ""

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.outcome]


class WebhookIngestor:
    def __init__(self, secret: str, registry: ShopRegistry, coordinator: SyncCoordinator):
        self._secret = secret
        self._registry = registry
        self._coordinator = coordinator
        self._handlers: Dict[Type, Callable[..., Awaitable[Optional[str]]]] = {
            OrderCreate: self._on_order_create,
            ProductUpdate: self._on_product_update,
            CustomerCreate: self._on_customer_create,
            AppUninstalled: self._on_app_uninstalled,
        }

    async def ingest(
        self,
        raw_body: Optional[bytes],
        signature: Optional[str],
        topic: Optional[str],
        shop_domain: Optional[str],
    ) -> WebhookResult:
        topic = (topic or "").strip().lower()
        shop_domain = (shop_domain or "").strip().lower()
        _logger.info("Webhook received | topic=%s shop=%s", topic, shop_domain)

        try:
            verify(self._secret, raw_body, signature)
        except SignatureInvalid as e:
            _logger.warning("Invalid webhook signature | topic=%s shop=%s reason=%s", topic, shop_domain, e)
            return self._finish(topic, Outcome.REJECTED, "Invalid webhook signature")

        try:
            event = parse_event(topic, shop_domain, raw_body)
            if event is None:
                return self._finish(topic, Outcome.IGNORED, f"Unsupported topic {topic}")
            handled = await self._handlers[type(event)](event)
        except Exception:
            _logger.exception("Error processing webhook | topic=%s shop=%s", topic, shop_domain)
            return self._finish(topic, Outcome.FAILED, "Webhook processing failed")

        if handled is None:
            return self._finish(topic, Outcome.IGNORED, f"No active connection for {shop_domain}")
        return self._finish(topic, Outcome.APPLIED, handled)

    def _finish(self, topic: str, outcome: Outcome, detail: str) -> WebhookResult:
        WEBHOOK_EVENTS_TOTAL.labels(topic=topic or "unknown", outcome=outcome.value).inc()
        return WebhookResult(outcome=outcome, detail=detail)

    async def _owner_of(self, event: WebhookEvent) -> Optional[int]:
        owner_id = await self._registry.owner_for_domain(event.shop_domain)
        if owner_id is None:
            _logger.warning("Webhook for unknown shop %s ignored", event.shop_domain)
        return owner_id

    async def _on_order_create(self, event: OrderCreate) -> Optional[str]:
        owner_id = await self._owner_of(event)
        if owner_id is None:
            return None
        return await self._coordinator.reconcile_order(owner_id, event.record)

    async def _on_product_update(self, event: ProductUpdate) -> Optional[str]:
        owner_id = await self._owner_of(event)
        if owner_id is None:
            return None
        return await self._coordinator.reconcile_product(owner_id, event.record)

    async def _on_customer_create(self, event: CustomerCreate) -> Optional[str]:
        owner_id = await self._owner_of(event)
        if owner_id is None:
            return None
        return await self._coordinator.reconcile_customer(owner_id, event.record)

    async def _on_app_uninstalled(self, event: AppUninstalled) -> Optional[str]:
        changed = await self._registry.deactivate(event.shop_domain)
        return "deactivated" if changed else "unchanged"
