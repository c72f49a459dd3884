"""Inbound webhook events, one type per supported topic."""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class OrderCreate:
    shop_domain: str
    record: Dict[str, Any]


@dataclass(frozen=True)
class ProductUpdate:
    shop_domain: str
    record: Dict[str, Any]


@dataclass(frozen=True)
class CustomerCreate:
    shop_domain: str
    record: Dict[str, Any]


@dataclass(frozen=True)
class AppUninstalled:
    shop_domain: str


WebhookEvent = Union[OrderCreate, ProductUpdate, CustomerCreate, AppUninstalled]

TOPICS = {
    "orders/create": OrderCreate,
    "products/update": ProductUpdate,
    "customers/create": CustomerCreate,
    "app/uninstalled": AppUninstalled,
}


def parse_event(topic: str, shop_domain: str, raw_body: bytes) -> Optional[WebhookEvent]:
    """Build the event for ``topic``, or None for topics we do not handle.

    Raises ValueError when the body is not a JSON object with an id.
    """
    event_type = TOPICS.get(topic)
    if event_type is None:
        return None
    if event_type is AppUninstalled:
        return AppUninstalled(shop_domain=shop_domain)
    record = json.loads(raw_body.decode("utf-8"))
    if not isinstance(record, dict) or record.get("id") is None:
        raise ValueError(f"{topic} payload has no id")
    return event_type(shop_domain=shop_domain, record=record)
