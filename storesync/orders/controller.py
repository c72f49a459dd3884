from datetime import datetime, timezone

from quart import Blueprint, jsonify, request

from ..common.errors import InvalidInput
from ..common.http import owner_id, services, to_int
from .model import OrderStatus
from .service import LineItemRequest

bp = Blueprint("orders", __name__, url_prefix="/orders")


def _status(value) -> OrderStatus:
    try:
        return OrderStatus(str(value or "").strip().upper())
    except ValueError:
        raise InvalidInput(f"Unknown order status: {value}")


def _timestamp(value, name: str) -> datetime:
    if not value:
        raise InvalidInput(f"{name} is required")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise InvalidInput(f"{name} must be an ISO-8601 datetime")
    # Naive values are read as UTC; stored timestamps are UTC.
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@bp.get("")
async def orders_list():
    status = request.args.get("status")
    customer_id = request.args.get("customer_id")
    orders = await services().orders.list_orders(
        owner_id(),
        status=_status(status) if status else None,
        customer_id=to_int(customer_id, "customer_id") if customer_id else None,
    )
    return jsonify({"orders": [o.to_dict() for o in orders]})


@bp.get("/date-range")
async def orders_in_range():
    start = _timestamp(request.args.get("start"), "start")
    end = _timestamp(request.args.get("end"), "end")
    if end < start:
        raise InvalidInput("end must not be before start")
    orders = await services().orders.list_orders(owner_id(), created_from=start, created_to=end)
    return jsonify({"orders": [o.to_dict() for o in orders]})


@bp.get("/<int:order_id>")
async def order_detail(order_id: int):
    order = await services().orders.get_order(owner_id(), order_id)
    return jsonify({"order": order.to_dict()})


@bp.post("")
async def order_create():
    data = await request.get_json(force=True) or {}
    items = [
        LineItemRequest(
            product_id=to_int(item.get("product_id"), "product_id"),
            quantity=to_int(item.get("quantity"), "quantity"),
        )
        for item in data.get("items") or []
    ]
    order = await services().orders.create_order(
        owner_id(),
        to_int(data.get("customer_id"), "customer_id"),
        items,
        shipping_address=data.get("shipping_address"),
        billing_address=data.get("billing_address"),
    )
    return jsonify({"order": order.to_dict()}), 201


@bp.put("/<int:order_id>/status")
async def order_status_put(order_id: int):
    data = await request.get_json(force=True, silent=True) or {}
    target = _status(data.get("status") or request.args.get("status"))
    order = await services().orders.transition(owner_id(), order_id, target)
    return jsonify({"order": order.to_dict()})


@bp.post("/<int:order_id>/cancel")
async def order_cancel(order_id: int):
    order = await services().orders.cancel_order(owner_id(), order_id)
    return jsonify({"order": order.to_dict()})


@bp.get("/stats/count/<status>")
async def order_count(status: str):
    count = await services().orders.count_by_status(owner_id(), _status(status))
    return jsonify({"status": status.upper(), "count": count})


@bp.get("/stats/revenue/<status>")
async def order_revenue(status: str):
    revenue = await services().orders.revenue_by_status(owner_id(), _status(status))
    return jsonify({"status": status.upper(), "revenue": str(revenue)})
