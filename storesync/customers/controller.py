from quart import Blueprint, jsonify, request

from ..common.errors import InvalidInput
from ..common.http import owner_id, services, to_int

bp = Blueprint("customers", __name__, url_prefix="/customers")


@bp.get("")
async def customers_list():
    customers = await services().customers.list_customers(owner_id())
    return jsonify({"customers": [c.to_dict() for c in customers]})


@bp.get("/search")
async def customers_search():
    query = (request.args.get("q") or "").strip()
    if not query:
        raise InvalidInput("q is required")
    customers = await services().customers.search_customers(owner_id(), query)
    return jsonify({"customers": [c.to_dict() for c in customers]})


@bp.get("/<int:customer_id>")
async def customer_detail(customer_id: int):
    customer = await services().customers.get_customer(owner_id(), customer_id)
    return jsonify({"customer": customer.to_dict()})


@bp.post("")
async def customer_create():
    data = await request.get_json(force=True) or {}
    if not data.get("name"):
        raise InvalidInput("name is required")
    customer = await services().customers.create_customer(
        owner_id(),
        name=data["name"],
        email=data.get("email"),
        phone=data.get("phone"),
        address=data.get("address"),
    )
    return jsonify({"customer": customer.to_dict()}), 201


@bp.put("/<int:customer_id>")
async def customer_update(customer_id: int):
    data = await request.get_json(force=True) or {}
    customer = await services().customers.update_customer(
        owner_id(),
        customer_id,
        name=data.get("name"),
        email=data.get("email"),
        phone=data.get("phone"),
        address=data.get("address"),
    )
    return jsonify({"customer": customer.to_dict()})


@bp.post("/<int:customer_id>/loyalty/<action>")
async def customer_loyalty(customer_id: int, action: str):
    data = await request.get_json(force=True) or {}
    points = to_int(data.get("points"), "points")
    if points <= 0:
        raise InvalidInput("points must be positive")
    if action == "add":
        customer = await services().customers.add_loyalty_points(owner_id(), customer_id, points)
    elif action == "use":
        customer = await services().customers.use_loyalty_points(owner_id(), customer_id, points)
    else:
        return jsonify({"error": "unknown_action"}), 404
    return jsonify({"customer": customer.to_dict()})
