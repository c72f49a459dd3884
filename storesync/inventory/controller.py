from decimal import Decimal, InvalidOperation

from quart import Blueprint, jsonify, request

from ..common.errors import InvalidInput
from ..common.http import owner_id, services, to_int

bp = Blueprint("inventory", __name__, url_prefix="/products")


def _price(value):
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidInput(f"Invalid price: {value}")


@bp.get("")
async def products_list():
    items = await services().products.list_products(owner_id(), category=request.args.get("category"))
    return jsonify({"products": [p.to_dict() for p in items]})


@bp.get("/search")
async def products_search():
    query = (request.args.get("q") or "").strip()
    if not query:
        raise InvalidInput("q is required")
    items = await services().products.search_products(owner_id(), query)
    return jsonify({"products": [p.to_dict() for p in items]})


@bp.get("/<int:product_id>")
async def product_detail(product_id: int):
    product = await services().products.get_product(owner_id(), product_id)
    return jsonify({"product": product.to_dict()})


@bp.post("")
async def product_create():
    data = await request.get_json(force=True) or {}
    if not data.get("name"):
        raise InvalidInput("name is required")
    product = await services().products.create_product(
        owner_id(),
        name=data["name"],
        price=_price(data.get("price")) or Decimal("0.00"),
        stock=to_int(data.get("stock"), "stock", default=0),
        description=data.get("description"),
        category=data.get("category"),
    )
    return jsonify({"product": product.to_dict()}), 201


@bp.put("/<int:product_id>")
async def product_update(product_id: int):
    data = await request.get_json(force=True) or {}
    product = await services().products.update_product(
        owner_id(),
        product_id,
        name=data.get("name"),
        price=_price(data.get("price")),
        stock=to_int(data["stock"], "stock") if "stock" in data else None,
        description=data.get("description"),
        category=data.get("category"),
    )
    return jsonify({"product": product.to_dict()})


@bp.delete("/<int:product_id>")
async def product_delete(product_id: int):
    await services().products.deactivate_product(owner_id(), product_id)
    return jsonify({"product_id": product_id, "active": False})
