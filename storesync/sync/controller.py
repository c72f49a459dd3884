from quart import Blueprint, jsonify, request

from ..common.errors import InvalidInput
from ..common.http import owner_id, services

bp = Blueprint("sync", __name__, url_prefix="/sync")


@bp.post("/connection")
async def connection_put():
    data = await request.get_json(force=True) or {}
    shop_domain = (data.get("shop_domain") or "").strip()
    access_token = (data.get("access_token") or "").strip()
    if not shop_domain or not access_token:
        raise InvalidInput("shop_domain and access_token are required")
    conn = await services().registry.connect(owner_id(), shop_domain, access_token)
    return jsonify({"shop_domain": conn.shop_domain, "active": conn.is_active}), 201


@bp.post("/pull")
async def pull_post():
    report = await services().coordinator.pull_and_reconcile(owner_id())
    return jsonify(report.to_dict())
