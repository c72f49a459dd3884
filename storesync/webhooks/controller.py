from quart import Blueprint, jsonify, request

from ..common.http import services

bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")

HMAC_HEADER = "X-Shopify-Hmac-Sha256"
TOPIC_HEADER = "X-Shopify-Topic"
SHOP_HEADER = "X-Shopify-Shop-Domain"


@bp.post("/<path:topic>")
async def webhook_post(topic: str):
    raw_body = await request.get_data()
    result = await services().webhooks.ingest(
        raw_body,
        request.headers.get(HMAC_HEADER),
        request.headers.get(TOPIC_HEADER) or topic,
        request.headers.get(SHOP_HEADER),
    )
    return jsonify({"outcome": result.outcome.value, "detail": result.detail}), result.status_code
