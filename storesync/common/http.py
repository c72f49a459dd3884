from typing import Any, Optional

from quart import Quart, current_app, jsonify, request

from .errors import DomainError, InvalidInput

OWNER_HEADER = "X-Owner-Id"


def services():
    return current_app.services


def owner_id() -> int:
    # Authentication happens upstream; the gateway forwards the caller's id.
    return to_int(request.headers.get(OWNER_HEADER), OWNER_HEADER)


def to_int(value: Any, name: str, default: Optional[int] = None) -> int:
    if value is None or value == "":
        if default is not None:
            return default
        raise InvalidInput(f"{name} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer")


def register_error_handlers(app: Quart) -> None:
    @app.errorhandler(DomainError)
    async def domain_error(e: DomainError):
        return jsonify(e.to_dict()), e.status_code
