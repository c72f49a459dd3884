from typing import Any, Dict, Optional


class DomainError(Exception):
    """Local invariant violation. Always surfaces to the caller."""

    status_code = 400
    code = "domain_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class NotFound(DomainError):
    status_code = 404
    code = "not_found"

    def __init__(self, kind: str, ident: Any):
        super().__init__(f"{kind} not found with id: {ident}")
        self.kind = kind
        self.ident = ident

    def to_dict(self) -> Dict[str, Any]:
        return {"error": f"{self.kind}_not_found", "id": self.ident}


class InvalidInput(DomainError):
    code = "invalid_input"


class InvalidOrder(InvalidInput):
    code = "invalid_order"


class Duplicate(DomainError):
    status_code = 409
    code = "duplicate"


class InsufficientStock(DomainError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: Optional[int] = None):
        super().__init__(f"Insufficient stock for product {product_id}: requested {requested}")
        self.product_id = product_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.code, "product_id": self.product_id, "requested": self.requested}
        if self.available is not None:
            data["available"] = self.available
        return data


class InsufficientLoyaltyPoints(DomainError):
    status_code = 409
    code = "insufficient_loyalty_points"


class IllegalTransition(DomainError):
    status_code = 409
    code = "illegal_transition"

    def __init__(self, current, target):
        super().__init__(f"Cannot move order from {current.value} to {target.value}")
        self.current = current
        self.target = target

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "from": self.current.value, "to": self.target.value}


class AlreadyCancelled(DomainError):
    status_code = 409
    code = "already_cancelled"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} is already cancelled")
        self.order_id = order_id


class RemoteError(Exception):
    """Any failed call to the remote shop platform."""


class RemoteUnavailable(RemoteError):
    pass


class RemoteRejected(RemoteError):
    def __init__(self, status: int, body: str = ""):
        super().__init__(f"Remote rejected request with status {status}: {body[:200]}")
        self.status = status
        self.body = body


class SignatureInvalid(Exception):
    pass
