from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

ORDER = "order"
PRODUCT = "product"
CUSTOMER = "customer"

KINDS = (ORDER, PRODUCT, CUSTOMER)


@dataclass(frozen=True)
class PushTask:
    """A local entity whose current state should be pushed to the remote."""

    kind: str
    owner_id: int
    entity_id: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PushTask":
        kind = str(data["kind"])
        if kind not in KINDS:
            raise ValueError(f"Unknown push kind: {kind}")
        return cls(kind=kind, owner_id=int(data["owner_id"]), entity_id=int(data["entity_id"]))


# Accepts a task without waiting on any remote call.
Submit = Optional[Callable[[PushTask], None]]
