"""
Work items and per-item results exchanged between the job source,
the worker pool and the result sink.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Price posted downstream when no price could be extracted
PRICE_SENTINEL = -1.0


class ResultStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WorkItem:
    """One product to scrape, as returned by the backend."""

    id: str
    url: str

    @classmethod
    def from_dict(cls, raw: Any) -> "WorkItem":
        """Build from a backend product object; raises ValueError if malformed."""
        if not isinstance(raw, dict):
            raise ValueError(f"expected object, got {type(raw).__name__}")

        item_id = raw.get("id")
        url = raw.get("url")
        if item_id is None or str(item_id).strip() == "":
            raise ValueError("missing id")
        if not isinstance(url, str) or not url.strip():
            raise ValueError(f"missing url for item {item_id}")

        return cls(id=str(item_id), url=url.strip())


@dataclass(frozen=True)
class ItemResult:
    """Outcome of processing one WorkItem.

    Exactly one ItemResult exists per dispatched item. ``data`` holds the
    processor-defined fields; ``missing`` names required fields that could
    not be extracted (partial results only).
    """

    item_id: str
    status: ResultStatus
    data: Dict[str, Any] = field(default_factory=dict)
    missing: Tuple[str, ...] = ()
    error: Optional[str] = None
    duration_ms: int = 0

    @classmethod
    def success(cls, item_id: str, data: Dict[str, Any], duration_ms: int = 0) -> "ItemResult":
        return cls(item_id, ResultStatus.SUCCESS, dict(data), duration_ms=duration_ms)

    @classmethod
    def partial(
        cls,
        item_id: str,
        data: Dict[str, Any],
        missing: Tuple[str, ...],
        duration_ms: int = 0,
    ) -> "ItemResult":
        return cls(item_id, ResultStatus.PARTIAL, dict(data), tuple(missing), duration_ms=duration_ms)

    @classmethod
    def failure(cls, item_id: str, error: str, duration_ms: int = 0) -> "ItemResult":
        return cls(item_id, ResultStatus.FAILED, error=error, duration_ms=duration_ms)

    @classmethod
    def cancelled(cls, item_id: str, reason: str = "cancelled", duration_ms: int = 0) -> "ItemResult":
        return cls(item_id, ResultStatus.CANCELLED, error=reason, duration_ms=duration_ms)

    @property
    def ok(self) -> bool:
        return self.status in (ResultStatus.SUCCESS, ResultStatus.PARTIAL)

    def to_payload(self) -> Dict[str, Any]:
        """Wire format expected by the backend's update-price endpoint."""
        price = self.data.get("price")
        return {
            "product_id": self.item_id,
            "name": self.data.get("name") or "",
            "price": float(price) if price is not None else PRICE_SENTINEL,
            "image_url": self.data.get("image_url") or "",
        }
