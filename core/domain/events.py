# core/domain/events.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    Base class for in-process domain events.

        @dataclass(frozen=True, kw_only=True)
        class PurchaseOrderApproved(DomainEvent):
            po_id: int
            number: str
    """
    occurred_at: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)
