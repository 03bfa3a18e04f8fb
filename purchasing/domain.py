# purchasing/domain.py
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from core.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderSubmitted(DomainEvent):
    """
    A manager submitted a PO; Boss users are asked to approve it.
    """
    po_id: int
    number: str
    grand_total: Decimal


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderApproved(DomainEvent):
    po_id: int
    number: str
    author_id: Optional[int]


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderCancelled(DomainEvent):
    po_id: int
    number: str
    author_id: Optional[int]
    reason: str


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderReceived(DomainEvent):
    """
    Every item is fully received.
    """
    po_id: int
    number: str
    author_id: Optional[int]
