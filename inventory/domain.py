from dataclasses import dataclass
from decimal import Decimal

from core.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class LowStockDetected(DomainEvent):
    """
    A sale pushed a product's stock below its minimum level.
    """
    product_id: int
    product_name: str
    total_stock: Decimal
    min_stock_level: Decimal
