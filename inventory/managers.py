# inventory/managers.py
from __future__ import annotations

import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from django.db import models
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.managers import SoftDeleteQuerySet

if TYPE_CHECKING:
    from .models import Product, ProductCategory, StockLot

DECIMAL_ZERO = Decimal("0.000")


# ============================================================
# ProductCategory Manager
# ============================================================
class ProductCategoryQuerySet(SoftDeleteQuerySet, models.QuerySet["ProductCategory"]):
    def active(self) -> "ProductCategoryQuerySet":
        return self.visible().filter(is_active=True)


class ProductCategoryManager(models.Manager.from_queryset(ProductCategoryQuerySet)):  # type: ignore[misc]
    def get_queryset(self) -> ProductCategoryQuerySet:
        return super().get_queryset().visible()


# ============================================================
# Product Manager
# ============================================================
class ProductQuerySet(SoftDeleteQuerySet, models.QuerySet["Product"]):
    def active(self) -> "ProductQuerySet":
        return self.visible().filter(is_active=True)

    def with_category(self) -> "ProductQuerySet":
        return self.select_related("category")

    def with_stock(self) -> "ProductQuerySet":
        """
        Annotate total_stock_qty from active lots (never from a cached column).
        """
        return self.annotate(
            total_stock_qty=Coalesce(
                Sum("lots__quantity", filter=Q(lots__is_active=True)),
                Value(DECIMAL_ZERO),
                output_field=DecimalField(max_digits=14, decimal_places=3),
            )
        )

    def low_stock(self) -> "ProductQuerySet":
        from django.db.models import F

        return self.with_stock().filter(total_stock_qty__lt=F("min_stock_level"))

    def search(self, query: Optional[str]) -> "ProductQuerySet":
        q = (query or "").strip()
        if not q:
            return self
        return self.filter(Q(code__icontains=q) | Q(name__icontains=q))


class ProductManager(models.Manager.from_queryset(ProductQuerySet)):  # type: ignore[misc]
    def get_queryset(self) -> ProductQuerySet:
        return super().get_queryset().visible()


# ============================================================
# StockLot Manager
# ============================================================
class StockLotQuerySet(models.QuerySet["StockLot"]):
    def active(self) -> "StockLotQuerySet":
        """
        Active flag set and not expired.
        """
        today = timezone.localdate()
        return self.filter(is_active=True).filter(
            Q(expiry_date__isnull=True) | Q(expiry_date__gte=today)
        )

    def sellable(self) -> "StockLotQuerySet":
        return self.filter(is_active=True, quantity__gt=0)

    def inactive(self) -> "StockLotQuerySet":
        return self.filter(is_active=False)

    def expired(self, on: Optional[datetime.date] = None) -> "StockLotQuerySet":
        """
        expiry_date in the past, whatever the active flag says.
        """
        on = on or timezone.localdate()
        return self.filter(expiry_date__isnull=False, expiry_date__lt=on)

    def expiring_within(self, days: int) -> "StockLotQuerySet":
        today = timezone.localdate()
        return self.filter(
            is_active=True,
            expiry_date__isnull=False,
            expiry_date__gte=today,
            expiry_date__lte=today + datetime.timedelta(days=days),
        ).order_by("expiry_date", "pk")

    def for_product(self, product) -> "StockLotQuerySet":
        return self.filter(product=product)

    def fifo(self) -> "StockLotQuerySet":
        return self.order_by("date_acquired", "sequence", "pk")

    def newest_first(self) -> "StockLotQuerySet":
        return self.order_by("-date_acquired", "-sequence", "-pk")

    def total_quantity(self) -> Decimal:
        return self.aggregate(t=Sum("quantity"))["t"] or DECIMAL_ZERO


class StockLotManager(models.Manager.from_queryset(StockLotQuerySet)):  # type: ignore[misc]
    pass
