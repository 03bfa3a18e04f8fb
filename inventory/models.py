# inventory/models.py

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from solo.models import SingletonModel

from core.models import BaseModel, TimeStampedModel, UserStampedModel

from inventory.managers import (
    ProductCategoryManager,
    ProductManager,
    StockLotManager,
)

# ============================================================
# Constants
# ============================================================
DECIMAL_ZERO = Decimal("0.000")
MONEY_ZERO = Decimal("0.00")


# ============================================================
# Inventory Settings
# ============================================================
class InventorySettings(SingletonModel):
    default_markup_percent = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal("30.00"),
        verbose_name=_("Default markup %"),
        help_text=_("Used to derive a lot's selling price when none is given."),
    )
    fallback_selling_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=MONEY_ZERO,
        verbose_name=_("Fallback selling price"),
        help_text=_("Price shown for products that never had a lot."),
    )
    batch_prefix = models.CharField(max_length=10, default="LOT", verbose_name=_("Batch number prefix"))
    expiry_warning_days = models.PositiveIntegerField(
        default=30,
        verbose_name=_("Expiry warning (days)"),
    )

    class Meta:
        verbose_name = _("Inventory settings")

    def __str__(self) -> str:
        return "Inventory settings"


# ============================================================
# Product Categories
# ============================================================
class ProductCategory(BaseModel):
    name = models.CharField(max_length=200, verbose_name=_("Category name"))
    description = models.TextField(blank=True, verbose_name=_("Description"))
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    objects = ProductCategoryManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name = _("Product category")
        verbose_name_plural = _("Product categories")
        ordering = ("name",)
        indexes = [
            models.Index(fields=["is_deleted", "is_active"], name="prodcat_del_active_idx"),
        ]

    def __str__(self) -> str:
        return self.name


# ============================================================
# Products
# ============================================================
class Product(BaseModel):
    """
    Catalogue item. Stock and selling price are never stored here: they
    are derived from the product's lots (see inventory.services).
    """

    category = models.ForeignKey(
        ProductCategory,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="products",
        verbose_name=_("Category"),
    )
    code = models.CharField(
        max_length=50,
        blank=True,
        default="",
        verbose_name=_("Product code"),
        help_text=_("Optional; unique when set."),
    )
    name = models.CharField(max_length=255, verbose_name=_("Product name"))
    description = models.TextField(blank=True, verbose_name=_("Description"))
    unit_of_measure = models.CharField(max_length=20, default="pcs", verbose_name=_("Unit of measure"))
    min_stock_level = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=DECIMAL_ZERO,
        verbose_name=_("Minimum stock level"),
    )
    last_selling_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        editable=False,
        verbose_name=_("Last known selling price"),
        help_text=_("Unit price of the most recent lot, kept after the lot runs out."),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))

    objects = ProductManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name = _("Product")
        verbose_name_plural = _("Products")
        ordering = ("name", "pk")
        indexes = [
            models.Index(fields=["is_deleted", "is_active"], name="product_del_active_idx"),
            models.Index(fields=["name"], name="product_name_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["code"],
                condition=~Q(code=""),
                name="uniq_product_code_when_set",
            ),
            models.CheckConstraint(
                condition=Q(min_stock_level__gte=0),
                name="product_min_stock_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"[{self.code}] {self.name}" if self.code else self.name

    @property
    def batch_code(self) -> str:
        return self.code or f"P{self.pk:05d}"

    @property
    def total_stock(self) -> Decimal:
        from inventory.services import total_stock

        return total_stock(self)

    @property
    def current_selling_price(self) -> Decimal:
        from inventory.services import current_selling_price

        return current_selling_price(self)

    @property
    def is_low_stock(self) -> bool:
        from inventory.services import is_low_stock

        return is_low_stock(self)


# ============================================================
# Stock lots (batches)
# ============================================================
class StockLot(TimeStampedModel, UserStampedModel):
    """
    A cost-tracked quantity of a product acquired at one time.

    Lots are never deleted. ``quantity`` only goes down through sales or a
    Boss reconciliation; ``initial_quantity`` never changes.
    """

    batch_number = models.CharField(
        max_length=64,
        unique=True,
        editable=False,
        verbose_name=_("Batch number"),
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="lots",
        verbose_name=_("Product"),
    )
    po_item = models.ForeignKey(
        "purchasing.PurchaseOrderItem",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="lots",
        verbose_name=_("Purchase order item"),
    )
    sequence = models.PositiveIntegerField(
        editable=False,
        verbose_name=_("Sequence"),
        help_text=_("Per-product creation order."),
    )
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Unit cost"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Unit selling price"))
    quantity = models.DecimalField(max_digits=12, decimal_places=3, verbose_name=_("Remaining quantity"))
    initial_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        editable=False,
        verbose_name=_("Initial quantity"),
    )
    date_acquired = models.DateTimeField(default=timezone.now, verbose_name=_("Date acquired"))
    expiry_date = models.DateField(null=True, blank=True, verbose_name=_("Expiry date"))
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))
    deactivated_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Deactivated at"))
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    objects = StockLotManager()

    class Meta:
        verbose_name = _("Stock lot")
        verbose_name_plural = _("Stock lots")
        ordering = ("product", "date_acquired", "sequence")
        indexes = [
            models.Index(fields=["product", "is_active", "date_acquired"], name="lot_product_fifo_idx"),
            models.Index(fields=["expiry_date"], name="lot_expiry_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["product", "sequence"], name="uniq_lot_product_sequence"),
            models.CheckConstraint(condition=Q(quantity__gte=0), name="lot_quantity_non_negative"),
            models.CheckConstraint(
                condition=Q(quantity__lte=models.F("initial_quantity")),
                name="lot_quantity_lte_initial",
            ),
            models.CheckConstraint(condition=Q(unit_cost__gt=0), name="lot_unit_cost_positive"),
            models.CheckConstraint(condition=Q(initial_quantity__gt=0), name="lot_initial_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.batch_number} ({self.quantity})"

    @property
    def is_expired(self) -> bool:
        return self.expiry_date is not None and self.expiry_date < timezone.localdate()

    @property
    def days_to_expiry(self):
        if self.expiry_date is None:
            return None
        return (self.expiry_date - timezone.localdate()).days

    @property
    def po_id(self):
        return self.po_item.po_id if self.po_item_id else None

    @property
    def status_label(self) -> str:
        if not self.is_active:
            return "inactive"
        if self.is_expired:
            return "expired"
        return "active"
