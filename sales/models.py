# sales/models.py
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from core.models import TimeStampedModel

from .managers import AllocationManager, OrderManager

MONEY_ZERO = Decimal("0.00")


class Order(TimeStampedModel):
    """
    A sale to a walk-in customer, fulfilled from stock lots (FIFO).
    """

    class PaymentStatus(models.TextChoices):
        CLEARED = "Cleared", _("Cleared")
        PARTIAL = "Partial", _("Partial")
        PENDING = "Pending", _("Pending")

    number = models.CharField(max_length=30, unique=True, editable=False, verbose_name=_("Order number"))
    customer_name = models.CharField(max_length=255, verbose_name=_("Customer"))
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales_orders",
        verbose_name=_("Manager"),
    )
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Total"))
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Amount paid"))
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
        verbose_name=_("Payment status"),
    )
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    objects = OrderManager()

    class Meta:
        verbose_name = _("Sales order")
        verbose_name_plural = _("Sales orders")
        ordering = ("-created_at", "-pk")
        constraints = [
            models.CheckConstraint(condition=Q(amount_paid__gte=0), name="order_amount_paid_non_negative"),
            models.CheckConstraint(condition=Q(amount_paid__lte=F("total_amount")), name="order_amount_paid_lte_total"),
        ]

    def __str__(self) -> str:
        return self.number

    def get_numbering_context(self) -> dict:
        return {"prefix": "SO"}

    @classmethod
    def payment_status_for(cls, amount_paid: Decimal, total: Decimal) -> str:
        if amount_paid >= total:
            return cls.PaymentStatus.CLEARED
        if amount_paid > 0:
            return cls.PaymentStatus.PARTIAL
        return cls.PaymentStatus.PENDING

    @property
    def balance(self) -> Decimal:
        return self.total_amount - self.amount_paid

    @property
    def cost_of_goods(self) -> Decimal:
        return OrderItemAllocation.objects.filter(item__order=self).cost_of_goods()


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items", verbose_name=_("Order"))
    product = models.ForeignKey(
        "inventory.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
        verbose_name=_("Product"),
    )
    product_name = models.CharField(max_length=255, verbose_name=_("Product name (snapshot)"))
    quantity = models.DecimalField(max_digits=12, decimal_places=3, verbose_name=_("Quantity"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Unit price"))
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, verbose_name=_("Subtotal"))

    class Meta:
        verbose_name = _("Order item")
        verbose_name_plural = _("Order items")
        ordering = ("order", "pk")
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="order_item_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.product_name} x {self.quantity}"


class OrderItemAllocation(models.Model):
    """
    Which lot an order item was taken from, at what cost.
    """

    item = models.ForeignKey(OrderItem, on_delete=models.CASCADE, related_name="allocations", verbose_name=_("Item"))
    lot = models.ForeignKey(
        "inventory.StockLot",
        on_delete=models.PROTECT,
        related_name="allocations",
        verbose_name=_("Stock lot"),
    )
    quantity = models.DecimalField(max_digits=12, decimal_places=3, verbose_name=_("Quantity"))
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Unit cost"))

    objects = AllocationManager()

    class Meta:
        verbose_name = _("Lot allocation")
        verbose_name_plural = _("Lot allocations")
        ordering = ("item", "pk")
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="allocation_quantity_positive"),
        ]

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost
