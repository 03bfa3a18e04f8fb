# purchasing/models.py

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from solo.models import SingletonModel

from core.domain.hooks import on_transition
from core.models import BaseModel, StatefulDomainModel, TimeStampedModel
from suppliers.models import PaymentTerms

from .domain import (
    PurchaseOrderApproved,
    PurchaseOrderCancelled,
    PurchaseOrderReceived,
    PurchaseOrderSubmitted,
)
from .managers import PurchaseOrderItemManager, PurchaseOrderManager

# ============================================================
# Constants
# ============================================================
MONEY_ZERO = Decimal("0.00")
DECIMAL_ZERO = Decimal("0.000")


# ============================================================
# Purchasing Settings
# ============================================================
class PurchasingSettings(SingletonModel):
    default_payment_terms = models.CharField(
        max_length=30,
        choices=PaymentTerms.choices,
        default=PaymentTerms.CREDIT_30,
        verbose_name=_("Default payment terms"),
    )
    utilization_warning_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("70.00"),
        verbose_name=_("Credit utilization warning %"),
    )
    utilization_critical_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("90.00"),
        verbose_name=_("Credit utilization critical %"),
    )

    class Meta:
        verbose_name = _("Purchasing settings")

    def __str__(self) -> str:
        return "Purchasing settings"


# ============================================================
# Purchase Order
# ============================================================
class PurchaseOrder(StatefulDomainModel, BaseModel):
    """
    Purchase order header.

    Lifecycle:
        Draft -> Submitted -> Approved -> Ordered -> Partially Received -> Received
        any non-terminal state except Received -> Cancelled

    Status and money fields are written only by
    purchasing.services.PurchaseOrderService and payments.services.
    """

    class Status(models.TextChoices):
        DRAFT = "Draft", _("Draft")
        SUBMITTED = "Submitted", _("Submitted")
        APPROVED = "Approved", _("Approved")
        ORDERED = "Ordered", _("Ordered")
        PARTIALLY_RECEIVED = "Partially Received", _("Partially Received")
        RECEIVED = "Received", _("Received")
        CANCELLED = "Cancelled", _("Cancelled")

    class PaymentStatus(models.TextChoices):
        UNPAID = "Unpaid", _("Unpaid")
        PARTIAL = "Partial", _("Partial")
        PAID = "Paid", _("Paid")

    TERMINAL_STATUSES = (Status.RECEIVED, Status.CANCELLED)
    RECEIVABLE_STATUSES = (Status.ORDERED, Status.PARTIALLY_RECEIVED)

    number = models.CharField(
        max_length=30,
        unique=True,
        editable=False,
        verbose_name=_("PO number"),
    )
    supplier = models.ForeignKey(
        "suppliers.Supplier",
        on_delete=models.PROTECT,
        related_name="purchase_orders",
        verbose_name=_("Supplier"),
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="authored_purchase_orders",
        verbose_name=_("Author"),
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
        verbose_name=_("Status"),
    )
    payment_terms = models.CharField(
        max_length=30,
        choices=PaymentTerms.choices,
        default=PaymentTerms.CREDIT_30,
        verbose_name=_("Payment terms"),
    )

    # ---- totals ----
    total_cost = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Total cost"))
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Tax"))
    shipping_cost = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Shipping"))
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Discount"))
    grand_total = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Grand total"))

    # ---- payments ----
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Amount paid"))
    balance_due = models.DecimalField(max_digits=14, decimal_places=2, default=MONEY_ZERO, verbose_name=_("Balance due"))
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
        db_index=True,
        verbose_name=_("Payment status"),
    )

    # ---- workflow ----
    submitted_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Submitted at"))
    approved_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Approved at"))
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="approved_purchase_orders",
        verbose_name=_("Approved by"),
    )
    ordered_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Ordered at"))
    received_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Received at"))
    cancelled_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Cancelled at"))
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="cancelled_purchase_orders",
        verbose_name=_("Cancelled by"),
    )
    cancellation_reason = models.TextField(blank=True, verbose_name=_("Cancellation reason"))
    due_date = models.DateField(null=True, blank=True, verbose_name=_("Due date"))
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    objects = PurchaseOrderManager()

    class Meta:
        verbose_name = _("Purchase order")
        verbose_name_plural = _("Purchase orders")
        ordering = ("-created_at", "-pk")
        indexes = [
            models.Index(fields=["supplier", "status"], name="po_supplier_status_idx"),
            models.Index(fields=["due_date"], name="po_due_date_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount_paid__gte=0), name="po_amount_paid_non_negative"),
            models.CheckConstraint(condition=Q(amount_paid__lte=F("grand_total")), name="po_amount_paid_lte_total"),
            models.CheckConstraint(condition=Q(balance_due__gte=0), name="po_balance_due_non_negative"),
            models.CheckConstraint(
                condition=Q(tax_amount__gte=0) & Q(shipping_cost__gte=0) & Q(discount__gte=0),
                name="po_charges_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return self.number or f"PO #{self.pk}"

    # ------------------------------------------------------
    # Derived values
    # ------------------------------------------------------
    @staticmethod
    def compute_grand_total(total_cost, tax_amount, shipping_cost, discount) -> Decimal:
        return total_cost + tax_amount + shipping_cost - discount

    @classmethod
    def payment_status_for(cls, amount_paid: Decimal, grand_total: Decimal) -> str:
        if amount_paid <= 0:
            return cls.PaymentStatus.UNPAID
        if amount_paid >= grand_total:
            return cls.PaymentStatus.PAID
        return cls.PaymentStatus.PARTIAL

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def payment_percentage(self) -> Decimal:
        if self.grand_total <= 0:
            return MONEY_ZERO
        return (self.amount_paid / self.grand_total * Decimal("100")).quantize(Decimal("0.01"))

    @property
    def is_overdue(self) -> bool:
        return (
            self.status != self.Status.CANCELLED
            and self.balance_due > 0
            and self.due_date is not None
            and self.due_date < timezone.localdate()
        )

    def get_numbering_context(self) -> dict:
        return {"prefix": "PO"}

    # ------------------------------------------------------
    # Transition hooks (run after commit)
    # ------------------------------------------------------
    @on_transition(Status.DRAFT, Status.SUBMITTED)
    def _on_submitted(self):
        self.emit(PurchaseOrderSubmitted(po_id=self.pk, number=self.number, grand_total=self.grand_total))

    @on_transition(Status.SUBMITTED, Status.APPROVED)
    def _on_approved(self):
        self.emit(PurchaseOrderApproved(po_id=self.pk, number=self.number, author_id=self.author_id))

    @on_transition(None, Status.RECEIVED)
    def _on_received(self):
        self.emit(PurchaseOrderReceived(po_id=self.pk, number=self.number, author_id=self.author_id))

    @on_transition(None, Status.CANCELLED)
    def _on_cancelled(self):
        self.emit(
            PurchaseOrderCancelled(
                po_id=self.pk,
                number=self.number,
                author_id=self.author_id,
                reason=self.cancellation_reason,
            )
        )


class PurchaseOrderItem(TimeStampedModel):
    po = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.PROTECT,
        related_name="items",
        verbose_name=_("Purchase order"),
    )
    line_no = models.PositiveIntegerField(default=1, verbose_name=_("Line"))
    product = models.ForeignKey(
        "inventory.Product",
        on_delete=models.PROTECT,
        related_name="po_items",
        verbose_name=_("Product"),
    )
    product_name = models.CharField(max_length=255, verbose_name=_("Product name (snapshot)"))
    quantity = models.DecimalField(max_digits=12, decimal_places=3, verbose_name=_("Ordered quantity"))
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, verbose_name=_("Unit cost"))
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, verbose_name=_("Subtotal"))
    quantity_received = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=DECIMAL_ZERO,
        verbose_name=_("Quantity received"),
    )

    objects = PurchaseOrderItemManager()

    class Meta:
        verbose_name = _("Purchase order item")
        verbose_name_plural = _("Purchase order items")
        ordering = ("po", "line_no", "pk")
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="po_item_quantity_positive"),
            models.CheckConstraint(condition=Q(unit_cost__gt=0), name="po_item_unit_cost_positive"),
            models.CheckConstraint(condition=Q(quantity_received__gte=0), name="po_item_received_non_negative"),
            models.CheckConstraint(
                condition=Q(quantity_received__lte=F("quantity")),
                name="po_item_received_lte_ordered",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.po} / {self.product_name} x {self.quantity}"

    @property
    def remaining_quantity(self) -> Decimal:
        return self.quantity - self.quantity_received

    @property
    def is_complete(self) -> bool:
        return self.quantity_received >= self.quantity

    @property
    def received_lots(self):
        return self.lots.order_by("sequence")

    @property
    def batch_numbers(self) -> list[str]:
        return [lot.batch_number for lot in self.received_lots]

    @property
    def received_dates(self) -> list:
        return [lot.date_acquired for lot in self.received_lots]


# ============================================================
# Goods receipts
# ============================================================
class GoodsReceipt(TimeStampedModel):
    """
    One receive() call: which quantities arrived, and the lots they became.
    """

    number = models.CharField(max_length=30, unique=True, editable=False, verbose_name=_("Receipt number"))
    po = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.PROTECT,
        related_name="receipts",
        verbose_name=_("Purchase order"),
    )
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="goods_receipts",
        verbose_name=_("Received by"),
    )
    received_at = models.DateTimeField(default=timezone.now, verbose_name=_("Received at"))
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    class Meta:
        verbose_name = _("Goods receipt")
        verbose_name_plural = _("Goods receipts")
        ordering = ("po", "received_at", "pk")

    def __str__(self) -> str:
        return self.number


class GoodsReceiptLine(models.Model):
    receipt = models.ForeignKey(
        GoodsReceipt,
        on_delete=models.PROTECT,
        related_name="lines",
        verbose_name=_("Receipt"),
    )
    po_item = models.ForeignKey(
        PurchaseOrderItem,
        on_delete=models.PROTECT,
        related_name="receipt_lines",
        verbose_name=_("PO item"),
    )
    quantity = models.DecimalField(max_digits=12, decimal_places=3, verbose_name=_("Quantity"))
    lot = models.OneToOneField(
        "inventory.StockLot",
        on_delete=models.PROTECT,
        related_name="receipt_line",
        verbose_name=_("Stock lot"),
    )
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    class Meta:
        verbose_name = _("Goods receipt line")
        verbose_name_plural = _("Goods receipt lines")
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="grn_line_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.receipt} / {self.po_item.product_name} x {self.quantity}"
