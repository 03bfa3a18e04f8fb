# payments/models.py

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.models import TimeStampedModel


class Payment(TimeStampedModel):
    """
    One payment made to a supplier against a purchase order.

    Append-only: rows are created by payments.services.record_payment and
    never edited or deleted afterwards.
    """

    class Method(models.TextChoices):
        CASH = "Cash", _("Cash")
        CHEQUE = "Cheque", _("Cheque")
        BANK_TRANSFER = "Bank Transfer", _("Bank Transfer")
        MOBILE_MONEY = "Mobile Money", _("Mobile Money")
        CREDIT_CARD = "Credit Card", _("Credit Card")
        OTHER = "Other", _("Other")

    class MobileProvider(models.TextChoices):
        MPESA = "M-Pesa", _("M-Pesa")
        AIRTEL = "Airtel Money", _("Airtel Money")
        TIGO = "Tigo Pesa", _("Tigo Pesa")
        HALOPESA = "Halopesa", _("Halopesa")
        EZYPESA = "Ezy Pesa", _("Ezy Pesa")
        OTHER = "Other", _("Other")

    number = models.CharField(max_length=30, unique=True, editable=False, verbose_name=_("Payment number"))
    po = models.ForeignKey(
        "purchasing.PurchaseOrder",
        on_delete=models.PROTECT,
        related_name="payments",
        verbose_name=_("Purchase order"),
    )
    supplier = models.ForeignKey(
        "suppliers.Supplier",
        on_delete=models.PROTECT,
        related_name="payments",
        verbose_name=_("Supplier"),
    )
    amount = models.DecimalField(max_digits=14, decimal_places=2, verbose_name=_("Amount"))
    method = models.CharField(max_length=20, choices=Method.choices, verbose_name=_("Method"))
    paid_on = models.DateField(default=timezone.localdate, db_index=True, verbose_name=_("Payment date"))
    reference = models.CharField(max_length=100, blank=True, verbose_name=_("Reference"))

    # method-specific details
    cheque_number = models.CharField(max_length=50, blank=True, verbose_name=_("Cheque number"))
    mobile_provider = models.CharField(
        max_length=20,
        choices=MobileProvider.choices,
        blank=True,
        verbose_name=_("Mobile provider"),
    )
    mobile_number = models.CharField(max_length=30, blank=True, verbose_name=_("Mobile number"))
    bank_reference = models.CharField(max_length=100, blank=True, verbose_name=_("Bank reference"))

    notes = models.TextField(blank=True, verbose_name=_("Notes"))
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="recorded_payments",
        verbose_name=_("Recorded by"),
    )

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ("paid_on", "created_at", "pk")
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=Decimal("0")), name="payment_amount_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.number} ({self.amount})"

    def get_numbering_context(self) -> dict:
        return {"prefix": "PAY"}

    @property
    def method_details(self) -> str:
        if self.method == self.Method.CHEQUE:
            return self.cheque_number
        if self.method == self.Method.MOBILE_MONEY:
            return f"{self.mobile_provider} {self.mobile_number}".strip()
        if self.method == self.Method.BANK_TRANSFER:
            return self.bank_reference
        return self.reference
