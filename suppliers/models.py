# suppliers/models.py
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from core.models import BaseModel

from .managers import SupplierManager

MONEY_ZERO = Decimal("0.00")


class PaymentTerms(models.TextChoices):
    CASH_ON_DELIVERY = "Cash on Delivery", _("Cash on Delivery")
    CREDIT_7 = "Credit 7 days", _("Credit 7 days")
    CREDIT_15 = "Credit 15 days", _("Credit 15 days")
    CREDIT_30 = "Credit 30 days", _("Credit 30 days")
    CREDIT_60 = "Credit 60 days", _("Credit 60 days")
    CREDIT_90 = "Credit 90 days", _("Credit 90 days")


_CREDIT_DAYS_RE = re.compile(r"^Credit (\d+) days$")


def credit_days(terms: str) -> Optional[int]:
    """
    "Credit 30 days" -> 30; terms without a credit window -> None.
    """
    match = _CREDIT_DAYS_RE.match(terms or "")
    return int(match.group(1)) if match else None


class Supplier(BaseModel):
    """
    Supplier with a running payable balance.

    current_balance is the sum of balance_due over the supplier's
    non-cancelled purchase orders. It is only changed through
    suppliers.services.apply_balance_delta.
    """

    class UtilizationLevel(models.TextChoices):
        OK = "ok", _("OK")
        WARNING = "warning", _("Warning")
        CRITICAL = "critical", _("Critical")

    name = models.CharField(max_length=255, verbose_name=_("Supplier name"))
    contact_person = models.CharField(max_length=255, blank=True, verbose_name=_("Contact person"))
    phone = models.CharField(max_length=50, blank=True, verbose_name=_("Phone number"))
    email = models.EmailField(blank=True, verbose_name=_("Email"))
    address = models.TextField(blank=True, verbose_name=_("Address"))
    tax_number = models.CharField(max_length=50, blank=True, verbose_name=_("Tax ID"))
    credit_limit = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=MONEY_ZERO,
        verbose_name=_("Credit limit"),
        help_text=_("0 means unlimited."),
    )
    payment_terms = models.CharField(
        max_length=30,
        choices=PaymentTerms.choices,
        default=PaymentTerms.CREDIT_30,
        verbose_name=_("Default payment terms"),
    )
    current_balance = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=MONEY_ZERO,
        editable=False,
        verbose_name=_("Current balance"),
    )
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    objects = SupplierManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name = _("Supplier")
        verbose_name_plural = _("Suppliers")
        ordering = ("name", "pk")
        indexes = [
            models.Index(fields=["is_deleted", "is_active"], name="supplier_del_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(credit_limit__gte=0), name="supplier_credit_limit_non_negative"),
            models.CheckConstraint(condition=Q(current_balance__gte=0), name="supplier_balance_non_negative"),
        ]

    def __str__(self) -> str:
        return self.name

    @property
    def has_credit_limit(self) -> bool:
        return self.credit_limit > 0

    @property
    def available_credit(self) -> Optional[Decimal]:
        """
        None when the limit is unlimited (0).
        """
        if not self.has_credit_limit:
            return None
        return max(MONEY_ZERO, self.credit_limit - self.current_balance)

    @property
    def credit_utilization(self) -> Decimal:
        if not self.has_credit_limit:
            return MONEY_ZERO
        ratio = self.current_balance / self.credit_limit * Decimal("100")
        return ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @property
    def utilization_level(self) -> str:
        from purchasing.models import PurchasingSettings

        config = PurchasingSettings.get_solo()
        utilization = self.credit_utilization
        if utilization >= config.utilization_critical_percent:
            return self.UtilizationLevel.CRITICAL
        if utilization >= config.utilization_warning_percent:
            return self.UtilizationLevel.WARNING
        return self.UtilizationLevel.OK
