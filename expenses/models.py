# expenses/models.py
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.models import TimeStampedModel

from .managers import ExpenseRecordManager, ExpenseTypeManager

# types that only a Boss may record against, created restricted on first use
RESTRICTED_TYPE_NAMES = ("Salary",)


class ExpenseType(TimeStampedModel):
    """
    Open vocabulary of expense names; usage_count drives suggestions.
    """

    name = models.CharField(max_length=100, verbose_name=_("Name"))
    usage_count = models.PositiveIntegerField(default=0, editable=False, verbose_name=_("Times used"))
    is_restricted = models.BooleanField(
        default=False,
        verbose_name=_("Restricted"),
        help_text=_("Only Boss users may record expenses of this type."),
    )

    objects = ExpenseTypeManager()

    class Meta:
        verbose_name = _("Expense type")
        verbose_name_plural = _("Expense types")
        ordering = ("-usage_count", "name")
        constraints = [
            models.UniqueConstraint(Lower("name"), name="expense_type_name_ci_unique"),
        ]

    def __str__(self) -> str:
        return self.name


class ExpenseRecord(TimeStampedModel):
    expense_type = models.ForeignKey(
        ExpenseType,
        on_delete=models.PROTECT,
        related_name="records",
        verbose_name=_("Type"),
    )
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="expense_records",
        verbose_name=_("Recorded by"),
    )
    amount = models.DecimalField(max_digits=14, decimal_places=2, verbose_name=_("Amount"))
    expense_date = models.DateField(default=timezone.localdate, db_index=True, verbose_name=_("Date"))
    notes = models.TextField(blank=True, verbose_name=_("Notes"))

    objects = ExpenseRecordManager()

    class Meta:
        verbose_name = _("Expense")
        verbose_name_plural = _("Expenses")
        ordering = ("-expense_date", "-pk")
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=Decimal("0")), name="expense_amount_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.expense_type} {self.amount} ({self.expense_date})"
