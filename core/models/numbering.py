# core/models/numbering.py
from django.core.exceptions import ValidationError
from django.db import models
from django.utils.translation import gettext_lazy as _

# Default patterns used when no scheme row has been configured yet.
DEFAULT_SCHEMES: dict[str, tuple[str, str]] = {
    "purchasing.PurchaseOrder": ("PO-{year}-{seq:04d}", "year"),
    "purchasing.GoodsReceipt": ("GRN-{year}-{seq:04d}", "year"),
    "payments.Payment": ("PAY-{year}-{seq:04d}", "year"),
    "sales.Order": ("SO-{year}-{seq:05d}", "year"),
}


class NumberingScheme(models.Model):
    """
    Numbering configuration per model.

    Example row:
    - model_label: "purchasing.PurchaseOrder"
    - field_name: "number"
    - pattern: "PO-{year}-{seq:04d}"
    - reset: "year"
    """

    class ResetPolicy(models.TextChoices):
        NEVER = "never", _("Never reset")
        YEAR = "year", _("Reset every year")
        MONTH = "month", _("Reset every month")

    model_label = models.CharField(
        max_length=100,
        verbose_name=_("Model label"),
        help_text=_("e.g. purchasing.PurchaseOrder"),
    )
    field_name = models.CharField(max_length=50, default="number", verbose_name=_("Field name"))
    pattern = models.CharField(
        max_length=100,
        verbose_name=_("Pattern"),
        help_text=_("e.g. PO-{year}-{seq:04d} or SO-{year}-{month:02d}-{seq:03d}"),
    )
    reset = models.CharField(
        max_length=10,
        choices=ResetPolicy.choices,
        default=ResetPolicy.YEAR,
        verbose_name=_("Reset policy"),
    )
    start = models.PositiveIntegerField(default=1, verbose_name=_("Start value"))
    is_active = models.BooleanField(default=True, verbose_name=_("Active"))
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Numbering scheme")
        verbose_name_plural = _("Numbering schemes")
        unique_together = ("model_label", "field_name")

    def __str__(self) -> str:
        return f"{self.model_label} → {self.pattern}"

    def clean(self):
        super().clean()
        if "{seq" not in self.pattern:
            raise ValidationError(_("The pattern must contain the {seq} placeholder."))

    @classmethod
    def get_for_instance(cls, instance: models.Model, field_name: str = "number") -> "NumberingScheme":
        """
        Active scheme for the instance's model, created from DEFAULT_SCHEMES
        on first use.
        """
        label = instance._meta.label
        try:
            return cls.objects.get(model_label=label, field_name=field_name, is_active=True)
        except cls.DoesNotExist:
            pattern, reset = DEFAULT_SCHEMES.get(label, ("{seq:06d}", cls.ResetPolicy.NEVER))
            scheme, _created = cls.objects.get_or_create(
                model_label=label,
                field_name=field_name,
                defaults={"pattern": pattern, "reset": reset, "start": 1, "is_active": True},
            )
            return scheme


class NumberSequence(models.Model):
    """
    Last used value for a sequence key and period.

    key is a model label ("purchasing.PurchaseOrder") or a scoped key
    ("inventory.StockLot:42" for per-product batch sequences).
    """

    key = models.CharField(max_length=100)
    period = models.CharField(max_length=16, blank=True)
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = ("key", "period")

    def __str__(self) -> str:
        if self.period:
            return f"{self.key} [{self.period}] → {self.last_value}"
        return f"{self.key} → {self.last_value}"
