# core/models/audit.py
from django.conf import settings
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models
from django.utils.translation import gettext_lazy as _

from .base import TimeStampedModel


class AuditLog(TimeStampedModel):
    """
    Append-only record of business events:
    PO transitions, receipts, payments, stock additions and adjustments.

    - action: short code describing what happened
    - actor: who did it
    - target: any model instance (GenericForeignKey)
    - extra: JSON payload (amounts as strings, batch numbers, statuses...)
    """

    class Action(models.TextChoices):
        CREATE = "create", _("Create")
        UPDATE = "update", _("Update")
        STATUS_CHANGE = "status_change", _("Status change")
        PAYMENT = "payment", _("Payment")
        STOCK = "stock", _("Stock movement")
        ADJUSTMENT = "adjustment", _("Stock adjustment")
        NOTIFICATION = "notification", _("Notification")
        OTHER = "other", _("Other")

    action = models.CharField(
        max_length=32,
        choices=Action.choices,
        verbose_name=_("Action"),
        db_index=True,
    )

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="audit_logs",
        verbose_name=_("Actor"),
    )

    target_content_type = models.ForeignKey(
        ContentType,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="audit_logs",
        verbose_name=_("Target type"),
    )
    target_object_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        verbose_name=_("Target ID"),
    )
    target = GenericForeignKey("target_content_type", "target_object_id")

    message = models.TextField(blank=True, verbose_name=_("Message"))

    extra = models.JSONField(default=dict, blank=True, verbose_name=_("Extra data"))

    class Meta:
        verbose_name = _("Audit log entry")
        verbose_name_plural = _("Audit log")
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=["actor", "created_at"]),
            models.Index(fields=["target_content_type", "target_object_id", "created_at"]),
            models.Index(fields=["action", "created_at"]),
        ]

    def __str__(self) -> str:
        base = f"[{self.action}]"
        if self.message:
            return f"{base} {self.message[:80]}"
        return f"{base} #{self.pk}"
