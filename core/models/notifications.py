# core/models/notifications.py

from django.conf import settings
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .base import TimeStampedModel


class NotificationQuerySet(models.QuerySet):
    def for_user(self, user):
        return self.filter(recipient=user)

    def unread(self):
        return self.filter(is_read=False)


class Notification(TimeStampedModel):
    """
    In-app notification for back-office users.

    Created by domain event handlers (PO approved / cancelled, low stock).
    """

    class Levels(models.TextChoices):
        INFO = "info", _("Info")
        SUCCESS = "success", _("Success")
        WARNING = "warning", _("Warning")
        ERROR = "error", _("Error")

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        verbose_name=_("Recipient"),
    )

    verb = models.CharField(
        max_length=255,
        verbose_name=_("Verb"),
        help_text=_("Short description of the event, e.g. 'PO-2025-0004 approved'."),
    )

    level = models.CharField(
        max_length=20,
        choices=Levels.choices,
        default=Levels.INFO,
        verbose_name=_("Level"),
    )

    target_content_type = models.ForeignKey(
        ContentType,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="notification_targets",
        verbose_name=_("Target content type"),
    )
    target_object_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        verbose_name=_("Target object ID"),
    )
    target = GenericForeignKey("target_content_type", "target_object_id")

    is_read = models.BooleanField(default=False, verbose_name=_("Is read?"))
    read_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Read at"))

    objects = NotificationQuerySet.as_manager()

    class Meta:
        verbose_name = _("Notification")
        verbose_name_plural = _("Notifications")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.recipient} - {self.verb[:50]}"

    def mark_as_read(self) -> None:
        if self.is_read:
            return
        self.is_read = True
        self.read_at = timezone.now()
        self.save(update_fields=["is_read", "read_at"])
