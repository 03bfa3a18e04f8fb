import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class TimeStampedModel(models.Model):
    """
    created_at / updated_at for every back-office table.
    """
    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        verbose_name=_("Created at"),
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name=_("Updated at"),
    )

    class Meta:
        abstract = True


class UserStampedModel(models.Model):
    """
    created_by / updated_by, filled by services from the acting user.
    """
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="%(app_label)s_%(class)s_created",
        verbose_name=_("Created by"),
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="%(app_label)s_%(class)s_updated",
        verbose_name=_("Updated by"),
    )

    class Meta:
        abstract = True


class SoftDeleteModel(models.Model):
    """
    Soft delete flags for master data (products, categories, suppliers).

    Ledger rows (stock lots, purchase orders, payments) are never deleted,
    soft or otherwise; they are deactivated or cancelled instead.
    """
    is_deleted = models.BooleanField(
        default=False,
        verbose_name=_("Deleted?"),
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name=_("Deleted at"),
    )
    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="%(app_label)s_%(class)s_deleted",
        verbose_name=_("Deleted by"),
    )

    class Meta:
        abstract = True

    def soft_delete(self, user=None, save=True):
        if self.is_deleted:
            return
        self.is_deleted = True
        self.deleted_at = timezone.now()
        if user is not None:
            self.deleted_by = user
        if save:
            self.save(update_fields=["is_deleted", "deleted_at", "deleted_by"])


class BaseModel(TimeStampedModel, UserStampedModel, SoftDeleteModel):
    """
    Common base for back-office models.

    - public_id: UUID exposed to API clients next to the integer pk
    - timestamps, user stamps and soft delete flags
    """
    public_id = models.UUIDField(
        default=uuid.uuid4,
        unique=True,
        editable=False,
        db_index=True,
        verbose_name=_("Public ID"),
    )

    class Meta:
        abstract = True

    def stamp(self, user, *, creating: bool = False) -> None:
        """
        Fill user stamps from an authenticated user (no-op otherwise).
        """
        if user is None or not getattr(user, "is_authenticated", False):
            return
        if creating and not self.created_by_id:
            self.created_by = user
        self.updated_by = user
