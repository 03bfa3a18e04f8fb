# suppliers/managers.py
from typing import Optional

from django.db import models
from django.db.models import Q

from core.managers import SoftDeleteQuerySet


class SupplierQuerySet(SoftDeleteQuerySet):
    def active(self):
        return self.visible().filter(is_active=True)

    def with_balance(self):
        return self.filter(current_balance__gt=0)

    def search(self, query: Optional[str]):
        q = (query or "").strip()
        if not q:
            return self
        return self.filter(
            Q(name__icontains=q)
            | Q(contact_person__icontains=q)
            | Q(email__icontains=q)
            | Q(phone__icontains=q)
        )


class SupplierManager(models.Manager.from_queryset(SupplierQuerySet)):  # type: ignore[misc]
    def get_queryset(self):
        return super().get_queryset().visible()
