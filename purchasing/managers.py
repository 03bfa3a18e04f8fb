# purchasing/managers.py
from __future__ import annotations

import datetime
from typing import Optional

from django.db import models
from django.db.models import Q
from django.utils import timezone


class PurchaseOrderQuerySet(models.QuerySet):
    def with_related(self):
        return self.select_related("supplier", "author", "approved_by", "cancelled_by")

    def for_supplier(self, supplier):
        return self.filter(supplier_id=getattr(supplier, "pk", supplier))

    def authored_by(self, user):
        return self.filter(author_id=getattr(user, "pk", user))

    def not_cancelled(self):
        return self.exclude(status=self.model.Status.CANCELLED)

    def open(self):
        """
        Not yet in a terminal state.
        """
        return self.exclude(status__in=self.model.TERMINAL_STATUSES)

    def outstanding(self):
        return self.not_cancelled().filter(balance_due__gt=0)

    def overdue(self, on: Optional[datetime.date] = None):
        on = on or timezone.localdate()
        return self.outstanding().filter(due_date__isnull=False, due_date__lt=on)

    def in_period(self, date_from=None, date_to=None):
        qs = self
        if date_from is not None:
            qs = qs.filter(created_at__date__gte=date_from)
        if date_to is not None:
            qs = qs.filter(created_at__date__lte=date_to)
        return qs

    def search(self, query: Optional[str]):
        q = (query or "").strip()
        if not q:
            return self
        return self.filter(Q(number__icontains=q) | Q(supplier__name__icontains=q))


class PurchaseOrderManager(models.Manager.from_queryset(PurchaseOrderQuerySet)):  # type: ignore[misc]
    pass


class PurchaseOrderItemQuerySet(models.QuerySet):
    def incomplete(self):
        return self.filter(quantity_received__lt=models.F("quantity"))


class PurchaseOrderItemManager(models.Manager.from_queryset(PurchaseOrderItemQuerySet)):  # type: ignore[misc]
    pass
