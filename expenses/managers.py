# expenses/managers.py
from django.db import models
from django.db.models import DecimalField, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone


class ExpenseTypeQuerySet(models.QuerySet):
    def named(self, name: str):
        return self.filter(name__iexact=(name or "").strip())

    def starting_with(self, prefix: str):
        prefix = (prefix or "").strip()
        return self.filter(name__istartswith=prefix) if prefix else self

    def by_popularity(self):
        return self.order_by("-usage_count", "name")


class ExpenseTypeManager(models.Manager.from_queryset(ExpenseTypeQuerySet)):  # type: ignore[misc]
    pass


class ExpenseRecordQuerySet(models.QuerySet):
    def for_manager(self, user):
        return self.filter(manager_id=getattr(user, "pk", user))

    def in_period(self, date_from=None, date_to=None):
        qs = self
        if date_from is not None:
            qs = qs.filter(expense_date__gte=date_from)
        if date_to is not None:
            qs = qs.filter(expense_date__lte=date_to)
        return qs

    def this_month(self):
        today = timezone.localdate()
        return self.filter(expense_date__year=today.year, expense_date__month=today.month)

    def total(self):
        return self.aggregate(
            total=Coalesce(Sum("amount"), 0, output_field=DecimalField(max_digits=14, decimal_places=2))
        )["total"]


class ExpenseRecordManager(models.Manager.from_queryset(ExpenseRecordQuerySet)):  # type: ignore[misc]
    pass
