# sales/managers.py
from django.db import models
from django.db.models import DecimalField, ExpressionWrapper, F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

MONEY = DecimalField(max_digits=14, decimal_places=2)


class OrderQuerySet(models.QuerySet):
    def for_manager(self, user):
        return self.filter(manager_id=getattr(user, "pk", user))

    def in_period(self, date_from=None, date_to=None):
        qs = self
        if date_from is not None:
            qs = qs.filter(created_at__date__gte=date_from)
        if date_to is not None:
            qs = qs.filter(created_at__date__lte=date_to)
        return qs

    def today(self):
        return self.filter(created_at__date=timezone.localdate())

    def search(self, query):
        q = (query or "").strip()
        if not q:
            return self
        return self.filter(Q(number__icontains=q) | Q(customer_name__icontains=q))

    def revenue(self):
        return self.aggregate(total=Coalesce(Sum("total_amount"), 0, output_field=MONEY))["total"]


class OrderManager(models.Manager.from_queryset(OrderQuerySet)):  # type: ignore[misc]
    pass


class AllocationQuerySet(models.QuerySet):
    def for_orders(self, orders):
        return self.filter(item__order__in=orders)

    def cost_of_goods(self):
        """
        Sum of quantity * unit_cost over the allocations.
        """
        cost = ExpressionWrapper(F("quantity") * F("unit_cost"), output_field=MONEY)
        return self.aggregate(total=Coalesce(Sum(cost), 0, output_field=MONEY))["total"]


class AllocationManager(models.Manager.from_queryset(AllocationQuerySet)):  # type: ignore[misc]
    pass
