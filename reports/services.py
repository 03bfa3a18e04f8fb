# reports/services.py
"""
Read-only dashboards. Each one reads inside a single transaction so the
figures come from one consistent snapshot.
"""
from __future__ import annotations

import datetime
from decimal import Decimal
from typing import Any, Optional

from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from accounts.policy import Action, authorize
from core.exceptions import BusinessValidationError
from expenses.models import ExpenseRecord
from inventory.services import inventory_summary
from payments.services import total_paid
from purchasing.models import PurchaseOrder
from sales.models import Order, OrderItemAllocation

MONEY_ZERO = Decimal("0.00")
RECENT_ORDERS = 5


def _check_period(date_from, date_to) -> None:
    if date_from and date_to and date_from > date_to:
        raise BusinessValidationError(
            "'from' must not be after 'to'.", details={"from": str(date_from), "to": str(date_to)}
        )


def boss_dashboard(
    actor,
    date_from: Optional[datetime.date] = None,
    date_to: Optional[datetime.date] = None,
) -> dict[str, Any]:
    authorize(actor, Action.REPORT_VIEW_FINANCIALS)
    _check_period(date_from, date_to)

    with transaction.atomic():
        orders = Order.objects.in_period(date_from, date_to)
        revenue = orders.revenue()
        order_count = orders.count()
        cogs = OrderItemAllocation.objects.for_orders(orders).cost_of_goods()
        expenses = ExpenseRecord.objects.in_period(date_from, date_to).total()

        outstanding = PurchaseOrder.objects.outstanding().aggregate(total=Sum("balance_due"))["total"]
        purchasing = {
            "outstanding_payables": outstanding or MONEY_ZERO,
            "overdue_count": PurchaseOrder.objects.overdue().count(),
            "pending_approval": PurchaseOrder.objects.filter(status=PurchaseOrder.Status.SUBMITTED).count(),
            "paid_in_period": total_paid(date_from, date_to),
        }
        inventory = inventory_summary()
        recent = list(Order.objects.select_related("manager").order_by("-created_at", "-pk")[:RECENT_ORDERS])

    gross_profit = revenue - cogs
    return {
        "period": {"from": date_from, "to": date_to},
        "financials": {
            "total_revenue": revenue,
            "cost_of_goods_sold": cogs,
            "total_expenses": expenses,
            "gross_profit": gross_profit,
            "net_profit": gross_profit - expenses,
            "order_count": order_count,
        },
        "purchasing": purchasing,
        "inventory": inventory,
        "recent_orders": recent,
    }


def manager_dashboard(actor) -> dict[str, Any]:
    today = timezone.localdate()
    with transaction.atomic():
        own_orders = Order.objects.for_manager(actor.user)
        todays = own_orders.today()
        open_pos = {
            row["status"]: row["n"]
            for row in PurchaseOrder.objects.authored_by(actor.user)
            .open()
            .values("status")
            .annotate(n=Count("pk"))
            .order_by("status")
        }
        expenses = ExpenseRecord.objects.for_manager(actor.user).this_month().total()
        inventory = inventory_summary()

    return {
        "date": today,
        "orders_today": {"count": todays.count(), "amount": todays.revenue()},
        "total_orders": own_orders.count(),
        "expenses_this_month": expenses,
        "low_stock_products": inventory["low_stock_products"],
        "open_purchase_orders": open_pos,
    }
