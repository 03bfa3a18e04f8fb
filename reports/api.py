# reports/api.py

from core.api import api_view, iso, money, parse_date, success

from . import services


def _low_stock(rows):
    return [
        {
            "id": row["id"],
            "name": row["name"],
            "totalStock": str(row["total_stock"]),
            "minStockLevel": str(row["min_stock_level"]),
        }
        for row in rows
    ]


@api_view(["GET"])
def boss_dashboard(request, actor):
    report = services.boss_dashboard(
        actor,
        parse_date(request.GET.get("from"), "from"),
        parse_date(request.GET.get("to"), "to"),
    )
    fin = report["financials"]
    pur = report["purchasing"]
    inv = report["inventory"]
    return success(
        {
            "period": {"from": iso(report["period"]["from"]), "to": iso(report["period"]["to"])},
            "financials": {
                "totalRevenue": money(fin["total_revenue"]),
                "costOfGoodsSold": money(fin["cost_of_goods_sold"]),
                "totalExpenses": money(fin["total_expenses"]),
                "grossProfit": money(fin["gross_profit"]),
                "netProfit": money(fin["net_profit"]),
                "orderCount": fin["order_count"],
            },
            "purchasing": {
                "outstandingPayables": money(pur["outstanding_payables"]),
                "overdueCount": pur["overdue_count"],
                "pendingApproval": pur["pending_approval"],
                "paidInPeriod": money(pur["paid_in_period"]),
            },
            "inventory": {
                "totalProducts": inv["total_products"],
                "totalQuantityInStock": str(inv["total_quantity_in_stock"]),
                "lowStockItems": inv["low_stock_items"],
                "lowStockProducts": _low_stock(inv["low_stock_products"]),
            },
            "recentOrders": [
                {
                    "id": order.pk,
                    "orderNumber": order.number,
                    "customerName": order.customer_name,
                    "totalAmount": money(order.total_amount),
                    "paymentStatus": order.payment_status,
                    "createdAt": iso(order.created_at),
                }
                for order in report["recent_orders"]
            ],
        }
    )


@api_view(["GET"])
def manager_dashboard(request, actor):
    report = services.manager_dashboard(actor)
    return success(
        {
            "date": iso(report["date"]),
            "ordersToday": {
                "count": report["orders_today"]["count"],
                "amount": money(report["orders_today"]["amount"]),
            },
            "totalOrders": report["total_orders"],
            "expensesThisMonth": money(report["expenses_this_month"]),
            "lowStockProducts": _low_stock(report["low_stock_products"]),
            "openPurchaseOrders": report["open_purchase_orders"],
        }
    )
