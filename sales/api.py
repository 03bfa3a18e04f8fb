# sales/api.py

from core.api import api_view, iso, money, object_list, parse_date, parse_json, success

from .models import Order
from .services import SalesService


def serialize_order(order: Order) -> dict:
    return {
        "id": order.pk,
        "orderNumber": order.number,
        "customerName": order.customer_name,
        "managerId": order.manager_id,
        "managerName": order.manager.get_full_name() or order.manager.get_username(),
        "totalAmount": money(order.total_amount),
        "amountPaid": money(order.amount_paid),
        "balance": money(order.balance),
        "paymentStatus": order.payment_status,
        "notes": order.notes,
        "createdAt": iso(order.created_at),
        "items": [
            {
                "id": item.pk,
                "productId": item.product_id,
                "productName": item.product_name,
                "quantity": str(item.quantity),
                "unitPrice": money(item.unit_price),
                "subtotal": money(item.subtotal),
                "allocations": [
                    {"lotId": a.lot_id, "quantity": str(a.quantity), "unitCost": money(a.unit_cost)}
                    for a in item.allocations.all()
                ],
            }
            for item in order.items.all()
        ],
    }


@api_view(["GET", "POST"])
def order_collection(request, actor):
    if request.method == "POST":
        data = parse_json(request)
        items = [
            {"product_id": item.get("productId"), "quantity": item.get("quantity")}
            for item in object_list(data, "items")
        ]
        order = SalesService.create_order(
            data.get("customerName", ""),
            items,
            amount_paid=data.get("amountPaid", 0),
            notes=data.get("notes", ""),
            actor=actor,
        )
        return success(serialize_order(SalesService.get_order(order.pk, actor)), status=201)

    orders = SalesService.list_orders(
        actor,
        date_from=parse_date(request.GET.get("from"), "from"),
        date_to=parse_date(request.GET.get("to"), "to"),
        search=request.GET.get("search"),
    )
    return success([serialize_order(o) for o in orders])


@api_view(["GET"])
def order_detail(request, pk, actor):
    return success(serialize_order(SalesService.get_order(pk, actor)))
