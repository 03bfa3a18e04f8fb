# purchasing/api.py

from core.api import (
    api_view,
    iso,
    money,
    object_list,
    parse_date,
    parse_decimal,
    parse_json,
    success,
)
from payments.api import serialize_payment

from .models import PurchaseOrder, PurchaseOrderItem
from .services import PurchaseOrderService, get_po


# ============================================================
# Serializers
# ============================================================

def serialize_po_item(item: PurchaseOrderItem) -> dict:
    lots = list(item.received_lots)
    return {
        "id": item.pk,
        "lineNo": item.line_no,
        "productId": item.product_id,
        "productName": item.product_name,
        "quantity": str(item.quantity),
        "unitCost": money(item.unit_cost),
        "subtotal": money(item.subtotal),
        "quantityReceived": str(item.quantity_received),
        "remainingQuantity": str(item.remaining_quantity),
        "batchNumbers": [lot.batch_number for lot in lots],
        "receivedDates": [iso(lot.date_acquired) for lot in lots],
    }


def serialize_po(po: PurchaseOrder, *, detail: bool = False) -> dict:
    data = {
        "id": po.pk,
        "publicId": str(po.public_id),
        "poNumber": po.number,
        "supplier": {"id": po.supplier_id, "name": po.supplier.name},
        "authorId": po.author_id,
        "status": po.status,
        "paymentTerms": po.payment_terms,
        "totalCost": money(po.total_cost),
        "taxAmount": money(po.tax_amount),
        "shippingCost": money(po.shipping_cost),
        "discount": money(po.discount),
        "grandTotal": money(po.grand_total),
        "amountPaid": money(po.amount_paid),
        "balanceDue": money(po.balance_due),
        "paymentStatus": po.payment_status,
        "paymentPercentage": money(po.payment_percentage),
        "dueDate": iso(po.due_date),
        "isOverdue": po.is_overdue,
        "createdAt": iso(po.created_at),
    }
    if detail:
        data.update(
            {
                "submittedAt": iso(po.submitted_at),
                "approvedAt": iso(po.approved_at),
                "approvedBy": po.approved_by_id,
                "orderedAt": iso(po.ordered_at),
                "receivedAt": iso(po.received_at),
                "cancelledAt": iso(po.cancelled_at),
                "cancelledBy": po.cancelled_by_id,
                "cancellationReason": po.cancellation_reason,
                "notes": po.notes,
                "items": [serialize_po_item(item) for item in po.items.all()],
                "payments": [serialize_payment(p) for p in po.payments.all()],
            }
        )
    return data


def _detail(po) -> dict:
    return serialize_po(get_po(po.pk), detail=True)


# ============================================================
# Collection / detail
# ============================================================

@api_view(["GET", "POST"])
def po_collection(request, actor):
    if request.method == "POST":
        data = parse_json(request)
        items = [
            {
                "product_id": item.get("productId"),
                "quantity": item.get("quantity"),
                "unit_cost": item.get("unitCost"),
            }
            for item in object_list(data, "items")
        ]
        po = PurchaseOrderService.create(
            data.get("supplierId"),
            items,
            payment_terms=data.get("paymentTerms"),
            tax_amount=data.get("taxAmount", 0),
            shipping_cost=data.get("shippingCost", 0),
            discount=data.get("discount", 0),
            notes=data.get("notes", ""),
            actor=actor,
        )
        return success(_detail(po), status=201)

    params = request.GET
    qs = PurchaseOrderService.list_orders(
        status=params.get("status"),
        supplier=params.get("supplier"),
        payment_status=params.get("paymentStatus"),
        search=params.get("search"),
    )
    return success([serialize_po(po) for po in qs])


@api_view(["GET"])
def po_detail(request, pk, actor):
    return success(serialize_po(get_po(pk), detail=True))


@api_view(["GET"])
def dashboard_stats(request, actor):
    stats = PurchaseOrderService.dashboard_stats()
    return success(
        {
            "byStatus": stats["by_status"],
            "pendingApproval": stats["pending_approval"],
            "outstanding": {
                "count": stats["outstanding"]["count"],
                "amount": money(stats["outstanding"]["amount"]),
            },
            "overdue": {
                "count": stats["overdue"]["count"],
                "amount": money(stats["overdue"]["amount"]),
            },
            "thisMonth": {
                "count": stats["this_month"]["count"],
                "amount": money(stats["this_month"]["amount"]),
            },
        }
    )


# ============================================================
# Transitions
# ============================================================

@api_view(["PUT"])
def po_submit(request, pk, actor):
    return success(_detail(PurchaseOrderService.submit(pk, actor=actor)))


@api_view(["PUT"])
def po_approve(request, pk, actor):
    return success(_detail(PurchaseOrderService.approve(pk, actor=actor)))


@api_view(["PUT"])
def po_order(request, pk, actor):
    return success(_detail(PurchaseOrderService.mark_ordered(pk, actor=actor)))


@api_view(["PUT"])
def po_receive(request, pk, actor):
    data = parse_json(request)
    items = [
        {
            "po_item_id": item.get("poItemId"),
            "quantity": item.get("quantity"),
            "notes": item.get("notes", ""),
            "unit_price": item.get("unitPrice"),
            "expiry_date": parse_date(item.get("expiryDate"), f"items[{index}].expiryDate"),
        }
        for index, item in enumerate(object_list(data, "items"))
    ]
    po = PurchaseOrderService.receive(pk, items, notes=data.get("notes", ""), actor=actor)
    return success(_detail(po))


@api_view(["PUT"])
def po_cancel(request, pk, actor):
    data = parse_json(request)
    po = PurchaseOrderService.cancel(pk, data.get("reason", ""), actor=actor)
    return success(_detail(po))


@api_view(["POST"])
def po_payment(request, pk, actor):
    data = parse_json(request)
    details = {
        "paid_on": parse_date(data.get("paidOn"), "paidOn"),
        "reference": data.get("reference", ""),
        "cheque_number": data.get("chequeNumber", ""),
        "mobile_provider": data.get("mobileProvider", ""),
        "mobile_number": data.get("mobileNumber", ""),
        "bank_reference": data.get("bankReference", ""),
        "notes": data.get("notes", ""),
    }
    payment = PurchaseOrderService.add_payment(
        pk,
        parse_decimal(data.get("amount"), "amount"),
        data.get("method", ""),
        details,
        actor=actor,
    )
    return success(
        {"payment": serialize_payment(payment), "purchaseOrder": _detail(payment.po)},
        status=201,
    )
