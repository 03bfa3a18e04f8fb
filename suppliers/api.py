# suppliers/api.py

from core.api import api_view, iso, money, parse_date, parse_json, present_fields, success
from payments import services as payment_services
from payments.api import serialize_payment

from . import services
from .models import Supplier


def serialize_supplier(supplier: Supplier) -> dict:
    credit = services.credit_summary(supplier)
    return {
        "id": supplier.pk,
        "publicId": str(supplier.public_id),
        "name": supplier.name,
        "contactPerson": supplier.contact_person,
        "phone": supplier.phone,
        "email": supplier.email,
        "address": supplier.address,
        "taxNumber": supplier.tax_number,
        "paymentTerms": supplier.payment_terms,
        "creditLimit": money(credit["credit_limit"]),
        "currentBalance": money(credit["current_balance"]),
        "availableCredit": money(credit["available_credit"]),
        "creditUtilization": money(credit["credit_utilization"]),
        "utilizationLevel": credit["utilization_level"],
        "unlimitedCredit": credit["unlimited"],
        "isActive": supplier.is_active,
        "notes": supplier.notes,
    }


def _supplier_data(data: dict) -> dict:
    return present_fields(
        data,
        {
            "name": "name",
            "contact_person": "contactPerson",
            "phone": "phone",
            "email": "email",
            "address": "address",
            "tax_number": "taxNumber",
            "credit_limit": "creditLimit",
            "payment_terms": "paymentTerms",
            "is_active": "isActive",
            "notes": "notes",
        },
    )


@api_view(["GET", "POST"])
def supplier_collection(request, actor):
    if request.method == "POST":
        supplier = services.create_supplier(_supplier_data(parse_json(request)), actor=actor)
        return success(serialize_supplier(supplier), status=201)

    suppliers = services.list_suppliers(
        search=request.GET.get("search"),
        include_inactive=request.GET.get("all") in ("1", "true"),
    )
    return success([serialize_supplier(s) for s in suppliers])


@api_view(["GET", "PUT", "DELETE"])
def supplier_detail(request, pk, actor):
    if request.method == "PUT":
        supplier = services.update_supplier(pk, _supplier_data(parse_json(request)), actor=actor)
        return success(serialize_supplier(supplier))
    if request.method == "DELETE":
        supplier = services.deactivate_supplier(pk, actor=actor)
        return success({"id": supplier.pk, "isActive": supplier.is_active, "isDeleted": supplier.is_deleted})

    return success(serialize_supplier(services.resolve_supplier(pk)))


@api_view(["GET"])
def supplier_statement(request, pk, actor):
    result = payment_services.statement(
        pk,
        parse_date(request.GET.get("from"), "from"),
        parse_date(request.GET.get("to"), "to"),
    )
    totals = result["totals"]
    return success(
        {
            "supplier": serialize_supplier(result["supplier"]),
            "purchaseOrders": [
                {
                    "id": po.pk,
                    "poNumber": po.number,
                    "status": po.status,
                    "createdAt": iso(po.created_at),
                    "dueDate": iso(po.due_date),
                    "grandTotal": money(po.grand_total),
                    "amountPaid": money(po.amount_paid),
                    "balanceDue": money(po.balance_due),
                    "paymentStatus": po.payment_status,
                }
                for po in result["purchase_orders"]
            ],
            "payments": [serialize_payment(p) for p in result["payments"]],
            "totals": {
                "ordered": money(totals["ordered"]),
                "paid": money(totals["paid"]),
                "outstanding": money(totals["outstanding"]),
                "poCount": totals["po_count"],
                "paymentCount": totals["payment_count"],
            },
        }
    )
