# inventory/api.py

from core.api import (
    api_view,
    iso,
    money,
    parse_date,
    parse_decimal,
    parse_int,
    parse_json,
    present_fields,
    success,
)
from core.exceptions import get_or_not_found

from . import services
from .models import Product, StockLot


# ============================================================
# Serializers
# ============================================================

def serialize_lot(lot: StockLot) -> dict:
    return {
        "id": lot.pk,
        "batchNumber": lot.batch_number,
        "productId": lot.product_id,
        "productName": lot.product.name,
        "poItemId": lot.po_item_id,
        "poId": lot.po_id,
        "unitCost": money(lot.unit_cost),
        "unitPrice": money(lot.unit_price),
        "quantity": str(lot.quantity),
        "initialQuantity": str(lot.initial_quantity),
        "dateAcquired": iso(lot.date_acquired),
        "expiryDate": iso(lot.expiry_date),
        "daysToExpiry": lot.days_to_expiry,
        "isActive": lot.is_active,
        "status": lot.status_label,
        "notes": lot.notes,
    }


def serialize_product(product: Product) -> dict:
    total = getattr(product, "total_stock_qty", None)
    if total is None:
        total = services.total_stock(product)
    return {
        "id": product.pk,
        "publicId": str(product.public_id),
        "code": product.code,
        "name": product.name,
        "description": product.description,
        "category": (
            {"id": product.category_id, "name": product.category.name}
            if product.category_id
            else None
        ),
        "unitOfMeasure": product.unit_of_measure,
        "minStockLevel": str(product.min_stock_level),
        "totalStock": str(total),
        "currentSellingPrice": money(services.current_selling_price(product)),
        "isLowStock": total < product.min_stock_level,
        "isActive": product.is_active,
    }


def _product_data(data: dict) -> dict:
    return present_fields(
        data,
        {
            "name": "name",
            "code": "code",
            "description": "description",
            "unit_of_measure": "unitOfMeasure",
            "min_stock_level": "minStockLevel",
            "category": "categoryId",
            "is_active": "isActive",
        },
    )


# ============================================================
# Products
# ============================================================

@api_view(["GET", "POST"])
def product_collection(request, actor):
    if request.method == "POST":
        product = services.create_product(_product_data(parse_json(request)), actor=actor)
        return success(serialize_product(product), status=201)

    qs = Product.objects.with_category().with_stock().search(request.GET.get("search"))
    if request.GET.get("active", "true").lower() != "all":
        qs = qs.filter(is_active=True)
    if request.GET.get("category"):
        qs = qs.filter(category_id=parse_int(request.GET["category"], "category"))
    if request.GET.get("lowStock") in ("1", "true"):
        qs = qs.low_stock()
    return success([serialize_product(p) for p in qs])


@api_view(["GET", "PUT", "DELETE"])
def product_detail(request, pk, actor):
    if request.method == "PUT":
        product = services.update_product(pk, _product_data(parse_json(request)), actor=actor)
        return success(serialize_product(product))
    if request.method == "DELETE":
        product = services.deactivate_product(pk, actor=actor)
        return success({"id": product.pk, "isActive": product.is_active, "isDeleted": product.is_deleted})

    product = services.resolve_product(pk)
    return success(serialize_product(product))


@api_view(["POST"])
def add_stock(request, pk, actor):
    data = parse_json(request)
    lot = services.add_lot(
        pk,
        unit_cost=data.get("unitCost"),
        quantity=data.get("quantity"),
        unit_price=data.get("unitPrice"),
        expiry_date=parse_date(data.get("expiryDate"), "expiryDate"),
        notes=data.get("notes", ""),
        actor=actor,
    )
    return success(serialize_lot(lot), status=201)


@api_view(["GET"])
def product_batches(request, pk, actor):
    lots = services.query_batches(pk, request.GET.get("status", "all"))
    return success([serialize_lot(lot) for lot in lots])


# ============================================================
# Categories
# ============================================================

@api_view(["GET", "POST"])
def category_collection(request, actor):
    if request.method == "POST":
        data = parse_json(request)
        category = services.create_category(
            data.get("name", ""), description=data.get("description", ""), actor=actor
        )
        return success({"id": category.pk, "name": category.name, "description": category.description}, status=201)

    return success([
        {"id": c.pk, "name": c.name, "description": c.description, "productCount": c.product_count}
        for c in services.list_categories()
    ])


# ============================================================
# Batches
# ============================================================

@api_view(["GET"])
def batch_search(request, actor):
    params = request.GET
    lots = services.search_batches(
        batch_number=params.get("batchNumber"),
        po=params.get("poId") or None,
        product_name=params.get("productName"),
        expiry_before=parse_date(params.get("expiryBefore"), "expiryBefore"),
        expiry_after=parse_date(params.get("expiryAfter"), "expiryAfter"),
    )
    return success([serialize_lot(lot) for lot in lots])


@api_view(["GET"])
def batch_expiring(request, actor):
    days = request.GET.get("days")
    lots = services.expiring_batches(parse_int(days, "days") if days else None)
    return success([serialize_lot(lot) for lot in lots])


@api_view(["PUT"])
def batch_adjust(request, pk, actor):
    data = parse_json(request)
    lot = get_or_not_found(StockLot.objects.all(), pk=pk)
    lot = services.adjust_lot(
        lot,
        new_quantity=parse_decimal(data.get("quantity"), "quantity"),
        reason=data.get("reason", ""),
        actor=actor,
    )
    return success(serialize_lot(lot))


@api_view(["PUT"])
def batch_retire(request, pk, actor):
    data = parse_json(request)
    lot = get_or_not_found(StockLot.objects.all(), pk=pk)
    lot = services.retire_lot(lot, reason=data.get("reason", ""), actor=actor)
    return success(serialize_lot(lot))
