# inventory/services.py

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone
from django.utils.translation import gettext as _

from accounts.policy import Action, authorize
from core.domain.dispatcher import emit
from core.exceptions import (
    BusinessValidationError,
    InsufficientStock,
    InvalidCost,
    InvalidQuantity,
    ProductNotFound,
)
from core.models import AuditLog
from core.services.audit import log_event
from core.services.locking import lock_row, lock_rows
from core.services.numbering import next_sequence_value

from .domain import LowStockDetected
from .models import InventorySettings, Product, ProductCategory, StockLot

logger = logging.getLogger(__name__)

DECIMAL_ZERO = Decimal("0.000")
QTY_PLACES = Decimal("0.001")
MONEY_PLACES = Decimal("0.01")

BATCH_STATUSES = ("all", "active", "expired", "inactive")
FIFO_ORDER = ("date_acquired", "sequence", "pk")


@dataclass(frozen=True)
class LotAllocation:
    """
    Quantity taken from one lot by a sale.
    """
    lot_id: int
    batch_number: str
    quantity: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return (self.quantity * self.unit_cost).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


# ============================================================
# Helpers
# ============================================================

def _as_decimal(value: Any, error_cls, field: str) -> Decimal:
    if isinstance(value, bool) or value is None or value == "":
        raise error_cls(details={"field": field})
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise error_cls(details={"field": field})
    if not result.is_finite():
        raise error_cls(details={"field": field})
    return result


def positive_quantity(value: Any, field: str = "quantity") -> Decimal:
    qty = _as_decimal(value, InvalidQuantity, field).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)
    if qty <= 0:
        raise InvalidQuantity(details={"field": field, "value": str(value)})
    return qty


def positive_cost(value: Any, field: str = "unit_cost") -> Decimal:
    cost = _as_decimal(value, InvalidCost, field).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    if cost <= 0:
        raise InvalidCost(details={"field": field, "value": str(value)})
    return cost


def resolve_product(product: Product | int | str) -> Product:
    """
    Accept a Product or a primary key; soft-deleted products are not found.
    """
    if isinstance(product, Product):
        return product
    try:
        pk = int(product)
    except (TypeError, ValueError):
        raise ProductNotFound(details={"product_id": str(product)})
    found = Product.objects.filter(pk=pk).first()
    if found is None:
        raise ProductNotFound(details={"product_id": pk})
    return found


def default_unit_price(unit_cost: Decimal, markup_percent: Optional[Decimal] = None) -> Decimal:
    """
    unit_cost * (1 + markup/100), rounded half-up to cents.
    """
    if markup_percent is None:
        markup_percent = InventorySettings.get_solo().default_markup_percent
    price = unit_cost * (Decimal("1") + Decimal(markup_percent) / Decimal("100"))
    return price.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def _next_batch_number(product: Product) -> tuple[int, str]:
    seq = next_sequence_value(key=f"{StockLot._meta.label}:{product.pk}")
    prefix = InventorySettings.get_solo().batch_prefix or "LOT"
    return seq, f"{prefix}-{product.batch_code}-{seq:05d}"


def _lot_audit_extra(lot: StockLot) -> dict[str, Any]:
    return {
        "batch_number": lot.batch_number,
        "product": lot.product_id,
        "quantity": str(lot.quantity),
        "unit_cost": str(lot.unit_cost),
        "unit_price": str(lot.unit_price),
        "po_item": lot.po_item_id,
    }


# ============================================================
# Stock lot ledger
# ============================================================

@transaction.atomic
def add_lot(
    product: Product | int,
    *,
    unit_cost: Any,
    quantity: Any,
    po_item=None,
    unit_price: Any = None,
    expiry_date: Optional[datetime.date] = None,
    notes: str = "",
    date_acquired: Optional[datetime.datetime] = None,
    actor=None,
) -> StockLot:
    """
    Create a new lot for ``product``.

    Manual stock-in passes only an actor; purchase order receipts also pass
    the PO item the lot was received against.
    """
    if actor is not None:
        authorize(actor, Action.STOCK_ADD)

    product = resolve_product(product)
    cost = positive_cost(unit_cost)
    qty = positive_quantity(quantity)
    if unit_price in (None, ""):
        price = default_unit_price(cost)
    else:
        price = _as_decimal(unit_price, BusinessValidationError, "unit_price").quantize(
            MONEY_PLACES, rounding=ROUND_HALF_UP
        )
        if price < 0:
            raise BusinessValidationError(
                _("Unit price cannot be negative."), details={"field": "unit_price"}
            )

    product = lock_row(Product.objects, pk=product.pk)
    sequence, batch_number = _next_batch_number(product)

    user = getattr(actor, "user", None)
    lot = StockLot(
        batch_number=batch_number,
        product=product,
        po_item=po_item,
        sequence=sequence,
        unit_cost=cost,
        unit_price=price,
        quantity=qty,
        initial_quantity=qty,
        expiry_date=expiry_date,
        notes=notes or "",
        created_by=user,
        updated_by=user,
    )
    if date_acquired is not None:
        lot.date_acquired = date_acquired
    lot.save()

    newest = StockLot.objects.for_product(product).newest_first().first()
    if newest is not None and product.last_selling_price != newest.unit_price:
        product.last_selling_price = newest.unit_price
        product.save(update_fields=["last_selling_price", "updated_at"])

    log_event(
        action=AuditLog.Action.STOCK,
        message=f"Stock lot {lot.batch_number} added ({lot.quantity} @ {lot.unit_cost})",
        actor=actor,
        target=lot,
        extra=_lot_audit_extra(lot),
    )
    return lot


@transaction.atomic
def deplete_for_sale(product: Product | int, quantity: Any, *, actor=None) -> list[LotAllocation]:
    """
    Take ``quantity`` from the product's active lots, oldest first.

    The product row is locked first, then its active lots in FIFO order,
    so two sales of the same product never read the same remaining
    quantity. Nothing is written when the active total is short.
    """
    product = resolve_product(product)
    requested = positive_quantity(quantity)

    product = lock_row(Product.objects, pk=product.pk)
    lots = lock_rows(
        StockLot.objects.for_product(product).filter(is_active=True, quantity__gt=0),
        order_by=FIFO_ORDER,
    )

    available = sum((lot.quantity for lot in lots), DECIMAL_ZERO)
    if available < requested:
        raise InsufficientStock(
            _("Not enough stock for %(product)s: requested %(requested)s, available %(available)s.")
            % {"product": product.name, "requested": requested, "available": available},
            details={
                "product_id": product.pk,
                "requested": str(requested),
                "available": str(available),
            },
        )

    now = timezone.now()
    remaining = requested
    allocations: list[LotAllocation] = []
    for lot in lots:
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)
        lot.quantity -= take
        update_fields = ["quantity", "updated_at"]
        if lot.quantity == 0:
            lot.is_active = False
            lot.deactivated_at = now
            update_fields += ["is_active", "deactivated_at"]
        lot.save(update_fields=update_fields)
        remaining -= take
        allocations.append(
            LotAllocation(
                lot_id=lot.pk,
                batch_number=lot.batch_number,
                quantity=take,
                unit_cost=lot.unit_cost,
            )
        )

    left = available - requested
    logger.info(
        "Depleted %s of product %s from %d lot(s), %s left",
        requested,
        product.pk,
        len(allocations),
        left,
    )

    if left < product.min_stock_level <= available:
        event = LowStockDetected(
            product_id=product.pk,
            product_name=product.name,
            total_stock=left,
            min_stock_level=product.min_stock_level,
        )
        transaction.on_commit(lambda: emit(event))

    return allocations


def query_batches(product: Product | int, status: str = "all"):
    """
    Lots of one product filtered by status.

    - active:   active flag set and not expired
    - expired:  expiry date in the past, whatever the active flag
    - inactive: active flag cleared
    """
    status = (status or "all").lower()
    if status not in BATCH_STATUSES:
        raise BusinessValidationError(
            _("Unknown batch status '%(status)s'.") % {"status": status},
            details={"status": status, "allowed": list(BATCH_STATUSES)},
        )

    product = resolve_product(product)
    qs = StockLot.objects.for_product(product).select_related("product", "po_item")
    if status == "active":
        qs = qs.active()
    elif status == "expired":
        qs = qs.expired()
    elif status == "inactive":
        qs = qs.inactive()
    return qs.newest_first()


def search_batches(
    *,
    batch_number: Optional[str] = None,
    po=None,
    product_name: Optional[str] = None,
    expiry_before: Optional[datetime.date] = None,
    expiry_after: Optional[datetime.date] = None,
):
    """
    Cross-product lot lookup; every filter is optional and they combine.
    """
    qs = StockLot.objects.select_related("product", "po_item")
    if batch_number:
        qs = qs.filter(batch_number__icontains=batch_number.strip())
    if po not in (None, ""):
        qs = qs.filter(po_item__po_id=getattr(po, "pk", po))
    if product_name:
        qs = qs.filter(product__in=Product.objects.search(product_name).values("pk"))
    if expiry_before is not None:
        qs = qs.filter(expiry_date__lt=expiry_before)
    if expiry_after is not None:
        qs = qs.filter(expiry_date__gt=expiry_after)
    return qs.newest_first()


def expiring_batches(days: Optional[int] = None):
    if days is None:
        days = InventorySettings.get_solo().expiry_warning_days
    if days < 0:
        raise BusinessValidationError(_("Days must not be negative."), details={"field": "days"})
    return StockLot.objects.expiring_within(days).select_related("product")


@transaction.atomic
def adjust_lot(lot: StockLot | int, *, new_quantity: Any, reason: str, actor) -> StockLot:
    """
    Reconcile a lot's remaining quantity with a physical count.
    """
    authorize(actor, Action.STOCK_ADJUST)
    reason = (reason or "").strip()
    if not reason:
        raise BusinessValidationError(_("A reason is required."), details={"field": "reason"})

    new_qty = _as_decimal(new_quantity, InvalidQuantity, "new_quantity").quantize(
        QTY_PLACES, rounding=ROUND_HALF_UP
    )

    lot_pk = getattr(lot, "pk", lot)
    product_id = StockLot.objects.filter(pk=lot_pk).values_list("product_id", flat=True).first()
    if product_id is not None:
        lock_row(Product.objects, pk=product_id)
    lot = lock_row(StockLot.objects, pk=lot_pk)

    if new_qty < 0 or new_qty > lot.initial_quantity:
        raise InvalidQuantity(
            _("Quantity must be between 0 and %(initial)s.") % {"initial": lot.initial_quantity},
            details={"new_quantity": str(new_qty), "initial_quantity": str(lot.initial_quantity)},
        )

    before = lot.quantity
    lot.quantity = new_qty
    if new_qty == 0:
        lot.is_active = False
        lot.deactivated_at = timezone.now()
    elif not lot.is_active:
        lot.is_active = True
        lot.deactivated_at = None
    lot.updated_by = actor.user
    lot.save()

    log_event(
        action=AuditLog.Action.ADJUSTMENT,
        message=f"Lot {lot.batch_number} adjusted {before} -> {new_qty}: {reason}",
        actor=actor,
        target=lot,
        extra={"before": str(before), "after": str(new_qty), "reason": reason},
    )
    return lot


@transaction.atomic
def retire_lot(lot: StockLot | int, *, reason: str, actor) -> StockLot:
    authorize(actor, Action.STOCK_ADJUST)
    reason = (reason or "").strip()
    if not reason:
        raise BusinessValidationError(_("A reason is required."), details={"field": "reason"})

    lot = lock_row(StockLot.objects, pk=getattr(lot, "pk", lot))
    if not lot.is_active:
        return lot

    lot.is_active = False
    lot.deactivated_at = timezone.now()
    lot.updated_by = actor.user
    lot.save(update_fields=["is_active", "deactivated_at", "updated_by", "updated_at"])

    log_event(
        action=AuditLog.Action.ADJUSTMENT,
        message=f"Lot {lot.batch_number} retired: {reason}",
        actor=actor,
        target=lot,
        extra={"quantity": str(lot.quantity), "reason": reason},
    )
    return lot


# ============================================================
# Derived product views (always computed from lots)
# ============================================================

def total_stock(product: Product | int) -> Decimal:
    product_id = getattr(product, "pk", product)
    return StockLot.objects.filter(product_id=product_id, is_active=True).total_quantity()


def current_selling_price(product: Product | int) -> Decimal:
    """
    Unit price of the most recently acquired active lot, else the last known
    price, else the configured fallback.
    """
    product = resolve_product(product)
    newest = (
        StockLot.objects.for_product(product)
        .filter(is_active=True)
        .newest_first()
        .values_list("unit_price", flat=True)
        .first()
    )
    if newest is not None:
        return newest
    last_known = (
        Product.all_objects.filter(pk=product.pk).values_list("last_selling_price", flat=True).first()
    )
    if last_known is not None:
        return last_known
    return InventorySettings.get_solo().fallback_selling_price


def is_low_stock(product: Product | int) -> bool:
    product = resolve_product(product)
    return total_stock(product) < product.min_stock_level


def inventory_summary() -> dict[str, Any]:
    with transaction.atomic():
        products = Product.objects.active()
        total_products = products.count()
        total_quantity = (
            StockLot.objects.filter(is_active=True, product__in=products.values("pk"))
            .aggregate(t=Sum("quantity"))["t"]
            or DECIMAL_ZERO
        )
        low_stock = [
            {
                "id": p.pk,
                "name": p.name,
                "total_stock": p.total_stock_qty,
                "min_stock_level": p.min_stock_level,
            }
            for p in products.low_stock().order_by("name")
        ]
    return {
        "total_products": total_products,
        "total_quantity_in_stock": total_quantity,
        "low_stock_items": len(low_stock),
        "low_stock_products": low_stock,
    }


# ============================================================
# Master data
# ============================================================

PRODUCT_FIELDS = ("name", "code", "description", "unit_of_measure", "min_stock_level", "category", "is_active")


def _clean_product_data(data: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key in PRODUCT_FIELDS:
        if key in data:
            cleaned[key] = data[key]

    if not partial or "name" in cleaned:
        name = (cleaned.get("name") or "").strip()
        if not name:
            raise BusinessValidationError(_("Product name is required."), details={"field": "name"})
        cleaned["name"] = name

    if "code" in cleaned:
        cleaned["code"] = (cleaned["code"] or "").strip()

    if "min_stock_level" in cleaned:
        level = _as_decimal(
            cleaned["min_stock_level"] if cleaned["min_stock_level"] is not None else "0",
            BusinessValidationError,
            "min_stock_level",
        )
        if level < 0:
            raise BusinessValidationError(
                _("Minimum stock level cannot be negative."), details={"field": "min_stock_level"}
            )
        cleaned["min_stock_level"] = level

    if "category" in cleaned and cleaned["category"] not in (None, ""):
        category = cleaned["category"]
        if not isinstance(category, ProductCategory):
            category = ProductCategory.objects.filter(pk=category).first()
            if category is None:
                raise BusinessValidationError(
                    _("Unknown category."), details={"field": "category"}
                )
        cleaned["category"] = category
    elif "category" in cleaned:
        cleaned["category"] = None

    return cleaned


def _check_code_free(code: str, exclude_pk: Optional[int] = None) -> None:
    if not code:
        return
    qs = Product.all_objects.filter(code=code)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        raise BusinessValidationError(
            _("Product code %(code)s is already used.") % {"code": code},
            details={"field": "code"},
        )


@transaction.atomic
def create_product(data: dict[str, Any], *, actor) -> Product:
    authorize(actor, Action.PRODUCT_MANAGE)
    cleaned = _clean_product_data(data, partial=False)
    _check_code_free(cleaned.get("code", ""))

    product = Product(**cleaned)
    product.stamp(actor.user, creating=True)
    product.save()

    log_event(
        action=AuditLog.Action.CREATE,
        message=f"Product {product} created",
        actor=actor,
        target=product,
    )
    return product


@transaction.atomic
def update_product(product: Product | int, data: dict[str, Any], *, actor) -> Product:
    authorize(actor, Action.PRODUCT_MANAGE)
    product = lock_row(Product.objects, pk=resolve_product(product).pk)
    cleaned = _clean_product_data(data, partial=True)
    if "code" in cleaned:
        _check_code_free(cleaned["code"], exclude_pk=product.pk)

    for key, value in cleaned.items():
        setattr(product, key, value)
    product.stamp(actor.user)
    product.save()

    log_event(
        action=AuditLog.Action.UPDATE,
        message=f"Product {product} updated",
        actor=actor,
        target=product,
        extra={"fields": sorted(cleaned)},
    )
    return product


@transaction.atomic
def deactivate_product(product: Product | int, *, actor) -> Product:
    """
    Products referenced by lots, purchase order items or sales lines are
    only deactivated so open orders can still be received; others are
    soft-deleted.
    """
    authorize(actor, Action.PRODUCT_DELETE)
    product = lock_row(Product.objects, pk=resolve_product(product).pk)

    product.is_active = False
    product.stamp(actor.user)
    product.save(update_fields=["is_active", "updated_by", "updated_at"])
    message = f"Product {product} deactivated"
    if not (product.lots.exists() or product.po_items.exists() or product.order_items.exists()):
        product.soft_delete(user=actor.user)
        message = f"Product {product} deleted"

    log_event(action=AuditLog.Action.UPDATE, message=message, actor=actor, target=product)
    return product


@transaction.atomic
def create_category(name: str, *, description: str = "", actor) -> ProductCategory:
    authorize(actor, Action.PRODUCT_MANAGE)
    name = (name or "").strip()
    if not name:
        raise BusinessValidationError(_("Category name is required."), details={"field": "name"})
    if ProductCategory.objects.filter(name__iexact=name).exists():
        raise BusinessValidationError(
            _("Category %(name)s already exists.") % {"name": name}, details={"field": "name"}
        )

    category = ProductCategory(name=name, description=description or "")
    category.stamp(actor.user, creating=True)
    category.save()
    log_event(
        action=AuditLog.Action.CREATE,
        message=f"Category {category} created",
        actor=actor,
        target=category,
    )
    return category


def list_categories():
    return ProductCategory.objects.active().annotate(product_count=Count("products"))
