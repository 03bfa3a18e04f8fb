# sales/services.py

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from django.db import transaction
from django.utils.translation import gettext as _

from accounts.policy import Action, authorize
from core.exceptions import BusinessValidationError, NotFound
from core.models import AuditLog
from core.services.audit import log_event
from core.services.locking import lock_rows
from core.services.numbering import generate_number_for_instance
from inventory.models import Product
from inventory.services import current_selling_price, deplete_for_sale, positive_quantity

from .models import Order, OrderItem, OrderItemAllocation

logger = logging.getLogger(__name__)

MONEY_ZERO = Decimal("0.00")
MONEY_PLACES = Decimal("0.01")


class SalesService:
    """
    Sales orders. Stock leaves through inventory.services.deplete_for_sale only.
    """

    @staticmethod
    def _resolve_lines(items) -> list[tuple[Product, Decimal]]:
        if not items:
            raise BusinessValidationError(_("An order needs at least one item."), details={"field": "items"})

        ids = []
        for index, raw in enumerate(items):
            if not isinstance(raw, Mapping):
                raise BusinessValidationError(
                    _("Item %(index)s is not an object.") % {"index": index + 1},
                    details={"item": index},
                )
            try:
                ids.append(int(raw.get("product_id")))
            except (TypeError, ValueError):
                raise BusinessValidationError(
                    _("Item %(index)s: product is required.") % {"index": index + 1},
                    details={"item": index, "field": "product_id"},
                )

        products = Product.objects.in_bulk(set(ids))
        lines = []
        for index, (raw, pk) in enumerate(zip(items, ids)):
            product = products.get(pk)
            if product is None or not product.is_active:
                raise BusinessValidationError(
                    _("Item %(index)s: unknown or inactive product.") % {"index": index + 1},
                    details={"item": index, "product_id": pk},
                )
            lines.append((product, positive_quantity(raw.get("quantity"), field=f"items[{index}].quantity")))
        return lines

    @staticmethod
    @transaction.atomic
    def create_order(
        customer_name: str,
        items: list[Mapping[str, Any]],
        *,
        amount_paid: Any = 0,
        notes: str = "",
        actor,
    ) -> Order:
        """
        Price every line at the product's current selling price and take the
        stock FIFO. All or nothing: one short product aborts the whole order.
        """
        authorize(actor, Action.ORDER_CREATE)

        customer_name = (customer_name or "").strip()
        if not customer_name:
            raise BusinessValidationError(_("Customer name is required."), details={"field": "customer_name"})

        lines = SalesService._resolve_lines(items)

        # products locked in ascending id order, before any lot
        lock_rows(Product.objects.filter(pk__in={p.pk for p, _q in lines}), order_by=("pk",))

        priced = []
        for product, quantity in lines:
            price = current_selling_price(product)
            priced.append((product, quantity, price, (quantity * price).quantize(MONEY_PLACES)))
        total = sum((line[3] for line in priced), MONEY_ZERO)

        try:
            paid = Decimal(str(amount_paid if amount_paid not in (None, "") else "0")).quantize(MONEY_PLACES)
        except (InvalidOperation, ValueError):
            raise BusinessValidationError(_("'amount_paid' must be a number."), details={"field": "amount_paid"})
        if paid < 0 or paid > total:
            raise BusinessValidationError(
                _("Amount paid must be between 0 and the order total (%(total)s).") % {"total": total},
                details={"field": "amount_paid", "total": str(total)},
            )

        order = Order(
            customer_name=customer_name,
            manager=actor.user,
            total_amount=total,
            amount_paid=paid,
            payment_status=Order.payment_status_for(paid, total),
            notes=notes or "",
        )
        order.number = generate_number_for_instance(order)
        order.save()

        for product, quantity, price, subtotal in priced:
            item = OrderItem.objects.create(
                order=order,
                product=product,
                product_name=product.name,
                quantity=quantity,
                unit_price=price,
                subtotal=subtotal,
            )
            allocations = deplete_for_sale(product, quantity, actor=actor)
            OrderItemAllocation.objects.bulk_create(
                [
                    OrderItemAllocation(item=item, lot_id=a.lot_id, quantity=a.quantity, unit_cost=a.unit_cost)
                    for a in allocations
                ]
            )

        log_event(
            action=AuditLog.Action.CREATE,
            message=f"Sales order {order.number} for {customer_name}",
            actor=actor,
            target=order,
            extra={"total": str(total), "paid": str(paid), "items": len(priced)},
        )
        logger.info("Sales order %s created by user %s (%s)", order.number, actor.user_id, total)
        return order

    @staticmethod
    def list_orders(actor, *, date_from=None, date_to=None, search=None):
        """
        Boss sees every order, a manager only their own.
        """
        qs = Order.objects.prefetch_related("items__allocations").select_related("manager")
        if not actor.is_boss:
            qs = qs.for_manager(actor.user)
        return qs.in_period(date_from, date_to).search(search)

    @staticmethod
    def get_order(pk, actor) -> Order:
        order = SalesService.list_orders(actor).filter(pk=pk).first()
        if order is None:
            raise NotFound(_("Order not found."), details={"order_id": pk})
        return order
