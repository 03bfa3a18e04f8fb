# purchasing/services.py

from __future__ import annotations

import datetime
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone
from django.utils.translation import gettext as _

from accounts.policy import Action, authorize
from core.exceptions import (
    BusinessValidationError,
    CreditLimitExceeded,
    InvalidTransition,
    NotFound,
    OverReceipt,
)
from core.models import AuditLog
from core.services.audit import log_event
from core.services.locking import lock_row, lock_rows
from core.services.numbering import generate_number_for_instance
from inventory.models import Product, StockLot
from inventory.services import add_lot, positive_cost, positive_quantity
from payments import services as payment_services
from suppliers.models import PaymentTerms, credit_days
from suppliers.services import apply_balance_delta, lock_supplier, resolve_supplier

from .models import GoodsReceipt, GoodsReceiptLine, PurchaseOrder, PurchaseOrderItem

logger = logging.getLogger(__name__)

MONEY_ZERO = Decimal("0.00")
MONEY_PLACES = Decimal("0.01")

Status = PurchaseOrder.Status


# ============================================================
# Helpers
# ============================================================

def _money(value: Any, field: str) -> Decimal:
    if value in (None, ""):
        return MONEY_ZERO
    if isinstance(value, bool):
        raise BusinessValidationError(_("'%(field)s' must be a number.") % {"field": field}, details={"field": field})
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BusinessValidationError(_("'%(field)s' must be a number.") % {"field": field}, details={"field": field})
    if not amount.is_finite() or amount < 0:
        raise BusinessValidationError(
            _("'%(field)s' cannot be negative.") % {"field": field}, details={"field": field}
        )
    return amount.quantize(MONEY_PLACES)


def _line(raw: Any, index: int) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise BusinessValidationError(
            _("Line %(index)s is not an object.") % {"index": index + 1},
            details={"line": index},
        )
    return raw


def _require_status(po: PurchaseOrder, allowed: Iterable[str], action: str) -> None:
    allowed = tuple(allowed)
    if po.status not in allowed:
        raise InvalidTransition(
            _("Cannot %(action)s a purchase order in status %(status)s.")
            % {"action": action, "status": po.status},
            details={"action": action, "status": po.status, "allowed_from": [str(s) for s in allowed]},
        )


def lock_po(po: PurchaseOrder | int) -> PurchaseOrder:
    """
    Fresh, locked copy of the PO. First lock taken by every PO mutation.
    """
    pk = getattr(po, "pk", po)
    try:
        return lock_row(PurchaseOrder.objects.select_related("supplier"), pk=int(pk))
    except (TypeError, ValueError):
        raise NotFound(_("Purchase order not found."), details={"po_id": str(pk)})
    except NotFound:
        raise NotFound(_("Purchase order not found."), details={"po_id": pk})


def get_po(pk: Any) -> PurchaseOrder:
    try:
        return (
            PurchaseOrder.objects.with_related()
            .prefetch_related("items__lots", "payments")
            .get(pk=int(pk))
        )
    except (TypeError, ValueError, PurchaseOrder.DoesNotExist):
        raise NotFound(_("Purchase order not found."), details={"po_id": str(pk)})


def _log_transition(po: PurchaseOrder, actor, before: str, message: str, **extra) -> None:
    log_event(
        action=AuditLog.Action.STATUS_CHANGE,
        message=message,
        actor=actor,
        target=po,
        extra={"number": po.number, "from": before, "to": po.status, **extra},
    )
    logger.info("PO %s: %s -> %s", po.number, before, po.status)


# ============================================================
# Purchase order service
# ============================================================

class PurchaseOrderService:
    """
    Every purchase order mutation.

    Each method runs in one transaction. Locks are taken in a fixed order:
    purchase order, supplier, products (ascending id), stock lots.
    """

    # ------------------------------------------------------------
    # create
    # ------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def create(
        supplier,
        items: list[Mapping[str, Any]],
        *,
        payment_terms: Optional[str] = None,
        tax_amount: Any = 0,
        shipping_cost: Any = 0,
        discount: Any = 0,
        notes: str = "",
        actor,
    ) -> PurchaseOrder:
        authorize(actor, Action.PO_CREATE)

        try:
            supplier = resolve_supplier(supplier, active_only=True)
        except NotFound:
            raise BusinessValidationError(_("Unknown supplier."), details={"field": "supplier"})

        if not items:
            raise BusinessValidationError(
                _("A purchase order needs at least one item."), details={"field": "items"}
            )

        terms = payment_terms or supplier.payment_terms
        if terms not in PaymentTerms.values:
            raise BusinessValidationError(
                _("Unknown payment terms."),
                details={"field": "payment_terms", "allowed": list(PaymentTerms.values)},
            )

        lines = []
        for index, raw in enumerate(items):
            raw = _line(raw, index)
            try:
                product = Product.objects.filter(pk=int(raw.get("product_id"))).first()
            except (TypeError, ValueError):
                product = None
            if product is None or not product.is_active:
                raise BusinessValidationError(
                    _("Item %(index)s: unknown or inactive product.") % {"index": index + 1},
                    details={"item": index, "field": "product_id"},
                )
            quantity = positive_quantity(raw.get("quantity"), field=f"items[{index}].quantity")
            unit_cost = positive_cost(
                raw.get("unit_cost"), field=f"items[{index}].unit_cost"
            )
            subtotal = (quantity * unit_cost).quantize(MONEY_PLACES)
            lines.append((product, quantity, unit_cost, subtotal))

        tax = _money(tax_amount, "tax_amount")
        shipping = _money(shipping_cost, "shipping_cost")
        disc = _money(discount, "discount")
        total_cost = sum((line[3] for line in lines), MONEY_ZERO)
        grand_total = PurchaseOrder.compute_grand_total(total_cost, tax, shipping, disc)
        if grand_total <= 0:
            raise BusinessValidationError(
                _("The grand total must be greater than zero."), details={"field": "discount"}
            )

        supplier = lock_supplier(supplier)

        po = PurchaseOrder(
            supplier=supplier,
            author=actor.user,
            payment_terms=terms,
            total_cost=total_cost,
            tax_amount=tax,
            shipping_cost=shipping,
            discount=disc,
            grand_total=grand_total,
            amount_paid=MONEY_ZERO,
            balance_due=grand_total,
            payment_status=PurchaseOrder.PaymentStatus.UNPAID,
            notes=notes or "",
        )
        po.stamp(actor.user, creating=True)
        po.number = generate_number_for_instance(po)
        po.save()

        PurchaseOrderItem.objects.bulk_create(
            [
                PurchaseOrderItem(
                    po=po,
                    line_no=line_no,
                    product=product,
                    product_name=product.name,
                    quantity=quantity,
                    unit_cost=unit_cost,
                    subtotal=subtotal,
                )
                for line_no, (product, quantity, unit_cost, subtotal) in enumerate(lines, start=1)
            ]
        )

        apply_balance_delta(supplier, po.balance_due, reason=f"PO {po.number} created")

        log_event(
            action=AuditLog.Action.CREATE,
            message=f"Purchase order {po.number} created for {supplier}",
            actor=actor,
            target=po,
            extra={"grand_total": str(po.grand_total), "items": len(lines)},
        )
        logger.info("PO %s created by user %s (%s)", po.number, actor.user_id, po.grand_total)
        return po

    # ------------------------------------------------------------
    # submit / approve / mark_ordered
    # ------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def submit(po, *, actor) -> PurchaseOrder:
        po = lock_po(po)
        _require_status(po, [Status.DRAFT], "submit")
        authorize(actor, Action.PO_SUBMIT, owner_id=po.author_id)

        before = po.status
        po.status = Status.SUBMITTED
        po.submitted_at = timezone.now()
        po.stamp(actor.user)
        po.save()
        _log_transition(po, actor, before, f"Purchase order {po.number} submitted")
        return po

    @staticmethod
    @transaction.atomic
    def approve(po, *, actor) -> PurchaseOrder:
        """
        Submitted -> Approved, after the supplier credit check.

        The supplier balance already includes this PO's balance_due (it
        accrues at creation), so the exposure is measured without it and
        the PO's grand total is added back.
        """
        po = lock_po(po)
        _require_status(po, [Status.SUBMITTED], "approve")
        authorize(actor, Action.PO_APPROVE, owner_id=po.author_id)

        supplier = lock_supplier(po.supplier_id)
        if supplier.credit_limit > 0:
            exposure = supplier.current_balance - po.balance_due + po.grand_total
            if exposure > supplier.credit_limit:
                raise CreditLimitExceeded(
                    _(
                        "Approving %(number)s would bring %(supplier)s to %(exposure)s, "
                        "above the credit limit of %(limit)s."
                    )
                    % {
                        "number": po.number,
                        "supplier": supplier.name,
                        "exposure": exposure,
                        "limit": supplier.credit_limit,
                    },
                    details={
                        "credit_limit": str(supplier.credit_limit),
                        "current_balance": str(supplier.current_balance),
                        "grand_total": str(po.grand_total),
                        "exposure": str(exposure),
                    },
                )

        before = po.status
        po.status = Status.APPROVED
        po.approved_at = timezone.now()
        po.approved_by = actor.user
        po.stamp(actor.user)
        po.save()
        _log_transition(po, actor, before, f"Purchase order {po.number} approved")
        return po

    @staticmethod
    @transaction.atomic
    def mark_ordered(po, *, actor) -> PurchaseOrder:
        po = lock_po(po)
        _require_status(po, [Status.APPROVED], "order")
        authorize(actor, Action.PO_ORDER, owner_id=po.author_id)

        before = po.status
        po.status = Status.ORDERED
        po.ordered_at = timezone.now()
        days = credit_days(po.payment_terms)
        po.due_date = (
            timezone.localdate(po.ordered_at) + datetime.timedelta(days=days)
            if days is not None
            else None
        )
        po.stamp(actor.user)
        po.save()
        _log_transition(
            po,
            actor,
            before,
            f"Purchase order {po.number} ordered",
            due_date=po.due_date.isoformat() if po.due_date else None,
        )
        return po

    # ------------------------------------------------------------
    # receive
    # ------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def receive(po, items: list[Mapping[str, Any]], *, notes: str = "", actor) -> PurchaseOrder:
        """
        Receive goods against the PO.

        items: [{"po_item_id": 1, "quantity": "60", "notes": "",
                 "unit_price": None, "expiry_date": None}, ...]

        Every line is validated before anything is written; one lot and
        one receipt line are created per accepted line.
        """
        po = lock_po(po)
        _require_status(po, PurchaseOrder.RECEIVABLE_STATUSES, "receive")
        authorize(actor, Action.PO_RECEIVE, owner_id=po.author_id)

        if not items:
            raise BusinessValidationError(_("Nothing to receive."), details={"field": "items"})

        po_items = {item.pk: item for item in po.items.select_related("product")}
        accepted = []
        seen: set[int] = set()
        for index, raw in enumerate(items):
            raw = _line(raw, index)
            ref = raw.get("po_item_id")
            try:
                item_id = int(ref)
            except (TypeError, ValueError):
                item_id = None
            item = po_items.get(item_id)
            if item is None:
                raise BusinessValidationError(
                    _("Line %(index)s: item does not belong to this purchase order.") % {"index": index + 1},
                    details={"line": index, "po_item_id": str(ref)},
                )
            if item_id in seen:
                raise BusinessValidationError(
                    _("Line %(index)s: item listed twice.") % {"index": index + 1},
                    details={"line": index, "po_item_id": item_id},
                )
            seen.add(item_id)

            quantity = positive_quantity(raw.get("quantity"), field=f"items[{index}].quantity")
            if quantity > item.remaining_quantity:
                raise OverReceipt(
                    _("%(product)s: receiving %(qty)s but only %(remaining)s remain.")
                    % {"product": item.product_name, "qty": quantity, "remaining": item.remaining_quantity},
                    details={
                        "po_item_id": item.pk,
                        "requested": str(quantity),
                        "remaining": str(item.remaining_quantity),
                    },
                )
            accepted.append((item, quantity, raw))

        lock_rows(Product.objects.filter(pk__in=[item.product_id for item, _q, _r in accepted]))

        receipt = GoodsReceipt(po=po, received_by=actor.user, notes=notes or "")
        receipt.number = generate_number_for_instance(receipt)
        receipt.save()

        batch_numbers = []
        for item, quantity, raw in accepted:
            lot = add_lot(
                item.product_id,
                unit_cost=item.unit_cost,
                quantity=quantity,
                po_item=item,
                unit_price=raw.get("unit_price"),
                expiry_date=raw.get("expiry_date"),
                notes=raw.get("notes") or "",
                date_acquired=receipt.received_at,
                actor=actor,
            )
            GoodsReceiptLine.objects.create(
                receipt=receipt,
                po_item=item,
                quantity=quantity,
                lot=lot,
                notes=raw.get("notes") or "",
            )
            item.quantity_received += quantity
            item.save(update_fields=["quantity_received", "updated_at"])
            batch_numbers.append(lot.batch_number)

        before = po.status
        if all(item.is_complete for item in po_items.values()):
            po.status = Status.RECEIVED
            po.received_at = receipt.received_at
        else:
            po.status = Status.PARTIALLY_RECEIVED
        po.stamp(actor.user)
        po.save()

        _log_transition(
            po,
            actor,
            before,
            f"Goods receipt {receipt.number} posted on {po.number}",
            receipt=receipt.number,
            batch_numbers=batch_numbers,
        )
        return po

    # ------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def cancel(po, reason: str, *, actor) -> PurchaseOrder:
        """
        Cancel the PO and roll its outstanding balance off the supplier.

        Lots already received stay in stock; their batch numbers are listed
        in the audit entry for manual reconciliation.
        """
        po = lock_po(po)
        _require_status(
            po,
            [Status.DRAFT, Status.SUBMITTED, Status.APPROVED, Status.ORDERED, Status.PARTIALLY_RECEIVED],
            "cancel",
        )
        authorize(actor, Action.PO_CANCEL, owner_id=po.author_id)

        reason = (reason or "").strip()
        if not reason:
            raise BusinessValidationError(
                _("A cancellation reason is required."), details={"field": "reason"}
            )

        apply_balance_delta(po.supplier_id, -po.balance_due, reason=f"PO {po.number} cancelled")

        before = po.status
        po.status = Status.CANCELLED
        po.cancelled_at = timezone.now()
        po.cancelled_by = actor.user
        po.cancellation_reason = reason
        po.stamp(actor.user)
        po.save()

        kept = list(
            StockLot.objects.filter(po_item__po=po, quantity__gt=0)
            .order_by("product_id", "sequence")
            .values_list("batch_number", flat=True)
        )
        _log_transition(
            po,
            actor,
            before,
            f"Purchase order {po.number} cancelled: {reason}",
            reason=reason,
            balance_released=str(po.balance_due),
            lots_kept_in_stock=kept,
        )
        return po

    # ------------------------------------------------------------
    # payments
    # ------------------------------------------------------------
    @staticmethod
    def add_payment(po, amount: Any, method: str, details: Optional[Mapping[str, Any]] = None, *, actor):
        return payment_services.record_payment(po, amount, method, details, actor=actor)

    # ------------------------------------------------------------
    # read side
    # ------------------------------------------------------------
    @staticmethod
    def list_orders(
        *,
        status: Optional[str] = None,
        supplier=None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        author=None,
    ):
        qs = PurchaseOrder.objects.with_related().prefetch_related("items")
        if status:
            if status not in Status.values:
                raise BusinessValidationError(
                    _("Unknown status."), details={"status": status, "allowed": list(Status.values)}
                )
            qs = qs.filter(status=status)
        if payment_status:
            qs = qs.filter(payment_status=payment_status)
        if supplier not in (None, ""):
            qs = qs.for_supplier(supplier)
        if author is not None:
            qs = qs.authored_by(author)
        return qs.search(search)

    @staticmethod
    def dashboard_stats() -> dict[str, Any]:
        with transaction.atomic():
            today = timezone.localdate()
            by_status = {status: 0 for status in Status.values}
            for row in PurchaseOrder.objects.values("status").annotate(n=Count("pk")):
                by_status[row["status"]] = row["n"]

            outstanding = PurchaseOrder.objects.outstanding().aggregate(
                total=Sum("balance_due"), n=Count("pk")
            )
            overdue = PurchaseOrder.objects.overdue(today).aggregate(total=Sum("balance_due"), n=Count("pk"))
            this_month = (
                PurchaseOrder.objects.not_cancelled()
                .filter(created_at__year=today.year, created_at__month=today.month)
                .aggregate(total=Sum("grand_total"), n=Count("pk"))
            )

        return {
            "by_status": by_status,
            "pending_approval": by_status[Status.SUBMITTED],
            "outstanding": {"count": outstanding["n"], "amount": outstanding["total"] or MONEY_ZERO},
            "overdue": {"count": overdue["n"], "amount": overdue["total"] or MONEY_ZERO},
            "this_month": {"count": this_month["n"], "amount": this_month["total"] or MONEY_ZERO},
        }
