# payments/services.py

from __future__ import annotations

import datetime
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from django.utils.translation import gettext as _

from accounts.policy import Action, authorize
from core.exceptions import BusinessValidationError, InvalidTransition, NotFound, OverPayment
from core.models import AuditLog
from core.services.audit import log_event
from core.services.locking import lock_row
from core.services.numbering import generate_number_for_instance
from purchasing.models import PurchaseOrder
from suppliers.services import apply_balance_delta, lock_supplier, resolve_supplier

from .models import Payment

logger = logging.getLogger(__name__)

MONEY_ZERO = Decimal("0.00")
MONEY_PLACES = Decimal("0.01")

# method -> detail fields that must be filled
REQUIRED_DETAILS: dict[str, tuple[str, ...]] = {
    Payment.Method.CHEQUE: ("cheque_number",),
    Payment.Method.MOBILE_MONEY: ("mobile_provider", "mobile_number"),
    Payment.Method.BANK_TRANSFER: ("bank_reference",),
}

DETAIL_FIELDS = ("reference", "cheque_number", "mobile_provider", "mobile_number", "bank_reference", "notes")


def _amount(value: Any) -> Decimal:
    if isinstance(value, bool) or value in (None, ""):
        raise BusinessValidationError(_("'amount' is required."), details={"field": "amount"})
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BusinessValidationError(_("'amount' must be a number."), details={"field": "amount"})
    if not amount.is_finite() or amount <= 0:
        raise BusinessValidationError(
            _("The payment amount must be greater than zero."), details={"field": "amount"}
        )
    return amount.quantize(MONEY_PLACES)


def _clean_details(method: str, details: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    details = dict(details or {})
    cleaned = {field: str(details.get(field) or "").strip() for field in DETAIL_FIELDS}

    missing = [field for field in REQUIRED_DETAILS.get(method, ()) if not cleaned[field]]
    if missing:
        raise BusinessValidationError(
            _("%(method)s payments need: %(fields)s.") % {"method": method, "fields": ", ".join(missing)},
            details={"method": method, "missing": missing},
        )
    if method == Payment.Method.MOBILE_MONEY and cleaned["mobile_provider"] not in Payment.MobileProvider.values:
        raise BusinessValidationError(
            _("Unknown mobile money provider."),
            details={"field": "mobile_provider", "allowed": list(Payment.MobileProvider.values)},
        )
    if method != Payment.Method.MOBILE_MONEY:
        cleaned["mobile_provider"] = ""

    paid_on = details.get("paid_on")
    if paid_on in (None, ""):
        paid_on = timezone.localdate()
    elif not isinstance(paid_on, datetime.date):
        raise BusinessValidationError(_("'paid_on' must be a date."), details={"field": "paid_on"})
    cleaned["paid_on"] = paid_on
    return cleaned


@transaction.atomic
def record_payment(
    po: PurchaseOrder | int,
    amount: Any,
    method: str,
    details: Optional[Mapping[str, Any]] = None,
    *,
    actor,
) -> Payment:
    """
    Append a payment to a purchase order.

    Locks the PO, then the supplier, and validates ``amount`` against the
    balance re-read under the lock, so concurrent payments cannot overshoot.
    """
    authorize(actor, Action.PO_PAY)
    amount = _amount(amount)
    if method not in Payment.Method.values:
        raise BusinessValidationError(
            _("Unknown payment method."),
            details={"field": "method", "allowed": list(Payment.Method.values)},
        )
    fields = _clean_details(method, details)

    pk = getattr(po, "pk", po)
    try:
        po = lock_row(PurchaseOrder.objects.all(), pk=int(pk))
    except (TypeError, ValueError):
        raise NotFound(_("Purchase order not found."), details={"po_id": str(pk)})

    if po.status == PurchaseOrder.Status.CANCELLED:
        raise InvalidTransition(
            _("Cannot pay a cancelled purchase order."),
            details={"action": "pay", "status": po.status},
        )
    if po.balance_due <= 0:
        raise InvalidTransition(
            _("Purchase order %(number)s is already paid in full.") % {"number": po.number},
            details={"action": "pay", "status": po.status, "balance_due": str(po.balance_due)},
        )
    if amount > po.balance_due:
        raise OverPayment(
            _("Payment of %(amount)s exceeds the balance due of %(due)s.")
            % {"amount": amount, "due": po.balance_due},
            details={"amount": str(amount), "balance_due": str(po.balance_due)},
        )

    lock_supplier(po.supplier_id)

    payment = Payment(
        po=po,
        supplier_id=po.supplier_id,
        amount=amount,
        method=method,
        recorded_by=actor.user,
        **fields,
    )
    payment.number = generate_number_for_instance(payment)
    payment.save()

    po.amount_paid += amount
    po.balance_due = po.grand_total - po.amount_paid
    po.payment_status = PurchaseOrder.payment_status_for(po.amount_paid, po.grand_total)
    po.stamp(actor.user)
    po.save()

    apply_balance_delta(po.supplier_id, -amount, reason=f"payment {payment.number} on {po.number}")

    log_event(
        action=AuditLog.Action.PAYMENT,
        message=f"Payment {payment.number} of {amount} ({method}) on {po.number}",
        actor=actor,
        target=po,
        extra={
            "payment": payment.number,
            "amount": str(amount),
            "method": method,
            "balance_due": str(po.balance_due),
            "payment_status": po.payment_status,
        },
    )
    logger.info("Payment %s recorded on %s, balance due %s", payment.number, po.number, po.balance_due)
    return payment


def statement(
    supplier,
    date_from: Optional[datetime.date] = None,
    date_to: Optional[datetime.date] = None,
) -> dict[str, Any]:
    """
    Purchase orders and payments of one supplier over an optional period.

    Cancelled purchase orders (and payments made on them) are listed but
    left out of the totals.
    """
    supplier = resolve_supplier(supplier)
    if date_from and date_to and date_from > date_to:
        raise BusinessValidationError(
            _("'from' must not be after 'to'."), details={"from": str(date_from), "to": str(date_to)}
        )

    with transaction.atomic():
        pos = list(
            PurchaseOrder.objects.for_supplier(supplier)
            .in_period(date_from, date_to)
            .order_by("created_at", "pk")
        )
        payments = Payment.objects.filter(supplier=supplier).select_related("po")
        if date_from:
            payments = payments.filter(paid_on__gte=date_from)
        if date_to:
            payments = payments.filter(paid_on__lte=date_to)
        payments = list(payments)

    counted = [po for po in pos if po.status != PurchaseOrder.Status.CANCELLED]
    counted_payments = [p for p in payments if p.po.status != PurchaseOrder.Status.CANCELLED]
    totals = {
        "ordered": sum((po.grand_total for po in counted), MONEY_ZERO),
        "paid": sum((p.amount for p in counted_payments), MONEY_ZERO),
        "outstanding": sum((po.balance_due for po in counted), MONEY_ZERO),
        "po_count": len(counted),
        "payment_count": len(counted_payments),
    }
    return {"supplier": supplier, "purchase_orders": pos, "payments": payments, "totals": totals}


def total_paid(date_from=None, date_to=None) -> Decimal:
    qs = Payment.objects.exclude(po__status=PurchaseOrder.Status.CANCELLED)
    if date_from:
        qs = qs.filter(paid_on__gte=date_from)
    if date_to:
        qs = qs.filter(paid_on__lte=date_to)
    return qs.aggregate(total=Sum("amount"))["total"] or MONEY_ZERO
