# suppliers/services.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from django.db import transaction
from django.db.models import F, Sum
from django.utils.translation import gettext as _

from accounts.policy import Action, authorize
from core.exceptions import BusinessValidationError, NotFound
from core.models import AuditLog
from core.services.audit import log_event
from core.services.locking import lock_row

from .models import PaymentTerms, Supplier

logger = logging.getLogger(__name__)

MONEY_ZERO = Decimal("0.00")


# ============================================================
# Balance ledger
# ============================================================

def resolve_supplier(supplier: Supplier | int | str, *, active_only: bool = False) -> Supplier:
    if isinstance(supplier, Supplier):
        found = supplier
    else:
        try:
            pk = int(supplier)
        except (TypeError, ValueError):
            raise NotFound(_("Supplier not found."), details={"supplier_id": str(supplier)})
        found = Supplier.objects.filter(pk=pk).first()
        if found is None:
            raise NotFound(_("Supplier not found."), details={"supplier_id": pk})
    if active_only and not found.is_active:
        raise BusinessValidationError(
            _("Supplier %(name)s is inactive.") % {"name": found.name},
            details={"supplier_id": found.pk},
        )
    return found


def lock_supplier(supplier: Supplier | int) -> Supplier:
    return lock_row(Supplier.all_objects, pk=getattr(supplier, "pk", supplier))


def apply_balance_delta(supplier: Supplier | int, delta: Decimal, *, reason: str = "") -> Supplier:
    """
    Add ``delta`` to the supplier's running balance.

    Runs inside the caller's transaction with the supplier row locked
    (after the purchase order row, when there is one).
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("apply_balance_delta() must be called inside transaction.atomic().")

    supplier = lock_supplier(supplier)
    if delta:
        Supplier.all_objects.filter(pk=supplier.pk).update(
            current_balance=F("current_balance") + delta
        )
        supplier.refresh_from_db(fields=["current_balance"])
        logger.info(
            "Supplier %s balance %+.2f -> %s (%s)",
            supplier.pk,
            delta,
            supplier.current_balance,
            reason or "-",
        )
    return supplier


def recompute_balance(supplier: Supplier | int) -> Decimal:
    """
    Balance rebuilt from scratch: sum of balance_due over non-cancelled POs.
    """
    from purchasing.models import PurchaseOrder

    total = (
        PurchaseOrder.objects.filter(supplier_id=getattr(supplier, "pk", supplier))
        .exclude(status=PurchaseOrder.Status.CANCELLED)
        .aggregate(t=Sum("balance_due"))["t"]
    )
    return total or MONEY_ZERO


@dataclass(frozen=True)
class BalanceDrift:
    supplier_id: int
    name: str
    stored: Decimal
    computed: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored - self.computed


def verify_balances() -> list[BalanceDrift]:
    drift: list[BalanceDrift] = []
    with transaction.atomic():
        for supplier in Supplier.all_objects.order_by("pk"):
            computed = recompute_balance(supplier)
            if computed != supplier.current_balance:
                drift.append(
                    BalanceDrift(
                        supplier_id=supplier.pk,
                        name=supplier.name,
                        stored=supplier.current_balance,
                        computed=computed,
                    )
                )
    return drift


@transaction.atomic
def repair_balance(supplier: Supplier | int, *, actor=None) -> Supplier:
    supplier = lock_supplier(supplier)
    before = supplier.current_balance
    computed = recompute_balance(supplier)
    if computed != before:
        supplier.current_balance = computed
        supplier.save(update_fields=["current_balance", "updated_at"])
        log_event(
            action=AuditLog.Action.ADJUSTMENT,
            message=f"Supplier {supplier} balance repaired {before} -> {computed}",
            actor=actor,
            target=supplier,
            extra={"before": str(before), "after": str(computed)},
        )
    return supplier


# ============================================================
# CRUD
# ============================================================

SUPPLIER_FIELDS = (
    "name",
    "contact_person",
    "phone",
    "email",
    "address",
    "tax_number",
    "credit_limit",
    "payment_terms",
    "is_active",
    "notes",
)


def _clean_supplier_data(data: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    cleaned = {key: data[key] for key in SUPPLIER_FIELDS if key in data}

    if not partial or "name" in cleaned:
        name = (cleaned.get("name") or "").strip()
        if not name:
            raise BusinessValidationError(_("Supplier name is required."), details={"field": "name"})
        cleaned["name"] = name

    if "credit_limit" in cleaned:
        raw = cleaned["credit_limit"]
        try:
            limit = Decimal(str(raw if raw not in (None, "") else "0"))
        except (InvalidOperation, ValueError):
            raise BusinessValidationError(_("Credit limit must be a number."), details={"field": "credit_limit"})
        if not limit.is_finite() or limit < 0:
            raise BusinessValidationError(
                _("Credit limit cannot be negative."), details={"field": "credit_limit"}
            )
        cleaned["credit_limit"] = limit

    if "payment_terms" in cleaned and cleaned["payment_terms"] not in PaymentTerms.values:
        raise BusinessValidationError(
            _("Unknown payment terms."),
            details={"field": "payment_terms", "allowed": list(PaymentTerms.values)},
        )

    for key in ("contact_person", "phone", "email", "address", "tax_number", "notes"):
        if key in cleaned:
            cleaned[key] = (cleaned[key] or "").strip()
    return cleaned


@transaction.atomic
def create_supplier(data: dict[str, Any], *, actor) -> Supplier:
    authorize(actor, Action.SUPPLIER_MANAGE)
    cleaned = _clean_supplier_data(data, partial=False)
    if "payment_terms" not in cleaned:
        from purchasing.models import PurchasingSettings

        cleaned["payment_terms"] = PurchasingSettings.get_solo().default_payment_terms

    supplier = Supplier(**cleaned)
    supplier.stamp(actor.user, creating=True)
    supplier.full_clean(exclude=["current_balance"])
    supplier.save()

    log_event(
        action=AuditLog.Action.CREATE,
        message=f"Supplier {supplier} created",
        actor=actor,
        target=supplier,
        extra={"credit_limit": str(supplier.credit_limit)},
    )
    return supplier


@transaction.atomic
def update_supplier(supplier: Supplier | int, data: dict[str, Any], *, actor) -> Supplier:
    authorize(actor, Action.SUPPLIER_MANAGE)
    supplier = lock_supplier(resolve_supplier(supplier))
    cleaned = _clean_supplier_data(data, partial=True)

    changes = {}
    for key, value in cleaned.items():
        old = getattr(supplier, key)
        if old != value:
            changes[key] = {"from": str(old), "to": str(value)}
            setattr(supplier, key, value)

    if changes:
        supplier.stamp(actor.user)
        supplier.full_clean(exclude=["current_balance"])
        supplier.save()
        log_event(
            action=AuditLog.Action.UPDATE,
            message=f"Supplier {supplier} updated",
            actor=actor,
            target=supplier,
            extra=changes,
        )
    return supplier


@transaction.atomic
def deactivate_supplier(supplier: Supplier | int, *, actor) -> Supplier:
    """
    Suppliers with purchase orders are deactivated; others are soft-deleted.
    """
    authorize(actor, Action.SUPPLIER_MANAGE)
    supplier = lock_supplier(resolve_supplier(supplier))

    supplier.is_active = False
    supplier.stamp(actor.user)
    supplier.save(update_fields=["is_active", "updated_by", "updated_at"])
    message = f"Supplier {supplier} deactivated"
    if not supplier.purchase_orders.exists():
        supplier.soft_delete(user=actor.user)
        message = f"Supplier {supplier} deleted"

    log_event(action=AuditLog.Action.UPDATE, message=message, actor=actor, target=supplier)
    return supplier


def credit_summary(supplier: Supplier) -> dict[str, Any]:
    return {
        "credit_limit": supplier.credit_limit,
        "current_balance": supplier.current_balance,
        "available_credit": supplier.available_credit,
        "credit_utilization": supplier.credit_utilization,
        "utilization_level": supplier.utilization_level,
        "unlimited": not supplier.has_credit_limit,
    }


def list_suppliers(*, search: Optional[str] = None, include_inactive: bool = False):
    qs = Supplier.objects.all() if include_inactive else Supplier.objects.active()
    return qs.search(search)
