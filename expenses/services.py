# expenses/services.py

from __future__ import annotations

import datetime
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.translation import gettext as _

from accounts.policy import Action, authorize
from core.exceptions import BusinessValidationError
from core.models import AuditLog
from core.services.audit import log_event

from .models import RESTRICTED_TYPE_NAMES, ExpenseRecord, ExpenseType

logger = logging.getLogger(__name__)

MONEY_PLACES = Decimal("0.01")
MAX_SUGGESTIONS = 50


def _is_restricted_name(name: str) -> bool:
    return name.casefold() in {n.casefold() for n in RESTRICTED_TYPE_NAMES}


def resolve_type(name: str) -> ExpenseType:
    """
    Case-insensitive lookup; unknown names become new types.
    """
    name = " ".join((name or "").split())
    if not name:
        raise BusinessValidationError(_("Expense type is required."), details={"field": "type"})
    if len(name) > ExpenseType._meta.get_field("name").max_length:
        raise BusinessValidationError(_("Expense type name is too long."), details={"field": "type"})

    existing = ExpenseType.objects.named(name).first()
    if existing is not None:
        return existing
    try:
        with transaction.atomic():
            created = ExpenseType.objects.create(name=name, is_restricted=_is_restricted_name(name))
    except IntegrityError:
        # created concurrently under another spelling of the same name
        return ExpenseType.objects.named(name).get()
    logger.info("New expense type %r", created.name)
    return created


@transaction.atomic
def record_expense(
    type_name: str,
    amount: Any,
    expense_date: Optional[datetime.date] = None,
    notes: str = "",
    *,
    actor,
) -> ExpenseRecord:
    authorize(actor, Action.EXPENSE_RECORD)

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise BusinessValidationError(_("'amount' must be a number."), details={"field": "amount"})
    if isinstance(amount, bool) or not value.is_finite() or value <= 0:
        raise BusinessValidationError(_("The amount must be greater than zero."), details={"field": "amount"})

    expense_type = resolve_type(type_name)
    if expense_type.is_restricted:
        authorize(actor, Action.EXPENSE_RECORD_RESTRICTED)

    record = ExpenseRecord.objects.create(
        expense_type=expense_type,
        manager=actor.user,
        amount=value.quantize(MONEY_PLACES),
        expense_date=expense_date or timezone.localdate(),
        notes=notes or "",
    )
    ExpenseType.objects.filter(pk=expense_type.pk).update(usage_count=F("usage_count") + 1)

    log_event(
        action=AuditLog.Action.CREATE,
        message=f"Expense {expense_type.name} {record.amount}",
        actor=actor,
        target=record,
        extra={"type": expense_type.name, "amount": str(record.amount)},
    )
    return record


def create_type(name: str, *, actor) -> ExpenseType:
    authorize(actor, Action.EXPENSE_RECORD)
    return resolve_type(name)


def suggest_types(prefix: str = "", limit: int = 10) -> list[ExpenseType]:
    limit = max(1, min(int(limit), MAX_SUGGESTIONS))
    return list(ExpenseType.objects.starting_with(prefix).by_popularity()[:limit])


def list_expenses(actor, *, date_from=None, date_to=None):
    qs = ExpenseRecord.objects.select_related("expense_type", "manager")
    if not actor.is_boss:
        qs = qs.for_manager(actor.user)
    return qs.in_period(date_from, date_to)


def seed_default_types() -> list[ExpenseType]:
    """
    Make sure the restricted types exist and are flagged restricted.
    """
    seeded = []
    for name in RESTRICTED_TYPE_NAMES:
        expense_type = resolve_type(name)
        if not expense_type.is_restricted:
            expense_type.is_restricted = True
            expense_type.save(update_fields=["is_restricted", "updated_at"])
        seeded.append(expense_type)
    return seeded
