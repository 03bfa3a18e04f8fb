# core/services/locking.py
from __future__ import annotations

import logging
from typing import Any, Iterable

from django.conf import settings
from django.db import DatabaseError, OperationalError, connection, transaction
from django.db.models import Model, QuerySet

from core.exceptions import Busy, NotFound

logger = logging.getLogger(__name__)


def _lock_timeout_seconds() -> float:
    return float(getattr(settings, "BACKOFFICE_LOCK_TIMEOUT", 5))


def _apply_lock_timeout() -> None:
    """
    Bound the wait for row locks inside the current transaction.

    PostgreSQL: SET LOCAL lock_timeout (reset automatically at commit/rollback).
    SQLite locks the whole database; its wait is bounded by the connection
    "timeout" option configured in settings.DATABASES.
    """
    if connection.vendor != "postgresql":
        return
    millis = int(_lock_timeout_seconds() * 1000)
    with connection.cursor() as cursor:
        cursor.execute(f"SET LOCAL lock_timeout = {millis}")


def is_lock_error(exc: DatabaseError) -> bool:
    text = str(exc).lower()
    return any(
        marker in text
        for marker in (
            "lock timeout",
            "lock_timeout",
            "could not obtain lock",
            "database is locked",
            "deadlock",
        )
    )


def lock_row(queryset: QuerySet, **lookup: Any) -> Model:
    """
    select_for_update().get(**lookup) with a bounded wait.

    Must be called inside transaction.atomic(). Raises:
      - NotFound when the row does not exist
      - Busy when the lock could not be obtained in time
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("lock_row() must be called inside transaction.atomic().")

    _apply_lock_timeout()
    try:
        return queryset.select_for_update().get(**lookup)
    except queryset.model.DoesNotExist:
        raise NotFound(details={"model": queryset.model._meta.label})
    except OperationalError as exc:
        if is_lock_error(exc):
            logger.warning(
                "Lock wait exceeded on %s %s",
                queryset.model._meta.label,
                lookup,
            )
            raise Busy(details={"model": queryset.model._meta.label}) from exc
        raise


def lock_rows(queryset: QuerySet, *, order_by: Iterable[str] = ("pk",)) -> list[Model]:
    """
    Lock every row of ``queryset`` in a deterministic order and return them.
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("lock_rows() must be called inside transaction.atomic().")

    _apply_lock_timeout()
    try:
        return list(queryset.select_for_update().order_by(*order_by))
    except OperationalError as exc:
        if is_lock_error(exc):
            logger.warning("Lock wait exceeded on %s", queryset.model._meta.label)
            raise Busy(details={"model": queryset.model._meta.label}) from exc
        raise
