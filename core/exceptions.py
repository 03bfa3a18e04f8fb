# core/exceptions.py
"""
Machine-readable error taxonomy shared by every service.

Each error class carries:
  - kind:        stable identifier returned to API clients
  - status_code: HTTP status used by the JSON boundary
  - retryable:   only ``Busy`` is safe to retry automatically

Validation-style errors subclass Django's ``ValidationError`` so that admin
forms and ``full_clean()`` callers keep working unchanged.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError
from django.utils.translation import gettext_lazy as _


class ErrorKindMixin:
    kind: str = "internal"
    status_code: int = 500
    retryable: bool = False
    default_message: Any = _("An unexpected error occurred.")

    def get_message(self) -> str:
        messages = getattr(self, "messages", None)
        if messages:
            return " ".join(str(m) for m in messages)
        if self.args and self.args[0]:
            return str(self.args[0])
        return str(self.default_message)

    def get_details(self) -> dict[str, Any]:
        return dict(getattr(self, "details", None) or {})


class BackOfficeError(ErrorKindMixin, Exception):
    """
    Base class for non-validation errors (busy, internal).
    """

    def __init__(self, message: Any = None, *, details: Optional[Mapping[str, Any]] = None):
        self.details = dict(details or {})
        super().__init__(message or self.default_message)


# ============================================================
# Validation family (4xx, never retried)
# ============================================================
class BusinessValidationError(ErrorKindMixin, ValidationError):
    kind = "validation_error"
    status_code = 400
    default_message = _("The request is not valid.")

    def __init__(
        self,
        message: Any = None,
        *,
        params: Optional[Mapping[str, Any]] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        self.details = dict(details or {})
        super().__init__(message or self.default_message, code=self.kind, params=params)


class InvalidQuantity(BusinessValidationError):
    default_message = _("Quantity must be greater than zero.")


class InvalidCost(BusinessValidationError):
    default_message = _("Unit cost must be greater than zero.")


class InvalidTransition(BusinessValidationError):
    kind = "invalid_transition"
    status_code = 409
    default_message = _("This action is not allowed in the current status.")


class CreditLimitExceeded(BusinessValidationError):
    kind = "credit_limit_exceeded"
    status_code = 422
    default_message = _("The supplier credit limit would be exceeded.")


class OverReceipt(BusinessValidationError):
    kind = "over_receipt"
    status_code = 422
    default_message = _("Received quantity exceeds the remaining quantity.")


class OverPayment(BusinessValidationError):
    kind = "over_payment"
    status_code = 422
    default_message = _("Payment amount exceeds the balance due.")


class InsufficientStock(BusinessValidationError):
    kind = "insufficient_stock"
    status_code = 422
    default_message = _("Not enough stock available.")


# ============================================================
# Authorization / lookup
# ============================================================
class Forbidden(ErrorKindMixin, PermissionDenied):
    kind = "forbidden"
    status_code = 403
    default_message = _("You are not allowed to perform this action.")

    def __init__(self, message: Any = None, *, details: Optional[Mapping[str, Any]] = None):
        self.details = dict(details or {})
        super().__init__(message or self.default_message)


class NotAuthenticated(ErrorKindMixin, PermissionDenied):
    kind = "not_authenticated"
    status_code = 401
    default_message = _("Authentication credentials were not provided or are invalid.")

    def __init__(self, message: Any = None):
        self.details = {}
        super().__init__(message or self.default_message)


class NotFound(ErrorKindMixin, ObjectDoesNotExist):
    kind = "not_found"
    status_code = 404
    default_message = _("The requested record does not exist.")

    def __init__(self, message: Any = None, *, details: Optional[Mapping[str, Any]] = None):
        self.details = dict(details or {})
        super().__init__(message or self.default_message)


class ProductNotFound(NotFound):
    default_message = _("Product not found.")


# ============================================================
# Concurrency
# ============================================================
class Busy(BackOfficeError):
    kind = "busy"
    status_code = 503
    retryable = True
    default_message = _("The record is being modified by another request. Please retry.")


def get_or_not_found(queryset, message: Any = None, **lookup):
    """
    ``queryset.get(**lookup)`` raising ``NotFound`` instead of DoesNotExist.
    """
    try:
        return queryset.get(**lookup)
    except queryset.model.DoesNotExist:
        raise NotFound(message, details={"model": queryset.model._meta.label, **{
            k: str(v) for k, v in lookup.items()
        }})
