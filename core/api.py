# core/api.py
"""
JSON boundary helpers shared by every app's api.py.

Every response uses one envelope:

    {"version": 1, "ok": true,  "data": {...}, "error": null}
    {"version": 1, "ok": false, "data": null,
     "error": {"kind": "over_payment", "message": "...", "details": {}, "retryable": false}}
"""
from __future__ import annotations

import datetime
import json
import logging
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Any, Callable, Iterable, Optional

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError
from django.db import OperationalError
from django.http import Http404, HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from core.exceptions import BusinessValidationError, Busy, ErrorKindMixin
from core.services.locking import is_lock_error

logger = logging.getLogger(__name__)

API_VERSION = 1


# ============================================================
# Envelope
# ============================================================
def success(data: Any = None, *, status: int = 200) -> JsonResponse:
    return JsonResponse(
        {"version": API_VERSION, "ok": True, "data": data, "error": None},
        status=status,
    )


def failure(kind: str, message: str, *, status: int, details: Optional[dict] = None, retryable: bool = False) -> JsonResponse:
    return JsonResponse(
        {
            "version": API_VERSION,
            "ok": False,
            "data": None,
            "error": {
                "kind": kind,
                "message": message,
                "details": details or {},
                "retryable": retryable,
            },
        },
        status=status,
    )


def error_response(exc: Exception) -> JsonResponse:
    """
    Map an exception raised by a service to the envelope.
    """
    if isinstance(exc, ErrorKindMixin):
        return failure(
            exc.kind,
            exc.get_message(),
            status=exc.status_code,
            details=exc.get_details(),
            retryable=exc.retryable,
        )

    if isinstance(exc, ValidationError):
        details = exc.message_dict if hasattr(exc, "error_dict") else {}
        return failure("validation_error", " ".join(exc.messages), status=400, details=details)

    if isinstance(exc, PermissionDenied):
        return failure("forbidden", str(exc) or "Forbidden.", status=403)

    if isinstance(exc, (ObjectDoesNotExist, Http404)):
        return failure("not_found", str(exc) or "Not found.", status=404)

    # Write conflicts outside lock_row(), e.g. SQLite upgrading a read lock.
    if isinstance(exc, OperationalError) and is_lock_error(exc):
        logger.warning("Database busy: %s", exc)
        return error_response(Busy())

    logger.exception("Unhandled error in API view")
    return failure("internal", "An unexpected error occurred.", status=500)


# ============================================================
# View decorator
# ============================================================
def api_view(methods: Iterable[str], *, auth: bool = True):
    """
    Decorate a function view:

        @api_view(["POST"])
        def po_create(request, actor):
            ...
            return success(payload, status=201)

    - rejects other HTTP methods with 405
    - resolves the bearer token into an ActorContext (401 when missing)
    - converts every raised error into the envelope
    """
    allowed = {m.upper() for m in methods}

    def decorator(func: Callable):
        @csrf_exempt
        @wraps(func)
        def wrapper(request: HttpRequest, *args, **kwargs):
            if request.method not in allowed:
                response = failure(
                    "method_not_allowed",
                    f"Method {request.method} not allowed.",
                    status=405,
                )
                response["Allow"] = ", ".join(sorted(allowed))
                return response

            try:
                if auth:
                    from accounts.auth import actor_from_request

                    kwargs["actor"] = actor_from_request(request)
                return func(request, *args, **kwargs)
            except Exception as exc:
                if isinstance(exc, ErrorKindMixin) and exc.status_code < 500:
                    logger.warning(
                        "%s %s rejected: %s (%s)",
                        request.method,
                        request.path,
                        exc.kind,
                        exc.get_message(),
                    )
                return error_response(exc)

        return wrapper

    return decorator


# ============================================================
# Request parsing
# ============================================================
def parse_json(request: HttpRequest) -> dict[str, Any]:
    if not request.body:
        return {}
    try:
        data = json.loads(request.body.decode(request.encoding or "utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise BusinessValidationError("Request body is not valid JSON.")
    if not isinstance(data, dict):
        raise BusinessValidationError("Request body must be a JSON object.")
    return data


def object_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """
    ``data[key]`` as a list of JSON objects. Any other entry is rejected
    with its index rather than skipped.
    """
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise BusinessValidationError(f"'{key}' must be a list.", details={"field": key})
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            raise BusinessValidationError(
                f"'{key}[{index}]' must be an object.", details={"field": key, "line": index}
            )
    return value


def present_fields(data: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    """
    Rename the payload keys that were sent: {"unit_of_measure": "unitOfMeasure"}.
    """
    return {field: data[key] for field, key in mapping.items() if key in data}


def parse_decimal(value: Any, field: str, *, required: bool = True, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None or value == "":
        if required:
            raise BusinessValidationError(f"'{field}' is required.", details={"field": field})
        return default
    if isinstance(value, bool):
        raise BusinessValidationError(f"'{field}' must be a number.", details={"field": field})
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BusinessValidationError(f"'{field}' must be a number.", details={"field": field})
    if not result.is_finite():
        raise BusinessValidationError(f"'{field}' must be a number.", details={"field": field})
    return result


def parse_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BusinessValidationError(f"'{field}' must be an integer.", details={"field": field})


def parse_date(value: Any, field: str) -> Optional[datetime.date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise BusinessValidationError(
            f"'{field}' must be an ISO date (YYYY-MM-DD).", details={"field": field}
        )


# ============================================================
# Serialization helpers
# ============================================================
def money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None
