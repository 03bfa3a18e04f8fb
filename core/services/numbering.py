# core/services/numbering.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.db import transaction
from django.utils import timezone

from core.models import NumberingScheme, NumberSequence


@dataclass
class NumberingConfig:
    field: str
    pattern: str
    reset: str
    start: int


def _get_config_for_instance(instance, field_name: str = "number") -> NumberingConfig:
    scheme = NumberingScheme.get_for_instance(instance, field_name=field_name)
    return NumberingConfig(
        field=scheme.field_name,
        pattern=scheme.pattern,
        reset=scheme.reset,
        start=scheme.start,
    )


def _get_period(reset: str) -> str:
    now = timezone.localtime()
    if reset == NumberingScheme.ResetPolicy.YEAR:
        return str(now.year)
    if reset == NumberingScheme.ResetPolicy.MONTH:
        return f"{now.year}-{now.month:02d}"
    return ""


def next_sequence_value(key: str, period: str = "", start: int = 1) -> int:
    """
    Return the next integer for key+period.
    The sequence row is locked, so concurrent callers never share a value.
    """
    with transaction.atomic():
        seq_obj, _created = NumberSequence.objects.select_for_update().get_or_create(
            key=key,
            period=period,
            defaults={"last_value": start - 1},
        )
        seq_obj.last_value += 1
        seq_obj.save(update_fields=["last_value"])
        return seq_obj.last_value


def generate_number_for_instance(instance, field_name: str = "number") -> str:
    """
    Human-friendly number for a model instance, e.g.:

        po.number = generate_number_for_instance(po)   # "PO-2025-0007"
    """
    cfg = _get_config_for_instance(instance, field_name=field_name)
    now = timezone.localtime()
    period = _get_period(cfg.reset)
    seq = next_sequence_value(key=instance._meta.label, period=period, start=cfg.start)

    context: dict[str, Any] = {}
    if hasattr(instance, "get_numbering_context"):
        context.update(instance.get_numbering_context() or {})

    context.setdefault("year", now.year)
    context.setdefault("month", now.month)
    context.setdefault("day", now.day)
    context.setdefault("prefix", "")
    context["seq"] = seq

    return cfg.pattern.format(**context)
