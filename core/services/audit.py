# core/services/audit.py

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from django.contrib.contenttypes.models import ContentType

from core.models import AuditLog

logger = logging.getLogger(__name__)


def _resolve_user(actor: Any):
    """
    Accept a user or an accounts.context.ActorContext.
    """
    user = getattr(actor, "user", actor)
    if user is not None and getattr(user, "is_authenticated", False):
        return user
    return None


def log_event(
    *,
    action: str | AuditLog.Action,
    message: str = "",
    actor: Any = None,
    target: Optional[Any] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> AuditLog:
    """
    Create a single audit log entry.

    Parameters
    ----------
    action:
        AuditLog.Action value (CREATE, STATUS_CHANGE, PAYMENT, STOCK, ...).
    message:
        Human-readable description of what happened.
    actor:
        User or ActorContext; stored only when authenticated.
    target:
        Model instance the event relates to (stored via GenericForeignKey).
    extra:
        JSON-safe mapping (decimals as strings).
    """
    action_value = action.value if isinstance(action, AuditLog.Action) else str(action)
    valid_actions = {choice[0] for choice in AuditLog.Action.choices}
    if action_value not in valid_actions:
        raise ValueError(
            f"Invalid audit action '{action_value}'. Allowed values: {sorted(valid_actions)}"
        )

    data: dict[str, Any] = {
        "action": action_value,
        "message": str(message or ""),
        "extra": dict(extra) if extra is not None else {},
    }

    user = _resolve_user(actor)
    if user is not None:
        data["actor"] = user

    if target is not None and getattr(target, "pk", None) is not None:
        data["target_content_type"] = ContentType.objects.get_for_model(target, for_concrete_model=True)
        data["target_object_id"] = str(target.pk)

    entry = AuditLog.objects.create(**data)
    logger.info("audit %s %s: %s", action_value, data.get("target_object_id", "-"), data["message"])
    return entry
