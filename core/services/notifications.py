# core/services/notifications.py

from __future__ import annotations

from typing import Any, Iterable, Optional

from django.contrib.contenttypes.models import ContentType
from django.utils import timezone

from core.exceptions import get_or_not_found
from core.models import Notification


def create_notification(
    recipient,
    verb: str,
    target: Optional[Any] = None,
    *,
    level: str = Notification.Levels.INFO,
) -> Optional[Notification]:
    """
    Create an in-app notification for an active user.

    Returns None when the recipient is missing or inactive.
    """
    if recipient is None or not getattr(recipient, "is_active", True):
        return None

    target_ct = None
    target_id = None
    if target is not None:
        target_ct = ContentType.objects.get_for_model(target, for_concrete_model=True)
        target_id = str(target.pk)

    return Notification.objects.create(
        recipient=recipient,
        verb=str(verb)[:255],
        level=level,
        target_content_type=target_ct,
        target_object_id=target_id,
    )


def notify_many(recipients: Iterable, verb: str, target: Optional[Any] = None, *, level: str = Notification.Levels.INFO) -> int:
    count = 0
    for recipient in recipients:
        if create_notification(recipient, verb, target, level=level) is not None:
            count += 1
    return count


def notifications_for(user, *, unread_only: bool = False):
    qs = Notification.objects.for_user(user).select_related("target_content_type")
    return qs.unread() if unread_only else qs


def mark_read(user, notification_id) -> Notification:
    notification = get_or_not_found(Notification.objects.for_user(user), pk=notification_id)
    notification.mark_as_read()
    return notification


def mark_all_read(user) -> int:
    return Notification.objects.for_user(user).unread().update(is_read=True, read_at=timezone.now())
