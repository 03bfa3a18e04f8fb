import logging

from django.contrib.auth import get_user_model

from accounts.roles import Role, users_with_role
from core.domain.dispatcher import register_handler
from core.models import Notification
from core.services.notifications import create_notification, notify_many

from .domain import (
    PurchaseOrderApproved,
    PurchaseOrderCancelled,
    PurchaseOrderReceived,
    PurchaseOrderSubmitted,
)
from .models import PurchaseOrder

logger = logging.getLogger(__name__)


def _po(po_id):
    return PurchaseOrder.objects.filter(pk=po_id).first()


def _notify_author(author_id, verb, po, *, level=Notification.Levels.INFO) -> None:
    if author_id is None:
        return
    author = get_user_model().objects.filter(pk=author_id, is_active=True).first()
    if author is None:
        logger.info("PO author %s is gone, notification skipped", author_id)
        return
    create_notification(author, verb, po, level=level)


@register_handler(PurchaseOrderSubmitted)
def ask_bosses_to_approve(event: PurchaseOrderSubmitted) -> None:
    sent = notify_many(
        users_with_role(Role.BOSS),
        f"Purchase order {event.number} ({event.grand_total}) is waiting for approval.",
        _po(event.po_id),
    )
    logger.info("PO %s submitted, %d boss(es) notified", event.number, sent)


@register_handler(PurchaseOrderApproved)
def notify_author_of_approval(event: PurchaseOrderApproved) -> None:
    _notify_author(
        event.author_id,
        f"Purchase order {event.number} was approved.",
        _po(event.po_id),
        level=Notification.Levels.SUCCESS,
    )


@register_handler(PurchaseOrderCancelled)
def notify_author_of_cancellation(event: PurchaseOrderCancelled) -> None:
    _notify_author(
        event.author_id,
        f"Purchase order {event.number} was cancelled: {event.reason}",
        _po(event.po_id),
        level=Notification.Levels.WARNING,
    )


@register_handler(PurchaseOrderReceived)
def notify_author_of_receipt(event: PurchaseOrderReceived) -> None:
    _notify_author(
        event.author_id,
        f"Purchase order {event.number} has been fully received.",
        _po(event.po_id),
    )
