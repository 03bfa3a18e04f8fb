import logging

from accounts.roles import Role, users_with_role
from core.domain.dispatcher import register_handler
from core.models import Notification
from core.services.notifications import notify_many

from .domain import LowStockDetected
from .models import Product

logger = logging.getLogger(__name__)


@register_handler(LowStockDetected)
def notify_bosses_of_low_stock(event: LowStockDetected) -> None:
    product = Product.objects.filter(pk=event.product_id).first()
    sent = notify_many(
        users_with_role(Role.BOSS),
        f"Low stock: {event.product_name} has {event.total_stock} left "
        f"(minimum {event.min_stock_level}).",
        product,
        level=Notification.Levels.WARNING,
    )
    logger.info("Low stock on product %s, %d boss(es) notified", event.product_id, sent)
