"""
Celery tasks for inventory events.

Tasks:
    - notify_low_stock: Alert operators when an inventory row drops to its threshold
"""
import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True
)
def notify_low_stock(self, inventory_id: int):
    """
    Send a low stock alert for one inventory row.

    Recipients come from settings.LOW_STOCK_ALERT_EMAILS; without
    recipients the alert is only logged.

    Returns:
        Dict with alert details
    """
    from inventory.models import Inventory

    try:
        inventory = Inventory.objects.select_related('product', 'variant').get(id=inventory_id)
    except Inventory.DoesNotExist:
        logger.error(f"Inventory #{inventory_id} not found for low stock alert")
        return {'status': 'error', 'message': f'Inventory {inventory_id} not found'}

    if not inventory.is_low_stock:
        logger.info(f"Inventory #{inventory_id} restocked before alert was sent, skipping")
        return {'status': 'skipped', 'inventory_id': inventory_id}

    target = inventory.product.title
    if inventory.variant_id:
        target = f"{target} ({inventory.variant.variant_name})"

    subject = f"Low stock: {target}"
    message = (
        f"{target} is running low.\n"
        f"Stock: {inventory.stock_quantity}\n"
        f"Reserved: {inventory.reserved_quantity}\n"
        f"Available: {inventory.available_quantity}\n"
        f"Threshold: {inventory.threshold}\n"
    )

    logger.warning(f"[CELERY] {subject} - stock {inventory.stock_quantity}/{inventory.threshold}")

    recipients = getattr(settings, 'LOW_STOCK_ALERT_EMAILS', [])
    if recipients:
        send_mail(
            subject=subject,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=recipients,
            fail_silently=False,
        )
        logger.info(f"Low stock alert for inventory #{inventory_id} sent to {len(recipients)} recipients")

    return {
        'status': 'success',
        'inventory_id': inventory_id,
        'stock_quantity': inventory.stock_quantity,
        'recipients': len(recipients),
    }
