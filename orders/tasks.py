"""
Celery tasks for order processing.

Tasks:
    - send_order_confirmation: Async notification after order confirmation
    - process_pending_orders: Reject orders stuck in PENDING
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True
)
def send_order_confirmation(self, order_id: int):
    """
    Async task triggered after a confirmed order is committed.

    Args:
        order_id: ID of the confirmed order

    Returns:
        Dict with confirmation details
    """
    from orders.models import Order

    try:
        order = Order.objects.prefetch_related('items__product', 'items__variant').get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order #{order_id} not found for confirmation")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if order.status != Order.Status.CONFIRMED:
        logger.warning(
            f"Order #{order_id} is not confirmed (status: {order.status}), "
            "skipping confirmation"
        )
        return {
            'status': 'skipped',
            'message': f'Order {order_id} is not confirmed'
        }

    logger.info(f"[CELERY] Processing confirmation for Order #{order.id}")

    items_summary = []
    for item in order.items.all():
        label = item.product.title
        if item.variant_id:
            label = f"{label} ({item.variant.variant_name})"
        items_summary.append(f"  - {item.quantity}x {label} @ ${item.unit_price}")

    confirmation_message = f"""
    ===============================================
    ORDER CONFIRMATION - #{order.id}
    ===============================================
    Customer: {order.user_id}
    Subtotal: ${order.subtotal}
    Discount: ${order.discount_amount}{f' ({order.coupon_code})' if order.coupon_code else ''}
    Shipping: ${order.shipping_fee}
    Total: ${order.total_amount}

    Items:
{chr(10).join(items_summary)}

    Created: {order.created_at.strftime('%Y-%m-%d %H:%M:%S')}
    ===============================================
    """

    logger.info(confirmation_message)

    return {
        'status': 'success',
        'order_id': order.id,
        'message': f'Confirmation sent for order {order_id}'
    }


@shared_task
def process_pending_orders(max_age_minutes: int = 5):
    """
    Periodic task to reject orders stuck in PENDING status.

    Placement commits PENDING only together with its final status, so
    stuck rows only come from interrupted processes.
    """
    from orders.models import Order

    threshold = timezone.now() - timedelta(minutes=max_age_minutes)
    stuck_orders = Order.objects.filter(
        status=Order.Status.PENDING,
        created_at__lt=threshold
    )

    count = stuck_orders.update(
        status=Order.Status.REJECTED,
        rejection_reason="Order processing timeout"
    )
    if count > 0:
        logger.warning(f"Rejected {count} stuck pending orders")

    return {'processed': count}
