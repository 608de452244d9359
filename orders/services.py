"""
Order Service Layer - Atomic order placement and returns.

Implements fail-fast pattern:
1. Create order in PENDING status
2. Lock inventory rows with select_for_update()
3. Validate ALL items have enough available stock
4. If ANY fails: Mark REJECTED, no deductions
5. If ALL pass: write SALE ledger entries, apply coupon, mark CONFIRMED,
   record coupon/deal usage, trigger async task after commit

Returns go the other way: one RETURN ledger entry per item.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Q

from core.exceptions import BadRequest, NotFound, service_errors
from inventory.models import Inventory, InventoryLog, Product, ProductVariant
from inventory.services import record_change
from promotions import deals as deal_service
from promotions import services as coupon_service
from .models import Order, OrderItem

logger = logging.getLogger(__name__)


class OrderValidationError(BadRequest):
    """Raised when the order payload is malformed."""
    pass


def _default_shipping_fee() -> Decimal:
    return Decimal(str(getattr(settings, 'DEFAULT_SHIPPING_FEE', '0.00')))


def _item_key(item: Dict) -> Tuple[int, Optional[int]]:
    return item['product_id'], item.get('variant_id')


def validate_order_items(items: List[Dict]) -> None:
    """
    Validate order items structure.

    Args:
        items: List of dicts with 'product_id', 'quantity' and optional
            'variant_id' / 'deal_id'

    Raises:
        OrderValidationError: If validation fails
    """
    if not items:
        raise OrderValidationError("Order must contain at least one item")

    seen = set()
    for idx, item in enumerate(items):
        if 'product_id' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'product_id'")
        if 'quantity' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'quantity'")

        quantity = item['quantity']
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise OrderValidationError(f"Item {idx}: quantity must be a positive integer")

        key = _item_key(item)
        if key in seen:
            raise OrderValidationError(f"Item {idx}: duplicate product_id {key[0]}")
        seen.add(key)


def _reject(order: Order, reason: str) -> Tuple[Order, str]:
    order.status = Order.Status.REJECTED
    order.rejection_reason = reason
    order.save(update_fields=['status', 'rejection_reason', 'updated_at'])
    logger.warning(f"Order #{order.id} rejected: {reason}")
    return order, reason


def _lock_inventory(items: List[Dict]) -> Dict[Tuple[int, Optional[int]], Inventory]:
    """Lock the inventory rows for the order, in id order to avoid deadlocks."""
    product_ids = [i['product_id'] for i in items if i.get('variant_id') is None]
    variant_ids = [i['variant_id'] for i in items if i.get('variant_id') is not None]

    inventory_qs = Inventory.objects.select_for_update().filter(
        Q(product_id__in=product_ids, variant__isnull=True) | Q(variant_id__in=variant_ids)
    ).order_by('id')

    return {(inv.product_id, inv.variant_id): inv for inv in inventory_qs}


def _enqueue_confirmation(order_id: int) -> None:
    try:
        from .tasks import send_order_confirmation
        send_order_confirmation.delay(order_id)
        logger.info(f"Triggered confirmation task for order #{order_id}")
    except Exception as e:
        # Don't fail the order if task queuing fails
        logger.error(f"Failed to queue confirmation task: {e}")


@service_errors('Failed to create order')
def create_order(
    user_id: str,
    items: List[Dict],
    coupon_code: Optional[str] = None,
    shipping_fee: Optional[Decimal] = None
) -> Tuple[Order, Optional[str]]:
    """
    Create an order with atomic transaction handling.

    Implements fail-fast pattern:
    - If ANY item lacks available stock, the order is REJECTED immediately
    - No partial deductions occur on failure
    - Stock is locked during validation to prevent race conditions

    Args:
        user_id: Customer placing the order
        items: List of dicts with 'product_id', 'quantity', optional
            'variant_id' and 'deal_id'
        coupon_code: Optional coupon to apply to the subtotal
        shipping_fee: Defaults to settings.DEFAULT_SHIPPING_FEE

    Returns:
        Tuple of (Order object, error message or None)

    Raises:
        OrderValidationError: If items validation fails
        BadRequest: coupon or deal cannot be applied
        Conflict: coupon or deal usage limit reached concurrently
    """
    validate_order_items(items)
    if not user_id:
        raise OrderValidationError("user_id is required")
    user_id = str(user_id)
    shipping_fee = _default_shipping_fee() if shipping_fee is None else Decimal(shipping_fee)

    with transaction.atomic():
        order = Order.objects.create(
            user_id=user_id,
            status=Order.Status.PENDING,
            shipping_fee=shipping_fee,
        )
        logger.info(f"Created order #{order.id} for user {user_id}")

        product_ids = [item['product_id'] for item in items]
        products = {
            p.id: p for p in Product.objects.filter(id__in=product_ids, is_active=True)
        }
        missing_products = set(product_ids) - set(products.keys())
        if missing_products:
            return _reject(order, f"Products not found or inactive: {sorted(missing_products)}")

        variant_ids = [item['variant_id'] for item in items if item.get('variant_id') is not None]
        variants = {v.id: v for v in ProductVariant.objects.filter(id__in=variant_ids)}
        for item in items:
            variant_id = item.get('variant_id')
            if variant_id is None:
                continue
            variant = variants.get(variant_id)
            if variant is None:
                return _reject(order, f"Variant {variant_id} not found")
            if variant.product_id != item['product_id']:
                raise OrderValidationError(
                    f"Variant with ID {variant_id} does not belong to product "
                    f"with ID {item['product_id']}"
                )

        inventory_map = _lock_inventory(items)

        missing_inventory = [key for key in map(_item_key, items) if key not in inventory_map]
        if missing_inventory:
            return _reject(order, f"Products not stocked: {[k[0] for k in missing_inventory]}")

        # FAIL-FAST: Check all stock BEFORE any deductions
        insufficient_stock = []
        for item in items:
            inventory = inventory_map[_item_key(item)]
            if inventory.available_quantity < item['quantity']:
                insufficient_stock.append(
                    f"{products[item['product_id']].title}: requested {item['quantity']}, "
                    f"available {inventory.available_quantity}"
                )
        if insufficient_stock:
            return _reject(order, f"Insufficient stock: {'; '.join(insufficient_stock)}")

        # Price items, applying deals where requested
        subtotal = Decimal('0.00')
        order_items = []
        deal_items = []
        for item in items:
            product = products[item['product_id']]
            variant = variants.get(item.get('variant_id'))
            unit_price = variant.effective_price if variant else product.price

            deal_id = item.get('deal_id')
            if deal_id is not None:
                validation = deal_service.validate_deal_application(
                    deal_id, product.id, user_id, variant_id=item.get('variant_id')
                )
                if not validation.valid:
                    raise BadRequest(validation.reason)
                unit_price = deal_service.deal_price(deal_service.get_deal(deal_id), unit_price)
                deal_items.append((deal_id, product.id))

            order_items.append(OrderItem(
                order=order,
                product=product,
                variant=variant,
                quantity=item['quantity'],
                unit_price=unit_price
            ))
            subtotal += unit_price * item['quantity']

        discount = Decimal('0.00')
        if coupon_code:
            applied = coupon_service.apply_coupon(
                coupon_code,
                subtotal,
                user_id=user_id,
                cart_items=[
                    {'product_id': oi.product_id, 'quantity': oi.quantity, 'unit_price': oi.unit_price}
                    for oi in order_items
                ],
            )
            discount = applied.discount_amount
            order.coupon_code = applied.coupon_code
            if applied.free_shipping:
                shipping_fee = Decimal('0.00')

        # All checks passed - deduct stock through the ledger
        for order_item in order_items:
            record_change(
                order_item.product_id,
                InventoryLog.ChangeType.SALE,
                -order_item.quantity,
                variant_id=order_item.variant_id,
                note=f"Order #{order.id}",
            )
        OrderItem.objects.bulk_create(order_items)

        order.status = Order.Status.CONFIRMED
        order.subtotal = subtotal
        order.discount_amount = discount
        order.shipping_fee = shipping_fee
        order.total_amount = subtotal - discount + shipping_fee
        order.save()

        if order.coupon_code:
            coupon_service.record_usage(order.id, user_id, order.coupon_code, discount)
        for deal_id, product_id in deal_items:
            deal_service.record_deal_usage(deal_id, product_id, user_id, order.id)

        logger.info(
            f"Order #{order.id} confirmed: {len(order_items)} items, "
            f"total ${order.total_amount}"
        )

        order_id = order.id
        transaction.on_commit(lambda: _enqueue_confirmation(order_id))

    return order, None


@service_errors('Failed to return order')
def return_order(order_id: int, note: Optional[str] = None) -> Order:
    """
    Put a confirmed order's items back into stock.

    Coupon and deal usages stay recorded.

    Raises:
        NotFound: unknown order
        BadRequest: order is not CONFIRMED
    """
    with transaction.atomic():
        try:
            order = Order.objects.select_for_update().get(id=order_id)
        except Order.DoesNotExist:
            raise NotFound(f"Order with ID {order_id} not found")

        if order.status != Order.Status.CONFIRMED:
            raise BadRequest(f"Only confirmed orders can be returned (status: {order.status})")

        for item in order.items.all():
            record_change(
                item.product_id,
                InventoryLog.ChangeType.RETURN,
                item.quantity,
                variant_id=item.variant_id,
                note=note or f"Return of order #{order.id}",
            )

        order.status = Order.Status.RETURNED
        order.save(update_fields=['status', 'updated_at'])

    logger.info(f"Order #{order.id} returned")
    return order


def get_order_summary(order_id: int) -> Dict:
    """
    Get detailed order summary with optimized queries.

    Uses prefetch_related to minimize database hits.
    """
    try:
        order = Order.objects.prefetch_related(
            'items__product__category', 'items__variant'
        ).get(id=order_id)
    except Order.DoesNotExist:
        raise NotFound(f"Order with ID {order_id} not found")

    return {
        'id': order.id,
        'user_id': order.user_id,
        'status': order.status,
        'subtotal': str(order.subtotal),
        'discount_amount': str(order.discount_amount),
        'shipping_fee': str(order.shipping_fee),
        'total_amount': str(order.total_amount),
        'coupon_code': order.coupon_code or None,
        'item_count': order.items.count(),
        'items': [
            {
                'product_id': item.product.id,
                'product_title': item.product.title,
                'variant': item.variant.variant_name if item.variant_id else None,
                'category': item.product.category.name,
                'quantity': item.quantity,
                'unit_price': str(item.unit_price),
                'subtotal': str(item.subtotal)
            }
            for item in order.items.all()
        ],
        'rejection_reason': order.rejection_reason or None,
        'created_at': order.created_at.isoformat(),
        'updated_at': order.updated_at.isoformat()
    }
