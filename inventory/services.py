"""
Inventory Service Layer - Stock ledger and inventory record maintenance.

Every stock change follows the same path inside one transaction:
1. Validate the product/variant pair
2. Append an InventoryLog entry (the ledger)
3. Apply the delta to the Inventory row with an atomic UPDATE,
   flooring stock at zero
4. Rewrite the owning Product/Variant stock_quantity mirror

Counters are never read and written back in two round trips: stock and
reservation changes are single conditional UPDATE statements.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import F, IntegerField, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from core.exceptions import BadRequest, NotFound, service_errors
from .models import Inventory, InventoryLog, Product, ProductVariant

logger = logging.getLogger(__name__)

# Availability below this level is reported as LOW_STOCK
LOW_AVAILABILITY_LEVEL = 5


def _default_threshold() -> int:
    return getattr(settings, 'DEFAULT_LOW_STOCK_THRESHOLD', 5)


def _resolve_target(
    product_id: Optional[int],
    variant_id: Optional[int] = None
) -> Tuple[Product, Optional[ProductVariant]]:
    """
    Load the product and optional variant a stock change refers to.

    Raises:
        NotFound: product or variant does not exist
        BadRequest: variant belongs to a different product
    """
    variant = None
    if variant_id is not None:
        try:
            variant = ProductVariant.objects.select_related('product').get(id=variant_id)
        except ProductVariant.DoesNotExist:
            raise NotFound(f"Variant with ID {variant_id} not found")

        if product_id is None:
            return variant.product, variant

    if product_id is None:
        raise BadRequest("Product ID is required")

    try:
        product = Product.objects.get(id=product_id)
    except Product.DoesNotExist:
        raise NotFound(f"Product with ID {product_id} not found")

    if variant is not None and variant.product_id != product.id:
        raise BadRequest(
            f"Variant with ID {variant_id} does not belong to product with ID {product_id}"
        )
    return product, variant


def _inventory_filter(product: Product, variant: Optional[ProductVariant]) -> Dict:
    if variant is not None:
        return {'variant': variant}
    return {'product': product, 'variant__isnull': True}


def _sync_mirror(inventory: Inventory) -> None:
    """Rewrite the denormalized stock_quantity on the owning product or variant."""
    if inventory.variant_id is not None:
        ProductVariant.objects.filter(id=inventory.variant_id).update(
            stock_quantity=inventory.stock_quantity
        )
    else:
        Product.objects.filter(id=inventory.product_id).update(
            stock_quantity=inventory.stock_quantity
        )


def _enqueue_low_stock_alert(inventory_id: int) -> None:
    try:
        from .tasks import notify_low_stock
        notify_low_stock.delay(inventory_id)
    except Exception as e:
        # The alert is fire-and-forget; stock changes never fail because of it
        logger.error(f"Failed to queue low stock alert for inventory #{inventory_id}: {e}")


def _schedule_low_stock_alert(inventory: Inventory) -> None:
    if inventory.is_low_stock:
        inventory_id = inventory.id
        transaction.on_commit(lambda: _enqueue_low_stock_alert(inventory_id))


def apply_delta(
    product: Product,
    variant: Optional[ProductVariant],
    delta: int
) -> Inventory:
    """
    Apply a signed stock delta to the inventory row for (product, variant).

    - Missing row: created with stock_quantity = max(0, delta)
    - Existing row: stock_quantity = max(0, stock_quantity + delta), as one UPDATE
    - last_restocked_at only moves when delta > 0
    - The product/variant mirror is rewritten in the same transaction

    Stock is floored at zero after every step rather than rejecting an
    over-deduction.
    """
    now = timezone.now()
    with transaction.atomic():
        inventory, created = Inventory.objects.get_or_create(
            product=product,
            variant=variant,
            defaults={
                'stock_quantity': max(0, delta),
                'reserved_quantity': 0,
                'threshold': _default_threshold(),
                'last_restocked_at': now if delta > 0 else None,
            }
        )

        if not created:
            updates = {
                'stock_quantity': Greatest(
                    F('stock_quantity') + delta,
                    Value(0),
                    output_field=IntegerField()
                ),
                'updated_at': now,
            }
            if delta > 0:
                updates['last_restocked_at'] = now
            Inventory.objects.filter(id=inventory.id).update(**updates)
            inventory.refresh_from_db()

        if delta < 0 and inventory.stock_quantity == 0:
            logger.warning(
                f"Inventory #{inventory.id} reached zero stock after delta {delta}"
            )

        _sync_mirror(inventory)

        if delta < 0:
            _schedule_low_stock_alert(inventory)

    return inventory


def _append_log(
    product: Product,
    variant: Optional[ProductVariant],
    change_type: str,
    quantity_changed: int,
    note: Optional[str]
) -> InventoryLog:
    return InventoryLog.objects.create(
        product=product,
        variant=variant,
        change_type=change_type,
        quantity_changed=quantity_changed,
        note=note,
    )


# =============================================================================
# Stock Ledger
# =============================================================================

@service_errors('Failed to create inventory log')
def record_change(
    product_id: int,
    change_type: str,
    quantity_changed: int,
    variant_id: Optional[int] = None,
    note: Optional[str] = None
) -> InventoryLog:
    """
    Append a ledger entry and apply it to the inventory record.

    Args:
        product_id: Owning product
        change_type: One of InventoryLog.ChangeType
        quantity_changed: Signed delta (negative for sales, positive for restock/returns)
        variant_id: Optional variant of the product
        note: Free-text reason

    Raises:
        NotFound: product or variant missing
        BadRequest: variant/product mismatch, unknown change type, zero delta
    """
    if change_type not in InventoryLog.ChangeType.values:
        raise BadRequest(f"Unknown change type '{change_type}'")
    if not isinstance(quantity_changed, int) or isinstance(quantity_changed, bool):
        raise BadRequest("quantity_changed must be an integer")
    if quantity_changed == 0:
        raise BadRequest("quantity_changed must be non-zero")

    product, variant = _resolve_target(product_id, variant_id)

    with transaction.atomic():
        log = _append_log(product, variant, change_type, quantity_changed, note)
        inventory = apply_delta(product, variant, quantity_changed)

    target = f" variant {variant.id}" if variant else ''
    logger.info(
        f"Recorded {change_type} {quantity_changed:+d} for product {product.id}{target}, "
        f"stock now {inventory.stock_quantity}"
    )
    return log


@service_errors('Failed to retrieve inventory logs')
def get_logs(product_id: Optional[int] = None, variant_id: Optional[int] = None):
    """Ledger entries, newest first, optionally narrowed to a product/variant."""
    queryset = InventoryLog.objects.select_related('product', 'variant')
    if product_id is not None:
        queryset = queryset.filter(product_id=product_id)
    if variant_id is not None:
        queryset = queryset.filter(variant_id=variant_id)
    return queryset.order_by('-created_at', '-id')


# =============================================================================
# Inventory Record
# =============================================================================

@service_errors('Failed to retrieve inventory')
def get_inventory(product_id: Optional[int] = None, variant_id: Optional[int] = None) -> Inventory:
    product, variant = _resolve_target(product_id, variant_id)
    inventory = Inventory.objects.select_related('product', 'variant').filter(
        **_inventory_filter(product, variant)
    ).first()
    if inventory is None:
        target = f"variant {variant.id}" if variant else f"product {product.id}"
        raise NotFound(f"Inventory for {target} not found")
    return inventory


@service_errors('Failed to update inventory')
def update_inventory(
    product_id: Optional[int] = None,
    variant_id: Optional[int] = None,
    stock_quantity: Optional[int] = None,
    reserved_quantity: Optional[int] = None,
    threshold: Optional[int] = None
) -> Inventory:
    """
    Admin correction of an inventory row, creating it when missing.

    A change to stock_quantity is written to the ledger in the same
    transaction (RESTOCK when it grows, MANUAL when it shrinks), so the
    ledger and the record never drift apart.
    """
    for field, value in (
        ('stock_quantity', stock_quantity),
        ('reserved_quantity', reserved_quantity),
        ('threshold', threshold),
    ):
        if value is not None and value < 0:
            raise BadRequest(f"{field} cannot be negative")

    product, variant = _resolve_target(product_id, variant_id)
    now = timezone.now()

    with transaction.atomic():
        inventory = Inventory.objects.select_for_update().filter(
            **_inventory_filter(product, variant)
        ).first()

        if inventory is None:
            initial_stock = stock_quantity or 0
            inventory = Inventory.objects.create(
                product=product,
                variant=variant,
                stock_quantity=initial_stock,
                reserved_quantity=reserved_quantity or 0,
                threshold=threshold if threshold is not None else _default_threshold(),
                last_restocked_at=now if initial_stock > 0 else None,
            )
            if initial_stock > 0:
                _append_log(
                    product, variant, InventoryLog.ChangeType.RESTOCK,
                    initial_stock, 'Initial inventory setup'
                )
        else:
            quantity_change = 0
            update_fields = ['updated_at']
            if stock_quantity is not None:
                quantity_change = stock_quantity - inventory.stock_quantity
                inventory.stock_quantity = stock_quantity
                update_fields.append('stock_quantity')
                if quantity_change > 0:
                    inventory.last_restocked_at = now
                    update_fields.append('last_restocked_at')
            if reserved_quantity is not None:
                inventory.reserved_quantity = reserved_quantity
                update_fields.append('reserved_quantity')
            if threshold is not None:
                inventory.threshold = threshold
                update_fields.append('threshold')
            inventory.save(update_fields=update_fields)

            if quantity_change != 0:
                _append_log(
                    product,
                    variant,
                    InventoryLog.ChangeType.RESTOCK if quantity_change > 0
                    else InventoryLog.ChangeType.MANUAL,
                    quantity_change,
                    'Manual inventory update'
                )

        _sync_mirror(inventory)
        _schedule_low_stock_alert(inventory)

    logger.info(f"Updated inventory #{inventory.id} for product {product.id}")
    return inventory


@service_errors('Failed to add stock')
def add_stock(
    product_id: int,
    quantity: int,
    variant_id: Optional[int] = None,
    threshold: Optional[int] = None,
    note: Optional[str] = None
) -> Inventory:
    """Restock a product or variant, optionally resetting its low stock threshold."""
    if not isinstance(quantity, int) or quantity < 1:
        raise BadRequest("quantity must be a positive integer")
    if threshold is not None and threshold < 0:
        raise BadRequest("threshold cannot be negative")

    product, variant = _resolve_target(product_id, variant_id)

    with transaction.atomic():
        _append_log(
            product, variant, InventoryLog.ChangeType.RESTOCK,
            quantity, note or 'Initial stock setup'
        )
        inventory = apply_delta(product, variant, quantity)
        if threshold is not None and inventory.threshold != threshold:
            inventory.threshold = threshold
            inventory.save(update_fields=['threshold', 'updated_at'])
            _schedule_low_stock_alert(inventory)

    logger.info(f"Added {quantity} units to inventory #{inventory.id}")
    return inventory


@service_errors('Failed to reserve stock')
def reserve_stock(
    product_id: Optional[int],
    quantity: int,
    variant_id: Optional[int] = None
) -> Inventory:
    """
    Hold `quantity` units for an unfulfilled order.

    The reservation only succeeds if stock - reserved >= quantity at the
    moment of the UPDATE.
    """
    if quantity < 1:
        raise BadRequest("quantity must be a positive integer")

    product, variant = _resolve_target(product_id, variant_id)
    lookup = _inventory_filter(product, variant)

    with transaction.atomic():
        updated = Inventory.objects.filter(**lookup).filter(
            stock_quantity__gte=F('reserved_quantity') + quantity
        ).update(
            reserved_quantity=F('reserved_quantity') + quantity,
            updated_at=timezone.now()
        )

        if not updated:
            inventory = Inventory.objects.filter(**lookup).first()
            if inventory is None:
                raise NotFound(f"Inventory for product {product.id} not found")
            raise BadRequest(
                f"Not enough stock to reserve {quantity} units: "
                f"available {inventory.available_quantity}"
            )

        inventory = Inventory.objects.get(**lookup)

    logger.info(f"Reserved {quantity} units on inventory #{inventory.id}")
    return inventory


@service_errors('Failed to release reservation')
def release_reservation(
    product_id: Optional[int],
    quantity: int,
    variant_id: Optional[int] = None
) -> Inventory:
    """Release up to `quantity` reserved units, never going below zero."""
    if quantity < 1:
        raise BadRequest("quantity must be a positive integer")

    product, variant = _resolve_target(product_id, variant_id)
    lookup = _inventory_filter(product, variant)

    with transaction.atomic():
        updated = Inventory.objects.filter(**lookup).update(
            reserved_quantity=Greatest(
                F('reserved_quantity') - quantity,
                Value(0),
                output_field=IntegerField()
            ),
            updated_at=timezone.now()
        )
        if not updated:
            raise NotFound(f"Inventory for product {product.id} not found")
        inventory = Inventory.objects.get(**lookup)

    logger.info(f"Released {quantity} reserved units on inventory #{inventory.id}")
    return inventory


def _stock_status(available: int) -> str:
    if available <= 0:
        return 'OUT_OF_STOCK'
    if available < LOW_AVAILABILITY_LEVEL:
        return 'LOW_STOCK'
    return 'IN_STOCK'


def get_availability(product_id: Optional[int] = None, variant_id: Optional[int] = None) -> Dict:
    """
    Availability summary for a product or variant.

    Falls back to the product/variant mirror when no inventory row exists.
    """
    product, variant = _resolve_target(product_id, variant_id)
    inventory = Inventory.objects.filter(**_inventory_filter(product, variant)).first()

    if inventory is not None:
        available = inventory.available_quantity
    elif variant is not None:
        available = variant.stock_quantity
    else:
        available = product.stock_quantity

    return {
        'product_id': product.id,
        'variant_id': variant.id if variant else None,
        'available_quantity': available,
        'stock_status': _stock_status(available),
        'updated_at': timezone.now(),
    }


def get_batch_availability(
    product_ids: Iterable[int] = (),
    variant_ids: Iterable[int] = ()
) -> Dict[str, List[Dict]]:
    """Availability for many ids at once; ids that do not exist are skipped."""
    results = {'products': [], 'variants': []}

    for product_id in product_ids:
        try:
            results['products'].append(get_availability(product_id=product_id))
        except NotFound:
            logger.debug(f"Skipping unknown product {product_id} in batch availability")

    for variant_id in variant_ids:
        try:
            results['variants'].append(get_availability(variant_id=variant_id))
        except NotFound:
            logger.debug(f"Skipping unknown variant {variant_id} in batch availability")

    return results


@service_errors('Failed to retrieve low stock items')
def get_low_stock_items():
    """Inventory rows whose stock is at or below their threshold."""
    return Inventory.objects.select_related('product', 'variant').filter(
        stock_quantity__lte=F('threshold')
    ).order_by('stock_quantity', 'id')
