"""
Deal Service Layer - Time-boxed product deals and their usage limits.

A deal's status is never stored; it is derived from the current time:
    - Upcoming: now < start_time
    - Active:   start_time <= now <= end_time
    - Ended:    now > end_time
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, NamedTuple, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from core.exceptions import BadRequest, Conflict, NotFound, service_errors
from inventory.models import Inventory, Product, ProductVariant
from .models import Deal, DealUsage, ProductDeal

logger = logging.getLogger(__name__)


class DealValidation(NamedTuple):
    valid: bool
    reason: Optional[str] = None
    remaining_usage: Optional[int] = None


def _get_deal(deal_id: int) -> Deal:
    try:
        return Deal.objects.get(id=deal_id)
    except Deal.DoesNotExist:
        raise NotFound(f"Deal with ID {deal_id} not found")


def _get_product(product_id: int) -> Product:
    try:
        return Product.objects.get(id=product_id)
    except Product.DoesNotExist:
        raise NotFound(f"Product with ID {product_id} not found")


def _check_window(start_time, end_time) -> None:
    if start_time is None or end_time is None:
        raise BadRequest("start_time and end_time are required")
    if end_time <= start_time:
        raise BadRequest("End time must be after start time")


def _check_discount(discount) -> None:
    if discount is None or not (Decimal('0') <= Decimal(discount) <= Decimal('100')):
        raise BadRequest("discount must be between 0 and 100")


def deal_price(deal: Deal, price: Decimal) -> Decimal:
    """Price after the deal's percentage discount, rounded to cents."""
    discounted = Decimal(price) * (Decimal('100') - deal.discount) / Decimal('100')
    return discounted.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


# =============================================================================
# Deal management
# =============================================================================

@service_errors('Failed to create deal')
def create_deal(
    deal_type: str,
    discount: Decimal,
    start_time,
    end_time,
    name: str = '',
    max_total_usage: Optional[int] = None,
    max_user_usage: Optional[int] = None,
    product_ids: Optional[List[int]] = None
) -> Deal:
    if deal_type not in Deal.DealType.values:
        raise BadRequest(f"Unknown deal type '{deal_type}'")
    _check_window(start_time, end_time)
    _check_discount(discount)

    with transaction.atomic():
        deal = Deal.objects.create(
            name=name or '',
            deal_type=deal_type,
            discount=Decimal(discount),
            start_time=start_time,
            end_time=end_time,
            max_total_usage=max_total_usage,
            max_user_usage=max_user_usage,
        )
        for product_id in product_ids or []:
            ProductDeal.objects.create(deal=deal, product=_get_product(product_id))

    logger.info(f"Created {deal.deal_type} deal #{deal.id} ({deal.discount}% off)")
    return deal


@service_errors('Failed to update deal')
def update_deal(deal_id: int, **fields) -> Deal:
    deal = _get_deal(deal_id)

    for field in ('name', 'deal_type', 'discount', 'start_time', 'end_time', 'max_total_usage', 'max_user_usage'):
        if field in fields:
            setattr(deal, field, fields[field])

    if deal.deal_type not in Deal.DealType.values:
        raise BadRequest(f"Unknown deal type '{deal.deal_type}'")
    _check_window(deal.start_time, deal.end_time)
    _check_discount(deal.discount)

    deal.save()
    logger.info(f"Updated deal #{deal.id}")
    return deal


@service_errors('Failed to delete deal')
def delete_deal(deal_id: int) -> None:
    deal = _get_deal(deal_id)
    deal.delete()
    logger.info(f"Deleted deal #{deal_id}")


@service_errors('Failed to retrieve deal')
def get_deal(deal_id: int) -> Deal:
    return _get_deal(deal_id)


@service_errors('Failed to retrieve deals')
def list_deals(status: Optional[str] = None, deal_type: Optional[str] = None, now=None):
    """Deals filtered by computed status and type, at query level."""
    now = now or timezone.now()
    queryset = Deal.objects.annotate(product_count=Count('product_deals'))

    if deal_type is not None:
        if deal_type not in Deal.DealType.values:
            raise BadRequest(f"Unknown deal type '{deal_type}'")
        queryset = queryset.filter(deal_type=deal_type)

    if status is None:
        return queryset
    if status == Deal.Status.UPCOMING:
        return queryset.filter(start_time__gt=now)
    if status == Deal.Status.ACTIVE:
        return queryset.filter(start_time__lte=now, end_time__gte=now)
    if status == Deal.Status.ENDED:
        return queryset.filter(end_time__lt=now)
    raise BadRequest(f"Unknown deal status '{status}'")


@service_errors('Failed to retrieve deal products')
def get_deal_products(deal_id: int):
    deal = _get_deal(deal_id)
    return deal.products.filter(is_active=True).order_by('title')


@service_errors('Failed to add product to deal')
def add_product_to_deal(deal_id: int, product_id: int) -> ProductDeal:
    deal = _get_deal(deal_id)
    product = _get_product(product_id)

    if ProductDeal.objects.filter(deal=deal, product=product).exists():
        raise Conflict("Product already has this deal")

    try:
        with transaction.atomic():
            product_deal = ProductDeal.objects.create(deal=deal, product=product)
    except IntegrityError:
        raise Conflict("Product already has this deal")

    logger.info(f"Added product {product.id} to deal #{deal.id}")
    return product_deal


@service_errors('Failed to remove product from deal')
def remove_product_from_deal(deal_id: int, product_id: int) -> None:
    deal = _get_deal(deal_id)
    product = _get_product(product_id)

    deleted, _ = ProductDeal.objects.filter(deal=deal, product=product).delete()
    if not deleted:
        raise BadRequest("Product does not have this deal")
    logger.info(f"Removed product {product.id} from deal #{deal.id}")


# =============================================================================
# Validation and usage
# =============================================================================

def _stock_for(product: Product, variant: Optional[ProductVariant] = None) -> int:
    if variant is not None:
        inventory = Inventory.objects.filter(variant=variant).first()
        return inventory.stock_quantity if inventory is not None else variant.stock_quantity
    inventory = Inventory.objects.filter(product=product, variant__isnull=True).first()
    if inventory is not None:
        return inventory.stock_quantity
    return product.stock_quantity


@service_errors('Internal error during validation')
def validate_deal_application(
    deal_id: int,
    product_id: int,
    user_id: Optional[str] = None,
    now=None,
    variant_id: Optional[int] = None
) -> DealValidation:
    """
    Check whether a deal can be applied to a product for a user.

    Never raises for an unusable deal; the reason is in the result.
    When variant_id is given, stock is checked on that variant.
    remaining_usage is the number of redemptions left for this user,
    or None when the deal is unlimited.
    """
    now = now or timezone.now()

    deal = Deal.objects.filter(id=deal_id).first()
    if deal is None:
        return DealValidation(False, 'Deal not found')

    if now < deal.start_time:
        return DealValidation(False, 'Deal has not started yet')
    if now > deal.end_time:
        return DealValidation(False, 'Deal has expired')

    product = Product.objects.filter(id=product_id).first()
    if product is None:
        return DealValidation(False, 'Product not found')
    if not product.is_active:
        return DealValidation(False, 'Product is not active')
    if not ProductDeal.objects.filter(deal=deal, product=product).exists():
        return DealValidation(False, 'Product is not part of this deal')

    variant = None
    if variant_id is not None:
        variant = ProductVariant.objects.filter(id=variant_id, product=product).first()
        if variant is None:
            return DealValidation(False, 'Variant not found')
    if _stock_for(product, variant) <= 0:
        return DealValidation(False, 'Product is out of stock')

    remaining = None
    if deal.max_total_usage is not None:
        if deal.usage_count >= deal.max_total_usage:
            return DealValidation(False, 'Deal usage limit exceeded', 0)
        remaining = deal.max_total_usage - deal.usage_count

    if user_id and deal.max_user_usage is not None:
        user_usages = DealUsage.objects.filter(deal=deal, user_id=str(user_id)).count()
        if user_usages >= deal.max_user_usage:
            return DealValidation(
                False, 'You have already used this deal the maximum number of times', 0
            )
        user_remaining = deal.max_user_usage - user_usages
        remaining = user_remaining if remaining is None else min(remaining, user_remaining)

    return DealValidation(True, None, remaining)


@service_errors('Failed to record deal usage')
def record_deal_usage(
    deal_id: int,
    product_id: int,
    user_id: str,
    order_id: str
) -> Tuple[DealUsage, bool]:
    """
    Record one redemption of a deal, once per (deal, product, order).

    Raises:
        NotFound: unknown deal or product
        Conflict: max_total_usage already reached
    """
    deal = _get_deal(deal_id)
    product = _get_product(product_id)
    order_id = str(order_id)

    existing = DealUsage.objects.filter(deal=deal, product=product, order_id=order_id).first()
    if existing is not None:
        return existing, False

    try:
        with transaction.atomic():
            usage = DealUsage.objects.create(
                deal=deal,
                product=product,
                user_id=str(user_id),
                order_id=order_id,
            )
            updated = Deal.objects.filter(id=deal.id).filter(
                Q(max_total_usage__isnull=True) | Q(usage_count__lt=F('max_total_usage'))
            ).update(usage_count=F('usage_count') + 1, updated_at=timezone.now())

            if not updated:
                raise Conflict("Deal usage limit exceeded")
    except IntegrityError:
        usage = DealUsage.objects.get(deal=deal, product=product, order_id=order_id)
        return usage, False

    logger.info(f"Recorded deal #{deal.id} usage for order {order_id} by user {user_id}")
    return usage, True


@service_errors('Failed to retrieve deal usage stats')
def get_deal_usage_stats(deal_id: int) -> Dict:
    deal = _get_deal(deal_id)
    usages = DealUsage.objects.filter(deal=deal)
    return {
        'deal_id': deal.id,
        'total_usage': usages.count(),
        'unique_users': usages.values('user_id').distinct().count(),
        'recent_usage': list(usages.order_by('-used_at').values_list('used_at', flat=True)[:10]),
    }
