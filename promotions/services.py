"""
Coupon Service Layer - Coupon management, validation and redemption.

Validation order (first failing check wins):
1. Coupon exists
2. Stored status is ACTIVE
3. start_date <= now
4. now <= end_date
5. usage_count < usage_limit (when set)
6. Per-user usages < per_user_limit (when set and a user is given)

usage_count is only incremented by record_usage, with a guarded UPDATE
that cannot push it past usage_limit.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import BadRequest, Conflict, NotFound, service_errors
from inventory.models import Category, Product
from .models import Coupon, CouponUsage

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')

WRITABLE_STATUSES = (Coupon.Status.ACTIVE, Coupon.Status.DISABLED)


class CouponValidation(NamedTuple):
    valid: bool
    message: Optional[str] = None
    coupon: Optional[Coupon] = None


class AppliedCoupon(NamedTuple):
    coupon_code: str
    discount_amount: Decimal
    free_shipping: bool = False


def _quantize(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def _normalize_code(code: Optional[str]) -> str:
    return (code or '').strip()


def _get_coupon(coupon_id: int) -> Coupon:
    try:
        return Coupon.objects.prefetch_related('categories', 'products').get(id=coupon_id)
    except Coupon.DoesNotExist:
        raise NotFound(f"Coupon with ID {coupon_id} not found")


def _check_dates(start_date, end_date) -> None:
    if start_date is None or end_date is None:
        raise BadRequest("start_date and end_date are required")
    if end_date <= start_date:
        raise BadRequest("End date must be after start date")


def _check_amounts(coupon_type: str, value, minimum_purchase=None, max_discount_amount=None) -> None:
    if coupon_type not in Coupon.Type.values:
        raise BadRequest(f"Unknown coupon type '{coupon_type}'")
    if value is None or Decimal(value) < 0:
        raise BadRequest("value cannot be negative")
    if coupon_type == Coupon.Type.PERCENTAGE and Decimal(value) > 100:
        raise BadRequest("Percentage value cannot exceed 100")
    for field, amount in (('minimum_purchase', minimum_purchase), ('max_discount_amount', max_discount_amount)):
        if amount is not None and Decimal(amount) < 0:
            raise BadRequest(f"{field} cannot be negative")


def _set_targets(coupon: Coupon, category_ids: Optional[Iterable[int]], product_ids: Optional[Iterable[int]]) -> None:
    if category_ids is not None:
        category_ids = list(category_ids)
        categories = list(Category.objects.filter(id__in=category_ids))
        if len(categories) != len(set(category_ids)):
            raise NotFound("One or more categories not found")
        coupon.categories.set(categories)
    if product_ids is not None:
        product_ids = list(product_ids)
        products = list(Product.objects.filter(id__in=product_ids))
        if len(products) != len(set(product_ids)):
            raise NotFound("One or more products not found")
        coupon.products.set(products)


# =============================================================================
# Coupon management
# =============================================================================

@service_errors('Failed to create coupon')
def create_coupon(
    code: str,
    type: str,
    value: Decimal,
    start_date,
    end_date,
    description: str = '',
    minimum_purchase: Optional[Decimal] = None,
    max_discount_amount: Optional[Decimal] = None,
    usage_limit: Optional[int] = None,
    per_user_limit: Optional[int] = None,
    category_ids: Optional[List[int]] = None,
    product_ids: Optional[List[int]] = None
) -> Coupon:
    """
    Create a coupon with optional category/product restrictions.

    Raises:
        Conflict: code already exists
        BadRequest: invalid amounts or end_date <= start_date
        NotFound: unknown category/product ids
    """
    code = _normalize_code(code)
    if not code:
        raise BadRequest("code is required")
    _check_dates(start_date, end_date)
    _check_amounts(type, value, minimum_purchase, max_discount_amount)

    if Coupon.objects.filter(code=code).exists():
        raise Conflict(f"Coupon with code {code} already exists")

    try:
        with transaction.atomic():
            coupon = Coupon.objects.create(
                code=code,
                type=type,
                value=Decimal(value),
                description=description or '',
                minimum_purchase=minimum_purchase,
                max_discount_amount=max_discount_amount,
                usage_limit=usage_limit,
                per_user_limit=per_user_limit,
                start_date=start_date,
                end_date=end_date,
            )
            _set_targets(coupon, category_ids, product_ids)
    except IntegrityError:
        raise Conflict(f"Coupon with code {code} already exists")

    logger.info(f"Created coupon {coupon.code} ({coupon.type} {coupon.value})")
    return coupon


@service_errors('Failed to update coupon')
def update_coupon(coupon_id: int, **fields) -> Coupon:
    """
    Partially update a coupon.

    usage_count is not writable here; it only moves through record_usage.
    """
    coupon = _get_coupon(coupon_id)

    if 'code' in fields:
        code = _normalize_code(fields['code'])
        if not code:
            raise BadRequest("code is required")
        if code != coupon.code and Coupon.objects.filter(code=code).exists():
            raise Conflict(f"Coupon with code {code} already exists")
        coupon.code = code

    # EXPIRED is derived from end_date and never stored through an update.
    if 'status' in fields and fields['status'] not in WRITABLE_STATUSES:
        raise BadRequest(
            f"Coupon status can only be set to {' or '.join(WRITABLE_STATUSES)}"
        )

    for field in (
        'type', 'value', 'description', 'minimum_purchase', 'max_discount_amount',
        'usage_limit', 'per_user_limit', 'start_date', 'end_date', 'status',
    ):
        if field in fields:
            setattr(coupon, field, fields[field])

    _check_dates(coupon.start_date, coupon.end_date)
    _check_amounts(coupon.type, coupon.value, coupon.minimum_purchase, coupon.max_discount_amount)
    if coupon.usage_limit is not None and coupon.usage_limit < coupon.usage_count:
        raise BadRequest(
            f"usage_limit cannot be lower than the current usage count ({coupon.usage_count})"
        )

    try:
        with transaction.atomic():
            coupon.save()
            _set_targets(coupon, fields.get('category_ids'), fields.get('product_ids'))
    except IntegrityError:
        raise Conflict(f"Coupon with code {coupon.code} already exists")

    logger.info(f"Updated coupon {coupon.code}")
    return coupon


@service_errors('Failed to retrieve coupon')
def get_coupon(coupon_id: int) -> Coupon:
    return _get_coupon(coupon_id)


@service_errors('Failed to retrieve coupon')
def get_coupon_by_code(code: str) -> Coupon:
    code = _normalize_code(code)
    try:
        return Coupon.objects.prefetch_related('categories', 'products').get(code=code)
    except Coupon.DoesNotExist:
        raise NotFound(f"Coupon with code {code} not found")


@service_errors('Failed to retrieve coupons')
def list_coupons(status: Optional[str] = None, now=None):
    """
    Coupons, newest first.

    Filtering by status uses the effective status: EXPIRED includes
    ACTIVE coupons whose end_date has passed.
    """
    now = now or timezone.now()
    queryset = Coupon.objects.prefetch_related('categories', 'products')
    if status is None:
        return queryset
    if status not in Coupon.Status.values:
        raise BadRequest(f"Unknown coupon status '{status}'")
    if status == Coupon.Status.ACTIVE:
        return queryset.filter(status=Coupon.Status.ACTIVE, end_date__gte=now)
    if status == Coupon.Status.EXPIRED:
        return queryset.filter(
            Q(status=Coupon.Status.EXPIRED) | Q(status=Coupon.Status.ACTIVE, end_date__lt=now)
        )
    return queryset.filter(status=status)


@service_errors('Failed to disable coupon')
def disable_coupon(coupon_id: int) -> Coupon:
    coupon = _get_coupon(coupon_id)
    if coupon.status != Coupon.Status.DISABLED:
        coupon.status = Coupon.Status.DISABLED
        coupon.save(update_fields=['status', 'updated_at'])
        logger.info(f"Disabled coupon {coupon.code}")
    return coupon


@service_errors('Failed to delete coupon')
def delete_coupon(coupon_id: int) -> Dict:
    """
    Delete a coupon, or disable it when it has already been redeemed.

    Redeemed coupons are kept so their usage history stays intact.
    """
    coupon = _get_coupon(coupon_id)

    if coupon.usages.exists():
        coupon.status = Coupon.Status.DISABLED
        coupon.save(update_fields=['status', 'updated_at'])
        logger.info(f"Coupon {coupon.code} has usages, disabled instead of deleted")
        return {'deleted': False, 'disabled': True, 'message': 'Coupon has been used and was disabled'}

    code = coupon.code
    coupon.delete()
    logger.info(f"Deleted coupon {code}")
    return {'deleted': True, 'disabled': False, 'message': 'Coupon deleted successfully'}


# =============================================================================
# Validation and discount calculation
# =============================================================================

def check_coupon(coupon: Optional[Coupon], user_id: Optional[str] = None, now=None) -> CouponValidation:
    """Run the validity checks against an already loaded coupon."""
    if coupon is None:
        return CouponValidation(False, 'Coupon not found')

    now = now or timezone.now()

    if coupon.status != Coupon.Status.ACTIVE:
        return CouponValidation(False, 'Coupon is not active', coupon)
    if now < coupon.start_date:
        return CouponValidation(False, 'Coupon is not yet active', coupon)
    if now > coupon.end_date:
        return CouponValidation(False, 'Coupon has expired', coupon)
    if coupon.is_exhausted:
        return CouponValidation(False, 'Coupon usage limit reached', coupon)

    if user_id and coupon.per_user_limit is not None:
        user_usages = CouponUsage.objects.filter(coupon=coupon, user_id=str(user_id)).count()
        if user_usages >= coupon.per_user_limit:
            return CouponValidation(False, 'You have reached the usage limit for this coupon', coupon)

    return CouponValidation(True, None, coupon)


@service_errors('Error validating coupon')
def validate_coupon(code: str, user_id: Optional[str] = None, now=None) -> CouponValidation:
    """
    Check whether a coupon code can be used right now.

    Never raises for an unusable coupon; the reason is in the result message.
    """
    coupon = Coupon.objects.filter(code=_normalize_code(code)).first()
    result = check_coupon(coupon, user_id=user_id, now=now)
    if not result.valid:
        logger.info(f"Coupon {code} rejected: {result.message}")
    return result


def _category_lineage(category_id: Optional[int], parents: Dict[int, Optional[int]]) -> set:
    """Return the category id and all of its ancestor ids."""
    lineage = set()
    while category_id is not None and category_id not in lineage:
        lineage.add(category_id)
        category_id = parents.get(category_id)
    return lineage


def _eligible_subtotal(coupon: Coupon, cart_items: List[Dict]) -> Decimal:
    """
    Sum price * quantity of the cart items the coupon is restricted to.

    cart_items: [{'product_id': int, 'quantity': int, 'unit_price': Decimal}, ...]

    unit_price is the price actually charged for the line (after variant
    and deal pricing); the catalog price is used when it is absent.
    A category restriction also covers products in its sub-categories.
    """
    eligible_product_ids = set(coupon.products.values_list('id', flat=True))
    eligible_category_ids = set(coupon.categories.values_list('id', flat=True))
    parents = {}
    if eligible_category_ids:
        parents = dict(Category.objects.values_list('id', 'parent_id'))

    product_ids = [item['product_id'] for item in cart_items]
    products = {p.id: p for p in Product.objects.filter(id__in=product_ids)}

    total = Decimal('0')
    for item in cart_items:
        product = products.get(item['product_id'])
        if product is None:
            continue
        if (product.id in eligible_product_ids
                or _category_lineage(product.category_id, parents) & eligible_category_ids):
            price = item.get('unit_price')
            price = Decimal(str(price)) if price is not None else product.price
            total += price * int(item.get('quantity', 1))
    return total


def _percentage_cap(coupon: Coupon) -> Optional[Decimal]:
    if coupon.max_discount_amount is not None:
        return coupon.max_discount_amount
    cap = getattr(settings, 'COUPON_MAX_PERCENTAGE_DISCOUNT', None)
    return Decimal(str(cap)) if cap is not None else None


def calculate_discount(
    coupon: Coupon,
    subtotal: Decimal,
    cart_items: Optional[List[Dict]] = None
) -> AppliedCoupon:
    """
    Discount for a valid coupon against a subtotal.

    - PERCENTAGE: value% of the subtotal, or of the eligible subtotal when
      the coupon is restricted and cart items are given; capped
    - FIXED_AMOUNT: min(value, subtotal)
    - FREE_SHIPPING: no product discount, shipping waived
    """
    subtotal = Decimal(subtotal)

    if coupon.type == Coupon.Type.FREE_SHIPPING:
        return AppliedCoupon(coupon.code, Decimal('0.00'), True)

    if coupon.type == Coupon.Type.FIXED_AMOUNT:
        return AppliedCoupon(coupon.code, _quantize(min(coupon.value, subtotal)))

    base = subtotal
    restricted = coupon.products.exists() or coupon.categories.exists()
    if cart_items and restricted:
        base = _eligible_subtotal(coupon, cart_items)

    discount = base * coupon.value / Decimal('100')
    cap = _percentage_cap(coupon)
    if cap is not None:
        discount = min(discount, cap)
    return AppliedCoupon(coupon.code, _quantize(min(discount, subtotal)))


@service_errors('Failed to apply coupon')
def apply_coupon(
    code: str,
    subtotal: Decimal,
    user_id: Optional[str] = None,
    cart_items: Optional[List[Dict]] = None,
    now=None
) -> AppliedCoupon:
    """
    Validate a coupon and compute its discount for a cart.

    Raises:
        BadRequest: coupon unusable (validation message) or minimum purchase not met
    """
    subtotal = Decimal(subtotal)
    if subtotal < 0:
        raise BadRequest("subtotal cannot be negative")

    validation = validate_coupon(code, user_id=user_id, now=now)
    if not validation.valid:
        raise BadRequest(validation.message)

    coupon = validation.coupon
    if coupon.minimum_purchase is not None and subtotal < coupon.minimum_purchase:
        raise BadRequest(f"Minimum purchase of {coupon.minimum_purchase} required")

    applied = calculate_discount(coupon, subtotal, cart_items)
    logger.info(
        f"Applied coupon {coupon.code}: discount {applied.discount_amount} "
        f"on subtotal {subtotal}"
    )
    return applied


# =============================================================================
# Redemption
# =============================================================================

@service_errors('Failed to record coupon usage')
def record_usage(
    order_id: str,
    user_id: str,
    code: str,
    discount_amount: Decimal
) -> Tuple[CouponUsage, bool]:
    """
    Record a redemption and increment usage_count exactly once per order.

    Returns:
        (usage, created) - created is False when the order was already recorded

    Raises:
        NotFound: unknown code
        Conflict: usage_limit already reached
    """
    code = _normalize_code(code)
    coupon = Coupon.objects.filter(code=code).first()
    if coupon is None:
        raise NotFound(f"Coupon with code {code} not found")

    order_id = str(order_id)
    existing = CouponUsage.objects.filter(coupon=coupon, order_id=order_id).first()
    if existing is not None:
        logger.info(f"Coupon {code} already recorded for order {order_id}")
        return existing, False

    try:
        with transaction.atomic():
            usage = CouponUsage.objects.create(
                coupon=coupon,
                user_id=str(user_id),
                order_id=order_id,
                discount_amount=_quantize(discount_amount),
            )
            updated = Coupon.objects.filter(id=coupon.id).filter(
                Q(usage_limit__isnull=True) | Q(usage_count__lt=F('usage_limit'))
            ).update(usage_count=F('usage_count') + 1, updated_at=timezone.now())

            if not updated:
                raise Conflict(f"Coupon {code} has reached its usage limit")
    except IntegrityError:
        # Another request recorded the same order first
        usage = CouponUsage.objects.get(coupon=coupon, order_id=order_id)
        return usage, False

    logger.info(f"Recorded coupon {code} usage for order {order_id} by user {user_id}")
    return usage, True


@service_errors('Failed to retrieve coupon usages')
def get_coupon_usages(coupon_id: int, user_id: Optional[str] = None):
    coupon = _get_coupon(coupon_id)
    queryset = coupon.usages.all()
    if user_id is not None:
        queryset = queryset.filter(user_id=str(user_id))
    return queryset
