"""
Promotion Models - Coupons, deals and their redemption records.

Time-based states are computed, never stored:
    - Coupon: EXPIRED once end_date has passed (only DISABLED is persisted)
    - Deal: Upcoming / Active / Ended from start_time and end_time
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from inventory.models import Category, Product


class Coupon(models.Model):
    """
    Code-redeemable discount with time window and usage limits.

    usage_count is only written by promotions.services.record_usage.
    """

    class Type(models.TextChoices):
        PERCENTAGE = 'PERCENTAGE', 'Percentage'
        FIXED_AMOUNT = 'FIXED_AMOUNT', 'Fixed Amount'
        FREE_SHIPPING = 'FREE_SHIPPING', 'Free Shipping'

    class Status(models.TextChoices):
        ACTIVE = 'ACTIVE', 'Active'
        EXPIRED = 'EXPIRED', 'Expired'
        DISABLED = 'DISABLED', 'Disabled'

    code = models.CharField(max_length=50, unique=True, db_index=True)
    type = models.CharField(max_length=20, choices=Type.choices)
    value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    description = models.TextField(blank=True, default='')
    minimum_purchase = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Cart subtotal required before the coupon applies"
    )
    max_discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Cap for percentage discounts"
    )
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    per_user_limit = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True
    )
    categories = models.ManyToManyField(Category, blank=True, related_name='coupons')
    products = models.ManyToManyField(Product, blank=True, related_name='coupons')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Coupon'
        verbose_name_plural = 'Coupons'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'start_date', 'end_date']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(usage_limit__isnull=True) | Q(usage_count__lte=F('usage_limit')),
                name='coupon_usage_within_limit'
            ),
        ]

    def __str__(self):
        return f"{self.code} ({self.type} {self.value})"

    def effective_status(self, now=None) -> str:
        """Stored status with EXPIRED derived from end_date."""
        now = now or timezone.now()
        if self.status == self.Status.ACTIVE and now > self.end_date:
            return self.Status.EXPIRED
        return self.status

    @property
    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit


class CouponUsage(models.Model):
    """
    One redemption of a coupon by an order.

    The (coupon, order_id) pair is unique so retried recordings are no-ops.
    """
    coupon = models.ForeignKey(Coupon, on_delete=models.PROTECT, related_name='usages')
    user_id = models.CharField(max_length=64, db_index=True)
    order_id = models.CharField(max_length=64)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Coupon Usage'
        verbose_name_plural = 'Coupon Usages'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['coupon', 'order_id'],
                name='unique_coupon_usage_per_order'
            ),
        ]
        indexes = [
            models.Index(fields=['coupon', 'user_id']),
        ]

    def __str__(self):
        return f"{self.coupon.code} used by {self.user_id} on order {self.order_id}"


class Deal(models.Model):
    """
    Time-boxed percentage discount on a set of products.
    """

    class DealType(models.TextChoices):
        FLASH = 'FLASH', 'Flash'
        TRENDING = 'TRENDING', 'Trending'
        DEAL_OF_DAY = 'DEAL_OF_DAY', 'Deal of the Day'

    class Status(models.TextChoices):
        UPCOMING = 'Upcoming', 'Upcoming'
        ACTIVE = 'Active', 'Active'
        ENDED = 'Ended', 'Ended'

    name = models.CharField(max_length=200, blank=True, default='')
    deal_type = models.CharField(max_length=20, choices=DealType.choices, db_index=True)
    discount = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Percentage off the product price"
    )
    start_time = models.DateTimeField(db_index=True)
    end_time = models.DateTimeField(db_index=True)
    max_total_usage = models.PositiveIntegerField(null=True, blank=True)
    max_user_usage = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    products = models.ManyToManyField(
        Product,
        through='ProductDeal',
        related_name='deals',
        blank=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Deal'
        verbose_name_plural = 'Deals'
        ordering = ['-created_at']

    def __str__(self):
        return self.display_name

    @property
    def display_name(self) -> str:
        return self.name or f"{self.deal_type} Deal ({self.discount.normalize():f}% off)"

    def status_at(self, now=None) -> str:
        now = now or timezone.now()
        if now < self.start_time:
            return self.Status.UPCOMING
        if now > self.end_time:
            return self.Status.ENDED
        return self.Status.ACTIVE

    @property
    def status(self) -> str:
        return self.status_at()


class ProductDeal(models.Model):
    """Association of a product with a deal."""
    deal = models.ForeignKey(Deal, on_delete=models.CASCADE, related_name='product_deals')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='product_deals')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Product Deal'
        verbose_name_plural = 'Product Deals'
        constraints = [
            models.UniqueConstraint(fields=['deal', 'product'], name='unique_deal_product'),
        ]

    def __str__(self):
        return f"{self.deal_id} -> {self.product_id}"


class DealUsage(models.Model):
    """One redemption of a deal for a product in an order."""
    deal = models.ForeignKey(Deal, on_delete=models.CASCADE, related_name='usages')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='deal_usages')
    user_id = models.CharField(max_length=64, db_index=True)
    order_id = models.CharField(max_length=64)
    used_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Deal Usage'
        verbose_name_plural = 'Deal Usages'
        ordering = ['-used_at']
        constraints = [
            models.UniqueConstraint(
                fields=['deal', 'product', 'order_id'],
                name='unique_deal_usage_per_order'
            ),
        ]

    def __str__(self):
        return f"Deal {self.deal_id} used by {self.user_id}"
