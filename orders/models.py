"""
Order Models - Order and OrderItem entities with status tracking.

Order Status Flow:
    PENDING -> CONFIRMED (stock available, SALE entries written)
    PENDING -> REJECTED (insufficient stock, nothing deducted)
    CONFIRMED -> RETURNED (RETURN entries written)
"""
from decimal import Decimal
from django.db import models
from django.core.validators import MinValueValidator

from inventory.models import Product, ProductVariant


class Order(models.Model):
    """
    Order entity representing a customer purchase.

    Status:
        - PENDING: Order created, awaiting stock validation
        - CONFIRMED: All items validated, stock deducted through the ledger
        - REJECTED: Insufficient stock, no deductions made
        - RETURNED: Confirmed order whose items went back to stock
    """

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        CONFIRMED = 'CONFIRMED', 'Confirmed'
        REJECTED = 'REJECTED', 'Rejected'
        RETURNED = 'RETURNED', 'Returned'

    user_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Customer placing the order"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    subtotal = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    discount_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    shipping_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00')
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="subtotal - discount + shipping"
    )
    coupon_code = models.CharField(max_length=50, blank=True, default='')
    rejection_reason = models.TextField(
        blank=True,
        default='',
        help_text="Reason for rejection if order was rejected"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user_id', 'status']),
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"Order #{self.id} - user {self.user_id} ({self.status})"

    @property
    def is_confirmed(self) -> bool:
        return self.status == self.Status.CONFIRMED

    @property
    def is_rejected(self) -> bool:
        return self.status == self.Status.REJECTED

    @property
    def item_count(self) -> int:
        return self.items.count()


class OrderItem(models.Model):
    """
    OrderItem entity representing a product (or variant) in an order.

    Stores the unit price at time of order to preserve historical pricing.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,  # Prevent deletion of products with orders
        related_name='order_items',
        help_text="Ordered product"
    )
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='order_items'
    )
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product.title} @ ${self.unit_price}"

    @property
    def subtotal(self) -> Decimal:
        """Calculate item subtotal."""
        return self.quantity * self.unit_price
