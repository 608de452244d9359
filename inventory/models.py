"""
Inventory Models - Catalog entities and the stock ledger.

Models:
    - Category: Product categorization (tree via parent)
    - Brand: Product manufacturer/label
    - Product: Items available for sale
    - ProductVariant: Sellable variation of a product (size, colour, ...)
    - Inventory: Current stock state for one product or one variant
    - InventoryLog: Append-only ledger of stock changes
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q


class Category(models.Model):
    """
    Product category for organizing products.
    """
    name = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Category display name"
    )
    slug = models.SlugField(
        max_length=140,
        unique=True,
        help_text="Unique URL slug derived from the name"
    )
    description = models.TextField(blank=True, default='')
    parent = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='children',
        help_text="Parent category for nested trees"
    )
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Category'
        verbose_name_plural = 'Categories'
        ordering = ['name']

    def __str__(self):
        return self.name


class Brand(models.Model):
    """
    Brand entity for grouping products by manufacturer.
    """
    name = models.CharField(max_length=100, db_index=True)
    slug = models.SlugField(max_length=140, unique=True)
    description = models.TextField(blank=True, default='')
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Brand'
        verbose_name_plural = 'Brands'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Product entity representing items available for sale.

    stock_quantity mirrors Inventory.stock_quantity for join-free reads;
    it is only written by the inventory service alongside the Inventory row.
    """
    title = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product title for display and search"
    )
    slug = models.SlugField(max_length=220, unique=True)
    sku = models.CharField(max_length=64, unique=True)
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Product price"
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='products',
        help_text="Product category"
    )
    brand = models.ForeignKey(
        Brand,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='products'
    )
    stock_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Denormalized copy of the inventory stock quantity"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['title']
        indexes = [
            models.Index(fields=['title', 'is_active']),
            models.Index(fields=['category', 'is_active']),
            models.Index(fields=['price']),
        ]

    def __str__(self):
        return f"{self.title} (${self.price})"


class ProductVariant(models.Model):
    """
    Variant of a product with its own SKU, optional price and stock mirror.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='variants'
    )
    variant_name = models.CharField(max_length=120)
    sku = models.CharField(max_length=64, unique=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Overrides the product price when set"
    )
    stock_quantity = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product Variant'
        verbose_name_plural = 'Product Variants'
        ordering = ['product', 'variant_name']

    def __str__(self):
        return f"{self.product.title} - {self.variant_name}"

    @property
    def effective_price(self) -> Decimal:
        return self.price if self.price is not None else self.product.price


class Inventory(models.Model):
    """
    Current stock state for a product or one of its variants.

    Constraint: exactly one row per product (variant empty) and one row
    per variant. Rows are changed through inventory.services only.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='inventories',
        help_text="Owning product"
    )
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='inventories',
        help_text="Owning variant, empty for product-level stock"
    )
    stock_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Current stock quantity"
    )
    reserved_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Stock committed to unfulfilled orders"
    )
    threshold = models.PositiveIntegerField(
        default=5,
        help_text="Threshold for low stock alerts"
    )
    last_restocked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Inventory'
        verbose_name_plural = 'Inventories'
        ordering = ['product', 'variant']
        constraints = [
            models.UniqueConstraint(
                fields=['product'],
                condition=Q(variant__isnull=True),
                name='unique_product_inventory'
            ),
            models.UniqueConstraint(
                fields=['variant'],
                condition=Q(variant__isnull=False),
                name='unique_variant_inventory'
            ),
            models.CheckConstraint(
                condition=Q(stock_quantity__gte=0),
                name='inventory_stock_non_negative'
            ),
        ]
        indexes = [
            models.Index(fields=['stock_quantity', 'threshold']),
        ]

    def __str__(self):
        target = self.variant.variant_name if self.variant_id else self.product.title
        return f"{target}: {self.stock_quantity} units"

    @property
    def available_quantity(self) -> int:
        """Stock not held by reservations, never negative."""
        return max(0, self.stock_quantity - self.reserved_quantity)

    @property
    def is_low_stock(self) -> bool:
        """Check if inventory is at or below the low stock threshold."""
        return self.stock_quantity <= self.threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity == 0


class InventoryLog(models.Model):
    """
    Ledger entry for a single stock change.

    Entries are immutable: corrections are recorded as new compensating
    entries, never by editing or deleting old ones.
    """

    class ChangeType(models.TextChoices):
        RESTOCK = 'RESTOCK', 'Restock'
        SALE = 'SALE', 'Sale'
        RETURN = 'RETURN', 'Return'
        MANUAL = 'MANUAL', 'Manual'

    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='inventory_logs'
    )
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='inventory_logs'
    )
    change_type = models.CharField(
        max_length=20,
        choices=ChangeType.choices,
        db_index=True
    )
    quantity_changed = models.IntegerField(
        help_text="Signed delta: positive for additions, negative for reductions"
    )
    note = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = 'Inventory Log'
        verbose_name_plural = 'Inventory Logs'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['product', 'created_at']),
            models.Index(fields=['variant', 'created_at']),
        ]

    def __str__(self):
        return f"{self.change_type} {self.quantity_changed:+d} for product {self.product_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise ValueError("Inventory log entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Inventory log entries cannot be deleted")
