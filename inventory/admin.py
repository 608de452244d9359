"""
Django Admin configuration for catalog and inventory models.

Inventory logs are read-only here; corrections are new ledger entries.
"""
from django.contrib import admin
from .models import Brand, Category, Inventory, InventoryLog, Product, ProductVariant


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'slug', 'parent', 'is_active', 'product_count', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'slug']
    ordering = ['name']

    def product_count(self, obj):
        return obj.products.count()
    product_count.short_description = 'Products'


@admin.register(Brand)
class BrandAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'slug', 'is_active', 'created_at']
    search_fields = ['name', 'slug']
    ordering = ['name']


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0
    readonly_fields = ['stock_quantity']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'title', 'sku', 'price', 'category', 'stock_quantity', 'is_active']
    list_filter = ['category', 'brand', 'is_active', 'created_at']
    search_fields = ['title', 'sku', 'description']
    ordering = ['title']
    raw_id_fields = ['category', 'brand']
    readonly_fields = ['stock_quantity']
    inlines = [ProductVariantInline]


@admin.register(Inventory)
class InventoryAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'product', 'variant', 'stock_quantity', 'reserved_quantity',
        'threshold', 'is_low_stock', 'updated_at'
    ]
    list_filter = ['updated_at']
    search_fields = ['product__title', 'variant__sku']
    ordering = ['product', 'variant']
    raw_id_fields = ['product', 'variant']
    readonly_fields = ['stock_quantity', 'last_restocked_at']

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'


@admin.register(InventoryLog)
class InventoryLogAdmin(admin.ModelAdmin):
    list_display = ['id', 'product', 'variant', 'change_type', 'quantity_changed', 'created_at']
    list_filter = ['change_type', 'created_at']
    search_fields = ['product__title', 'note']
    ordering = ['-created_at', '-id']

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
