"""
Serializers for inventory models.
Provides data validation and JSON conversion for API endpoints.
"""
from rest_framework import serializers
from .models import Brand, Category, Inventory, InventoryLog, Product, ProductVariant


class CategorySerializer(serializers.ModelSerializer):
    """Serializer for Category model."""
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = [
            'id', 'name', 'slug', 'description', 'parent', 'is_active',
            'product_count', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_product_count(self, obj):
        """Get count of products in this category."""
        return obj.products.count()


class CategoryWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True)
    parent_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    slug = serializers.CharField(max_length=140, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)


class CategoryMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested category representation."""
    class Meta:
        model = Category
        fields = ['id', 'name', 'slug']


class BrandSerializer(serializers.ModelSerializer):
    class Meta:
        model = Brand
        fields = ['id', 'name', 'slug', 'description', 'is_active', 'created_at', 'updated_at']
        read_only_fields = fields


class BrandWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True)
    slug = serializers.CharField(max_length=140, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)


class ProductVariantSerializer(serializers.ModelSerializer):
    effective_price = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = ProductVariant
        fields = [
            'id', 'product', 'variant_name', 'sku', 'price',
            'effective_price', 'stock_quantity', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ProductVariantWriteSerializer(serializers.Serializer):
    variant_name = serializers.CharField(max_length=120)
    sku = serializers.CharField(max_length=64)
    price = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )


class ProductSerializer(serializers.ModelSerializer):
    """Serializer for Product model with nested category and variants."""
    category = CategoryMinimalSerializer(read_only=True)
    brand = serializers.CharField(source='brand.name', read_only=True, default=None)
    variants = ProductVariantSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'title', 'slug', 'sku', 'description', 'price',
            'category', 'brand', 'stock_quantity', 'is_active',
            'variants', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ProductWriteSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=200)
    sku = serializers.CharField(max_length=64)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    category_id = serializers.IntegerField(min_value=1)
    brand_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'title', 'slug', 'price']


# =============================================================================
# Stock
# =============================================================================

class InventorySerializer(serializers.ModelSerializer):
    """Serializer for an inventory row with its derived flags."""
    product = ProductMinimalSerializer(read_only=True)
    variant_name = serializers.CharField(source='variant.variant_name', read_only=True, default=None)
    available_quantity = serializers.IntegerField(read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Inventory
        fields = [
            'id', 'product', 'variant', 'variant_name',
            'stock_quantity', 'reserved_quantity', 'available_quantity', 'threshold',
            'is_low_stock', 'is_out_of_stock', 'last_restocked_at',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class InventoryUpdateSerializer(serializers.Serializer):
    """Admin correction of an inventory row; every field is optional."""
    stock_quantity = serializers.IntegerField(min_value=0, required=False)
    reserved_quantity = serializers.IntegerField(min_value=0, required=False)
    threshold = serializers.IntegerField(min_value=0, required=False)


class InventoryLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = InventoryLog
        fields = ['id', 'product', 'variant', 'change_type', 'quantity_changed', 'note', 'created_at']
        read_only_fields = fields


class InventoryLogCreateSerializer(serializers.Serializer):
    """
    Payload for a ledger entry.

    {
        "product_id": 1,
        "variant_id": null,
        "change_type": "SALE",
        "quantity_changed": -2,
        "note": "Counter sale"
    }
    """
    product_id = serializers.IntegerField(min_value=1)
    variant_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    change_type = serializers.ChoiceField(choices=InventoryLog.ChangeType.choices)
    quantity_changed = serializers.IntegerField()
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_quantity_changed(self, value):
        if value == 0:
            raise serializers.ValidationError("quantity_changed must be non-zero")
        return value


class AddStockSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    variant_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1)
    threshold = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class ReservationSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    variant_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1)

    def validate(self, attrs):
        if attrs.get('product_id') is None and attrs.get('variant_id') is None:
            raise serializers.ValidationError("product_id or variant_id is required")
        return attrs


class BatchAvailabilitySerializer(serializers.Serializer):
    product_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False)
    variant_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False)
