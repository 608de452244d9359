"""
Serializers for order models.
"""
from rest_framework import serializers
from .models import Order, OrderItem
from inventory.serializers import ProductMinimalSerializer


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with product details."""
    product = ProductMinimalSerializer(read_only=True)
    variant_name = serializers.CharField(source='variant.variant_name', read_only=True, default=None)
    subtotal = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'variant', 'variant_name', 'quantity', 'unit_price', 'subtotal']


class OrderItemCreateSerializer(serializers.Serializer):
    """Serializer for creating order items in order creation request."""
    product_id = serializers.IntegerField(min_value=1)
    variant_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    deal_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1)


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items.
    Uses prefetch_related for optimized queries.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    item_count = serializers.IntegerField(read_only=True)
    is_confirmed = serializers.BooleanField(read_only=True)
    is_rejected = serializers.BooleanField(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'user_id', 'status', 'subtotal', 'discount_amount',
            'shipping_fee', 'total_amount', 'coupon_code',
            'rejection_reason', 'items', 'item_count',
            'is_confirmed', 'is_rejected',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Optimized serializer for listing orders."""
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'user_id', 'status', 'total_amount',
            'coupon_code', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class OrderCreateSerializer(serializers.Serializer):
    """
    Serializer for creating orders via POST /orders/

    Request format:
    {
        "user_id": "42",
        "coupon_code": "SUMMER10",
        "items": [
            {"product_id": 1, "quantity": 2},
            {"product_id": 3, "variant_id": 7, "quantity": 1}
        ]
    }
    """
    user_id = serializers.CharField(max_length=64)
    coupon_code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    shipping_fee = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False
    )
    items = OrderItemCreateSerializer(many=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")

        # Check for duplicate products
        keys = [(item['product_id'], item.get('variant_id')) for item in value]
        if len(keys) != len(set(keys)):
            raise serializers.ValidationError("Duplicate products in order items")

        return value


class OrderReturnSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True)
