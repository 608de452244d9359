"""
Serializers for coupons and deals.

Write serializers only validate the payload shape; business rules live in
promotions.services and promotions.deals.
"""
from rest_framework import serializers

from .models import Coupon, CouponUsage, Deal


class CouponSerializer(serializers.ModelSerializer):
    """Read serializer for Coupon with its effective status."""
    effective_status = serializers.SerializerMethodField()
    category_ids = serializers.PrimaryKeyRelatedField(source='categories', many=True, read_only=True)
    product_ids = serializers.PrimaryKeyRelatedField(source='products', many=True, read_only=True)

    class Meta:
        model = Coupon
        fields = [
            'id', 'code', 'type', 'value', 'description',
            'minimum_purchase', 'max_discount_amount',
            'usage_limit', 'per_user_limit', 'usage_count',
            'start_date', 'end_date', 'status', 'effective_status',
            'category_ids', 'product_ids',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_effective_status(self, obj):
        return obj.effective_status()


class CouponWriteSerializer(serializers.Serializer):
    """Payload for creating or partially updating a coupon."""
    code = serializers.CharField(max_length=50)
    type = serializers.ChoiceField(choices=Coupon.Type.choices)
    value = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    description = serializers.CharField(required=False, allow_blank=True)
    minimum_purchase = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    max_discount_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    usage_limit = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    per_user_limit = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    status = serializers.ChoiceField(
        choices=[Coupon.Status.ACTIVE, Coupon.Status.DISABLED], required=False
    )
    category_ids = serializers.ListField(child=serializers.IntegerField(), required=False)
    product_ids = serializers.ListField(child=serializers.IntegerField(), required=False)


class CouponValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50)
    user_id = serializers.CharField(max_length=64, required=False, allow_null=True)


class CartItemSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False
    )


class CouponApplySerializer(serializers.Serializer):
    """
    Payload for computing a coupon discount.

    {
        "code": "SUMMER10",
        "subtotal": "120.00",
        "user_id": "42",
        "cart_items": [{"product_id": 1, "quantity": 2}]
    }
    """
    code = serializers.CharField(max_length=50)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    user_id = serializers.CharField(max_length=64, required=False, allow_null=True)
    cart_items = CartItemSerializer(many=True, required=False)


class CouponRecordUsageSerializer(serializers.Serializer):
    order_id = serializers.CharField(max_length=64)
    user_id = serializers.CharField(max_length=64)
    code = serializers.CharField(max_length=50)
    discount_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)


class CouponUsageSerializer(serializers.ModelSerializer):
    coupon_code = serializers.CharField(source='coupon.code', read_only=True)

    class Meta:
        model = CouponUsage
        fields = ['id', 'coupon_code', 'user_id', 'order_id', 'discount_amount', 'created_at']


# =============================================================================
# Deals
# =============================================================================

class DealSerializer(serializers.ModelSerializer):
    """Read serializer for Deal with its computed status."""
    status = serializers.CharField(read_only=True)
    display_name = serializers.CharField(read_only=True)
    product_ids = serializers.PrimaryKeyRelatedField(source='products', many=True, read_only=True)

    class Meta:
        model = Deal
        fields = [
            'id', 'name', 'display_name', 'deal_type', 'discount',
            'start_time', 'end_time', 'status',
            'max_total_usage', 'max_user_usage', 'usage_count',
            'product_ids', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class DealWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    deal_type = serializers.ChoiceField(choices=Deal.DealType.choices)
    discount = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100)
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    max_total_usage = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    max_user_usage = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    product_ids = serializers.ListField(child=serializers.IntegerField(), required=False)


class DealProductSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)


class DealValidateSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    user_id = serializers.CharField(max_length=64, required=False, allow_null=True)
    variant_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
