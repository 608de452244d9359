"""
Promotion API Views.

Implements:
- Coupon CRUD, validate, apply and record-usage
- Deal CRUD, product association, validation and usage stats

Service errors are rendered by core.exceptions.api_exception_handler.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import rate_limit
from inventory.serializers import ProductMinimalSerializer
from . import deals, services
from .serializers import (
    CouponApplySerializer,
    CouponRecordUsageSerializer,
    CouponSerializer,
    CouponUsageSerializer,
    CouponValidateSerializer,
    CouponWriteSerializer,
    DealProductSerializer,
    DealSerializer,
    DealValidateSerializer,
    DealWriteSerializer,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Coupon Views
# =============================================================================

class CouponListCreateView(APIView):
    """
    GET: List coupons (?status=ACTIVE|EXPIRED|DISABLED)
    POST: Create a coupon
    """

    def get(self, request):
        coupons = services.list_coupons(status=request.query_params.get('status') or None)
        return Response(CouponSerializer(coupons, many=True).data)

    def post(self, request):
        serializer = CouponWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        coupon = services.create_coupon(**serializer.validated_data)
        return Response(CouponSerializer(coupon).data, status=status.HTTP_201_CREATED)


class CouponDetailView(APIView):
    """
    GET: Retrieve a coupon
    PATCH: Partially update a coupon
    DELETE: Delete a coupon, or disable it if it has been used
    """

    def get(self, request, pk):
        return Response(CouponSerializer(services.get_coupon(pk)).data)

    def patch(self, request, pk):
        serializer = CouponWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        coupon = services.update_coupon(pk, **serializer.validated_data)
        return Response(CouponSerializer(coupon).data)

    def delete(self, request, pk):
        return Response(services.delete_coupon(pk))


class CouponUsageListView(APIView):
    """GET: Redemptions of a coupon (?user_id=)"""

    def get(self, request, pk):
        usages = services.get_coupon_usages(pk, user_id=request.query_params.get('user_id'))
        return Response(CouponUsageSerializer(usages, many=True).data)


class CouponValidateView(APIView):
    """
    POST: Check whether a coupon code is usable.

    Always 200; the result carries valid and an optional message.
    Rate limited to 20 requests per minute per client.
    """

    @rate_limit(max_requests=20, window_seconds=60, scope='coupons')
    def post(self, request):
        serializer = CouponValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.validate_coupon(
            serializer.validated_data['code'],
            user_id=serializer.validated_data.get('user_id')
        )
        return Response({'valid': result.valid, 'message': result.message})


class CouponApplyView(APIView):
    """
    POST: Compute the discount a coupon gives a cart.

    Rate limited together with validation.
    """

    @rate_limit(max_requests=20, window_seconds=60, scope='coupons')
    def post(self, request):
        serializer = CouponApplySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        applied = services.apply_coupon(
            data['code'],
            data['subtotal'],
            user_id=data.get('user_id'),
            cart_items=data.get('cart_items'),
        )
        return Response({
            'coupon_code': applied.coupon_code,
            'discount_amount': str(applied.discount_amount),
            'free_shipping': applied.free_shipping,
        })


class CouponRecordUsageView(APIView):
    """
    POST: Record a coupon redemption for an order.

    Returns 201 for a new redemption and 200 when the order was already recorded.
    """

    def post(self, request):
        serializer = CouponRecordUsageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        usage, created = services.record_usage(**serializer.validated_data)
        return Response(
            CouponUsageSerializer(usage).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )


# =============================================================================
# Deal Views
# =============================================================================

class DealListCreateView(APIView):
    """
    GET: List deals (?status=Active|Upcoming|Ended, ?deal_type=FLASH|TRENDING|DEAL_OF_DAY)
    POST: Create a deal
    """

    def get(self, request):
        queryset = deals.list_deals(
            status=request.query_params.get('status') or None,
            deal_type=request.query_params.get('deal_type') or None,
        )
        return Response(DealSerializer(queryset.prefetch_related('products'), many=True).data)

    def post(self, request):
        serializer = DealWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        deal = deals.create_deal(**serializer.validated_data)
        return Response(DealSerializer(deal).data, status=status.HTTP_201_CREATED)


class DealDetailView(APIView):
    """
    GET: Retrieve a deal
    PATCH: Partially update a deal
    DELETE: Delete a deal
    """

    def get(self, request, pk):
        return Response(DealSerializer(deals.get_deal(pk)).data)

    def patch(self, request, pk):
        serializer = DealWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        fields.pop('product_ids', None)
        deal = deals.update_deal(pk, **fields)
        return Response(DealSerializer(deal).data)

    def delete(self, request, pk):
        deals.delete_deal(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class DealProductsView(APIView):
    """
    GET: Active products in a deal
    POST: Add a product to a deal
    """

    def get(self, request, pk):
        products = deals.get_deal_products(pk)
        return Response(ProductMinimalSerializer(products, many=True).data)

    def post(self, request, pk):
        serializer = DealProductSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        deals.add_product_to_deal(pk, serializer.validated_data['product_id'])
        return Response(DealSerializer(deals.get_deal(pk)).data, status=status.HTTP_201_CREATED)


class DealProductDetailView(APIView):
    """DELETE: Remove a product from a deal"""

    def delete(self, request, pk, product_id):
        deals.remove_product_from_deal(pk, product_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class DealValidateView(APIView):
    """POST: Check whether a deal applies to a product for a user"""

    def post(self, request, pk):
        serializer = DealValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = deals.validate_deal_application(
            pk,
            serializer.validated_data['product_id'],
            user_id=serializer.validated_data.get('user_id'),
            variant_id=serializer.validated_data.get('variant_id')
        )
        return Response({
            'valid': result.valid,
            'reason': result.reason,
            'remaining_usage': result.remaining_usage,
        })


class DealStatsView(APIView):
    """GET: Usage statistics for a deal"""

    def get(self, request, pk):
        return Response(deals.get_deal_usage_stats(pk))
