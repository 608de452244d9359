"""
Order API Views.

Implements:
- GET /orders/ - List orders with optimized queries
- POST /orders/ - Create order with atomic transaction
- GET /orders/{id}/ - Order detail with items
- POST /orders/{id}/return/ - Return a confirmed order to stock
"""
import logging
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Order
from .serializers import (
    OrderSerializer,
    OrderListSerializer,
    OrderCreateSerializer,
    OrderReturnSerializer,
)
from .services import create_order, return_order

logger = logging.getLogger(__name__)


class OrderListCreateView(generics.ListCreateAPIView):
    """
    GET: List all orders with optimized queries
    POST: Create a new order with atomic transaction handling

    Query Parameters (GET):
        - user_id: Filter by customer
        - status: Filter by status (PENDING, CONFIRMED, REJECTED, RETURNED)
    """

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return OrderCreateSerializer
        return OrderListSerializer

    def get_queryset(self):
        queryset = Order.objects.prefetch_related('items__product')

        user_id = self.request.query_params.get('user_id')
        if user_id:
            queryset = queryset.filter(user_id=user_id)

        status_filter = self.request.query_params.get('status', '').upper()
        if status_filter in Order.Status.values:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-created_at')

    def create(self, request, *args, **kwargs):
        """
        Create order with atomic transaction handling.

        Returns:
            - 201: Order confirmed
            - 200: Order recorded but rejected for stock
            - 400: Validation, coupon or deal error
            - 409: Coupon or deal usage limit reached concurrently
        """
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order, error = create_order(
            data['user_id'],
            data['items'],
            coupon_code=data.get('coupon_code') or None,
            shipping_fee=data.get('shipping_fee'),
        )
        if error:
            logger.info(f"Order #{order.id} rejected: {error}")

        # Fetch fresh order with all relations
        order = Order.objects.prefetch_related('items__product', 'items__variant').get(id=order.id)

        # Use 201 for confirmed, 200 for rejected (order was created but rejected)
        status_code = status.HTTP_201_CREATED if order.is_confirmed else status.HTTP_200_OK
        return Response(OrderSerializer(order).data, status=status_code)


class OrderDetailView(generics.RetrieveAPIView):
    """
    GET: Retrieve order details with all items.

    Uses prefetch_related for optimized item loading.
    """
    serializer_class = OrderSerializer

    def get_queryset(self):
        return Order.objects.prefetch_related(
            'items__product__category', 'items__variant'
        )


class OrderReturnView(APIView):
    """POST: Return a confirmed order's items to stock"""

    def post(self, request, pk):
        serializer = OrderReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = return_order(pk, note=serializer.validated_data.get('note') or None)
        order = Order.objects.prefetch_related('items__product', 'items__variant').get(id=order.id)
        return Response(OrderSerializer(order).data)
