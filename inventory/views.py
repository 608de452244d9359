"""
Inventory API Views with optimized queries.

Implements:
- Catalog endpoints for Category, Brand, Product and ProductVariant
- Inventory record read/correction by product or variant
- Stock ledger append and listing
- Restock, reservations, availability and low stock listing

Writes go through inventory.catalog / inventory.services; service errors
are rendered by core.exceptions.api_exception_handler.
"""
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import catalog, services
from .models import Brand, Category, Product
from .serializers import (
    AddStockSerializer,
    BatchAvailabilitySerializer,
    BrandSerializer,
    BrandWriteSerializer,
    CategorySerializer,
    CategoryWriteSerializer,
    InventoryLogCreateSerializer,
    InventoryLogSerializer,
    InventorySerializer,
    InventoryUpdateSerializer,
    ProductSerializer,
    ProductVariantSerializer,
    ProductVariantWriteSerializer,
    ProductWriteSerializer,
    ReservationSerializer,
)


def _optional_int(value):
    try:
        return int(value) if value not in (None, '') else None
    except (TypeError, ValueError):
        return None


# =============================================================================
# Category Views
# =============================================================================

class CategoryListCreateView(generics.ListCreateAPIView):
    """
    GET: List all categories
    POST: Create a new category (slug assigned from the name)
    """
    queryset = Category.objects.all()
    serializer_class = CategorySerializer

    def create(self, request, *args, **kwargs):
        serializer = CategoryWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        data.pop('is_active', None)
        category = catalog.create_category(**data)
        return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)


class CategoryDetailView(generics.RetrieveAPIView):
    """
    GET: Retrieve a category
    PATCH: Update a category
    """
    queryset = Category.objects.all()
    serializer_class = CategorySerializer

    def patch(self, request, pk):
        serializer = CategoryWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        category = catalog.update_category(pk, **serializer.validated_data)
        return Response(CategorySerializer(category).data)


# =============================================================================
# Brand Views
# =============================================================================

class BrandListCreateView(generics.ListCreateAPIView):
    """
    GET: List all brands
    POST: Create a new brand
    """
    queryset = Brand.objects.all()
    serializer_class = BrandSerializer

    def create(self, request, *args, **kwargs):
        serializer = BrandWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        data.pop('is_active', None)
        brand = catalog.create_brand(**data)
        return Response(BrandSerializer(brand).data, status=status.HTTP_201_CREATED)


class BrandDetailView(generics.RetrieveAPIView):
    """
    GET: Retrieve a brand
    PATCH: Update a brand
    """
    queryset = Brand.objects.all()
    serializer_class = BrandSerializer

    def patch(self, request, pk):
        serializer = BrandWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        brand = catalog.update_brand(pk, **serializer.validated_data)
        return Response(BrandSerializer(brand).data)


# =============================================================================
# Product Views
# =============================================================================

class ProductListCreateView(generics.ListCreateAPIView):
    """
    GET: List active products with category info
    POST: Create a new product

    Uses select_related to eliminate N+1 queries.
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.select_related('category', 'brand').prefetch_related(
            'variants'
        ).filter(is_active=True)

        category_id = _optional_int(self.request.query_params.get('category_id'))
        if category_id:
            queryset = queryset.filter(category_id=category_id)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = ProductWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        data.pop('is_active', None)
        product = catalog.create_product(**data)
        return Response(ProductSerializer(product).data, status=status.HTTP_201_CREATED)


class ProductDetailView(generics.RetrieveAPIView):
    """
    GET: Retrieve a product
    PATCH: Update a product (a new title gets a new slug)
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        return Product.objects.select_related('category', 'brand').prefetch_related('variants')

    def patch(self, request, pk):
        serializer = ProductWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        fields.pop('sku', None)
        product = catalog.update_product(pk, **fields)
        return Response(ProductSerializer(product).data)


class ProductVariantCreateView(APIView):
    """POST: Add a variant to a product"""

    def post(self, request, pk):
        serializer = ProductVariantWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        variant = catalog.create_variant(pk, **serializer.validated_data)
        return Response(ProductVariantSerializer(variant).data, status=status.HTTP_201_CREATED)


# =============================================================================
# Inventory Record Views
# =============================================================================

class _InventoryRecordView(APIView):
    """
    GET: Inventory row for the target
    PATCH: Admin correction of stock_quantity / reserved_quantity / threshold
    """
    target = 'product_id'

    def get(self, request, pk):
        inventory = services.get_inventory(**{self.target: pk})
        return Response(InventorySerializer(inventory).data)

    def patch(self, request, pk):
        serializer = InventoryUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        inventory = services.update_inventory(**{self.target: pk}, **serializer.validated_data)
        return Response(InventorySerializer(inventory).data)


class ProductInventoryView(_InventoryRecordView):
    target = 'product_id'


class VariantInventoryView(_InventoryRecordView):
    target = 'variant_id'


class LowStockListView(generics.ListAPIView):
    """GET: Inventory rows at or below their threshold"""
    serializer_class = InventorySerializer

    def get_queryset(self):
        return services.get_low_stock_items()


# =============================================================================
# Ledger and Stock Views
# =============================================================================

class InventoryLogListCreateView(APIView):
    """
    GET: Ledger entries newest first (?product_id=&variant_id=)
    POST: Append a ledger entry and apply it to the inventory row
    """

    def get(self, request):
        logs = services.get_logs(
            product_id=_optional_int(request.query_params.get('product_id')),
            variant_id=_optional_int(request.query_params.get('variant_id')),
        )
        return Response(InventoryLogSerializer(logs, many=True).data)

    def post(self, request):
        serializer = InventoryLogCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        log = services.record_change(**serializer.validated_data)
        return Response(InventoryLogSerializer(log).data, status=status.HTTP_201_CREATED)


class AddStockView(APIView):
    """POST: Restock a product or variant"""

    def post(self, request):
        serializer = AddStockSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        inventory = services.add_stock(**serializer.validated_data)
        return Response(InventorySerializer(inventory).data, status=status.HTTP_201_CREATED)


class ReserveStockView(APIView):
    """POST: Hold stock for an unfulfilled order"""

    def post(self, request):
        serializer = ReservationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        inventory = services.reserve_stock(
            data.get('product_id'), data['quantity'], variant_id=data.get('variant_id')
        )
        return Response(InventorySerializer(inventory).data)


class ReleaseStockView(APIView):
    """POST: Release held stock"""

    def post(self, request):
        serializer = ReservationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        inventory = services.release_reservation(
            data.get('product_id'), data['quantity'], variant_id=data.get('variant_id')
        )
        return Response(InventorySerializer(inventory).data)


# =============================================================================
# Availability Views
# =============================================================================

class ProductAvailabilityView(APIView):
    def get(self, request, pk):
        return Response(services.get_availability(product_id=pk))


class VariantAvailabilityView(APIView):
    def get(self, request, pk):
        return Response(services.get_availability(variant_id=pk))


class BatchAvailabilityView(APIView):
    """POST: Availability for many products/variants; unknown ids are skipped"""

    def post(self, request):
        serializer = BatchAvailabilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(services.get_batch_availability(
            product_ids=serializer.validated_data.get('product_ids', []),
            variant_ids=serializer.validated_data.get('variant_ids', []),
        ))
