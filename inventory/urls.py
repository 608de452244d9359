"""
URL routing for catalog and inventory API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Categories
    path('categories/', views.CategoryListCreateView.as_view(), name='category-list'),
    path('categories/<int:pk>/', views.CategoryDetailView.as_view(), name='category-detail'),

    # Brands
    path('brands/', views.BrandListCreateView.as_view(), name='brand-list'),
    path('brands/<int:pk>/', views.BrandDetailView.as_view(), name='brand-detail'),

    # Products
    path('products/', views.ProductListCreateView.as_view(), name='product-list'),
    path('products/<int:pk>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('products/<int:pk>/variants/', views.ProductVariantCreateView.as_view(), name='product-variants'),

    # Inventory record
    path('inventory/products/<int:pk>/', views.ProductInventoryView.as_view(), name='product-inventory'),
    path('inventory/variants/<int:pk>/', views.VariantInventoryView.as_view(), name='variant-inventory'),
    path('inventory/low-stock/', views.LowStockListView.as_view(), name='inventory-low-stock'),

    # Ledger and stock
    path('inventory/logs/', views.InventoryLogListCreateView.as_view(), name='inventory-logs'),
    path('inventory/stock/', views.AddStockView.as_view(), name='inventory-add-stock'),
    path('inventory/reserve/', views.ReserveStockView.as_view(), name='inventory-reserve'),
    path('inventory/release/', views.ReleaseStockView.as_view(), name='inventory-release'),

    # Availability
    path(
        'inventory/availability/products/<int:pk>/',
        views.ProductAvailabilityView.as_view(),
        name='product-availability'
    ),
    path(
        'inventory/availability/variants/<int:pk>/',
        views.VariantAvailabilityView.as_view(),
        name='variant-availability'
    ),
    path('inventory/availability/batch/', views.BatchAvailabilityView.as_view(), name='batch-availability'),
]
