"""
URL routing for coupon and deal API endpoints.
"""
from django.urls import path
from . import views

app_name = 'promotions'

urlpatterns = [
    # Coupons
    path('coupons/', views.CouponListCreateView.as_view(), name='coupon-list'),
    path('coupons/validate/', views.CouponValidateView.as_view(), name='coupon-validate'),
    path('coupons/apply/', views.CouponApplyView.as_view(), name='coupon-apply'),
    path('coupons/record-usage/', views.CouponRecordUsageView.as_view(), name='coupon-record-usage'),
    path('coupons/<int:pk>/', views.CouponDetailView.as_view(), name='coupon-detail'),
    path('coupons/<int:pk>/usages/', views.CouponUsageListView.as_view(), name='coupon-usages'),

    # Deals
    path('deals/', views.DealListCreateView.as_view(), name='deal-list'),
    path('deals/<int:pk>/', views.DealDetailView.as_view(), name='deal-detail'),
    path('deals/<int:pk>/products/', views.DealProductsView.as_view(), name='deal-products'),
    path(
        'deals/<int:pk>/products/<int:product_id>/',
        views.DealProductDetailView.as_view(),
        name='deal-product-detail'
    ),
    path('deals/<int:pk>/validate/', views.DealValidateView.as_view(), name='deal-validate'),
    path('deals/<int:pk>/stats/', views.DealStatsView.as_view(), name='deal-stats'),
]
