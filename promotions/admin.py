"""
Django Admin configuration for promotion models.
"""
from django.contrib import admin
from .models import Coupon, CouponUsage, Deal, DealUsage, ProductDeal


class ProductDealInline(admin.TabularInline):
    model = ProductDeal
    extra = 0
    raw_id_fields = ['product']


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ['id', 'code', 'type', 'value', 'status', 'usage_count', 'usage_limit', 'end_date']
    list_filter = ['type', 'status', 'start_date', 'end_date']
    search_fields = ['code', 'description']
    ordering = ['-created_at']
    readonly_fields = ['usage_count', 'created_at', 'updated_at']
    filter_horizontal = ['categories', 'products']


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ['id', 'coupon', 'user_id', 'order_id', 'discount_amount', 'created_at']
    search_fields = ['coupon__code', 'user_id', 'order_id']
    raw_id_fields = ['coupon']


@admin.register(Deal)
class DealAdmin(admin.ModelAdmin):
    list_display = ['id', 'display_name', 'deal_type', 'discount', 'deal_status', 'start_time', 'end_time']
    list_filter = ['deal_type', 'start_time']
    search_fields = ['name']
    readonly_fields = ['usage_count', 'created_at', 'updated_at']
    inlines = [ProductDealInline]

    def deal_status(self, obj):
        return obj.status
    deal_status.short_description = 'Status'


@admin.register(DealUsage)
class DealUsageAdmin(admin.ModelAdmin):
    list_display = ['id', 'deal', 'product', 'user_id', 'order_id', 'used_at']
    search_fields = ['user_id', 'order_id']
    raw_id_fields = ['deal', 'product']
