"""
Tests for coupon and deal services.

Test Cases:
1. Coupon validation order (status, window, usage limits)
2. Discount calculation per coupon type
3. Redemption recording is idempotent per order
4. Coupon management (duplicates, disable-on-delete)
5. Deal status, validation and usage limits
6. API surface for validate/apply/record-usage
"""
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from core.exceptions import BadRequest, Conflict, NotFound
from inventory.models import Category, Inventory, Product, ProductVariant
from promotions import deals, services
from promotions.models import Coupon, CouponUsage, Deal, DealUsage


def make_product(title, price, category, stock=10):
    product = Product.objects.create(
        title=title,
        slug=title.lower().replace(' ', '-'),
        sku=f"SKU-{title.upper().replace(' ', '-')}",
        price=Decimal(price),
        category=category,
        stock_quantity=stock,
    )
    Inventory.objects.create(product=product, stock_quantity=stock)
    return product


class CouponTestMixin:

    def make_coupon(self, code='SAVE10', type='PERCENTAGE', value='10', **kwargs):
        now = timezone.now()
        kwargs.setdefault('start_date', now - timedelta(days=1))
        kwargs.setdefault('end_date', now + timedelta(days=1))
        return services.create_coupon(code=code, type=type, value=Decimal(value), **kwargs)


class CouponValidationTestCase(CouponTestMixin, TestCase):
    """Validation checks run in a fixed order; the first failure wins."""

    def test_valid_coupon(self):
        self.make_coupon()

        result = services.validate_coupon('SAVE10')

        self.assertTrue(result.valid)
        self.assertIsNone(result.message)

    def test_unknown_code(self):
        result = services.validate_coupon('NOPE')

        self.assertFalse(result.valid)
        self.assertEqual(result.message, 'Coupon not found')

    def test_surrounding_whitespace_is_ignored(self):
        self.make_coupon()
        self.assertTrue(services.validate_coupon('  SAVE10 ').valid)

    def test_exhausted_coupon_rejected_inside_window(self):
        """
        Test: A coupon at its usage limit is invalid even with valid dates.

        Given: usage_limit=5 and usage_count=5
        When: Validating inside the date window
        Then: 'Coupon usage limit reached'
        """
        coupon = self.make_coupon(usage_limit=5)
        Coupon.objects.filter(id=coupon.id).update(usage_count=5)

        result = services.validate_coupon('SAVE10')

        self.assertFalse(result.valid)
        self.assertEqual(result.message, 'Coupon usage limit reached')

    def test_future_start(self):
        now = timezone.now()
        self.make_coupon(start_date=now + timedelta(days=1), end_date=now + timedelta(days=2))

        self.assertEqual(services.validate_coupon('SAVE10').message, 'Coupon is not yet active')

    def test_past_end(self):
        now = timezone.now()
        coupon = self.make_coupon(start_date=now - timedelta(days=3), end_date=now - timedelta(days=1))

        self.assertEqual(services.validate_coupon('SAVE10').message, 'Coupon has expired')
        self.assertEqual(coupon.effective_status(), Coupon.Status.EXPIRED)

    def test_disabled_takes_precedence_over_dates(self):
        now = timezone.now()
        coupon = self.make_coupon(start_date=now - timedelta(days=3), end_date=now - timedelta(days=1))
        services.disable_coupon(coupon.id)

        self.assertEqual(services.validate_coupon('SAVE10').message, 'Coupon is not active')

    def test_per_user_limit(self):
        coupon = self.make_coupon(per_user_limit=1)
        CouponUsage.objects.create(coupon=coupon, user_id='u1', order_id='1', discount_amount=Decimal('1.00'))

        self.assertEqual(
            services.validate_coupon('SAVE10', user_id='u1').message,
            'You have reached the usage limit for this coupon'
        )
        self.assertTrue(services.validate_coupon('SAVE10', user_id='u2').valid)


class CouponDiscountTestCase(CouponTestMixin, TestCase):

    def test_fixed_amount_never_exceeds_subtotal(self):
        self.make_coupon(code='FIFTY', type='FIXED_AMOUNT', value='50')

        applied = services.apply_coupon('FIFTY', Decimal('30.00'))

        self.assertEqual(applied.discount_amount, Decimal('30.00'))
        self.assertFalse(applied.free_shipping)

    def test_percentage_with_coupon_cap(self):
        self.make_coupon(code='HALF', value='50', max_discount_amount=Decimal('20.00'))

        applied = services.apply_coupon('HALF', Decimal('100.00'))

        self.assertEqual(applied.discount_amount, Decimal('20.00'))

    @override_settings(COUPON_MAX_PERCENTAGE_DISCOUNT='15')
    def test_percentage_with_global_cap(self):
        self.make_coupon(code='HALF', value='50')

        applied = services.apply_coupon('HALF', Decimal('100.00'))

        self.assertEqual(applied.discount_amount, Decimal('15.00'))

    def test_percentage_rounds_to_cents(self):
        self.make_coupon(code='THIRD', value='33.33')

        applied = services.apply_coupon('THIRD', Decimal('10.00'))

        self.assertEqual(applied.discount_amount, Decimal('3.33'))

    def test_restricted_coupon_uses_eligible_subtotal(self):
        shoes = Category.objects.create(name='Shoes', slug='shoes')
        audio = Category.objects.create(name='Audio', slug='audio')
        sneaker = make_product('Sneaker', '40.00', shoes)
        speaker = make_product('Speaker', '100.00', audio)
        self.make_coupon(code='SHOES10', value='10', category_ids=[shoes.id])

        applied = services.apply_coupon('SHOES10', Decimal('180.00'), cart_items=[
            {'product_id': sneaker.id, 'quantity': 2},
            {'product_id': speaker.id, 'quantity': 1},
        ])

        self.assertEqual(applied.discount_amount, Decimal('8.00'))

    def test_restricted_coupon_uses_charged_unit_price(self):
        """
        Test: The eligible subtotal uses the price the line is charged at.

        Given: A 100.00 product sold at 50.00 and a 20% coupon restricted to it
        When: Applying the coupon with unit_price on the cart line
        Then: The discount is 20% of 50.00, not of the catalog price
        """
        audio = Category.objects.create(name='Audio', slug='audio')
        speaker = make_product('Speaker', '100.00', audio)
        self.make_coupon(code='SPEAKER20', value='20', product_ids=[speaker.id])

        applied = services.apply_coupon('SPEAKER20', Decimal('50.00'), cart_items=[
            {'product_id': speaker.id, 'quantity': 1, 'unit_price': Decimal('50.00')},
        ])

        self.assertEqual(applied.discount_amount, Decimal('10.00'))

    def test_category_restriction_covers_subcategories(self):
        """
        Test: A coupon restricted to a category applies to its sub-categories.

        Given: 'Clothing' nested under 'Fashion' and a 10% coupon on 'Fashion'
        When: Applying it to a cart holding one 60.00 shirt from 'Clothing'
        Then: The shirt is eligible and the discount is 6.00
        """
        fashion = Category.objects.create(name='Fashion', slug='fashion')
        clothing = Category.objects.create(name='Clothing', slug='clothing', parent=fashion)
        shirt = make_product('Shirt', '60.00', clothing)
        self.make_coupon(code='FASHION10', value='10', category_ids=[fashion.id])

        applied = services.apply_coupon('FASHION10', Decimal('60.00'), cart_items=[
            {'product_id': shirt.id, 'quantity': 1},
        ])

        self.assertEqual(applied.discount_amount, Decimal('6.00'))

    def test_free_shipping(self):
        self.make_coupon(code='SHIPFREE', type='FREE_SHIPPING', value='0')

        applied = services.apply_coupon('SHIPFREE', Decimal('25.00'))

        self.assertEqual(applied.discount_amount, Decimal('0.00'))
        self.assertTrue(applied.free_shipping)

    def test_minimum_purchase(self):
        self.make_coupon(minimum_purchase=Decimal('50.00'))

        with self.assertRaises(BadRequest) as ctx:
            services.apply_coupon('SAVE10', Decimal('49.99'))
        self.assertIn('Minimum purchase', ctx.exception.detail)

    def test_invalid_coupon_raises_with_reason(self):
        with self.assertRaises(BadRequest) as ctx:
            services.apply_coupon('MISSING', Decimal('10.00'))
        self.assertEqual(ctx.exception.detail, 'Coupon not found')


class CouponRedemptionTestCase(CouponTestMixin, TestCase):

    def test_record_usage_is_idempotent_per_order(self):
        """
        Test: Recording the same order twice increments usage once.

        Given: An unused coupon
        When: record_usage is called twice for order 'A1'
        Then: usage_count is 1 and the second call reports created=False
        """
        coupon = self.make_coupon()

        first, created_first = services.record_usage('A1', 'u1', 'SAVE10', Decimal('5.00'))
        second, created_second = services.record_usage('A1', 'u1', 'SAVE10', Decimal('5.00'))

        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)
        self.assertTrue(created_first)
        self.assertFalse(created_second)
        self.assertEqual(first.id, second.id)

    def test_limit_reached_is_conflict(self):
        coupon = self.make_coupon(usage_limit=1)
        services.record_usage('A1', 'u1', 'SAVE10', Decimal('5.00'))

        with self.assertRaises(Conflict):
            services.record_usage('A2', 'u2', 'SAVE10', Decimal('5.00'))

        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)
        self.assertEqual(CouponUsage.objects.filter(coupon=coupon).count(), 1)

    def test_unknown_code_is_not_found(self):
        with self.assertRaises(NotFound):
            services.record_usage('A1', 'u1', 'MISSING', Decimal('1.00'))

    def test_usages_filtered_by_user(self):
        coupon = self.make_coupon()
        services.record_usage('A1', 'u1', 'SAVE10', Decimal('1.00'))
        services.record_usage('A2', 'u2', 'SAVE10', Decimal('1.00'))

        self.assertEqual(services.get_coupon_usages(coupon.id, user_id='u1').count(), 1)


class CouponManagementTestCase(CouponTestMixin, TestCase):

    def test_duplicate_code_is_conflict(self):
        self.make_coupon()

        with self.assertRaises(Conflict) as ctx:
            self.make_coupon()
        self.assertEqual(ctx.exception.detail, 'Coupon with code SAVE10 already exists')

    def test_end_before_start(self):
        now = timezone.now()
        with self.assertRaises(BadRequest) as ctx:
            self.make_coupon(start_date=now, end_date=now - timedelta(hours=1))
        self.assertEqual(ctx.exception.detail, 'End date must be after start date')

    def test_percentage_over_100(self):
        with self.assertRaises(BadRequest):
            self.make_coupon(value='150')

    def test_delete_unused_coupon(self):
        coupon = self.make_coupon()

        result = services.delete_coupon(coupon.id)

        self.assertTrue(result['deleted'])
        self.assertFalse(Coupon.objects.filter(id=coupon.id).exists())

    def test_delete_used_coupon_disables_it(self):
        coupon = self.make_coupon()
        services.record_usage('A1', 'u1', 'SAVE10', Decimal('1.00'))

        result = services.delete_coupon(coupon.id)

        coupon.refresh_from_db()
        self.assertFalse(result['deleted'])
        self.assertTrue(result['disabled'])
        self.assertEqual(coupon.status, Coupon.Status.DISABLED)

    def test_usage_limit_cannot_drop_below_count(self):
        coupon = self.make_coupon(usage_limit=5)
        Coupon.objects.filter(id=coupon.id).update(usage_count=3)

        with self.assertRaises(BadRequest):
            services.update_coupon(coupon.id, usage_limit=2)

    def test_list_by_effective_status(self):
        now = timezone.now()
        self.make_coupon(code='LIVE')
        self.make_coupon(code='OLD', start_date=now - timedelta(days=3), end_date=now - timedelta(days=1))

        self.assertEqual([c.code for c in services.list_coupons(status='ACTIVE')], ['LIVE'])
        self.assertEqual([c.code for c in services.list_coupons(status='EXPIRED')], ['OLD'])

    def test_status_cannot_be_set_to_expired(self):
        """
        Test: EXPIRED is not a writable status.

        Given: An active coupon
        When: Updating it with status='EXPIRED'
        Then: BadRequest is raised and the stored status stays ACTIVE
        """
        coupon = self.make_coupon()

        with self.assertRaises(BadRequest):
            services.update_coupon(coupon.id, status='EXPIRED')

        coupon.refresh_from_db()
        self.assertEqual(coupon.status, Coupon.Status.ACTIVE)

        services.update_coupon(coupon.id, status='DISABLED')
        coupon.refresh_from_db()
        self.assertEqual(coupon.status, Coupon.Status.DISABLED)


class DealTestCase(TestCase):

    def setUp(self):
        self.now = timezone.now()
        self.category = Category.objects.create(name='Audio', slug='audio')
        self.product = make_product('Speaker', '80.00', self.category)
        self.deal = deals.create_deal(
            deal_type='FLASH',
            discount=Decimal('25'),
            start_time=self.now - timedelta(hours=1),
            end_time=self.now + timedelta(hours=1),
            product_ids=[self.product.id],
        )

    def test_status_from_window(self):
        self.assertEqual(self.deal.status_at(self.now), Deal.Status.ACTIVE)
        self.assertEqual(self.deal.status_at(self.now - timedelta(hours=2)), Deal.Status.UPCOMING)
        self.assertEqual(self.deal.status_at(self.now + timedelta(hours=2)), Deal.Status.ENDED)

    def test_display_name_fallback(self):
        self.assertEqual(self.deal.display_name, 'FLASH Deal (25% off)')

    def test_deal_price(self):
        self.assertEqual(deals.deal_price(self.deal, Decimal('80.00')), Decimal('60.00'))

    def test_end_before_start(self):
        with self.assertRaises(BadRequest):
            deals.create_deal('FLASH', Decimal('10'), self.now, self.now - timedelta(minutes=1))

    def test_valid_application(self):
        result = deals.validate_deal_application(self.deal.id, self.product.id, user_id='u1')

        self.assertTrue(result.valid)
        self.assertIsNone(result.remaining_usage)

    def test_time_window_reasons(self):
        self.assertEqual(
            deals.validate_deal_application(self.deal.id, self.product.id, now=self.now - timedelta(hours=2)).reason,
            'Deal has not started yet'
        )
        self.assertEqual(
            deals.validate_deal_application(self.deal.id, self.product.id, now=self.now + timedelta(hours=2)).reason,
            'Deal has expired'
        )

    def test_product_reasons(self):
        other = make_product('Headphones', '50.00', self.category)
        self.assertEqual(
            deals.validate_deal_application(self.deal.id, other.id).reason,
            'Product is not part of this deal'
        )
        self.assertEqual(deals.validate_deal_application(self.deal.id, 999999).reason, 'Product not found')
        self.assertEqual(deals.validate_deal_application(999999, self.product.id).reason, 'Deal not found')

        Product.objects.filter(id=self.product.id).update(is_active=False)
        self.assertEqual(
            deals.validate_deal_application(self.deal.id, self.product.id).reason,
            'Product is not active'
        )

    def test_out_of_stock(self):
        Inventory.objects.filter(product=self.product).update(stock_quantity=0)

        result = deals.validate_deal_application(self.deal.id, self.product.id)

        self.assertEqual(result.reason, 'Product is out of stock')

    def test_variant_stock_is_checked_for_variant_lines(self):
        """
        Test: Deal stock checks use the variant's inventory when one is given.

        Given: A deal product with no product-level stock and a variant with 4 units
        When: Validating the deal for that variant, then after the variant sells out
        Then: Valid first, then 'Product is out of stock'
        """
        Inventory.objects.filter(product=self.product).delete()
        Product.objects.filter(id=self.product.id).update(stock_quantity=0)
        variant = ProductVariant.objects.create(
            product=self.product, variant_name='Black', sku='SKU-SPEAKER-BLACK', stock_quantity=4
        )
        Inventory.objects.create(product=self.product, variant=variant, stock_quantity=4)

        self.assertEqual(
            deals.validate_deal_application(self.deal.id, self.product.id).reason,
            'Product is out of stock'
        )
        self.assertTrue(
            deals.validate_deal_application(self.deal.id, self.product.id, variant_id=variant.id).valid
        )

        Inventory.objects.filter(variant=variant).update(stock_quantity=0)
        self.assertEqual(
            deals.validate_deal_application(self.deal.id, self.product.id, variant_id=variant.id).reason,
            'Product is out of stock'
        )

    def test_remaining_usage_is_smaller_of_limits(self):
        deals.update_deal(self.deal.id, max_total_usage=10, max_user_usage=2)
        deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O1')

        result = deals.validate_deal_application(self.deal.id, self.product.id, user_id='u1')

        self.assertTrue(result.valid)
        self.assertEqual(result.remaining_usage, 1)

    def test_per_user_limit(self):
        deals.update_deal(self.deal.id, max_user_usage=1)
        deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O1')

        result = deals.validate_deal_application(self.deal.id, self.product.id, user_id='u1')

        self.assertFalse(result.valid)
        self.assertEqual(result.reason, 'You have already used this deal the maximum number of times')
        self.assertEqual(result.remaining_usage, 0)

    def test_total_limit(self):
        deals.update_deal(self.deal.id, max_total_usage=1)
        deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O1')

        result = deals.validate_deal_application(self.deal.id, self.product.id, user_id='u2')
        self.assertEqual(result.reason, 'Deal usage limit exceeded')

        with self.assertRaises(Conflict):
            deals.record_deal_usage(self.deal.id, self.product.id, 'u2', 'O2')

    def test_record_usage_idempotent(self):
        _, created_first = deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O1')
        _, created_second = deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O1')

        self.deal.refresh_from_db()
        self.assertTrue(created_first)
        self.assertFalse(created_second)
        self.assertEqual(self.deal.usage_count, 1)
        self.assertEqual(DealUsage.objects.count(), 1)

    def test_product_association(self):
        other = make_product('Headphones', '50.00', self.category)

        deals.add_product_to_deal(self.deal.id, other.id)
        with self.assertRaises(Conflict):
            deals.add_product_to_deal(self.deal.id, other.id)

        deals.remove_product_from_deal(self.deal.id, other.id)
        with self.assertRaises(BadRequest):
            deals.remove_product_from_deal(self.deal.id, other.id)

    def test_list_filters(self):
        deals.create_deal(
            'TRENDING', Decimal('5'),
            self.now + timedelta(days=1), self.now + timedelta(days=2)
        )

        active = deals.list_deals(status='Active', now=self.now)
        upcoming = deals.list_deals(status='Upcoming', now=self.now)
        flash = deals.list_deals(deal_type='FLASH')

        self.assertEqual([d.id for d in active], [self.deal.id])
        self.assertEqual(active[0].product_count, 1)
        self.assertEqual(upcoming.count(), 1)
        self.assertEqual([d.id for d in flash], [self.deal.id])

    def test_usage_stats(self):
        deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O1')
        deals.record_deal_usage(self.deal.id, self.product.id, 'u1', 'O2')

        stats = deals.get_deal_usage_stats(self.deal.id)

        self.assertEqual(stats['total_usage'], 2)
        self.assertEqual(stats['unique_users'], 1)
        self.assertEqual(len(stats['recent_usage']), 2)


@override_settings(RATE_LIMIT_ENABLED=False)
class PromotionApiTestCase(CouponTestMixin, TestCase):

    def setUp(self):
        self.client = APIClient()
        self.make_coupon()

    def test_validate_returns_200_with_message(self):
        response = self.client.post('/api/coupons/validate/', {'code': 'MISSING'}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'valid': False, 'message': 'Coupon not found'})

    def test_apply(self):
        response = self.client.post(
            '/api/coupons/apply/', {'code': 'SAVE10', 'subtotal': '200.00'}, format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['discount_amount'], '20.00')

    def test_record_usage_status_codes(self):
        payload = {'order_id': 'A1', 'user_id': 'u1', 'code': 'SAVE10', 'discount_amount': '2.00'}

        first = self.client.post('/api/coupons/record-usage/', payload, format='json')
        second = self.client.post('/api/coupons/record-usage/', payload, format='json')

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)

    def test_duplicate_create_is_409(self):
        now = timezone.now()
        response = self.client.post('/api/coupons/', {
            'code': 'SAVE10',
            'type': 'PERCENTAGE',
            'value': '10',
            'start_date': now.isoformat(),
            'end_date': (now + timedelta(days=1)).isoformat(),
        }, format='json')

        self.assertEqual(response.status_code, 409)

    def test_patch_rejects_expired_status(self):
        coupon = Coupon.objects.get(code='SAVE10')

        response = self.client.patch(
            f'/api/coupons/{coupon.id}/', {'status': 'EXPIRED'}, format='json'
        )

        self.assertEqual(response.status_code, 400)
        coupon.refresh_from_db()
        self.assertEqual(coupon.status, Coupon.Status.ACTIVE)
