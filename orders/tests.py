"""
Tests for order transaction logic.

Test Cases:
1. Order confirmed with sufficient stock, SALE entries written
2. Order rejected with insufficient stock
3. No stock deduction on rejection
4. Coupons and deals priced into the order and their usage recorded
5. Returns write RETURN entries
6. Concurrent order race condition prevention
"""
import threading
from datetime import timedelta
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch

from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from core.exceptions import BadRequest
from inventory.models import Category, Inventory, InventoryLog, Product, ProductVariant
from inventory.services import add_stock
from orders.models import Order, OrderItem
from orders.services import OrderValidationError, create_order, get_order_summary, return_order
from orders.tasks import process_pending_orders, send_order_confirmation
from promotions import deals as deal_service
from promotions import services as coupon_service
from promotions.models import Coupon


def make_product(title, price, category):
    return Product.objects.create(
        title=title,
        slug=title.lower().replace(' ', '-'),
        sku=f"SKU-{Product.objects.count() + 1}",
        price=Decimal(price),
        category=category,
    )


class OrderTransactionTestCase(TestCase):
    """Test cases for order transaction logic."""

    def setUp(self):
        """Set up test data."""
        self.category = Category.objects.create(name='Test Category', slug='test-category')

        self.product1 = make_product('Test Product 1', '10.00', self.category)
        self.product2 = make_product('Test Product 2', '25.00', self.category)
        self.product3 = make_product('Test Product 3', '15.50', self.category)

        # Opening stock goes through the ledger
        self.inv1 = add_stock(self.product1.id, 100)
        self.inv2 = add_stock(self.product2.id, 50)
        self.inv3 = add_stock(self.product3.id, 10)  # Low stock

    def test_order_confirmed_with_sufficient_stock(self):
        """
        Test: Order is CONFIRMED when all items have enough stock.

        Given: Products with sufficient stock
        When: Creating an order within stock limits
        Then: Order status is CONFIRMED, stock is deducted through SALE entries
        """
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product2.id, 'quantity': 3}
        ]

        order, error = create_order('user-1', items, shipping_fee=Decimal('0.00'))

        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertIsNone(error)

        # (5 * 10) + (3 * 25) = 125
        self.assertEqual(order.subtotal, Decimal('125.00'))
        self.assertEqual(order.total_amount, Decimal('125.00'))
        self.assertEqual(order.items.count(), 2)

        self.inv1.refresh_from_db()
        self.inv2.refresh_from_db()
        self.assertEqual(self.inv1.stock_quantity, 95)
        self.assertEqual(self.inv2.stock_quantity, 47)

        sales = InventoryLog.objects.filter(change_type=InventoryLog.ChangeType.SALE)
        self.assertEqual(
            sorted(sales.values_list('product_id', 'quantity_changed')),
            sorted([(self.product1.id, -5), (self.product2.id, -3)])
        )

        self.product1.refresh_from_db()
        self.assertEqual(self.product1.stock_quantity, 95)

    def test_order_rejected_with_insufficient_stock(self):
        """
        Test: Order is REJECTED when any item lacks stock.

        Given: Product3 has only 10 units
        When: Requesting 15 units of product3
        Then: Order status is REJECTED
        """
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product3.id, 'quantity': 15}
        ]

        order, error = create_order('user-1', items)

        self.assertEqual(order.status, Order.Status.REJECTED)
        self.assertIn('Insufficient stock', error)
        self.assertIn('Test Product 3', error)
        self.assertEqual(order.rejection_reason, error)

    def test_no_stock_deduction_on_rejection(self):
        """
        Test: Inventory and ledger unchanged after rejected order.

        Given: Insufficient stock for one item
        When: Order is rejected
        Then: No inventory quantities change and no SALE entries exist
        """
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product2.id, 'quantity': 10},
            {'product_id': self.product3.id, 'quantity': 20}
        ]

        order, error = create_order('user-1', items)

        self.assertEqual(order.status, Order.Status.REJECTED)
        for inventory, expected in ((self.inv1, 100), (self.inv2, 50), (self.inv3, 10)):
            inventory.refresh_from_db()
            self.assertEqual(inventory.stock_quantity, expected)
        self.assertFalse(InventoryLog.objects.filter(change_type=InventoryLog.ChangeType.SALE).exists())
        self.assertEqual(order.items.count(), 0)

    def test_reserved_stock_is_not_available(self):
        Inventory.objects.filter(id=self.inv3.id).update(reserved_quantity=8)

        order, error = create_order('user-1', [{'product_id': self.product3.id, 'quantity': 3}])

        self.assertEqual(order.status, Order.Status.REJECTED)
        self.assertIn('available 2', error)

    def test_order_with_exact_stock(self):
        """
        Test: Order succeeds when requesting exactly available stock.
        """
        order, error = create_order('user-1', [{'product_id': self.product3.id, 'quantity': 10}])

        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.inv3.refresh_from_db()
        self.assertEqual(self.inv3.stock_quantity, 0)

    def test_variant_order_deducts_variant_stock(self):
        variant = ProductVariant.objects.create(
            product=self.product1, variant_name='Large', sku='V-L', price=Decimal('12.00')
        )
        add_stock(self.product1.id, 4, variant_id=variant.id)

        order, error = create_order('user-1', [
            {'product_id': self.product1.id, 'variant_id': variant.id, 'quantity': 3}
        ], shipping_fee=Decimal('0.00'))

        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(order.total_amount, Decimal('36.00'))
        variant.refresh_from_db()
        self.assertEqual(variant.stock_quantity, 1)
        self.inv1.refresh_from_db()
        self.assertEqual(self.inv1.stock_quantity, 100)

    def test_variant_of_other_product(self):
        variant = ProductVariant.objects.create(product=self.product2, variant_name='S', sku='V-S')

        with self.assertRaises(OrderValidationError):
            create_order('user-1', [
                {'product_id': self.product1.id, 'variant_id': variant.id, 'quantity': 1}
            ])

    def test_unstocked_product_rejected(self):
        unstocked = make_product('Unstocked', '5.00', self.category)

        order, error = create_order('user-1', [{'product_id': unstocked.id, 'quantity': 1}])

        self.assertEqual(order.status, Order.Status.REJECTED)
        self.assertIn('not stocked', error)

    def test_validation_error_empty_items(self):
        """
        Test: Validation fails for empty items list.
        """
        with self.assertRaises(OrderValidationError) as context:
            create_order('user-1', [])

        self.assertIn('at least one item', str(context.exception))

    def test_validation_error_invalid_quantity(self):
        with self.assertRaises(OrderValidationError):
            create_order('user-1', [{'product_id': self.product1.id, 'quantity': 0}])

    def test_validation_error_duplicate_products(self):
        """
        Test: Validation fails for duplicate products in same order.
        """
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product1.id, 'quantity': 3}
        ]

        with self.assertRaises(OrderValidationError) as context:
            create_order('user-1', items)

        self.assertIn('duplicate', str(context.exception).lower())

    def test_order_invalid_product(self):
        """
        Test: Order rejected for non-existent product.
        """
        order, error = create_order('user-1', [{'product_id': 99999, 'quantity': 5}])

        self.assertEqual(order.status, Order.Status.REJECTED)
        self.assertIn('not found', error.lower())

    def test_order_summary(self):
        order, _ = create_order('user-1', [{'product_id': self.product2.id, 'quantity': 2}])

        summary = get_order_summary(order.id)

        self.assertEqual(summary['item_count'], 1)
        self.assertEqual(summary['items'][0]['subtotal'], '50.00')
        self.assertIsNone(summary['coupon_code'])


class OrderPromotionTestCase(TestCase):
    """Coupons and deals applied while placing an order."""

    def setUp(self):
        self.now = timezone.now()
        self.category = Category.objects.create(name='Audio', slug='audio')
        self.product = make_product('Speaker', '40.00', self.category)
        add_stock(self.product.id, 20)

    def make_coupon(self, code, type, value, **kwargs):
        return coupon_service.create_coupon(
            code=code,
            type=type,
            value=Decimal(value),
            start_date=self.now - timedelta(days=1),
            end_date=self.now + timedelta(days=1),
            **kwargs
        )

    def test_coupon_discount_and_usage_recorded(self):
        """
        Test: A coupon discounts the order and is redeemed once.

        Given: A 10% coupon
        When: Ordering 2 x 40.00 with 5.00 shipping
        Then: discount 8.00, total 77.00, usage_count 1
        """
        coupon = self.make_coupon('SAVE10', 'PERCENTAGE', '10')

        order, error = create_order(
            'user-1', [{'product_id': self.product.id, 'quantity': 2}],
            coupon_code='SAVE10', shipping_fee=Decimal('5.00')
        )

        self.assertIsNone(error)
        self.assertEqual(order.discount_amount, Decimal('8.00'))
        self.assertEqual(order.total_amount, Decimal('77.00'))
        self.assertEqual(order.coupon_code, 'SAVE10')
        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)
        self.assertEqual(coupon.usages.get().order_id, str(order.id))

    def test_free_shipping_coupon(self):
        self.make_coupon('SHIPFREE', 'FREE_SHIPPING', '0')

        order, _ = create_order(
            'user-1', [{'product_id': self.product.id, 'quantity': 1}],
            coupon_code='SHIPFREE', shipping_fee=Decimal('7.50')
        )

        self.assertEqual(order.shipping_fee, Decimal('0.00'))
        self.assertEqual(order.total_amount, Decimal('40.00'))

    def test_invalid_coupon_rolls_back_order(self):
        Coupon.objects.create(
            code='OLD', type='PERCENTAGE', value=Decimal('10'),
            start_date=self.now - timedelta(days=3), end_date=self.now - timedelta(days=1)
        )

        with self.assertRaises(BadRequest) as ctx:
            create_order('user-1', [{'product_id': self.product.id, 'quantity': 1}], coupon_code='OLD')

        self.assertEqual(ctx.exception.detail, 'Coupon has expired')
        self.assertFalse(Order.objects.exists())
        self.assertFalse(InventoryLog.objects.filter(change_type=InventoryLog.ChangeType.SALE).exists())

    def test_deal_price_and_usage(self):
        deal = deal_service.create_deal(
            'FLASH', Decimal('25'), self.now - timedelta(hours=1), self.now + timedelta(hours=1),
            product_ids=[self.product.id]
        )

        order, _ = create_order(
            'user-1', [{'product_id': self.product.id, 'quantity': 2, 'deal_id': deal.id}],
            shipping_fee=Decimal('0.00')
        )

        self.assertEqual(order.items.get().unit_price, Decimal('30.00'))
        self.assertEqual(order.total_amount, Decimal('60.00'))
        deal.refresh_from_db()
        self.assertEqual(deal.usage_count, 1)

    def test_deal_not_including_product(self):
        deal = deal_service.create_deal(
            'FLASH', Decimal('25'), self.now - timedelta(hours=1), self.now + timedelta(hours=1)
        )

        with self.assertRaises(BadRequest) as ctx:
            create_order('user-1', [{'product_id': self.product.id, 'quantity': 1, 'deal_id': deal.id}])

        self.assertEqual(ctx.exception.detail, 'Product is not part of this deal')

    def test_restricted_coupon_discounts_deal_price(self):
        """
        Test: A product-restricted coupon applies to the deal price of the line.

        Given: A 50% deal and a 20% coupon both on the 40.00 speaker
        When: Ordering one speaker with the deal and the coupon
        Then: subtotal 20.00 and discount 4.00 (20% of the charged price)
        """
        deal = deal_service.create_deal(
            'FLASH', Decimal('50'), self.now - timedelta(hours=1), self.now + timedelta(hours=1),
            product_ids=[self.product.id]
        )
        self.make_coupon('SPEAKER20', 'PERCENTAGE', '20', product_ids=[self.product.id])

        order, error = create_order(
            'user-1', [{'product_id': self.product.id, 'quantity': 1, 'deal_id': deal.id}],
            coupon_code='SPEAKER20', shipping_fee=Decimal('0.00')
        )

        self.assertIsNone(error)
        self.assertEqual(order.subtotal, Decimal('20.00'))
        self.assertEqual(order.discount_amount, Decimal('4.00'))
        self.assertEqual(order.total_amount, Decimal('16.00'))

    def test_deal_on_variant_only_stock(self):
        """
        Test: A deal line for a stocked variant is accepted.

        Given: Headphones with no product-level stock and a variant with 10 units
        When: Ordering 2 of the variant with a deal on the headphones
        Then: The order is CONFIRMED at the deal price and the variant stock drops to 8
        """
        headphones = make_product('Headphones', '80.00', self.category)
        variant = ProductVariant.objects.create(
            product=headphones, variant_name='Black', sku='HP-BLACK'
        )
        add_stock(headphones.id, 10, variant_id=variant.id)
        deal = deal_service.create_deal(
            'FLASH', Decimal('25'), self.now - timedelta(hours=1), self.now + timedelta(hours=1),
            product_ids=[headphones.id]
        )

        order, error = create_order('user-1', [{
            'product_id': headphones.id, 'variant_id': variant.id, 'quantity': 2, 'deal_id': deal.id
        }], shipping_fee=Decimal('0.00'))

        self.assertIsNone(error)
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(order.items.get().unit_price, Decimal('60.00'))
        variant.refresh_from_db()
        self.assertEqual(variant.stock_quantity, 8)


class OrderReturnTestCase(TestCase):

    def setUp(self):
        self.category = Category.objects.create(name='Home', slug='home')
        self.product = make_product('Lamp', '20.00', self.category)
        self.inventory = add_stock(self.product.id, 10)

    def test_return_restocks_items(self):
        order, _ = create_order('user-1', [{'product_id': self.product.id, 'quantity': 4}])

        order = return_order(order.id)

        self.assertEqual(order.status, Order.Status.RETURNED)
        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.stock_quantity, 10)
        self.assertTrue(InventoryLog.objects.filter(
            change_type=InventoryLog.ChangeType.RETURN, quantity_changed=4
        ).exists())

    def test_only_confirmed_orders_can_be_returned(self):
        order, _ = create_order('user-1', [{'product_id': self.product.id, 'quantity': 40}])

        with self.assertRaises(BadRequest):
            return_order(order.id)


@skipUnless(connection.vendor == 'postgresql', 'Row locking needs PostgreSQL')
class ConcurrentOrderTestCase(TransactionTestCase):
    """
    Test concurrent order handling to verify select_for_update works.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        self.category = Category.objects.create(name='Concurrent Test Category', slug='concurrent')
        self.product = make_product('Limited Stock Product', '50.00', self.category)
        # Only 10 units available
        self.inventory = add_stock(self.product.id, 10)

    @patch('inventory.tasks.notify_low_stock.delay')
    @patch('orders.tasks.send_order_confirmation.delay')
    def test_concurrent_orders_no_overselling(self, mock_confirmation, mock_alert):
        """
        Test: Concurrent orders don't oversell inventory.

        Given: 10 units in stock
        When: Two concurrent orders of 8 units each
        Then: At most one is CONFIRMED and stock matches the outcome
        """
        results = {}

        def place_order(key):
            try:
                order, error = create_order(key, [{'product_id': self.product.id, 'quantity': 8}])
                results[key] = order.status
            finally:
                connection.close()

        threads = [threading.Thread(target=place_order, args=(key,)) for key in ('order1', 'order2')]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.inventory.refresh_from_db()
        confirmed = sum(1 for r in results.values() if r == Order.Status.CONFIRMED)

        self.assertLessEqual(confirmed, 1)
        if confirmed == 1:
            self.assertEqual(self.inventory.stock_quantity, 2)
        else:
            self.assertEqual(self.inventory.stock_quantity, 10)


class OrderTaskTestCase(TestCase):

    def setUp(self):
        self.category = Category.objects.create(name='Task Category', slug='task-category')
        self.product = make_product('Task Product', '10.00', self.category)

    def test_confirmation_skips_unconfirmed(self):
        order = Order.objects.create(user_id='user-1', status=Order.Status.REJECTED)

        result = send_order_confirmation.apply(args=[order.id]).get()

        self.assertEqual(result['status'], 'skipped')

    def test_confirmation_for_confirmed_order(self):
        add_stock(self.product.id, 5)
        order, _ = create_order('user-1', [{'product_id': self.product.id, 'quantity': 1}])

        result = send_order_confirmation.apply(args=[order.id]).get()

        self.assertEqual(result['status'], 'success')

    def test_stuck_pending_orders_rejected(self):
        order = Order.objects.create(user_id='user-1', status=Order.Status.PENDING)
        Order.objects.filter(id=order.id).update(created_at=timezone.now() - timedelta(minutes=10))

        result = process_pending_orders.apply().get()

        order.refresh_from_db()
        self.assertEqual(result['processed'], 1)
        self.assertEqual(order.status, Order.Status.REJECTED)


class OrderModelTestCase(TestCase):
    """Test cases for Order model properties."""

    def setUp(self):
        self.category = Category.objects.create(name='Model Test Category', slug='model-test')
        self.product = make_product('Model Test Product', '100.00', self.category)

    def test_order_status_properties(self):
        """Test is_confirmed and is_rejected properties."""
        order = Order.objects.create(
            user_id='user-1',
            status=Order.Status.CONFIRMED,
            total_amount=Decimal('100.00')
        )

        self.assertTrue(order.is_confirmed)
        self.assertFalse(order.is_rejected)

        order.status = Order.Status.REJECTED
        order.save()

        self.assertFalse(order.is_confirmed)
        self.assertTrue(order.is_rejected)

    def test_order_item_subtotal(self):
        """Test OrderItem subtotal calculation."""
        order = Order.objects.create(user_id='user-1', status=Order.Status.CONFIRMED)

        item = OrderItem.objects.create(
            order=order,
            product=self.product,
            quantity=3,
            unit_price=Decimal('25.50')
        )

        self.assertEqual(item.subtotal, Decimal('76.50'))


@override_settings(RATE_LIMIT_ENABLED=False, DEFAULT_SHIPPING_FEE='4.99')
class OrderApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.category = Category.objects.create(name='Api Category', slug='api-category')
        self.product = make_product('Api Product', '10.00', self.category)
        add_stock(self.product.id, 3)

    def test_confirmed_order_is_201(self):
        response = self.client.post('/api/orders/', {
            'user_id': 'user-1',
            'items': [{'product_id': self.product.id, 'quantity': 2}],
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], 'CONFIRMED')
        self.assertEqual(response.data['total_amount'], '24.99')

    def test_rejected_order_is_200(self):
        response = self.client.post('/api/orders/', {
            'user_id': 'user-1',
            'items': [{'product_id': self.product.id, 'quantity': 5}],
        }, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'REJECTED')

    def test_list_filtered_by_user(self):
        create_order('user-1', [{'product_id': self.product.id, 'quantity': 1}])
        create_order('user-2', [{'product_id': self.product.id, 'quantity': 1}])

        response = self.client.get('/api/orders/?user_id=user-2')

        self.assertEqual(response.status_code, 200)
        rows = response.data['results'] if isinstance(response.data, dict) else response.data
        self.assertEqual([row['user_id'] for row in rows], ['user-2'])
