"""
Tests for the stock ledger, inventory record and catalog services.

Test Cases:
1. Ledger deltas applied in order with a zero floor
2. Low stock and availability derived properties
3. Product/variant validation (missing, mismatched)
4. Ledger immutability
5. Admin corrections write compensating entries
6. Reservations and availability
7. Catalog slug assignment on create/rename
8. Low stock alert task
"""
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from core.exceptions import BadRequest, Conflict, NotFound
from inventory import catalog, services
from inventory.models import Brand, Category, Inventory, InventoryLog, Product, ProductVariant
from inventory.tasks import notify_low_stock


def make_product(title='Test Product', price='10.00', category=None, sku=None):
    category = category or Category.objects.create(name='Test Category', slug=f"cat-{Category.objects.count()}")
    return Product.objects.create(
        title=title,
        slug=f"p-{Product.objects.count()}",
        sku=sku or f"SKU-{Product.objects.count()}",
        price=Decimal(price),
        category=category,
    )


class StockLedgerTestCase(TestCase):
    """Ledger entries drive the inventory record."""

    def setUp(self):
        self.product = make_product()

    def test_sequential_deltas_floor_at_zero(self):
        """
        Test: Deltas apply in order with stock floored at zero after each.

        Given: No inventory row for the product
        When: Recording +10, -15, +3
        Then: Stock goes 10, 0, 3
        """
        expected = []
        for delta, change_type in ((10, 'RESTOCK'), (-15, 'SALE'), (3, 'RETURN')):
            services.record_change(self.product.id, change_type, delta)
            expected.append(Inventory.objects.get(product=self.product).stock_quantity)

        self.assertEqual(expected, [10, 0, 3])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(InventoryLog.objects.filter(product=self.product).count(), 3)

    def test_first_negative_entry_creates_empty_row(self):
        services.record_change(self.product.id, 'SALE', -4)

        inventory = Inventory.objects.get(product=self.product)
        self.assertEqual(inventory.stock_quantity, 0)
        self.assertIsNone(inventory.last_restocked_at)

    def test_last_restocked_only_moves_on_increase(self):
        services.record_change(self.product.id, 'RESTOCK', 5)
        restocked_at = Inventory.objects.get(product=self.product).last_restocked_at
        self.assertIsNotNone(restocked_at)

        services.record_change(self.product.id, 'SALE', -1)
        self.assertEqual(Inventory.objects.get(product=self.product).last_restocked_at, restocked_at)

    def test_variant_entries_update_variant_row_and_mirror(self):
        variant = ProductVariant.objects.create(product=self.product, variant_name='L', sku='V-L')

        services.record_change(self.product.id, 'RESTOCK', 7, variant_id=variant.id)

        variant.refresh_from_db()
        self.product.refresh_from_db()
        self.assertEqual(variant.stock_quantity, 7)
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertEqual(Inventory.objects.get(variant=variant).stock_quantity, 7)

    def test_missing_product_is_not_found(self):
        with self.assertRaises(NotFound):
            services.record_change(999999, 'RESTOCK', 1)

    def test_missing_variant_is_not_found(self):
        with self.assertRaises(NotFound):
            services.record_change(self.product.id, 'RESTOCK', 1, variant_id=999999)

    def test_variant_of_other_product_is_rejected(self):
        other = make_product(title='Other', category=self.product.category)
        variant = ProductVariant.objects.create(product=other, variant_name='S', sku='V-S')

        with self.assertRaises(BadRequest) as ctx:
            services.record_change(self.product.id, 'RESTOCK', 1, variant_id=variant.id)

        self.assertIn('does not belong', ctx.exception.detail)
        self.assertFalse(InventoryLog.objects.exists())

    def test_invalid_change_type_and_zero_delta(self):
        with self.assertRaises(BadRequest):
            services.record_change(self.product.id, 'GIFT', 1)
        with self.assertRaises(BadRequest):
            services.record_change(self.product.id, 'MANUAL', 0)

    def test_log_entries_are_immutable(self):
        log = services.record_change(self.product.id, 'RESTOCK', 2)

        log.note = 'edited'
        with self.assertRaises(ValueError):
            log.save()
        with self.assertRaises(ValueError):
            log.delete()

    def test_logs_newest_first(self):
        services.record_change(self.product.id, 'RESTOCK', 2)
        services.record_change(self.product.id, 'SALE', -1)

        changes = list(services.get_logs(product_id=self.product.id).values_list('quantity_changed', flat=True))

        self.assertEqual(changes, [-1, 2])


class InventoryRecordTestCase(TestCase):
    """Derived properties and admin corrections."""

    def setUp(self):
        self.product = make_product()

    def test_low_stock_includes_threshold_equality(self):
        inventory = Inventory(product=self.product, stock_quantity=5, threshold=5)
        self.assertTrue(inventory.is_low_stock)
        inventory.stock_quantity = 6
        self.assertFalse(inventory.is_low_stock)

    def test_available_quantity_never_negative(self):
        inventory = Inventory(product=self.product, stock_quantity=3, reserved_quantity=8)
        self.assertEqual(inventory.available_quantity, 0)

    def test_low_stock_items_filter(self):
        Inventory.objects.create(product=self.product, stock_quantity=5, threshold=5)
        healthy = make_product(title='Healthy', category=self.product.category)
        Inventory.objects.create(product=healthy, stock_quantity=50, threshold=5)

        low = list(services.get_low_stock_items())

        self.assertEqual([inv.product_id for inv in low], [self.product.id])

    def test_update_creates_row_with_initial_entry(self):
        inventory = services.update_inventory(product_id=self.product.id, stock_quantity=20, threshold=3)

        self.assertEqual(inventory.stock_quantity, 20)
        self.assertEqual(inventory.threshold, 3)
        log = InventoryLog.objects.get(product=self.product)
        self.assertEqual((log.change_type, log.quantity_changed), ('RESTOCK', 20))

    def test_update_writes_compensating_entry(self):
        services.add_stock(self.product.id, 10)

        services.update_inventory(product_id=self.product.id, stock_quantity=4)

        latest = services.get_logs(product_id=self.product.id).first()
        self.assertEqual((latest.change_type, latest.quantity_changed), ('MANUAL', -6))
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 4)

    def test_update_rejects_negative_values(self):
        with self.assertRaises(BadRequest):
            services.update_inventory(product_id=self.product.id, stock_quantity=-1)

    def test_get_inventory_missing_row(self):
        with self.assertRaises(NotFound):
            services.get_inventory(product_id=self.product.id)

    def test_add_stock_sets_threshold(self):
        inventory = services.add_stock(self.product.id, 12, threshold=2)

        self.assertEqual(inventory.stock_quantity, 12)
        self.assertEqual(inventory.threshold, 2)

    def test_low_stock_alert_queued_after_commit(self):
        services.add_stock(self.product.id, 10)

        with patch('inventory.tasks.notify_low_stock.delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                services.record_change(self.product.id, 'SALE', -6)

        inventory = Inventory.objects.get(product=self.product)
        mock_delay.assert_called_once_with(inventory.id)

    def test_raising_threshold_on_restock_queues_alert(self):
        """
        Test: A restock that lifts the threshold above stock raises an alert.

        Given: 10 units with the default threshold of 5
        When: Adding 1 unit with threshold=20
        Then: The low stock alert is queued once the transaction commits
        """
        services.add_stock(self.product.id, 10)

        with patch('inventory.tasks.notify_low_stock.delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                inventory = services.add_stock(self.product.id, 1, threshold=20)

        self.assertEqual(inventory.stock_quantity, 11)
        mock_delay.assert_called_once_with(inventory.id)

    def test_no_alert_while_above_threshold(self):
        services.add_stock(self.product.id, 50)

        with patch('inventory.tasks.notify_low_stock.delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                services.record_change(self.product.id, 'SALE', -1)

        mock_delay.assert_not_called()


class ReservationTestCase(TestCase):

    def setUp(self):
        self.product = make_product()
        services.add_stock(self.product.id, 10)

    def test_reserve_and_release(self):
        inventory = services.reserve_stock(self.product.id, 4)
        self.assertEqual(inventory.reserved_quantity, 4)
        self.assertEqual(inventory.available_quantity, 6)

        inventory = services.release_reservation(self.product.id, 10)
        self.assertEqual(inventory.reserved_quantity, 0)

    def test_reserve_more_than_available(self):
        services.reserve_stock(self.product.id, 8)

        with self.assertRaises(BadRequest):
            services.reserve_stock(self.product.id, 3)

    def test_availability_status(self):
        self.assertEqual(services.get_availability(product_id=self.product.id)['stock_status'], 'IN_STOCK')

        services.reserve_stock(self.product.id, 6)
        availability = services.get_availability(product_id=self.product.id)
        self.assertEqual(availability['available_quantity'], 4)
        self.assertEqual(availability['stock_status'], 'LOW_STOCK')

    def test_batch_availability_skips_unknown_ids(self):
        result = services.get_batch_availability(product_ids=[self.product.id, 999999])

        self.assertEqual([r['product_id'] for r in result['products']], [self.product.id])
        self.assertEqual(result['variants'], [])


class CatalogTestCase(TestCase):

    def test_category_slugs_continue_per_name(self):
        slugs = [catalog.create_category('Shoes').slug for _ in range(3)]
        self.assertEqual(slugs, ['shoes', 'shoes-2', 'shoes-3'])

    def test_slugs_are_unique_per_entity_type(self):
        self.assertEqual(catalog.create_category('Acme').slug, 'acme')
        self.assertEqual(catalog.create_brand('Acme').slug, 'acme')

    def test_accented_name(self):
        self.assertEqual(catalog.create_brand('Café Deluxe!!').slug, 'cafe-deluxe')

    def test_explicit_slug_collision_is_conflict(self):
        catalog.create_category('Shoes')
        other = catalog.create_category('Boots')

        with self.assertRaises(Conflict):
            catalog.update_category(other.id, slug='shoes')

    def test_rename_assigns_new_slug(self):
        category = catalog.create_category('Audio')
        product = catalog.create_product('Speaker', 'SKU-1', Decimal('20.00'), category.id)
        catalog.create_product('Headphones', 'SKU-2', Decimal('30.00'), category.id)

        product = catalog.update_product(product.id, title='Headphones')

        self.assertEqual(product.slug, 'headphones-2')

    def test_duplicate_sku_is_conflict(self):
        category = catalog.create_category('Audio')
        catalog.create_product('Speaker', 'SKU-1', Decimal('20.00'), category.id)

        with self.assertRaises(Conflict):
            catalog.create_product('Speaker', 'SKU-1', Decimal('20.00'), category.id)

    def test_missing_category_is_not_found(self):
        with self.assertRaises(NotFound):
            catalog.create_product('Speaker', 'SKU-1', Decimal('20.00'), 999999)


class SeedCommandTestCase(TestCase):

    def test_seed_assigns_unique_slugs_in_tree_order(self):
        call_command('seed_data', products=5, stdout=StringIO())

        self.assertTrue(Category.objects.filter(slug='footwear').exists())
        self.assertTrue(Category.objects.filter(slug='footwear-2').exists())
        self.assertEqual(
            Category.objects.get(slug='footwear-2').parent.slug,
            'women'
        )
        self.assertTrue(Brand.objects.filter(slug='cafe-bonte').exists())
        self.assertEqual(Product.objects.count(), 5)
        self.assertTrue(InventoryLog.objects.filter(change_type='RESTOCK').exists())

    def test_flatten_orders_parents_first(self):
        from inventory.management.commands.seed_data import Command

        flat = Command.flatten_categories([
            {'name': 'Shoes', 'children': [{'name': 'Shoes'}]},
            {'name': 'Shoes'},
        ])

        self.assertEqual([n['slug'] for n in flat], ['shoes', 'shoes-3', 'shoes-2'])
        self.assertEqual(flat[2]['parent_slug'], 'shoes')


@override_settings(LOW_STOCK_ALERT_EMAILS=['ops@example.com'])
class LowStockTaskTestCase(TestCase):

    def setUp(self):
        self.product = make_product(title='Lamp')

    def test_alert_email_sent_when_low(self):
        inventory = Inventory.objects.create(product=self.product, stock_quantity=2, threshold=5)

        result = notify_low_stock.apply(args=[inventory.id]).get()

        self.assertEqual(result['status'], 'success')
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('Lamp', mail.outbox[0].subject)

    def test_skipped_when_restocked(self):
        inventory = Inventory.objects.create(product=self.product, stock_quantity=20, threshold=5)

        result = notify_low_stock.apply(args=[inventory.id]).get()

        self.assertEqual(result['status'], 'skipped')
        self.assertEqual(len(mail.outbox), 0)

    def test_missing_inventory(self):
        result = notify_low_stock.apply(args=[999999]).get()
        self.assertEqual(result['status'], 'error')


@override_settings(RATE_LIMIT_ENABLED=False)
class InventoryApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.product = make_product()

    def test_post_log_and_read_inventory(self):
        response = self.client.post('/api/inventory/logs/', {
            'product_id': self.product.id,
            'change_type': 'RESTOCK',
            'quantity_changed': 8,
        }, format='json')
        self.assertEqual(response.status_code, 201)

        response = self.client.get(f'/api/inventory/products/{self.product.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['stock_quantity'], 8)
        self.assertFalse(response.data['is_low_stock'])

    def test_unknown_product_is_404(self):
        response = self.client.get('/api/inventory/products/999999/')

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], 'Not Found')

    def test_patch_inventory(self):
        response = self.client.patch(
            f'/api/inventory/products/{self.product.id}/',
            {'stock_quantity': 3, 'threshold': 4},
            format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['is_low_stock'])

    def test_create_category_assigns_slug(self):
        first = self.client.post('/api/categories/', {'name': 'Shoes'}, format='json')
        second = self.client.post('/api/categories/', {'name': 'Shoes'}, format='json')

        self.assertEqual(first.status_code, 201)
        self.assertEqual((first.data['slug'], second.data['slug']), ('shoes', 'shoes-2'))
