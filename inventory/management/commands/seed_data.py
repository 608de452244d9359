"""
Management command to seed the database with sample catalog data.

Generates:
- A category tree (parents before children)
- Brands
- Products with opening stock written through the ledger

Slugs come from core.slugs.assign_unique_slug with one in-memory counter
per entity type, so repeated names inside a batch get -2, -3, ... and a
re-run upserts the same rows by slug.

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
import time
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import OperationalError, transaction

from core.slugs import assign_unique_slug
from inventory.models import Brand, Category, Inventory, InventoryLog, Product, ProductVariant
from inventory.services import add_stock

CATEGORY_TREE = [
    {
        'name': 'Electronics',
        'description': 'Smartphones, laptops, televisions, audio and smart devices.',
        'children': [
            {'name': 'Mobiles & Accessories', 'description': 'Smartphones, cases, chargers and power banks.'},
            {'name': 'Laptops & Computers', 'description': 'Laptops, desktops, monitors and peripherals.'},
            {'name': 'Audio', 'description': 'Headphones, speakers and soundbars.'},
            {'name': 'Smart Home', 'description': 'Smart lights, plugs and security cameras.'},
        ],
    },
    {
        'name': 'Fashion',
        'description': 'Men, women and kids clothing, footwear and accessories.',
        'children': [
            {
                'name': 'Men',
                'description': 'Apparel, footwear and accessories for men.',
                'children': [
                    {'name': 'Clothing', 'description': 'T-shirts, shirts, jeans and trousers.'},
                    {'name': 'Footwear', 'description': 'Casual, formal and sports shoes.'},
                    {'name': 'Accessories', 'description': 'Belts, wallets, caps and watches.'},
                ],
            },
            {
                'name': 'Women',
                'description': 'Apparel, footwear and accessories for women.',
                'children': [
                    {'name': 'Western Wear', 'description': 'Dresses, tops, jeans and skirts.'},
                    {'name': 'Footwear', 'description': 'Heels, flats, sneakers and sandals.'},
                    {'name': 'Accessories', 'description': 'Handbags, jewellery and scarves.'},
                ],
            },
        ],
    },
    {
        'name': 'Home & Kitchen',
        'description': 'Cookware, dining, decor and storage.',
        'children': [
            {'name': 'Kitchen & Dining', 'description': 'Cookware, dining sets and serving.'},
            {'name': 'Home Decor', 'description': 'Clocks, wall art, lighting and vases.'},
        ],
    },
    {
        'name': 'Sports & Outdoors',
        'description': 'Fitness, camping and outdoor gear.',
    },
]

BRANDS = [
    ('Acme', 'General goods'),
    ('Northwind', 'Outdoor and sports equipment'),
    ('Café Bonté', 'Kitchen and dining'),
    ('Volt', 'Consumer electronics'),
    ('Threadline', 'Apparel'),
    ("L'Atelier", 'Accessories'),
]

ADJECTIVES = ['Premium', 'Classic', 'Modern', 'Compact', 'Portable', 'Essential', 'Ultimate']
NOUNS = ['Headphones', 'Speaker', 'Backpack', 'Sneakers', 'Jacket', 'Mug', 'Lamp', 'Watch']
VARIANT_SIZES = ['S', 'M', 'L']


class Command(BaseCommand):
    help = 'Seed the database with sample categories, brands, products and stock'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=50,
            help='Number of products to create (default: 50)',
        )
        parser.add_argument(
            '--retries',
            type=int,
            default=3,
            help='Attempts per batch on transient database errors (default: 3)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')
        retries = options['retries']

        categories = self._with_retry(lambda: self._seed_categories(CATEGORY_TREE), retries)
        brands = self._with_retry(lambda: self._seed_brands(BRANDS), retries)
        self._with_retry(lambda: self._seed_products(options['products'], categories, brands), retries)

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _with_retry(self, fn, attempts=3, base_delay=0.2):
        """Run fn, retrying transient database errors with exponential backoff."""
        for attempt in range(attempts):
            try:
                return fn()
            except OperationalError as e:
                if attempt == attempts - 1:
                    raise
                delay = base_delay * (2 ** attempt)
                self.stdout.write(self.style.WARNING(
                    f'  Database error ({e}), retrying in {delay:.1f}s...'
                ))
                time.sleep(delay)

    def _clear_data(self):
        """Clear all existing data."""
        from orders.models import Order, OrderItem
        from promotions.models import Coupon, CouponUsage, Deal

        OrderItem.objects.all().delete()
        Order.objects.all().delete()
        CouponUsage.objects.all().delete()
        Coupon.objects.all().delete()
        Deal.objects.all().delete()
        Inventory.objects.all().delete()
        # Queryset deletes bypass InventoryLog.delete()
        InventoryLog.objects.all().delete()
        ProductVariant.objects.all().delete()
        Product.objects.all().delete()
        Brand.objects.all().delete()
        Category.objects.filter(parent__isnull=False).update(parent=None)
        Category.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    @staticmethod
    def flatten_categories(trees):
        """
        Flatten the category tree with unique slugs, parents first.

        Returns a list of dicts with name, slug, description, parent_slug and depth.
        """
        results = []
        seen = {}

        def walk(nodes, parent_slug, depth):
            for node in nodes:
                slug = assign_unique_slug(node.get('slug') or node['name'], seen)
                results.append({
                    'name': node['name'].strip(),
                    'slug': slug,
                    'description': (node.get('description') or '').strip(),
                    'parent_slug': parent_slug,
                    'depth': depth,
                })
                walk(node.get('children', []), slug, depth + 1)

        walk(trees, None, 0)
        return sorted(results, key=lambda item: item['depth'])

    @transaction.atomic
    def _seed_categories(self, trees):
        """Upsert categories by slug."""
        by_slug = {}
        for node in self.flatten_categories(trees):
            category, created = Category.objects.update_or_create(
                slug=node['slug'],
                defaults={
                    'name': node['name'],
                    'description': node['description'],
                    'parent': by_slug.get(node['parent_slug']),
                    'is_active': True,
                }
            )
            by_slug[node['slug']] = category
            if created:
                self.stdout.write(f"  Created category: {node['name']} ({node['slug']})")

        self.stdout.write(self.style.SUCCESS(f'Seeded {len(by_slug)} categories'))
        return list(by_slug.values())

    @transaction.atomic
    def _seed_brands(self, seeds):
        """Upsert brands by slug."""
        seen = {}
        brands = []
        for name, description in seeds:
            brand, _ = Brand.objects.update_or_create(
                slug=assign_unique_slug(name, seen),
                defaults={'name': name, 'description': description, 'is_active': True}
            )
            brands.append(brand)

        self.stdout.write(self.style.SUCCESS(f'Seeded {len(brands)} brands'))
        return brands

    @transaction.atomic
    def _seed_products(self, count, categories, brands):
        """Create products with opening stock; slugs continue from stored ones."""
        seen = {}
        for slug in Product.objects.values_list('slug', flat=True):
            seen[slug] = seen.get(slug, 0) + 1

        leaves = [c for c in categories if not c.children.exists()] or categories
        created = 0

        self.stdout.write(f'Creating {count} products...')
        for i in range(count):
            title = f"{random.choice(ADJECTIVES)} {random.choice(NOUNS)}"
            slug = assign_unique_slug(title, seen)
            product = Product.objects.create(
                title=title,
                slug=slug,
                sku=f"SKU-{slug.upper()}"[:64],
                description=f"{title} for everyday use.",
                price=Decimal(str(round(random.uniform(5, 500), 2))),
                category=random.choice(leaves),
                brand=random.choice(brands),
            )
            add_stock(product.id, random.randint(1, 200), note='Initial stock setup')

            if random.random() < 0.2:
                for size in VARIANT_SIZES:
                    variant = ProductVariant.objects.create(
                        product=product,
                        variant_name=size,
                        sku=f"{product.sku}-{size}"[:64],
                    )
                    add_stock(product.id, random.randint(1, 50), variant_id=variant.id)

            created += 1
            if created % 25 == 0:
                self.stdout.write(f'  Created {created} products...')

        self.stdout.write(self.style.SUCCESS(f'Created {created} products'))
