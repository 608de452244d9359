"""
Catalog Service Layer - Category, Brand, Product and Variant upserts.

Slugs are assigned with core.slugs against the slugs already stored for
the same model, so the live service and the seed command produce the
same results for the same sequence of names.
"""
import logging
from decimal import Decimal
from typing import Optional

from django.db import IntegrityError, transaction

from core.exceptions import BadRequest, Conflict, NotFound, service_errors
from core.slugs import assign_unique_slug, seen_counts_for, slugify_name
from .models import Brand, Category, Product, ProductVariant

logger = logging.getLogger(__name__)


def unique_slug_for(model, name: str, exclude_id: Optional[int] = None) -> str:
    """Next free slug for `name` among persisted rows of `model`."""
    base = slugify_name(name)
    if not base:
        raise BadRequest(f"Cannot derive a slug from '{name}'")

    queryset = model.objects.all()
    if exclude_id is not None:
        queryset = queryset.exclude(id=exclude_id)
    return assign_unique_slug(name, seen_counts_for(queryset, base))


def _explicit_slug(model, slug: str, exclude_id: Optional[int] = None) -> str:
    normalized = slugify_name(slug)
    if not normalized:
        raise BadRequest(f"Invalid slug '{slug}'")
    queryset = model.objects.filter(slug=normalized)
    if exclude_id is not None:
        queryset = queryset.exclude(id=exclude_id)
    if queryset.exists():
        raise Conflict(f"{model._meta.verbose_name} with slug '{normalized}' already exists")
    return normalized


def _save_unique(instance, label: str):
    """Save inside a savepoint, turning unique violations into Conflict."""
    try:
        with transaction.atomic():
            instance.save()
    except IntegrityError as e:
        logger.warning(f"Unique constraint hit while saving {label}: {e}")
        raise Conflict(f"{label} conflicts with an existing record")
    return instance


def _require_name(value: Optional[str], field: str = 'name') -> str:
    value = (value or '').strip()
    if not value:
        raise BadRequest(f"{field} is required")
    return value


# =============================================================================
# Categories
# =============================================================================

@service_errors('Failed to create category')
def create_category(
    name: str,
    description: str = '',
    parent_id: Optional[int] = None,
    slug: Optional[str] = None
) -> Category:
    name = _require_name(name)
    parent = None
    if parent_id is not None:
        try:
            parent = Category.objects.get(id=parent_id)
        except Category.DoesNotExist:
            raise NotFound(f"Category with ID {parent_id} not found")

    category = Category(
        name=name,
        description=description or '',
        parent=parent,
        slug=_explicit_slug(Category, slug) if slug else unique_slug_for(Category, name),
    )
    _save_unique(category, f"Category '{category.slug}'")
    logger.info(f"Created category {category.slug}")
    return category


@service_errors('Failed to update category')
def update_category(category_id: int, **fields) -> Category:
    try:
        category = Category.objects.get(id=category_id)
    except Category.DoesNotExist:
        raise NotFound(f"Category with ID {category_id} not found")

    if fields.get('slug'):
        category.slug = _explicit_slug(Category, fields['slug'], exclude_id=category.id)
    if 'name' in fields:
        category.name = _require_name(fields['name'])
        if not fields.get('slug'):
            category.slug = unique_slug_for(Category, category.name, exclude_id=category.id)
    if 'description' in fields:
        category.description = fields['description'] or ''
    if 'parent_id' in fields:
        parent_id = fields['parent_id']
        if parent_id == category.id:
            raise BadRequest("A category cannot be its own parent")
        category.parent = Category.objects.filter(id=parent_id).first() if parent_id else None
        if parent_id and category.parent is None:
            raise NotFound(f"Category with ID {parent_id} not found")
    if 'is_active' in fields:
        category.is_active = bool(fields['is_active'])

    return _save_unique(category, f"Category '{category.slug}'")


# =============================================================================
# Brands
# =============================================================================

@service_errors('Failed to create brand')
def create_brand(name: str, description: str = '', slug: Optional[str] = None) -> Brand:
    name = _require_name(name)
    brand = Brand(
        name=name,
        description=description or '',
        slug=_explicit_slug(Brand, slug) if slug else unique_slug_for(Brand, name),
    )
    _save_unique(brand, f"Brand '{brand.slug}'")
    logger.info(f"Created brand {brand.slug}")
    return brand


@service_errors('Failed to update brand')
def update_brand(brand_id: int, **fields) -> Brand:
    try:
        brand = Brand.objects.get(id=brand_id)
    except Brand.DoesNotExist:
        raise NotFound(f"Brand with ID {brand_id} not found")

    if fields.get('slug'):
        brand.slug = _explicit_slug(Brand, fields['slug'], exclude_id=brand.id)
    if 'name' in fields:
        brand.name = _require_name(fields['name'])
        if not fields.get('slug'):
            brand.slug = unique_slug_for(Brand, brand.name, exclude_id=brand.id)
    if 'description' in fields:
        brand.description = fields['description'] or ''
    if 'is_active' in fields:
        brand.is_active = bool(fields['is_active'])

    return _save_unique(brand, f"Brand '{brand.slug}'")


# =============================================================================
# Products and variants
# =============================================================================

@service_errors('Failed to create product')
def create_product(
    title: str,
    sku: str,
    price: Decimal,
    category_id: int,
    brand_id: Optional[int] = None,
    description: str = ''
) -> Product:
    title = _require_name(title, 'title')
    sku = _require_name(sku, 'sku')
    if Decimal(price) < 0:
        raise BadRequest("price cannot be negative")

    try:
        category = Category.objects.get(id=category_id)
    except Category.DoesNotExist:
        raise NotFound(f"Category with ID {category_id} not found")

    brand = None
    if brand_id is not None:
        try:
            brand = Brand.objects.get(id=brand_id)
        except Brand.DoesNotExist:
            raise NotFound(f"Brand with ID {brand_id} not found")

    if Product.objects.filter(sku=sku).exists():
        raise Conflict(f"Product with SKU '{sku}' already exists")

    product = Product(
        title=title,
        sku=sku,
        price=Decimal(price),
        category=category,
        brand=brand,
        description=description or '',
        slug=unique_slug_for(Product, title),
    )
    _save_unique(product, f"Product '{product.slug}'")
    logger.info(f"Created product {product.slug} ({product.sku})")
    return product


@service_errors('Failed to update product')
def update_product(product_id: int, **fields) -> Product:
    try:
        product = Product.objects.get(id=product_id)
    except Product.DoesNotExist:
        raise NotFound(f"Product with ID {product_id} not found")

    if 'title' in fields:
        product.title = _require_name(fields['title'], 'title')
        product.slug = unique_slug_for(Product, product.title, exclude_id=product.id)
    if 'price' in fields:
        if Decimal(fields['price']) < 0:
            raise BadRequest("price cannot be negative")
        product.price = Decimal(fields['price'])
    if 'description' in fields:
        product.description = fields['description'] or ''
    if 'category_id' in fields:
        product.category = Category.objects.filter(id=fields['category_id']).first()
        if product.category is None:
            raise NotFound(f"Category with ID {fields['category_id']} not found")
    if 'is_active' in fields:
        product.is_active = bool(fields['is_active'])

    return _save_unique(product, f"Product '{product.slug}'")


@service_errors('Failed to create variant')
def create_variant(
    product_id: int,
    variant_name: str,
    sku: str,
    price: Optional[Decimal] = None
) -> ProductVariant:
    variant_name = _require_name(variant_name, 'variant_name')
    sku = _require_name(sku, 'sku')
    try:
        product = Product.objects.get(id=product_id)
    except Product.DoesNotExist:
        raise NotFound(f"Product with ID {product_id} not found")

    if ProductVariant.objects.filter(sku=sku).exists():
        raise Conflict(f"Variant with SKU '{sku}' already exists")

    variant = ProductVariant(
        product=product,
        variant_name=variant_name,
        sku=sku,
        price=Decimal(price) if price is not None else None,
    )
    return _save_unique(variant, f"Variant '{sku}'")
