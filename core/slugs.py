"""
Slug generation shared by catalog creation paths and the seed command.

The uniqueness counter is always passed in explicitly: a batch seeds it
in memory, a single create seeds it from the slugs already persisted.
"""
import re
import unicodedata
from typing import Dict

_APOSTROPHES = re.compile(r"['’]")
_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def slugify_name(value: str) -> str:
    """
    Normalize a display name into a base slug.

    "Café Deluxe!!" -> "cafe-deluxe"
    """
    normalized = unicodedata.normalize('NFD', value or '')
    stripped = ''.join(ch for ch in normalized if not unicodedata.combining(ch))
    slug = _APOSTROPHES.sub('', stripped.lower().strip())
    slug = _NON_ALNUM.sub('-', slug)
    return slug.strip('-')


def assign_unique_slug(name: str, seen_counts: Dict[str, int]) -> str:
    """
    Assign a slug for `name`, suffixing `-{n+1}` when the base was already used n times.

    Both the base and the suffixed candidate are marked as seen, so the
    result depends only on the names processed before, in order.

    >>> seen = {}
    >>> [assign_unique_slug('Shoes', seen) for _ in range(3)]
    ['shoes', 'shoes-2', 'shoes-3']
    """
    base = slugify_name(name)
    if base not in seen_counts:
        seen_counts[base] = 1
        return base

    next_count = seen_counts[base] + 1
    candidate = f"{base}-{next_count}"
    # An explicit name may already have produced this candidate
    while candidate in seen_counts:
        next_count += 1
        candidate = f"{base}-{next_count}"

    seen_counts[base] = next_count
    seen_counts[candidate] = 1
    return candidate


def seen_counts_for(queryset, base: str, field: str = 'slug') -> Dict[str, int]:
    """
    Build a counter for `base` from slugs already stored in `queryset`.

    Matches `base` itself and `base-N`. When the base is taken its count
    becomes the highest suffix in use so the next assignment continues after it.
    """
    existing = queryset.filter(
        **{f'{field}__startswith': base}
    ).values_list(field, flat=True)

    suffix = re.compile(rf'^{re.escape(base)}-(\d+)$')
    seen: Dict[str, int] = {}
    highest = 0
    base_taken = False
    for slug in existing:
        if slug == base:
            base_taken = True
            highest = max(highest, 1)
            continue
        match = suffix.match(slug)
        if match:
            highest = max(highest, int(match.group(1)))
            seen[slug] = 1

    if base_taken:
        seen[base] = highest
    return seen
