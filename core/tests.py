"""
Tests for shared building blocks.

Test Cases:
1. Slug normalization and per-batch uniqueness
2. Counter seeding from persisted slugs
3. Service error decorator and API error rendering
4. Rate limit decorator (limit exceeded, Redis unavailable)
"""
from unittest.mock import MagicMock, patch

import redis
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from core.exceptions import (
    BadRequest,
    Conflict,
    InternalError,
    NotFound,
    api_exception_handler,
    service_errors,
)
from core.rate_limiting import rate_limit
from core.slugs import assign_unique_slug, seen_counts_for, slugify_name
from inventory.models import Category


class SlugifyTestCase(SimpleTestCase):

    def test_accents_and_punctuation(self):
        self.assertEqual(slugify_name('Café Deluxe!!'), 'cafe-deluxe')

    def test_apostrophes_are_dropped(self):
        self.assertEqual(slugify_name("Men's Footwear"), 'mens-footwear')
        self.assertEqual(slugify_name('L’Atelier'), 'latelier')

    def test_edges_and_runs_collapse(self):
        self.assertEqual(slugify_name('  --Home  &  Kitchen--  '), 'home-kitchen')

    def test_empty_input(self):
        self.assertEqual(slugify_name(''), '')
        self.assertEqual(slugify_name('!!!'), '')


class AssignUniqueSlugTestCase(SimpleTestCase):

    def test_repeated_names_get_suffixes(self):
        """
        Given: an empty counter
        When: assigning "Shoes" three times
        Then: shoes, shoes-2, shoes-3
        """
        seen = {}
        slugs = [assign_unique_slug('Shoes', seen) for _ in range(3)]
        self.assertEqual(slugs, ['shoes', 'shoes-2', 'shoes-3'])

    def test_names_normalizing_to_same_base_collide(self):
        seen = {}
        self.assertEqual(assign_unique_slug('Footwear', seen), 'footwear')
        self.assertEqual(assign_unique_slug('FOOTWEAR!', seen), 'footwear-2')

    def test_explicit_suffixed_name_is_skipped(self):
        """A name that already produced base-2 pushes the next collision to base-3."""
        seen = {}
        assign_unique_slug('Shoes', seen)
        assign_unique_slug('Shoes 2', seen)
        self.assertEqual(assign_unique_slug('Shoes', seen), 'shoes-3')

    def test_counters_are_independent(self):
        categories, brands = {}, {}
        self.assertEqual(assign_unique_slug('Acme', categories), 'acme')
        self.assertEqual(assign_unique_slug('Acme', brands), 'acme')


class SeenCountsForTestCase(TestCase):

    def test_continues_after_highest_stored_suffix(self):
        Category.objects.create(name='Shoes', slug='shoes')
        Category.objects.create(name='Shoes', slug='shoes-2')
        Category.objects.create(name='Shoes', slug='shoes-5')
        Category.objects.create(name='Shoestrings', slug='shoestrings')

        seen = seen_counts_for(Category.objects.all(), 'shoes')

        self.assertEqual(assign_unique_slug('Shoes', seen), 'shoes-6')

    def test_free_base_is_used_first(self):
        Category.objects.create(name='Shoes', slug='shoes-2')

        seen = seen_counts_for(Category.objects.all(), 'shoes')

        self.assertEqual(assign_unique_slug('Shoes', seen), 'shoes')


class ServiceErrorsTestCase(SimpleTestCase):

    def test_service_errors_propagate_unchanged(self):
        @service_errors('Failed')
        def fails():
            raise Conflict('Duplicate')

        with self.assertRaises(Conflict) as ctx:
            fails()
        self.assertEqual(ctx.exception.detail, 'Duplicate')

    def test_unexpected_errors_become_internal(self):
        @service_errors('Failed to do the thing')
        def fails():
            raise RuntimeError('connection reset by peer')

        with self.assertLogs('core.exceptions', level='ERROR'):
            with self.assertRaises(InternalError) as ctx:
                fails()
        self.assertEqual(ctx.exception.detail, 'Failed to do the thing')
        self.assertEqual(ctx.exception.status_code, 500)

    def test_handler_renders_status_and_body(self):
        response = api_exception_handler(NotFound('Coupon not found'), {})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data, {'error': 'Not Found', 'detail': 'Coupon not found'})

        response = api_exception_handler(BadRequest('Bad'), {})
        self.assertEqual(response.status_code, 400)


class LimitedView(APIView):

    @rate_limit(max_requests=2, window_seconds=60, scope='test')
    def get(self, request):
        return Response({'ok': True})


@override_settings(RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(SimpleTestCase):

    def setUp(self):
        self.factory = APIRequestFactory()
        self.view = LimitedView.as_view()

    @patch('core.rate_limiting.get_redis_client')
    def test_requests_over_limit_get_429(self, mock_client_factory):
        client = MagicMock()
        client.incr.return_value = 3
        client.ttl.return_value = 42
        mock_client_factory.return_value = client

        response = self.view(self.factory.get('/limited/'))

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response['Retry-After'], '42')
        client.incr.assert_called_once_with('rate_limit:test:127.0.0.1')

    @patch('core.rate_limiting.get_redis_client')
    def test_within_limit_sets_headers(self, mock_client_factory):
        client = MagicMock()
        client.incr.return_value = 1
        client.ttl.return_value = 60
        mock_client_factory.return_value = client

        response = self.view(self.factory.get('/limited/'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['X-RateLimit-Remaining'], '1')
        client.expire.assert_called_once()

    @patch('core.rate_limiting.get_redis_client')
    def test_redis_errors_let_requests_through(self, mock_client_factory):
        client = MagicMock()
        client.incr.side_effect = redis.ConnectionError('down')
        mock_client_factory.return_value = client

        response = self.view(self.factory.get('/limited/'))

        self.assertEqual(response.status_code, 200)

    @patch('core.rate_limiting.get_redis_client', return_value=None)
    def test_no_redis_means_no_limit(self, _):
        for _ in range(5):
            self.assertEqual(self.view(self.factory.get('/limited/')).status_code, 200)
