"""
TRACKLINE Core Tests
====================

Tests for:
1. Custom User Model (creation, roles, vendor roster)
2. Security Middleware (rate limiting, headers)
3. Health endpoints
4. JWT authentication for WebSocket scopes
"""

import uuid

from asgiref.sync import async_to_sync
from django.contrib.auth.models import AnonymousUser
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.test import RequestFactory, TestCase, TransactionTestCase, override_settings
from rest_framework_simplejwt.tokens import AccessToken

from core.exceptions import api_exception_handler
from core.middleware import RateLimitMiddleware, allow_tracking_lookup
from core.models import User, UserRole
from core.ws_auth import get_user_for_token
from tracking.exceptions import InvalidToken, NotAuthorized


class TestUserModel(TestCase):
    """Tests for the custom User model."""

    def setUp(self):
        """Create test users for each role."""
        self.admin = User.objects.create_user(
            email='admin@example.test',
            password='testpass123',
            role=UserRole.ADMIN,
            full_name='Admin Test',
        )
        self.vendor = User.objects.create_user(
            email='vendor@example.test',
            password='testpass123',
            role=UserRole.VENDOR,
            full_name='Vendor Test',
        )
        self.courier = User.objects.create_user(
            email='courier@example.test',
            password='testpass123',
            role=UserRole.DELIVERY,
            full_name='Courier Test',
            vendor=self.vendor,
        )
        self.customer = User.objects.create_user(
            email='customer@example.test',
            password='testpass123',
            full_name='Customer Test',
        )

    # ==========================================
    # User Creation Tests
    # ==========================================

    def test_user_creation_with_email(self):
        """User should be created with email as identifier."""
        self.assertEqual(self.courier.email, 'courier@example.test')
        self.assertTrue(self.courier.check_password('testpass123'))

    def test_user_uuid_primary_key(self):
        """User should have UUID as primary key."""
        self.assertIsInstance(self.courier.id, uuid.UUID)

    def test_default_role_is_customer(self):
        """A user created without a role is a customer."""
        self.assertEqual(self.customer.role, UserRole.CUSTOMER)
        self.assertTrue(self.customer.is_customer)

    def test_role_properties(self):
        """Each role property is True for its own role only."""
        self.assertTrue(self.vendor.is_vendor)
        self.assertFalse(self.courier.is_vendor)
        self.assertTrue(self.courier.is_courier)
        self.assertFalse(self.customer.is_courier)
        self.assertTrue(self.admin.is_platform_admin)
        self.assertFalse(self.vendor.is_platform_admin)

    def test_superuser_creation(self):
        """Superuser should have is_staff, is_superuser and the admin role."""
        superuser = User.objects.create_superuser(
            email='root@example.test',
            password='superpass123',
        )
        self.assertTrue(superuser.is_staff)
        self.assertTrue(superuser.is_superuser)
        self.assertTrue(superuser.is_platform_admin)

    def test_email_required(self):
        """create_user without an email is refused."""
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='x')

    def test_duplicate_email_rejected(self):
        """Should not allow duplicate emails."""
        with self.assertRaises(IntegrityError):
            User.objects.create_user(
                email='courier@example.test',  # Same as courier
                password='testpass123',
            )

    # ==========================================
    # Vendor Roster Tests
    # ==========================================

    def test_courier_works_for_its_vendor(self):
        """A courier belongs to the vendor it is registered under."""
        other_vendor = User.objects.create_user(
            email='other@example.test', role=UserRole.VENDOR,
        )
        self.assertTrue(self.courier.works_for(self.vendor))
        self.assertFalse(self.courier.works_for(other_vendor))
        self.assertFalse(self.courier.works_for(None))
        self.assertIn(self.courier, self.vendor.couriers.all())

    def test_only_couriers_have_a_vendor(self):
        """clean() rejects a vendor reference on non-courier users."""
        self.customer.vendor = self.vendor
        with self.assertRaises(ValidationError):
            self.customer.clean()

    def test_user_str_representation(self):
        """__str__ shows name and role."""
        self.assertEqual(str(self.vendor), 'Vendor Test (VENDOR)')


class TestSecurityMiddleware(TestCase):
    """Tests for security middleware behavior."""

    def setUp(self):
        cache.clear()

    def test_security_headers_present(self):
        """Response should contain security headers."""
        response = self.client.get('/health/')
        self.assertEqual(response['X-Content-Type-Options'], 'nosniff')
        self.assertEqual(response['X-Frame-Options'], 'DENY')
        self.assertEqual(response['Referrer-Policy'], 'strict-origin-when-cross-origin')
        self.assertIn('geolocation=(self)', response['Permissions-Policy'])
        self.assertIn('Strict-Transport-Security', response)

    def test_rate_limit_headers_on_api(self):
        """API responses carry the remaining budget."""
        response = self.client.get('/api/')
        self.assertEqual(response['X-RateLimit-Limit'], '100')
        self.assertEqual(response['X-RateLimit-Remaining'], '99')

    def test_no_rate_limit_outside_api(self):
        """Non-API paths are not rate limited."""
        response = self.client.get('/health/')
        self.assertNotIn('X-RateLimit-Limit', response)

    def test_auth_endpoint_rate_limited(self):
        """Token endpoint allows 10 attempts per minute per IP."""
        for _ in range(10):
            self.client.post('/api/auth/token/', {'email': 'x@example.test', 'password': 'bad'})
        response = self.client.post('/api/auth/token/', {'email': 'x@example.test', 'password': 'bad'})
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()['error'], 'rate_limit_exceeded')
        self.assertEqual(response['X-RateLimit-Remaining'], '0')

    @override_settings(TRACKING_RATE_LIMIT=(5, 30))
    def test_tracking_gateway_uses_one_bucket(self):
        """Every order number tried shares the gateway budget."""
        middleware = RateLimitMiddleware(lambda request: None)
        first = middleware._get_rate_limit('/api/track/ORD-1/abc/')
        second = middleware._get_rate_limit('/api/track/ORD-2/def/eta/')
        self.assertEqual(first, (5, 30, '/api/track/'))
        self.assertEqual(first, second)

    @override_settings(TRACKING_RATE_LIMIT=(2, 60))
    def test_socket_joins_spend_the_http_gateway_budget(self):
        """WebSocket joins and HTTP lookups from one IP draw on the same bucket."""
        self.assertTrue(allow_tracking_lookup('127.0.0.1'))
        self.assertTrue(allow_tracking_lookup('127.0.0.1'))
        self.assertFalse(allow_tracking_lookup('127.0.0.1'))
        self.assertTrue(allow_tracking_lookup('198.51.100.4'))

        response = self.client.get('/api/track/ORD-20260101-0001/abc/')
        self.assertEqual(response.status_code, 429)

    def test_forwarded_ip_used(self):
        """The first X-Forwarded-For hop is the client."""
        request = RequestFactory().get('/api/', HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1')
        middleware = RateLimitMiddleware(lambda request: None)
        self.assertEqual(middleware._get_client_ip(request), '203.0.113.7')

    @override_settings(DEBUG=True, RATE_LIMIT_IN_DEBUG=False)
    def test_rate_limit_skipped_in_debug(self):
        """DEBUG disables rate limiting unless RATE_LIMIT_IN_DEBUG is set."""
        middleware = RateLimitMiddleware(lambda request: None)
        request = RequestFactory().get('/api/auth/token/')
        self.assertIsNone(middleware.process_request(request))
        self.assertFalse(hasattr(request, '_rate_limit_limit'))


class TestHealthEndpoints(TestCase):

    def test_health_endpoint_accessible(self):
        """Health check should be accessible without auth."""
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['status'], 'ok')
        self.assertEqual(data['service'], 'trackline')

    def test_readiness_checks_all_dependencies(self):
        """Readiness reports database, cache and channel layer."""
        response = self.client.get('/health/ready/')
        self.assertEqual(response.status_code, 200)
        checks = response.json()['checks']
        self.assertEqual(set(checks), {'database', 'cache', 'channel_layer'})
        self.assertEqual(checks['channel_layer']['backend'], 'InMemoryChannelLayer')

    def test_api_root_lists_endpoints(self):
        response = self.client.get('/api/')
        self.assertEqual(response.status_code, 200)


class TestExceptionHandler(TestCase):

    def test_tracking_errors_rendered(self):
        """Domain errors keep their status and machine code."""
        response = api_exception_handler(NotAuthorized(), {})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['error'], 'not_authorized')
        self.assertFalse(response.data['success'])

        response = api_exception_handler(InvalidToken(), {})
        self.assertEqual(response.status_code, 404)

    def test_other_errors_fall_through(self):
        """Unknown exceptions are left to DRF (None means re-raise)."""
        self.assertIsNone(api_exception_handler(RuntimeError('boom'), {}))


class TestWebSocketJWT(TransactionTestCase):

    def setUp(self):
        self.user = User.objects.create_user(email='ws@example.test', role=UserRole.VENDOR)

    def test_valid_token_resolves_user(self):
        token = str(AccessToken.for_user(self.user))
        self.assertEqual(async_to_sync(get_user_for_token)(token), self.user)

    def test_invalid_token_is_anonymous(self):
        self.assertIsInstance(async_to_sync(get_user_for_token)('not-a-jwt'), AnonymousUser)

    def test_inactive_user_is_anonymous(self):
        token = str(AccessToken.for_user(self.user))
        self.user.is_active = False
        self.user.save()
        self.assertIsInstance(async_to_sync(get_user_for_token)(token), AnonymousUser)
