"""
TRACKLINE Security Middleware
=============================

Provides:
1. Rate Limiting per IP using Django cache (Redis), tightest on the
   public tracking gateway where the only credential is the link token
2. Security Headers (HSTS, X-Content-Type, etc.)
"""

import logging
import hashlib
from django.conf import settings
from django.core.cache import cache
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger('trackline.security')

# Shared by the HTTP gateway and the public WebSocket join
TRACKING_GATEWAY_BUCKET = '/api/track/'


def rate_limiting_enabled():
    return not settings.DEBUG or getattr(settings, 'RATE_LIMIT_IN_DEBUG', False)


def rate_limit_key(client_ip, bucket):
    bucket_hash = hashlib.md5(bucket.encode()).hexdigest()[:8]
    return f"rl:{client_ip}:{bucket_hash}"


def consume_rate_limit(client_ip, bucket, max_requests, window):
    """
    Count one hit for `client_ip` in `bucket`.

    Returns the hits left in the window, or None when the budget is
    already spent (the refused hit is not counted).
    """
    cache_key = rate_limit_key(client_ip, bucket)
    if cache.get(cache_key, 0) >= max_requests:
        return None

    try:
        new_count = cache.incr(cache_key)
    except ValueError:
        cache.set(cache_key, 1, window)
        new_count = 1
    return max(0, max_requests - new_count)


def tracking_gateway_limit():
    """(max_requests, window) of the public tracking gateway."""
    return getattr(settings, 'TRACKING_RATE_LIMIT', (60, 60))


def allow_tracking_lookup(client_ip):
    """One tracking-link lookup from outside HTTP (WebSocket join)."""
    if not rate_limiting_enabled():
        return True
    max_requests, window = tracking_gateway_limit()
    if consume_rate_limit(client_ip, TRACKING_GATEWAY_BUCKET, max_requests, window) is None:
        logger.warning(f"Rate limit exceeded: IP={client_ip} ws tracking join limit={max_requests}/{window}s")
        return False
    return True


class RateLimitMiddleware(MiddlewareMixin):
    """
    Rate limiting middleware using the default cache.

    Configurable rates per endpoint pattern:
    - Auth endpoints: 10 requests/minute per IP (brute-force protection)
    - Public tracking gateway: TRACKING_RATE_LIMIT per IP (token guessing)
    - Other API endpoints: 100 requests/minute per IP
    """

    # Rate limit configurations: (max_requests, time_window_seconds)
    RATE_LIMITS = {
        '/api/auth/token/': (10, 60),
        '/api/auth/token/refresh/': (20, 60),
    }

    TRACKING_PREFIX = TRACKING_GATEWAY_BUCKET

    # Default rate limit for all API endpoints
    DEFAULT_API_LIMIT = (100, 60)

    def _get_client_ip(self, request):
        """Extract real client IP, considering proxy headers."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR', '0.0.0.0')

    def _get_rate_limit(self, path):
        """Get (max_requests, window, bucket) for the given path."""
        if path.startswith(self.TRACKING_PREFIX):
            # One bucket for the whole gateway, whatever order number is tried
            max_requests, window = tracking_gateway_limit()
            return max_requests, window, self.TRACKING_PREFIX

        for pattern, (max_requests, window) in self.RATE_LIMITS.items():
            if path.startswith(pattern):
                return max_requests, window, pattern

        if path.startswith('/api/'):
            return (*self.DEFAULT_API_LIMIT, path)

        return None  # No rate limiting for non-API paths

    def process_request(self, request):
        """Check rate limits before processing the request."""
        if not rate_limiting_enabled():
            return None

        rate_limit = self._get_rate_limit(request.path)
        if rate_limit is None:
            return None

        max_requests, window, bucket = rate_limit
        client_ip = self._get_client_ip(request)

        remaining = consume_rate_limit(client_ip, bucket, max_requests, window)

        if remaining is None:
            logger.warning(
                f"Rate limit exceeded: IP={client_ip} path={request.path} "
                f"limit={max_requests} window={window}s"
            )
            cache_key = rate_limit_key(client_ip, bucket)
            ttl = cache.ttl(cache_key) if hasattr(cache, 'ttl') else window

            return JsonResponse({
                'success': False,
                'error': 'rate_limit_exceeded',
                'message': 'Trop de requêtes. Veuillez réessayer plus tard.',
                'retry_after': ttl,
            }, status=429, headers={
                'Retry-After': str(ttl),
                'X-RateLimit-Limit': str(max_requests),
                'X-RateLimit-Remaining': '0',
            })

        request._rate_limit_remaining = remaining
        request._rate_limit_limit = max_requests

        return None

    def process_response(self, request, response):
        """Add rate limit headers to response."""
        if hasattr(request, '_rate_limit_limit'):
            response['X-RateLimit-Limit'] = str(request._rate_limit_limit)
            response['X-RateLimit-Remaining'] = str(request._rate_limit_remaining)
        return response


class SecurityHeadersMiddleware(MiddlewareMixin):
    """
    Add security headers to all responses.

    Tracking pages are opened by anonymous customers from a shared link,
    so referrers are trimmed to the origin to keep the token out of
    third-party logs.
    """

    def process_response(self, request, response):
        response['X-Content-Type-Options'] = 'nosniff'

        if not request.path.startswith('/admin/'):
            response['X-Frame-Options'] = 'DENY'

        response['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # Couriers share their position from the browser
        response['Permissions-Policy'] = (
            'geolocation=(self), '
            'camera=(), '
            'microphone=(), '
            'payment=()'
        )

        if 'Server' in response:
            del response['Server']

        if not settings.DEBUG:
            response['Strict-Transport-Security'] = (
                'max-age=31536000; includeSubDomains; preload'
            )

        return response
