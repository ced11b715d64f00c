"""
TRACKLINE Monitoring & Health Check Endpoints
===============================================

Provides:
1. /health/ - Basic liveness check (for load balancers/Docker)
2. /health/ready/ - Readiness check (DB, cache, channel layer)
"""

import time
import uuid
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.cache import cache
from django.db import connection, DatabaseError
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET

logger = logging.getLogger('trackline.monitoring')


def _elapsed_ms(start):
    return round((time.time() - start) * 1000, 2)


def _check_database():
    start = time.time()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()
    return {
        'status': 'healthy',
        'response_time_ms': _elapsed_ms(start),
        'engine': connection.vendor,
    }


def _check_cache():
    start = time.time()
    cache_key = '_healthcheck_ping'
    cache.set(cache_key, 'pong', 10)
    if cache.get(cache_key) != 'pong':
        raise RuntimeError("Cache read/write mismatch")
    return {
        'status': 'healthy',
        'response_time_ms': _elapsed_ms(start),
    }


def _check_channel_layer():
    """Round-trip one message through the channel layer."""
    layer = get_channel_layer()
    if layer is None:
        raise RuntimeError("No channel layer configured")

    start = time.time()
    channel = f"healthcheck.{uuid.uuid4().hex}"
    async_to_sync(layer.send)(channel, {'type': 'health.ping'})
    message = async_to_sync(layer.receive)(channel)
    if message.get('type') != 'health.ping':
        raise RuntimeError("Channel layer round-trip mismatch")
    return {
        'status': 'healthy',
        'response_time_ms': _elapsed_ms(start),
        'backend': type(layer).__name__,
    }


READINESS_CHECKS = (
    ('database', _check_database, (DatabaseError,)),
    ('cache', _check_cache, (RuntimeError, ConnectionError, OSError)),
    ('channel_layer', _check_channel_layer, (RuntimeError, ConnectionError, OSError)),
)


@csrf_exempt
@require_GET
def health_check(request):
    """
    Basic liveness probe.
    Returns 200 if the Django process is alive.
    """
    return JsonResponse({
        'status': 'ok',
        'service': 'trackline',
        'timestamp': timezone.now().isoformat(),
    })


@csrf_exempt
@require_GET
def readiness_check(request):
    """
    Readiness probe - checks all critical dependencies.
    Returns 200 only if ALL dependencies are healthy, 503 otherwise.
    """
    checks = {}
    all_healthy = True

    for name, check, failures in READINESS_CHECKS:
        try:
            checks[name] = check()
        except failures as e:
            checks[name] = {
                'status': 'unhealthy',
                'error': str(e),
            }
            all_healthy = False
            logger.error(f"Health check - {name} unhealthy: {e}")

    return JsonResponse({
        'status': 'healthy' if all_healthy else 'unhealthy',
        'service': 'trackline',
        'timestamp': timezone.now().isoformat(),
        'checks': checks,
    }, status=200 if all_healthy else 503)
