"""
Shared fixtures for the tracking tests.
"""

from core.models import User, UserRole
from tracking.events import Broadcaster, build_payload, resolve_targets
from tracking.models import Order
from tracking.services.orders import OrderTrackingService
from tracking.services.tokens import TrackingTokenAuthority


class RecordingBroadcaster(Broadcaster):
    """Broadcaster that records events instead of touching a channel layer."""

    def __init__(self):
        super().__init__(channel_layer=object())
        self.sent = []

    def emit_sync(self, kind, order, **extra):
        targets = resolve_targets(kind, order, self.routes)
        self.sent.append((kind, build_payload(kind, order, **extra), targets))
        return targets

    def kinds(self):
        return [kind for kind, _, _ in self.sent]


def make_service(broadcaster=None, allow_unissued=True):
    broadcaster = broadcaster or RecordingBroadcaster()
    tokens = TrackingTokenAuthority(secret='test-secret', allow_unissued=allow_unissued)
    return OrderTrackingService(broadcaster, tokens)


def create_actors(suffix=''):
    """A vendor with one courier, a customer, an admin and an outside vendor/courier."""
    vendor = User.objects.create_user(
        email=f'vendor{suffix}@example.test', password='testpass123',
        role=UserRole.VENDOR, full_name='Boutique Test',
    )
    courier = User.objects.create_user(
        email=f'courier{suffix}@example.test', password='testpass123',
        role=UserRole.DELIVERY, full_name='Coursier Test', vendor=vendor,
    )
    customer = User.objects.create_user(
        email=f'customer{suffix}@example.test', password='testpass123',
        role=UserRole.CUSTOMER, full_name='Client Test',
    )
    admin = User.objects.create_user(
        email=f'admin{suffix}@example.test', password='testpass123',
        role=UserRole.ADMIN, full_name='Admin Test',
    )
    other_vendor = User.objects.create_user(
        email=f'other-vendor{suffix}@example.test', password='testpass123',
        role=UserRole.VENDOR, full_name='Autre Boutique',
    )
    other_courier = User.objects.create_user(
        email=f'other-courier{suffix}@example.test', password='testpass123',
        role=UserRole.DELIVERY, full_name='Autre Coursier', vendor=other_vendor,
    )
    return {
        'vendor': vendor,
        'courier': courier,
        'customer': customer,
        'admin': admin,
        'other_vendor': other_vendor,
        'other_courier': other_courier,
    }


def create_order(vendor, customer=None, **kwargs):
    defaults = {
        'pickup_latitude': 40.7128,
        'pickup_longitude': -74.0060,
        'pickup_address': 'Boutique, Manhattan',
        'delivery_latitude': 40.7580,
        'delivery_longitude': -73.9855,
        'delivery_address': 'Times Square',
    }
    defaults.update(kwargs)
    return Order.objects.create(vendor=vendor, customer=customer, **defaults)
