"""
TRACKING App - Orders & Courier Positions for TRACKLINE

Handles: Orders (status + live position), Location history
"""

import uuid
import random
import string
from django.db import models
from django.conf import settings
from django.utils import timezone


class OrderStatus(models.TextChoices):
    """Order status enumeration."""
    PENDING = 'pending', 'En attente'
    ACCEPTED = 'accepted', 'Acceptée'
    ASSIGNED = 'assigned', 'Coursier assigné'
    PICKED = 'picked', 'Colis récupéré'
    IN_TRANSIT = 'in_transit', 'En transit'
    DELIVERED = 'delivered', 'Livrée'
    CANCELLED = 'cancelled', 'Annulée'


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Statuses during which the assigned courier may publish positions
LOCATION_SHARING_STATUSES = frozenset({
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED,
    OrderStatus.IN_TRANSIT,
})


def generate_order_number(when=None) -> str:
    """ORD-YYYYMMDD-NNNN"""
    when = when or timezone.now()
    random_part = ''.join(random.choices(string.digits, k=4))
    return f"ORD-{when:%Y%m%d}-{random_part}"


class Order(models.Model):
    """
    A single delivery from a vendor to a customer.

    The order number is the public identifier (tracking links, public
    rooms); the UUID is the internal one (authenticated API and rooms).
    `current_*` always mirrors the last LocationPoint appended.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(
        max_length=32,
        unique=True,
        blank=True,
        verbose_name="Numéro de commande"
    )

    # Actors
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='vendor_orders',
        verbose_name="Vendeur"
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='customer_orders',
        verbose_name="Client"
    )
    courier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='courier_orders',
        verbose_name="Coursier"
    )

    # Status
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        verbose_name="Statut"
    )

    # Fixed points
    pickup_latitude = models.FloatField(verbose_name="Latitude retrait")
    pickup_longitude = models.FloatField(verbose_name="Longitude retrait")
    pickup_address = models.CharField(
        max_length=255,
        blank=True,
        verbose_name="Adresse retrait (optionnel)"
    )
    delivery_latitude = models.FloatField(verbose_name="Latitude livraison")
    delivery_longitude = models.FloatField(verbose_name="Longitude livraison")
    delivery_address = models.CharField(
        max_length=255,
        blank=True,
        verbose_name="Adresse livraison (optionnel)"
    )

    # Latest courier position
    current_latitude = models.FloatField(null=True, blank=True)
    current_longitude = models.FloatField(null=True, blank=True)
    current_address = models.CharField(max_length=255, blank=True)
    current_location_at = models.DateTimeField(null=True, blank=True)

    # Public tracking credential
    tracking_token = models.CharField(
        max_length=64,
        blank=True,
        verbose_name="Jeton de suivi"
    )
    tracking_token_issued_at = models.DateTimeField(null=True, blank=True)

    estimated_delivery_time = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    picked_at = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Commande"
        verbose_name_plural = "Commandes"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='tracking_or_status_5f3c1a_idx'),
            models.Index(fields=['courier', 'status'], name='tracking_or_courier_8b2d4e_idx'),
            models.Index(fields=['vendor', 'status'], name='tracking_or_vendor__c7e9f0_idx'),
        ]

    def __str__(self):
        return f"{self.order_number} - {self.status}"

    def save(self, *args, **kwargs):
        if not self.order_number:
            number = generate_order_number()
            while Order.objects.filter(order_number=number).exists():
                number = generate_order_number()
            self.order_number = number
        super().save(*args, **kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def pickup_location(self) -> dict:
        return {
            'latitude': self.pickup_latitude,
            'longitude': self.pickup_longitude,
            'address': self.pickup_address or None,
        }

    @property
    def delivery_location(self) -> dict:
        return {
            'latitude': self.delivery_latitude,
            'longitude': self.delivery_longitude,
            'address': self.delivery_address or None,
        }

    @property
    def current_location(self):
        if self.current_latitude is None or self.current_longitude is None:
            return None
        return {
            'latitude': self.current_latitude,
            'longitude': self.current_longitude,
            'address': self.current_address or None,
            'timestamp': self.current_location_at.isoformat() if self.current_location_at else None,
        }


class LocationPoint(models.Model):
    """Append-only courier position history for one order."""

    id = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='location_history',
        verbose_name="Commande"
    )
    courier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='location_points',
        verbose_name="Coursier"
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    address = models.CharField(max_length=255, blank=True)
    recorded_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = "Position coursier"
        verbose_name_plural = "Positions coursier"
        ordering = ['recorded_at', 'id']

    def __str__(self):
        return f"{self.order_id} @ ({self.latitude:.5f}, {self.longitude:.5f})"

    def as_dict(self) -> dict:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'address': self.address or None,
            'timestamp': self.recorded_at.isoformat(),
        }
