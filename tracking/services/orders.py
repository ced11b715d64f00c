"""
TRACKING App - Order Tracking Service for TRACKLINE

The write boundary for status and location changes, and the read side
used by the REST views, the consumers and the tracking gateway.

Every write follows the same order: authorize, persist atomically,
then broadcast. Nothing is broadcast for a rejected or failed write.
"""

import logging
from typing import List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from core.models import User
from tracking import events
from tracking.exceptions import (
    ConcurrentUpdate,
    InvalidTransition,
    NotAuthorized,
    NotFound,
)
from tracking.models import (
    LOCATION_SHARING_STATUSES,
    LocationPoint,
    Order,
    OrderStatus,
)
from tracking.services import state_machine
from tracking.services.eta import estimate
from tracking.utils import validate_coordinates

logger = logging.getLogger(__name__)


# Compare-and-set retries before giving up with ConcurrentUpdate
MAX_TRANSITION_ATTEMPTS = 3

TIMELINE_STEPS = (
    ('created', 'created_at', 'Commande créée'),
    ('assigned', 'assigned_at', 'Coursier assigné'),
    ('picked', 'picked_at', 'Colis récupéré'),
    ('in_transit', 'in_transit_at', 'En route'),
    ('delivered', 'delivered_at', 'Livrée'),
    ('cancelled', 'cancelled_at', 'Annulée'),
)


class OrderTrackingService:
    """
    Status transitions, location writes and tracking reads for orders.

    Built once in TrackingConfig.ready() with the broadcaster and token
    authority it publishes and verifies with.
    """

    def __init__(self, broadcaster, tokens):
        self.broadcaster = broadcaster
        self.tokens = tokens

    # ============================================
    # Lookups & access
    # ============================================

    def get_order(self, order_id) -> Order:
        try:
            return Order.objects.get(pk=order_id)
        except (Order.DoesNotExist, ValidationError, ValueError):
            raise NotFound()

    @staticmethod
    def is_party(order: Order, user) -> bool:
        """Vendor owner, assigned courier, the order's customer, or admin."""
        if user is None or not user.is_authenticated:
            return False
        if user.is_platform_admin:
            return True
        return user.pk in (order.vendor_id, order.courier_id, order.customer_id)

    def get_order_for(self, order_id, user) -> Order:
        """Authenticated read: NotFound for unknown ids, NotAuthorized for non-parties."""
        order = self.get_order(order_id)
        if not self.is_party(order, user):
            logger.warning(f"[ORDERS] Read refused on {order.order_number} for user {getattr(user, 'pk', None)}")
            raise NotAuthorized()
        return order

    # ============================================
    # Status transitions
    # ============================================

    def transition(self, order: Order, to_state: str, user=None,
                   expected_status: Optional[str] = None, courier: Optional[User] = None,
                   reason: str = '') -> Order:
        """
        Apply `to_state` with an atomic compare-and-set on the status.

        `order.status` (or `expected_status`, when the caller states it)
        is the prior state the write is conditioned on. If another writer
        got there first, the order is reloaded and the request evaluated
        again against the new state.

        Raises:
            NotAuthorized, InvalidTransition, ConcurrentUpdate
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            observed = order.status
            if expected_status is not None and expected_status != observed:
                raise ConcurrentUpdate()

            state_machine.validate(order, user, to_state, observed)

            now = timezone.now()
            fields = {
                'status': to_state,
                state_machine.TIMESTAMP_FIELDS[to_state]: now,
                'updated_at': now,
            }
            if to_state == OrderStatus.ASSIGNED:
                self._check_courier(order, courier)
                fields['courier'] = courier

            updated = Order.objects.filter(pk=order.pk, status=observed).update(**fields)
            if updated:
                order.refresh_from_db()
                break

            logger.info(
                f"[ORDERS] {order.order_number}: lost race {observed} -> {to_state}, re-evaluating"
            )
            order = self.get_order(order.pk)
        else:
            raise ConcurrentUpdate()

        logger.info(
            f"[ORDERS] {order.order_number}: {observed} -> {to_state} "
            f"by {state_machine.actor_role(user)} {getattr(user, 'pk', '')}".rstrip()
        )
        self._publish_transition(order, to_state, reason)
        return order

    def _check_courier(self, order: Order, courier: Optional[User]) -> None:
        if courier is None:
            raise InvalidTransition("Un coursier est requis pour l'assignation.")
        if not courier.is_active or not courier.works_for(order.vendor):
            raise NotAuthorized("Ce coursier n'est pas rattaché à votre boutique.")

    def _publish_transition(self, order: Order, to_state: str, reason: str = '') -> None:
        extra = {'reason': reason} if reason else {}
        self.broadcaster.emit_sync(events.STATUS_UPDATE, order, **extra)

        if to_state == OrderStatus.ASSIGNED:
            self.broadcaster.emit_sync(
                events.ORDER_ASSIGNED, order,
                pickup_address=order.pickup_address,
                delivery_address=order.delivery_address,
            )
        elif order.is_terminal:
            # Courier devices stop sharing their position for this order
            self.broadcaster.emit_sync(events.TRACKING_STOP, order)

    def update_status(self, order_id, status: str, user,
                      expected_status: Optional[str] = None, courier_id=None,
                      reason: str = '') -> Order:
        if status == OrderStatus.ASSIGNED:
            return self.assign_courier(order_id, courier_id, user, expected_status)
        order = self.get_order(order_id)
        return self.transition(order, status, user, expected_status=expected_status, reason=reason)

    def assign_courier(self, order_id, courier_id, user,
                       expected_status: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        courier = None
        if courier_id is not None:
            try:
                courier = User.objects.get(pk=courier_id)
            except (User.DoesNotExist, ValidationError, ValueError):
                # Same answer as a courier of another vendor
                raise NotAuthorized("Ce coursier n'est pas rattaché à votre boutique.")
        return self.transition(
            order, OrderStatus.ASSIGNED, user,
            expected_status=expected_status, courier=courier,
        )

    def cancel(self, order_id, user=None, reason: str = '') -> Order:
        """Cancel from any non-terminal state. `user=None` is the system."""
        order = self.get_order(order_id)
        return self.transition(order, OrderStatus.CANCELLED, user, reason=reason)

    # ============================================
    # Location
    # ============================================

    def update_location(self, order_id, user, latitude, longitude, address: str = '') -> LocationPoint:
        """
        Record a courier position and push it to the order's rooms.

        Only the assigned courier, while the order is assigned, picked or
        in transit, may write. The row lock serializes writers of one
        order without touching the others.
        """
        latitude, longitude = validate_coordinates(latitude, longitude)

        with transaction.atomic():
            try:
                order = Order.objects.select_for_update().get(pk=order_id)
            except (Order.DoesNotExist, ValidationError, ValueError):
                raise NotFound()

            if not (
                user is not None
                and getattr(user, 'is_courier', False)
                and order.courier_id == user.pk
                and order.status in LOCATION_SHARING_STATUSES
            ):
                logger.warning(
                    f"[ORDERS] Location write refused on {order.order_number} "
                    f"for user {getattr(user, 'pk', None)} (status={order.status})"
                )
                raise NotAuthorized()

            point = LocationPoint.objects.create(
                order=order,
                courier=user,
                latitude=latitude,
                longitude=longitude,
                address=address or '',
            )
            order.current_latitude = point.latitude
            order.current_longitude = point.longitude
            order.current_address = point.address
            order.current_location_at = point.recorded_at
            order.estimated_delivery_time = self.eta(order)['arrival_time']
            order.save(update_fields=[
                'current_latitude', 'current_longitude', 'current_address',
                'current_location_at', 'estimated_delivery_time', 'updated_at',
            ])

        self.broadcaster.emit_sync(events.LOCATION_UPDATE, order)
        return point

    def location_history(self, order: Order, limit: Optional[int] = None) -> List[dict]:
        points = order.location_history.all()
        if limit:
            # Last N, still oldest first
            points = list(points.order_by('-recorded_at', '-id')[:limit])[::-1]
        return [p.as_dict() for p in points]

    # ============================================
    # Tracking link & public reads
    # ============================================

    def generate_tracking_link(self, order_id, user) -> dict:
        order = self.get_order(order_id)
        if not (user is not None and getattr(user, 'is_vendor', False) and order.vendor_id == user.pk):
            raise NotAuthorized()

        token = self.tokens.issue(order.order_number)
        self.broadcaster.emit_sync(events.TRACKING_REVOKED, order)
        base_url = getattr(settings, 'TRACKING_BASE_URL', '').rstrip('/')
        return {
            'order_number': order.order_number,
            'tracking_token': token,
            'tracking_url': f"{base_url}/{order.order_number}/{token}",
        }

    @staticmethod
    def snapshot(order: Order) -> dict:
        """Initial state sent to a subscriber when it joins an order room."""
        return {
            'order_number': order.order_number,
            'status': order.status,
            'current_location': order.current_location,
        }

    def track(self, order_number: str, token: Optional[str]) -> dict:
        """Public view of an order, keyed by (order number, tracking token)."""
        order = self.tokens.resolve(order_number, token)
        return self.public_view(order)

    @staticmethod
    def public_view(order: Order) -> dict:
        return {
            'order_number': order.order_number,
            'status': order.status,
            'current_location': order.current_location,
            'pickup_location': order.pickup_location,
            'delivery_location': order.delivery_location,
            'courier_assigned': order.courier_id is not None,
            'estimated_delivery_time': (
                order.estimated_delivery_time.isoformat() if order.estimated_delivery_time else None
            ),
            'updated_at': order.updated_at.isoformat(),
        }

    @staticmethod
    def timeline(order: Order) -> List[dict]:
        """Status steps rebuilt from the transition timestamps."""
        steps = []
        for step, field, label in TIMELINE_STEPS:
            when = getattr(order, field)
            if when:
                steps.append({
                    'step': step,
                    'label': label,
                    'timestamp': when.isoformat(),
                })
        return steps

    @staticmethod
    def eta(order: Order, speed_kmh: Optional[float] = None) -> dict:
        """ETA from the courier's last position (pickup point if none) to the delivery point."""
        if order.current_latitude is not None and order.current_longitude is not None:
            origin = (order.current_latitude, order.current_longitude)
            source = 'current_location'
        else:
            origin = (order.pickup_latitude, order.pickup_longitude)
            source = 'pickup_location'

        result = estimate(origin, (order.delivery_latitude, order.delivery_longitude), speed_kmh)
        result['origin'] = source
        return result
