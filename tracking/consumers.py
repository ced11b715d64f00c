"""
TRACKING App - WebSocket Consumers for Real-time Tracking

Two endpoints, two room domains:
- ws/orders/?token=<jwt>  authenticated vendors, couriers, customers
  (private rooms, may write status and location)
- ws/track/               anonymous tracking-link holders
  (public rooms, receive only)
"""

import logging

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.apps import apps
from django.db import DatabaseError

from core.middleware import allow_tracking_lookup
from tracking import events
from tracking.exceptions import InvalidToken, NotAuthorized, TrackingError

logger = logging.getLogger(__name__)


class TrackingConsumerMixin:
    """Shared plumbing: service injection, room bookkeeping, error frames."""

    service = None

    def __init__(self, *args, service=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service or apps.get_app_config('tracking').service
        self.rooms = set()

    @property
    def broadcaster(self):
        return self.service.broadcaster

    async def join(self, domain, room_name):
        await self.broadcaster.subscribe(self.channel_name, domain, room_name)
        self.rooms.add((domain, room_name))

    async def leave(self, domain, room_name):
        await self.broadcaster.unsubscribe(self.channel_name, domain, room_name)
        self.rooms.discard((domain, room_name))

    async def leave_all(self):
        for domain, room_name in list(self.rooms):
            await self.leave(domain, room_name)

    async def send_error(self, code, message, request_type=None):
        await self.send_json({
            'type': 'error',
            'error': code,
            'message': message,
            'request': request_type,
        })

    async def send_tracking_error(self, exc: TrackingError, request_type=None):
        await self.send_error(exc.code, exc.message, request_type)

    async def reject_non_object(self, content) -> bool:
        """Frames must be JSON objects; answer anything else with invalid_payload."""
        if isinstance(content, dict):
            return False
        await self.send_error('invalid_payload', "Le message doit être un objet JSON.")
        return True

    # ============================================
    # Event Handlers (called via channel_layer.group_send)
    # ============================================

    async def tracking_event(self, event):
        """Relay a broadcaster event to the client as-is."""
        await self.send_json(event['payload'])


class OrderTrackingConsumer(TrackingConsumerMixin, AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for authenticated parties of an order.

    Clients connect to: ws://host/ws/orders/?token=<jwt>

    On connect the client joins its role room (vendor:<id>,
    delivery:<id> or customer:<id>).

    Messages sent by clients:
    - join_order {order_id}: subscribe to order:<id> (parties only)
    - leave_order {order_id}
    - location_update {order_id, latitude, longitude, address?}: courier only
    - status_update {order_id, status, expected_status?}
    - assign_courier {order_id, courier_id}: owning vendor only

    Events received:
    - location_update, status_update, order_assigned, tracking_stop
    """

    async def connect(self):
        self.user = self.scope.get('user')

        if not self.user or not self.user.is_authenticated:
            await self.close(code=4001)
            return

        await self.accept()

        role_room = events.user_room(self.user)
        if role_room:
            await self.join(events.PRIVATE, role_room)

        await self.send_json({
            'type': 'connection_established',
            'user_id': str(self.user.pk),
            'role': self.user.role,
            'room': role_room,
        })

        logger.info(f"[WS] {self.user.role} {str(self.user.pk)[:8]} connected")

    async def disconnect(self, close_code):
        await self.leave_all()
        user = getattr(self, 'user', None)
        if user is not None and user.is_authenticated:
            logger.info(f"[WS] {user.role} {str(user.pk)[:8]} disconnected ({close_code})")

    async def receive_json(self, content, **kwargs):
        """Handle incoming WebSocket messages from clients."""
        if await self.reject_non_object(content):
            return

        message_type = content.get('type')
        handler = self.HANDLERS.get(message_type)

        if message_type == 'ping':
            await self.send_json({'type': 'pong'})
            return

        if handler is None:
            await self.send_error('unknown_type', f"Type de message inconnu: {message_type}", message_type)
            return

        try:
            await handler(self, content)
        except TrackingError as e:
            logger.warning(f"[WS] {message_type} rejected for {str(self.user.pk)[:8]}: {e.code}")
            await self.send_tracking_error(e, message_type)
        except (KeyError, TypeError, ValueError) as e:
            await self.send_error('invalid_payload', f"Message invalide: {e}", message_type)
        except DatabaseError as e:
            logger.error(f"[WS] Persistence failed during {message_type}: {e}")
            await self.send_error('persistence_failed', "Enregistrement impossible, réessayez.", message_type)

    # ============================================
    # Client message handlers
    # ============================================

    async def handle_join_order(self, content):
        order = await database_sync_to_async(self.service.get_order_for)(content['order_id'], self.user)
        await self.join(events.PRIVATE, events.order_id_room(order))
        await self.send_json({
            'type': 'joined',
            'order_id': str(order.pk),
            **self.service.snapshot(order),
        })

    async def handle_leave_order(self, content):
        await self.leave(events.PRIVATE, events.room('order', content['order_id']))
        await self.send_json({'type': 'left', 'order_id': content['order_id']})

    async def handle_location_update(self, content):
        point = await database_sync_to_async(self.service.update_location)(
            content['order_id'],
            self.user,
            content['latitude'],
            content['longitude'],
            content.get('address', ''),
        )
        await self.send_json({
            'type': 'location_ack',
            'order_id': content['order_id'],
            'location': point.as_dict(),
        })

    async def handle_status_update(self, content):
        order = await database_sync_to_async(self.service.update_status)(
            content['order_id'],
            content['status'],
            self.user,
            expected_status=content.get('expected_status'),
            courier_id=content.get('courier_id'),
            reason=content.get('reason', ''),
        )
        await self.send_json({
            'type': 'status_ack',
            'order_id': str(order.pk),
            'status': order.status,
        })

    async def handle_assign_courier(self, content):
        order = await database_sync_to_async(self.service.assign_courier)(
            content['order_id'],
            content['courier_id'],
            self.user,
            expected_status=content.get('expected_status'),
        )
        await self.send_json({
            'type': 'status_ack',
            'order_id': str(order.pk),
            'status': order.status,
            'courier_id': str(order.courier_id),
        })

    HANDLERS = {
        'join_order': handle_join_order,
        'leave_order': handle_leave_order,
        'location_update': handle_location_update,
        'status_update': handle_status_update,
        'assign_courier': handle_assign_courier,
    }


class PublicTrackingConsumer(TrackingConsumerMixin, AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for anonymous customers holding a tracking link.

    Clients connect to: ws://host/ws/track/

    Messages sent by clients:
    - join_order {order_number, tracking_token}

    Events received (public payloads, no internal ids):
    - location_update, status_update
    - tracking_revoked: the link was regenerated; the client is removed
      from the order room and, with no room left, disconnected (4003)

    Join attempts share the per-IP budget of the HTTP tracking gateway.
    """

    READ_ONLY_TYPES = ('location_update', 'status_update', 'assign_courier')

    async def connect(self):
        await self.accept()
        await self.send_json({'type': 'connection_established'})
        logger.info("[WS] Public tracking client connected")

    async def disconnect(self, close_code):
        await self.leave_all()

    @property
    def client_ip(self):
        client = self.scope.get('client') or ('0.0.0.0', 0)
        return client[0]

    async def tracking_event(self, event):
        payload = event['payload']
        await self.send_json(payload)

        if payload.get('type') == events.TRACKING_REVOKED:
            await self.leave(events.PUBLIC, events.room('order', payload['order_number']))
            logger.info(f"[WS] Public client dropped from {payload['order_number']}: link revoked")
            if not self.rooms:
                await self.close(code=4003)

    async def receive_json(self, content, **kwargs):
        if await self.reject_non_object(content):
            return

        message_type = content.get('type')

        if message_type == 'ping':
            await self.send_json({'type': 'pong'})

        elif message_type == 'join_order':
            await self.handle_join_order(content)

        elif message_type in self.READ_ONLY_TYPES:
            await self.send_tracking_error(
                NotAuthorized("Le suivi public est en lecture seule."), message_type
            )

        else:
            await self.send_error('unknown_type', f"Type de message inconnu: {message_type}", message_type)

    async def handle_join_order(self, content):
        order_number = content.get('order_number')
        token = content.get('tracking_token')

        if not await sync_to_async(allow_tracking_lookup)(self.client_ip):
            await self.send_error(
                'rate_limit_exceeded', 'Trop de requêtes. Veuillez réessayer plus tard.', 'join_order'
            )
            return

        try:
            order = await database_sync_to_async(self.service.tokens.resolve)(order_number, token)
        except InvalidToken as e:
            await self.send_tracking_error(e, 'join_order')
            return

        await self.join(events.PUBLIC, events.order_number_room(order))
        await self.send_json({
            'type': 'joined',
            **self.service.snapshot(order),
        })
        logger.info(f"[WS] Public client joined {order.order_number}")
