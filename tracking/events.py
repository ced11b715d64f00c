"""
TRACKING App - Realtime Broadcaster

Fan-out of order events to Django Channels groups.

Rooms are named `kind:key` (order:<id>, order:<number>, vendor:<id>,
delivery:<id>, customer:<id>) and live in one of two domains:
authenticated connections only ever join `private` groups, tracking-link
holders only ever join `public` groups. Channels group names cannot hold
':' so a room becomes the group `<domain>.<kind>.<key>`.

Which rooms an event reaches is decided by ROUTES alone.
"""

import hashlib
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from asgiref.sync import async_to_sync
from django.utils import timezone

logger = logging.getLogger(__name__)

PRIVATE = 'private'
PUBLIC = 'public'

# Event kinds
LOCATION_UPDATE = 'location_update'
STATUS_UPDATE = 'status_update'
ORDER_ASSIGNED = 'order_assigned'
TRACKING_STOP = 'tracking_stop'
TRACKING_REVOKED = 'tracking_revoked'

# Consumer handler every group message is dispatched to
HANDLER_TYPE = 'tracking.event'

# Keys never sent to anonymous subscribers
PRIVATE_KEYS = ('order_id', 'vendor_id', 'courier_id', 'customer_id')

_GROUP_KEY_RE = re.compile(r'^[A-Za-z0-9_\-.]{1,64}$')


# ============================================
# ROOM NAMES
# ============================================

def room(kind: str, key) -> str:
    return f"{kind}:{key}"


def group_name(domain: str, room_name: str) -> str:
    """`private` + `order:42` -> `private.order.42`"""
    kind, _, key = room_name.partition(':')
    if not _GROUP_KEY_RE.match(key):
        key = hashlib.sha1(key.encode()).hexdigest()
    return f"{domain}.{kind}.{key}"


def order_id_room(order) -> Optional[str]:
    return room('order', order.pk)


def order_number_room(order) -> Optional[str]:
    return room('order', order.order_number)


def vendor_room(order) -> Optional[str]:
    return room('vendor', order.vendor_id) if order.vendor_id else None


def courier_room(order) -> Optional[str]:
    return room('delivery', order.courier_id) if order.courier_id else None


def user_room(user) -> Optional[str]:
    """Role room an authenticated connection joins on connect."""
    if getattr(user, 'is_vendor', False):
        return room('vendor', user.pk)
    if getattr(user, 'is_courier', False):
        return room('delivery', user.pk)
    if getattr(user, 'is_customer', False):
        return room('customer', user.pk)
    return None


RoomTarget = Tuple[str, Callable]

ROUTES: Dict[str, List[RoomTarget]] = {
    LOCATION_UPDATE: [
        (PRIVATE, order_id_room),
        (PUBLIC, order_number_room),
        (PRIVATE, vendor_room),
    ],
    STATUS_UPDATE: [
        (PRIVATE, order_id_room),
        (PUBLIC, order_number_room),
        (PRIVATE, vendor_room),
        (PRIVATE, courier_room),
    ],
    ORDER_ASSIGNED: [
        (PRIVATE, courier_room),
    ],
    TRACKING_STOP: [
        (PRIVATE, courier_room),
    ],
    # Link holders subscribed with a token that no longer exists
    TRACKING_REVOKED: [
        (PUBLIC, order_number_room),
    ],
}


def resolve_targets(kind: str, order, routes=None) -> List[Tuple[str, str]]:
    """(domain, room) pairs an event of `kind` about `order` goes to."""
    targets = []
    for domain, room_fn in (routes or ROUTES).get(kind, []):
        room_name = room_fn(order)
        if room_name and (domain, room_name) not in targets:
            targets.append((domain, room_name))
    return targets


# ============================================
# PAYLOADS
# ============================================

def build_payload(kind: str, order, **extra) -> dict:
    payload = {
        'type': kind,
        'order_id': str(order.pk),
        'order_number': order.order_number,
        'vendor_id': str(order.vendor_id) if order.vendor_id else None,
        'courier_id': str(order.courier_id) if order.courier_id else None,
        'status': order.status,
        'timestamp': timezone.now().isoformat(),
    }
    if kind == LOCATION_UPDATE:
        payload['location'] = order.current_location
    payload.update(extra)
    return payload


def public_payload(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k not in PRIVATE_KEYS}


# ============================================
# BROADCASTER
# ============================================

class Broadcaster:
    """
    Wrapper around the channel layer.

    One instance is built in TrackingConfig.ready() and handed to the
    services and consumers that publish; nothing reaches it through a
    module global.
    """

    def __init__(self, channel_layer=None, routes=None):
        self._channel_layer = channel_layer
        self.routes = routes or ROUTES

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            from channels.layers import get_channel_layer
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def subscribe(self, channel_name: str, domain: str, room_name: str) -> str:
        """Join a room. Joining twice is harmless."""
        group = group_name(domain, room_name)
        await self.channel_layer.group_add(group, channel_name)
        return group

    async def unsubscribe(self, channel_name: str, domain: str, room_name: str) -> None:
        await self.channel_layer.group_discard(group_name(domain, room_name), channel_name)

    async def publish(self, domain: str, room_name: str, payload: dict) -> bool:
        """Fire-and-forget to every current member of the room."""
        group = group_name(domain, room_name)
        try:
            await self.channel_layer.group_send(group, {
                'type': HANDLER_TYPE,
                'payload': payload,
            })
            return True
        except Exception as e:
            logger.error(f"[EVENTS] Failed to send to group {group}: {e}")
            return False

    async def emit(self, kind: str, order, **extra) -> List[Tuple[str, str]]:
        """Publish one event to every room the routing table lists for it."""
        payload = build_payload(kind, order, **extra)
        targets = resolve_targets(kind, order, self.routes)
        for domain, room_name in targets:
            body = public_payload(payload) if domain == PUBLIC else payload
            await self.publish(domain, room_name, body)

        logger.debug(
            f"[EVENTS] {kind} for {order.order_number} -> "
            f"{', '.join(f'{d}/{r}' for d, r in targets)}"
        )
        return targets

    def emit_sync(self, kind: str, order, **extra) -> List[Tuple[str, str]]:
        """emit() for synchronous callers (views, services, commands)."""
        return async_to_sync(self.emit)(kind, order, **extra)
