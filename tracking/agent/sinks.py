"""
Where the agent sends accepted samples.

Both sinks end in OrderTrackingService.update_location: in-process
through the service, or remotely through the REST location endpoint.
NotAuthorized is passed through untouched (the agent ends its session on
it); any other delivery problem becomes DeliveryFailed.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from django.db import DatabaseError

from tracking.exceptions import NotAuthorized, NotFound

logger = logging.getLogger(__name__)


class DeliveryFailed(Exception):
    """A sample could not be delivered. The stream goes on."""


class LocationSink(ABC):

    @abstractmethod
    async def send(self, order_id, position) -> None:
        ...


class BroadcasterSink(LocationSink):
    """Write through the service running in this process."""

    def __init__(self, service, courier):
        self.service = service
        self.courier = courier

    async def send(self, order_id, position) -> None:
        try:
            await database_sync_to_async(self.service.update_location)(
                order_id,
                self.courier,
                position.latitude,
                position.longitude,
                position.address,
            )
        except NotFound:
            # Order deleted under us: nothing left to track
            raise NotAuthorized()
        except DatabaseError as e:
            raise DeliveryFailed(f"Enregistrement impossible: {e}")


class HttpLocationSink(LocationSink):
    """
    POST samples to /api/orders/<id>/location/ with a JWT bearer token.

    This is how a remote courier device feeds the write boundary.
    """

    TIMEOUT = 10  # seconds

    def __init__(self, api_url: str, access_token: str,
                 session: Optional[requests.Session] = None, timeout: float = TIMEOUT):
        self.api_url = api_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json',
            'User-Agent': 'TRACKLINE-Agent/1.0',
        }

    def _post(self, order_id, position) -> None:
        url = f"{self.api_url}/api/orders/{order_id}/location/"
        body = {
            'latitude': position.latitude,
            'longitude': position.longitude,
            'address': position.address,
        }
        try:
            response = self.session.post(url, json=body, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise DeliveryFailed(f"API injoignable: {e}")

        if response.status_code in (401, 403, 404):
            raise NotAuthorized(f"Écriture refusée (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise DeliveryFailed(f"HTTP {response.status_code}: {response.text[:200]}")

    async def send(self, order_id, position) -> None:
        await sync_to_async(self._post, thread_sensitive=False)(order_id, position)
