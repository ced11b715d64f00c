"""
TRACKING App - WebSocket Routing Configuration

Maps WebSocket URLs to consumers for real-time tracking.
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Vendors, couriers and logged-in customers
    # ws://localhost:8000/ws/orders/?token=<jwt>
    re_path(
        r'ws/orders/$',
        consumers.OrderTrackingConsumer.as_asgi()
    ),

    # Anonymous customers holding a tracking link
    # ws://localhost:8000/ws/track/
    re_path(
        r'ws/track/$',
        consumers.PublicTrackingConsumer.as_asgi()
    ),
]
