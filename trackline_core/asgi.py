"""
ASGI entry point for TRACKLINE.

HTTP goes to Django; WebSocket goes to the tracking consumers.
django.setup() runs (through get_asgi_application) before the routing
import so the broadcaster is built in TrackingConfig.ready() before any
connection can reach a consumer.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'trackline_core.settings')

django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from core.ws_auth import JWTAuthMiddlewareStack  # noqa: E402
from tracking.routing import websocket_urlpatterns  # noqa: E402


application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': AllowedHostsOriginValidator(
        JWTAuthMiddlewareStack(
            URLRouter(websocket_urlpatterns)
        )
    ),
})
