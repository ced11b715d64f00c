"""
JWT authentication for WebSocket connections.

Browsers cannot set an Authorization header on a WebSocket handshake, so
the access token travels in the query string: ws/orders/?token=<jwt>.
A missing or invalid token leaves the scope user anonymous; each consumer
decides whether that is acceptable.
"""

import logging
from urllib.parse import parse_qs

from channels.auth import AuthMiddlewareStack
from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger('trackline.security')


@database_sync_to_async
def get_user_for_token(raw_token):
    try:
        token = AccessToken(raw_token)
    except TokenError as e:
        logger.warning(f"[WS] Rejected access token: {e}")
        return AnonymousUser()

    User = get_user_model()
    user_id = token.get(api_settings.USER_ID_CLAIM)
    try:
        user = User.objects.get(**{api_settings.USER_ID_FIELD: user_id})
    except User.DoesNotExist:
        return AnonymousUser()
    return user if user.is_active else AnonymousUser()


class JWTAuthMiddleware(BaseMiddleware):
    """Populate scope['user'] from a `token` query parameter."""

    async def __call__(self, scope, receive, send):
        query = parse_qs(scope.get('query_string', b'').decode())
        raw_token = (query.get('token') or [None])[0]
        if raw_token:
            scope['user'] = await get_user_for_token(raw_token)
        return await super().__call__(scope, receive, send)


def JWTAuthMiddlewareStack(inner):
    """Session auth first (admin/browser), then JWT overrides when a token is given."""
    return AuthMiddlewareStack(JWTAuthMiddleware(inner))
