"""
Tracking Token Authority.

A tracking token is the only credential of an anonymous customer. It is
an HMAC-SHA256 over the order number and a random nonce, keyed by
TRACKING_TOKEN_SECRET, and stored on the order so that regenerating it
revokes the previous link.
"""

import hmac
import hashlib
import logging
import secrets
from typing import Optional

from django.conf import settings
from django.utils import timezone

from tracking.exceptions import InvalidToken, NotFound
from tracking.models import Order

logger = logging.getLogger(__name__)


class TrackingTokenAuthority:
    """
    Issues and verifies tracking tokens.

    allow_unissued keeps the historical behaviour where an order that never
    had a link generated accepts any token. Turning it off is a
    compatibility break for links shared before tokens existed.
    """

    NONCE_BYTES = 16

    def __init__(self, secret: Optional[str] = None, allow_unissued: Optional[bool] = None):
        self._secret = secret
        self._allow_unissued = allow_unissued

    @property
    def secret(self) -> bytes:
        secret = self._secret or getattr(settings, 'TRACKING_TOKEN_SECRET', None) or settings.SECRET_KEY
        return secret.encode()

    @property
    def allow_unissued(self) -> bool:
        if self._allow_unissued is not None:
            return self._allow_unissued
        return getattr(settings, 'TRACKING_ALLOW_UNISSUED_TOKENS', True)

    def sign(self, order_number: str, nonce: str) -> str:
        return hmac.new(
            self.secret,
            f"{order_number}:{nonce}".encode(),
            hashlib.sha256
        ).hexdigest()

    def issue(self, order_number: str) -> str:
        """
        Generate a new token for `order_number` and persist it.

        Any previously issued token stops working.

        Raises:
            NotFound: no order carries this number
        """
        token = self.sign(order_number, secrets.token_hex(self.NONCE_BYTES))
        updated = Order.objects.filter(order_number=order_number).update(
            tracking_token=token,
            tracking_token_issued_at=timezone.now(),
            updated_at=timezone.now(),
        )
        if not updated:
            raise NotFound()

        logger.info(f"[TOKENS] Tracking token issued for order {order_number}")
        return token

    def matches(self, order: Order, token: Optional[str]) -> bool:
        if order.tracking_token:
            return hmac.compare_digest(
                order.tracking_token.encode(),
                (token or '').encode()
            )
        return self.allow_unissued

    def resolve(self, order_number: str, token: Optional[str]) -> Order:
        """
        Return the order the token grants access to.

        Raises:
            InvalidToken: unknown order or wrong token (same error for both)
        """
        try:
            order = Order.objects.get(order_number=order_number)
        except (Order.DoesNotExist, ValueError):
            logger.warning(f"[TOKENS] Tracking lookup failed for order number {order_number!r}")
            raise InvalidToken()

        if not self.matches(order, token):
            logger.warning(f"[TOKENS] Tracking token rejected for order number {order_number!r}")
            raise InvalidToken()

        return order

    def verify(self, order_number: str, token: Optional[str]) -> bool:
        try:
            self.resolve(order_number, token)
        except InvalidToken:
            return False
        return True
