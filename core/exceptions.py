"""
DRF exception handler.

Domain errors raised by the tracking services carry their own HTTP status
and machine code; everything else goes through DRF's default handling.
"""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from tracking.exceptions import TrackingError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    if isinstance(exc, TrackingError):
        view = context.get('view')
        logger.info(
            f"[API] {type(exc).__name__} in {type(view).__name__ if view else '?'}: {exc.code}"
        )
        return Response(exc.as_dict(), status=exc.status_code)

    return exception_handler(exc, context)
