"""
Tracking App Views - Order tracking API

Authenticated write boundary (status, assignment, location) and reads for
the order's parties, plus the public tracking gateway keyed by
(order number, tracking token).

Domain errors (NotAuthorized, InvalidTransition, ...) are raised by the
service and rendered by core.exceptions.api_exception_handler.
"""

import logging

from django.apps import apps
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import (
    CourierAssignSerializer,
    LocationSerializer,
    OrderSerializer,
    StatusUpdateSerializer,
)

logger = logging.getLogger(__name__)


class TrackingServiceMixin:
    """Gives the view the OrderTrackingService built at startup."""

    service = None

    def get_service(self):
        return self.service or apps.get_app_config('tracking').service


# ============================================
# AUTHENTICATED ORDER ENDPOINTS
# ============================================

class OrderDetailView(TrackingServiceMixin, APIView):
    """
    GET /api/orders/<id>/

    Authoritative state for a reconnecting client.
    """

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, order_id):
        order = self.get_service().get_order_for(order_id, request.user)
        return Response(OrderSerializer(order).data)


class OrderStatusView(TrackingServiceMixin, APIView):
    """
    POST /api/orders/<id>/status/

    Request body:
    {
        "status": "picked",
        "expected_status": "assigned"   (optional)
    }
    """

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, order_id):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = self.get_service().update_status(
            order_id, data['status'], request.user,
            expected_status=data.get('expected_status'),
            courier_id=data.get('courier_id'),
            reason=data.get('reason', ''),
        )

        return Response({
            'success': True,
            'order': OrderSerializer(order).data,
        })


class OrderAssignView(TrackingServiceMixin, APIView):
    """
    POST /api/orders/<id>/assign/

    Request body:
    {
        "courier_id": "<uuid of a courier registered under the vendor>"
    }
    """

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, order_id):
        serializer = CourierAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = self.get_service().assign_courier(
            order_id,
            serializer.validated_data['courier_id'],
            request.user,
            expected_status=serializer.validated_data.get('expected_status'),
        )
        return Response({
            'success': True,
            'order': OrderSerializer(order).data,
        })


class OrderLocationView(TrackingServiceMixin, APIView):
    """
    POST /api/orders/<id>/location/   (assigned courier)
    GET  /api/orders/<id>/location/   (order parties)

    Request body:
    {
        "latitude": 40.7128,
        "longitude": -74.0060,
        "address": "optionnel"
    }
    """

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, order_id):
        serializer = LocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        point = self.get_service().update_location(
            order_id,
            request.user,
            serializer.validated_data['latitude'],
            serializer.validated_data['longitude'],
            serializer.validated_data.get('address', ''),
        )
        return Response({
            'success': True,
            'message': 'Position mise à jour.',
            'location': point.as_dict(),
        }, status=status.HTTP_201_CREATED)

    def get(self, request, order_id):
        order = self.get_service().get_order_for(order_id, request.user)
        return Response({
            'success': True,
            'order_number': order.order_number,
            'status': order.status,
            'current_location': order.current_location,
        })


class OrderLocationHistoryView(TrackingServiceMixin, APIView):
    """GET /api/orders/<id>/location/history/?limit=N"""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, order_id):
        service = self.get_service()
        order = service.get_order_for(order_id, request.user)

        limit = request.query_params.get('limit')
        try:
            limit = int(limit) if limit else None
        except ValueError:
            return Response(
                {'success': False, 'error': 'invalid_limit', 'message': 'Paramètre limit invalide.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        if limit is not None and limit <= 0:
            limit = None

        history = service.location_history(order, limit=limit)
        return Response({
            'success': True,
            'order_number': order.order_number,
            'count': len(history),
            'history': history,
        })


class OrderTimelineView(TrackingServiceMixin, APIView):
    """GET /api/orders/<id>/timeline/"""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, order_id):
        service = self.get_service()
        order = service.get_order_for(order_id, request.user)
        return Response({
            'success': True,
            'order_number': order.order_number,
            'current_status': order.status,
            'history': service.timeline(order),
        })


class TrackingLinkView(TrackingServiceMixin, APIView):
    """
    POST /api/orders/<id>/tracking-link/

    Vendor only. Generating a new link revokes the previous one.
    """

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, order_id):
        link = self.get_service().generate_tracking_link(order_id, request.user)
        return Response({'success': True, **link}, status=status.HTTP_201_CREATED)


# ============================================
# PUBLIC TRACKING GATEWAY (no session, no JWT)
# ============================================

class PublicTrackingMixin(TrackingServiceMixin):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def resolve_order(self, order_number, token):
        return self.get_service().tokens.resolve(order_number, token)


class PublicTrackingView(PublicTrackingMixin, APIView):
    """GET /api/track/<order_number>/<token>/"""

    def get(self, request, order_number, token):
        order = self.resolve_order(order_number, token)
        return Response({
            'success': True,
            'order': self.get_service().public_view(order),
        })


class PublicTimelineView(PublicTrackingMixin, APIView):
    """GET /api/track/<order_number>/<token>/timeline/"""

    def get(self, request, order_number, token):
        order = self.resolve_order(order_number, token)
        return Response({
            'success': True,
            'order_number': order.order_number,
            'current_status': order.status,
            'history': self.get_service().timeline(order),
        })


class PublicETAView(PublicTrackingMixin, APIView):
    """GET /api/track/<order_number>/<token>/eta/?speed=<km/h>"""

    def get(self, request, order_number, token):
        order = self.resolve_order(order_number, token)

        speed = request.query_params.get('speed')
        try:
            speed = float(speed) if speed else None
            eta = self.get_service().eta(order, speed_kmh=speed)
        except ValueError:
            return Response(
                {'success': False, 'error': 'invalid_speed', 'message': 'Vitesse invalide.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        return Response({
            'success': True,
            'order_number': order.order_number,
            'status': order.status,
            **eta,
        })
