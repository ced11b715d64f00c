"""
Tracking App URLs
"""

from django.urls import path

from .views import (
    OrderAssignView,
    OrderDetailView,
    OrderLocationHistoryView,
    OrderLocationView,
    OrderStatusView,
    OrderTimelineView,
    PublicETAView,
    PublicTimelineView,
    PublicTrackingView,
    TrackingLinkView,
)

urlpatterns = [
    # Authenticated order endpoints
    path('orders/<str:order_id>/', OrderDetailView.as_view(), name='order-detail'),
    path('orders/<str:order_id>/status/', OrderStatusView.as_view(), name='order-status'),
    path('orders/<str:order_id>/assign/', OrderAssignView.as_view(), name='order-assign'),
    path('orders/<str:order_id>/location/', OrderLocationView.as_view(), name='order-location'),
    path('orders/<str:order_id>/location/history/', OrderLocationHistoryView.as_view(), name='order-location-history'),
    path('orders/<str:order_id>/timeline/', OrderTimelineView.as_view(), name='order-timeline'),
    path('orders/<str:order_id>/tracking-link/', TrackingLinkView.as_view(), name='order-tracking-link'),

    # Public tracking gateway
    path('track/<str:order_number>/<str:token>/', PublicTrackingView.as_view(), name='track'),
    path('track/<str:order_number>/<str:token>/timeline/', PublicTimelineView.as_view(), name='track-timeline'),
    path('track/<str:order_number>/<str:token>/eta/', PublicETAView.as_view(), name='track-eta'),
]
