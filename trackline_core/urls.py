"""
TRACKLINE Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "TRACKLINE Control Tower"
admin.site.site_title = "TRACKLINE Admin"
admin.site.index_title = "Suivi des livraisons"


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'TRACKLINE API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'orders': {
                'detail': '/api/orders/<id>/',
                'status': '/api/orders/<id>/status/',
                'assign': '/api/orders/<id>/assign/',
                'location': '/api/orders/<id>/location/',
                'history': '/api/orders/<id>/location/history/',
                'timeline': '/api/orders/<id>/timeline/',
                'tracking_link': '/api/orders/<id>/tracking-link/',
            },
            'tracking': '/api/track/<order_number>/<token>/',
            'websockets': {
                'authenticated': '/ws/orders/?token=<jwt>',
                'public': '/ws/track/',
            },
        }
    })


urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # Health checks + JWT auth
    path('', include('core.urls')),

    # API Root
    path('api/', api_root, name='api-root'),

    # OpenAPI schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),

    # App URLs
    path('api/', include('tracking.urls')),
]
