"""
WSGI entry point for TRACKLINE (HTTP only, no WebSocket).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'trackline_core.settings')

application = get_wsgi_application()
