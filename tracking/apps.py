from django.apps import AppConfig


class TrackingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'tracking'
    verbose_name = 'Suivi des commandes'

    broadcaster = None
    tokens = None
    service = None

    def ready(self):
        # Single broadcaster, built before any request or socket is served
        from tracking.events import Broadcaster
        from tracking.services.orders import OrderTrackingService
        from tracking.services.tokens import TrackingTokenAuthority

        self.broadcaster = Broadcaster()
        self.tokens = TrackingTokenAuthority()
        self.service = OrderTrackingService(self.broadcaster, self.tokens)
