"""
Django Admin configuration for TRACKING app.
"""

from django.apps import apps
from django.contrib import admin, messages

from .exceptions import TrackingError
from .models import LocationPoint, Order, OrderStatus


class LocationPointInline(admin.TabularInline):
    model = LocationPoint
    extra = 0
    fields = ('latitude', 'longitude', 'address', 'recorded_at', 'courier')
    readonly_fields = fields
    ordering = ('-recorded_at',)
    can_delete = False
    max_num = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin for orders. Status is read-only here: it only moves through transitions."""

    list_display = (
        'order_number',
        'status',
        'vendor',
        'courier',
        'customer',
        'has_tracking_link',
        'updated_at',
    )
    list_filter = ('status',)
    search_fields = ('order_number', 'delivery_address', 'pickup_address')
    ordering = ('-created_at',)
    autocomplete_fields = ('vendor', 'customer')
    inlines = [LocationPointInline]

    readonly_fields = (
        'order_number', 'status', 'courier',
        'current_latitude', 'current_longitude', 'current_address', 'current_location_at',
        'tracking_token_issued_at',
        'created_at', 'updated_at', 'assigned_at', 'picked_at',
        'in_transit_at', 'delivered_at', 'cancelled_at',
    )
    exclude = ('tracking_token',)

    actions = ['cancel_orders']

    @admin.display(boolean=True, description="Lien de suivi")
    def has_tracking_link(self, obj):
        return bool(obj.tracking_token)

    @admin.action(description="Annuler les commandes sélectionnées")
    def cancel_orders(self, request, queryset):
        service = apps.get_app_config('tracking').service
        cancelled = 0
        for order in queryset.exclude(status__in=[OrderStatus.DELIVERED, OrderStatus.CANCELLED]):
            try:
                service.transition(order, OrderStatus.CANCELLED, request.user, reason='admin')
                cancelled += 1
            except TrackingError as e:
                self.message_user(request, f"{order.order_number}: {e.message}", messages.WARNING)
        self.message_user(request, f"{cancelled} commande(s) annulée(s).")
