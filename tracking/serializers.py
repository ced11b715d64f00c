"""
Tracking App Serializers - Orders, Positions, Status changes
"""

from rest_framework import serializers

from .models import Order, OrderStatus


class LocationSerializer(serializers.Serializer):
    """Write: one courier position."""

    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    address = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class StatusUpdateSerializer(serializers.Serializer):
    """
    Write: status change.

    `expected_status` makes the write conditional on the status the
    caller last saw.
    """

    status = serializers.ChoiceField(choices=OrderStatus.choices)
    expected_status = serializers.ChoiceField(choices=OrderStatus.choices, required=False)
    courier_id = serializers.UUIDField(required=False)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class CourierAssignSerializer(serializers.Serializer):
    """Write: assign one of the vendor's couriers."""

    courier_id = serializers.UUIDField()
    expected_status = serializers.ChoiceField(choices=OrderStatus.choices, required=False)


class OrderSerializer(serializers.ModelSerializer):
    """Full order view for the order's parties."""

    vendor_id = serializers.UUIDField(read_only=True)
    customer_id = serializers.UUIDField(read_only=True, allow_null=True)
    courier_id = serializers.UUIDField(read_only=True, allow_null=True)
    courier_name = serializers.CharField(source='courier.full_name', read_only=True, default=None)
    pickup_location = serializers.DictField(read_only=True)
    delivery_location = serializers.DictField(read_only=True)
    current_location = serializers.DictField(read_only=True, allow_null=True)
    tracking_link_issued = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'vendor_id', 'customer_id', 'courier_id', 'courier_name',
            'status', 'pickup_location', 'delivery_location', 'current_location',
            'tracking_link_issued', 'estimated_delivery_time', 'notes',
            'created_at', 'updated_at', 'assigned_at', 'picked_at',
            'in_transit_at', 'delivered_at', 'cancelled_at',
        ]
        read_only_fields = fields

    def get_tracking_link_issued(self, obj) -> bool:
        return bool(obj.tracking_token)
