from rest_framework import serializers
from .models import Customer, Device, CustomerFeedback


class CustomerSerializer(serializers.ModelSerializer):
    location_name = serializers.CharField(source='location.name', read_only=True, default=None)

    class Meta:
        model = Customer
        fields = [
            'id', 'name', 'phone', 'email', 'address', 'notes', 'location', 'location_name',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['created_at', 'updated_at']


class DeviceSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source='customer.name', read_only=True)
    customer_phone = serializers.CharField(source='customer.phone', read_only=True)
    location_name = serializers.CharField(source='location.name', read_only=True, default=None)
    technician_username = serializers.CharField(source='technician.username', read_only=True, default=None)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True, default=None)

    class Meta:
        model = Device
        fields = [
            'id', 'receipt_number', 'customer', 'customer_name', 'customer_phone', 'location', 'location_name',
            'device_type', 'brand', 'model', 'serial_number', 'problem_description', 'status', 'priority',
            'total_cost', 'technician', 'technician_username', 'created_by', 'created_by_username',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['receipt_number', 'created_by', 'created_at', 'updated_at']


class DeviceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Device.STATUS_CHOICES)
    total_cost = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)


class DeviceTrackingSerializer(serializers.ModelSerializer):
    """What a customer sees when tracking a repair by receipt number"""
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    location_name = serializers.CharField(source='location.name', read_only=True, default=None)

    class Meta:
        model = Device
        fields = [
            'receipt_number', 'device_type', 'brand', 'model', 'status', 'status_display',
            'location_name', 'created_at', 'updated_at',
        ]


class CustomerFeedbackSerializer(serializers.ModelSerializer):
    rating = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)

    class Meta:
        model = CustomerFeedback
        fields = [
            'id', 'customer', 'device', 'location', 'customer_name', 'customer_email', 'service_type',
            'rating', 'comment', 'created_at',
        ]
        read_only_fields = ['customer', 'location', 'created_at']
