from rest_framework import serializers
from .models import InventoryItem, StockAdjustment


class InventoryItemSerializer(serializers.ModelSerializer):
    location_name = serializers.CharField(source='location.name', read_only=True, default=None)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            'id', 'name', 'sku', 'category', 'location', 'location_name', 'quantity', 'min_stock_level',
            'unit_price', 'is_active', 'is_low_stock', 'created_at', 'updated_at',
        ]
        read_only_fields = ['created_at', 'updated_at']

    def validate_sku(self, value):
        return value.strip().upper()

    def validate_quantity(self, value):
        if value < 0:
            raise serializers.ValidationError('Quantity cannot be negative')
        return value


class StockAdjustmentSerializer(serializers.ModelSerializer):
    item_name = serializers.CharField(source='item.name', read_only=True)
    item_sku = serializers.CharField(source='item.sku', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True, default=None)

    class Meta:
        model = StockAdjustment
        fields = [
            'id', 'item', 'item_name', 'item_sku', 'adjustment_type', 'quantity', 'reason', 'notes',
            'created_by', 'created_by_username', 'created_at',
        ]
        read_only_fields = ['created_by', 'created_at']

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError('Quantity must be greater than zero')
        return value
