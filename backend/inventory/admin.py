from django.contrib import admin
from .models import InventoryItem, StockAdjustment


@admin.register(InventoryItem)
class InventoryItemAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'location', 'quantity', 'min_stock_level', 'is_active', 'updated_at']
    list_filter = ['is_active', 'location', 'category']
    search_fields = ['name', 'sku']
    ordering = ['name']


@admin.register(StockAdjustment)
class StockAdjustmentAdmin(admin.ModelAdmin):
    list_display = ['item', 'adjustment_type', 'quantity', 'reason', 'created_by', 'created_at']
    list_filter = ['adjustment_type', 'reason', 'created_at']
    search_fields = ['item__name', 'item__sku', 'notes']
    readonly_fields = ['created_at']
