from decimal import Decimal
from django.db import models


class InventoryItem(models.Model):
    """Parts and accessories kept in stock at a location"""
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=64, unique=True)
    category = models.CharField(max_length=100, blank=True)
    location = models.ForeignKey(
        'locations.Location', on_delete=models.SET_NULL, null=True, blank=True, related_name='inventory_items'
    )
    quantity = models.IntegerField(default=0)
    min_stock_level = models.IntegerField(default=0)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.sku})"

    @property
    def is_low_stock(self):
        return self.quantity <= self.min_stock_level

    class Meta:
        db_table = 'inventory_items'
        ordering = ['name']
        indexes = [
            models.Index(fields=['location', 'is_active'], name='inventory_location_idx'),
        ]


class StockAdjustment(models.Model):
    """Stock adjustments (in/out)"""
    ADJUSTMENT_TYPE_CHOICES = [
        ('in', 'Stock In'),
        ('out', 'Stock Out'),
    ]

    REASON_CHOICES = [
        ('purchase', 'Purchase'),
        ('repair_use', 'Used in Repair'),
        ('damaged', 'Damaged'),
        ('found', 'Found'),
        ('correction', 'Correction'),
        ('other', 'Other'),
    ]

    item = models.ForeignKey(InventoryItem, on_delete=models.CASCADE, related_name='adjustments')
    adjustment_type = models.CharField(max_length=10, choices=ADJUSTMENT_TYPE_CHOICES)
    quantity = models.PositiveIntegerField()
    reason = models.CharField(max_length=50, choices=REASON_CHOICES)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        'core.User', on_delete=models.SET_NULL, null=True, related_name='stock_adjustments'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.get_adjustment_type_display()} {self.quantity} x {self.item.sku}"

    class Meta:
        db_table = 'stock_adjustments'
        ordering = ['-created_at']
