from django.urls import path
from .views import (
    item_list_create, item_detail, low_stock_list, stock_adjustment_list_create,
)

urlpatterns = [
    path('inventory/', item_list_create, name='inventory-list-create'),
    path('inventory/low-stock/', low_stock_list, name='inventory-low-stock'),
    path('inventory/<int:pk>/', item_detail, name='inventory-detail'),
    path('inventory/adjustments/', stock_adjustment_list_create, name='stock-adjustment-list-create'),
]
