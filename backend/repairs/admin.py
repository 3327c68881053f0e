from django.contrib import admin
from .models import Customer, Device, CustomerFeedback


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ['name', 'phone', 'email', 'location', 'created_at']
    list_filter = ['location', 'created_at']
    search_fields = ['name', 'phone', 'email']


@admin.register(Device)
class DeviceAdmin(admin.ModelAdmin):
    list_display = ['receipt_number', 'customer', 'device_type', 'brand', 'status', 'priority', 'location', 'created_at']
    list_filter = ['status', 'priority', 'location', 'created_at']
    search_fields = ['receipt_number', 'serial_number', 'brand', 'model', 'customer__name', 'customer__phone']
    raw_id_fields = ['customer', 'technician', 'created_by']


@admin.register(CustomerFeedback)
class CustomerFeedbackAdmin(admin.ModelAdmin):
    list_display = ['customer_name', 'rating', 'service_type', 'location', 'created_at']
    list_filter = ['rating', 'location', 'created_at']
    search_fields = ['customer_name', 'customer_email', 'comment']
