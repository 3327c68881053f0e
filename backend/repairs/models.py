import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class Customer(models.Model):
    """Repair customers. Customers without a location are visible to every branch."""
    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=20, unique=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    location = models.ForeignKey(
        'locations.Location', on_delete=models.SET_NULL, null=True, blank=True, related_name='customers'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'customers'
        ordering = ['-created_at']


def generate_receipt_number():
    return f"RCP-{timezone.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:6].upper()}"


class Device(models.Model):
    """A device taken in for repair"""
    STATUS_CHOICES = [
        ('registered', 'Registered'),
        ('diagnosed', 'Diagnosed'),
        ('in_progress', 'In Progress'),
        ('waiting_parts', 'Waiting for Parts'),
        ('completed', 'Completed'),
        ('ready_for_pickup', 'Ready for Pickup'),
        ('delivered', 'Delivered'),
        ('cancelled', 'Cancelled'),
    ]
    PRIORITY_CHOICES = [
        ('normal', 'Normal'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]

    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='devices')
    location = models.ForeignKey(
        'locations.Location', on_delete=models.SET_NULL, null=True, blank=True, related_name='devices'
    )
    device_type = models.CharField(max_length=100)
    brand = models.CharField(max_length=100, blank=True)
    model = models.CharField(max_length=100, blank=True)
    serial_number = models.CharField(max_length=100, blank=True)
    problem_description = models.TextField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='registered')
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='normal')
    total_cost = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    receipt_number = models.CharField(max_length=30, unique=True, default=generate_receipt_number)
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='assigned_devices'
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='registered_devices'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.receipt_number} ({self.device_type})"

    @property
    def total_cost_display(self):
        return f"{self.total_cost.quantize(Decimal('0.01'))}" if self.total_cost is not None else 'TBD'

    class Meta:
        db_table = 'devices'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='devices_status_idx'),
        ]


class CustomerFeedback(models.Model):
    """Feedback left by a customer, optionally about a specific device"""
    customer = models.ForeignKey(
        Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name='feedback'
    )
    device = models.ForeignKey(
        Device, on_delete=models.SET_NULL, null=True, blank=True, related_name='feedback'
    )
    location = models.ForeignKey(
        'locations.Location', on_delete=models.SET_NULL, null=True, blank=True, related_name='feedback'
    )
    customer_name = models.CharField(max_length=200)
    customer_email = models.EmailField(blank=True)
    service_type = models.CharField(max_length=100, blank=True)
    rating = models.PositiveSmallIntegerField(null=True, blank=True)
    comment = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.customer_name} ({self.rating or '-'})"

    class Meta:
        db_table = 'customer_feedback'
        ordering = ['-created_at']
