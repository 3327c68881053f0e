"""
Test utilities and factories for creating test data
"""
import random
import string
from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from backend.core.roles import ADMIN, SALES
from backend.inventory.models import InventoryItem
from backend.locations.models import Location
from backend.notifications.models import NotificationTemplate, NotificationType
from backend.repairs.models import Customer, Device

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', role=SALES, location=None,
                    permissions=None, is_active=True):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if email is None:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            location=location,
            permissions=permissions or [],
            is_active=is_active,
        )

    @staticmethod
    def create_admin(**kwargs):
        return TestDataFactory.create_user(role=ADMIN, **kwargs)

    @staticmethod
    def create_location(name=None, code=None, is_active=True):
        """Create a test location"""
        if not name:
            name = f'Location_{TestDataFactory.random_string(6)}'
        if not code:
            code = TestDataFactory.random_string(6).upper()
        return Location.objects.create(
            name=name,
            code=code,
            address=f'Test Address {name}',
            city='Addis Ababa',
            phone='1234567890',
            is_active=is_active,
        )

    @staticmethod
    def create_customer(name=None, phone=None, email=None, location=None):
        """Create a test customer"""
        if not name:
            name = f'Customer_{TestDataFactory.random_string(6)}'
        if not phone:
            phone = ''.join(random.choices(string.digits, k=10))
        return Customer.objects.create(
            name=name,
            phone=phone,
            email=email or f'{name.lower()}@test.com',
            location=location,
        )

    @staticmethod
    def create_device(customer=None, location=None, status='registered', priority='normal', **kwargs):
        """Create a test device"""
        customer = customer or TestDataFactory.create_customer(location=location)
        defaults = {
            'device_type': 'Smartphone',
            'brand': 'Samsung',
            'model': 'Galaxy S23',
            'problem_description': 'Cracked screen',
            'total_cost': Decimal('120.00'),
        }
        defaults.update(kwargs)
        return Device.objects.create(
            customer=customer, location=location, status=status, priority=priority, **defaults
        )

    @staticmethod
    def create_notification_type(name=None, with_template=True, is_active=True, **template_fields):
        """Create a notification type, optionally with an active template"""
        if not name:
            name = f'type_{TestDataFactory.random_string(6).lower()}'
        notification_type = NotificationType.objects.create(
            name=name, description=f'{name} events', is_active=is_active
        )
        if with_template:
            fields = {
                'name': f'{name}_default',
                'title': 'New {device_type} registered',
                'message': '{customer_name} registered a {brand} {model}',
                'email_subject': 'Repair update: {device_type}',
                'email_body': 'Dear staff, {customer_name} registered a {brand} {model}.',
            }
            fields.update(template_fields)
            NotificationTemplate.objects.create(type=notification_type, **fields)
        return notification_type

    @staticmethod
    def create_inventory_item(name=None, sku=None, location=None, quantity=10, min_stock_level=2):
        """Create a test inventory item"""
        if not name:
            name = f'Part_{TestDataFactory.random_string(6)}'
        if not sku:
            sku = f'SKU-{TestDataFactory.random_string(8).upper()}'
        return InventoryItem.objects.create(
            name=name,
            sku=sku,
            location=location,
            quantity=quantity,
            min_stock_level=min_stock_level,
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def select_location(self, location_id):
        """Send X-Selected-Location on every following request"""
        credentials = dict(self._credentials)
        credentials['HTTP_X_SELECTED_LOCATION'] = str(location_id)
        self.credentials(**credentials)
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
