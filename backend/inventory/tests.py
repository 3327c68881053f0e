"""
Test suite for the inventory module
Tests: low stock detection, stock adjustments, location scoping and the
low stock alert fan-out
"""
from django.test import TestCase
from rest_framework import status

from backend.core.errors import ValidationError
from backend.core.roles import MANAGER, TECHNICIAN
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.inventory.models import InventoryItem, StockAdjustment
from backend.inventory.stock import apply_adjustment, crossed_low_stock
from backend.notifications.models import Notification


class CrossedLowStockTests(TestCase):

    def setUp(self):
        self.item = TestDataFactory.create_inventory_item(quantity=2, min_stock_level=3)

    def test_new_item_already_low(self):
        self.assertTrue(crossed_low_stock(self.item, None))

    def test_dropping_below_minimum(self):
        self.assertTrue(crossed_low_stock(self.item, 5))

    def test_already_low_before(self):
        self.assertFalse(crossed_low_stock(self.item, 3))

    def test_inactive_or_untracked_items(self):
        self.item.is_active = False
        self.assertFalse(crossed_low_stock(self.item, 5))
        self.item.is_active = True
        self.item.min_stock_level = 0
        self.item.quantity = 0
        self.assertFalse(crossed_low_stock(self.item, 5))


class ApplyAdjustmentTests(TestCase):

    def setUp(self):
        self.bole = TestDataFactory.create_location(name='Bole')
        self.admin = TestDataFactory.create_admin()
        self.technician = TestDataFactory.create_user(role=TECHNICIAN, location=self.bole)
        self.item = TestDataFactory.create_inventory_item(
            name='iPhone 12 screen', location=self.bole, quantity=5, min_stock_level=2
        )
        TestDataFactory.create_notification_type(
            'low_stock_alert', title='Low stock: {item_name}', message='{current_stock} left (minimum {min_stock_level})'
        )

    def adjust(self, adjustment_type, quantity, reason='repair_use'):
        adjustment = StockAdjustment.objects.create(
            item=self.item, adjustment_type=adjustment_type, quantity=quantity, reason=reason
        )
        return apply_adjustment(adjustment)

    def test_stock_in(self):
        item = self.adjust('in', 10, reason='purchase')
        self.assertEqual(item.quantity, 15)

    def test_stock_out_beyond_available(self):
        with self.assertRaises(ValidationError):
            self.adjust('out', 6)
        self.item.refresh_from_db()
        self.assertEqual(self.item.quantity, 5)

    def test_low_stock_alert_fires_once_when_crossing(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.adjust('out', 2)
        self.assertEqual(Notification.objects.count(), 0)

        with self.captureOnCommitCallbacks(execute=True):
            self.adjust('out', 1)
        alerts = Notification.objects.filter(type__name='low_stock_alert')
        self.assertEqual({n.recipient_id for n in alerts}, {self.admin.id, self.technician.id})
        alert = alerts.first()
        self.assertEqual(alert.title, 'Low stock: iPhone 12 screen')
        self.assertEqual(alert.message, '2 left (minimum 2)')
        self.assertEqual(alert.priority, 'high')
        self.assertEqual(alert.related_entity_type, 'inventory')

        with self.captureOnCommitCallbacks(execute=True):
            self.adjust('out', 1)
        self.assertEqual(alerts.count(), 2)


class InventoryAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.bole = TestDataFactory.create_location(name='Bole')
        self.piassa = TestDataFactory.create_location(name='Piassa')
        self.admin = TestDataFactory.create_admin()
        self.manager = TestDataFactory.create_user(role=MANAGER, location=self.bole)
        self.storekeeper = TestDataFactory.create_user(
            role=TECHNICIAN, location=self.bole, permissions=['manage_inventory']
        )
        self.battery = TestDataFactory.create_inventory_item(
            name='Battery', sku='BAT-1', location=self.bole, quantity=10, min_stock_level=3
        )
        self.cable = TestDataFactory.create_inventory_item(
            name='Cable', sku='CAB-1', location=self.piassa, quantity=1, min_stock_level=2
        )
        TestDataFactory.create_notification_type('low_stock_alert')

    def test_list_is_scoped(self):
        self.client.authenticate_user(self.manager)
        response = self.client.get('/api/inventory/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([i['sku'] for i in response.data], ['BAT-1'])

    def test_admin_low_stock_list(self):
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/inventory/low-stock/')
        self.assertEqual([i['sku'] for i in response.data], ['CAB-1'])
        response = self.client.get('/api/inventory/?low_stock=false')
        self.assertEqual([i['sku'] for i in response.data], ['BAT-1'])

    def test_view_only_role_cannot_create(self):
        self.client.authenticate_user(self.manager)
        response = self.client.post('/api/inventory/', {'name': 'Glue', 'sku': 'glu-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_uppercases_sku_and_alerts_when_low(self):
        self.client.authenticate_user(self.storekeeper)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post('/api/inventory/', {
                'name': 'Glue', 'sku': ' glu-1 ', 'quantity': 0, 'min_stock_level': 1,
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['sku'], 'GLU-1')
        self.assertEqual(response.data['location'], self.bole.id)
        self.assertTrue(response.data['is_low_stock'])
        self.assertTrue(Notification.objects.filter(type__name='low_stock_alert').exists())

    def test_negative_quantity_rejected(self):
        self.client.authenticate_user(self.storekeeper)
        response = self.client.post('/api/inventory/', {'name': 'Glue', 'sku': 'GLU-1', 'quantity': -1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('quantity', response.data['details'])

    def test_adjustment_out_beyond_stock_rolls_back(self):
        self.client.authenticate_user(self.storekeeper)
        response = self.client.post('/api/inventory/adjustments/', {
            'item': self.battery.id, 'adjustment_type': 'out', 'quantity': 11, 'reason': 'repair_use',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(StockAdjustment.objects.count(), 0)
        self.battery.refresh_from_db()
        self.assertEqual(self.battery.quantity, 10)

    def test_adjustment_updates_quantity(self):
        self.client.authenticate_user(self.storekeeper)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post('/api/inventory/adjustments/', {
                'item': self.battery.id, 'adjustment_type': 'out', 'quantity': 7, 'reason': 'repair_use',
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['created_by'], self.storekeeper.id)
        self.battery.refresh_from_db()
        self.assertEqual(self.battery.quantity, 3)
        self.assertEqual(Notification.objects.filter(type__name='low_stock_alert').count(), 3)

    def test_adjustment_on_other_location_item(self):
        self.client.authenticate_user(self.storekeeper)
        response = self.client.post('/api/inventory/adjustments/', {
            'item': self.cable.id, 'adjustment_type': 'in', 'quantity': 5, 'reason': 'purchase',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_zero_quantity_adjustment(self):
        self.client.authenticate_user(self.storekeeper)
        response = self.client.post('/api/inventory/adjustments/', {
            'item': self.battery.id, 'adjustment_type': 'in', 'quantity': 0, 'reason': 'found',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_deactivates(self):
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/inventory/{self.battery.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(InventoryItem.objects.get(pk=self.battery.id).is_active)
