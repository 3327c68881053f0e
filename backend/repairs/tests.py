"""
Test suite for the repairs module
Tests: location-scoped customers and devices, device registration and status
notifications, public tracking and customer feedback
"""
from django.test import TestCase
from rest_framework import status

from backend.core.roles import CUSTOMER_SERVICE, SALES, TECHNICIAN
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.notifications.models import Notification, NotificationType
from backend.repairs.models import Customer, CustomerFeedback, Device


class CustomerAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.bole = TestDataFactory.create_location(name='Bole')
        self.piassa = TestDataFactory.create_location(name='Piassa')
        self.admin = TestDataFactory.create_admin()
        self.staff = TestDataFactory.create_user(role=SALES, location=self.bole)
        self.at_bole = TestDataFactory.create_customer(name='Abebe', location=self.bole)
        self.at_piassa = TestDataFactory.create_customer(name='Almaz', location=self.piassa)
        self.shared = TestDataFactory.create_customer(name='Walk-in', location=None)

    def ids(self, response):
        return {c['id'] for c in response.data}

    def test_staff_sees_own_and_shared_customers(self):
        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/customers/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.ids(response), {self.at_bole.id, self.shared.id})

    def test_admin_sees_everything_until_a_location_is_selected(self):
        self.client.authenticate_user(self.admin)
        self.assertEqual(len(self.client.get('/api/customers/').data), 3)

        self.client.select_location(self.piassa.id)
        self.assertEqual(self.ids(self.client.get('/api/customers/')), {self.at_piassa.id, self.shared.id})

    def test_search(self):
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/customers/?search=abe')
        self.assertEqual(self.ids(response), {self.at_bole.id})

    def test_other_location_customer_is_not_found(self):
        self.client.authenticate_user(self.staff)
        response = self.client.get(f'/api/customers/{self.at_piassa.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_create_fills_in_staff_location(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/customers/', {'name': 'Kebede', 'phone': '0911000000'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['location'], self.bole.id)

    def test_create_for_other_location_forbidden(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post(
            '/api/customers/', {'name': 'Kebede', 'phone': '0911000000', 'location': self.piassa.id}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Customer.objects.filter(phone='0911000000').exists())

    def test_duplicate_phone_rejected(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post(
            '/api/customers/', {'name': 'Copy', 'phone': self.at_bole.phone}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('phone', response.data['details'])

    def test_delete_customer_with_devices_conflicts(self):
        TestDataFactory.create_device(customer=self.at_bole, location=self.bole)
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/customers/{self.at_bole.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'conflict')

    def test_delete_customer_without_devices(self):
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/customers/{self.shared.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

    def test_requires_authentication(self):
        response = self.client.get('/api/customers/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class DeviceAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.bole = TestDataFactory.create_location(name='Bole')
        self.piassa = TestDataFactory.create_location(name='Piassa')
        self.admin = TestDataFactory.create_admin()
        self.technician = TestDataFactory.create_user(role=TECHNICIAN, location=self.bole)
        self.piassa_staff = TestDataFactory.create_user(role=TECHNICIAN, location=self.piassa)
        self.customer = TestDataFactory.create_customer(name='Abebe Kebede', location=self.bole)
        TestDataFactory.create_notification_type('device_registered')
        TestDataFactory.create_notification_type(
            'device_status_change', title='Repair {receipt_number}: {new_status}',
            message='{old_status} -> {new_status} by {updated_by}',
        )

    def register(self, **overrides):
        payload = {
            'customer': self.customer.id,
            'device_type': 'Laptop',
            'brand': 'Lenovo',
            'model': 'ThinkPad T14',
            'problem_description': 'Does not boot',
        }
        payload.update(overrides)
        return self.client.post('/api/devices/', payload, format='json')

    def test_register_device_notifies_location_staff_after_commit(self):
        self.client.authenticate_user(self.technician)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.register()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['receipt_number'].startswith('RCP-'))
        self.assertEqual(response.data['location'], self.bole.id)
        self.assertEqual(response.data['created_by'], self.technician.id)

        notifications = Notification.objects.filter(type__name='device_registered')
        self.assertEqual({n.recipient_id for n in notifications}, {self.admin.id, self.technician.id})
        notification = notifications.first()
        self.assertEqual(notification.title, 'New Laptop registered')
        self.assertEqual(notification.message, 'Abebe Kebede registered a Lenovo ThinkPad T14')
        self.assertEqual(notification.related_entity_type, 'device')
        self.assertEqual(notification.data['receipt_number'], response.data['receipt_number'])
        self.assertEqual(notification.data['total_cost'], 'TBD')

    def test_urgent_device_gets_high_priority_notification(self):
        self.client.authenticate_user(self.technician)
        with self.captureOnCommitCallbacks(execute=True):
            self.register(priority='urgent')
        priorities = list(Notification.objects.values_list('priority', flat=True))
        self.assertEqual(priorities, ['high', 'high'])

    def test_missing_notification_type_does_not_fail_registration(self):
        self.client.authenticate_user(self.technician)
        NotificationType.objects.filter(name='device_registered').delete()
        with self.captureOnCommitCallbacks(execute=True):
            response = self.register()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Notification.objects.count(), 0)
        self.assertTrue(Device.objects.filter(pk=response.data['id']).exists())

    def test_register_for_out_of_scope_customer(self):
        self.client.authenticate_user(self.piassa_staff)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.register()
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(Device.objects.count(), 0)
        self.assertEqual(Notification.objects.count(), 0)

    def test_invalid_device_data(self):
        self.client.authenticate_user(self.technician)
        response = self.register(problem_description='')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('problem_description', response.data['details'])

    def test_device_list_is_scoped(self):
        mine = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        TestDataFactory.create_device(location=self.piassa)
        self.client.authenticate_user(self.technician)
        response = self.client.get('/api/devices/')
        self.assertEqual([d['id'] for d in response.data], [mine.id])

    def test_device_list_filters(self):
        TestDataFactory.create_device(customer=self.customer, location=self.bole, status='completed')
        waiting = TestDataFactory.create_device(customer=self.customer, location=self.bole, status='waiting_parts')
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/devices/?status=waiting_parts')
        self.assertEqual([d['id'] for d in response.data], [waiting.id])
        response = self.client.get(f'/api/devices/?search={waiting.receipt_number.lower()}')
        self.assertEqual([d['id'] for d in response.data], [waiting.id])

    def test_status_update_notifies(self):
        device = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        self.client.authenticate_user(self.technician)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.patch(
                f'/api/devices/{device.id}/status/', {'status': 'in_progress', 'total_cost': '80.00'}, format='json'
            )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'in_progress')

        notification = Notification.objects.filter(type__name='device_status_change').first()
        self.assertEqual(notification.title, f'Repair {device.receipt_number}: in_progress')
        self.assertEqual(notification.message, f'registered -> in_progress by {self.technician.username}')
        self.assertEqual(notification.sender_id, self.technician.id)

    def test_same_status_is_not_announced(self):
        device = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        self.client.authenticate_user(self.technician)
        with self.captureOnCommitCallbacks(execute=True):
            self.client.patch(f'/api/devices/{device.id}/status/', {'status': 'registered'}, format='json')
        self.assertEqual(Notification.objects.count(), 0)

    def test_status_update_requires_manage_devices(self):
        device = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        clerk = TestDataFactory.create_user(role=CUSTOMER_SERVICE, location=self.bole)
        self.client.authenticate_user(clerk)
        response = self.client.patch(f'/api/devices/{device.id}/status/', {'status': 'completed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_edit_with_status_change_notifies(self):
        device = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        self.client.authenticate_user(self.technician)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.patch(f'/api/devices/{device.id}/', {'status': 'diagnosed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(Notification.objects.filter(type__name='device_status_change').exists())

    def test_edit_cannot_move_device_to_other_location_customer(self):
        device = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        elsewhere = TestDataFactory.create_customer(name='Almaz', location=self.piassa)
        self.client.authenticate_user(self.technician)
        response = self.client.patch(f'/api/devices/{device.id}/', {'customer': elsewhere.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        device.refresh_from_db()
        self.assertEqual(device.customer_id, self.customer.id)

    def test_edit_status_requires_manage_devices(self):
        device = TestDataFactory.create_device(customer=self.customer, location=self.bole)
        clerk = TestDataFactory.create_user(role=CUSTOMER_SERVICE, location=self.bole)
        self.client.authenticate_user(clerk)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.patch(f'/api/devices/{device.id}/', {'status': 'completed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        device.refresh_from_db()
        self.assertEqual(device.status, 'registered')
        self.assertEqual(Notification.objects.count(), 0)

        response = self.client.patch(f'/api/devices/{device.id}/', {'problem_description': 'Cracked screen'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_other_location_device_not_found(self):
        device = TestDataFactory.create_device(location=self.piassa)
        self.client.authenticate_user(self.technician)
        response = self.client.get(f'/api/devices/{device.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class TrackingAndFeedbackTests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.bole = TestDataFactory.create_location(name='Bole')
        self.admin = TestDataFactory.create_admin()
        self.device = TestDataFactory.create_device(location=self.bole, status='ready_for_pickup')
        TestDataFactory.create_notification_type('device_tracked')
        TestDataFactory.create_notification_type(
            'customer_feedback', title='Feedback from {customer_name}', message='Rated {rating}/5: {comment}'
        )

    def test_public_tracking_is_case_insensitive(self):
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.get(f'/api/track/{self.device.receipt_number.lower()}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status_display'], 'Ready for Pickup')
        self.assertEqual(response.data['location_name'], 'Bole')
        self.assertNotIn('customer', response.data)
        self.assertTrue(Notification.objects.filter(type__name='device_tracked', recipient=self.admin).exists())

    def test_unknown_receipt(self):
        response = self.client.get('/api/track/RCP-NOPE/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(response.data['success'])

    def test_feedback_notifies_admins(self):
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post('/api/feedback/submit/', {
                'device': self.device.id,
                'customer_name': 'Abebe',
                'rating': 5,
                'comment': 'Fast and friendly',
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        feedback = CustomerFeedback.objects.get(pk=response.data['id'])
        self.assertEqual(feedback.customer_id, self.device.customer_id)
        self.assertEqual(feedback.location_id, self.bole.id)

        notification = Notification.objects.get(type__name='customer_feedback')
        self.assertEqual(notification.recipient_id, self.admin.id)
        self.assertEqual(notification.title, 'Feedback from Abebe')
        self.assertEqual(notification.message, 'Rated 5/5: Fast and friendly')

    def test_feedback_rating_range(self):
        response = self.client.post(
            '/api/feedback/submit/', {'customer_name': 'Abebe', 'rating': 6}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('rating', response.data['details'])

    def test_feedback_list_requires_login(self):
        response = self.client.get('/api/feedback/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.client.authenticate_user(self.admin)
        self.assertEqual(self.client.get('/api/feedback/').status_code, status.HTTP_200_OK)
