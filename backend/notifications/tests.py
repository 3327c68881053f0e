"""
Test suite for the notifications module
Tests: fan-out rules and preferences, atomicity, post-commit delivery,
reading/status changes, preferences, endpoints and management commands
"""
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.core import mail
from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from backend.core.errors import InternalError, NotFound, ValidationError
from backend.core.roles import MANAGER, SALES, TECHNICIAN
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.notifications.models import Notification, NotificationPreference, NotificationType
from backend.notifications.service import (
    AllAdmins, LocationStaff, NotificationService, RoleMembers, SpecificUsers, notify_after_commit,
    render_template_text,
)
from backend.notifications.signals import fanout_failed

DEVICE_DATA = {
    'device_type': 'Smartphone',
    'customer_name': 'Abebe Kebede',
    'brand': 'Samsung',
    'model': 'Galaxy S23',
}


class RenderTemplateTests(TestCase):

    def test_placeholders_filled(self):
        self.assertEqual(
            render_template_text('New {device_type} from {customer_name}', DEVICE_DATA),
            'New Smartphone from Abebe Kebede',
        )

    def test_unknown_placeholder_left_untouched(self):
        self.assertEqual(render_template_text('Hello {nobody}', {}), 'Hello {nobody}')

    def test_broken_format_returns_text(self):
        self.assertEqual(render_template_text('Broken {', {}), 'Broken {')


class FanOutTests(TestCase):

    def setUp(self):
        self.bole = TestDataFactory.create_location(name='Bole')
        self.admin = TestDataFactory.create_admin(username='admin1')
        self.admin2 = TestDataFactory.create_admin(username='admin2')
        self.inactive_admin = TestDataFactory.create_admin(username='gone', is_active=False)
        self.technician = TestDataFactory.create_user(role=TECHNICIAN, location=self.bole)
        self.sales = TestDataFactory.create_user(role=SALES)
        self.type = TestDataFactory.create_notification_type('device_registered')

    def test_all_admins_gets_one_unread_row_each(self):
        result = NotificationService.fan_out('device_registered', AllAdmins(), data=DEVICE_DATA)
        self.assertEqual(result.created, 2)
        recipients = {n.recipient_id for n in result.notifications}
        self.assertEqual(recipients, {self.admin.id, self.admin2.id})
        for notification in Notification.objects.all():
            self.assertEqual(notification.status, Notification.STATUS_UNREAD)
            self.assertEqual(notification.title, 'New Smartphone registered')
            self.assertEqual(notification.message, 'Abebe Kebede registered a Samsung Galaxy S23')
            self.assertEqual(notification.priority, 'normal')

    def test_explicit_title_and_message_win(self):
        result = NotificationService.fan_out(
            'device_registered', SpecificUsers([self.sales.id]), title='Hi', message='There'
        )
        self.assertEqual((result.notifications[0].title, result.notifications[0].message), ('Hi', 'There'))

    def test_fallback_wording_without_template(self):
        TestDataFactory.create_notification_type('system_alert', with_template=False)
        result = NotificationService.fan_out('system_alert', SpecificUsers([self.sales.id]))
        notification = result.notifications[0]
        self.assertEqual(notification.title, 'Notification')
        self.assertEqual(notification.message, 'You have a new notification')

    def test_no_deduplication(self):
        first = NotificationService.fan_out('device_registered', SpecificUsers([self.sales.id]), data=DEVICE_DATA)
        second = NotificationService.fan_out('device_registered', SpecificUsers([self.sales.id]), data=DEVICE_DATA)
        self.assertNotEqual(first.notifications[0].id, second.notifications[0].id)
        self.assertEqual(Notification.objects.filter(recipient=self.sales).count(), 2)

    def test_location_staff_includes_admins(self):
        result = NotificationService.fan_out('device_registered', LocationStaff(self.bole.id))
        self.assertEqual(
            {n.recipient_id for n in result.notifications}, {self.admin.id, self.admin2.id, self.technician.id}
        )

    def test_location_staff_without_admins(self):
        result = NotificationService.fan_out('device_registered', LocationStaff(self.bole.id, include_admins=False))
        self.assertEqual([n.recipient_id for n in result.notifications], [self.technician.id])

    def test_role_members(self):
        manager = TestDataFactory.create_user(role=MANAGER)
        result = NotificationService.fan_out('device_registered', RoleMembers(MANAGER))
        self.assertEqual([n.recipient_id for n in result.notifications], [manager.id])

    def test_inactive_users_skipped(self):
        result = NotificationService.fan_out('device_registered', SpecificUsers([self.inactive_admin.id]))
        self.assertEqual(result.created, 0)

    def test_preference_disables_in_app(self):
        NotificationPreference.objects.create(user=self.admin, type=self.type, in_app_enabled=False)
        NotificationPreference.objects.create(user=self.admin2, type=self.type, enabled=False)
        result = NotificationService.fan_out('device_registered', AllAdmins())
        self.assertEqual(result.created, 0)
        self.assertEqual(sorted(result.skipped_user_ids), sorted([self.admin.id, self.admin2.id]))

    def test_related_entity_and_expiry(self):
        device = TestDataFactory.create_device(location=self.bole)
        expires = timezone.now() + timedelta(days=1)
        result = NotificationService.fan_out(
            'device_registered', SpecificUsers([self.sales.id]), related_entity=device, expires_at=expires,
            priority='urgent',
        )
        notification = result.notifications[0]
        self.assertEqual(notification.related_entity_type, 'device')
        self.assertEqual(notification.related_entity_id, str(device.id))
        self.assertEqual(notification.priority, 'urgent')

    def test_unknown_type(self):
        with self.assertRaises(NotFound):
            NotificationService.fan_out('nope', AllAdmins())

    def test_inactive_type(self):
        TestDataFactory.create_notification_type('retired', is_active=False)
        with self.assertRaises(NotFound):
            NotificationService.fan_out('retired', AllAdmins())

    def test_invalid_priority(self):
        with self.assertRaises(ValidationError):
            NotificationService.fan_out('device_registered', AllAdmins(), priority='critical')

    def test_data_must_be_an_object(self):
        with self.assertRaises(ValidationError):
            NotificationService.fan_out('device_registered', AllAdmins(), data=['not', 'a', 'dict'])

    def test_data_must_be_serialisable(self):
        with self.assertRaises(ValidationError):
            NotificationService.fan_out('device_registered', AllAdmins(), data={'when': object()})

    def test_recipients_must_be_a_rule(self):
        with self.assertRaises(ValidationError):
            NotificationService.fan_out('device_registered', [self.admin.id])

    def test_database_failure_writes_nothing(self):
        real_create = Notification.objects.create
        calls = []

        def flaky_create(**kwargs):
            calls.append(kwargs['recipient'].id)
            if len(calls) == 2:
                raise DatabaseError('disk full')
            return real_create(**kwargs)

        with patch.object(Notification.objects, 'create', side_effect=flaky_create):
            with self.assertRaises(InternalError):
                NotificationService.fan_out('device_registered', AllAdmins())
        self.assertEqual(len(calls), 2)
        self.assertEqual(Notification.objects.count(), 0)


class DeliveryTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_admin(email='admin@test.com')
        self.type = TestDataFactory.create_notification_type('device_registered')

    def test_email_sent_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            NotificationService.fan_out('device_registered', AllAdmins(), data=DEVICE_DATA)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, 'Repair update: Smartphone')
        self.assertEqual(mail.outbox[0].to, ['admin@test.com'])

    def test_email_respects_preference(self):
        NotificationPreference.objects.create(user=self.admin, type=self.type, email_enabled=False)
        with self.captureOnCommitCallbacks(execute=True):
            result = NotificationService.fan_out('device_registered', AllAdmins(), data=DEVICE_DATA)
        self.assertEqual(result.created, 1)
        self.assertEqual(len(mail.outbox), 0)

    def test_email_without_in_app_row(self):
        NotificationPreference.objects.create(user=self.admin, type=self.type, in_app_enabled=False)
        with self.captureOnCommitCallbacks(execute=True):
            result = NotificationService.fan_out('device_registered', AllAdmins(), data=DEVICE_DATA)
        self.assertEqual(result.created, 0)
        self.assertEqual(len(mail.outbox), 1)

    def test_users_without_email_get_no_mail(self):
        self.admin.email = ''
        self.admin.save()
        with self.captureOnCommitCallbacks(execute=True):
            NotificationService.fan_out('device_registered', AllAdmins())
        self.assertEqual(len(mail.outbox), 0)

    def test_push_to_live_connections(self):
        with patch('backend.monitoring.connections.registry.push_to_user', return_value=1) as push:
            with self.captureOnCommitCallbacks(execute=True):
                NotificationService.fan_out('device_registered', AllAdmins(), data=DEVICE_DATA)
        push.assert_called_once()
        user_id, payload = push.call_args.args
        self.assertEqual(user_id, self.admin.id)
        self.assertEqual(payload['type'], 'notification')
        self.assertEqual(payload['data']['title'], 'New Smartphone registered')


class NotifyAfterCommitTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        TestDataFactory.create_notification_type('device_registered')
        self.failures = []
        fanout_failed.connect(self.on_failure)

    def tearDown(self):
        fanout_failed.disconnect(self.on_failure)

    def on_failure(self, sender, type_name, recipients, error, **kwargs):
        self.failures.append((type_name, error))

    def test_nothing_written_before_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            notify_after_commit('device_registered', AllAdmins())
        self.assertEqual(len(callbacks), 1)
        self.assertEqual(Notification.objects.count(), 0)

    def test_runs_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            notify_after_commit('device_registered', AllAdmins(), data=DEVICE_DATA)
        self.assertEqual(Notification.objects.filter(recipient=self.admin).count(), 1)

    def test_failure_is_reported_not_raised(self):
        with self.captureOnCommitCallbacks(execute=True):
            notify_after_commit('missing_type', AllAdmins())
        self.assertEqual(len(self.failures), 1)
        self.assertEqual(self.failures[0][0], 'missing_type')
        self.assertIsInstance(self.failures[0][1], NotFound)


class ReadAndStatusTests(TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.other = TestDataFactory.create_user()
        TestDataFactory.create_notification_type('system_alert')
        rule = SpecificUsers([self.user.id])
        self.first = NotificationService.fan_out('system_alert', rule, title='first').notifications[0]
        self.second = NotificationService.fan_out('system_alert', rule, title='second').notifications[0]
        self.expired = NotificationService.fan_out(
            'system_alert', rule, title='expired', expires_at=timezone.now() - timedelta(minutes=1)
        ).notifications[0]

    def test_list_hides_expired(self):
        titles = {n.title for n in NotificationService.list_for_user(self.user)}
        self.assertEqual(titles, {'first', 'second'})
        self.assertEqual(len(NotificationService.list_for_user(self.user, include_expired=True)), 3)

    def test_list_pagination(self):
        self.assertEqual(len(NotificationService.list_for_user(self.user, limit=1)), 1)
        self.assertEqual(len(NotificationService.list_for_user(self.user, limit=10, offset=1)), 1)

    def test_list_invalid_status(self):
        with self.assertRaises(ValidationError):
            NotificationService.list_for_user(self.user, status='deleted')

    def test_mark_as_read(self):
        notification = NotificationService.mark_as_read(self.first.id, self.user)
        self.assertEqual(notification.status, Notification.STATUS_READ)
        self.assertIsNotNone(notification.read_at)
        self.assertEqual(NotificationService.unread_count(self.user), 1)

    def test_cannot_touch_someone_elses_notification(self):
        with self.assertRaises(NotFound):
            NotificationService.mark_as_read(self.first.id, self.other)

    def test_malformed_id_is_not_found(self):
        with self.assertRaises(NotFound):
            NotificationService.archive('not-a-uuid', self.user)

    def test_mark_all_as_read(self):
        self.assertEqual(NotificationService.mark_all_as_read(self.user), 3)
        self.assertEqual(NotificationService.unread_count(self.user), 0)

    def test_archive(self):
        NotificationService.archive(self.second.id, self.user)
        archived = NotificationService.list_for_user(self.user, status='archived')
        self.assertEqual([n.id for n in archived], [self.second.id])

    def test_cleanup_expired(self):
        self.assertEqual(NotificationService.cleanup_expired(), 1)
        self.assertFalse(Notification.objects.filter(pk=self.expired.pk).exists())


class PreferenceTests(TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.type = TestDataFactory.create_notification_type('device_registered')

    def test_defaults_without_row(self):
        preferences = NotificationService.get_preferences(self.user)
        self.assertEqual(len(preferences), 1)
        preference = preferences[0]
        self.assertTrue(preference['is_default'])
        self.assertEqual(
            (preference['email_enabled'], preference['sms_enabled'], preference['push_enabled'],
             preference['in_app_enabled']),
            (True, False, True, True),
        )

    def test_update_creates_then_updates(self):
        preference = NotificationService.update_preference(self.user, self.type.id, email_enabled=False)
        self.assertFalse(preference.email_enabled)
        self.assertTrue(preference.in_app_enabled)

        NotificationService.update_preference(self.user, self.type.id, sms_enabled=True)
        preference.refresh_from_db()
        self.assertFalse(preference.email_enabled)
        self.assertTrue(preference.sms_enabled)
        self.assertEqual(NotificationPreference.objects.filter(user=self.user).count(), 1)
        self.assertFalse(NotificationService.get_preferences(self.user)[0]['is_default'])

    def test_unknown_flag(self):
        with self.assertRaises(ValidationError):
            NotificationService.update_preference(self.user, self.type.id, loud=True)

    def test_non_boolean_flag(self):
        with self.assertRaises(ValidationError):
            NotificationService.update_preference(self.user, self.type.id, enabled='yes')

    def test_unknown_type(self):
        with self.assertRaises(NotFound):
            NotificationService.update_preference(self.user, 999999, enabled=False)


class NotificationAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.admin = TestDataFactory.create_admin()
        self.user = TestDataFactory.create_user()
        self.type = TestDataFactory.create_notification_type('system_alert')
        self.notification = NotificationService.fan_out(
            'system_alert', SpecificUsers([self.user.id]), title='Hello'
        ).notifications[0]
        self.client.authenticate_user(self.user)

    def test_list_and_unread_count(self):
        response = self.client.get('/api/notifications/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['title'], 'Hello')
        self.assertEqual(response.data[0]['type']['name'], 'system_alert')
        self.assertEqual(self.client.get('/api/notifications/unread-count/').data, {'count': 1})

    def test_invalid_limit(self):
        response = self.client.get('/api/notifications/?limit=abc')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_mark_read_and_archive(self):
        response = self.client.patch(f'/api/notifications/{self.notification.id}/read/')
        self.assertEqual(response.data['status'], 'read')
        response = self.client.patch(f'/api/notifications/{self.notification.id}/archive/')
        self.assertEqual(response.data['status'], 'archived')

    def test_mark_all_read(self):
        response = self.client.post('/api/notifications/mark-all-read/')
        self.assertEqual(response.data, {'updated': 1})

    def test_types(self):
        response = self.client.get('/api/notifications/types/')
        self.assertEqual([t['name'] for t in response.data], ['system_alert'])

    def test_preferences(self):
        response = self.client.put(
            f'/api/notifications/preferences/{self.type.id}/', {'email_enabled': False}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['email_enabled'])
        response = self.client.get('/api/notifications/preferences/')
        self.assertFalse(response.data[0]['email_enabled'])

    def test_send_requires_admin(self):
        response = self.client.post(
            '/api/notifications/send/', {'type_name': 'system_alert', 'recipients': 'all_admins'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_send_to_users(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/notifications/send/', {
            'type_name': 'system_alert',
            'recipients': 'users',
            'user_ids': [self.user.id],
            'message': 'Shop closes early today',
            'priority': 'high',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['created'], 1)
        self.assertEqual(response.data['notifications'][0]['message'], 'Shop closes early today')

    def test_admin_send_validates_recipients(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post(
            '/api/notifications/send/', {'type_name': 'system_alert', 'recipients': 'users'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('user_ids', response.data['details'])

    def test_admin_send_unknown_type(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post(
            '/api/notifications/send/', {'type_name': 'nope', 'recipients': 'all_admins'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')


class ManagementCommandTests(TestCase):

    def test_seed_is_idempotent(self):
        call_command('seed_notification_types', stdout=StringIO())
        call_command('seed_notification_types', stdout=StringIO())
        self.assertEqual(NotificationType.objects.count(), 7)
        low_stock = NotificationType.objects.get(name='low_stock_alert')
        self.assertEqual(low_stock.templates.count(), 1)

    def test_purge_expired(self):
        user = TestDataFactory.create_user()
        TestDataFactory.create_notification_type('system_alert')
        NotificationService.fan_out(
            'system_alert', SpecificUsers([user.id]), expires_at=timezone.now() - timedelta(days=1)
        )
        out = StringIO()
        call_command('purge_expired_notifications', '--dry-run', stdout=out)
        self.assertIn('1 expired', out.getvalue())
        self.assertEqual(Notification.objects.count(), 1)
        call_command('purge_expired_notifications', stdout=StringIO())
        self.assertEqual(Notification.objects.count(), 0)
