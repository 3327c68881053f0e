"""
Test suite for the core module
Tests: access gate, route guard, permission classes, TTL cache, error handling,
startup validation, auth and user endpoints
"""
from django.contrib.auth.models import AnonymousUser
from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated
from rest_framework_simplejwt.tokens import AccessToken

from backend.core.access import (
    Allow, AllowReason, Deny, Notice, Route, RouteGuard, evaluate_access, decision_to_dict,
)
from backend.core.errors import Forbidden, InternalError, NotFound, ValidationError
from backend.core.exceptions import api_error, api_exception_handler
from backend.core.roles import ADMIN, CUSTOMER_SERVICE, MANAGER, SALES, TECHNICIAN, permissions_for_role
from backend.core.startup import StartupValidationError, enforce_environment, validate_environment
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.ttl_cache import LONG, MEDIUM, SHORT, VERY_LONG, TTLCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RolePermissionTests(SimpleTestCase):

    def test_manager_permissions(self):
        self.assertEqual(
            permissions_for_role(MANAGER),
            {'view_dashboard', 'view_customers', 'manage_customers', 'view_inventory', 'view_reports'},
        )

    def test_customer_service_permissions(self):
        self.assertEqual(
            permissions_for_role(CUSTOMER_SERVICE), {'view_dashboard', 'view_customers', 'view_inventory'}
        )

    def test_unknown_role_has_no_permissions(self):
        self.assertEqual(permissions_for_role('janitor'), frozenset())


class EvaluateAccessTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.technician = TestDataFactory.create_user(role=TECHNICIAN)
        self.sales = TestDataFactory.create_user(role=SALES)

    def test_admin_bypasses_every_requirement(self):
        decision = evaluate_access(self.admin, required_roles=[MANAGER], required_permissions=['anything'])
        self.assertTrue(decision.allowed)
        self.assertEqual(decision, Allow(AllowReason.ADMIN_OVERRIDE))

    def test_no_requirements_allows_authenticated_user(self):
        decision = evaluate_access(self.sales)
        self.assertEqual(decision, Allow(AllowReason.GRANTED))

    def test_wrong_role_is_denied_with_dashboard_redirect(self):
        decision = evaluate_access(self.sales, required_roles=[MANAGER, TECHNICIAN])
        self.assertIsInstance(decision, Deny)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.missing_roles, (MANAGER, TECHNICIAN))
        self.assertEqual(decision.redirect_to, '/dashboard')
        self.assertIn('current role: sales', decision.reason)

    def test_missing_permission_is_denied(self):
        decision = evaluate_access(self.sales, required_permissions=['manage_devices', 'view_customers'])
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.missing_permissions, ('manage_devices',))

    def test_role_and_permission_both_required(self):
        decision = evaluate_access(self.technician, required_roles=[TECHNICIAN], required_permissions=['manage_devices'])
        self.assertTrue(decision.allowed)

    def test_explicit_permission_grant(self):
        user = TestDataFactory.create_user(role=SALES, permissions=['view_reports'])
        self.assertTrue(evaluate_access(user, required_permissions=['view_reports']).allowed)

    def test_unauthenticated_redirects_to_login(self):
        decision = evaluate_access(AnonymousUser(), required_roles=[MANAGER])
        self.assertFalse(decision.allowed)
        self.assertFalse(decision.authenticated)
        self.assertEqual(decision.redirect_to, '/login')

    def test_none_user_is_unauthenticated(self):
        self.assertEqual(evaluate_access(None).redirect_to, '/login')

    def test_decision_to_dict(self):
        data = decision_to_dict(evaluate_access(self.sales, required_roles=[MANAGER]))
        self.assertFalse(data['allowed'])
        self.assertEqual(data['missing_roles'], [MANAGER])
        self.assertEqual(decision_to_dict(evaluate_access(self.admin))['reason'], 'admin_override')


class RouteGuardTests(TestCase):

    def setUp(self):
        self.notices = []
        self.navigations = []
        self.guard = RouteGuard(self.notices.append, self.navigations.append)
        self.reports = Route('/reports', required_roles=(MANAGER,))
        self.sales = TestDataFactory.create_user(role=SALES)

    def test_nothing_happens_while_loading(self):
        self.assertIsNone(self.guard.update(self.reports, self.sales, loading=True))
        self.assertEqual(self.notices, [])
        self.assertEqual(self.navigations, [])

    def test_role_deny_notifies_and_navigates(self):
        decision = self.guard.update(self.reports, self.sales)
        self.assertFalse(decision.allowed)
        self.assertEqual(self.notices, [Notice('Access Denied', "You don't have permission to access this page.")])
        self.assertEqual(self.navigations, ['/dashboard'])

    def test_permission_deny_uses_permission_notice(self):
        self.guard.update(Route('/devices', required_permissions=('manage_devices',)), self.sales)
        self.assertEqual(self.notices[0].description, "You don't have the required permissions for this page.")

    def test_unauthenticated_goes_to_login(self):
        self.guard.update(self.reports, AnonymousUser())
        self.assertEqual(self.notices, [Notice('Authentication Required', 'Please log in to access this page.')])
        self.assertEqual(self.navigations, ['/login'])

    def test_same_route_and_identity_evaluated_once(self):
        self.guard.update(self.reports, self.sales)
        self.assertIsNone(self.guard.update(self.reports, self.sales))
        self.assertEqual(len(self.notices), 1)
        self.assertEqual(len(self.navigations), 1)

    def test_identity_change_is_re_evaluated(self):
        self.guard.update(self.reports, self.sales)
        self.sales.role = MANAGER
        decision = self.guard.update(self.reports, self.sales)
        self.assertTrue(decision.allowed)
        self.assertEqual(len(self.navigations), 1)

    def test_allowed_route_does_not_navigate(self):
        admin = TestDataFactory.create_admin()
        self.assertTrue(self.guard.update(self.reports, admin).allowed)
        self.assertEqual(self.navigations, [])


class TTLCacheTests(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache(clock=self.clock)

    def test_ttl_constants(self):
        self.assertEqual((SHORT, MEDIUM, LONG, VERY_LONG), (60, 300, 900, 3600))

    def test_set_and_get(self):
        self.cache.set('a', {'value': 1}, ttl=10)
        self.assertEqual(self.cache.get('a'), {'value': 1})
        self.assertTrue(self.cache.has('a'))
        self.assertEqual(len(self.cache), 1)

    def test_entry_readable_until_ttl_elapses(self):
        self.cache.set('a', 1, ttl=10)
        self.clock.advance(10)
        self.assertEqual(self.cache.get('a'), 1)
        self.clock.advance(0.5)
        self.assertIsNone(self.cache.get('a'))
        self.assertEqual(len(self.cache), 0)

    def test_has_reports_expired_as_missing(self):
        self.cache.set('a', 1, ttl=5)
        self.clock.advance(6)
        self.assertFalse(self.cache.has('a'))
        self.assertNotIn('a', self.cache)

    def test_get_default(self):
        self.assertEqual(self.cache.get('missing', 'fallback'), 'fallback')

    def test_set_replaces_and_restarts_ttl(self):
        self.cache.set('a', 1, ttl=5)
        self.clock.advance(4)
        self.cache.set('a', 2, ttl=5)
        self.clock.advance(4)
        self.assertEqual(self.cache.get('a'), 2)

    def test_delete_and_clear(self):
        self.cache.set('a', 1)
        self.cache.set('b', 2)
        self.cache.delete('a')
        self.cache.delete('never-set')
        self.assertFalse(self.cache.has('a'))
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_delete_prefix(self):
        self.cache.set('location:1', 1)
        self.cache.set('location:2', 2)
        self.cache.set('other', 3)
        self.cache.delete_prefix('location:')
        self.assertEqual(len(self.cache), 1)

    def test_max_entries_evicts_oldest(self):
        cache = TTLCache(clock=self.clock, max_entries=2)
        cache.set('a', 1)
        cache.set('b', 2)
        cache.set('c', 3)
        self.assertFalse(cache.has('a'))
        self.assertEqual(cache.get('c'), 3)
        self.assertEqual(len(cache), 2)

    def test_invalid_max_entries(self):
        with self.assertRaises(ValueError):
            TTLCache(max_entries=0)

    def test_get_or_set_computes_once(self):
        calls = []

        def factory():
            calls.append(1)
            return 'computed'

        self.assertEqual(self.cache.get_or_set('k', factory, ttl=10), 'computed')
        self.assertEqual(self.cache.get_or_set('k', factory, ttl=10), 'computed')
        self.assertEqual(len(calls), 1)


class ExceptionHandlerTests(SimpleTestCase):

    def handle(self, exc):
        return api_exception_handler(exc, {'view': None})

    def test_app_error_body(self):
        response = self.handle(ValidationError('Invalid device data', details={'brand': ['required']}))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data, {
            'success': False,
            'code': 'validation_error',
            'message': 'Invalid device data',
            'details': {'brand': ['required']},
        })

    def test_not_found_and_forbidden(self):
        self.assertEqual(self.handle(NotFound()).status_code, 404)
        response = self.handle(Forbidden('nope'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['code'], 'forbidden')
        self.assertNotIn('details', response.data)

    def test_drf_not_authenticated(self):
        response = self.handle(NotAuthenticated())
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data['code'], 'unauthorized')

    def test_integrity_error_is_conflict(self):
        response = self.handle(IntegrityError('duplicate key'))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['message'], 'Resource already exists.')

    def test_unhandled_error_is_generic_500(self):
        received = []

        def listener(sender, **kwargs):
            received.append(kwargs)

        api_error.connect(listener)
        try:
            response = self.handle(RuntimeError('boom'))
        finally:
            api_error.disconnect(listener)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['code'], 'internal_error')
        self.assertEqual(response.data['message'], 'An unexpected error occurred.')
        self.assertEqual(received[0]['unhandled'], True)

    def test_internal_error_reports_signal(self):
        received = []

        def listener(sender, **kwargs):
            received.append(kwargs)

        api_error.connect(listener)
        try:
            self.handle(InternalError('Failed to create notifications'))
        finally:
            api_error.disconnect(listener)
        self.assertEqual(received[0]['unhandled'], False)


class StartupValidationTests(SimpleTestCase):

    def valid_env(self, **overrides):
        env = {
            'DATABASE_URL': 'postgres://u:p@localhost/db',
            'JWT_SECRET': 'x' * 40,
            'SESSION_SECRET': 'y' * 40,
            'NODE_ENV': 'production',
            'PORT': '5000',
        }
        env.update(overrides)
        return env

    def test_valid_environment(self):
        self.assertEqual(validate_environment(self.valid_env()), [])

    def test_missing_required_variables_listed_together(self):
        with self.assertRaises(StartupValidationError) as ctx:
            validate_environment({'NODE_ENV': 'production'})
        self.assertIn('DATABASE_URL', str(ctx.exception))
        self.assertIn('JWT_SECRET', str(ctx.exception))

    def test_placeholder_secret_rejected(self):
        with self.assertRaises(StartupValidationError):
            validate_environment(self.valid_env(JWT_SECRET='changeme'))

    def test_short_secret_warns(self):
        warnings = validate_environment(self.valid_env(JWT_SECRET='short-but-set'))
        self.assertTrue(any('shorter than' in w for w in warnings))

    def test_bad_port(self):
        with self.assertRaises(StartupValidationError):
            validate_environment(self.valid_env(PORT='http'))

    def test_enforce_exits_with_status_1(self):
        with self.assertRaises(SystemExit) as ctx:
            enforce_environment({})
        self.assertEqual(ctx.exception.code, 1)


class AuthAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.location = TestDataFactory.create_location(name='Bole')
        self.technician = TestDataFactory.create_user(
            username='tech', password='testpass123', role=TECHNICIAN, location=self.location
        )

    def test_login_returns_tokens_with_role_and_location_claims(self):
        response = self.client.post('/api/auth/login/', {'username': 'tech', 'password': 'testpass123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        token = AccessToken(response.data['access'])
        self.assertEqual(token['role'], TECHNICIAN)
        self.assertEqual(token['location_id'], self.location.id)
        self.assertEqual(response.data['user']['role'], TECHNICIAN)

    def test_login_with_wrong_password(self):
        response = self.client.post('/api/auth/login/', {'username': 'tech', 'password': 'wrong'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['success'])

    def test_me(self):
        self.client.authenticate_user(self.technician)
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], TECHNICIAN)
        self.assertIn('manage_devices', response.data['effective_permissions'])
        self.assertEqual(response.data['location']['name'], 'Bole')
        self.assertFalse(response.data['is_admin'])

    def test_me_requires_authentication(self):
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['code'], 'unauthorized')

    def test_access_check(self):
        self.client.authenticate_user(self.technician)
        response = self.client.post(
            '/api/auth/access-check/', {'roles': [MANAGER], 'permissions': []}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['allowed'])
        self.assertEqual(response.data['redirect_to'], '/dashboard')

    def test_access_check_rejects_unknown_role(self):
        self.client.authenticate_user(self.technician)
        response = self.client.post('/api/auth/access-check/', {'roles': ['wizard']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class UserAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.admin = TestDataFactory.create_admin()
        self.sales = TestDataFactory.create_user(role=SALES)

    def test_non_admin_cannot_list_users(self):
        self.client.authenticate_user(self.sales)
        response = self.client.get('/api/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertIn('manage_users', response.data['message'])

    def test_admin_creates_user(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/users/', {
            'username': 'newtech',
            'email': 'newtech@test.com',
            'password': 'Str0ng-Passw0rd!',
            'password_confirm': 'Str0ng-Passw0rd!',
            'role': TECHNICIAN,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], TECHNICIAN)

    def test_password_mismatch(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/users/', {
            'username': 'x', 'password': 'Str0ng-Passw0rd!', 'password_confirm': 'other', 'role': SALES,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data['details'])

    def test_delete_deactivates(self):
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/users/{self.sales.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.sales.refresh_from_db()
        self.assertFalse(self.sales.is_active)

    def test_admin_cannot_deactivate_self(self):
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/users/{self.admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
