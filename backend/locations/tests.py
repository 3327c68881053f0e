"""
Test suite for location scoping
Tests: effective filter resolution, queryset scoping, ownership enforcement,
location selection and the location endpoints
"""
from django.test import TestCase
from rest_framework import status

from backend.core.errors import Forbidden, ValidationError
from backend.core.roles import MANAGER, SALES, TECHNICIAN
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.ttl_cache import reference_cache
from backend.core.model_cache import ACTIVE_LOCATIONS_KEY, get_cached_active_locations
from backend.locations.models import Location
from backend.locations.scoping import (
    ALL_LOCATIONS, SELECTION_STORAGE_KEY, LocationFilter, LocationSelection, enforce_location_ownership,
    location_changed, resolve_location_filter, scope_queryset,
)
from backend.repairs.models import Customer


class ResolveLocationFilterTests(TestCase):

    def setUp(self):
        self.bole = TestDataFactory.create_location(name='Bole')
        self.admin = TestDataFactory.create_admin()
        self.staff = TestDataFactory.create_user(role=TECHNICIAN, location=self.bole)
        self.unassigned = TestDataFactory.create_user(role=SALES)

    def test_admin_without_selection_sees_all(self):
        self.assertEqual(resolve_location_filter(self.admin), LocationFilter(include_all=True))

    def test_admin_all_keyword(self):
        self.assertTrue(resolve_location_filter(self.admin, 'all').include_all)
        self.assertTrue(resolve_location_filter(self.admin, '  ').include_all)

    def test_admin_selected_location(self):
        self.assertEqual(
            resolve_location_filter(self.admin, str(self.bole.id)), LocationFilter(location_id=self.bole.id)
        )

    def test_admin_invalid_selection(self):
        with self.assertRaises(ValidationError):
            resolve_location_filter(self.admin, 'not-a-number')

    def test_staff_pinned_to_own_location_ignoring_selection(self):
        other = TestDataFactory.create_location(name='Piassa')
        location_filter = resolve_location_filter(self.staff, str(other.id))
        self.assertEqual(location_filter, LocationFilter(location_id=self.bole.id))

    def test_staff_without_location_only_unassigned(self):
        location_filter = resolve_location_filter(self.unassigned)
        self.assertTrue(location_filter.is_unassigned_only)


class ScopeQuerysetTests(TestCase):

    def setUp(self):
        self.bole = TestDataFactory.create_location(name='Bole')
        self.piassa = TestDataFactory.create_location(name='Piassa')
        self.at_bole = TestDataFactory.create_customer(location=self.bole)
        self.at_piassa = TestDataFactory.create_customer(location=self.piassa)
        self.shared = TestDataFactory.create_customer(location=None)

    def ids(self, queryset):
        return set(queryset.values_list('id', flat=True))

    def test_include_all(self):
        scoped = scope_queryset(Customer.objects.all(), LocationFilter(include_all=True))
        self.assertEqual(scoped.count(), 3)

    def test_single_location(self):
        scoped = scope_queryset(Customer.objects.all(), LocationFilter(location_id=self.bole.id))
        self.assertEqual(self.ids(scoped), {self.at_bole.id})

    def test_single_location_with_unassigned(self):
        scoped = scope_queryset(
            Customer.objects.all(), LocationFilter(location_id=self.bole.id), include_unassigned=True
        )
        self.assertEqual(self.ids(scoped), {self.at_bole.id, self.shared.id})

    def test_unassigned_only(self):
        scoped = scope_queryset(Customer.objects.all(), LocationFilter())
        self.assertEqual(self.ids(scoped), {self.shared.id})


class EnforceLocationOwnershipTests(TestCase):

    def setUp(self):
        self.bole = TestDataFactory.create_location(name='Bole')
        self.piassa = TestDataFactory.create_location(name='Piassa')
        self.staff = TestDataFactory.create_user(role=TECHNICIAN, location=self.bole)

    def test_missing_location_is_filled_in(self):
        data = {'name': 'Abebe'}
        result = enforce_location_ownership(self.staff, data)
        self.assertEqual(result['location'], self.bole.id)
        self.assertNotIn('location', data)

    def test_own_location_accepted(self):
        result = enforce_location_ownership(self.staff, {'location': str(self.bole.id)})
        self.assertEqual(result['location'], str(self.bole.id))

    def test_other_location_forbidden(self):
        with self.assertRaises(Forbidden):
            enforce_location_ownership(self.staff, {'location': self.piassa.id})

    def test_admin_may_assign_any_location(self):
        admin = TestDataFactory.create_admin()
        result = enforce_location_ownership(admin, {'location': self.piassa.id})
        self.assertEqual(result['location'], self.piassa.id)

    def test_staff_without_location_cannot_assign_one(self):
        unassigned = TestDataFactory.create_user(role=SALES)
        with self.assertRaises(Forbidden):
            enforce_location_ownership(unassigned, {'location': self.bole.id})
        self.assertNotIn('location', enforce_location_ownership(unassigned, {}))


class LocationSelectionTests(TestCase):

    def setUp(self):
        self.bole = TestDataFactory.create_location(name='Bole')
        self.piassa = TestDataFactory.create_location(name='Piassa')
        self.admin = TestDataFactory.create_admin()
        self.staff = TestDataFactory.create_user(role=MANAGER, location=self.bole)
        self.store = {}
        self.changes = []
        location_changed.connect(self.on_change)

    def tearDown(self):
        location_changed.disconnect(self.on_change)

    def on_change(self, sender, user, location_id, **kwargs):
        self.changes.append((user.pk, location_id))

    def test_admin_defaults_to_all(self):
        selection = LocationSelection(self.admin, self.store)
        self.assertEqual(selection.selected, ALL_LOCATIONS)
        self.assertTrue(selection.selector_visible)
        self.assertEqual({o['id'] for o in selection.options}, {self.bole.id, self.piassa.id})

    def test_admin_selects_location_and_is_notified(self):
        selection = LocationSelection(self.admin, self.store)
        location_filter = selection.select(self.piassa.id)
        self.assertEqual(location_filter, LocationFilter(location_id=self.piassa.id))
        self.assertEqual(self.store[SELECTION_STORAGE_KEY], self.piassa.id)
        self.assertEqual(self.changes, [(self.admin.pk, self.piassa.id)])

    def test_persisted_selection_survives_new_instance(self):
        LocationSelection(self.admin, self.store).select(self.bole.id)
        self.assertEqual(LocationSelection(self.admin, self.store).selected, self.bole.id)

    def test_persisted_inactive_location_falls_back_to_all(self):
        self.store[SELECTION_STORAGE_KEY] = self.piassa.id
        self.piassa.is_active = False
        self.piassa.save()
        self.assertEqual(LocationSelection(self.admin, self.store).selected, ALL_LOCATIONS)

    def test_select_all_clears_store(self):
        selection = LocationSelection(self.admin, self.store)
        selection.select(self.bole.id)
        selection.select(ALL_LOCATIONS)
        self.assertNotIn(SELECTION_STORAGE_KEY, self.store)
        self.assertTrue(selection.current_filter().include_all)
        self.assertEqual(self.changes[-1], (self.admin.pk, None))

    def test_select_unknown_location(self):
        with self.assertRaises(ValidationError):
            LocationSelection(self.admin, self.store).select(999999)

    def test_staff_is_pinned(self):
        selection = LocationSelection(self.staff, self.store)
        self.assertFalse(selection.selector_visible)
        self.assertEqual(selection.selected, self.bole.id)
        self.assertEqual([o['id'] for o in selection.options], [self.bole.id])
        with self.assertRaises(Forbidden):
            selection.select(self.piassa.id)
        self.assertEqual(self.changes, [])

    def test_staff_without_location(self):
        selection = LocationSelection(TestDataFactory.create_user(role=SALES), self.store)
        self.assertTrue(selection.no_locations_available)
        self.assertEqual(selection.options, [])
        self.assertTrue(selection.current_filter().is_unassigned_only)


class LocationCacheTests(TestCase):

    def test_active_locations_cached_and_invalidated_on_save(self):
        bole = TestDataFactory.create_location(name='Bole')
        self.assertEqual([loc['name'] for loc in get_cached_active_locations()], ['Bole'])
        self.assertTrue(reference_cache.has(ACTIVE_LOCATIONS_KEY))

        bole.is_active = False
        bole.save()
        self.assertFalse(reference_cache.has(ACTIVE_LOCATIONS_KEY))
        self.assertEqual(get_cached_active_locations(), [])


class LocationAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.bole = TestDataFactory.create_location(name='Bole', code='BOL')
        self.piassa = TestDataFactory.create_location(name='Piassa', code='PIA')
        self.admin = TestDataFactory.create_admin()
        self.staff = TestDataFactory.create_user(role=MANAGER, location=self.bole)

    def test_staff_sees_only_own_location(self):
        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/locations/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([loc['id'] for loc in response.data], [self.bole.id])

    def test_staff_cannot_create_location(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/locations/', {'name': 'CMC', 'code': 'cmc'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_location_with_uppercase_code(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/locations/', {'name': 'CMC', 'code': 'cmc'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['code'], 'CMC')

    def test_duplicate_code_rejected(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/locations/', {'name': 'Other', 'code': 'BOL'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('code', response.data['details'])

    def test_delete_deactivates(self):
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/locations/{self.piassa.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Location.objects.get(pk=self.piassa.id).is_active)

    def test_selection_endpoint_for_admin(self):
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/locations/selection/')
        self.assertEqual(response.data['selected'], ALL_LOCATIONS)
        self.assertTrue(response.data['selector_visible'])

        response = self.client.post('/api/locations/selection/', {'location': self.bole.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['selected'], self.bole.id)

    def test_selection_endpoint_rejects_staff_change(self):
        self.client.authenticate_user(self.staff)
        response = self.client.post('/api/locations/selection/', {'location': self.piassa.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
