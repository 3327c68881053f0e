"""
Location scoping.

Every list/detail query for location-owned entities goes through
scope_queryset() with the filter resolved for the requesting user:

- admins see all locations unless they picked one (X-Selected-Location header)
- other staff are confined to their assigned location
- staff without a location only match rows that have no location either
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db.models import Q
from django.dispatch import Signal

from backend.core.errors import Forbidden, ValidationError
from backend.core.model_cache import get_cached_active_locations
from backend.core.roles import ADMIN

logger = logging.getLogger('backend.locations')

ALL_LOCATIONS = 'all'
SELECTED_LOCATION_HEADER = 'HTTP_X_SELECTED_LOCATION'
SELECTION_STORAGE_KEY = 'currentLocationId'

# Sent when a location selection changes; receivers reload their data.
# kwargs: user, location_id (None means all locations)
location_changed = Signal()


@dataclass(frozen=True)
class LocationFilter:
    location_id: Optional[int] = None
    include_all: bool = False

    @property
    def is_unassigned_only(self):
        return not self.include_all and self.location_id is None


def _parse_location_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid location id: {value!r}')


def resolve_location_filter(user, selected=None):
    """Effective filter for `user`; `selected` is the admin's explicit choice if any"""
    if getattr(user, 'role', None) == ADMIN:
        if selected is None or str(selected).strip() in ('', ALL_LOCATIONS):
            return LocationFilter(include_all=True)
        return LocationFilter(location_id=_parse_location_id(str(selected).strip()))

    return LocationFilter(location_id=getattr(user, 'location_id', None))


def location_filter_for_request(request):
    return resolve_location_filter(request.user, request.META.get(SELECTED_LOCATION_HEADER))


def scope_queryset(queryset, location_filter, include_unassigned=False, field='location'):
    """Restrict `queryset` to the rows `location_filter` allows"""
    if location_filter.include_all:
        return queryset
    if location_filter.location_id is None:
        return queryset.filter(**{f'{field}__isnull': True})
    if include_unassigned:
        return queryset.filter(Q(**{f'{field}_id': location_filter.location_id}) | Q(**{f'{field}__isnull': True}))
    return queryset.filter(**{f'{field}_id': location_filter.location_id})


def enforce_location_ownership(user, data, field='location'):
    """
    Check the location a non-admin is writing to and fill it in when missing.

    Returns a mutable copy of `data`. Raises Forbidden when a non-admin tries
    to assign another location.
    """
    data = data.copy() if hasattr(data, 'copy') else dict(data)
    if getattr(user, 'role', None) == ADMIN:
        return data

    requested = data.get(field)
    if requested not in (None, ''):
        if user.location_id is None or _parse_location_id(requested) != user.location_id:
            logger.warning(f'User {user.username} tried to assign location {requested}')
            raise Forbidden('Access denied: You can only assign data to your assigned location')
    elif user.location_id is not None:
        data[field] = user.location_id
    return data


class LocationSelection:
    """
    Location picker state for one user.

    `store` is any mutable mapping that outlives the request (the session,
    browser storage on the dashboard side). Admins may pick any active
    location or "all"; other staff are pinned to their own location.
    """

    def __init__(self, user, store, locations=None):
        self.user = user
        self.store = store
        self._locations = locations

    @property
    def is_admin(self):
        return getattr(self.user, 'role', None) == ADMIN

    @property
    def locations(self):
        if self._locations is None:
            self._locations = get_cached_active_locations()
        return self._locations

    @property
    def selector_visible(self):
        return self.is_admin

    @property
    def options(self):
        if self.is_admin:
            return list(self.locations)
        if self.user.location_id is None:
            return []
        return [loc for loc in self.locations if loc['id'] == self.user.location_id]

    @property
    def selected(self):
        """Selected location id, ALL_LOCATIONS, or None when nothing is available"""
        if not self.is_admin:
            return self.user.location_id

        saved = self.store.get(SELECTION_STORAGE_KEY)
        if saved in (None, '', ALL_LOCATIONS):
            return ALL_LOCATIONS
        try:
            saved = int(saved)
        except (TypeError, ValueError):
            return ALL_LOCATIONS
        if any(loc['id'] == saved for loc in self.locations):
            return saved
        return ALL_LOCATIONS

    @property
    def no_locations_available(self):
        return not self.is_admin and self.user.location_id is None

    def current_filter(self):
        selected = self.selected
        return resolve_location_filter(self.user, None if selected == ALL_LOCATIONS else selected)

    def select(self, location_id):
        """Change the selection and broadcast location_changed"""
        if not self.is_admin:
            if location_id in (None, '', ALL_LOCATIONS) or _parse_location_id(location_id) != self.user.location_id:
                raise Forbidden('Only administrators can change the selected location')
            return self.current_filter()

        if location_id in (None, '', ALL_LOCATIONS):
            self.store.pop(SELECTION_STORAGE_KEY, None)
            new_id = None
        else:
            new_id = _parse_location_id(location_id)
            if not any(loc['id'] == new_id for loc in self.locations):
                raise ValidationError(f'Location {new_id} is not an active location')
            self.store[SELECTION_STORAGE_KEY] = new_id

        logger.info(f'User {self.user.username} selected location {new_id or ALL_LOCATIONS}')
        location_changed.send(sender=self.__class__, user=self.user, location_id=new_id)
        return self.current_filter()

    def describe(self):
        return {
            'selected': self.selected,
            'selector_visible': self.selector_visible,
            'no_locations_available': self.no_locations_available,
            'options': self.options,
        }
