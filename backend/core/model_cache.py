"""
Caching for slow-changing reference data: active locations and active
notification types.

Entries live in the process-local reference_cache and are dropped whenever
the underlying rows are saved or deleted.
"""
import logging
import threading
from contextlib import contextmanager

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .ttl_cache import LONG, MEDIUM, reference_cache

logger = logging.getLogger(__name__)

# Cache key prefixes
LOCATION_KEY_PREFIX = 'location:'
ACTIVE_LOCATIONS_KEY = 'location_list:active'
NOTIFICATION_TYPE_KEY_PREFIX = 'notification_type:'
ACTIVE_NOTIFICATION_TYPES_KEY = 'notification_type_list:active'

# Locations change rarely; types only when seeded or edited in the admin
LOCATION_CACHE_TTL = LONG
NOTIFICATION_TYPE_CACHE_TTL = MEDIUM

_thread_locals = threading.local()


@contextmanager
def suspend_cache_signals():
    """
    Temporarily stop signal-driven invalidation (bulk loads).
    Call invalidate_all() after the block.
    """
    try:
        _thread_locals.suspended = True
        yield
    finally:
        _thread_locals.suspended = False


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


# ==================== LOCATIONS ====================

def location_to_dict(location):
    return {
        'id': location.id,
        'name': location.name,
        'code': location.code,
        'city': location.city,
        'is_active': location.is_active,
    }


def get_cached_active_locations():
    """Active locations as plain dicts, ordered by name"""
    def load():
        from backend.locations.models import Location
        return [location_to_dict(loc) for loc in Location.objects.filter(is_active=True).order_by('name')]

    return reference_cache.get_or_set(ACTIVE_LOCATIONS_KEY, load, LOCATION_CACHE_TTL)


def get_cached_location(location_id):
    key = f'{LOCATION_KEY_PREFIX}{location_id}'

    def load():
        from backend.locations.models import Location
        location = Location.objects.filter(pk=location_id).first()
        return location_to_dict(location) if location else None

    return reference_cache.get_or_set(key, load, LOCATION_CACHE_TTL)


def invalidate_location_cache(location=None):
    reference_cache.delete(ACTIVE_LOCATIONS_KEY)
    if location is not None:
        reference_cache.delete(f'{LOCATION_KEY_PREFIX}{location.pk}')
    else:
        reference_cache.delete_prefix(LOCATION_KEY_PREFIX)
    logger.debug('Invalidated location cache')


# ==================== NOTIFICATION TYPES ====================

def get_cached_notification_type(name):
    """The active NotificationType called `name`, or None"""
    key = f'{NOTIFICATION_TYPE_KEY_PREFIX}{name}'

    def load():
        from backend.notifications.models import NotificationType
        return NotificationType.objects.filter(name=name, is_active=True).first()

    return reference_cache.get_or_set(key, load, NOTIFICATION_TYPE_CACHE_TTL)


def get_cached_active_notification_types():
    def load():
        from backend.notifications.models import NotificationType
        return list(NotificationType.objects.filter(is_active=True).order_by('category', 'name'))

    return reference_cache.get_or_set(ACTIVE_NOTIFICATION_TYPES_KEY, load, NOTIFICATION_TYPE_CACHE_TTL)


def invalidate_notification_type_cache():
    reference_cache.delete(ACTIVE_NOTIFICATION_TYPES_KEY)
    reference_cache.delete_prefix(NOTIFICATION_TYPE_KEY_PREFIX)
    logger.debug('Invalidated notification type cache')


def invalidate_all():
    invalidate_location_cache()
    invalidate_notification_type_cache()


# ==================== DJANGO SIGNALS ====================

@receiver([post_save, post_delete])
def reference_data_changed(sender, instance, **kwargs):
    """Drop cached reference data when a location or notification type changes"""
    if is_suspended():
        return

    model_name = sender.__name__
    if model_name == 'Location':
        from backend.locations.models import Location
        if isinstance(instance, Location):
            invalidate_location_cache(instance)
    elif model_name in ('NotificationType', 'NotificationTemplate'):
        from backend.notifications.models import NotificationTemplate, NotificationType
        if isinstance(instance, (NotificationType, NotificationTemplate)):
            invalidate_notification_type_cache()
