"""
Notification fan-out service.

NotificationService.fan_out() turns one business event into one
Notification row per eligible recipient:

- the type must exist and be active (NotFound otherwise)
- data must be a JSON object and priority a known level (ValidationError)
- recipients come from a rule (AllAdmins, SpecificUsers, LocationStaff,
  RoleMembers); only active users are considered
- each recipient's preference for the type decides whether an in-app row is
  created; a missing preference row means the channel defaults
- all rows of one event are written in a single transaction, and any database
  failure surfaces as InternalError with nothing written

Email and live socket delivery run after the rows are committed and never
fail the fan-out. notify_after_commit() is the hook business code uses so
that the notification itself never rolls back the triggering operation.
"""
import json
import logging
from dataclasses import dataclass, field

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone

from backend.core.errors import InternalError, NotFound, ValidationError
from backend.core.model_cache import get_cached_active_notification_types, get_cached_notification_type
from backend.core.roles import ADMIN

from .models import Notification, NotificationPreference, NotificationType
from .signals import fanout_failed

logger = logging.getLogger('backend.notifications')

User = get_user_model()

PRIORITIES = ('low', 'normal', 'high', 'urgent')
LIST_STATUSES = ('all', 'unread', 'read', 'archived')

DEFAULT_TITLE = 'Notification'
DEFAULT_MESSAGE = 'You have a new notification'

DEFAULT_PREFERENCES = {
    'enabled': True,
    'email_enabled': True,
    'sms_enabled': False,
    'push_enabled': True,
    'in_app_enabled': True,
}
PREFERENCE_FLAGS = tuple(DEFAULT_PREFERENCES)


# ==================== RECIPIENT RULES ====================

class RecipientRule:
    def users(self):
        raise NotImplementedError

    def resolve(self):
        """Active candidate users, ordered by id"""
        return list(self.users().filter(is_active=True).order_by('id'))


@dataclass(frozen=True)
class AllAdmins(RecipientRule):
    def users(self):
        return User.objects.filter(role=ADMIN)


@dataclass(frozen=True)
class SpecificUsers(RecipientRule):
    user_ids: tuple = ()

    def __init__(self, user_ids):
        object.__setattr__(self, 'user_ids', tuple(user_ids))

    def users(self):
        return User.objects.filter(pk__in=self.user_ids)


@dataclass(frozen=True)
class LocationStaff(RecipientRule):
    """Staff assigned to a location, optionally with every admin as well"""
    location_id: int
    include_admins: bool = True

    def users(self):
        condition = Q(location_id=self.location_id)
        if self.include_admins:
            condition |= Q(role=ADMIN)
        return User.objects.filter(condition)


@dataclass(frozen=True)
class RoleMembers(RecipientRule):
    roles: tuple = ()

    def __init__(self, roles):
        object.__setattr__(self, 'roles', (roles,) if isinstance(roles, str) else tuple(roles))

    def users(self):
        return User.objects.filter(role__in=self.roles)


@dataclass
class FanOutResult:
    type_name: str
    notifications: list = field(default_factory=list)
    skipped_user_ids: list = field(default_factory=list)

    @property
    def created(self):
        return len(self.notifications)


# ==================== HELPERS ====================

class _TemplateValues(dict):
    def __missing__(self, key):
        return '{' + key + '}'


def render_template_text(text, data):
    """Fill {placeholders} from data, leaving unknown ones untouched"""
    if not text:
        return text
    try:
        return text.format_map(_TemplateValues(data or {}))
    except (ValueError, IndexError, AttributeError, KeyError):
        return text


def validate_payload(data):
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError('Notification data must be a JSON object')
    try:
        json.dumps(data)
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Notification data is not JSON serialisable: {e}')
    return data


def effective_preferences(users, notification_type):
    """Map user id -> preference flags, defaults filled in for users without a row"""
    rows = NotificationPreference.objects.filter(
        type=notification_type, user_id__in=[u.pk for u in users]
    )
    effective = {u.pk: dict(DEFAULT_PREFERENCES) for u in users}
    for row in rows:
        effective[row.user_id] = {flag: getattr(row, flag) for flag in PREFERENCE_FLAGS}
    return effective


def _not_expired():
    return Q(expires_at__isnull=True) | Q(expires_at__gt=timezone.now())


def _related_entity(related_entity):
    if related_entity is None:
        return None, None
    if isinstance(related_entity, (tuple, list)):
        entity_type, entity_id = related_entity
        return entity_type, str(entity_id)
    return related_entity._meta.model_name, str(related_entity.pk)


# ==================== SERVICE ====================

class NotificationService:

    @staticmethod
    def fan_out(type_name, recipients, title=None, message=None, data=None, related_entity=None,
                priority='normal', expires_at=None, sender=None) -> FanOutResult:
        if priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority '{priority}'", details={'allowed': list(PRIORITIES)})
        data = validate_payload(data)
        if not isinstance(recipients, RecipientRule):
            raise ValidationError('recipients must be a recipient rule')

        notification_type = get_cached_notification_type(type_name)
        if notification_type is None:
            raise NotFound(f"Notification type '{type_name}' not found")

        entity_type, entity_id = _related_entity(related_entity)
        result = FanOutResult(type_name=type_name)

        try:
            with transaction.atomic():
                template = notification_type.templates.filter(is_active=True).order_by('id').first()
                final_title = title or (template and render_template_text(template.title, data)) or DEFAULT_TITLE
                final_message = (
                    message or (template and render_template_text(template.message, data)) or DEFAULT_MESSAGE
                )

                users = recipients.resolve()
                preferences = effective_preferences(users, notification_type)
                for user in users:
                    prefs = preferences[user.pk]
                    if not (prefs['enabled'] and prefs['in_app_enabled']):
                        result.skipped_user_ids.append(user.pk)
                        continue
                    notification = Notification.objects.create(
                        type=notification_type,
                        recipient=user,
                        sender=sender,
                        title=final_title,
                        message=final_message,
                        data=data,
                        priority=priority,
                        related_entity_type=entity_type,
                        related_entity_id=entity_id,
                        expires_at=expires_at,
                    )
                    result.notifications.append(notification)
        except DatabaseError as e:
            logger.error(f"Fan-out of '{type_name}' failed, nothing was written: {e}", exc_info=True)
            raise InternalError('Failed to create notifications') from e

        logger.info(
            f"Fan-out '{type_name}': created {result.created}, skipped {len(result.skipped_user_ids)}"
        )

        email_recipients = [
            user for user in users
            if preferences[user.pk]['enabled'] and preferences[user.pk]['email_enabled'] and user.email
        ]
        push_notifications = [
            n for n in result.notifications if preferences[n.recipient_id]['push_enabled']
        ]
        if email_recipients or push_notifications:
            from .delivery import deliver
            transaction.on_commit(lambda: deliver(
                email_recipients, push_notifications, final_title, final_message, template, data
            ))
        return result

    # ---------- reading ----------

    @staticmethod
    def list_for_user(user, status='all', limit=50, offset=0, include_expired=False):
        if status not in LIST_STATUSES:
            raise ValidationError(f"Invalid status '{status}'", details={'allowed': list(LIST_STATUSES)})
        queryset = Notification.objects.filter(recipient=user).select_related('type', 'sender')
        if status != 'all':
            queryset = queryset.filter(status=status)
        if not include_expired:
            queryset = queryset.filter(_not_expired())
        return list(queryset.order_by('-created_at')[offset:offset + limit])

    @staticmethod
    def unread_count(user):
        return Notification.objects.filter(
            _not_expired(), recipient=user, status=Notification.STATUS_UNREAD
        ).count()

    # ---------- status changes ----------

    @staticmethod
    def _get_for_user(notification_id, user):
        try:
            return Notification.objects.get(pk=notification_id, recipient=user)
        except (Notification.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFound('Notification not found')

    @staticmethod
    def mark_as_read(notification_id, user):
        notification = NotificationService._get_for_user(notification_id, user)
        notification.status = Notification.STATUS_READ
        notification.read_at = timezone.now()
        notification.save(update_fields=['status', 'read_at', 'updated_at'])
        return notification

    @staticmethod
    def mark_all_as_read(user):
        updated = Notification.objects.filter(
            recipient=user, status=Notification.STATUS_UNREAD
        ).update(status=Notification.STATUS_READ, read_at=timezone.now(), updated_at=timezone.now())
        logger.info(f"Marked {updated} notifications as read for user {user.pk}")
        return updated

    @staticmethod
    def archive(notification_id, user):
        notification = NotificationService._get_for_user(notification_id, user)
        notification.status = Notification.STATUS_ARCHIVED
        notification.save(update_fields=['status', 'updated_at'])
        return notification

    @staticmethod
    def cleanup_expired(now=None):
        """Delete notifications whose expiry has passed; returns the number deleted"""
        now = now or timezone.now()
        deleted, _ = Notification.objects.filter(expires_at__isnull=False, expires_at__lt=now).delete()
        logger.info(f"Deleted {deleted} expired notifications")
        return deleted

    # ---------- preferences ----------

    @staticmethod
    def get_preferences(user):
        """Effective preferences for every active type"""
        types = get_cached_active_notification_types()
        rows = {
            row.type_id: row
            for row in NotificationPreference.objects.filter(user=user)
        }
        preferences = []
        for notification_type in types:
            row = rows.get(notification_type.pk)
            flags = (
                {flag: getattr(row, flag) for flag in PREFERENCE_FLAGS} if row else dict(DEFAULT_PREFERENCES)
            )
            preferences.append({
                'type': {
                    'id': notification_type.pk,
                    'name': notification_type.name,
                    'category': notification_type.category,
                    'description': notification_type.description,
                },
                'is_default': row is None,
                **flags,
            })
        return preferences

    @staticmethod
    def update_preference(user, type_id, **flags):
        """Create or update the (user, type) preference; unspecified flags keep their value"""
        unknown = set(flags) - set(PREFERENCE_FLAGS)
        if unknown:
            raise ValidationError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
        for name, value in flags.items():
            if not isinstance(value, bool):
                raise ValidationError(f"Preference '{name}' must be true or false")

        try:
            notification_type = NotificationType.objects.get(pk=type_id)
        except (NotificationType.DoesNotExist, ValueError):
            raise NotFound('Notification type not found')

        preference, created = NotificationPreference.objects.get_or_create(
            user=user, type=notification_type, defaults={**DEFAULT_PREFERENCES, **flags}
        )
        if not created and flags:
            for name, value in flags.items():
                setattr(preference, name, value)
            preference.save(update_fields=[*flags, 'updated_at'])
        logger.info(f"Preference for user {user.pk} / type {notification_type.name} saved: {flags}")
        return preference


def notify_after_commit(type_name, recipients, **kwargs):
    """
    Schedule a fan-out to run once the current transaction commits.

    Failures are logged and announced through the fanout_failed signal; they
    never reach the request that triggered the event.
    """
    def run():
        try:
            NotificationService.fan_out(type_name, recipients, **kwargs)
        except Exception as e:
            logger.error(f"Post-commit fan-out of '{type_name}' failed: {e}")
            fanout_failed.send(
                sender=NotificationService, type_name=type_name, recipients=recipients, error=e
            )

    transaction.on_commit(run)
