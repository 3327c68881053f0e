import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from backend.core.access import IsAdminRole
from backend.core.errors import ValidationError
from backend.core.model_cache import get_cached_active_notification_types
from .serializers import (
    NotificationSerializer, NotificationTypeSerializer, NotificationPreferenceSerializer,
    PreferenceUpdateSerializer, SendNotificationSerializer,
)
from .service import (
    NotificationService, AllAdmins, SpecificUsers, LocationStaff, RoleMembers,
)

logger = logging.getLogger('backend.notifications')


def _int_param(request, name, default, maximum=None):
    value = request.query_params.get(name)
    if value in (None, ''):
        return default
    try:
        value = int(value)
    except ValueError:
        raise ValidationError(f"'{name}' must be an integer")
    if value < 0:
        raise ValidationError(f"'{name}' must not be negative")
    return min(value, maximum) if maximum else value


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notification_list(request):
    """Notifications of the current user, newest first"""
    notifications = NotificationService.list_for_user(
        request.user,
        status=request.query_params.get('status', 'all'),
        limit=_int_param(request, 'limit', 50, maximum=200),
        offset=_int_param(request, 'offset', 0),
        include_expired=request.query_params.get('include_expired', '').lower() in ('true', '1'),
    )
    return Response(NotificationSerializer(notifications, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def unread_count(request):
    return Response({'count': NotificationService.unread_count(request.user)})


@api_view(['PATCH', 'POST'])
@permission_classes([IsAuthenticated])
def mark_read(request, pk):
    notification = NotificationService.mark_as_read(pk, request.user)
    return Response(NotificationSerializer(notification).data)


@api_view(['PATCH', 'POST'])
@permission_classes([IsAuthenticated])
def mark_all_read(request):
    updated = NotificationService.mark_all_as_read(request.user)
    return Response({'updated': updated})


@api_view(['PATCH', 'POST'])
@permission_classes([IsAuthenticated])
def archive(request, pk):
    notification = NotificationService.archive(pk, request.user)
    return Response(NotificationSerializer(notification).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notification_type_list(request):
    """Active notification types (cached)"""
    types = get_cached_active_notification_types()
    return Response(NotificationTypeSerializer(types, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def preference_list(request):
    """Effective preferences of the current user for every active type"""
    return Response(NotificationService.get_preferences(request.user))


@api_view(['PUT', 'PATCH'])
@permission_classes([IsAuthenticated])
def preference_update(request, type_id):
    serializer = PreferenceUpdateSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid preference data', details=serializer.errors)
    logger.info(f"User {request.user.username} updating preference for type {type_id}: {serializer.validated_data}")
    preference = NotificationService.update_preference(request.user, type_id, **serializer.validated_data)
    return Response(NotificationPreferenceSerializer(preference).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def send_notification(request):
    """Manual fan-out (admin only)"""
    serializer = SendNotificationSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid notification request', details=serializer.errors)
    payload = serializer.validated_data

    rule = {
        'all_admins': lambda: AllAdmins(),
        'users': lambda: SpecificUsers(payload['user_ids']),
        'location': lambda: LocationStaff(payload['location_id']),
        'roles': lambda: RoleMembers(payload['roles']),
    }[payload['recipients']]()

    result = NotificationService.fan_out(
        payload['type_name'],
        rule,
        title=payload.get('title') or None,
        message=payload.get('message') or None,
        data=payload.get('data'),
        priority=payload['priority'],
        expires_at=payload.get('expires_at'),
        sender=request.user,
    )
    logger.info(f"User {request.user.username} sent '{payload['type_name']}' to {result.created} recipients")
    return Response({
        'created': result.created,
        'skipped': len(result.skipped_user_ids),
        'notifications': NotificationSerializer(result.notifications, many=True).data,
    }, status=status.HTTP_201_CREATED)
