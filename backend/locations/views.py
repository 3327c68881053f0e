import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.shortcuts import get_object_or_404
from backend.core.access import evaluate_access
from backend.core.errors import Forbidden, ValidationError
from backend.core.model_cache import get_cached_active_locations
from .models import Location
from .scoping import LocationSelection
from .serializers import LocationSerializer

logger = logging.getLogger('backend.locations')


def require_manage_locations(request):
    decision = evaluate_access(request.user, required_permissions=['manage_locations'])
    if not decision.allowed:
        logger.warning(f"User {request.user.username} attempted to modify locations: {decision.reason}")
        raise Forbidden(decision.reason)


def visible_locations(user):
    """Admins see every location, other staff only their own"""
    queryset = Location.objects.all()
    if user.is_admin:
        return queryset
    return queryset.filter(pk=user.location_id) if user.location_id else queryset.none()


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def location_list_create(request):
    """List locations or create a new one (create requires manage_locations)"""
    if request.method == 'GET':
        logger.info(f"User {request.user.username} requested location list")
        locations = visible_locations(request.user)
        is_active = request.query_params.get('is_active')
        if is_active is not None:
            locations = locations.filter(is_active=is_active.lower() in ('true', '1'))
        serializer = LocationSerializer(locations, many=True)
        return Response(serializer.data)

    require_manage_locations(request)
    logger.info(f"User {request.user.username} creating location with data: {request.data}")
    serializer = LocationSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Location creation validation failed: {serializer.errors}")
        raise ValidationError('Invalid location data', details=serializer.errors)
    location = serializer.save()
    logger.info(f"Location '{location.name}' created successfully by {request.user.username}")
    return Response(serializer.data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def active_location_list(request):
    """Active locations for selectors (cached)"""
    locations = get_cached_active_locations()
    if not request.user.is_admin:
        locations = [loc for loc in locations if loc['id'] == request.user.location_id]
    return Response(locations)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def location_detail(request, pk):
    """Retrieve, update or delete a location (update/delete requires manage_locations)"""
    location = get_object_or_404(visible_locations(request.user), pk=pk)

    if request.method == 'GET':
        logger.debug(f"User {request.user.username} retrieved location {pk}")
        return Response(LocationSerializer(location).data)

    require_manage_locations(request)

    if request.method in ('PUT', 'PATCH'):
        logger.info(f"User {request.user.username} updating location {pk} with data: {request.data}")
        serializer = LocationSerializer(location, data=request.data, partial=request.method == 'PATCH')
        if not serializer.is_valid():
            logger.warning(f"Location update validation failed: {serializer.errors}")
            raise ValidationError('Invalid location data', details=serializer.errors)
        serializer.save()
        logger.info(f"Location {pk} updated successfully")
        return Response(serializer.data)

    # DELETE deactivates; rows elsewhere keep pointing at the location
    logger.info(f"User {request.user.username} deactivating location {pk} ({location.name})")
    location.is_active = False
    location.save(update_fields=['is_active', 'updated_at'])
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def location_selection(request):
    """
    Effective location filter and selector options for the caller.

    POST {"location": <id> | "all"} stores an admin's choice in the session.
    """
    selection = LocationSelection(request.user, request.session)
    if request.method == 'POST':
        selection.select(request.data.get('location'))
    return Response(selection.describe())
