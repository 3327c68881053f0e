import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework.throttling import AnonRateThrottle
from django.db import transaction
from django.db.models.deletion import ProtectedError
from django.shortcuts import get_object_or_404
from backend.core.access import evaluate_access, permission_required
from backend.core.errors import Conflict, Forbidden, NotFound, ValidationError
from backend.locations.scoping import enforce_location_ownership, location_filter_for_request, scope_queryset
from backend.notifications.events import (
    notify_customer_feedback, notify_device_event, notify_device_status_change, notify_device_tracked,
)
from .filters import CustomerFilter, DeviceFilter
from .models import Customer, Device, CustomerFeedback
from .serializers import (
    CustomerSerializer, DeviceSerializer, DeviceStatusSerializer, DeviceTrackingSerializer,
    CustomerFeedbackSerializer,
)

logger = logging.getLogger('backend.repairs')


def scoped_customers(request):
    # Customers without a location are shared by every branch
    return scope_queryset(
        Customer.objects.select_related('location'), location_filter_for_request(request), include_unassigned=True
    )


def scoped_devices(request):
    return scope_queryset(
        Device.objects.select_related('customer', 'location', 'technician', 'created_by'),
        location_filter_for_request(request),
    )


# Customer views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('view_customers')])
def customer_list_create(request):
    """List customers visible at the current location or create a new customer"""
    if request.method == 'GET':
        filterset = CustomerFilter(request.query_params, queryset=scoped_customers(request))
        serializer = CustomerSerializer(filterset.qs, many=True)
        return Response(serializer.data)

    data = enforce_location_ownership(request.user, request.data)
    logger.info(f"User {request.user.username} creating customer with data: {data}")
    serializer = CustomerSerializer(data=data)
    if not serializer.is_valid():
        logger.warning(f"Customer creation validation failed: {serializer.errors}")
        raise ValidationError('Invalid customer data', details=serializer.errors)
    serializer.save()
    return Response(serializer.data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, permission_required('view_customers')])
def customer_detail(request, pk):
    """Retrieve, update or delete a customer"""
    customer = get_object_or_404(scoped_customers(request), pk=pk)

    if request.method == 'GET':
        return Response(CustomerSerializer(customer).data)

    if request.method in ('PUT', 'PATCH'):
        data = enforce_location_ownership(request.user, request.data)
        serializer = CustomerSerializer(customer, data=data, partial=request.method == 'PATCH')
        if not serializer.is_valid():
            raise ValidationError('Invalid customer data', details=serializer.errors)
        serializer.save()
        logger.info(f"Customer {pk} updated by {request.user.username}")
        return Response(serializer.data)

    try:
        customer.delete()
    except ProtectedError:
        raise Conflict('Customer has registered devices and cannot be deleted')
    logger.info(f"Customer {pk} deleted by {request.user.username}")
    return Response(status=status.HTTP_204_NO_CONTENT)


# Device views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def device_list_create(request):
    """List devices at the current location or register a new one"""
    if request.method == 'GET':
        filterset = DeviceFilter(request.query_params, queryset=scoped_devices(request))
        return Response(DeviceSerializer(filterset.qs, many=True).data)

    data = enforce_location_ownership(request.user, request.data)
    serializer = DeviceSerializer(data=data)
    if not serializer.is_valid():
        logger.warning(f"Device registration validation failed: {serializer.errors}")
        raise ValidationError('Invalid device data', details=serializer.errors)

    customer = serializer.validated_data['customer']
    if not scoped_customers(request).filter(pk=customer.pk).exists():
        raise NotFound('Customer not found')

    with transaction.atomic():
        device = serializer.save(created_by=request.user)
        notify_device_event(device, 'device_registered', sender=request.user)
    logger.info(f"Device {device.receipt_number} registered by {request.user.username}")
    return Response(DeviceSerializer(device).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def device_detail(request, pk):
    """Retrieve, update or delete a device"""
    device = get_object_or_404(scoped_devices(request), pk=pk)

    if request.method == 'GET':
        return Response(DeviceSerializer(device).data)

    if request.method in ('PUT', 'PATCH'):
        data = enforce_location_ownership(request.user, request.data)
        old_status = device.status
        serializer = DeviceSerializer(device, data=data, partial=request.method == 'PATCH')
        if not serializer.is_valid():
            raise ValidationError('Invalid device data', details=serializer.errors)

        customer = serializer.validated_data.get('customer')
        if customer is not None and not scoped_customers(request).filter(pk=customer.pk).exists():
            raise NotFound('Customer not found')

        new_status = serializer.validated_data.get('status', old_status)
        if new_status != old_status:
            decision = evaluate_access(request.user, required_permissions=['manage_devices'])
            if not decision.allowed:
                logger.warning(f"Status change on device {pk} denied for {request.user.username}: {decision.reason}")
                raise Forbidden(decision.reason)

        with transaction.atomic():
            device = serializer.save()
            if device.status != old_status:
                notify_device_status_change(device, old_status, sender=request.user)
        return Response(DeviceSerializer(device).data)

    device.delete()
    logger.info(f"Device {pk} deleted by {request.user.username}")
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['PATCH', 'POST'])
@permission_classes([IsAuthenticated, permission_required('manage_devices')])
def device_status_update(request, pk):
    """Move a device to a new repair status"""
    device = get_object_or_404(scoped_devices(request), pk=pk)
    serializer = DeviceStatusSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid status update', details=serializer.errors)

    old_status = device.status
    device.status = serializer.validated_data['status']
    update_fields = ['status', 'updated_at']
    if 'total_cost' in serializer.validated_data:
        device.total_cost = serializer.validated_data['total_cost']
        update_fields.append('total_cost')

    with transaction.atomic():
        device.save(update_fields=update_fields)
        if device.status != old_status:
            notify_device_status_change(device, old_status, sender=request.user)
    logger.info(f"Device {device.receipt_number}: {old_status} -> {device.status} by {request.user.username}")
    return Response(DeviceSerializer(device).data)


@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def track_device(request, receipt_number):
    """Public repair tracking by receipt number"""
    device = Device.objects.select_related('customer', 'location').filter(
        receipt_number__iexact=receipt_number.strip()
    ).first()
    if device is None:
        raise NotFound('No repair found for this receipt number')
    notify_device_tracked(device)
    return Response(DeviceTrackingSerializer(device).data)


# Feedback views
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def feedback_create(request):
    """Customers leave feedback; admins are notified"""
    serializer = CustomerFeedbackSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid feedback data', details=serializer.errors)

    device = serializer.validated_data.get('device')
    with transaction.atomic():
        feedback = serializer.save(
            customer=device.customer if device else None,
            location=device.location if device else None,
        )
        notify_customer_feedback(feedback)
    return Response(CustomerFeedbackSerializer(feedback).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, permission_required('view_customers')])
def feedback_list(request):
    queryset = scope_queryset(
        CustomerFeedback.objects.select_related('device', 'location'),
        location_filter_for_request(request),
        include_unassigned=True,
    )
    return Response(CustomerFeedbackSerializer(queryset, many=True).data)
