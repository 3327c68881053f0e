import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db import transaction
from django.db.models import F
from django.shortcuts import get_object_or_404
from backend.core.access import evaluate_access, permission_required
from backend.core.errors import Forbidden, NotFound, ValidationError
from backend.locations.scoping import enforce_location_ownership, location_filter_for_request, scope_queryset
from .filters import InventoryItemFilter
from .models import InventoryItem, StockAdjustment
from .serializers import InventoryItemSerializer, StockAdjustmentSerializer
from .stock import apply_adjustment, check_low_stock

logger = logging.getLogger('backend.inventory')


def require_manage_inventory(request):
    decision = evaluate_access(request.user, required_permissions=['manage_inventory'])
    if not decision.allowed:
        raise Forbidden(decision.reason)


def scoped_items(request):
    return scope_queryset(InventoryItem.objects.select_related('location'), location_filter_for_request(request))


# Inventory item views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('view_inventory')])
def item_list_create(request):
    """List inventory items at the current location or create a new item"""
    if request.method == 'GET':
        filterset = InventoryItemFilter(request.query_params, queryset=scoped_items(request))
        return Response(InventoryItemSerializer(filterset.qs, many=True).data)

    require_manage_inventory(request)
    data = enforce_location_ownership(request.user, request.data)
    serializer = InventoryItemSerializer(data=data)
    if not serializer.is_valid():
        raise ValidationError('Invalid inventory item data', details=serializer.errors)
    with transaction.atomic():
        item = serializer.save()
        check_low_stock(item, None)
    logger.info(f"Inventory item {item.sku} created by {request.user.username}")
    return Response(InventoryItemSerializer(item).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, permission_required('view_inventory')])
def item_detail(request, pk):
    """Retrieve, update or deactivate an inventory item"""
    item = get_object_or_404(scoped_items(request), pk=pk)

    if request.method == 'GET':
        return Response(InventoryItemSerializer(item).data)

    require_manage_inventory(request)

    if request.method in ('PUT', 'PATCH'):
        data = enforce_location_ownership(request.user, request.data)
        previous_quantity = item.quantity
        serializer = InventoryItemSerializer(item, data=data, partial=request.method == 'PATCH')
        if not serializer.is_valid():
            raise ValidationError('Invalid inventory item data', details=serializer.errors)
        with transaction.atomic():
            item = serializer.save()
            check_low_stock(item, previous_quantity)
        return Response(InventoryItemSerializer(item).data)

    item.is_active = False
    item.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"Inventory item {item.sku} deactivated by {request.user.username}")
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@permission_classes([IsAuthenticated, permission_required('view_inventory')])
def low_stock_list(request):
    """Active items at or below their minimum stock level"""
    items = scoped_items(request).filter(is_active=True, quantity__lte=F('min_stock_level'))
    return Response(InventoryItemSerializer(items, many=True).data)


# Stock adjustment views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('view_inventory')])
def stock_adjustment_list_create(request):
    """List stock adjustments or record a new one"""
    if request.method == 'GET':
        adjustments = StockAdjustment.objects.select_related('item', 'created_by').filter(
            item__in=scoped_items(request)
        )
        item_id = request.query_params.get('item')
        if item_id:
            adjustments = adjustments.filter(item_id=item_id)
        return Response(StockAdjustmentSerializer(adjustments, many=True).data)

    require_manage_inventory(request)
    serializer = StockAdjustmentSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid stock adjustment', details=serializer.errors)
    if not scoped_items(request).filter(pk=serializer.validated_data['item'].pk).exists():
        raise NotFound('Inventory item not found')

    with transaction.atomic():
        adjustment = serializer.save(created_by=request.user)
        apply_adjustment(adjustment)
    return Response(StockAdjustmentSerializer(adjustment).data, status=status.HTTP_201_CREATED)
