import logging
from django.db import transaction
from backend.core.errors import ValidationError
from backend.notifications.events import notify_low_stock
from .models import InventoryItem

logger = logging.getLogger('backend.inventory')


def crossed_low_stock(item, previous_quantity):
    """True when this change took the item from above its minimum to at or below it"""
    if not item.is_active or item.min_stock_level <= 0:
        return False
    return item.is_low_stock and (previous_quantity is None or previous_quantity > item.min_stock_level)


def check_low_stock(item, previous_quantity):
    if crossed_low_stock(item, previous_quantity):
        logger.warning(f"Item {item.sku} is low on stock: {item.quantity} <= {item.min_stock_level}")
        notify_low_stock(item)
        return True
    return False


def apply_adjustment(adjustment):
    """Apply a saved adjustment to its item's quantity; stock never goes below zero"""
    with transaction.atomic():
        item = InventoryItem.objects.select_for_update().get(pk=adjustment.item_id)
        previous_quantity = item.quantity
        if adjustment.adjustment_type == 'in':
            item.quantity += adjustment.quantity
        else:
            if adjustment.quantity > item.quantity:
                raise ValidationError(
                    f"Cannot remove {adjustment.quantity} units of {item.sku}: only {item.quantity} in stock"
                )
            item.quantity -= adjustment.quantity
        item.save(update_fields=['quantity', 'updated_at'])
        check_low_stock(item, previous_quantity)
    logger.info(f"Stock of {item.sku}: {previous_quantity} -> {item.quantity} ({adjustment.reason})")
    return item
