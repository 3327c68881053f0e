"""
Business events that fan out notifications.

Each helper gathers the fields the templates need and schedules the fan-out
with notify_after_commit(), so callers can fire them from inside the
transaction that changed the data.
"""
import logging

from django.utils import timezone

from .service import AllAdmins, LocationStaff, notify_after_commit

logger = logging.getLogger('backend.notifications')

DEVICE_EVENTS = ('device_registered', 'device_status_change', 'device_tracked')


def device_event_data(device, extra=None):
    customer = device.customer
    data = {
        'device_id': device.pk,
        'receipt_number': device.receipt_number,
        'customer_name': customer.name if customer else 'Unknown Customer',
        'device_type': device.device_type or 'Unknown Device',
        'brand': device.brand or 'Unknown Brand',
        'model': device.model or 'Not Specified',
        'problem_description': device.problem_description or 'No description',
        'total_cost': device.total_cost_display,
        'status': device.status,
        'priority': device.priority,
    }
    data.update(extra or {})
    return data


def staff_for(location_id):
    """Admins plus the staff of the location; only admins when there is no location"""
    return LocationStaff(location_id) if location_id else AllAdmins()


def notify_device_event(device, type_name='device_registered', extra=None, sender=None):
    if type_name not in DEVICE_EVENTS:
        raise ValueError(f'Unknown device event: {type_name}')
    priority = 'high' if device.priority in ('high', 'urgent') else 'normal'
    notify_after_commit(
        type_name,
        staff_for(device.location_id),
        data=device_event_data(device, extra),
        related_entity=('device', device.pk),
        priority=priority,
        sender=sender,
    )


def notify_device_status_change(device, old_status, sender=None):
    notify_device_event(
        device,
        'device_status_change',
        extra={
            'old_status': old_status,
            'new_status': device.status,
            'updated_by': sender.username if sender else 'system',
        },
        sender=sender,
    )


def notify_device_tracked(device):
    notify_device_event(device, 'device_tracked', extra={'tracked_at': timezone.now().isoformat()})


def notify_low_stock(item):
    notify_after_commit(
        'low_stock_alert',
        staff_for(item.location_id),
        data={
            'item_id': item.pk,
            'item_name': item.name,
            'sku': item.sku,
            'current_stock': item.quantity,
            'min_stock_level': item.min_stock_level,
        },
        related_entity=('inventory', item.pk),
        priority='high',
    )


def notify_customer_feedback(feedback):
    notify_after_commit(
        'customer_feedback',
        AllAdmins(),
        data={
            'feedback_id': feedback.pk,
            'customer_name': feedback.customer_name,
            'customer_email': feedback.customer_email,
            'service_type': feedback.service_type,
            'rating': feedback.rating or 0,
            'comment': feedback.comment or '',
        },
        related_entity=('customer_feedback', feedback.pk),
    )
