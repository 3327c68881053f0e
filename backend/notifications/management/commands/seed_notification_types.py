"""
Create the notification type catalogue and its default templates.
Usage: python manage.py seed_notification_types [--update-templates]
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import DatabaseError, transaction
from backend.core.model_cache import invalidate_notification_type_cache
from backend.notifications.models import NotificationType, NotificationTemplate

CATALOGUE = [
    {
        'name': 'device_registered',
        'description': 'A device was registered for repair',
        'category': 'device',
        'kind': 'info',
        'template': {
            'title': 'Device Registered',
            'message': 'New {device_type} from {customer_name}: {problem_description}',
            'email_subject': 'New device registered ({receipt_number})',
            'email_body': '{customer_name} dropped off a {brand} {model}. Problem: {problem_description}',
        },
    },
    {
        'name': 'device_status_change',
        'description': 'The repair status of a device changed',
        'category': 'device',
        'kind': 'info',
        'template': {
            'title': 'Device Status Updated',
            'message': '{device_type} of {customer_name} moved from {old_status} to {new_status}',
        },
    },
    {
        'name': 'device_tracked',
        'description': 'A customer looked up a device with its tracking code',
        'category': 'device',
        'kind': 'info',
        'template': {
            'title': 'Device Tracked',
            'message': '{customer_name} checked the status of {receipt_number}',
        },
    },
    {
        'name': 'customer_feedback',
        'description': 'New customer feedback received',
        'category': 'customer',
        'kind': 'success',
        'template': {
            'title': 'Customer Feedback',
            'message': '{customer_name} rated the service {rating}/5',
        },
    },
    {
        'name': 'customer_message',
        'description': 'New customer message received',
        'category': 'customer',
        'kind': 'info',
        'template': {
            'title': 'New Customer Message',
            'message': 'New message received from {customer_name}',
        },
    },
    {
        'name': 'low_stock_alert',
        'description': 'An inventory item fell to or below its minimum stock level',
        'category': 'inventory',
        'kind': 'warning',
        'template': {
            'title': 'Low Stock Alert',
            'message': '{item_name} is running low ({current_stock} remaining, minimum {min_stock_level})',
        },
    },
    {
        'name': 'system_alert',
        'description': 'System notifications from administrators',
        'category': 'system',
        'kind': 'warning',
        'template': {
            'title': 'System Notification',
            'message': 'You have a new system notification',
        },
    },
]


class Command(BaseCommand):
    help = 'Create the notification types and default templates'

    def add_arguments(self, parser):
        parser.add_argument(
            '--update-templates',
            action='store_true',
            help='Overwrite the wording of existing default templates',
        )

    def handle(self, *args, **options):
        created_types = 0
        created_templates = 0

        try:
            with transaction.atomic():
                for entry in CATALOGUE:
                    notification_type, created = NotificationType.objects.get_or_create(
                        name=entry['name'],
                        defaults={
                            'description': entry['description'],
                            'category': entry['category'],
                            'kind': entry['kind'],
                        },
                    )
                    if created:
                        created_types += 1
                        self.stdout.write(self.style.SUCCESS(f'✓ Created type: {entry["name"]}'))
                    else:
                        self.stdout.write(f'  Type already exists: {entry["name"]}')

                    wording = entry['template']
                    template, template_created = NotificationTemplate.objects.get_or_create(
                        type=notification_type,
                        name='default',
                        defaults=wording,
                    )
                    if template_created:
                        created_templates += 1
                    elif options['update_templates']:
                        for field, value in wording.items():
                            setattr(template, field, value)
                        template.save()
                        self.stdout.write(f'  Updated template for: {entry["name"]}')
        except DatabaseError as e:
            raise CommandError(f'Seeding notification types failed: {e}')

        invalidate_notification_type_cache()
        self.stdout.write(self.style.SUCCESS(
            f'\nDone: {created_types} types and {created_templates} templates created'
        ))
