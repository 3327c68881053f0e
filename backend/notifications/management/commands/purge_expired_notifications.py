"""
Delete notifications whose expires_at has passed.
Usage: python manage.py purge_expired_notifications [--dry-run]
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import DatabaseError
from django.utils import timezone
from backend.notifications.models import Notification
from backend.notifications.service import NotificationService


class Command(BaseCommand):
    help = 'Delete expired notifications (reads already hide them)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only report how many notifications would be deleted',
        )

    def handle(self, *args, **options):
        now = timezone.now()
        try:
            if options['dry_run']:
                count = Notification.objects.filter(expires_at__isnull=False, expires_at__lt=now).count()
                self.stdout.write(f'{count} expired notifications would be deleted')
                return
            deleted = NotificationService.cleanup_expired(now=now)
        except DatabaseError as e:
            raise CommandError(f'Purging expired notifications failed: {e}')
        self.stdout.write(self.style.SUCCESS(f'✓ Deleted {deleted} expired notifications'))
