import uuid

from django.conf import settings
from django.db import models


class NotificationType(models.Model):
    """Catalogue entry describing one kind of business event"""
    KIND_CHOICES = [
        ('info', 'Info'),
        ('warning', 'Warning'),
        ('error', 'Error'),
        ('success', 'Success'),
    ]

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=50, default='general')
    kind = models.CharField(max_length=20, choices=KIND_CHOICES, default='info')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'notification_types'
        ordering = ['category', 'name']


class NotificationTemplate(models.Model):
    """Default wording for a type; {placeholders} are filled from the notification data"""
    type = models.ForeignKey(NotificationType, on_delete=models.CASCADE, related_name='templates')
    name = models.CharField(max_length=100)
    title = models.CharField(max_length=255)
    message = models.TextField()
    email_subject = models.CharField(max_length=255, blank=True)
    email_body = models.TextField(blank=True)
    sms_message = models.TextField(blank=True)
    variables = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.type.name}: {self.name}"

    class Meta:
        db_table = 'notification_templates'


class Notification(models.Model):
    """One notification addressed to one user. Content never changes after creation."""
    STATUS_UNREAD = 'unread'
    STATUS_READ = 'read'
    STATUS_ARCHIVED = 'archived'
    STATUS_CHOICES = [
        (STATUS_UNREAD, 'Unread'),
        (STATUS_READ, 'Read'),
        (STATUS_ARCHIVED, 'Archived'),
    ]
    PRIORITY_CHOICES = [
        ('low', 'Low'),
        ('normal', 'Normal'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    type = models.ForeignKey(NotificationType, on_delete=models.PROTECT, related_name='notifications')
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notifications'
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='sent_notifications'
    )
    title = models.CharField(max_length=255)
    message = models.TextField()
    data = models.JSONField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_UNREAD)
    priority = models.CharField(max_length=20, choices=PRIORITY_CHOICES, default='normal')
    related_entity_type = models.CharField(max_length=50, blank=True, null=True)
    related_entity_id = models.CharField(max_length=64, blank=True, null=True)
    read_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.title} -> {self.recipient_id}"

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['recipient', 'status'], name='notif_recipient_status_idx'),
            models.Index(fields=['expires_at'], name='notif_expires_idx'),
        ]


class NotificationPreference(models.Model):
    """Per-user, per-type channel switches. A missing row means the defaults below."""
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notification_preferences'
    )
    type = models.ForeignKey(NotificationType, on_delete=models.CASCADE, related_name='preferences')
    enabled = models.BooleanField(default=True)
    email_enabled = models.BooleanField(default=True)
    sms_enabled = models.BooleanField(default=False)
    push_enabled = models.BooleanField(default=True)
    in_app_enabled = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user_id}:{self.type_id}"

    class Meta:
        db_table = 'notification_preferences'
        constraints = [
            models.UniqueConstraint(fields=['user', 'type'], name='unique_user_notification_type'),
        ]
