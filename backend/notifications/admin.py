from django.contrib import admin
from .models import NotificationType, NotificationTemplate, Notification, NotificationPreference


class NotificationTemplateInline(admin.TabularInline):
    model = NotificationTemplate
    extra = 0


@admin.register(NotificationType)
class NotificationTypeAdmin(admin.ModelAdmin):
    list_display = ['name', 'category', 'kind', 'is_active', 'updated_at']
    list_filter = ['category', 'kind', 'is_active']
    search_fields = ['name', 'description']
    ordering = ['category', 'name']
    inlines = [NotificationTemplateInline]


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['title', 'type', 'recipient', 'status', 'priority', 'created_at', 'expires_at']
    list_filter = ['status', 'priority', 'type', 'created_at']
    search_fields = ['title', 'message', 'recipient__username']
    ordering = ['-created_at']
    readonly_fields = [
        'id', 'type', 'recipient', 'sender', 'title', 'message', 'data', 'priority',
        'related_entity_type', 'related_entity_id', 'created_at',
    ]


@admin.register(NotificationPreference)
class NotificationPreferenceAdmin(admin.ModelAdmin):
    list_display = ['user', 'type', 'enabled', 'email_enabled', 'sms_enabled', 'push_enabled', 'in_app_enabled']
    list_filter = ['type', 'enabled', 'in_app_enabled']
    search_fields = ['user__username', 'type__name']
