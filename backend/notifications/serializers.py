from rest_framework import serializers
from .models import Notification, NotificationType, NotificationPreference
from .service import PREFERENCE_FLAGS, PRIORITIES


class NotificationTypeSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationType
        fields = ['id', 'name', 'description', 'category', 'kind', 'is_active']


class NotificationSenderSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    username = serializers.CharField()
    first_name = serializers.CharField()
    last_name = serializers.CharField()


class NotificationSerializer(serializers.ModelSerializer):
    type = NotificationTypeSerializer(read_only=True)
    sender = NotificationSenderSerializer(read_only=True)

    class Meta:
        model = Notification
        fields = [
            'id', 'type', 'title', 'message', 'data', 'status', 'priority', 'sender',
            'related_entity_type', 'related_entity_id', 'read_at', 'expires_at', 'created_at',
        ]
        read_only_fields = fields


class NotificationPreferenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationPreference
        fields = ['id', 'user', 'type', *PREFERENCE_FLAGS, 'updated_at']
        read_only_fields = fields


class PreferenceUpdateSerializer(serializers.Serializer):
    enabled = serializers.BooleanField(required=False)
    email_enabled = serializers.BooleanField(required=False)
    sms_enabled = serializers.BooleanField(required=False)
    push_enabled = serializers.BooleanField(required=False)
    in_app_enabled = serializers.BooleanField(required=False)


class SendNotificationSerializer(serializers.Serializer):
    """Manual fan-out request from an admin"""
    RECIPIENT_CHOICES = ['all_admins', 'users', 'location', 'roles']

    type_name = serializers.CharField(max_length=100)
    recipients = serializers.ChoiceField(choices=RECIPIENT_CHOICES)
    user_ids = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    location_id = serializers.IntegerField(required=False)
    roles = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    title = serializers.CharField(max_length=255, required=False, allow_blank=True)
    message = serializers.CharField(required=False, allow_blank=True)
    data = serializers.JSONField(required=False)
    priority = serializers.ChoiceField(choices=PRIORITIES, default='normal')
    expires_at = serializers.DateTimeField(required=False, allow_null=True)

    def validate(self, attrs):
        recipients = attrs['recipients']
        if recipients == 'users' and not attrs.get('user_ids'):
            raise serializers.ValidationError({'user_ids': 'Required when recipients is "users"'})
        if recipients == 'location' and attrs.get('location_id') is None:
            raise serializers.ValidationError({'location_id': 'Required when recipients is "location"'})
        if recipients == 'roles' and not attrs.get('roles'):
            raise serializers.ValidationError({'roles': 'Required when recipients is "roles"'})
        return attrs
