from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from backend.core.access import decision_to_dict
from .models import User
from .roles import ALL_ROLES


class UserSerializer(serializers.ModelSerializer):
    location_name = serializers.CharField(source='location.name', read_only=True, default=None)
    effective_permissions = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'username', 'email', 'first_name', 'last_name', 'phone', 'role', 'location', 'location_name',
            'permissions', 'effective_permissions', 'is_active', 'created_at', 'updated_at',
        ]
        read_only_fields = ['created_at', 'updated_at']

    def get_effective_permissions(self, obj):
        return sorted(obj.effective_permissions)

    def validate_permissions(self, value):
        if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
            raise serializers.ValidationError('Permissions must be a list of strings')
        return value


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = [
            'username', 'email', 'password', 'password_confirm', 'first_name', 'last_name', 'phone',
            'role', 'location', 'permissions',
        ]

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Passwords don't match"})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        password = validated_data.pop('password')
        user = User(**validated_data, is_active=True)
        user.set_password(password)
        user.save()
        return user


class AccessCheckSerializer(serializers.Serializer):
    roles = serializers.ListField(
        child=serializers.ChoiceField(choices=ALL_ROLES), required=False, default=list
    )
    permissions = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class AccessDecisionSerializer(serializers.BaseSerializer):
    def to_representation(self, instance):
        return decision_to_dict(instance)
