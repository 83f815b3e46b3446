from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from .models import User, Setting, AuditLog


class UserSerializer(serializers.ModelSerializer):
    organization_count = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'username', 'email', 'first_name', 'last_name', 'phone',
            'is_active', 'is_staff', 'is_superuser', 'organization_count',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['is_superuser', 'organization_count', 'created_at', 'updated_at']

    def get_organization_count(self, obj):
        return obj.organization_memberships.filter(is_active=True, organization__is_active=True).count()


class UserCreateSerializer(serializers.ModelSerializer):
    """Registration and admin user creation; emails are unique regardless of case"""
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['username', 'email', 'password', 'password_confirm', 'first_name', 'last_name', 'phone']

    def validate_username(self, value):
        return value.strip()

    def validate_email(self, value):
        value = (value or '').strip().lower()
        if value and User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError('A user with this email already exists')
        return value

    def validate(self, attrs):
        if attrs['password'] != attrs.pop('password_confirm'):
            raise serializers.ValidationError({'password': "Passwords don't match"})
        return attrs

    def create(self, validated_data):
        return User.objects.create_user(**validated_data)


class SettingSerializer(serializers.ModelSerializer):
    class Meta:
        model = Setting
        fields = ['id', 'key', 'value', 'description', 'updated_at']

    def validate_key(self, value):
        return value.strip()


class AuditLogSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source='user.username', read_only=True, default=None)
    action_display = serializers.CharField(source='get_action_display', read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'user', 'username', 'action', 'action_display', 'model_name',
            'object_id', 'object_name', 'object_reference', 'organization_id',
            'changes', 'ip_address', 'created_at',
        ]
