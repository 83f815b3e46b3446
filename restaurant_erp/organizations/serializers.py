from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from rest_framework import serializers

from restaurant_erp.core.exceptions import Conflict
from .models import Organization, UserOrganization
from .utils import generate_org_code

User = get_user_model()


class OrganizationSerializer(serializers.ModelSerializer):
    org_code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    member_role = serializers.SerializerMethodField()

    class Meta:
        model = Organization
        fields = [
            'id', 'org_name', 'org_code', 'industry', 'country', 'currency',
            'org_settings', 'is_active', 'member_role', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'is_active', 'created_at', 'updated_at']

    def get_member_role(self, obj):
        request = self.context.get('request')
        if not request or not request.user.is_authenticated:
            return None
        membership = obj.memberships.filter(user=request.user, is_active=True).first()
        return membership.role if membership else None

    def validate_org_name(self, value):
        value = (value or '').strip()
        if len(value) < 2:
            raise serializers.ValidationError('Organization name must be at least 2 characters')
        return value

    def validate_org_code(self, value):
        value = (value or '').strip().upper()
        if not value:
            return value
        queryset = Organization.objects.filter(org_code=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise Conflict(f"Organization code '{value}' is already in use")
        return value

    def validate_country(self, value):
        return (value or '').strip().upper()

    def validate_currency(self, value):
        value = (value or '').strip().upper()
        if len(value) != 3:
            raise serializers.ValidationError('Currency must be a 3-letter ISO code')
        return value

    def create(self, validated_data):
        if not validated_data.get('org_code'):
            validated_data['org_code'] = generate_org_code(validated_data['org_name'])
        # Concurrent requests can both pass validate_org_code; the unique index decides
        try:
            with transaction.atomic():
                return super().create(validated_data)
        except IntegrityError:
            raise Conflict(f"Organization code '{validated_data['org_code']}' is already in use")

    def update(self, instance, validated_data):
        # An empty code on update keeps the current one
        if 'org_code' in validated_data and not validated_data['org_code']:
            validated_data.pop('org_code')
        try:
            with transaction.atomic():
                return super().update(instance, validated_data)
        except IntegrityError:
            raise Conflict(f"Organization code '{validated_data.get('org_code')}' is already in use")


class UserOrganizationSerializer(serializers.ModelSerializer):
    class Meta:
        model = UserOrganization
        fields = ['id', 'user', 'organization', 'role', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['id', 'user', 'organization', 'created_at', 'updated_at']


class MembershipCreateSerializer(serializers.Serializer):
    user = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    organization = serializers.UUIDField()
    role = serializers.ChoiceField(choices=UserOrganization.ROLE_CHOICES, default=UserOrganization.ROLE_STAFF)


def membership_with_details(membership):
    """Membership row enriched with user and organization summaries"""
    data = UserOrganizationSerializer(membership).data
    user = membership.user
    data['user_details'] = {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'full_name': user.get_full_name(),
    }
    data['organization_details'] = {
        'id': str(membership.organization_id),
        'name': membership.organization.org_name,
        'code': membership.organization.org_code,
    }
    return data
