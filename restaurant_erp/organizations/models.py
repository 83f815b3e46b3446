import uuid

from django.conf import settings
from django.db import models


class Organization(models.Model):
    """Tenant. Every universal-schema row is partitioned by organization."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    org_name = models.CharField(max_length=255)
    org_code = models.CharField(max_length=100, unique=True)
    industry = models.CharField(max_length=100, blank=True, default='restaurant')
    country = models.CharField(max_length=2, blank=True)
    currency = models.CharField(max_length=3, default='USD')
    org_settings = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_organizations')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.org_name} ({self.org_code})"

    def get_owner_count(self):
        return self.memberships.filter(role=UserOrganization.ROLE_OWNER, is_active=True).count()

    class Meta:
        db_table = 'core_organizations'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active'], name='idx_org_active'),
            models.Index(fields=['org_name'], name='idx_org_name'),
        ]


class UserOrganization(models.Model):
    """Membership of a user in an organization with a role"""
    ROLE_OWNER = 'owner'
    ROLE_MANAGER = 'manager'
    ROLE_STAFF = 'staff'
    ROLE_ACCOUNTANT = 'accountant'
    ROLE_VIEWER = 'viewer'
    ROLE_CHOICES = [
        (ROLE_OWNER, 'Owner'),
        (ROLE_MANAGER, 'Manager'),
        (ROLE_STAFF, 'Staff'),
        (ROLE_ACCOUNTANT, 'Accountant'),
        (ROLE_VIEWER, 'Viewer'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='organization_memberships')
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_STAFF)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} @ {self.organization.org_code} ({self.role})"

    class Meta:
        db_table = 'user_organizations'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'organization'], name='uniq_user_organization'),
        ]
        indexes = [
            models.Index(fields=['organization', 'is_active'], name='idx_userorg_org_active'),
        ]
