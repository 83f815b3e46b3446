from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Extended user model with additional fields"""
    phone = models.CharField(max_length=20, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'


class Setting(models.Model):
    """System settings"""
    key = models.CharField(max_length=100, unique=True)
    value = models.TextField()
    description = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.key

    class Meta:
        db_table = 'settings'


class AuditLog(models.Model):
    """Audit log for critical operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('soft_delete', 'Deactivate'),
        ('view', 'View'),
        ('member_add', 'Member Added'),
        ('member_update', 'Member Updated'),
        ('member_remove', 'Member Removed'),
        ('po_submit', 'Purchase Order Submitted'),
        ('po_approve', 'Purchase Order Approved'),
        ('po_reject', 'Purchase Order Rejected'),
        ('po_request_modification', 'Purchase Order Modification Requested'),
        ('po_cancel', 'Purchase Order Cancelled'),
        ('goods_receipt', 'Goods Received'),
        ('stock_adjust', 'Stock Adjustment'),
        ('order_status', 'Order Status Changed'),
        ('transaction_post', 'Transaction Posted'),
        ('bulk_upload', 'Bulk Upload'),
        ('module_deploy', 'Module Deployed'),
        ('package_deploy', 'Package Deployed'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., organization name, entity name)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., transaction number, entity code)")
    organization_id = models.UUIDField(blank=True, null=True, help_text="Organization the action was scoped to")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='idx_audit_created'),
            models.Index(fields=['action'], name='idx_audit_action'),
            models.Index(fields=['model_name'], name='idx_audit_model'),
            models.Index(fields=['organization_id'], name='idx_audit_org'),
            models.Index(fields=['object_reference'], name='idx_audit_reference'),
        ]
