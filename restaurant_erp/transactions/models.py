import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Sum
from django.utils import timezone

from restaurant_erp.organizations.models import Organization
from restaurant_erp.universal.models import Entity

TWO_PLACES = Decimal('0.01')


class UniversalTransaction(models.Model):
    """Business event header (purchase order, goods receipt, sale, deployment...)"""
    STATUS_DRAFT = 'draft'
    STATUS_POSTED = 'posted'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='transactions')
    transaction_type = models.CharField(max_length=100)
    transaction_number = models.CharField(max_length=100)
    transaction_date = models.DateField(default=timezone.localdate)
    reference_number = models.CharField(max_length=100, blank=True)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='USD')
    transaction_status = models.CharField(max_length=50, default=STATUS_DRAFT)
    workflow_status = models.CharField(max_length=50, blank=True)
    transaction_data = models.JSONField(default=dict, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_transactions')
    posted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.transaction_type} {self.transaction_number}"

    def recalculate_total(self, save=True):
        """Set total_amount to the sum of the line amounts"""
        total = self.lines.aggregate(total=Sum('line_amount'))['total'] or Decimal('0')
        self.total_amount = Decimal(total).quantize(TWO_PLACES)
        if save:
            self.save(update_fields=['total_amount', 'updated_at'])
        return self.total_amount

    class Meta:
        db_table = 'universal_transactions'
        ordering = ['-transaction_date', '-created_at']
        constraints = [
            models.UniqueConstraint(fields=['organization', 'transaction_number'], name='uniq_org_transaction_number'),
        ]
        indexes = [
            models.Index(fields=['organization', 'transaction_type'], name='idx_txn_org_type'),
            models.Index(fields=['transaction_status'], name='idx_txn_status'),
            models.Index(fields=['transaction_date'], name='idx_txn_date'),
        ]


class TransactionLine(models.Model):
    transaction = models.ForeignKey(UniversalTransaction, on_delete=models.CASCADE, related_name='lines')
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='transaction_lines')
    entity = models.ForeignKey(Entity, on_delete=models.SET_NULL, null=True, blank=True, related_name='transaction_lines')
    line_description = models.CharField(max_length=255, blank=True)
    quantity = models.DecimalField(max_digits=12, decimal_places=3, default=1)
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    line_amount = models.DecimalField(max_digits=14, decimal_places=2, blank=True)
    line_order = models.PositiveIntegerField(default=0)
    line_data = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.transaction_id} line {self.line_order}"

    def save(self, *args, **kwargs):
        if self.line_amount is None:
            self.line_amount = (Decimal(self.quantity) * Decimal(self.unit_price)).quantize(TWO_PLACES)
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'universal_transaction_lines'
        ordering = ['line_order', 'id']
        indexes = [
            models.Index(fields=['transaction', 'line_order'], name='idx_txnline_txn_order'),
        ]
