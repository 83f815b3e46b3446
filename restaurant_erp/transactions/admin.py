from django.contrib import admin
from .models import UniversalTransaction, TransactionLine


class TransactionLineInline(admin.TabularInline):
    model = TransactionLine
    extra = 0
    fields = ['line_order', 'entity', 'line_description', 'quantity', 'unit_price', 'line_amount']
    raw_id_fields = ['entity']


@admin.register(UniversalTransaction)
class UniversalTransactionAdmin(admin.ModelAdmin):
    list_display = ['transaction_number', 'transaction_type', 'organization', 'total_amount',
                    'transaction_status', 'workflow_status', 'transaction_date']
    list_filter = ['transaction_type', 'transaction_status', 'workflow_status']
    search_fields = ['transaction_number', 'reference_number', 'organization__org_name']
    readonly_fields = ['id', 'created_at', 'updated_at', 'posted_at']
    date_hierarchy = 'transaction_date'
    inlines = [TransactionLineInline]
