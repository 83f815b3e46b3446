import django_filters

from .models import UniversalTransaction


class TransactionFilter(django_filters.FilterSet):
    transaction_type = django_filters.CharFilter(field_name='transaction_type')
    status = django_filters.CharFilter(field_name='transaction_status')
    workflow_status = django_filters.CharFilter(field_name='workflow_status')
    date_from = django_filters.DateFilter(field_name='transaction_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='transaction_date', lookup_expr='lte')
    search = django_filters.CharFilter(method='filter_search', label='Search')

    class Meta:
        model = UniversalTransaction
        fields = ['transaction_type', 'status', 'workflow_status', 'date_from', 'date_to', 'search']

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(transaction_number__icontains=value) | queryset.filter(reference_number__icontains=value)
