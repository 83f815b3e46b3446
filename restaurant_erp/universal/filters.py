import django_filters
from django.db.models import Q

from .models import Entity, Relationship, Metadata


def _truthy(value):
    return str(value).lower() in ('true', '1', 'yes')


class EntityFilter(django_filters.FilterSet):
    """Filter for Entity using django-filter"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    entity_type = django_filters.CharFilter(field_name='entity_type', lookup_expr='exact')
    entity_code = django_filters.CharFilter(field_name='entity_code', lookup_expr='iexact')
    is_active = django_filters.CharFilter(method='filter_active', label='Active')

    class Meta:
        model = Entity
        fields = ['search', 'entity_type', 'entity_code', 'is_active']

    def filter_search(self, queryset, name, value):
        """Match entity name, code or any text attribute"""
        search = value.strip()
        if not search:
            return queryset
        return queryset.filter(
            Q(entity_name__icontains=search)
            | Q(entity_code__icontains=search)
            | Q(dynamic_data__field_value__icontains=search)
        ).distinct()

    def filter_active(self, queryset, name, value):
        """Filter by active status (handles string 'true'/'false'; 'all' disables)"""
        if value is None or value == '' or value.lower() == 'all':
            return queryset
        return queryset.filter(is_active=_truthy(value))


class RelationshipFilter(django_filters.FilterSet):
    parent = django_filters.UUIDFilter(field_name='parent_entity_id')
    child = django_filters.UUIDFilter(field_name='child_entity_id')
    relationship_type = django_filters.CharFilter(field_name='relationship_type')
    is_active = django_filters.CharFilter(method='filter_active', label='Active')

    class Meta:
        model = Relationship
        fields = ['parent', 'child', 'relationship_type', 'is_active']

    def filter_active(self, queryset, name, value):
        if value.lower() == 'all':
            return queryset
        return queryset.filter(is_active=_truthy(value))


class MetadataFilter(django_filters.FilterSet):
    entity = django_filters.UUIDFilter(field_name='entity_id')
    metadata_type = django_filters.CharFilter(field_name='metadata_type')
    metadata_key = django_filters.CharFilter(field_name='metadata_key')
    is_active = django_filters.CharFilter(method='filter_active', label='Active')

    class Meta:
        model = Metadata
        fields = ['entity', 'metadata_type', 'metadata_key', 'is_active']

    def filter_active(self, queryset, name, value):
        if value.lower() == 'all':
            return queryset
        return queryset.filter(is_active=_truthy(value))
