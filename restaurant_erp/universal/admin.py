from django.contrib import admin
from .models import Entity, DynamicData, Relationship, Metadata


class DynamicDataInline(admin.TabularInline):
    model = DynamicData
    extra = 0
    fields = ['field_name', 'field_value', 'field_type']


@admin.register(Entity)
class EntityAdmin(admin.ModelAdmin):
    list_display = ['entity_name', 'entity_type', 'entity_code', 'organization', 'is_active', 'created_at']
    list_filter = ['entity_type', 'is_active']
    search_fields = ['entity_name', 'entity_code', 'organization__org_name']
    readonly_fields = ['id', 'created_at', 'updated_at']
    inlines = [DynamicDataInline]


@admin.register(Relationship)
class RelationshipAdmin(admin.ModelAdmin):
    list_display = ['parent_entity', 'relationship_type', 'child_entity', 'organization', 'is_active']
    list_filter = ['relationship_type', 'is_active']
    raw_id_fields = ['parent_entity', 'child_entity']


@admin.register(Metadata)
class MetadataAdmin(admin.ModelAdmin):
    list_display = ['metadata_type', 'metadata_key', 'entity', 'organization', 'is_active', 'updated_at']
    list_filter = ['metadata_type', 'is_active']
    search_fields = ['metadata_key', 'metadata_type']
    raw_id_fields = ['entity']
