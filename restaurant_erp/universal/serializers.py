from rest_framework import serializers

from .fields import FIELD_TYPES
from .models import Entity, DynamicData, Relationship, Metadata


class DynamicDataSerializer(serializers.ModelSerializer):
    value = serializers.SerializerMethodField()

    class Meta:
        model = DynamicData
        fields = ['id', 'field_name', 'field_value', 'field_type', 'value', 'updated_at']
        read_only_fields = fields

    def get_value(self, obj):
        return obj.typed_value


class EntitySerializer(serializers.ModelSerializer):
    dynamic_data = serializers.SerializerMethodField()
    organization = serializers.UUIDField(source='organization_id', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True, default=None)

    class Meta:
        model = Entity
        fields = [
            'id', 'organization', 'entity_type', 'entity_name', 'entity_code',
            'is_active', 'dynamic_data', 'created_by', 'created_by_username',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_dynamic_data(self, obj):
        return obj.get_dynamic_data()


class EntityWriteSerializer(serializers.Serializer):
    """Input for entity create/update; organization and entity_type are only read on create"""
    organization = serializers.UUIDField(required=False)
    entity_type = serializers.CharField(max_length=100, required=False)
    entity_name = serializers.CharField(max_length=255)
    entity_code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)
    dynamic_data = serializers.DictField(required=False)
    field_types = serializers.DictField(child=serializers.ChoiceField(choices=FIELD_TYPES), required=False)

    def validate_entity_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('entity_name cannot be blank')
        return value

    def validate_entity_type(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('entity_type cannot be blank')
        return value

    def validate(self, attrs):
        if self.context.get('creating'):
            missing = {
                name: f'{name} is required'
                for name in ('organization', 'entity_type')
                if not attrs.get(name)
            }
            if missing:
                raise serializers.ValidationError(missing)
        return attrs


class DynamicDataWriteSerializer(serializers.Serializer):
    """Either a `fields` object or a single field_name/field_value pair"""
    field_types = serializers.DictField(child=serializers.ChoiceField(choices=FIELD_TYPES), required=False)
    field_name = serializers.CharField(max_length=100, required=False)
    field_value = serializers.JSONField(required=False)
    field_type = serializers.ChoiceField(choices=FIELD_TYPES, required=False)

    def get_fields(self):
        # `fields` is a Serializer attribute, so the input key is declared here
        fields = super().get_fields()
        fields['fields'] = serializers.DictField(required=False)
        return fields

    def validate(self, attrs):
        if attrs.get('fields'):
            return attrs
        if not attrs.get('field_name'):
            raise serializers.ValidationError({'fields': 'Provide fields or field_name'})
        attrs['fields'] = {attrs['field_name']: attrs.get('field_value')}
        if attrs.get('field_type'):
            attrs['field_types'] = {attrs['field_name']: attrs['field_type']}
        return attrs


class RelationshipSerializer(serializers.ModelSerializer):
    organization = serializers.UUIDField(source='organization_id', read_only=True)
    parent_entity = serializers.UUIDField(source='parent_entity_id', read_only=True)
    child_entity = serializers.UUIDField(source='child_entity_id', read_only=True)
    parent_entity_name = serializers.CharField(source='parent_entity.entity_name', read_only=True)
    child_entity_name = serializers.CharField(source='child_entity.entity_name', read_only=True)

    class Meta:
        model = Relationship
        fields = [
            'id', 'organization', 'parent_entity', 'parent_entity_name',
            'child_entity', 'child_entity_name', 'relationship_type',
            'relationship_data', 'is_active', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'relationship_type', 'created_at', 'updated_at']


class RelationshipCreateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    parent_entity = serializers.UUIDField()
    child_entity = serializers.UUIDField()
    relationship_type = serializers.CharField(max_length=100)
    relationship_data = serializers.DictField(required=False)


class MetadataSerializer(serializers.ModelSerializer):
    organization = serializers.UUIDField(source='organization_id', read_only=True)
    entity = serializers.UUIDField(source='entity_id', read_only=True)

    class Meta:
        model = Metadata
        fields = [
            'id', 'organization', 'entity', 'entity_type', 'metadata_type',
            'metadata_category', 'metadata_key', 'metadata_value', 'is_active',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'entity_type', 'created_at', 'updated_at']


class MetadataCreateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    entity = serializers.UUIDField(required=False, allow_null=True)
    entity_type = serializers.CharField(max_length=100, required=False, allow_blank=True)
    metadata_type = serializers.CharField(max_length=100)
    metadata_category = serializers.CharField(max_length=100, required=False, allow_blank=True)
    metadata_key = serializers.CharField(max_length=100)
    metadata_value = serializers.JSONField(required=False)
