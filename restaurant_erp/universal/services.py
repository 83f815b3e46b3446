"""
Entity, dynamic-data, relationship and metadata operations

Every business module stores its records through these functions so the
tenant rules (same organization on both ends of a link, typed attribute
values, soft deletes) are enforced in one place.
"""
import logging
import re
import secrets

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from rest_framework.exceptions import ValidationError

from .fields import FIELD_TYPES, infer_field_type, serialize_field_value
from .models import Entity, DynamicData, Relationship, Metadata

logger = logging.getLogger(__name__)


def generate_entity_code(entity_type, entity_name):
    """<TYPE3>-<NAME6>-<RAND4>, e.g. MEN-BURGER-7F3A"""
    type_part = re.sub(r'[^A-Z0-9]', '', entity_type.upper())[:3] or 'ENT'
    name_part = re.sub(r'[^A-Z0-9]', '', entity_name.upper())[:6] or 'ITEM'
    return f"{type_part}-{name_part}-{secrets.token_hex(2).upper()}"


def set_dynamic_fields(entity, fields, field_types=None):
    """
    Upsert attributes on an entity.

    Args:
        entity: Entity instance
        fields: {field_name: value}
        field_types: optional {field_name: field_type}; an existing row keeps its
            type, new rows infer it from the value
    """
    field_types = field_types or {}
    stored_types = dict(
        DynamicData.objects.filter(entity=entity, field_name__in=list(fields))
        .values_list('field_name', 'field_type')
    )
    for field_name, value in fields.items():
        field_type = (
            field_types.get(field_name)
            or stored_types.get(field_name)
            or infer_field_type(value)
        )
        if field_type not in FIELD_TYPES:
            raise ValidationError({'field_type': f"Unknown field type '{field_type}' for {field_name}"})
        try:
            stored = serialize_field_value(value, field_type)
        except ValueError as e:
            raise ValidationError({field_name: str(e)})
        DynamicData.objects.update_or_create(
            entity=entity,
            field_name=field_name,
            defaults={'field_value': stored, 'field_type': field_type},
        )


def create_entity(organization, entity_type, entity_name, entity_code=None,
                  dynamic_data=None, field_types=None, user=None):
    with transaction.atomic():
        entity = Entity.objects.create(
            organization=organization,
            entity_type=entity_type,
            entity_name=entity_name.strip(),
            entity_code=entity_code or generate_entity_code(entity_type, entity_name),
            created_by=user if user and user.is_authenticated else None,
        )
        if dynamic_data:
            set_dynamic_fields(entity, dynamic_data, field_types)
    logger.debug(f"Entity {entity.entity_code} ({entity_type}) created in {organization.org_code}")
    return entity


def update_entity(entity, entity_name=None, entity_code=None, is_active=None,
                  dynamic_data=None, field_types=None):
    update_fields = ['updated_at']
    if entity_name is not None:
        entity.entity_name = entity_name.strip()
        update_fields.append('entity_name')
    if entity_code:
        entity.entity_code = entity_code
        update_fields.append('entity_code')
    if is_active is not None:
        entity.is_active = is_active
        update_fields.append('is_active')
    with transaction.atomic():
        entity.save(update_fields=update_fields)
        if dynamic_data:
            set_dynamic_fields(entity, dynamic_data, field_types)
    return entity


def soft_delete(instance):
    instance.is_active = False
    instance.save(update_fields=['is_active', 'updated_at'])
    return instance


def get_entity(organization, entity_id, entity_type=None, active_only=True, field='entity'):
    """Entity of the organization or a 400 naming the offending field"""
    queryset = Entity.objects.filter(organization=organization)
    if entity_type:
        if isinstance(entity_type, (list, tuple)):
            queryset = queryset.filter(entity_type__in=entity_type)
        else:
            queryset = queryset.filter(entity_type=entity_type)
    if active_only:
        queryset = queryset.filter(is_active=True)
    try:
        entity = queryset.filter(pk=entity_id).first()
    except (DjangoValidationError, ValueError):
        entity = None
    if entity is None:
        raise ValidationError({field: f"{field} '{entity_id}' not found in this organization"})
    return entity


def create_relationship(organization, parent_entity, child_entity, relationship_type, relationship_data=None):
    if parent_entity.pk == child_entity.pk:
        raise ValidationError({'child_entity': 'An entity cannot be related to itself'})
    if parent_entity.organization_id != organization.pk or child_entity.organization_id != organization.pk:
        raise ValidationError({'organization': 'Both entities must belong to the organization'})
    return Relationship.objects.create(
        organization=organization,
        parent_entity=parent_entity,
        child_entity=child_entity,
        relationship_type=relationship_type,
        relationship_data=relationship_data or {},
    )


def active_children(entity, relationship_type):
    """Active relationships from entity to active children of the given type"""
    return (
        Relationship.objects
        .filter(parent_entity=entity, relationship_type=relationship_type,
                is_active=True, child_entity__is_active=True)
        .select_related('child_entity')
        .order_by('id')
    )


def replace_children(organization, parent_entity, relationship_type, children):
    """
    Deactivate existing links of relationship_type and create new ones.

    children is a list of (child_entity, relationship_data) pairs.
    """
    Relationship.objects.filter(
        parent_entity=parent_entity, relationship_type=relationship_type, is_active=True
    ).update(is_active=False)
    return [
        create_relationship(organization, parent_entity, child, relationship_type, data)
        for child, data in children
    ]


def upsert_metadata(organization, entity, metadata_type, metadata_key, metadata_value,
                    metadata_category=''):
    metadata, _ = Metadata.objects.update_or_create(
        organization=organization,
        entity=entity,
        metadata_type=metadata_type,
        metadata_key=metadata_key,
        is_active=True,
        defaults={
            'entity_type': entity.entity_type if entity else '',
            'metadata_category': metadata_category,
            'metadata_value': metadata_value,
        },
    )
    return metadata


def get_metadata_value(entity, metadata_type, metadata_key, default=None):
    metadata = Metadata.objects.filter(
        entity=entity, metadata_type=metadata_type, metadata_key=metadata_key, is_active=True
    ).order_by('-updated_at').first()
    return metadata.metadata_value if metadata else default
