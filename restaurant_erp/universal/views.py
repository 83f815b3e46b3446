import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from restaurant_erp.core.pagination import paginated_response
from restaurant_erp.core.utils import create_audit_log
from restaurant_erp.organizations.permissions import (
    WRITE_ROLES, require_organization_access, resolve_request_organization,
)
from .filters import EntityFilter, RelationshipFilter, MetadataFilter
from .models import Entity, DynamicData, Relationship, Metadata
from .serializers import (
    EntitySerializer, EntityWriteSerializer, DynamicDataSerializer, DynamicDataWriteSerializer,
    RelationshipSerializer, RelationshipCreateSerializer,
    MetadataSerializer, MetadataCreateSerializer,
)
from .services import (
    create_entity, update_entity, soft_delete, set_dynamic_fields, get_entity,
    create_relationship,
)

logger = logging.getLogger(__name__)


def _get_or_404(model, pk, message):
    try:
        return model.objects.get(pk=pk)
    except (model.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(message)


def _filtered(filterset):
    if not filterset.is_valid():
        raise ValidationError(filterset.errors)
    return filterset.qs


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def entity_list_create(request):
    """List entities of an organization or create one with its dynamic data"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        params = request.query_params.copy()
        params.setdefault('is_active', 'true')
        queryset = (
            Entity.objects.filter(organization=organization)
            .select_related('created_by')
            .prefetch_related('dynamic_data')
        )
        queryset = _filtered(EntityFilter(params, queryset=queryset)).order_by('entity_type', 'entity_name')
        return paginated_response(
            request, queryset, lambda page: EntitySerializer(page, many=True).data
        )

    serializer = EntityWriteSerializer(data=request.data, context={'creating': True})
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=WRITE_ROLES)

    entity = create_entity(
        organization,
        entity_type=data['entity_type'],
        entity_name=data['entity_name'],
        entity_code=data.get('entity_code'),
        dynamic_data=data.get('dynamic_data'),
        field_types=data.get('field_types'),
        user=request.user,
    )
    create_audit_log(
        request=request,
        action='create',
        model_name='Entity',
        object_id=str(entity.id),
        object_name=entity.entity_name,
        object_reference=entity.entity_code,
        organization=organization,
        changes={'entity_type': entity.entity_type},
    )
    return Response(EntitySerializer(entity).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def entity_detail(request, pk):
    """Retrieve, update or soft-delete an entity"""
    entity = _get_or_404(Entity, pk, 'Entity not found')

    if request.method == 'GET':
        require_organization_access(request, entity.organization_id)
        return Response(EntitySerializer(entity).data)

    organization = require_organization_access(request, entity.organization_id, roles=WRITE_ROLES)

    if request.method in ('PUT', 'PATCH'):
        serializer = EntityWriteSerializer(data=request.data, partial=request.method == 'PATCH')
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entity = update_entity(
            entity,
            entity_name=data.get('entity_name'),
            entity_code=data.get('entity_code'),
            is_active=data.get('is_active'),
            dynamic_data=data.get('dynamic_data'),
            field_types=data.get('field_types'),
        )
        create_audit_log(
            request=request,
            action='update',
            model_name='Entity',
            object_id=str(entity.id),
            object_name=entity.entity_name,
            object_reference=entity.entity_code,
            organization=organization,
            changes={key: str(value) for key, value in data.items()},
        )
        return Response(EntitySerializer(entity).data)

    soft_delete(entity)
    create_audit_log(
        request=request,
        action='soft_delete',
        model_name='Entity',
        object_id=str(entity.id),
        object_name=entity.entity_name,
        object_reference=entity.entity_code,
        organization=organization,
    )
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST', 'DELETE'])
@permission_classes([IsAuthenticated])
def entity_dynamic_data(request, pk):
    """Read, upsert or remove the attributes of an entity"""
    entity = _get_or_404(Entity, pk, 'Entity not found')

    if request.method == 'GET':
        require_organization_access(request, entity.organization_id)
        return Response(DynamicDataSerializer(entity.dynamic_data.all(), many=True).data)

    require_organization_access(request, entity.organization_id, roles=WRITE_ROLES)

    if request.method == 'POST':
        serializer = DynamicDataWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            set_dynamic_fields(
                entity,
                serializer.validated_data['fields'],
                serializer.validated_data.get('field_types'),
            )
        entity.save(update_fields=['updated_at'])
        return Response(DynamicDataSerializer(entity.dynamic_data.all(), many=True).data)

    field_name = request.query_params.get('field_name')
    if not field_name:
        raise ValidationError({'field_name': 'field_name is required'})
    deleted, _ = DynamicData.objects.filter(entity=entity, field_name=field_name).delete()
    if not deleted:
        raise NotFound(f"Field '{field_name}' not found")
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def relationship_list_create(request):
    """List or create relationships between entities of an organization"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        params = request.query_params.copy()
        params.setdefault('is_active', 'true')
        queryset = Relationship.objects.filter(organization=organization).select_related('parent_entity', 'child_entity')
        queryset = _filtered(RelationshipFilter(params, queryset=queryset)).order_by('id')
        return paginated_response(
            request, queryset, lambda page: RelationshipSerializer(page, many=True).data
        )

    serializer = RelationshipCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=WRITE_ROLES)

    parent = get_entity(organization, data['parent_entity'], field='parent_entity')
    child = get_entity(organization, data['child_entity'], field='child_entity')
    relationship = create_relationship(
        organization, parent, child, data['relationship_type'], data.get('relationship_data')
    )
    return Response(RelationshipSerializer(relationship).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def relationship_detail(request, pk):
    relationship = _get_or_404(Relationship, pk, 'Relationship not found')

    if request.method == 'GET':
        require_organization_access(request, relationship.organization_id)
        return Response(RelationshipSerializer(relationship).data)

    require_organization_access(request, relationship.organization_id, roles=WRITE_ROLES)

    if request.method == 'PATCH':
        serializer = RelationshipSerializer(relationship, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)

    soft_delete(relationship)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def metadata_list_create(request):
    """List or attach metadata records"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        params = request.query_params.copy()
        params.setdefault('is_active', 'true')
        queryset = Metadata.objects.filter(organization=organization)
        queryset = _filtered(MetadataFilter(params, queryset=queryset)).order_by('-updated_at')
        return paginated_response(
            request, queryset, lambda page: MetadataSerializer(page, many=True).data
        )

    serializer = MetadataCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=WRITE_ROLES)

    entity = None
    if data.get('entity'):
        entity = get_entity(organization, data['entity'], active_only=False)

    metadata = Metadata.objects.create(
        organization=organization,
        entity=entity,
        entity_type=entity.entity_type if entity else data.get('entity_type', ''),
        metadata_type=data['metadata_type'],
        metadata_category=data.get('metadata_category', ''),
        metadata_key=data['metadata_key'],
        metadata_value=data.get('metadata_value') or {},
    )
    return Response(MetadataSerializer(metadata).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def metadata_detail(request, pk):
    metadata = _get_or_404(Metadata, pk, 'Metadata not found')

    if request.method == 'GET':
        require_organization_access(request, metadata.organization_id)
        return Response(MetadataSerializer(metadata).data)

    require_organization_access(request, metadata.organization_id, roles=WRITE_ROLES)

    if request.method == 'PATCH':
        serializer = MetadataSerializer(metadata, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)

    soft_delete(metadata)
    return Response(status=status.HTTP_204_NO_CONTENT)
