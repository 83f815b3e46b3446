import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction as db_transaction
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from restaurant_erp.core.exceptions import Conflict
from restaurant_erp.core.pagination import paginated_response
from restaurant_erp.core.utils import create_audit_log
from restaurant_erp.organizations.permissions import (
    MANAGER_ROLES, is_platform_admin, require_organization_access, resolve_request_organization,
)
from restaurant_erp.organizations.views import create_organization_with_owner
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import create_entity, update_entity, soft_delete
from . import services
from .serializers import (
    ModuleTemplateSerializer, ModuleDeploySerializer,
    PackageTemplateSerializer, PackageDeploySerializer,
)

logger = logging.getLogger(__name__)


def _templates(organization, entity_types, include_system=True):
    return Entity.objects.filter(
        organization_id__in=services.template_organization_ids(organization, include_system=include_system),
        entity_type__in=entity_types,
        is_active=True,
    ).prefetch_related('dynamic_data').order_by('entity_name')


def _ensure_unique_code(organization, entity_code, entity_types):
    if entity_code and _templates(organization, entity_types).filter(entity_code=entity_code).exists():
        raise Conflict(f"Template code '{entity_code}' is already in use")


def _flag(request, name):
    value = request.query_params.get(name)
    if value is None or value.lower() not in ('true', 'false'):
        return None
    return value.lower() == 'true'


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def module_template_list_create(request):
    """System and organization module templates, or create a custom template"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        include_system = _flag(request, 'include_system') is not False
        deployed = services.deployed_module_codes(organization)
        modules = [
            services.module_payload(m, deployed_codes=deployed)
            for m in _templates(organization, services.MODULE_TEMPLATE_TYPES, include_system)
        ]
        all_modules = modules

        category = request.query_params.get('category')
        if category:
            modules = [m for m in modules if m['module_category'] == category]
        functional_area = request.query_params.get('functional_area')
        if functional_area:
            modules = [m for m in modules if m['functional_area'] == functional_area]
        for name in ('is_core', 'is_deployed'):
            wanted = _flag(request, name)
            if wanted is not None:
                modules = [m for m in modules if m[name] is wanted]

        response = paginated_response(request, modules, list)
        response.data['summary'] = {
            'total_modules': len(modules),
            'core_modules': sum(1 for m in modules if m['is_core']),
            'custom_modules': sum(1 for m in modules if not m['is_core']),
            'deployed_modules': sum(1 for m in modules if m['is_deployed']),
            'available_modules': sum(1 for m in modules if not m['is_deployed']),
        }
        response.data['available_filters'] = {
            'categories': sorted({m['module_category'] for m in all_modules}),
            'functional_areas': sorted({m['functional_area'] for m in all_modules}),
        }
        return response

    serializer = ModuleTemplateSerializer(data=request.data, context={'creating': True})
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=MANAGER_ROLES)
    if services.is_system_org(organization) and not is_platform_admin(request.user):
        raise PermissionDenied('System templates are managed by platform administrators')
    _ensure_unique_code(organization, data.get('entity_code'), services.MODULE_TEMPLATE_TYPES)

    entity_type = (
        services.ERP_MODULE_TEMPLATE if services.is_system_org(organization) else services.CUSTOM_MODULE_TEMPLATE
    )
    module = create_entity(
        organization, entity_type, data['entity_name'],
        entity_code=data.get('entity_code') or None,
        dynamic_data=serializer.dynamic_data(),
        user=request.user,
    )
    create_audit_log(
        request=request,
        action='create',
        model_name='ModuleTemplate',
        object_id=str(module.id),
        object_name=module.entity_name,
        object_reference=module.entity_code,
        organization=organization,
    )
    return Response(services.module_payload(module), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def module_template_detail(request, pk):
    """Retrieve, update or deactivate a module template; system templates are read-only for tenants"""
    try:
        module = Entity.objects.select_related('organization').get(
            pk=pk, entity_type__in=services.MODULE_TEMPLATE_TYPES, is_active=True
        )
    except (Entity.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Module template not found')
    system = services.is_system_template(module)

    if request.method == 'GET':
        if not system:
            require_organization_access(request, module.organization_id)
        return Response(services.module_payload(module))

    if system:
        if not is_platform_admin(request.user):
            raise PermissionDenied('System templates are read-only')
        organization = module.organization
    else:
        organization = require_organization_access(request, module.organization_id, roles=MANAGER_ROLES)

    if request.method in ('PUT', 'PATCH'):
        serializer = ModuleTemplateSerializer(data=request.data, partial=request.method == 'PATCH')
        serializer.is_valid(raise_exception=True)
        update_entity(
            module,
            entity_name=serializer.validated_data.get('entity_name'),
            dynamic_data=serializer.dynamic_data(),
        )
        create_audit_log(
            request=request,
            action='update',
            model_name='ModuleTemplate',
            object_id=str(module.id),
            object_name=module.entity_name,
            object_reference=module.entity_code,
            organization=organization,
            changes={'fields': sorted(serializer.validated_data)},
        )
        return Response(services.module_payload(module))

    soft_delete(module)
    create_audit_log(
        request=request,
        action='soft_delete',
        model_name='ModuleTemplate',
        object_id=str(module.id),
        object_name=module.entity_name,
        object_reference=module.entity_code,
        organization=organization,
    )
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def module_deploy(request):
    """Deploy a module template into an organization"""
    serializer = ModuleDeploySerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=MANAGER_ROLES)
    module = services.get_accessible_template(organization, data['module'], services.MODULE_TEMPLATE_TYPES)

    result = services.deploy_module(organization, module, user=request.user, options=data.get('options'))
    succeeded = result['status'] == 'success'
    create_audit_log(
        request=request,
        action='module_deploy',
        model_name='ModuleDeployment',
        object_id=result['transaction_id'],
        object_name=module.entity_name,
        object_reference=result['transaction_number'],
        organization=organization,
        changes={'module_code': module.entity_code, 'status': result['status']},
    )
    return Response(
        {
            'success': succeeded,
            'data': result,
            'message': 'Module deployed successfully' if succeeded else 'Module deployment failed',
        },
        status=status.HTTP_201_CREATED if succeeded else status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def package_template_list_create(request):
    """Package templates visible to an organization, or create one from its modules"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        deployed = services.deployed_module_codes(organization)
        packages = [
            services.package_payload(p, deployed_codes=deployed)
            for p in _templates(organization, services.PACKAGE_TEMPLATE_TYPES)
        ]
        industry = request.query_params.get('industry')
        if industry:
            packages = [p for p in packages if p['industry'] == industry]
        return paginated_response(request, packages, list)

    serializer = PackageTemplateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=MANAGER_ROLES)
    if services.is_system_org(organization) and not is_platform_admin(request.user):
        raise PermissionDenied('System templates are managed by platform administrators')
    entity_code = (data.get('entity_code') or '').strip().upper()
    _ensure_unique_code(organization, entity_code, services.PACKAGE_TEMPLATE_TYPES)

    modules = [
        services.get_accessible_template(organization, module_id, services.MODULE_TEMPLATE_TYPES)
        for module_id in data['modules']
    ]
    configuration = {
        name: data[name] for name in ('description', 'industry') if data.get(name)
    }
    package = services.create_package(
        organization, data['entity_name'], modules,
        user=request.user,
        entity_code=entity_code or None,
        configuration=configuration,
    )
    create_audit_log(
        request=request,
        action='create',
        model_name='PackageTemplate',
        object_id=str(package.id),
        object_name=package.entity_name,
        object_reference=package.entity_code,
        organization=organization,
        changes={'modules': [m.entity_code for m in modules]},
    )
    return Response(services.package_payload(package), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def package_deploy(request):
    """
    Deploy every module of a package.

    With `new_organization` the organization is created first and the caller
    becomes its owner; only system packages can be deployed that way.
    Responds 201 when every module deployed, 207 when some failed and 500
    when all failed.
    """
    serializer = PackageDeploySerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    with db_transaction.atomic():
        if data.get('new_organization'):
            system = services.get_system_organization()
            if system is None:
                raise NotFound('Package template not found or access denied')
            package = services.get_accessible_template(
                system, data['package'], services.PACKAGE_TEMPLATE_TYPES, label='Package template'
            )
            organization = create_organization_with_owner(request, data['new_organization'])
        else:
            organization = require_organization_access(request, data['organization'], roles=MANAGER_ROLES)
            package = services.get_accessible_template(
                organization, data['package'], services.PACKAGE_TEMPLATE_TYPES, label='Package template'
            )
        result = services.deploy_package(organization, package, user=request.user, options=data.get('options'))

    create_audit_log(
        request=request,
        action='package_deploy',
        model_name='PackageDeployment',
        object_id=result['transaction_id'],
        object_name=package.entity_name,
        object_reference=result['transaction_number'],
        organization=organization,
        changes={'status': result['status'], 'summary': result['deployment_summary']},
    )
    response_status = {
        'success': status.HTTP_201_CREATED,
        'partial': status.HTTP_207_MULTI_STATUS,
        'failed': status.HTTP_500_INTERNAL_SERVER_ERROR,
    }[result['status']]
    return Response(
        {
            'success': result['status'] == 'success',
            'data': result,
            'message': f"Package deployment {result['status']}",
        },
        status=response_status,
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def template_analytics(request):
    """Deployment analytics; platform administrators may omit the organization"""
    organization_id = request.query_params.get('organization')
    if not organization_id and not is_platform_admin(request.user):
        raise ValidationError({'organization': 'organization is required'})
    if organization_id:
        organization = require_organization_access(request, organization_id)
        organization_id = str(organization.id)
    return Response(services.build_template_analytics(organization_id or None))
