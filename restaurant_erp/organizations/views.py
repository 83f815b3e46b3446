import logging

from django.db import transaction
from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated, IsAdminUser
from rest_framework.response import Response

from restaurant_erp.core.exceptions import Conflict
from restaurant_erp.core.utils import create_audit_log
from .filters import MembershipFilter
from .models import UserOrganization
from .permissions import (
    MANAGER_ROLES, ensure_can_grant_role, get_accessible_organizations, is_platform_admin,
    require_organization_access,
)
from .serializers import (
    OrganizationSerializer, UserOrganizationSerializer, MembershipCreateSerializer,
    membership_with_details,
)
from .services import build_organizations_dashboard

logger = logging.getLogger(__name__)


def create_organization_with_owner(request, data):
    """Validate and insert an organization; the requesting user becomes its owner"""
    serializer = OrganizationSerializer(data=data, context={'request': request})
    serializer.is_valid(raise_exception=True)
    with transaction.atomic():
        organization = serializer.save(created_by=request.user)
        UserOrganization.objects.create(
            user=request.user,
            organization=organization,
            role=UserOrganization.ROLE_OWNER,
        )
    logger.info(f"Organization {organization.org_code} created by {request.user.username}")
    create_audit_log(
        request=request,
        action='create',
        model_name='Organization',
        object_id=str(organization.id),
        object_name=organization.org_name,
        object_reference=organization.org_code,
        organization=organization,
        changes={'org_name': organization.org_name, 'org_code': organization.org_code},
    )
    return organization


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def organization_list_create(request):
    """List the user's organizations or create a new one"""
    if request.method == 'GET':
        queryset = get_accessible_organizations(request.user)

        is_active = request.query_params.get('is_active', 'true').lower()
        if is_active in ('true', 'false'):
            queryset = queryset.filter(is_active=(is_active == 'true'))

        search = request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(Q(org_name__icontains=search) | Q(org_code__icontains=search))

        serializer = OrganizationSerializer(queryset.order_by('org_name'), many=True, context={'request': request})
        return Response(serializer.data)

    organization = create_organization_with_owner(request, request.data)
    return Response(
        OrganizationSerializer(organization, context={'request': request}).data,
        status=status.HTTP_201_CREATED,
    )


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def organization_detail(request, pk):
    """Retrieve, update or deactivate an organization"""
    if request.method == 'GET':
        organization = require_organization_access(request, pk, active_only=False)
        return Response(OrganizationSerializer(organization, context={'request': request}).data)

    if request.method in ('PUT', 'PATCH'):
        organization = require_organization_access(request, pk, roles=MANAGER_ROLES)
        serializer = OrganizationSerializer(
            organization, data=request.data, partial=request.method == 'PATCH',
            context={'request': request},
        )
        serializer.is_valid(raise_exception=True)
        organization = serializer.save()
        create_audit_log(
            request=request,
            action='update',
            model_name='Organization',
            object_id=str(organization.id),
            object_name=organization.org_name,
            object_reference=organization.org_code,
            organization=organization,
            changes={key: str(value) for key, value in serializer.validated_data.items()},
        )
        return Response(serializer.data)

    # DELETE: soft delete, owners only
    organization = require_organization_access(request, pk, roles=[UserOrganization.ROLE_OWNER])
    organization.is_active = False
    organization.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"Organization {organization.org_code} deactivated by {request.user.username}")
    create_audit_log(
        request=request,
        action='soft_delete',
        model_name='Organization',
        object_id=str(organization.id),
        object_name=organization.org_name,
        object_reference=organization.org_code,
        organization=organization,
    )
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def user_organization_list_create(request):
    """List memberships or add a user to an organization"""
    if request.method == 'GET':
        queryset = UserOrganization.objects.filter(is_active=True).select_related('user', 'organization')
        if not is_platform_admin(request.user):
            queryset = queryset.filter(organization__in=get_accessible_organizations(request.user))

        filterset = MembershipFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            raise ValidationError(filterset.errors)

        queryset = filterset.qs.order_by('-created_at')
        if request.query_params.get('include_details') == 'true':
            return Response([membership_with_details(m) for m in queryset])
        return Response(UserOrganizationSerializer(queryset, many=True).data)

    serializer = MembershipCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    organization = require_organization_access(
        request, serializer.validated_data['organization'], roles=MANAGER_ROLES
    )
    user = serializer.validated_data['user']
    role = serializer.validated_data['role']
    ensure_can_grant_role(request, organization, role)

    existing = UserOrganization.objects.filter(user=user, organization=organization).first()
    if existing and existing.is_active:
        raise Conflict('User is already a member of this organization')

    if existing:
        existing.is_active = True
        existing.role = role
        existing.save(update_fields=['is_active', 'role', 'updated_at'])
        membership = existing
    else:
        membership = UserOrganization.objects.create(user=user, organization=organization, role=role)

    create_audit_log(
        request=request,
        action='member_add',
        model_name='UserOrganization',
        object_id=str(membership.id),
        object_name=user.username,
        object_reference=organization.org_code,
        organization=organization,
        changes={'user_id': user.id, 'role': role, 'reactivated': bool(existing)},
    )
    return Response(membership_with_details(membership), status=status.HTTP_201_CREATED)


def _ensure_owner_remains(membership, new_role=None, deactivate=False):
    """Reject changes that would leave an organization without an active owner"""
    if membership.role != UserOrganization.ROLE_OWNER or not membership.is_active:
        return
    losing_owner = deactivate or (new_role is not None and new_role != UserOrganization.ROLE_OWNER)
    if losing_owner and membership.organization.get_owner_count() <= 1:
        raise ValidationError({'role': 'An organization must keep at least one active owner'})


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def user_organization_detail(request, pk):
    """Retrieve, update or remove a membership"""
    membership = get_object_or_404(UserOrganization.objects.select_related('user', 'organization'), pk=pk)

    if request.method == 'GET':
        if membership.user_id != request.user.id:
            require_organization_access(request, membership.organization_id)
        return Response(membership_with_details(membership))

    organization = require_organization_access(request, membership.organization_id, roles=MANAGER_ROLES)

    if request.method == 'PATCH':
        serializer = UserOrganizationSerializer(membership, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        ensure_can_grant_role(request, organization, serializer.validated_data.get('role'))
        _ensure_owner_remains(
            membership,
            new_role=serializer.validated_data.get('role'),
            deactivate=serializer.validated_data.get('is_active') is False,
        )
        membership = serializer.save()
        create_audit_log(
            request=request,
            action='member_update',
            model_name='UserOrganization',
            object_id=str(membership.id),
            object_name=membership.user.username,
            object_reference=membership.organization.org_code,
            organization=membership.organization_id,
            changes={key: str(value) for key, value in serializer.validated_data.items()},
        )
        return Response(membership_with_details(membership))

    # DELETE
    _ensure_owner_remains(membership, deactivate=True)
    membership.is_active = False
    membership.save(update_fields=['is_active', 'updated_at'])
    create_audit_log(
        request=request,
        action='member_remove',
        model_name='UserOrganization',
        object_id=str(membership.id),
        object_name=membership.user.username,
        object_reference=membership.organization.org_code,
        organization=membership.organization_id,
    )
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminUser])
def organizations_dashboard(request):
    """Tenant monitoring dashboard for platform administrators"""
    try:
        limit = int(request.query_params.get('limit', 20))
    except ValueError:
        raise ValidationError({'limit': 'limit must be an integer'})
    return Response(build_organizations_dashboard(limit=max(1, min(limit, 100))))
