"""
Organization scoping helpers

Views resolve the organization a request targets through these helpers. They
raise DRF exceptions, which the API exception handler turns into 400/403/404
responses.
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from .models import Organization, UserOrganization

MANAGER_ROLES = [UserOrganization.ROLE_OWNER, UserOrganization.ROLE_MANAGER]
WRITE_ROLES = [
    UserOrganization.ROLE_OWNER,
    UserOrganization.ROLE_MANAGER,
    UserOrganization.ROLE_STAFF,
    UserOrganization.ROLE_ACCOUNTANT,
]


def is_platform_admin(user):
    return bool(user and user.is_authenticated and (user.is_staff or user.is_superuser))


def get_membership(user, organization):
    """Active membership of user in organization, or None"""
    if not user or not user.is_authenticated:
        return None
    return UserOrganization.objects.filter(
        user=user, organization=organization, is_active=True
    ).first()


def get_accessible_organizations(user):
    """Organizations the user can see: all for staff, active memberships otherwise"""
    if is_platform_admin(user):
        return Organization.objects.all()
    return Organization.objects.filter(
        memberships__user=user, memberships__is_active=True
    ).distinct()


def organization_id_from_request(request, field='organization', required=True):
    """Read the organization id from the body (writes) or the query string (reads)"""
    value = None
    if request.method not in ('GET', 'HEAD', 'OPTIONS') and hasattr(request.data, 'get'):
        value = request.data.get(field)
    if not value:
        value = request.query_params.get(field)
    if not value and required:
        raise ValidationError({field: f'{field} is required'})
    return value


def get_organization_or_404(organization_id, active_only=True):
    queryset = Organization.objects.all()
    if active_only:
        queryset = queryset.filter(is_active=True)
    try:
        return queryset.get(pk=organization_id)
    except (Organization.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Organization not found or inactive')


def require_organization_access(request, organization_id, roles=None, active_only=True):
    """
    Return the organization after checking the requesting user's membership.

    Args:
        request: DRF request
        organization_id: organization primary key (UUID or string)
        roles: optional list of roles allowed to perform the action
        active_only: reject deactivated organizations with 404
    """
    organization = get_organization_or_404(organization_id, active_only=active_only)
    user = request.user

    if is_platform_admin(user):
        return organization

    membership = get_membership(user, organization)
    if membership is None:
        raise PermissionDenied('You are not a member of this organization')
    if roles and membership.role not in roles:
        raise PermissionDenied(f"Role '{membership.role}' is not allowed to perform this action")
    return organization


def resolve_request_organization(request, roles=None, field='organization'):
    """Shortcut: read the organization id from the request and check access"""
    organization_id = organization_id_from_request(request, field=field)
    return require_organization_access(request, organization_id, roles=roles)


def ensure_can_grant_role(request, organization, role):
    """Only owners (and platform admins) may hand out the owner role"""
    if role != UserOrganization.ROLE_OWNER or is_platform_admin(request.user):
        return
    membership = get_membership(request.user, organization)
    if membership is None or membership.role != UserOrganization.ROLE_OWNER:
        raise PermissionDenied('Only owners can grant the owner role')
