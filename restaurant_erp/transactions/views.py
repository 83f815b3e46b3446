import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction as db_transaction
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from restaurant_erp.core.pagination import paginated_response
from restaurant_erp.core.utils import create_audit_log
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.organizations.permissions import (
    MANAGER_ROLES, WRITE_ROLES, require_organization_access, resolve_request_organization,
)
from restaurant_erp.universal.services import get_entity
from .filters import TransactionFilter
from .models import UniversalTransaction
from .serializers import (
    TransactionSerializer, TransactionDetailSerializer, TransactionCreateSerializer,
    TransactionUpdateSerializer, TransactionLineSerializer, TransactionLineWriteSerializer,
)
from .services import (
    create_transaction, add_line, post_transaction, ensure_generic_writable, is_module_transaction,
)

logger = logging.getLogger(__name__)

# Header fields module-owned transactions still accept on the generic endpoint
MODULE_EDITABLE_FIELDS = {'reference_number'}


def get_transaction_or_404(pk):
    try:
        return UniversalTransaction.objects.select_related('organization', 'created_by').get(pk=pk)
    except (UniversalTransaction.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Transaction not found')


def _line_kwargs(organization, line):
    """Resolve the entity reference of a validated line payload"""
    line = dict(line)
    entity_id = line.pop('entity', None)
    line['entity'] = get_entity(organization, entity_id, active_only=False) if entity_id else None
    return line


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def transaction_list_create(request):
    """List transactions of an organization or create one with optional lines"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        queryset = UniversalTransaction.objects.filter(organization=organization).select_related('created_by')
        filterset = TransactionFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            raise ValidationError(filterset.errors)
        queryset = filterset.qs.order_by('-transaction_date', '-created_at')
        return paginated_response(
            request, queryset, lambda page: TransactionSerializer(page, many=True).data
        )

    serializer = TransactionCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = dict(serializer.validated_data)
    organization = require_organization_access(request, data.pop('organization'), roles=WRITE_ROLES)

    transaction_type = data.pop('transaction_type')
    ensure_generic_writable(transaction_type)
    lines = [_line_kwargs(organization, line) for line in data.pop('lines', [])]
    transaction_number = data.pop('transaction_number', None) or None

    txn = create_transaction(
        organization, transaction_type, lines=lines, user=request.user,
        transaction_number=transaction_number, **data
    )
    create_audit_log(
        request=request,
        action='create',
        model_name='UniversalTransaction',
        object_id=str(txn.id),
        object_name=txn.transaction_type,
        object_reference=txn.transaction_number,
        organization=organization,
        changes={'total_amount': str(txn.total_amount), 'lines': len(lines)},
    )
    return Response(TransactionDetailSerializer(txn).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def transaction_detail(request, pk):
    """Retrieve, update the header of, or delete a draft transaction"""
    txn = get_transaction_or_404(pk)

    if request.method == 'GET':
        require_organization_access(request, txn.organization_id)
        return Response(TransactionDetailSerializer(txn).data)

    if request.method == 'PATCH':
        organization = require_organization_access(request, txn.organization_id, roles=WRITE_ROLES)
        if txn.transaction_status == UniversalTransaction.STATUS_POSTED:
            raise ValidationError({'transaction_status': 'Posted transactions cannot be modified'})
        if is_module_transaction(txn.transaction_type):
            locked = sorted(set(request.data) - MODULE_EDITABLE_FIELDS)
            if locked:
                raise ValidationError({
                    field: f"{txn.transaction_type} transactions are managed through their own endpoints"
                    for field in locked
                })
        serializer = TransactionUpdateSerializer(txn, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        txn = serializer.save()
        create_audit_log(
            request=request,
            action='update',
            model_name='UniversalTransaction',
            object_id=str(txn.id),
            object_reference=txn.transaction_number,
            organization=organization,
            changes={key: str(value) for key, value in serializer.validated_data.items()},
        )
        return Response(TransactionDetailSerializer(txn).data)

    # DELETE: drafts only
    organization = require_organization_access(request, txn.organization_id, roles=MANAGER_ROLES)
    ensure_generic_writable(txn.transaction_type)
    if txn.transaction_status != UniversalTransaction.STATUS_DRAFT:
        raise ValidationError({'transaction_status': 'Only draft transactions can be deleted'})
    transaction_id, transaction_number = str(txn.id), txn.transaction_number
    txn.delete()
    create_audit_log(
        request=request,
        action='delete',
        model_name='UniversalTransaction',
        object_id=transaction_id,
        object_reference=transaction_number,
        organization=organization,
    )
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def transaction_lines(request, pk):
    """List the lines of a transaction or add one (the total is recalculated)"""
    txn = get_transaction_or_404(pk)

    if request.method == 'GET':
        require_organization_access(request, txn.organization_id)
        lines = txn.lines.select_related('entity')
        return Response(TransactionLineSerializer(lines, many=True).data)

    organization = require_organization_access(request, txn.organization_id, roles=WRITE_ROLES)
    ensure_generic_writable(txn.transaction_type)
    if txn.transaction_status != UniversalTransaction.STATUS_DRAFT:
        raise ValidationError({'transaction_status': 'Lines can only be added to draft transactions'})

    serializer = TransactionLineWriteSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    with db_transaction.atomic():
        line = add_line(txn, **_line_kwargs(organization, serializer.validated_data))
        txn.recalculate_total()
    return Response({
        'line': TransactionLineSerializer(line).data,
        'total_amount': str(txn.total_amount),
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def transaction_post(request, pk):
    """Mark a transaction as posted"""
    txn = get_transaction_or_404(pk)
    organization = require_organization_access(
        request, txn.organization_id,
        roles=MANAGER_ROLES + [UserOrganization.ROLE_ACCOUNTANT],
    )
    txn = post_transaction(txn)
    logger.info(f"Transaction {txn.transaction_number} posted by {request.user.username}")
    create_audit_log(
        request=request,
        action='transaction_post',
        model_name='UniversalTransaction',
        object_id=str(txn.id),
        object_reference=txn.transaction_number,
        organization=organization,
    )
    return Response(TransactionDetailSerializer(txn).data)
