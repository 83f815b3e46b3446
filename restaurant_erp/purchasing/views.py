import logging
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from restaurant_erp.core.pagination import paginated_response
from restaurant_erp.core.utils import create_audit_log
from restaurant_erp.organizations.permissions import (
    MANAGER_ROLES, WRITE_ROLES, require_organization_access, resolve_request_organization,
)
from restaurant_erp.transactions.filters import TransactionFilter
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import get_entity
from . import services
from .serializers import (
    PurchaseOrderCreateSerializer, PurchaseOrderUpdateSerializer, PurchaseOrderSerializer,
    ApprovalActionSerializer, GoodsReceiptCreateSerializer, GoodsReceiptSerializer,
)

logger = logging.getLogger(__name__)


def _get_purchase_order(pk, organization_id=None):
    filters = {'pk': pk, 'transaction_type': services.PURCHASE_ORDER}
    if organization_id is not None:
        filters['organization_id'] = organization_id
    try:
        return UniversalTransaction.objects.select_related('organization').get(**filters)
    except (UniversalTransaction.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Purchase order not found')


def _resolve_items(organization, items):
    resolved = []
    for index, item in enumerate(items, start=1):
        entity = get_entity(organization, item['item'], entity_type=services.INVENTORY_ITEM,
                            field=f'items[{index}].item')
        resolved.append({**item, 'item': entity})
    return resolved


def _filtered_transactions(request, organization, transaction_type):
    queryset = UniversalTransaction.objects.filter(
        organization=organization, transaction_type=transaction_type
    ).prefetch_related('lines__entity')
    filterset = TransactionFilter(request.query_params, queryset=queryset)
    if not filterset.is_valid():
        raise ValidationError(filterset.errors)
    return filterset.qs


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def purchase_order_list_create(request):
    """List purchase orders or create one (auto-approved below the threshold)"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        queryset = _filtered_transactions(request, organization, services.PURCHASE_ORDER)
        supplier_id = request.query_params.get('supplier')
        if supplier_id:
            queryset = queryset.filter(transaction_data__supplier_id=supplier_id)
        queryset = queryset.order_by('-transaction_date', '-created_at')
        return paginated_response(
            request, queryset, lambda page: PurchaseOrderSerializer(page, many=True).data
        )

    serializer = PurchaseOrderCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=WRITE_ROLES)

    supplier = get_entity(organization, data['supplier'], entity_type=services.SUPPLIER, field='supplier')
    items = _resolve_items(organization, data['items'])
    po = services.create_purchase_order(
        organization, supplier, items, request.user,
        notes=data.get('notes', ''),
        expected_delivery_date=data.get('expected_delivery_date'),
        reference_number=data.get('reference_number', ''),
        transaction_date=data.get('transaction_date'),
    )
    create_audit_log(
        request=request,
        action='po_submit',
        model_name='PurchaseOrder',
        object_id=str(po.id),
        object_name=supplier.entity_name,
        object_reference=po.transaction_number,
        organization=organization,
        changes={
            'total_amount': str(po.total_amount),
            'workflow_status': po.workflow_status,
            'approval_level': po.transaction_data.get('approval_level'),
        },
    )
    return Response(PurchaseOrderSerializer(po).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def purchase_order_detail(request, pk):
    """Retrieve, modify (while awaiting approval) or cancel a purchase order"""
    po = _get_purchase_order(pk)

    if request.method == 'GET':
        require_organization_access(request, po.organization_id)
        return Response(PurchaseOrderSerializer(po).data)

    roles = MANAGER_ROLES if request.method == 'DELETE' else WRITE_ROLES
    organization = require_organization_access(request, po.organization_id, roles=roles)

    if request.method in ('PUT', 'PATCH'):
        serializer = PurchaseOrderUpdateSerializer(data=request.data, partial=request.method == 'PATCH')
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if request.method == 'PUT' and 'items' not in data:
            raise ValidationError({'items': 'items are required'})

        supplier = None
        if data.get('supplier'):
            supplier = get_entity(organization, data['supplier'], entity_type=services.SUPPLIER, field='supplier')
        items = _resolve_items(organization, data['items']) if 'items' in data else None

        po = services.update_purchase_order(
            po, request.user,
            supplier=supplier,
            items=items,
            notes=data.get('notes'),
            expected_delivery_date=data.get('expected_delivery_date'),
        )
        create_audit_log(
            request=request,
            action='update',
            model_name='PurchaseOrder',
            object_id=str(po.id),
            object_reference=po.transaction_number,
            organization=organization,
            changes={'total_amount': str(po.total_amount), 'workflow_status': po.workflow_status},
        )
        return Response(PurchaseOrderSerializer(po).data)

    # DELETE: cancel
    reason = request.query_params.get('reason', '')
    po = services.cancel_purchase_order(po, request.user, reason=reason)
    create_audit_log(
        request=request,
        action='po_cancel',
        model_name='PurchaseOrder',
        object_id=str(po.id),
        object_reference=po.transaction_number,
        organization=organization,
        changes={'reason': reason},
    )
    return Response(PurchaseOrderSerializer(po).data)


def _approval_row(po):
    data = po.transaction_data
    status_value = po.workflow_status or po.transaction_status
    approval_status = data.get('approval_status')

    supplier_name = data.get('supplier_name')
    supplier_id = data.get('supplier_id')
    if supplier_id and not supplier_name:
        supplier = Entity.objects.filter(pk=supplier_id, entity_type=services.SUPPLIER).first()
        supplier_name = supplier.entity_name if supplier else None

    return {
        'id': str(po.id),
        'po_number': po.transaction_number,
        'date': po.transaction_date,
        'amount': str(po.total_amount),
        'currency': po.currency,
        'status': status_value,
        'approval_level': services.get_required_approval_level(po.total_amount),
        'current_approver': data.get('current_approver_name') or services.get_next_approver(po.total_amount),
        'approval_status': approval_status,
        'supplier': {'id': supplier_id, 'name': supplier_name or 'Unknown Supplier'},
        'items': data.get('items', []),
        'approval_info': {
            'approved_by': data.get('approved_by'),
            'approval_date': data.get('approval_date'),
            'notes': data.get('approval_notes'),
        } if data.get('approved_by') else None,
        'rejection_info': {
            'rejected_by': data.get('rejected_by'),
            'rejection_date': data.get('rejection_date'),
            'reason': data.get('rejection_reason'),
        } if approval_status == services.STATUS_REJECTED else None,
        'modification_info': {
            'requested_by': data.get('modification_requested_by'),
            'request_date': data.get('modification_request_date'),
            'requests': data.get('modification_requests'),
            'notes': data.get('modification_notes'),
        } if approval_status == services.STATUS_MODIFICATION else None,
        'created_at': po.created_at,
        'updated_at': po.updated_at,
    }


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def purchase_order_approval(request):
    """Approval queue (GET) and approval decisions (POST)"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        status_filter = request.query_params.get('status', services.STATUS_PENDING)
        queryset = UniversalTransaction.objects.filter(
            organization=organization, transaction_type=services.PURCHASE_ORDER
        )
        if status_filter != 'all':
            queryset = queryset.filter(workflow_status=status_filter)
        rows = [_approval_row(po) for po in queryset.order_by('-transaction_date', '-created_at')]

        def count(value):
            return sum(1 for row in rows if row['status'] == value)

        return Response({
            'results': rows,
            'summary': {
                'total': len(rows),
                'pending_approval': count(services.STATUS_PENDING),
                'approved': count(services.STATUS_APPROVED),
                'rejected': count(services.STATUS_REJECTED),
                'modification_requested': count(services.STATUS_MODIFICATION),
                'total_value': str(sum((Decimal(row['amount']) for row in rows), Decimal('0'))),
            },
        })

    serializer = ApprovalActionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'])
    po = _get_purchase_order(data['purchase_order'], organization_id=organization.id)

    po = services.apply_approval_action(
        po, data['action'], request.user,
        notes=data['notes'],
        modification_requests=data['modification_requests'],
    )
    audit_action = {
        'approve': 'po_approve',
        'reject': 'po_reject',
        'request_modification': 'po_request_modification',
    }[data['action']]
    logger.info(f"Purchase order {po.transaction_number} {data['action']} by {request.user.username}")
    create_audit_log(
        request=request,
        action=audit_action,
        model_name='PurchaseOrder',
        object_id=str(po.id),
        object_reference=po.transaction_number,
        organization=organization,
        changes={'workflow_status': po.workflow_status, 'notes': data['notes']},
    )
    return Response({
        'purchase_order': str(po.id),
        'po_number': po.transaction_number,
        'action': data['action'],
        'status': po.workflow_status,
        'approver': request.user.username,
        'approval_level': services.get_required_approval_level(po.total_amount),
        'next_approver': services.get_next_approver(po.total_amount),
        'amount': str(po.total_amount),
        'message': f"Purchase order {data['action'].replace('_', ' ')} recorded",
    })


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def goods_receipt_list_create(request):
    """List goods receipts or receive a delivery"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        queryset = _filtered_transactions(request, organization, services.GOODS_RECEIPT)
        supplier_id = request.query_params.get('supplier')
        purchase_order_id = request.query_params.get('purchase_order')
        if supplier_id:
            queryset = queryset.filter(transaction_data__supplier_id=supplier_id)
        if purchase_order_id:
            queryset = queryset.filter(transaction_data__purchase_order_id=purchase_order_id)
        queryset = queryset.order_by('-transaction_date', '-created_at')
        return paginated_response(
            request, queryset, lambda page: GoodsReceiptSerializer(page, many=True).data
        )

    serializer = GoodsReceiptCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = dict(serializer.validated_data)
    organization = require_organization_access(request, data.pop('organization'), roles=WRITE_ROLES)

    supplier = get_entity(organization, data.pop('supplier'), entity_type=services.SUPPLIER, field='supplier')
    purchase_order_id = data.pop('purchase_order', None)
    purchase_order = None
    if purchase_order_id:
        try:
            purchase_order = UniversalTransaction.objects.get(
                pk=purchase_order_id, organization=organization, transaction_type=services.PURCHASE_ORDER
            )
        except UniversalTransaction.DoesNotExist:
            raise ValidationError({'purchase_order': 'Purchase order not found in this organization'})

    items = _resolve_items(organization, data.pop('items'))
    receipt, quality_score, variance_rate, po_status = services.record_goods_receipt(
        organization, supplier, items, request.user,
        purchase_order=purchase_order,
        **data,
    )
    create_audit_log(
        request=request,
        action='goods_receipt',
        model_name='GoodsReceipt',
        object_id=str(receipt.id),
        object_name=supplier.entity_name,
        object_reference=receipt.transaction_number,
        organization=organization,
        changes={
            'total_amount': str(receipt.total_amount),
            'purchase_order': purchase_order.transaction_number if purchase_order else None,
            'purchase_order_status': po_status,
        },
    )
    response = GoodsReceiptSerializer(receipt).data
    response['quality_score'] = str(quality_score)
    response['variance_rate'] = str(variance_rate)
    response['purchase_order_status'] = po_status
    return Response(response, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def supplier_performance(request, pk):
    """Delivery and quality metrics of a supplier"""
    try:
        supplier = Entity.objects.get(pk=pk, entity_type=services.SUPPLIER)
    except Entity.DoesNotExist:
        raise NotFound('Supplier not found')
    organization = require_organization_access(request, supplier.organization_id)
    return Response(services.supplier_performance(organization, supplier))
