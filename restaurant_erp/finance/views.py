import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Q
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from restaurant_erp.core.utils import create_audit_log
from restaurant_erp.deployment.services import CHART_OF_ACCOUNT
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.organizations.permissions import require_organization_access, resolve_request_organization
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity
from . import coa_import, services
from .serializers import (
    PostingQueueQuerySerializer, GLPostingSerializer, ValidationQuerySerializer,
    AccountImportSerializer, TemplateQuerySerializer,
)

logger = logging.getLogger(__name__)

FINANCE_ROLES = [
    UserOrganization.ROLE_OWNER,
    UserOrganization.ROLE_MANAGER,
    UserOrganization.ROLE_ACCOUNTANT,
]


def _query(serializer_class, request):
    serializer = serializer_class(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def gl_posting(request):
    """Posting queue (GET) or batch posting to the general ledger (POST)"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        filters = _query(PostingQueueQuerySerializer, request)
        queue = services.build_posting_queue(
            organization,
            status=filters.get('status'),
            period=filters.get('period'),
            include_details=filters['include_details'],
        )
        return Response({'organization': str(organization.id), 'filters': filters, **queue})

    serializer = GLPostingSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=FINANCE_ROLES)

    outcome = services.post_to_ledger(
        organization, request.user,
        transaction_ids=data.get('transaction_ids'),
        posting_date=data.get('posting_date'),
        posting_period=data.get('posting_period'),
        allow_partial_posting=data['allow_partial_posting'],
        dry_run=data['dry_run'],
        posting_description=data['posting_description'],
    )
    summary = outcome['summary']
    posted = [
        result['transaction_number'] for result in outcome['results']
        if result['posting_status'] == services.RESULT_POSTED
    ]
    if not data['dry_run']:
        create_audit_log(
            request=request,
            action='transaction_post',
            model_name='GLPostingBatch',
            object_id=summary['batch_id'],
            object_name=f"GL batch {summary['posting_period']}",
            object_reference=summary['batch_id'],
            organization=organization,
            changes={
                'posted': posted,
                'failed': summary['failed_posts'],
                'skipped': summary['skipped_posts'],
                'total_debit_amount': summary['total_debit_amount'],
            },
        )
    return Response(outcome)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def gl_validation_queue(request):
    """Double-entry validation of the organization's GL transactions"""
    organization = resolve_request_organization(request)
    scope = _query(ValidationQuerySerializer, request)['scope']
    report = services.build_validation_report(organization, scope=scope)
    return Response({'organization': str(organization.id), 'scope': scope, **report})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def gl_transaction_validation(request, pk):
    try:
        txn = UniversalTransaction.objects.select_related('organization').get(pk=pk)
    except (UniversalTransaction.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Transaction not found')
    require_organization_access(request, txn.organization_id)
    return Response(services.validate_transaction(txn))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def chart_of_accounts_list(request):
    """Active GL accounts, optionally filtered by account type or search text"""
    organization = resolve_request_organization(request)
    queryset = Entity.objects.filter(
        organization=organization, entity_type=CHART_OF_ACCOUNT, is_active=True
    ).prefetch_related('dynamic_data').order_by('entity_code')

    search = request.query_params.get('search', '').strip()
    if search:
        queryset = queryset.filter(Q(entity_name__icontains=search) | Q(entity_code__icontains=search))

    accounts = [services.account_payload(account) for account in queryset]
    account_type = request.query_params.get('account_type', '').strip().upper()
    if account_type:
        accounts = [a for a in accounts if a['account_type'] == account_type]
    return Response({'accounts': accounts, 'count': len(accounts)})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def chart_of_accounts_import(request):
    """CSV template for a format (GET) or import of an accounting software export (POST)"""
    if request.method == 'GET':
        file_format = _query(TemplateQuerySerializer, request)['file_format']
        return Response(coa_import.csv_template(file_format))

    serializer = AccountImportSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=FINANCE_ROLES)

    parsed = coa_import.parse_import(
        data['file_content'],
        file_format=data['file_format'],
        field_mapping=data.get('field_mapping'),
        has_headers=data['has_headers'],
        skip_rows=data['skip_rows'],
    )
    if data['preview_mode']:
        return Response({
            'data': parsed,
            'message': f"Parsed {parsed['parsed_accounts']} accounts from {parsed['total_rows']} rows",
        })

    migration = coa_import.import_accounts(
        organization, parsed['accounts'], parsed['detected_format'],
        conflict_resolution=data['conflict_resolution'], user=request.user,
    )
    create_audit_log(
        request=request,
        action='bulk_upload',
        model_name='ChartOfAccount',
        object_id=str(organization.id),
        object_name=organization.org_name,
        object_reference=parsed['detected_format'],
        organization=organization,
        changes={
            'created': migration['created'],
            'updated': migration['updated'],
            'skipped': migration['skipped'],
            'row_errors': len(parsed['errors']),
        },
    )
    return Response({
        'data': {'import_result': parsed, 'migration_result': migration},
        'message': (
            f"Imported {migration['created']} accounts, updated {migration['updated']}, "
            f"skipped {migration['skipped']}"
        ),
    })
