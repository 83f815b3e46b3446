"""
Organization monitoring: dashboard summaries and tenant isolation checks
"""
import logging

from django.db.models import Count, F, Q
from django.utils import timezone

from restaurant_erp.core.cache_utils import cached_query, DASHBOARD_CACHE_TTL
from .models import Organization, UserOrganization

logger = logging.getLogger(__name__)


def calculate_health_score(entity_count, transaction_count, user_count):
    score = 100
    if entity_count == 0:
        score -= 30
    if transaction_count == 0:
        score -= 20
    if user_count == 0:
        score -= 20
    return max(score, 0)


def compliance_status(health_score):
    if health_score >= 80:
        return 'compliant'
    if health_score >= 60:
        return 'warning'
    return 'violation'


def determine_features(entity_count, transaction_count, user_count):
    features = []
    if entity_count > 0:
        features.append('universal_entities')
    if transaction_count > 0:
        features.append('transactions')
    if user_count > 1:
        features.append('multi_user')
    if transaction_count >= 100:
        features.append('high_volume')
    return features


def check_tenant_isolation():
    """Count rows that reference entities of another organization"""
    from restaurant_erp.universal.models import Relationship, Metadata
    from restaurant_erp.transactions.models import TransactionLine

    relationship_violations = Relationship.objects.filter(
        ~Q(parent_entity__organization=F('organization')) | ~Q(child_entity__organization=F('organization'))
    ).count()
    metadata_violations = Metadata.objects.filter(
        entity__isnull=False
    ).exclude(entity__organization=F('organization')).count()
    line_violations = TransactionLine.objects.filter(
        entity__isnull=False
    ).exclude(entity__organization=F('transaction__organization')).count()

    total = relationship_violations + metadata_violations + line_violations
    if total:
        logger.warning(f"Tenant isolation check found {total} cross-organization references")
    return {
        'isolated': total == 0,
        'relationship_violations': relationship_violations,
        'metadata_violations': metadata_violations,
        'transaction_line_violations': line_violations,
    }


@cached_query(cache_ttl=DASHBOARD_CACHE_TTL, key_prefix="dashboard_organizations")
def build_organizations_dashboard(limit=20):
    """Per-organization activity summary for platform administrators"""
    organizations = Organization.objects.filter(is_active=True).annotate(
        entity_count=Count('entities', filter=Q(entities__is_active=True), distinct=True),
        transaction_count=Count('transactions', distinct=True),
        user_count=Count('memberships', filter=Q(memberships__is_active=True), distinct=True),
    ).order_by('-created_at')[:limit]

    summaries = []
    for org in organizations:
        health_score = calculate_health_score(org.entity_count, org.transaction_count, org.user_count)
        summaries.append({
            'id': str(org.id),
            'name': org.org_name,
            'code': org.org_code,
            'industry': org.industry or 'Unknown',
            'entity_count': org.entity_count,
            'transaction_count': org.transaction_count,
            'user_count': org.user_count,
            'last_activity': (org.updated_at or org.created_at).isoformat(),
            'health_score': health_score,
            'compliance_status': compliance_status(health_score),
            'features': determine_features(org.entity_count, org.transaction_count, org.user_count),
            'created_at': org.created_at.isoformat(),
        })

    totals = {
        'total_organizations': Organization.objects.count(),
        'active_organizations': Organization.objects.filter(is_active=True).count(),
        'active_memberships': UserOrganization.objects.filter(is_active=True).count(),
        'average_health_score': (
            round(sum(s['health_score'] for s in summaries) / len(summaries), 1) if summaries else 0
        ),
    }

    return {
        'organizations': summaries,
        'totals': totals,
        'isolation_status': check_tenant_isolation(),
        'compliance_issues': [
            {'organization_id': s['id'], 'name': s['name'], 'status': s['compliance_status']}
            for s in summaries if s['compliance_status'] != 'compliant'
        ],
        'timestamp': timezone.now().isoformat(),
    }
