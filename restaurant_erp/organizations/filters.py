import django_filters

from .models import UserOrganization


class MembershipFilter(django_filters.FilterSet):
    organization = django_filters.UUIDFilter(field_name='organization_id')
    user = django_filters.NumberFilter(field_name='user_id')
    role = django_filters.ChoiceFilter(field_name='role', choices=UserOrganization.ROLE_CHOICES)

    class Meta:
        model = UserOrganization
        fields = ['organization', 'user', 'role']
