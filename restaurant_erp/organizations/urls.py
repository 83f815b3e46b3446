from django.urls import path
from .views import (
    organization_list_create, organization_detail,
    user_organization_list_create, user_organization_detail,
    organizations_dashboard,
)

urlpatterns = [
    # Organization endpoints
    path('organizations/', organization_list_create, name='organization-list-create'),
    path('organizations/<uuid:pk>/', organization_detail, name='organization-detail'),

    # Membership endpoints
    path('user-organizations/', user_organization_list_create, name='user-organization-list-create'),
    path('user-organizations/<int:pk>/', user_organization_detail, name='user-organization-detail'),

    # Monitoring
    path('dashboard/organizations/', organizations_dashboard, name='organizations-dashboard'),
]
