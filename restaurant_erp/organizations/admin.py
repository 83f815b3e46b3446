from django.contrib import admin
from .models import Organization, UserOrganization


class UserOrganizationInline(admin.TabularInline):
    model = UserOrganization
    extra = 0
    fields = ['user', 'role', 'is_active']


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ['org_name', 'org_code', 'industry', 'currency', 'is_active', 'created_at']
    list_filter = ['is_active', 'industry', 'created_at']
    search_fields = ['org_name', 'org_code']
    ordering = ['org_name']
    readonly_fields = ['id', 'created_at', 'updated_at']
    inlines = [UserOrganizationInline]


@admin.register(UserOrganization)
class UserOrganizationAdmin(admin.ModelAdmin):
    list_display = ['user', 'organization', 'role', 'is_active', 'created_at']
    list_filter = ['role', 'is_active']
    search_fields = ['user__username', 'organization__org_name', 'organization__org_code']
