"""
URL configuration for the restaurant ERP backend.

Every app mounts its routes under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "Restaurant ERP Admin Panel"
admin.site.site_title = "Restaurant ERP Admin Portal"
admin.site.index_title = "Universal schema administration"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('restaurant_erp.core.urls')),
    path('api/v1/', include('restaurant_erp.organizations.urls')),
    path('api/v1/', include('restaurant_erp.universal.urls')),
    path('api/v1/', include('restaurant_erp.transactions.urls')),
    path('api/v1/', include('restaurant_erp.purchasing.urls')),
    path('api/v1/', include('restaurant_erp.restaurant.urls')),
    path('api/v1/', include('restaurant_erp.deployment.urls')),
    path('api/v1/', include('restaurant_erp.finance.urls')),
    re_path(r'^media/(?P<path>.*)$', serve, {'document_root': settings.MEDIA_ROOT}),
    re_path(r'^static/(?P<path>.*)$', serve, {'document_root': settings.STATIC_ROOT}),
]
