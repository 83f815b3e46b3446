from django.urls import path
from .views import (
    module_template_list_create, module_template_detail, module_deploy,
    package_template_list_create, package_deploy, template_analytics,
)

urlpatterns = [
    # Module templates
    path('templates/modules/', module_template_list_create, name='module-template-list-create'),
    path('templates/modules/deploy/', module_deploy, name='module-deploy'),
    path('templates/modules/<uuid:pk>/', module_template_detail, name='module-template-detail'),

    # Package templates
    path('templates/packages/', package_template_list_create, name='package-template-list-create'),
    path('templates/packages/deploy/', package_deploy, name='package-deploy'),

    # Analytics
    path('templates/analytics/', template_analytics, name='template-analytics'),
]
