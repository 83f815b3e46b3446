from django.urls import path
from .views import (
    entity_list_create, entity_detail, entity_dynamic_data,
    relationship_list_create, relationship_detail,
    metadata_list_create, metadata_detail,
)

urlpatterns = [
    # Entity endpoints
    path('entities/', entity_list_create, name='entity-list-create'),
    path('entities/<uuid:pk>/', entity_detail, name='entity-detail'),
    path('entities/<uuid:pk>/dynamic-data/', entity_dynamic_data, name='entity-dynamic-data'),

    # Relationship endpoints
    path('relationships/', relationship_list_create, name='relationship-list-create'),
    path('relationships/<int:pk>/', relationship_detail, name='relationship-detail'),

    # Metadata endpoints
    path('metadata/', metadata_list_create, name='metadata-list-create'),
    path('metadata/<int:pk>/', metadata_detail, name='metadata-detail'),
]
