from django.urls import path
from .views import (
    menu_category_list_create, menu_item_list_create, menu_item_detail, menu_analytics,
    inventory_item_list_create, inventory_item_detail,
    recipe_list_create, recipe_detail,
    order_list_create, order_detail, order_status_update,
    bulk_upload_recipes, bulk_upload_inventory_items, bulk_upload_menu_items,
)

urlpatterns = [
    # Menu
    path('restaurant/menu-categories/', menu_category_list_create, name='menu-category-list-create'),
    path('restaurant/menu-items/', menu_item_list_create, name='menu-item-list-create'),
    path('restaurant/menu-items/<uuid:pk>/', menu_item_detail, name='menu-item-detail'),
    path('restaurant/menu-analytics/', menu_analytics, name='menu-analytics'),

    # Kitchen
    path('restaurant/inventory-items/', inventory_item_list_create, name='inventory-item-list-create'),
    path('restaurant/inventory-items/<uuid:pk>/', inventory_item_detail, name='inventory-item-detail'),
    path('restaurant/recipes/', recipe_list_create, name='recipe-list-create'),
    path('restaurant/recipes/<uuid:pk>/', recipe_detail, name='recipe-detail'),

    # Orders
    path('restaurant/orders/', order_list_create, name='order-list-create'),
    path('restaurant/orders/<uuid:pk>/', order_detail, name='order-detail'),
    path('restaurant/orders/<uuid:pk>/status/', order_status_update, name='order-status-update'),

    # Bulk upload
    path('bulk-upload/recipes/', bulk_upload_recipes, name='bulk-upload-recipes'),
    path('bulk-upload/inventory-items/', bulk_upload_inventory_items, name='bulk-upload-inventory-items'),
    path('bulk-upload/menu-items/', bulk_upload_menu_items, name='bulk-upload-menu-items'),
]
