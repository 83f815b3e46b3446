from django.urls import path
from .views import (
    purchase_order_list_create, purchase_order_detail, purchase_order_approval,
    goods_receipt_list_create, supplier_performance,
)

urlpatterns = [
    # Purchase orders
    path('purchasing/purchase-orders/', purchase_order_list_create, name='purchase-order-list-create'),
    path('purchasing/purchase-orders/approve/', purchase_order_approval, name='purchase-order-approval'),
    path('purchasing/purchase-orders/<uuid:pk>/', purchase_order_detail, name='purchase-order-detail'),

    # Receiving
    path('purchasing/goods-receipts/', goods_receipt_list_create, name='goods-receipt-list-create'),
    path('purchasing/suppliers/<uuid:pk>/performance/', supplier_performance, name='supplier-performance'),
]
