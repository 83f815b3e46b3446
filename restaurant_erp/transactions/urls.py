from django.urls import path
from .views import transaction_list_create, transaction_detail, transaction_lines, transaction_post

urlpatterns = [
    path('transactions/', transaction_list_create, name='transaction-list-create'),
    path('transactions/<uuid:pk>/', transaction_detail, name='transaction-detail'),
    path('transactions/<uuid:pk>/lines/', transaction_lines, name='transaction-lines'),
    path('transactions/<uuid:pk>/post/', transaction_post, name='transaction-post'),
]
