from django.urls import path
from .views import (
    gl_posting, gl_validation_queue, gl_transaction_validation,
    chart_of_accounts_list, chart_of_accounts_import,
)

urlpatterns = [
    # General ledger
    path('finance/gl-accounts/posting/', gl_posting, name='gl-posting'),
    path('finance/gl-accounts/validate/', gl_validation_queue, name='gl-validation-queue'),
    path('finance/gl-accounts/validate/<uuid:pk>/', gl_transaction_validation, name='gl-transaction-validation'),

    # Chart of accounts
    path('finance/chart-of-accounts/', chart_of_accounts_list, name='chart-of-accounts-list'),
    path('finance/chart-of-accounts/import-csv/', chart_of_accounts_import, name='chart-of-accounts-import'),
]
