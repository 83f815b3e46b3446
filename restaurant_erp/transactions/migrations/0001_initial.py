import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('organizations', '0001_initial'),
        ('universal', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='UniversalTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('transaction_type', models.CharField(max_length=100)),
                ('transaction_number', models.CharField(max_length=100)),
                ('transaction_date', models.DateField(default=django.utils.timezone.localdate)),
                ('reference_number', models.CharField(blank=True, max_length=100)),
                ('total_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('transaction_status', models.CharField(default='draft', max_length=50)),
                ('workflow_status', models.CharField(blank=True, max_length=50)),
                ('transaction_data', models.JSONField(blank=True, default=dict)),
                ('posted_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_transactions', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transactions', to='organizations.organization')),
            ],
            options={
                'db_table': 'universal_transactions',
                'ordering': ['-transaction_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['organization', 'transaction_type'], name='idx_txn_org_type'),
                    models.Index(fields=['transaction_status'], name='idx_txn_status'),
                    models.Index(fields=['transaction_date'], name='idx_txn_date'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('organization', 'transaction_number'), name='uniq_org_transaction_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TransactionLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('line_description', models.CharField(blank=True, max_length=255)),
                ('quantity', models.DecimalField(decimal_places=3, default=1, max_digits=12)),
                ('unit_price', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('line_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=14)),
                ('line_order', models.PositiveIntegerField(default=0)),
                ('line_data', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('entity', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='transaction_lines', to='universal.entity')),
                ('organization', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transaction_lines', to='organizations.organization')),
                ('transaction', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lines', to='transactions.universaltransaction')),
            ],
            options={
                'db_table': 'universal_transaction_lines',
                'ordering': ['line_order', 'id'],
                'indexes': [
                    models.Index(fields=['transaction', 'line_order'], name='idx_txnline_txn_order'),
                ],
            },
        ),
    ]
