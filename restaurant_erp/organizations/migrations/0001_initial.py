import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Organization',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('org_name', models.CharField(max_length=255)),
                ('org_code', models.CharField(max_length=100, unique=True)),
                ('industry', models.CharField(blank=True, default='restaurant', max_length=100)),
                ('country', models.CharField(blank=True, max_length=2)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('org_settings', models.JSONField(blank=True, default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_organizations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'core_organizations',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['is_active'], name='idx_org_active'),
                    models.Index(fields=['org_name'], name='idx_org_name'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserOrganization',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=[('owner', 'Owner'), ('manager', 'Manager'), ('staff', 'Staff'), ('accountant', 'Accountant'), ('viewer', 'Viewer')], default='staff', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('organization', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='organizations.organization')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='organization_memberships', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_organizations',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['organization', 'is_active'], name='idx_userorg_org_active'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'organization'), name='uniq_user_organization'),
                ],
            },
        ),
    ]
