import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('organizations', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Entity',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('entity_type', models.CharField(max_length=100)),
                ('entity_name', models.CharField(max_length=255)),
                ('entity_code', models.CharField(blank=True, max_length=100)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_entities', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='entities', to='organizations.organization')),
            ],
            options={
                'verbose_name_plural': 'entities',
                'db_table': 'core_entities',
                'ordering': ['entity_name'],
                'indexes': [
                    models.Index(fields=['organization', 'entity_type'], name='idx_entity_org_type'),
                    models.Index(fields=['organization', 'entity_code'], name='idx_entity_org_code'),
                    models.Index(fields=['is_active'], name='idx_entity_active'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DynamicData',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('field_name', models.CharField(max_length=100)),
                ('field_value', models.TextField(blank=True)),
                ('field_type', models.CharField(choices=[('text', 'Text'), ('number', 'Number'), ('boolean', 'Boolean'), ('date', 'Date'), ('json', 'JSON')], default='text', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('entity', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='dynamic_data', to='universal.entity')),
            ],
            options={
                'db_table': 'core_dynamic_data',
                'ordering': ['field_name'],
                'constraints': [
                    models.UniqueConstraint(fields=('entity', 'field_name'), name='uniq_entity_field'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Relationship',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('relationship_type', models.CharField(max_length=100)),
                ('relationship_data', models.JSONField(blank=True, default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('child_entity', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='parent_relationships', to='universal.entity')),
                ('organization', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='relationships', to='organizations.organization')),
                ('parent_entity', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='child_relationships', to='universal.entity')),
            ],
            options={
                'db_table': 'core_relationships',
                'ordering': ['id'],
                'indexes': [
                    models.Index(fields=['organization', 'relationship_type'], name='idx_rel_org_type'),
                    models.Index(fields=['parent_entity', 'relationship_type'], name='idx_rel_parent_type'),
                    models.Index(fields=['child_entity', 'relationship_type'], name='idx_rel_child_type'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Metadata',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entity_type', models.CharField(blank=True, max_length=100)),
                ('metadata_type', models.CharField(max_length=100)),
                ('metadata_category', models.CharField(blank=True, max_length=100)),
                ('metadata_key', models.CharField(max_length=100)),
                ('metadata_value', models.JSONField(blank=True, default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('entity', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='metadata_entries', to='universal.entity')),
                ('organization', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='metadata_entries', to='organizations.organization')),
            ],
            options={
                'verbose_name_plural': 'metadata',
                'db_table': 'core_metadata',
                'ordering': ['id'],
                'indexes': [
                    models.Index(fields=['organization', 'metadata_type'], name='idx_meta_org_type'),
                    models.Index(fields=['entity', 'metadata_type'], name='idx_meta_entity_type'),
                ],
            },
        ),
    ]
