import uuid

from django.conf import settings
from django.db import models

from restaurant_erp.organizations.models import Organization
from .fields import parse_field_value


class Entity(models.Model):
    """Generic business record tagged with a free-text entity_type"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='entities')
    entity_type = models.CharField(max_length=100)
    entity_name = models.CharField(max_length=255)
    entity_code = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_entities')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.entity_type}: {self.entity_name}"

    def get_dynamic_data(self):
        """Attributes as a {field_name: typed value} dict"""
        return {row.field_name: row.typed_value for row in self.dynamic_data.all()}

    def get_field(self, field_name, default=None):
        row = self.dynamic_data.filter(field_name=field_name).first()
        return row.typed_value if row else default

    class Meta:
        db_table = 'core_entities'
        ordering = ['entity_name']
        verbose_name_plural = 'entities'
        indexes = [
            models.Index(fields=['organization', 'entity_type'], name='idx_entity_org_type'),
            models.Index(fields=['organization', 'entity_code'], name='idx_entity_org_code'),
            models.Index(fields=['is_active'], name='idx_entity_active'),
        ]


class DynamicData(models.Model):
    """One attribute of an entity stored as a row"""
    FIELD_TYPE_CHOICES = [
        ('text', 'Text'),
        ('number', 'Number'),
        ('boolean', 'Boolean'),
        ('date', 'Date'),
        ('json', 'JSON'),
    ]

    entity = models.ForeignKey(Entity, on_delete=models.CASCADE, related_name='dynamic_data')
    field_name = models.CharField(max_length=100)
    field_value = models.TextField(blank=True)
    field_type = models.CharField(max_length=20, choices=FIELD_TYPE_CHOICES, default='text')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.field_name}={self.field_value}"

    @property
    def typed_value(self):
        return parse_field_value(self.field_value, self.field_type)

    class Meta:
        db_table = 'core_dynamic_data'
        ordering = ['field_name']
        constraints = [
            models.UniqueConstraint(fields=['entity', 'field_name'], name='uniq_entity_field'),
        ]


class Relationship(models.Model):
    """Directed, typed link between two entities of the same organization"""
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='relationships')
    parent_entity = models.ForeignKey(Entity, on_delete=models.CASCADE, related_name='child_relationships')
    child_entity = models.ForeignKey(Entity, on_delete=models.CASCADE, related_name='parent_relationships')
    relationship_type = models.CharField(max_length=100)
    relationship_data = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.parent_entity_id} -[{self.relationship_type}]-> {self.child_entity_id}"

    class Meta:
        db_table = 'core_relationships'
        ordering = ['id']
        indexes = [
            models.Index(fields=['organization', 'relationship_type'], name='idx_rel_org_type'),
            models.Index(fields=['parent_entity', 'relationship_type'], name='idx_rel_parent_type'),
            models.Index(fields=['child_entity', 'relationship_type'], name='idx_rel_child_type'),
        ]


class Metadata(models.Model):
    """Structured JSON annotations attached to an entity (or to an entity type)"""
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name='metadata_entries')
    entity = models.ForeignKey(Entity, on_delete=models.CASCADE, null=True, blank=True, related_name='metadata_entries')
    entity_type = models.CharField(max_length=100, blank=True)
    metadata_type = models.CharField(max_length=100)
    metadata_category = models.CharField(max_length=100, blank=True)
    metadata_key = models.CharField(max_length=100)
    metadata_value = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.metadata_type}:{self.metadata_key}"

    class Meta:
        db_table = 'core_metadata'
        ordering = ['id']
        verbose_name_plural = 'metadata'
        indexes = [
            models.Index(fields=['organization', 'metadata_type'], name='idx_meta_org_type'),
            models.Index(fields=['entity', 'metadata_type'], name='idx_meta_entity_type'),
        ]
