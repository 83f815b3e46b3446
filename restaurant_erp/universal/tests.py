"""
Test suite for the universal schema
Tests: typed dynamic data, entity CRUD, relationships, metadata and tenant isolation
"""
import datetime
from decimal import Decimal

from django.test import TestCase
from rest_framework import status
from rest_framework.exceptions import ValidationError

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.universal.fields import infer_field_type, parse_field_value, serialize_field_value
from restaurant_erp.universal.models import Entity, DynamicData, Relationship, Metadata
from restaurant_erp.universal.services import (
    create_entity, create_relationship, generate_entity_code, get_entity,
    replace_children, set_dynamic_fields, upsert_metadata, get_metadata_value,
)


class FieldValueTests(TestCase):
    """Test typed dynamic-data values"""

    def test_infer_field_type(self):
        """Test field types inferred from Python values"""
        self.assertEqual(infer_field_type(True), 'boolean')
        self.assertEqual(infer_field_type(Decimal('1.5')), 'number')
        self.assertEqual(infer_field_type(3), 'number')
        self.assertEqual(infer_field_type(datetime.date(2026, 1, 5)), 'date')
        self.assertEqual(infer_field_type(['gluten']), 'json')
        self.assertEqual(infer_field_type('kg'), 'text')

    def test_serialize_and_parse_number(self):
        """Test numbers keep their decimal precision"""
        stored = serialize_field_value('12.50', 'number')
        self.assertEqual(stored, '12.50')
        self.assertEqual(parse_field_value(stored, 'number'), Decimal('12.50'))

    def test_serialize_invalid_number(self):
        """Test non-numeric text is rejected for number fields"""
        with self.assertRaises(ValueError):
            serialize_field_value('twelve', 'number')

    def test_boolean_strings(self):
        """Test boolean strings are normalized"""
        self.assertEqual(serialize_field_value('Yes', 'boolean'), 'true')
        self.assertEqual(serialize_field_value('no', 'boolean'), 'false')
        self.assertIs(parse_field_value('true', 'boolean'), True)

    def test_parse_empty_and_corrupt_values(self):
        """Test empty text parses to None and corrupt text is returned unchanged"""
        self.assertIsNone(parse_field_value('', 'number'))
        self.assertEqual(parse_field_value('abc', 'number'), 'abc')
        self.assertEqual(parse_field_value('{bad', 'json'), '{bad')


class EntityServiceTests(TestCase):
    """Test entity service functions"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.other_org = TestDataFactory.create_organization()

    def test_generate_entity_code(self):
        """Test generated codes use type and name prefixes"""
        code = generate_entity_code('menu_item', 'Classic Burger')
        self.assertTrue(code.startswith('MEN-CLASSI-'))
        self.assertEqual(len(code.split('-')[-1]), 4)

    def test_create_entity_with_dynamic_data(self):
        """Test entity attributes are stored as typed rows"""
        entity = create_entity(
            self.org, 'inventory_item', '  Flour ',
            dynamic_data={'current_stock': Decimal('25'), 'unit': 'kg', 'organic': False}
        )
        self.assertEqual(entity.entity_name, 'Flour')
        self.assertEqual(entity.dynamic_data.count(), 3)
        self.assertEqual(entity.get_field('current_stock'), Decimal('25'))
        self.assertIs(entity.get_field('organic'), False)
        self.assertEqual(DynamicData.objects.get(entity=entity, field_name='unit').field_type, 'text')

    def test_set_dynamic_fields_upserts(self):
        """Test setting an existing field updates the row in place"""
        entity = TestDataFactory.create_inventory_item(self.org, current_stock='10')
        set_dynamic_fields(entity, {'current_stock': Decimal('4')})
        self.assertEqual(entity.dynamic_data.filter(field_name='current_stock').count(), 1)
        self.assertEqual(entity.get_field('current_stock'), Decimal('4'))

    def test_set_dynamic_fields_keeps_stored_type(self):
        """Test an existing field keeps its type when updated with a string"""
        entity = TestDataFactory.create_inventory_item(self.org, current_stock='10')
        set_dynamic_fields(entity, {'current_stock': '7.5'})
        row = DynamicData.objects.get(entity=entity, field_name='current_stock')
        self.assertEqual(row.field_type, 'number')
        self.assertEqual(entity.get_field('current_stock'), Decimal('7.5'))

        with self.assertRaises(ValidationError):
            set_dynamic_fields(entity, {'current_stock': 'plenty'})
        self.assertEqual(entity.get_field('current_stock'), Decimal('7.5'))

    def test_set_dynamic_fields_explicit_type_mismatch(self):
        """Test a declared number type rejects text"""
        entity = TestDataFactory.create_entity(self.org)
        with self.assertRaises(ValidationError):
            set_dynamic_fields(entity, {'weight': 'heavy'}, {'weight': 'number'})

    def test_relationship_requires_same_organization(self):
        """Test relationships cannot cross organizations"""
        parent = TestDataFactory.create_menu_category(self.org)
        child = TestDataFactory.create_menu_item(self.other_org)
        with self.assertRaises(ValidationError):
            create_relationship(self.org, parent, child, 'menu_item_category')
        self.assertEqual(Relationship.objects.count(), 0)

    def test_relationship_rejects_self_link(self):
        """Test an entity cannot be related to itself"""
        item = TestDataFactory.create_menu_item(self.org)
        with self.assertRaises(ValidationError):
            create_relationship(self.org, item, item, 'combo_component')

    def test_replace_children_deactivates_previous_links(self):
        """Test replacing children keeps only the new links active"""
        combo = TestDataFactory.create_entity(self.org, 'composite_menu_item')
        fries = TestDataFactory.create_menu_item(self.org, name='Fries')
        soda = TestDataFactory.create_menu_item(self.org, name='Soda')
        create_relationship(self.org, combo, fries, 'combo_component', {'quantity': '1'})

        replace_children(self.org, combo, 'combo_component', [(soda, {'quantity': '2'})])
        active = Relationship.objects.filter(parent_entity=combo, is_active=True)
        self.assertEqual([r.child_entity_id for r in active], [soda.id])

    def test_get_entity_scoped_to_organization(self):
        """Test entity lookup does not leak across organizations"""
        foreign = TestDataFactory.create_menu_item(self.other_org)
        with self.assertRaises(ValidationError) as ctx:
            get_entity(self.org, foreign.id, field='menu_item')
        self.assertIn('menu_item', ctx.exception.detail)

    def test_metadata_upsert(self):
        """Test metadata upsert replaces the value for the same key"""
        recipe = TestDataFactory.create_entity(self.org, 'recipe')
        upsert_metadata(self.org, recipe, 'cost_analysis', 'cost_analysis', {'total': '1.00'}, 'financial')
        upsert_metadata(self.org, recipe, 'cost_analysis', 'cost_analysis', {'total': '2.00'}, 'financial')
        self.assertEqual(Metadata.objects.filter(entity=recipe).count(), 1)
        self.assertEqual(get_metadata_value(recipe, 'cost_analysis', 'cost_analysis'), {'total': '2.00'})
        self.assertIsNone(get_metadata_value(recipe, 'cost_analysis', 'missing'))


class EntityAPITests(TestCase):
    """Test entity endpoints"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.other_org = TestDataFactory.create_organization()
        self.user = TestDataFactory.create_member(self.org)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_entity(self):
        """Test creating an entity with dynamic data"""
        data = {
            'organization': str(self.org.id),
            'entity_type': 'supplier',
            'entity_name': 'Fresh Farms',
            'dynamic_data': {'email': 'sales@freshfarms.test', 'lead_time_days': 3},
        }
        response = self.client.post('/api/v1/entities/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['entity_type'], 'supplier')
        self.assertEqual(response.data['dynamic_data']['lead_time_days'], Decimal('3'))
        self.assertTrue(response.data['entity_code'].startswith('SUP-FRESHF-'))
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Entity').exists())

    def test_create_entity_missing_type(self):
        """Test entity_type is required on create"""
        data = {'organization': str(self.org.id), 'entity_name': 'Nameless'}
        response = self.client.post('/api/v1/entities/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('entity_type', response.data['details'])

    def test_create_entity_in_foreign_organization(self):
        """Test non-members cannot write to an organization"""
        data = {
            'organization': str(self.other_org.id),
            'entity_type': 'supplier',
            'entity_name': 'Sneaky Supplies',
        }
        response = self.client.post('/api/v1/entities/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_viewer_cannot_create(self):
        """Test viewers are read-only"""
        viewer = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_VIEWER)
        self.client.authenticate_user(viewer)
        data = {'organization': str(self.org.id), 'entity_type': 'supplier', 'entity_name': 'X'}
        response = self.client.post('/api/v1/entities/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_requires_organization(self):
        """Test listing without an organization fails"""
        response = self.client.get('/api/v1/entities/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('organization', response.data['details'])

    def test_list_filters_and_paginates(self):
        """Test listing by type with pagination metadata"""
        for i in range(3):
            TestDataFactory.create_supplier(self.org, name=f'Supplier {i}')
        TestDataFactory.create_inventory_item(self.org)
        TestDataFactory.create_supplier(self.other_org)

        response = self.client.get(
            '/api/v1/entities/',
            {'organization': str(self.org.id), 'entity_type': 'supplier', 'limit': 2}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 3)
        self.assertEqual(len(response.data['results']), 2)
        self.assertEqual(response.data['total_pages'], 2)
        self.assertEqual(response.data['next'], 2)

    def test_list_search_matches_dynamic_data(self):
        """Test search matches attribute values"""
        TestDataFactory.create_supplier(self.org, name='Dairy Co')
        TestDataFactory.create_inventory_item(self.org, name='Basil', unit='bunch')
        response = self.client.get(
            '/api/v1/entities/', {'organization': str(self.org.id), 'search': 'bunch'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e['entity_name'] for e in response.data['results']], ['Basil'])

    def test_update_entity(self):
        """Test patching name and attributes"""
        item = TestDataFactory.create_inventory_item(self.org, name='Sugar')
        response = self.client.patch(
            f'/api/v1/entities/{item.id}/',
            {'entity_name': 'Cane Sugar', 'dynamic_data': {'current_stock': '7'}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['entity_name'], 'Cane Sugar')
        item.refresh_from_db()
        self.assertEqual(item.get_field('current_stock'), Decimal('7'))

    def test_update_entity_rejects_value_of_wrong_type(self):
        """Test a non-numeric value for a number field returns 400"""
        item = TestDataFactory.create_inventory_item(self.org, current_stock='10')
        response = self.client.patch(
            f'/api/v1/entities/{item.id}/',
            {'dynamic_data': {'current_stock': 'lots'}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('current_stock', response.data['details'])
        item.refresh_from_db()
        self.assertEqual(item.get_field('current_stock'), Decimal('10'))

    def test_delete_entity_is_soft(self):
        """Test deleting an entity deactivates it"""
        item = TestDataFactory.create_inventory_item(self.org)
        response = self.client.delete(f'/api/v1/entities/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Entity.objects.get(pk=item.id).is_active)

        response = self.client.get('/api/v1/entities/', {'organization': str(self.org.id)})
        self.assertEqual(response.data['count'], 0)

    def test_foreign_entity_detail_forbidden(self):
        """Test entities of other organizations are not readable"""
        foreign = TestDataFactory.create_supplier(self.other_org)
        response = self.client.get(f'/api/v1/entities/{foreign.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_dynamic_data_endpoint(self):
        """Test upserting and deleting single attributes"""
        item = TestDataFactory.create_inventory_item(self.org)
        response = self.client.post(
            f'/api/v1/entities/{item.id}/dynamic-data/',
            {'field_name': 'storage', 'field_value': 'dry', 'field_type': 'text'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('storage', [row['field_name'] for row in response.data])

        response = self.client.delete(f'/api/v1/entities/{item.id}/dynamic-data/?field_name=storage')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.delete(f'/api/v1/entities/{item.id}/dynamic-data/?field_name=storage')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class RelationshipAndMetadataAPITests(TestCase):
    """Test relationship and metadata endpoints"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.other_org = TestDataFactory.create_organization()
        self.user = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.category = TestDataFactory.create_menu_category(self.org, name='Mains')
        self.item = TestDataFactory.create_menu_item(self.org, name='Steak')

    def test_create_and_list_relationship(self):
        """Test linking two entities of the organization"""
        data = {
            'organization': str(self.org.id),
            'parent_entity': str(self.category.id),
            'child_entity': str(self.item.id),
            'relationship_type': 'menu_item_category',
        }
        response = self.client.post('/api/v1/relationships/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['parent_entity_name'], 'Mains')

        response = self.client.get(
            '/api/v1/relationships/',
            {'organization': str(self.org.id), 'parent': str(self.category.id)}
        )
        self.assertEqual(response.data['count'], 1)

    def test_relationship_with_foreign_child(self):
        """Test linking to another organization's entity fails"""
        foreign = TestDataFactory.create_menu_item(self.other_org)
        data = {
            'organization': str(self.org.id),
            'parent_entity': str(self.category.id),
            'child_entity': str(foreign.id),
            'relationship_type': 'menu_item_category',
        }
        response = self.client.post('/api/v1/relationships/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('child_entity', response.data['details'])

    def test_delete_relationship_is_soft(self):
        """Test deleting a relationship deactivates it"""
        relationship = create_relationship(self.org, self.category, self.item, 'menu_item_category')
        response = self.client.delete(f'/api/v1/relationships/{relationship.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        relationship.refresh_from_db()
        self.assertFalse(relationship.is_active)

    def test_create_metadata(self):
        """Test attaching metadata to an entity"""
        data = {
            'organization': str(self.org.id),
            'entity': str(self.item.id),
            'metadata_type': 'nutrition',
            'metadata_key': 'calories',
            'metadata_value': {'kcal': 640},
        }
        response = self.client.post('/api/v1/metadata/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['entity_type'], 'menu_item')

        response = self.client.get(
            '/api/v1/metadata/', {'organization': str(self.org.id), 'metadata_type': 'nutrition'}
        )
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['metadata_value'], {'kcal': 640})
