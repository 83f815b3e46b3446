"""
Comprehensive test suite for Restaurant module
Tests: menu categories, individual and combo menu items, inventory, recipe
costing, kitchen order workflow and bulk uploads
"""
from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from restaurant_erp.core.models import AuditLog
from restaurant_erp.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from restaurant_erp.organizations.models import UserOrganization
from restaurant_erp.restaurant import services
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity, Relationship, Metadata


class CalculationTests(TestCase):
    """Test pricing, stock and costing rules"""

    def test_profit_margin(self):
        """Test margin as a percentage of the selling price"""
        self.assertEqual(services.calculate_profit_margin(Decimal('12.00'), Decimal('4.00')), Decimal('66.67'))
        self.assertEqual(services.calculate_profit_margin(Decimal('10'), Decimal('10')), Decimal('0.00'))
        self.assertEqual(services.calculate_profit_margin(Decimal('0'), Decimal('3')), Decimal('0.00'))
        self.assertEqual(services.calculate_profit_margin(Decimal('5'), Decimal('6')), Decimal('-20.00'))

    def test_low_stock(self):
        """Test stock at the reorder point counts as low"""
        self.assertTrue(services.is_low_stock(Decimal('5'), Decimal('5')))
        self.assertTrue(services.is_low_stock(None, Decimal('1')))
        self.assertFalse(services.is_low_stock(Decimal('6'), Decimal('5')))

    def test_cost_analysis(self):
        """Test per-serving cost, labor share and suggested price"""
        analysis = services.calculate_cost_analysis(
            [
                {'quantity': '2', 'cost_per_unit': '1.50'},
                {'quantity': '0.5', 'cost_per_unit': '8.00'},
            ],
            serving_size=2,
        )
        self.assertEqual(analysis['total_ingredient_cost'], Decimal('7.00'))
        self.assertEqual(analysis['cost_per_serving'], Decimal('3.50'))
        self.assertEqual(analysis['labor_cost_per_serving'], Decimal('1.05'))
        self.assertEqual(analysis['total_cost_per_serving'], Decimal('4.55'))
        self.assertEqual(analysis['suggested_price'], Decimal('11.38'))
        self.assertEqual(analysis['profit_margin'], Decimal('60.00'))
        self.assertEqual(analysis['markup_percentage'], Decimal('150.00'))

    def test_cost_analysis_without_ingredients(self):
        """Test an empty recipe costs nothing"""
        analysis = services.calculate_cost_analysis([], serving_size=0)
        self.assertEqual(analysis['suggested_price'], Decimal('0.00'))
        self.assertEqual(analysis['profit_margin'], Decimal('0.00'))

    def test_allowed_transitions(self):
        """Test the kitchen workflow and cancellation window"""
        self.assertEqual(services.allowed_transitions('pending'), ['preparing', 'cancelled'])
        self.assertEqual(services.allowed_transitions('ready'), ['served', 'cancelled'])
        self.assertEqual(services.allowed_transitions('served'), ['completed'])
        self.assertEqual(services.allowed_transitions('completed'), [])
        self.assertEqual(services.allowed_transitions('cancelled'), [])


class RestaurantAPITestCase(TestCase):
    """Shared setup for restaurant endpoint tests"""

    def setUp(self):
        self.org = TestDataFactory.create_organization()
        self.user = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_STAFF)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.org_id = str(self.org.id)


class MenuCategoryAPITests(RestaurantAPITestCase):
    """Test menu category endpoints"""

    def test_create_and_list_categories(self):
        """Test categories report their active item count"""
        response = self.client.post(
            '/api/v1/restaurant/menu-categories/',
            {'organization': self.org_id, 'name': 'Burgers', 'display_order': 1},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        category = Entity.objects.get(pk=response.data['id'])
        TestDataFactory.create_menu_item(self.org, category=category)
        TestDataFactory.create_menu_item(self.org, category=category)

        response = self.client.get('/api/v1/restaurant/menu-categories/', {'organization': self.org_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['name'], 'Burgers')
        self.assertEqual(response.data['results'][0]['item_count'], 2)

    def test_viewer_cannot_create_category(self):
        """Test viewers cannot write to the menu"""
        viewer = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_VIEWER)
        self.client.authenticate_user(viewer)
        response = self.client.post(
            '/api/v1/restaurant/menu-categories/', {'organization': self.org_id, 'name': 'Desserts'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class MenuItemAPITests(RestaurantAPITestCase):
    """Test menu item endpoints"""

    def setUp(self):
        super().setUp()
        self.category = TestDataFactory.create_menu_category(self.org, name='Mains')
        self.burger = TestDataFactory.create_menu_item(
            self.org, name='Burger', base_price='12.00', cost_price='4.00', category=self.category
        )
        self.fries = TestDataFactory.create_menu_item(self.org, name='Fries', base_price='4.00', cost_price='1.00')

    def test_create_individual_item(self):
        """Test creating a menu item linked to a category"""
        data = {
            'organization': self.org_id,
            'name': 'Caesar Salad',
            'category': str(self.category.id),
            'base_price': '9.50',
            'cost_price': '2.85',
            'allergens': ['dairy', 'egg'],
        }
        response = self.client.post('/api/v1/restaurant/menu-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['item_type'], 'individual')
        self.assertEqual(response.data['base_price'], '9.50')
        self.assertEqual(response.data['profit_margin'], '70.00')
        self.assertEqual(response.data['category']['name'], 'Mains')
        self.assertEqual(response.data['allergens'], ['dairy', 'egg'])
        self.assertTrue(response.data['is_available'])
        self.assertEqual(response.data['prep_time_minutes'], 10)
        self.assertTrue(AuditLog.objects.filter(model_name='MenuItem', action='create').exists())

    def test_create_item_with_new_category_name(self):
        """Test naming an unknown category creates it"""
        data = {'organization': self.org_id, 'name': 'Tiramisu', 'category_name': 'Desserts', 'base_price': '7'}
        response = self.client.post('/api/v1/restaurant/menu-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['category']['name'], 'Desserts')
        self.assertEqual(response.data['cost_price'], '0')
        self.assertTrue(Entity.objects.filter(entity_type='menu_category', entity_name='Desserts').exists())

    def test_create_item_requires_price(self):
        """Test base_price is required"""
        response = self.client.post(
            '/api/v1/restaurant/menu-items/', {'organization': self.org_id, 'name': 'Free Bread'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('base_price', response.data['details'])

    def test_create_combo(self):
        """Test a combo costs the sum of its components"""
        data = {
            'organization': self.org_id,
            'name': 'Burger Meal',
            'item_type': 'composite',
            'base_price': '14.00',
            'components': [
                {'menu_item': str(self.burger.id)},
                {'menu_item': str(self.fries.id), 'quantity': '2', 'portion_size': 'large'},
            ],
        }
        response = self.client.post('/api/v1/restaurant/menu-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['item_type'], 'composite')
        self.assertEqual(response.data['cost_price'], '6.00')
        self.assertEqual(response.data['profit_margin'], '57.14')
        self.assertEqual([c['name'] for c in response.data['components']], ['Burger', 'Fries'])
        self.assertEqual(response.data['components'][1]['portion_size'], 'large')
        self.assertEqual(Entity.objects.get(pk=response.data['id']).entity_type, 'composite_menu_item')

    def test_combo_without_components(self):
        """Test composite items need components"""
        data = {'organization': self.org_id, 'name': 'Empty Meal', 'item_type': 'composite', 'base_price': '10'}
        response = self.client.post('/api/v1/restaurant/menu-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('components', response.data['details'])

    def test_combo_with_foreign_component(self):
        """Test components must be menu items of the organization"""
        foreign = TestDataFactory.create_menu_item(TestDataFactory.create_organization())
        data = {
            'organization': self.org_id,
            'name': 'Stolen Meal',
            'item_type': 'composite',
            'base_price': '10',
            'components': [{'menu_item': str(foreign.id)}],
        }
        response = self.client.post('/api/v1/restaurant/menu-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('components[1].menu_item', response.data['details'])
        self.assertFalse(Entity.objects.filter(entity_name='Stolen Meal').exists())

    def test_list_with_summary_and_filters(self):
        """Test listing menu items with type and category filters"""
        combo = services.create_menu_item(
            self.org,
            {'name': 'Meal', 'item_type': 'composite', 'base_price': Decimal('14.00'),
             'components': [{'menu_item': self.burger.id}]},
        )
        response = self.client.get('/api/v1/restaurant/menu-items/', {'organization': self.org_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 3)
        self.assertEqual(response.data['summary']['individual_items'], 2)
        self.assertEqual(response.data['summary']['combo_items'], 1)
        self.assertEqual(response.data['summary']['total_menu_value'], '30.00')

        response = self.client.get(
            '/api/v1/restaurant/menu-items/',
            {'organization': self.org_id, 'item_type': 'composite', 'include_components': 'true'}
        )
        self.assertEqual([i['id'] for i in response.data['results']], [str(combo.id)])
        self.assertEqual(len(response.data['results'][0]['components']), 1)

        response = self.client.get(
            '/api/v1/restaurant/menu-items/', {'organization': self.org_id, 'category': str(self.category.id)}
        )
        self.assertEqual([i['name'] for i in response.data['results']], ['Burger'])

    def test_list_invalid_item_type(self):
        """Test unknown item types are rejected"""
        response = self.client.get('/api/v1/restaurant/menu-items/', {'organization': self.org_id, 'item_type': 'x'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_available_only(self):
        """Test filtering by availability"""
        TestDataFactory.create_menu_item(self.org, name='Seasonal Soup', is_available=False)
        response = self.client.get(
            '/api/v1/restaurant/menu-items/', {'organization': self.org_id, 'is_available': 'false'}
        )
        self.assertEqual([i['name'] for i in response.data['results']], ['Seasonal Soup'])

    def test_update_item_and_move_category(self):
        """Test patching price and moving the item to another category"""
        drinks = TestDataFactory.create_menu_category(self.org, name='Specials')
        response = self.client.patch(
            f'/api/v1/restaurant/menu-items/{self.burger.id}/',
            {'base_price': '13.50', 'category': str(drinks.id)},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['base_price'], '13.50')
        self.assertEqual(response.data['category']['name'], 'Specials')
        self.assertEqual(
            Relationship.objects.filter(child_entity=self.burger, relationship_type='menu_item_category',
                                        is_active=True).count(),
            1
        )

    def test_update_cannot_change_type(self):
        """Test item_type is fixed after creation"""
        response = self.client.patch(
            f'/api/v1/restaurant/menu-items/{self.burger.id}/', {'item_type': 'composite'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('item_type', response.data['details'])

    def test_update_components_of_individual_item(self):
        """Test components only apply to combos"""
        response = self.client.patch(
            f'/api/v1/restaurant/menu-items/{self.burger.id}/',
            {'components': [{'menu_item': str(self.fries.id)}]},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_item_used_in_combo(self):
        """Test items inside active combos cannot be deleted"""
        services.create_menu_item(
            self.org,
            {'name': 'Meal', 'item_type': 'composite', 'base_price': Decimal('14.00'),
             'components': [{'menu_item': self.fries.id}]},
        )
        response = self.client.delete(f'/api/v1/restaurant/menu-items/{self.fries.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Meal', response.data['error'])

    def test_delete_item(self):
        """Test deleting deactivates the item and its links"""
        response = self.client.delete(f'/api/v1/restaurant/menu-items/{self.burger.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Entity.objects.get(pk=self.burger.id).is_active)
        self.assertFalse(Relationship.objects.filter(child_entity=self.burger, is_active=True).exists())

        response = self.client.get(f'/api/v1/restaurant/menu-items/{self.burger.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_foreign_menu_item_forbidden(self):
        """Test menu items of other organizations are not readable"""
        foreign = TestDataFactory.create_menu_item(TestDataFactory.create_organization())
        response = self.client.get(f'/api/v1/restaurant/menu-items/{foreign.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class InventoryItemAPITests(RestaurantAPITestCase):
    """Test inventory item endpoints"""

    def test_create_inventory_item(self):
        """Test creating an item computes stock value"""
        data = {
            'organization': self.org_id,
            'name': 'Mozzarella',
            'category': 'dairy',
            'unit': 'kg',
            'unit_cost': '8.40',
            'current_stock': '12.5',
            'reorder_point': '5',
            'max_stock': '40',
        }
        response = self.client.post('/api/v1/restaurant/inventory-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['stock_value'], '105.00')
        self.assertFalse(response.data['is_low_stock'])

    def test_create_defaults_to_zero_stock(self):
        """Test missing stock values default to zero and count as low"""
        response = self.client.post(
            '/api/v1/restaurant/inventory-items/', {'organization': self.org_id, 'name': 'Saffron'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['current_stock'], '0')
        self.assertTrue(response.data['is_low_stock'])

    def test_reorder_point_above_max_stock(self):
        """Test reorder point cannot exceed max stock"""
        data = {'organization': self.org_id, 'name': 'Rice', 'reorder_point': '50', 'max_stock': '10'}
        response = self.client.post('/api/v1/restaurant/inventory-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('reorder_point', response.data['details'])

    def test_low_stock_filter(self):
        """Test listing only items at or below their reorder point"""
        TestDataFactory.create_inventory_item(self.org, name='Butter', current_stock='2', reorder_point='5')
        TestDataFactory.create_inventory_item(self.org, name='Milk', current_stock='20', reorder_point='5')
        response = self.client.get(
            '/api/v1/restaurant/inventory-items/', {'organization': self.org_id, 'low_stock': 'true'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([i['name'] for i in response.data['results']], ['Butter'])
        self.assertEqual(response.data['low_stock_count'], 1)

    def test_update_stock(self):
        """Test patching stock levels"""
        item = TestDataFactory.create_inventory_item(self.org, current_stock='2', reorder_point='5')
        response = self.client.patch(
            f'/api/v1/restaurant/inventory-items/{item.id}/', {'current_stock': '30'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(response.data['current_stock']), Decimal('30'))
        self.assertFalse(response.data['is_low_stock'])

    def test_delete_item_used_by_recipe(self):
        """Test ingredients of active recipes cannot be deleted"""
        item = TestDataFactory.create_inventory_item(self.org, name='Basil')
        services.create_recipe(
            self.org, {'name': 'Pesto', 'ingredients': [{'inventory_item': item.id, 'quantity': Decimal('1')}]}
        )
        response = self.client.delete(f'/api/v1/restaurant/inventory-items/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Pesto', response.data['error'])

    def test_delete_unused_item(self):
        """Test unused inventory items are deactivated"""
        item = TestDataFactory.create_inventory_item(self.org)
        response = self.client.delete(f'/api/v1/restaurant/inventory-items/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Entity.objects.get(pk=item.id).is_active)


class RecipeAPITests(RestaurantAPITestCase):
    """Test recipe endpoints"""

    def setUp(self):
        super().setUp()
        self.dough = TestDataFactory.create_inventory_item(self.org, name='Pizza Dough', unit_cost='1.50', unit='ball')
        self.cheese = TestDataFactory.create_inventory_item(self.org, name='Mozzarella', unit_cost='8.00')
        self.pizza = TestDataFactory.create_menu_item(self.org, name='Margherita')

    def _recipe_data(self, **extra):
        data = {
            'organization': self.org_id,
            'name': 'Margherita Pizza',
            'category': 'pizza',
            'menu_item_id': str(self.pizza.id),
            'serving_size': 2,
            'prep_time_minutes': 15,
            'cook_time_minutes': 10,
            'instructions': ['Stretch dough', 'Top', 'Bake'],
            'ingredients': [
                {'inventory_item': str(self.dough.id), 'quantity': '2'},
                {'inventory_item': str(self.cheese.id), 'quantity': '0.5', 'preparation_notes': 'torn'},
            ],
        }
        data.update(extra)
        return data

    def test_create_recipe_with_cost_analysis(self):
        """Test a recipe stores ingredients and its cost analysis"""
        response = self.client.post('/api/v1/restaurant/recipes/', self._recipe_data(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total_time_minutes'], Decimal('25'))
        self.assertEqual(response.data['menu_item_id'], str(self.pizza.id))
        self.assertEqual(len(response.data['ingredients']), 2)
        self.assertEqual(response.data['ingredients'][0]['unit'], 'ball')
        self.assertEqual(response.data['ingredients'][0]['total_cost'], '3.00')
        self.assertEqual(response.data['cost_analysis']['cost_per_serving'], '3.50')
        self.assertEqual(response.data['cost_analysis']['suggested_price'], '11.38')
        self.assertTrue(Metadata.objects.filter(metadata_type='cost_analysis', metadata_category='financial').exists())

    def test_create_recipe_with_explicit_cost(self):
        """Test cost_per_unit overrides the inventory unit cost"""
        data = self._recipe_data(
            serving_size=1,
            ingredients=[{'inventory_item': str(self.cheese.id), 'quantity': '1', 'cost_per_unit': '10'}],
        )
        response = self.client.post('/api/v1/restaurant/recipes/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['cost_analysis']['total_ingredient_cost'], '10.00')

    def test_create_recipe_without_ingredients(self):
        """Test recipes need at least one ingredient"""
        response = self.client.post('/api/v1/restaurant/recipes/', self._recipe_data(ingredients=[]), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('ingredients', response.data['details'])

    def test_create_recipe_with_non_inventory_ingredient(self):
        """Test ingredients must be inventory items"""
        data = self._recipe_data(ingredients=[{'inventory_item': str(self.pizza.id), 'quantity': '1'}])
        response = self.client.post('/api/v1/restaurant/recipes/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('ingredients[1].inventory_item', response.data['details'])

    def test_update_serving_size_recalculates(self):
        """Test changing the serving size refreshes the cost analysis"""
        recipe_id = self.client.post('/api/v1/restaurant/recipes/', self._recipe_data(), format='json').data['id']
        response = self.client.patch(
            f'/api/v1/restaurant/recipes/{recipe_id}/', {'serving_size': 7}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['cost_analysis']['cost_per_serving'], '1.00')
        self.assertEqual(Metadata.objects.filter(entity_id=recipe_id, metadata_type='cost_analysis').count(), 1)

    def test_update_ingredients_replaces_links(self):
        """Test replacing the ingredient list"""
        recipe_id = self.client.post('/api/v1/restaurant/recipes/', self._recipe_data(), format='json').data['id']
        response = self.client.patch(
            f'/api/v1/restaurant/recipes/{recipe_id}/',
            {'ingredients': [{'inventory_item': str(self.cheese.id), 'quantity': '1'}]},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([i['ingredient_name'] for i in response.data['ingredients']], ['Mozzarella'])
        self.assertEqual(response.data['cost_analysis']['total_ingredient_cost'], '8.00')

    def test_list_by_menu_item(self):
        """Test filtering recipes by menu item"""
        self.client.post('/api/v1/restaurant/recipes/', self._recipe_data(), format='json')
        self.client.post(
            '/api/v1/restaurant/recipes/', self._recipe_data(name='Dough Only', menu_item_id=None), format='json'
        )
        response = self.client.get(
            '/api/v1/restaurant/recipes/', {'organization': self.org_id, 'menu_item': str(self.pizza.id)}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['name'] for r in response.data['results']], ['Margherita Pizza'])

    def test_delete_recipe_releases_ingredients(self):
        """Test deleting a recipe lets its ingredients be deleted"""
        recipe_id = self.client.post('/api/v1/restaurant/recipes/', self._recipe_data(), format='json').data['id']
        response = self.client.delete(f'/api/v1/restaurant/recipes/{recipe_id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        response = self.client.delete(f'/api/v1/restaurant/inventory-items/{self.cheese.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)


class OrderAPITests(RestaurantAPITestCase):
    """Test sales orders and the kitchen workflow"""

    def setUp(self):
        super().setUp()
        self.burger = TestDataFactory.create_menu_item(self.org, name='Burger', base_price='12.00')
        self.soda = TestDataFactory.create_menu_item(self.org, name='Soda', base_price='2.50')

    def _place(self, items=None, **extra):
        data = {
            'organization': self.org_id,
            'items': items or [
                {'menu_item': str(self.burger.id), 'quantity': 2, 'special_instructions': 'no onions'},
                {'menu_item': str(self.soda.id)},
            ],
            'table_number': '7',
        }
        data.update(extra)
        return self.client.post('/api/v1/restaurant/orders/', data, format='json')

    def _move(self, order_id, new_status, reason=''):
        return self.client.post(
            f'/api/v1/restaurant/orders/{order_id}/status/', {'status': new_status, 'reason': reason}, format='json'
        )

    def test_place_order(self):
        """Test orders are priced from the menu"""
        response = self._place()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['transaction_type'], 'sales_order')
        self.assertTrue(response.data['transaction_number'].startswith('SO-'))
        self.assertEqual(response.data['total_amount'], '26.50')
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['allowed_transitions'], ['preparing', 'cancelled'])
        self.assertEqual(response.data['lines'][0]['line_data']['special_instructions'], 'no onions')
        self.assertEqual(response.data['transaction_data']['order_type'], 'dine_in')

    def test_order_with_unavailable_item(self):
        """Test unavailable menu items cannot be ordered"""
        soup = TestDataFactory.create_menu_item(self.org, name='Soup', is_available=False)
        response = self._place(items=[{'menu_item': str(soup.id)}])
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Soup', response.data['error'])
        self.assertFalse(UniversalTransaction.objects.filter(transaction_type='sales_order').exists())

    def test_order_with_inventory_item(self):
        """Test only menu items can be ordered"""
        flour = TestDataFactory.create_inventory_item(self.org)
        response = self._place(items=[{'menu_item': str(flour.id)}])
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items[1].menu_item', response.data['details'])

    def test_full_workflow(self):
        """Test an order moving through every kitchen status"""
        order_id = self._place().data['id']
        for new_status in ('preparing', 'ready', 'served', 'completed'):
            response = self._move(order_id, new_status)
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            self.assertEqual(response.data['status'], new_status)

        self.assertEqual(response.data['allowed_transitions'], [])
        history = response.data['transaction_data']['status_history']
        self.assertEqual([h['status'] for h in history], ['pending', 'preparing', 'ready', 'served', 'completed'])
        self.assertIn('completed_at', response.data['transaction_data'])
        self.assertEqual(AuditLog.objects.filter(action='order_status').count(), 4)

    def test_skipping_a_step_rejected(self):
        """Test statuses cannot be skipped"""
        order_id = self._place().data['id']
        response = self._move(order_id, 'served')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['details']['allowed'], ['preparing', 'cancelled'])

    def test_cancel_order(self):
        """Test cancelling records the reason and closes the order"""
        order_id = self._place().data['id']
        self._move(order_id, 'preparing')
        response = self._move(order_id, 'cancelled', reason='customer left')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['transaction_status'], 'cancelled')
        self.assertEqual(response.data['transaction_data']['cancellation_reason'], 'customer left')

    def test_served_order_cannot_be_cancelled(self):
        """Test orders already served cannot be cancelled"""
        order_id = self._place().data['id']
        for new_status in ('preparing', 'ready', 'served'):
            self._move(order_id, new_status)
        response = self._move(order_id, 'cancelled')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_orders_by_status_and_table(self):
        """Test listing orders by workflow status and table"""
        first = self._place().data['id']
        self._place(table_number='3')
        self._move(first, 'preparing')

        response = self.client.get(
            '/api/v1/restaurant/orders/', {'organization': self.org_id, 'workflow_status': 'preparing'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['id'] for o in response.data['results']], [first])

        response = self.client.get('/api/v1/restaurant/orders/', {'organization': self.org_id, 'table_number': '3'})
        self.assertEqual(response.data['count'], 1)

    def test_order_detail_of_other_organization(self):
        """Test orders of other organizations are forbidden"""
        order_id = self._place().data['id']
        outsider = TestDataFactory.create_member(TestDataFactory.create_organization())
        self.client.authenticate_user(outsider)
        response = self.client.get(f'/api/v1/restaurant/orders/{order_id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class BulkUploadAPITests(RestaurantAPITestCase):
    """Test bulk uploads of inventory, menu items and recipes"""

    def test_bulk_inventory_items(self):
        """Test valid rows are created and invalid rows reported"""
        data = {
            'organization': self.org_id,
            'items': [
                {'name': 'Garlic', 'unit': 'kg', 'unit_cost': '4.00', 'current_stock': '3'},
                {'name': '', 'unit': 'kg'},
                {'name': 'Thyme', 'reorder_point': '9', 'max_stock': '2'},
                {'name': 'Lemons', 'unit': 'each'},
            ],
        }
        response = self.client.post('/api/v1/bulk-upload/inventory-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['success'], 2)
        self.assertEqual(response.data['failed'], 2)
        self.assertEqual([e['row'] for e in response.data['errors']], [2, 3])
        self.assertIn('reorder_point', response.data['errors'][1]['errors'])
        self.assertEqual(len(response.data['created_ids']), 2)
        self.assertEqual(Entity.objects.filter(entity_type='inventory_item').count(), 2)
        self.assertTrue(AuditLog.objects.filter(action='bulk_upload', model_name='InventoryItem').exists())

    def test_bulk_menu_items_create_categories(self):
        """Test menu rows share categories named by the rows"""
        data = {
            'organization': self.org_id,
            'items': [
                {'name': 'Pancakes', 'base_price': '8.00', 'category_name': 'Breakfast'},
                {'name': 'Waffles', 'base_price': '9.00', 'category_name': 'breakfast'},
                {'name': 'Mystery', 'category_name': 'Breakfast'},
            ],
        }
        response = self.client.post('/api/v1/bulk-upload/menu-items/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['success'], 2)
        self.assertEqual(response.data['errors'][0]['name'], 'Mystery')
        self.assertEqual(Entity.objects.filter(entity_type='menu_category').count(), 1)

    def test_bulk_recipes(self):
        """Test recipes are matched to ingredients by name"""
        TestDataFactory.create_inventory_item(self.org, name='Eggs', unit_cost='0.30')
        TestDataFactory.create_inventory_item(self.org, name='Flour', unit_cost='1.00')
        data = {
            'organization': self.org_id,
            'recipes': [
                {'name': 'Crepes', 'serving_size': 4},
                {'name': 'Omelette'},
                {'name': 'Toast'},
            ],
            'recipe_ingredients': [
                {'recipe_name': 'crepes', 'ingredient_name': 'eggs', 'quantity': '3'},
                {'recipe_name': 'Crepes', 'ingredient_name': 'Flour', 'quantity': '0.25'},
                {'recipe_name': 'Omelette', 'ingredient_name': 'Truffle', 'quantity': '1'},
            ],
        }
        response = self.client.post('/api/v1/bulk-upload/recipes/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['success'], 1)
        self.assertEqual(response.data['failed'], 2)
        self.assertIn('Truffle', str(response.data['errors'][0]['errors']['ingredients']))
        self.assertIn('No ingredients found', str(response.data['errors'][1]['errors']['ingredients']))

        recipe = Entity.objects.get(entity_type='recipe', entity_name='Crepes')
        payload = services.recipe_payload(recipe)
        self.assertEqual(len(payload['ingredients']), 2)
        self.assertEqual(payload['cost_analysis']['total_ingredient_cost'], '1.15')

    def test_bulk_requires_write_role(self):
        """Test viewers cannot bulk upload"""
        viewer = TestDataFactory.create_member(self.org, role=UserOrganization.ROLE_VIEWER)
        self.client.authenticate_user(viewer)
        response = self.client.post(
            '/api/v1/bulk-upload/inventory-items/',
            {'organization': self.org_id, 'items': [{'name': 'Salt'}]},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class MenuAnalyticsAPITests(RestaurantAPITestCase):
    """Test menu pricing and profitability analytics"""

    def setUp(self):
        super().setUp()
        self.mains = TestDataFactory.create_menu_category(self.org, name='Mains')
        self.drinks = TestDataFactory.create_menu_category(self.org, name='Drinks')
        TestDataFactory.create_menu_item(self.org, name='Burger', base_price='20.00', cost_price='6.00', category=self.mains)
        TestDataFactory.create_menu_item(self.org, name='Steak', base_price='40.00', cost_price='30.00', category=self.mains)
        TestDataFactory.create_menu_item(self.org, name='Water', base_price='2.00', cost_price='1.95', category=self.drinks)

    def _analytics(self, **params):
        response = self.client.get('/api/v1/restaurant/menu-analytics/', {'organization': self.org_id, **params})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        return response.data['data']

    def test_summary(self):
        """Test menu-wide price and margin summary"""
        summary = self._analytics()['summary']
        self.assertEqual(summary['total_items'], 3)
        self.assertEqual(summary['total_categories'], 2)
        self.assertEqual(summary['average_item_price'], '20.67')
        self.assertEqual(summary['total_menu_value'], '62.00')
        self.assertEqual(summary['most_expensive_item'], 'Steak')
        self.assertEqual(summary['cheapest_item'], 'Water')
        self.assertEqual(summary['highest_margin_item'], 'Burger')
        self.assertEqual(summary['lowest_margin_item'], 'Water')

    def test_category_performance_and_profitability(self):
        """Test per-category averages and margin buckets"""
        data = self._analytics()
        categories = {c['category_name']: c for c in data['category_performance']}
        self.assertEqual(categories['Mains']['item_count'], 2)
        self.assertEqual(categories['Mains']['average_margin'], '47.50')
        self.assertEqual(categories['Mains']['price_range'], {'min': '20.00', 'max': '40.00'})
        self.assertEqual(categories['Drinks']['average_margin'], '2.50')

        profitability = data['profitability']
        self.assertEqual(profitability['excellent_margin'], 1)
        self.assertEqual(profitability['good_margin'], 1)
        self.assertEqual(profitability['fair_margin'], 0)
        self.assertEqual(profitability['poor_margin'], 1)
        self.assertEqual([i['name'] for i in profitability['risk_items']], ['Water'])

    def test_top_items_and_recommendations(self):
        """Test rankings and generated recommendations"""
        data = self._analytics()
        self.assertEqual([i['name'] for i in data['top_items']['highest_profit']], ['Burger', 'Steak', 'Water'])
        self.assertEqual([i['name'] for i in data['top_items']['premium_items']], ['Steak'])
        self.assertEqual(
            [(r['type'], r['priority']) for r in data['recommendations']],
            [('pricing', 'high'), ('menu_engineering', 'medium'), ('pricing', 'low')]
        )
        self.assertEqual(data['recommendations'][0]['items_affected'], ['Water'])

    def test_price_distribution(self):
        """Test items are bucketed by price band"""
        bands = {row['range']: row for row in self._analytics()['trends']['price_distribution']}
        self.assertEqual(bands['0-10']['count'], 1)
        self.assertEqual(bands['10-20']['count'], 0)
        self.assertEqual(bands['20-30']['count'], 1)
        self.assertEqual(bands['30-50']['percentage'], '33.33')

    def test_category_filter(self):
        """Test analytics restricted to one category"""
        summary = self._analytics(category=str(self.mains.id))['summary']
        self.assertEqual(summary['total_items'], 2)
        self.assertEqual(summary['cheapest_item'], 'Burger')

    def test_empty_menu(self):
        """Test an organization without menu items"""
        other = TestDataFactory.create_organization()
        TestDataFactory.add_member(self.user, other)
        response = self.client.get('/api/v1/restaurant/menu-analytics/', {'organization': str(other.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['summary'], {'total_items': 0})

    def test_invalid_category(self):
        """Test a malformed category id returns 400"""
        response = self.client.get(
            '/api/v1/restaurant/menu-analytics/', {'organization': self.org_id, 'category': 'mains'}
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
