"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from restaurant_erp.organizations.models import Organization, UserOrganization
from restaurant_erp.universal.services import create_entity, create_relationship
from restaurant_erp.transactions.services import create_transaction
from decimal import Decimal
import random
import string

User = get_user_model()

TEST_PASSWORD = 'Str0ngPass!2026'


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password=TEST_PASSWORD, is_staff=False, is_superuser=False):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser
        )
        return user

    @staticmethod
    def create_organization(name=None, code=None, is_active=True, currency='USD', created_by=None):
        """Create a test organization"""
        if not name:
            name = f'Restaurant {TestDataFactory.random_string(6)}'
        if not code:
            code = f'ORG-{TestDataFactory.random_string(6).upper()}'
        return Organization.objects.create(
            org_name=name,
            org_code=code,
            currency=currency,
            is_active=is_active,
            created_by=created_by
        )

    @staticmethod
    def add_member(user, organization, role=UserOrganization.ROLE_OWNER, is_active=True):
        """Give user a membership in organization"""
        return UserOrganization.objects.create(
            user=user,
            organization=organization,
            role=role,
            is_active=is_active
        )

    @staticmethod
    def create_member(organization, role=UserOrganization.ROLE_OWNER):
        """Create a user who belongs to organization with role"""
        user = TestDataFactory.create_user()
        TestDataFactory.add_member(user, organization, role=role)
        return user

    @staticmethod
    def create_entity(organization, entity_type='test_entity', name=None, dynamic_data=None, field_types=None):
        """Create a test entity with optional dynamic data"""
        if not name:
            name = f'{entity_type.title()} {TestDataFactory.random_string(6)}'
        return create_entity(
            organization,
            entity_type,
            name,
            dynamic_data=dynamic_data,
            field_types=field_types
        )

    @staticmethod
    def create_supplier(organization, name=None):
        """Create a supplier entity"""
        return TestDataFactory.create_entity(
            organization,
            'supplier',
            name=name or f'Supplier {TestDataFactory.random_string(6)}',
            dynamic_data={'email': 'orders@supplier.test', 'payment_terms': 'net_30'}
        )

    @staticmethod
    def create_inventory_item(organization, name=None, current_stock='10', reorder_point='5', unit_cost='2.50', unit='kg'):
        """Create an inventory item entity"""
        return TestDataFactory.create_entity(
            organization,
            'inventory_item',
            name=name or f'Ingredient {TestDataFactory.random_string(6)}',
            dynamic_data={
                'current_stock': Decimal(current_stock),
                'reorder_point': Decimal(reorder_point),
                'unit_cost': Decimal(unit_cost),
                'unit': unit,
            }
        )

    @staticmethod
    def create_menu_category(organization, name=None):
        """Create a menu category entity"""
        return TestDataFactory.create_entity(
            organization,
            'menu_category',
            name=name or f'Category {TestDataFactory.random_string(6)}'
        )

    @staticmethod
    def create_menu_item(organization, name=None, base_price='12.00', cost_price='4.00', is_available=True, category=None):
        """Create an individual menu item entity"""
        item = TestDataFactory.create_entity(
            organization,
            'menu_item',
            name=name or f'Dish {TestDataFactory.random_string(6)}',
            dynamic_data={
                'base_price': Decimal(base_price),
                'cost_price': Decimal(cost_price),
                'is_available': is_available,
                'prep_time_minutes': 10,
            }
        )
        if category is not None:
            create_relationship(organization, category, item, 'menu_item_category')
        return item

    @staticmethod
    def create_transaction(organization, transaction_type='journal_entry', lines=None, user=None, **fields):
        """Create a test transaction"""
        return create_transaction(
            organization,
            transaction_type,
            lines=lines,
            user=user,
            **fields
        )

    @staticmethod
    def create_module_template(organization, code=None, name=None, entity_type='erp_module_template', configuration=None):
        """Create a module template entity"""
        if not code:
            code = f'MOD-{TestDataFactory.random_string(6).upper()}'
        return create_entity(
            organization,
            entity_type,
            name or f'Module {code}',
            entity_code=code,
            dynamic_data=configuration or {'description': f'Test module {code}', 'module_category': 'general'}
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
