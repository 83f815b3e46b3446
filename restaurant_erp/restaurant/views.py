import logging
import uuid

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction as db_transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import APIException, NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from restaurant_erp.core.pagination import paginated_response
from restaurant_erp.core.utils import create_audit_log
from restaurant_erp.organizations.permissions import (
    WRITE_ROLES, require_organization_access, resolve_request_organization,
)
from restaurant_erp.transactions.filters import TransactionFilter
from restaurant_erp.transactions.models import UniversalTransaction
from restaurant_erp.universal.models import Entity
from restaurant_erp.universal.services import get_entity
from . import services
from .serializers import (
    MenuCategorySerializer, MenuItemSerializer, InventoryItemSerializer, RecipeSerializer,
    OrderCreateSerializer, OrderStatusSerializer, OrderSerializer,
    BulkUploadSerializer, RecipeBulkUploadSerializer,
)

logger = logging.getLogger(__name__)


def _get_entity(pk, entity_types, label):
    try:
        return Entity.objects.select_related('organization').get(
            pk=pk, entity_type__in=entity_types, is_active=True
        )
    except (Entity.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f'{label} not found')


def _uuid_param(request, name):
    value = request.query_params.get(name)
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationError({name: f"'{value}' is not a valid id"})


def _entities(organization, entity_types, request):
    queryset = Entity.objects.filter(
        organization=organization, entity_type__in=entity_types, is_active=True
    ).prefetch_related('dynamic_data')
    search = request.query_params.get('search')
    if search:
        queryset = queryset.filter(Q(entity_name__icontains=search) | Q(entity_code__icontains=search))
    return queryset.order_by('entity_name')


def _audit(request, action, model_name, entity, organization, changes=None):
    create_audit_log(
        request=request,
        action=action,
        model_name=model_name,
        object_id=str(entity.id),
        object_name=entity.entity_name,
        object_reference=entity.entity_code,
        organization=organization,
        changes=changes,
    )


# Menu categories

@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def menu_category_list_create(request):
    """List or create menu categories"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        queryset = _entities(organization, [services.MENU_CATEGORY], request)
        return paginated_response(
            request, queryset, lambda page: [services.category_payload(e) for e in page]
        )

    organization = resolve_request_organization(request, roles=WRITE_ROLES)
    serializer = MenuCategorySerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    category = services.create_category(
        organization, data['name'], user=request.user,
        description=data['description'], display_order=data.get('display_order'),
    )
    _audit(request, 'create', 'MenuCategory', category, organization)
    return Response(services.category_payload(category), status=status.HTTP_201_CREATED)


# Menu items

def _resolve_category(organization, data):
    if data.get('category'):
        return get_entity(organization, data['category'], entity_type=services.MENU_CATEGORY, field='category')
    if data.get('category_name'):
        return services.find_or_create_category(organization, data['category_name'])
    return None


def _create_menu_item(request, organization, payload):
    serializer = MenuItemSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    category = _resolve_category(organization, data)
    entity = services.create_menu_item(organization, data, user=request.user, category=category)
    _audit(request, 'create', 'MenuItem', entity, organization, {'item_type': data['item_type']})
    return entity


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def menu_item_list_create(request):
    """List menu items with a menu summary, or create an individual or combo item"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        entity_types = list(services.MENU_ITEM_TYPES)
        item_type = request.query_params.get('item_type')
        if item_type:
            if item_type not in services.ITEM_TYPE_ENTITY:
                raise ValidationError({'item_type': f"item_type must be one of {', '.join(services.ITEM_TYPE_ENTITY)}"})
            entity_types = [services.ITEM_TYPE_ENTITY[item_type]]

        queryset = _entities(organization, entity_types, request)
        category_id = _uuid_param(request, 'category')
        if category_id:
            queryset = queryset.filter(
                parent_relationships__parent_entity_id=category_id,
                parent_relationships__relationship_type=services.MENU_ITEM_CATEGORY,
                parent_relationships__is_active=True,
            ).distinct()

        include_components = request.query_params.get('include_components', '').lower() == 'true'
        items = [services.menu_item_payload(e, include_components=include_components) for e in queryset]
        available = request.query_params.get('is_available')
        if available is not None:
            wanted = available.lower() == 'true'
            items = [item for item in items if item['is_available'] is wanted]

        response = paginated_response(request, items, list)
        response.data['summary'] = services.menu_summary(items)
        return response

    organization = resolve_request_organization(request, roles=WRITE_ROLES)
    entity = _create_menu_item(request, organization, request.data)
    return Response(
        services.menu_item_payload(entity, include_components=True), status=status.HTTP_201_CREATED
    )


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def menu_item_detail(request, pk):
    """Retrieve, update or deactivate a menu item"""
    entity = _get_entity(pk, services.MENU_ITEM_TYPES, 'Menu item')

    if request.method == 'GET':
        require_organization_access(request, entity.organization_id)
        return Response(services.menu_item_payload(entity, include_components=True))

    organization = require_organization_access(request, entity.organization_id, roles=WRITE_ROLES)

    if request.method in ('PUT', 'PATCH'):
        serializer = MenuItemSerializer(
            data=request.data,
            partial=request.method == 'PATCH',
            context={'item_type': services.item_type_of(entity)},
        )
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        category_given = 'category' in data or 'category_name' in data
        category = _resolve_category(organization, data) if category_given else None
        services.update_menu_item(entity, data, category=category, category_given=category_given)
        _audit(request, 'update', 'MenuItem', entity, organization,
               {key: str(value) for key, value in data.items() if key != 'components'})
        return Response(services.menu_item_payload(entity, include_components=True))

    services.delete_menu_item(entity)
    _audit(request, 'soft_delete', 'MenuItem', entity, organization)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def menu_analytics(request):
    """Menu pricing, margin and prep time analytics"""
    organization = resolve_request_organization(request)
    category_id = _uuid_param(request, 'category')
    analytics = services.build_menu_analytics(organization, category_id=category_id)
    logger.debug(f"Menu analytics built for {organization.org_code}: {analytics['summary']['total_items']} items")
    return Response({
        'data': analytics,
        'metadata': {
            'organization': str(organization.id),
            'category': str(category_id) if category_id else None,
            'items_analyzed': analytics['summary']['total_items'],
            'generated_at': timezone.now().isoformat(),
        },
    })


# Inventory items

def _create_inventory_item(request, organization, payload):
    serializer = InventoryItemSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    entity = services.create_inventory_item(organization, serializer.validated_data, user=request.user)
    _audit(request, 'create', 'InventoryItem', entity, organization)
    return entity


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def inventory_item_list_create(request):
    """List inventory items (optionally only those at or below their reorder point) or create one"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        items = [
            services.inventory_item_payload(e)
            for e in _entities(organization, [services.INVENTORY_ITEM], request)
        ]
        category = request.query_params.get('category')
        if category:
            items = [item for item in items if item['category'].lower() == category.lower()]
        if request.query_params.get('low_stock', '').lower() == 'true':
            items = [item for item in items if item['is_low_stock']]

        response = paginated_response(request, items, list)
        response.data['low_stock_count'] = sum(1 for item in items if item['is_low_stock'])
        return response

    organization = resolve_request_organization(request, roles=WRITE_ROLES)
    entity = _create_inventory_item(request, organization, request.data)
    return Response(services.inventory_item_payload(entity), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def inventory_item_detail(request, pk):
    """Retrieve, update or deactivate an inventory item"""
    entity = _get_entity(pk, [services.INVENTORY_ITEM], 'Inventory item')

    if request.method == 'GET':
        require_organization_access(request, entity.organization_id)
        return Response(services.inventory_item_payload(entity))

    organization = require_organization_access(request, entity.organization_id, roles=WRITE_ROLES)

    if request.method in ('PUT', 'PATCH'):
        serializer = InventoryItemSerializer(data=request.data, partial=request.method == 'PATCH')
        serializer.is_valid(raise_exception=True)
        services.update_inventory_item(entity, serializer.validated_data)
        _audit(request, 'update', 'InventoryItem', entity, organization,
               {key: str(value) for key, value in serializer.validated_data.items()})
        return Response(services.inventory_item_payload(entity))

    services.delete_inventory_item(entity)
    _audit(request, 'soft_delete', 'InventoryItem', entity, organization)
    return Response(status=status.HTTP_204_NO_CONTENT)


# Recipes

def _create_recipe(request, organization, payload):
    serializer = RecipeSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    entity = services.create_recipe(organization, serializer.validated_data, user=request.user)
    _audit(request, 'create', 'Recipe', entity, organization,
           {'ingredients': len(serializer.validated_data['ingredients'])})
    return entity


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def recipe_list_create(request):
    """List recipes with ingredients and cost analysis, or create one"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        queryset = _entities(organization, [services.RECIPE], request)
        menu_item_id = _uuid_param(request, 'menu_item')
        if menu_item_id:
            queryset = queryset.filter(
                dynamic_data__field_name='menu_item_id', dynamic_data__field_value=str(menu_item_id)
            )
        recipes = [services.recipe_payload(e) for e in queryset]
        category = request.query_params.get('category')
        if category:
            recipes = [r for r in recipes if r['category'].lower() == category.lower()]
        return paginated_response(request, recipes, list)

    organization = resolve_request_organization(request, roles=WRITE_ROLES)
    entity = _create_recipe(request, organization, request.data)
    return Response(services.recipe_payload(entity), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def recipe_detail(request, pk):
    """Retrieve, update (recalculating costs) or deactivate a recipe"""
    entity = _get_entity(pk, [services.RECIPE], 'Recipe')

    if request.method == 'GET':
        require_organization_access(request, entity.organization_id)
        return Response(services.recipe_payload(entity))

    organization = require_organization_access(request, entity.organization_id, roles=WRITE_ROLES)

    if request.method in ('PUT', 'PATCH'):
        serializer = RecipeSerializer(data=request.data, partial=request.method == 'PATCH')
        serializer.is_valid(raise_exception=True)
        services.update_recipe(entity, serializer.validated_data)
        _audit(request, 'update', 'Recipe', entity, organization,
               {'fields': sorted(serializer.validated_data)})
        return Response(services.recipe_payload(entity))

    services.delete_recipe(entity)
    _audit(request, 'soft_delete', 'Recipe', entity, organization)
    return Response(status=status.HTTP_204_NO_CONTENT)


# Orders

def _get_order(pk):
    try:
        return UniversalTransaction.objects.select_related('organization').get(
            pk=pk, transaction_type=services.SALES_ORDER
        )
    except (UniversalTransaction.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Order not found')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def order_list_create(request):
    """List sales orders or place one from menu items"""
    if request.method == 'GET':
        organization = resolve_request_organization(request)
        queryset = UniversalTransaction.objects.filter(
            organization=organization, transaction_type=services.SALES_ORDER
        ).prefetch_related('lines__entity')
        filterset = TransactionFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            raise ValidationError(filterset.errors)
        queryset = filterset.qs
        table_number = request.query_params.get('table_number')
        if table_number:
            queryset = queryset.filter(transaction_data__table_number=table_number)
        queryset = queryset.order_by('-created_at')
        return paginated_response(request, queryset, lambda page: OrderSerializer(page, many=True).data)

    serializer = OrderCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=WRITE_ROLES)

    items = []
    for index, item in enumerate(data['items'], start=1):
        menu_item = get_entity(organization, item['menu_item'], entity_type=list(services.MENU_ITEM_TYPES),
                               field=f'items[{index}].menu_item')
        items.append({**item, 'menu_item': menu_item})

    order = services.create_order(
        organization, items, user=request.user,
        order_type=data['order_type'],
        table_number=data['table_number'],
        customer_name=data['customer_name'],
        notes=data['notes'],
    )
    create_audit_log(
        request=request,
        action='create',
        model_name='SalesOrder',
        object_id=str(order.id),
        object_reference=order.transaction_number,
        organization=organization,
        changes={'total_amount': str(order.total_amount), 'items': len(items)},
    )
    return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def order_detail(request, pk):
    order = _get_order(pk)
    require_organization_access(request, order.organization_id)
    return Response(OrderSerializer(order).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def order_status_update(request, pk):
    """Move an order through the kitchen workflow or cancel it"""
    order = _get_order(pk)
    organization = require_organization_access(request, order.organization_id, roles=WRITE_ROLES)
    serializer = OrderStatusSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    previous = services.order_status(order)
    order = services.update_order_status(
        order, serializer.validated_data['status'], user=request.user,
        reason=serializer.validated_data['reason'],
    )
    create_audit_log(
        request=request,
        action='order_status',
        model_name='SalesOrder',
        object_id=str(order.id),
        object_reference=order.transaction_number,
        organization=organization,
        changes={'from': previous, 'to': order.workflow_status},
    )
    return Response(OrderSerializer(order).data)


# Bulk upload

def _run_bulk(rows, create_row):
    """Create each row in its own savepoint; a failing row does not stop the batch"""
    results = {'success': 0, 'failed': 0, 'errors': [], 'created_ids': []}
    for row_number, row in enumerate(rows, start=1):
        try:
            with db_transaction.atomic():
                entity = create_row(row)
        except APIException as e:
            results['failed'] += 1
            results['errors'].append({'row': row_number, 'name': row.get('name'), 'errors': e.detail})
            continue
        results['success'] += 1
        results['created_ids'].append(str(entity.id))
    return results


def _bulk_envelope(request):
    serializer = BulkUploadSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    organization = require_organization_access(
        request, serializer.validated_data['organization'], roles=WRITE_ROLES
    )
    return organization, serializer.validated_data['items']


def _bulk_response(request, organization, label, results):
    logger.info(
        f"Bulk upload of {label} in {organization.org_code}: "
        f"{results['success']} created, {results['failed']} failed"
    )
    create_audit_log(
        request=request,
        action='bulk_upload',
        model_name=label,
        object_id=str(organization.id),
        object_name=organization.org_name,
        organization=organization,
        changes={'success': results['success'], 'failed': results['failed']},
    )
    return Response(results)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def bulk_upload_inventory_items(request):
    organization, rows = _bulk_envelope(request)
    results = _run_bulk(rows, lambda row: _create_inventory_item(request, organization, row))
    return _bulk_response(request, organization, 'InventoryItem', results)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def bulk_upload_menu_items(request):
    """Menu item rows may name their category; unknown categories are created"""
    organization, rows = _bulk_envelope(request)
    results = _run_bulk(rows, lambda row: _create_menu_item(request, organization, row))
    return _bulk_response(request, organization, 'MenuItem', results)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def bulk_upload_recipes(request):
    """
    Recipes with their ingredients given as a separate sheet.

    Each recipe_ingredients row names its recipe (recipe_name) and an existing
    inventory item (ingredient_name); both are matched case-insensitively.
    """
    serializer = RecipeBulkUploadSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    organization = require_organization_access(request, data['organization'], roles=WRITE_ROLES)

    inventory = {
        entity.entity_name.lower(): entity
        for entity in Entity.objects.filter(
            organization=organization, entity_type=services.INVENTORY_ITEM, is_active=True
        )
    }

    def create_row(row):
        name = str(row.get('name', '')).strip().lower()
        ingredients = []
        for ingredient in data['recipe_ingredients']:
            if str(ingredient.get('recipe_name', '')).strip().lower() != name:
                continue
            ingredient_name = str(ingredient.get('ingredient_name', '')).strip()
            item = inventory.get(ingredient_name.lower())
            if item is None:
                raise ValidationError({
                    'ingredients': f'Ingredient "{ingredient_name}" not found in inventory. Please add it first.'
                })
            ingredients.append({
                'inventory_item': str(item.id),
                **{key: ingredient[key] for key in ('quantity', 'unit', 'preparation_notes', 'is_optional')
                   if key in ingredient},
            })
        if not ingredients:
            raise ValidationError({'ingredients': f"No ingredients found for recipe {row.get('name')}"})
        return _create_recipe(request, organization, {**row, 'ingredients': ingredients})

    results = _run_bulk(data['recipes'], create_row)
    return _bulk_response(request, organization, 'Recipe', results)
