"""
Restaurant operations on the universal schema

Menu categories, menu items, inventory items and recipes are entities whose
attributes live in dynamic data. Links between them are relationships:

    menu_item_category   category -> menu item
    combo_component      composite menu item -> individual menu item
    recipe_ingredient    recipe -> inventory item

Orders are `sales_order` transactions with one line per menu item.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction as db_transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from restaurant_erp.transactions.services import create_transaction
from restaurant_erp.universal.models import Entity, Relationship
from restaurant_erp.universal.services import (
    create_entity, update_entity, soft_delete, get_entity, create_relationship,
    active_children, replace_children, upsert_metadata, get_metadata_value,
)

logger = logging.getLogger(__name__)

MENU_CATEGORY = 'menu_category'
MENU_ITEM = 'menu_item'
COMPOSITE_MENU_ITEM = 'composite_menu_item'
MENU_ITEM_TYPES = (MENU_ITEM, COMPOSITE_MENU_ITEM)
INVENTORY_ITEM = 'inventory_item'
RECIPE = 'recipe'
SALES_ORDER = 'sales_order'

MENU_ITEM_CATEGORY = 'menu_item_category'
COMBO_COMPONENT = 'combo_component'
RECIPE_INGREDIENT = 'recipe_ingredient'

ITEM_TYPE_INDIVIDUAL = 'individual'
ITEM_TYPE_COMPOSITE = 'composite'
ITEM_TYPE_ENTITY = {ITEM_TYPE_INDIVIDUAL: MENU_ITEM, ITEM_TYPE_COMPOSITE: COMPOSITE_MENU_ITEM}

ORDER_FLOW = ['pending', 'preparing', 'ready', 'served', 'completed']
ORDER_CANCELLED = 'cancelled'
CANCELLABLE_ORDER_STATUSES = ('pending', 'preparing', 'ready')

TWO_PLACES = Decimal('0.01')

MENU_ITEM_FIELD_TYPES = {
    'description': 'text',
    'base_price': 'number',
    'cost_price': 'number',
    'prep_time_minutes': 'number',
    'is_available': 'boolean',
    'allergens': 'json',
    'nutritional_info': 'json',
    'image_url': 'text',
}

INVENTORY_FIELD_TYPES = {
    'category': 'text',
    'unit': 'text',
    'unit_cost': 'number',
    'current_stock': 'number',
    'reorder_point': 'number',
    'max_stock': 'number',
    'storage_location': 'text',
    'supplier_name': 'text',
    'shelf_life_days': 'number',
}

RECIPE_FIELD_TYPES = {
    'description': 'text',
    'category': 'text',
    'menu_item_id': 'text',
    'serving_size': 'number',
    'prep_time_minutes': 'number',
    'cook_time_minutes': 'number',
    'total_time_minutes': 'number',
    'difficulty_level': 'text',
    'instructions': 'json',
    'notes': 'text',
    'allergen_info': 'json',
    'dietary_info': 'json',
    'equipment_needed': 'json',
    'version': 'text',
    'is_published': 'boolean',
}


def _money(value):
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _decimal(value, default='0'):
    if value is None or value == '':
        return Decimal(default)
    return Decimal(str(value))


def _pick(data, field_types):
    return {name: data[name] for name in field_types if name in data}


# Menu categories

def category_payload(entity):
    data = entity.get_dynamic_data()
    return {
        'id': str(entity.id),
        'name': entity.entity_name,
        'code': entity.entity_code,
        'description': data.get('description', ''),
        'display_order': data.get('display_order'),
        'item_count': Relationship.objects.filter(
            parent_entity=entity, relationship_type=MENU_ITEM_CATEGORY,
            is_active=True, child_entity__is_active=True,
        ).count(),
        'is_active': entity.is_active,
        'created_at': entity.created_at,
    }


def create_category(organization, name, user=None, description='', display_order=None):
    dynamic_data = {'description': description}
    if display_order is not None:
        dynamic_data['display_order'] = display_order
    return create_entity(
        organization, MENU_CATEGORY, name,
        dynamic_data=dynamic_data,
        field_types={'description': 'text', 'display_order': 'number'},
        user=user,
    )


def find_or_create_category(organization, name, user=None):
    category = Entity.objects.filter(
        organization=organization, entity_type=MENU_CATEGORY,
        entity_name__iexact=name.strip(), is_active=True,
    ).first()
    return category or create_category(organization, name, user=user)


# Menu items

def calculate_profit_margin(base_price, cost_price):
    """Margin in percent of the selling price, 0 for free items"""
    base_price = _decimal(base_price)
    cost_price = _decimal(cost_price)
    if base_price <= 0:
        return Decimal('0.00')
    return _money((base_price - cost_price) / base_price * 100)


def item_type_of(entity):
    return ITEM_TYPE_COMPOSITE if entity.entity_type == COMPOSITE_MENU_ITEM else ITEM_TYPE_INDIVIDUAL


def menu_item_category(entity):
    link = Relationship.objects.filter(
        child_entity=entity, relationship_type=MENU_ITEM_CATEGORY,
        is_active=True, parent_entity__is_active=True,
    ).select_related('parent_entity').first()
    return link.parent_entity if link else None


def menu_item_components(entity):
    components = []
    for link in active_children(entity, COMBO_COMPONENT):
        child = link.child_entity
        data = link.relationship_data
        components.append({
            'relationship_id': link.id,
            'menu_item_id': str(child.id),
            'name': child.entity_name,
            'quantity': data.get('quantity', '1'),
            'portion_size': data.get('portion_size', 'regular'),
            'sequence_order': data.get('sequence_order', 0),
            'is_mandatory': data.get('is_mandatory', True),
            'cost_price': str(_decimal(child.get_field('cost_price'))),
            'base_price': str(_decimal(child.get_field('base_price'))),
        })
    return sorted(components, key=lambda c: c['sequence_order'])


def menu_item_payload(entity, include_components=False):
    data = entity.get_dynamic_data()
    base_price = _decimal(data.get('base_price'))
    cost_price = _decimal(data.get('cost_price'))
    category = menu_item_category(entity)
    payload = {
        'id': str(entity.id),
        'name': entity.entity_name,
        'code': entity.entity_code,
        'item_type': item_type_of(entity),
        'category': {'id': str(category.id), 'name': category.entity_name} if category else None,
        'description': data.get('description', ''),
        'base_price': str(base_price),
        'cost_price': str(cost_price),
        'profit_margin': str(calculate_profit_margin(base_price, cost_price)),
        'prep_time_minutes': int(data.get('prep_time_minutes') or 10),
        'is_available': data.get('is_available', True),
        'allergens': data.get('allergens') or [],
        'nutritional_info': data.get('nutritional_info') or {},
        'image_url': data.get('image_url', ''),
        'is_active': entity.is_active,
        'created_at': entity.created_at,
        'updated_at': entity.updated_at,
    }
    if include_components and entity.entity_type == COMPOSITE_MENU_ITEM:
        payload['components'] = menu_item_components(entity)
    return payload


def menu_summary(payloads):
    margins = [Decimal(p['profit_margin']) for p in payloads]
    return {
        'individual_items': sum(1 for p in payloads if p['item_type'] == ITEM_TYPE_INDIVIDUAL),
        'combo_items': sum(1 for p in payloads if p['item_type'] == ITEM_TYPE_COMPOSITE),
        'average_margin': str(_money(sum(margins) / len(margins))) if margins else '0.00',
        'total_menu_value': str(sum((Decimal(p['base_price']) for p in payloads), Decimal('0'))),
    }


def resolve_components(organization, components):
    """Validate component rows and return (menu item entity, relationship data) pairs"""
    resolved = []
    for index, component in enumerate(components, start=1):
        child = get_entity(organization, component['menu_item'], entity_type=MENU_ITEM,
                           field=f'components[{index}].menu_item')
        resolved.append((child, {
            'quantity': str(component.get('quantity', 1)),
            'portion_size': component.get('portion_size', 'regular'),
            'sequence_order': component.get('sequence_order', index),
            'is_mandatory': component.get('is_mandatory', True),
        }))
    return resolved


def composite_cost(resolved):
    return _money(sum(
        (_decimal(child.get_field('cost_price')) * Decimal(data['quantity']) for child, data in resolved),
        Decimal('0'),
    ))


def _link_category(organization, entity, category):
    Relationship.objects.filter(
        child_entity=entity, relationship_type=MENU_ITEM_CATEGORY, is_active=True
    ).update(is_active=False)
    if category is not None:
        create_relationship(organization, category, entity, MENU_ITEM_CATEGORY)


def create_menu_item(organization, data, user=None, category=None):
    """
    Create an individual or composite menu item.

    data is validated MenuItemCreateSerializer output; category is a resolved
    menu_category entity or None.
    """
    item_type = data.get('item_type', ITEM_TYPE_INDIVIDUAL)
    fields = _pick(data, MENU_ITEM_FIELD_TYPES)
    fields.setdefault('is_available', True)
    fields.setdefault('prep_time_minutes', 10)

    resolved = []
    if item_type == ITEM_TYPE_COMPOSITE:
        if not data.get('components'):
            raise ValidationError({'components': 'A composite menu item needs at least one component'})
        resolved = resolve_components(organization, data['components'])
        if fields.get('cost_price') is None:
            fields['cost_price'] = composite_cost(resolved)
    elif fields.get('cost_price') is None:
        fields['cost_price'] = Decimal('0')

    with db_transaction.atomic():
        entity = create_entity(
            organization, ITEM_TYPE_ENTITY[item_type], data['name'],
            entity_code=data.get('code') or None,
            dynamic_data=fields,
            field_types=MENU_ITEM_FIELD_TYPES,
            user=user,
        )
        if category is not None:
            create_relationship(organization, category, entity, MENU_ITEM_CATEGORY)
        for child, relationship_data in resolved:
            create_relationship(organization, entity, child, COMBO_COMPONENT, relationship_data)
    logger.info(f"Menu item {entity.entity_code} ({item_type}) created in {organization.org_code}")
    return entity


def update_menu_item(entity, data, category=None, category_given=False):
    organization = entity.organization
    fields = _pick(data, MENU_ITEM_FIELD_TYPES)
    with db_transaction.atomic():
        if 'components' in data:
            if entity.entity_type != COMPOSITE_MENU_ITEM:
                raise ValidationError({'components': 'Only composite menu items have components'})
            if not data['components']:
                raise ValidationError({'components': 'A composite menu item needs at least one component'})
            resolved = resolve_components(organization, data['components'])
            if any(child.pk == entity.pk for child, _ in resolved):
                raise ValidationError({'components': 'A menu item cannot contain itself'})
            replace_children(organization, entity, COMBO_COMPONENT, resolved)
            if data.get('cost_price') is None:
                fields['cost_price'] = composite_cost(resolved)
        if category_given:
            _link_category(organization, entity, category)
        update_entity(
            entity,
            entity_name=data.get('name'),
            dynamic_data=fields,
            field_types=MENU_ITEM_FIELD_TYPES,
        )
    return entity


def combos_using(entity):
    return Relationship.objects.filter(
        child_entity=entity, relationship_type=COMBO_COMPONENT,
        is_active=True, parent_entity__is_active=True,
    ).select_related('parent_entity')


def delete_menu_item(entity):
    combos = list(combos_using(entity))
    if combos:
        names = ', '.join(link.parent_entity.entity_name for link in combos)
        raise ValidationError({'menu_item': f"Menu item is used in combo items: {names}"})
    with db_transaction.atomic():
        Relationship.objects.filter(parent_entity=entity, is_active=True).update(is_active=False)
        Relationship.objects.filter(child_entity=entity, is_active=True).update(is_active=False)
        soft_delete(entity)
    logger.info(f"Menu item {entity.entity_code} deactivated")
    return entity


# Inventory items

def is_low_stock(current_stock, reorder_point):
    return _decimal(current_stock) <= _decimal(reorder_point)


def inventory_item_payload(entity):
    data = entity.get_dynamic_data()
    current_stock = _decimal(data.get('current_stock'))
    reorder_point = _decimal(data.get('reorder_point'))
    unit_cost = _decimal(data.get('unit_cost'))
    return {
        'id': str(entity.id),
        'name': entity.entity_name,
        'code': entity.entity_code,
        'category': data.get('category', ''),
        'unit': data.get('unit', ''),
        'unit_cost': str(unit_cost),
        'current_stock': str(current_stock),
        'reorder_point': str(reorder_point),
        'max_stock': str(data['max_stock']) if data.get('max_stock') is not None else None,
        'stock_value': str(_money(current_stock * unit_cost)),
        'storage_location': data.get('storage_location', ''),
        'supplier_name': data.get('supplier_name', ''),
        'shelf_life_days': data.get('shelf_life_days'),
        'is_low_stock': is_low_stock(current_stock, reorder_point),
        'is_active': entity.is_active,
        'created_at': entity.created_at,
        'updated_at': entity.updated_at,
    }


def create_inventory_item(organization, data, user=None):
    fields = _pick(data, INVENTORY_FIELD_TYPES)
    fields.setdefault('current_stock', Decimal('0'))
    fields.setdefault('reorder_point', Decimal('0'))
    fields.setdefault('unit_cost', Decimal('0'))
    entity = create_entity(
        organization, INVENTORY_ITEM, data['name'],
        entity_code=data.get('code') or None,
        dynamic_data=fields,
        field_types=INVENTORY_FIELD_TYPES,
        user=user,
    )
    logger.info(f"Inventory item {entity.entity_code} created in {organization.org_code}")
    return entity


def update_inventory_item(entity, data):
    return update_entity(
        entity,
        entity_name=data.get('name'),
        dynamic_data=_pick(data, INVENTORY_FIELD_TYPES),
        field_types=INVENTORY_FIELD_TYPES,
    )


def recipes_using(entity):
    return Relationship.objects.filter(
        child_entity=entity, relationship_type=RECIPE_INGREDIENT,
        is_active=True, parent_entity__is_active=True,
    ).select_related('parent_entity')


def delete_inventory_item(entity):
    recipes = list(recipes_using(entity))
    if recipes:
        names = ', '.join(sorted({link.parent_entity.entity_name for link in recipes}))
        raise ValidationError({'inventory_item': f"Inventory item is used by active recipes: {names}"})
    soft_delete(entity)
    logger.info(f"Inventory item {entity.entity_code} deactivated")
    return entity


# Recipes

def calculate_cost_analysis(ingredients, serving_size):
    """
    Per-serving cost breakdown.

    ingredients is a list of dicts with quantity and cost_per_unit. Labor is a
    share of the ingredient cost and the suggested price a multiple of the
    total cost, both from settings.RECIPE_COSTING.
    """
    costing = settings.RECIPE_COSTING
    serving_size = _decimal(serving_size, default='1')
    if serving_size <= 0:
        serving_size = Decimal('1')

    total_ingredient_cost = sum(
        (_decimal(i.get('quantity')) * _decimal(i.get('cost_per_unit')) for i in ingredients),
        Decimal('0'),
    )
    cost_per_serving = total_ingredient_cost / serving_size
    labor_cost_per_serving = cost_per_serving * costing['labor_cost_ratio']
    total_cost_per_serving = cost_per_serving + labor_cost_per_serving
    suggested_price = total_cost_per_serving * costing['markup_multiplier']
    if suggested_price > 0:
        profit_margin = (suggested_price - total_cost_per_serving) / suggested_price * 100
    else:
        profit_margin = Decimal('0')

    return {
        'total_ingredient_cost': _money(total_ingredient_cost),
        'cost_per_serving': _money(cost_per_serving),
        'labor_cost_per_serving': _money(labor_cost_per_serving),
        'total_cost_per_serving': _money(total_cost_per_serving),
        'suggested_price': _money(suggested_price),
        'profit_margin': _money(profit_margin),
        'markup_percentage': _money((costing['markup_multiplier'] - 1) * 100),
    }


def resolve_ingredients(organization, ingredients):
    """Validate ingredient rows and return (inventory item, relationship data) pairs"""
    resolved = []
    for index, ingredient in enumerate(ingredients, start=1):
        item = get_entity(organization, ingredient['inventory_item'], entity_type=INVENTORY_ITEM,
                          field=f'ingredients[{index}].inventory_item')
        cost_per_unit = ingredient.get('cost_per_unit')
        if cost_per_unit is None:
            cost_per_unit = _decimal(item.get_field('unit_cost'))
        quantity = _decimal(ingredient['quantity'])
        resolved.append((item, {
            'quantity': str(quantity),
            'unit': ingredient.get('unit') or item.get_field('unit', ''),
            'cost_per_unit': str(cost_per_unit),
            'total_cost': str(_money(quantity * _decimal(cost_per_unit))),
            'preparation_notes': ingredient.get('preparation_notes', ''),
            'is_optional': ingredient.get('is_optional', False),
            'substitutes': ingredient.get('substitutes', []),
        }))
    return resolved


def recipe_ingredients(entity):
    rows = []
    for link in active_children(entity, RECIPE_INGREDIENT):
        rows.append({
            'relationship_id': link.id,
            'inventory_item_id': str(link.child_entity_id),
            'ingredient_name': link.child_entity.entity_name,
            **link.relationship_data,
        })
    return rows


def _store_cost_analysis(organization, entity, ingredient_data, serving_size):
    analysis = calculate_cost_analysis(ingredient_data, serving_size)
    upsert_metadata(
        organization, entity, 'cost_analysis', 'cost_analysis',
        {key: str(value) for key, value in analysis.items()},
        metadata_category='financial',
    )
    return analysis


def recipe_payload(entity):
    data = entity.get_dynamic_data()
    return {
        'id': str(entity.id),
        'name': entity.entity_name,
        'code': entity.entity_code,
        'description': data.get('description', ''),
        'category': data.get('category', ''),
        'menu_item_id': data.get('menu_item_id') or None,
        'serving_size': data.get('serving_size', Decimal('1')),
        'prep_time_minutes': data.get('prep_time_minutes', Decimal('0')),
        'cook_time_minutes': data.get('cook_time_minutes', Decimal('0')),
        'total_time_minutes': data.get('total_time_minutes', Decimal('0')),
        'difficulty_level': data.get('difficulty_level', 'easy'),
        'instructions': data.get('instructions') or [],
        'notes': data.get('notes', ''),
        'allergen_info': data.get('allergen_info') or [],
        'dietary_info': data.get('dietary_info') or [],
        'equipment_needed': data.get('equipment_needed') or [],
        'ingredients': recipe_ingredients(entity),
        'cost_analysis': get_metadata_value(entity, 'cost_analysis', 'cost_analysis', default={}),
        'version': data.get('version', '1.0'),
        'is_published': data.get('is_published', False),
        'is_active': entity.is_active,
        'created_at': entity.created_at,
        'updated_at': entity.updated_at,
    }


def _recipe_fields(data):
    fields = _pick(data, RECIPE_FIELD_TYPES)
    if 'prep_time_minutes' in data or 'cook_time_minutes' in data:
        fields['total_time_minutes'] = (
            _decimal(data.get('prep_time_minutes')) + _decimal(data.get('cook_time_minutes'))
        )
    if fields.get('menu_item_id') is not None:
        fields['menu_item_id'] = str(fields['menu_item_id'])
    return fields


def create_recipe(organization, data, user=None):
    if data.get('menu_item_id'):
        get_entity(organization, data['menu_item_id'], entity_type=list(MENU_ITEM_TYPES), field='menu_item_id')
    resolved = resolve_ingredients(organization, data['ingredients'])
    fields = _recipe_fields(data)
    fields.setdefault('serving_size', 1)
    fields.setdefault('version', '1.0')
    fields.setdefault('is_published', False)

    with db_transaction.atomic():
        entity = create_entity(
            organization, RECIPE, data['name'],
            entity_code=data.get('code') or None,
            dynamic_data=fields,
            field_types=RECIPE_FIELD_TYPES,
            user=user,
        )
        for item, relationship_data in resolved:
            create_relationship(organization, entity, item, RECIPE_INGREDIENT, relationship_data)
        _store_cost_analysis(organization, entity, [d for _, d in resolved], fields['serving_size'])
    logger.info(f"Recipe {entity.entity_code} created with {len(resolved)} ingredients")
    return entity


def update_recipe(entity, data):
    organization = entity.organization
    if data.get('menu_item_id'):
        get_entity(organization, data['menu_item_id'], entity_type=list(MENU_ITEM_TYPES), field='menu_item_id')
    with db_transaction.atomic():
        if 'ingredients' in data:
            resolved = resolve_ingredients(organization, data['ingredients'])
            replace_children(organization, entity, RECIPE_INGREDIENT, resolved)
        if 'prep_time_minutes' in data or 'cook_time_minutes' in data:
            current = entity.get_dynamic_data()
            data = {
                'prep_time_minutes': current.get('prep_time_minutes'),
                'cook_time_minutes': current.get('cook_time_minutes'),
                **data,
            }
        update_entity(
            entity,
            entity_name=data.get('name'),
            dynamic_data=_recipe_fields(data),
            field_types=RECIPE_FIELD_TYPES,
        )
        if 'ingredients' in data or 'serving_size' in data:
            ingredient_data = [link.relationship_data for link in active_children(entity, RECIPE_INGREDIENT)]
            _store_cost_analysis(organization, entity, ingredient_data, entity.get_field('serving_size', 1))
    return entity


def delete_recipe(entity):
    with db_transaction.atomic():
        Relationship.objects.filter(
            parent_entity=entity, relationship_type=RECIPE_INGREDIENT, is_active=True
        ).update(is_active=False)
        soft_delete(entity)
    logger.info(f"Recipe {entity.entity_code} deactivated")
    return entity


# Orders

def order_status(order):
    return order.workflow_status or ORDER_FLOW[0]


def allowed_transitions(current):
    allowed = []
    if current in ORDER_FLOW and current != ORDER_FLOW[-1]:
        allowed.append(ORDER_FLOW[ORDER_FLOW.index(current) + 1])
    if current in CANCELLABLE_ORDER_STATUSES:
        allowed.append(ORDER_CANCELLED)
    return allowed


def create_order(organization, items, user=None, order_type='dine_in', table_number='',
                 customer_name='', notes=''):
    """
    Create a sales order priced from the menu.

    items is a list of dicts with a resolved menu item entity under
    `menu_item`, a quantity and optional special_instructions.
    """
    unavailable = [
        item['menu_item'].entity_name for item in items
        if item['menu_item'].get_field('is_available', True) is False
    ]
    if unavailable:
        raise ValidationError({'items': f"Menu items not available: {', '.join(unavailable)}"})

    lines = []
    for item in items:
        entity = item['menu_item']
        lines.append({
            'entity': entity,
            'quantity': item['quantity'],
            'unit_price': _decimal(entity.get_field('base_price')),
            'line_data': {
                'item_type': item_type_of(entity),
                'special_instructions': item.get('special_instructions', ''),
            },
        })

    now = timezone.now().isoformat()
    username = user.username if user and user.is_authenticated else 'system'
    order = create_transaction(
        organization, SALES_ORDER,
        lines=lines,
        user=user,
        workflow_status=ORDER_FLOW[0],
        transaction_data={
            'order_type': order_type,
            'table_number': table_number,
            'customer_name': customer_name,
            'notes': notes,
            'status_history': [{'status': ORDER_FLOW[0], 'at': now, 'by': username}],
        },
    )
    logger.info(f"Order {order.transaction_number} created with {len(lines)} items, total {order.total_amount}")
    return order


def update_order_status(order, new_status, user=None, reason=''):
    current = order_status(order)
    if new_status not in allowed_transitions(current):
        raise ValidationError({
            'status': f"Cannot change order from '{current}' to '{new_status}'",
            'allowed': allowed_transitions(current),
        })
    username = user.username if user and user.is_authenticated else 'system'
    entry = {'status': new_status, 'at': timezone.now().isoformat(), 'by': username}
    if reason:
        entry['reason'] = reason

    data = dict(order.transaction_data)
    data['status_history'] = data.get('status_history', []) + [entry]
    if new_status == ORDER_CANCELLED:
        data['cancellation_reason'] = reason
        order.transaction_status = ORDER_CANCELLED
    elif new_status == ORDER_FLOW[-1]:
        data['completed_at'] = entry['at']
    order.workflow_status = new_status
    order.transaction_data = data
    order.save(update_fields=['workflow_status', 'transaction_status', 'transaction_data', 'updated_at'])
    logger.info(f"Order {order.transaction_number} moved from {current} to {new_status}")
    return order


# Menu analytics

PRICE_BANDS = [
    ('0-10', Decimal('0'), Decimal('10')),
    ('10-20', Decimal('10'), Decimal('20')),
    ('20-30', Decimal('20'), Decimal('30')),
    ('30-50', Decimal('30'), Decimal('50')),
    ('50+', Decimal('50'), None),
]
MARGIN_BANDS = [
    ('loss', None, Decimal('0')),
    ('poor', Decimal('0'), Decimal('10')),
    ('fair', Decimal('10'), Decimal('20')),
    ('good', Decimal('20'), Decimal('30')),
    ('excellent', Decimal('30'), None),
]
PREP_TIME_BANDS = [
    ('fast', Decimal('0'), Decimal('15')),
    ('medium', Decimal('15'), Decimal('30')),
    ('slow', Decimal('30'), Decimal('45')),
    ('very_slow', Decimal('45'), None),
]
UNCATEGORIZED = 'Uncategorized'
LOW_MARGIN_THRESHOLD = Decimal('15')
RISK_MARGIN_THRESHOLD = Decimal('5')
SLOW_PREP_MINUTES = 30
TOP_ITEMS = 5


def _average(values):
    values = list(values)
    return _money(sum(values, Decimal('0')) / len(values)) if values else Decimal('0.00')


def _distribution(items, key, bands):
    """Count items per [low, high) band with their share of the menu in percent"""
    rows = []
    for label, low, high in bands:
        count = sum(
            1 for item in items
            if (low is None or item[key] >= low) and (high is None or item[key] < high)
        )
        rows.append({'range': label, 'count': count, 'percentage': str(_money(Decimal(count) / len(items) * 100))})
    return rows


def _analytics_row(item):
    return {
        'id': item['id'],
        'name': item['name'],
        'category': item['category'],
        'price': str(item['price']),
        'cost': str(item['cost']),
        'margin': str(item['margin']),
        'profit': str(item['price'] - item['cost']),
        'prep_time_minutes': int(item['prep_time']),
    }


def _menu_recommendations(items, categories):
    recommendations = []

    low_margin = [item for item in items if item['margin'] < LOW_MARGIN_THRESHOLD]
    if low_margin:
        recommendations.append({
            'type': 'pricing',
            'priority': 'high',
            'title': 'Review low margin items',
            'description': f"{len(low_margin)} items have profit margins below {LOW_MARGIN_THRESHOLD}%.",
            'items_affected': [item['name'] for item in low_margin],
        })

    slow = [item for item in items if item['prep_time'] > SLOW_PREP_MINUTES]
    if slow:
        recommendations.append({
            'type': 'operational',
            'priority': 'medium',
            'title': 'Optimize prep times',
            'description': f"{len(slow)} items take over {SLOW_PREP_MINUTES} minutes to prepare.",
            'items_affected': [item['name'] for item in slow],
        })

    if len(categories) > 1:
        overall = _average(Decimal(c['average_margin']) for c in categories)
        weak = [c['category_name'] for c in categories if Decimal(c['average_margin']) < overall * Decimal('0.8')]
        if weak:
            recommendations.append({
                'type': 'menu_engineering',
                'priority': 'medium',
                'title': 'Category performance review',
                'description': f"{', '.join(weak)} have below-average margins.",
                'items_affected': weak,
            })

    premium = [item for item in items if item['margin'] > 40]
    if len(premium) > len(items) * Decimal('0.1'):
        recommendations.append({
            'type': 'pricing',
            'priority': 'low',
            'title': 'Premium menu development',
            'description': f"{len(premium)} items show margins above 40%.",
            'items_affected': [item['name'] for item in premium],
        })
    return recommendations


def build_menu_analytics(organization, category_id=None):
    """
    Pricing and profitability report over the active menu.

    Covers individual and combo items, optionally restricted to one category.
    Margins are percentages of the selling price.
    """
    entities = Entity.objects.filter(
        organization=organization, entity_type__in=MENU_ITEM_TYPES, is_active=True
    ).prefetch_related('dynamic_data').order_by('entity_name')
    links = Relationship.objects.filter(
        organization=organization, relationship_type=MENU_ITEM_CATEGORY,
        is_active=True, parent_entity__is_active=True,
    ).select_related('parent_entity')
    category_of = {link.child_entity_id: link.parent_entity for link in links}

    items = []
    for entity in entities:
        category = category_of.get(entity.id)
        if category_id and (category is None or category.id != category_id):
            continue
        data = entity.get_dynamic_data()
        price = _money(_decimal(data.get('base_price')))
        cost = _money(_decimal(data.get('cost_price')))
        items.append({
            'id': str(entity.id),
            'name': entity.entity_name,
            'category': category.entity_name if category else UNCATEGORIZED,
            'price': price,
            'cost': cost,
            'margin': calculate_profit_margin(price, cost),
            'prep_time': _decimal(data.get('prep_time_minutes')),
        })

    if not items:
        return {
            'summary': {'total_items': 0},
            'message': 'No menu items found for the specified criteria',
        }

    average_price = _average(item['price'] for item in items)
    by_price = sorted(items, key=lambda i: i['price'], reverse=True)
    by_margin = sorted(items, key=lambda i: i['margin'], reverse=True)

    groups = {}
    for item in items:
        groups.setdefault(item['category'], []).append(item)
    categories = [
        {
            'category_name': name,
            'item_count': len(group),
            'average_price': str(_average(i['price'] for i in group)),
            'average_margin': str(_average(i['margin'] for i in group)),
            'total_value': str(sum((i['price'] for i in group), Decimal('0'))),
            'price_range': {
                'min': str(min(i['price'] for i in group)),
                'max': str(max(i['price'] for i in group)),
            },
        }
        for name, group in sorted(groups.items())
    ]

    return {
        'summary': {
            'total_items': len(items),
            'total_categories': len(groups),
            'average_item_price': str(average_price),
            'average_profit_margin': str(_average(i['margin'] for i in items)),
            'total_menu_value': str(sum((i['price'] for i in items), Decimal('0'))),
            'most_expensive_item': by_price[0]['name'],
            'cheapest_item': by_price[-1]['name'],
            'highest_margin_item': by_margin[0]['name'],
            'lowest_margin_item': by_margin[-1]['name'],
        },
        'category_performance': categories,
        'top_items': {
            'highest_profit': [_analytics_row(i) for i in sorted(
                items, key=lambda i: i['price'] - i['cost'], reverse=True)[:TOP_ITEMS]],
            'lowest_cost': [_analytics_row(i) for i in sorted(items, key=lambda i: i['cost'])[:TOP_ITEMS]],
            'quickest_prep': [_analytics_row(i) for i in sorted(items, key=lambda i: i['prep_time'])[:TOP_ITEMS]],
            'premium_items': [
                _analytics_row(i) for i in by_price if i['price'] > average_price * Decimal('1.5')
            ][:TOP_ITEMS],
        },
        'profitability': {
            'excellent_margin': sum(1 for i in items if i['margin'] > 30),
            'good_margin': sum(1 for i in items if 20 <= i['margin'] <= 30),
            'fair_margin': sum(1 for i in items if 10 <= i['margin'] < 20),
            'poor_margin': sum(1 for i in items if i['margin'] < 10),
            'average_margin_by_category': {c['category_name']: c['average_margin'] for c in categories},
            'risk_items': [_analytics_row(i) for i in items if i['margin'] < RISK_MARGIN_THRESHOLD][:10],
        },
        'recommendations': _menu_recommendations(items, categories),
        'trends': {
            'price_distribution': _distribution(items, 'price', PRICE_BANDS),
            'margin_distribution': _distribution(items, 'margin', MARGIN_BANDS),
            'prep_time_distribution': _distribution(items, 'prep_time', PREP_TIME_BANDS),
        },
    }
