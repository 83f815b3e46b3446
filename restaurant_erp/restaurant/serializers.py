from decimal import Decimal

from rest_framework import serializers

from restaurant_erp.transactions.serializers import TransactionDetailSerializer
from .services import (
    ITEM_TYPE_INDIVIDUAL, ITEM_TYPE_COMPOSITE, ORDER_FLOW, ORDER_CANCELLED,
    allowed_transitions, order_status,
)

DIFFICULTY_CHOICES = ['easy', 'medium', 'hard', 'expert']
ORDER_TYPE_CHOICES = ['dine_in', 'takeaway', 'delivery']


def _clean_name(value):
    value = value.strip()
    if not value:
        raise serializers.ValidationError('name cannot be blank')
    return value


class MenuCategorySerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    display_order = serializers.IntegerField(required=False, min_value=0)

    def validate_name(self, value):
        return _clean_name(value)


class ComboComponentSerializer(serializers.Serializer):
    menu_item = serializers.UUIDField()
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=Decimal('0.001'), default=Decimal('1'))
    portion_size = serializers.CharField(max_length=50, required=False, default='regular')
    sequence_order = serializers.IntegerField(required=False, min_value=0)
    is_mandatory = serializers.BooleanField(required=False, default=True)


class MenuItemSerializer(serializers.Serializer):
    """Input for menu items; partial on PATCH"""
    name = serializers.CharField(max_length=255)
    code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    item_type = serializers.ChoiceField(choices=[ITEM_TYPE_INDIVIDUAL, ITEM_TYPE_COMPOSITE], default=ITEM_TYPE_INDIVIDUAL)
    category = serializers.UUIDField(required=False, allow_null=True)
    category_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    base_price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0'))
    cost_price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0'), required=False)
    prep_time_minutes = serializers.IntegerField(min_value=0, required=False)
    is_available = serializers.BooleanField(required=False)
    allergens = serializers.ListField(child=serializers.CharField(), required=False)
    nutritional_info = serializers.DictField(required=False)
    image_url = serializers.CharField(max_length=500, required=False, allow_blank=True)
    components = ComboComponentSerializer(many=True, required=False)

    def validate_name(self, value):
        return _clean_name(value)

    def validate(self, attrs):
        # context['item_type'] is set when updating an existing item
        current_type = self.context.get('item_type')
        if current_type:
            requested = self.initial_data.get('item_type')
            if requested and requested != current_type:
                raise serializers.ValidationError({'item_type': 'item_type cannot be changed'})
            attrs.pop('item_type', None)
        elif attrs.get('item_type') == ITEM_TYPE_COMPOSITE and not attrs.get('components'):
            raise serializers.ValidationError({'components': 'A composite menu item needs at least one component'})
        return attrs


class InventoryItemSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True)
    unit = serializers.CharField(max_length=30, required=False, allow_blank=True)
    unit_cost = serializers.DecimalField(max_digits=14, decimal_places=4, min_value=Decimal('0'), required=False)
    current_stock = serializers.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal('0'), required=False)
    reorder_point = serializers.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal('0'), required=False)
    max_stock = serializers.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal('0'), required=False)
    storage_location = serializers.CharField(max_length=100, required=False, allow_blank=True)
    supplier_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    shelf_life_days = serializers.IntegerField(min_value=0, required=False)

    def validate_name(self, value):
        return _clean_name(value)

    def validate(self, attrs):
        max_stock = attrs.get('max_stock')
        reorder_point = attrs.get('reorder_point')
        if max_stock is not None and reorder_point is not None and reorder_point > max_stock:
            raise serializers.ValidationError({'reorder_point': 'reorder_point cannot exceed max_stock'})
        return attrs


class RecipeIngredientSerializer(serializers.Serializer):
    inventory_item = serializers.UUIDField()
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=Decimal('0.001'))
    unit = serializers.CharField(max_length=30, required=False, allow_blank=True)
    cost_per_unit = serializers.DecimalField(max_digits=14, decimal_places=4, min_value=Decimal('0'), required=False)
    preparation_notes = serializers.CharField(required=False, allow_blank=True)
    is_optional = serializers.BooleanField(required=False, default=False)
    substitutes = serializers.ListField(child=serializers.CharField(), required=False)


class RecipeSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True)
    menu_item_id = serializers.UUIDField(required=False, allow_null=True)
    serving_size = serializers.IntegerField(min_value=1, default=1)
    prep_time_minutes = serializers.IntegerField(min_value=0, required=False)
    cook_time_minutes = serializers.IntegerField(min_value=0, required=False)
    difficulty_level = serializers.ChoiceField(choices=DIFFICULTY_CHOICES, required=False)
    instructions = serializers.ListField(child=serializers.CharField(), required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    allergen_info = serializers.ListField(child=serializers.CharField(), required=False)
    dietary_info = serializers.ListField(child=serializers.CharField(), required=False)
    equipment_needed = serializers.ListField(child=serializers.CharField(), required=False)
    is_published = serializers.BooleanField(required=False)
    ingredients = RecipeIngredientSerializer(many=True, allow_empty=False)

    def validate_name(self, value):
        return _clean_name(value)


class OrderItemSerializer(serializers.Serializer):
    menu_item = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default='')


class OrderCreateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    items = OrderItemSerializer(many=True, allow_empty=False)
    order_type = serializers.ChoiceField(choices=ORDER_TYPE_CHOICES, default='dine_in')
    table_number = serializers.CharField(max_length=20, required=False, allow_blank=True, default='')
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=ORDER_FLOW + [ORDER_CANCELLED])
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class OrderSerializer(TransactionDetailSerializer):
    status = serializers.SerializerMethodField()
    allowed_transitions = serializers.SerializerMethodField()

    class Meta(TransactionDetailSerializer.Meta):
        fields = TransactionDetailSerializer.Meta.fields + ['status', 'allowed_transitions']
        read_only_fields = fields

    def get_status(self, obj):
        return order_status(obj)

    def get_allowed_transitions(self, obj):
        return allowed_transitions(order_status(obj))


class BulkUploadSerializer(serializers.Serializer):
    """Envelope of a bulk upload; rows are validated one by one afterwards"""
    organization = serializers.UUIDField()
    items = serializers.ListField(child=serializers.DictField(), allow_empty=False)


class RecipeBulkUploadSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    recipes = serializers.ListField(child=serializers.DictField(), allow_empty=False)
    recipe_ingredients = serializers.ListField(child=serializers.DictField())
