from decimal import Decimal

from rest_framework import serializers

from restaurant_erp.transactions.serializers import TransactionDetailSerializer
from .services import get_required_approval_level, get_next_approver, ACTION_STATUS

QUALITY_STATUS_CHOICES = ['accepted', 'rejected', 'partial', 'damaged']


class PurchaseOrderItemSerializer(serializers.Serializer):
    item = serializers.UUIDField()
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=Decimal('0.001'))
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0'))
    notes = serializers.CharField(required=False, allow_blank=True)


class PurchaseOrderCreateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    supplier = serializers.UUIDField()
    items = PurchaseOrderItemSerializer(many=True, allow_empty=False)
    transaction_date = serializers.DateField(required=False)
    expected_delivery_date = serializers.DateField(required=False)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class PurchaseOrderUpdateSerializer(serializers.Serializer):
    supplier = serializers.UUIDField(required=False)
    items = PurchaseOrderItemSerializer(many=True, allow_empty=False, required=False)
    expected_delivery_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class ApprovalActionSerializer(serializers.Serializer):
    purchase_order = serializers.UUIDField()
    organization = serializers.UUIDField()
    action = serializers.ChoiceField(choices=list(ACTION_STATUS))
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    modification_requests = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['action'] == 'request_modification' and not (attrs['modification_requests'] or attrs['notes']):
            raise serializers.ValidationError({'modification_requests': 'Describe the requested modifications'})
        return attrs


class PurchaseOrderSerializer(TransactionDetailSerializer):
    supplier = serializers.SerializerMethodField()
    approval_level = serializers.SerializerMethodField()
    current_approver = serializers.SerializerMethodField()

    class Meta(TransactionDetailSerializer.Meta):
        fields = TransactionDetailSerializer.Meta.fields + ['supplier', 'approval_level', 'current_approver']
        read_only_fields = fields

    def get_supplier(self, obj):
        return {
            'id': obj.transaction_data.get('supplier_id'),
            'name': obj.transaction_data.get('supplier_name') or 'Unknown Supplier',
        }

    def get_approval_level(self, obj):
        return get_required_approval_level(obj.total_amount)

    def get_current_approver(self, obj):
        if obj.workflow_status != 'pending_approval':
            return None
        return obj.transaction_data.get('current_approver_name') or get_next_approver(obj.total_amount)


class GoodsReceiptItemSerializer(serializers.Serializer):
    item = serializers.UUIDField()
    expected_quantity = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=Decimal('0'))
    received_quantity = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=Decimal('0'))
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0'))
    quality_status = serializers.ChoiceField(choices=QUALITY_STATUS_CHOICES, default='accepted')
    batch_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    quality_notes = serializers.CharField(required=False, allow_blank=True)


class GoodsReceiptCreateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    supplier = serializers.UUIDField()
    purchase_order = serializers.UUIDField(required=False, allow_null=True)
    delivery_date = serializers.DateField(required=False)
    items = GoodsReceiptItemSerializer(many=True, allow_empty=False)
    overall_quality_rating = serializers.IntegerField(min_value=1, max_value=5, default=5)
    delivery_rating = serializers.IntegerField(min_value=1, max_value=5, default=5)
    packaging_rating = serializers.IntegerField(min_value=1, max_value=5, default=5)
    temperature_compliant = serializers.BooleanField(required=False, allow_null=True)
    delivery_notes = serializers.CharField(required=False, allow_blank=True)
    quality_inspection_notes = serializers.CharField(required=False, allow_blank=True)
    receiving_location = serializers.CharField(required=False, allow_blank=True)


class GoodsReceiptSerializer(TransactionDetailSerializer):
    supplier = serializers.SerializerMethodField()
    purchase_order = serializers.SerializerMethodField()
    quality_metrics = serializers.SerializerMethodField()

    class Meta(TransactionDetailSerializer.Meta):
        fields = TransactionDetailSerializer.Meta.fields + ['supplier', 'purchase_order', 'quality_metrics']
        read_only_fields = fields

    def get_supplier(self, obj):
        return {
            'id': obj.transaction_data.get('supplier_id'),
            'name': obj.transaction_data.get('supplier_name') or 'Unknown Supplier',
        }

    def get_purchase_order(self, obj):
        if not obj.transaction_data.get('purchase_order_id'):
            return None
        return {
            'id': obj.transaction_data['purchase_order_id'],
            'number': obj.transaction_data.get('purchase_order_number'),
        }

    def get_quality_metrics(self, obj):
        data = obj.transaction_data
        return {
            'overall_quality': data.get('overall_quality_rating'),
            'delivery_rating': data.get('delivery_rating'),
            'packaging_rating': data.get('packaging_rating'),
            'temperature_compliant': data.get('temperature_compliant'),
            'quality_score': data.get('quality_score'),
            'variance_rate': data.get('variance_rate'),
        }
