from decimal import Decimal

from rest_framework import serializers

from .models import UniversalTransaction, TransactionLine


class TransactionLineSerializer(serializers.ModelSerializer):
    entity = serializers.UUIDField(source='entity_id', read_only=True)
    entity_name = serializers.CharField(source='entity.entity_name', read_only=True, default=None)

    class Meta:
        model = TransactionLine
        fields = [
            'id', 'entity', 'entity_name', 'line_description', 'quantity',
            'unit_price', 'line_amount', 'line_order', 'line_data', 'created_at',
        ]
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    organization = serializers.UUIDField(source='organization_id', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True, default=None)
    line_count = serializers.SerializerMethodField()

    class Meta:
        model = UniversalTransaction
        fields = [
            'id', 'organization', 'transaction_type', 'transaction_number',
            'transaction_date', 'reference_number', 'total_amount', 'currency',
            'transaction_status', 'workflow_status', 'transaction_data',
            'line_count', 'created_by', 'created_by_username', 'posted_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_line_count(self, obj):
        return obj.lines.count()


class TransactionDetailSerializer(TransactionSerializer):
    lines = TransactionLineSerializer(many=True, read_only=True)

    class Meta(TransactionSerializer.Meta):
        fields = TransactionSerializer.Meta.fields + ['lines']
        read_only_fields = fields


class TransactionLineWriteSerializer(serializers.Serializer):
    entity = serializers.UUIDField(required=False, allow_null=True)
    line_description = serializers.CharField(max_length=255, required=False, allow_blank=True)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3, required=False, default=Decimal('1'))
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=Decimal('0'))
    line_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)
    line_order = serializers.IntegerField(required=False, min_value=0)
    line_data = serializers.DictField(required=False)


class TransactionCreateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    transaction_type = serializers.CharField(max_length=100)
    transaction_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    transaction_date = serializers.DateField(required=False)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    currency = serializers.CharField(max_length=3, required=False)
    transaction_status = serializers.CharField(max_length=50, required=False)
    workflow_status = serializers.CharField(max_length=50, required=False, allow_blank=True)
    transaction_data = serializers.DictField(required=False)
    lines = TransactionLineWriteSerializer(many=True, required=False)

    def validate_transaction_status(self, value):
        if value == UniversalTransaction.STATUS_POSTED:
            raise serializers.ValidationError('Use the post endpoint to post a transaction')
        return value


class TransactionUpdateSerializer(serializers.ModelSerializer):
    """Header fields editable after creation"""

    class Meta:
        model = UniversalTransaction
        fields = [
            'transaction_date', 'reference_number', 'currency',
            'transaction_status', 'workflow_status', 'transaction_data',
        ]

    def validate_transaction_status(self, value):
        if value == UniversalTransaction.STATUS_POSTED:
            raise serializers.ValidationError('Use the post endpoint to post a transaction')
        return value
