from rest_framework import serializers

from .coa_import import AUTO_DETECT, CONFLICT_SKIP, CONFLICT_UPDATE, FILE_FORMATS, GENERIC
from .services import QUEUE_STATUSES, VALIDATION_SCOPES

PERIOD_PATTERN = r'^\d{4}-(0[1-9]|1[0-2])$'
PERIOD_ERRORS = {'invalid': 'Period must use the YYYY-MM format'}


class PostingQueueQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=QUEUE_STATUSES, required=False)
    period = serializers.RegexField(PERIOD_PATTERN, required=False, error_messages=PERIOD_ERRORS)
    include_details = serializers.BooleanField(required=False, default=False)


class GLPostingSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    transaction_ids = serializers.ListField(child=serializers.UUIDField(), required=False, allow_empty=True)
    posting_date = serializers.DateField(required=False)
    posting_period = serializers.RegexField(PERIOD_PATTERN, required=False, error_messages=PERIOD_ERRORS)
    allow_partial_posting = serializers.BooleanField(default=True)
    dry_run = serializers.BooleanField(default=False)
    posting_description = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class ValidationQuerySerializer(serializers.Serializer):
    scope = serializers.ChoiceField(choices=VALIDATION_SCOPES, default='pending')


class AccountImportSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    file_content = serializers.CharField(trim_whitespace=False)
    file_format = serializers.ChoiceField(choices=FILE_FORMATS, default=AUTO_DETECT)
    field_mapping = serializers.DictField(child=serializers.CharField(), required=False)
    has_headers = serializers.BooleanField(default=True)
    skip_rows = serializers.IntegerField(min_value=0, default=0)
    preview_mode = serializers.BooleanField(default=False)
    conflict_resolution = serializers.ChoiceField(choices=[CONFLICT_SKIP, CONFLICT_UPDATE], default=CONFLICT_SKIP)


class TemplateQuerySerializer(serializers.Serializer):
    # 'format' is reserved for renderer selection
    file_format = serializers.ChoiceField(choices=[f for f in FILE_FORMATS if f != AUTO_DETECT], default=GENERIC)
