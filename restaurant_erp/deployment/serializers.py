from rest_framework import serializers


class ModuleTemplateSerializer(serializers.Serializer):
    """Custom module template; configuration becomes dynamic data of the template"""
    organization = serializers.UUIDField(required=False)
    entity_name = serializers.CharField(max_length=255)
    entity_code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    module_category = serializers.CharField(max_length=100, required=False, allow_blank=True)
    functional_area = serializers.CharField(max_length=100, required=False, allow_blank=True)
    configuration = serializers.DictField(required=False)

    def validate_entity_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('entity_name cannot be blank')
        return value

    def validate_entity_code(self, value):
        return value.strip().upper()

    def validate(self, attrs):
        if self.context.get('creating') and not attrs.get('organization'):
            raise serializers.ValidationError({'organization': 'organization is required'})
        return attrs

    def dynamic_data(self):
        data = dict(self.validated_data.get('configuration') or {})
        for name in ('description', 'module_category', 'functional_area'):
            if name in self.validated_data:
                data[name] = self.validated_data[name]
        return data


class DeploymentOptionsSerializer(serializers.Serializer):
    configuration = serializers.DictField(required=False)
    setup_chart_of_accounts = serializers.BooleanField(default=True)
    create_workflows = serializers.BooleanField(default=True)


class ModuleDeploySerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    module = serializers.UUIDField()
    options = DeploymentOptionsSerializer(required=False)


class PackageTemplateSerializer(serializers.Serializer):
    organization = serializers.UUIDField()
    entity_name = serializers.CharField(max_length=255)
    entity_code = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    industry = serializers.CharField(max_length=100, required=False, allow_blank=True)
    modules = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)

    def validate_modules(self, value):
        if len(set(value)) != len(value):
            raise serializers.ValidationError('modules must not repeat')
        return value


class PackageDeploySerializer(serializers.Serializer):
    """Deploy into `organization`, or into a new organization created from `new_organization`"""
    organization = serializers.UUIDField(required=False)
    new_organization = serializers.DictField(required=False)
    package = serializers.UUIDField()
    options = DeploymentOptionsSerializer(required=False)

    def validate(self, attrs):
        if bool(attrs.get('organization')) == bool(attrs.get('new_organization')):
            raise serializers.ValidationError({
                'organization': 'Provide either organization or new_organization'
            })
        return attrs
