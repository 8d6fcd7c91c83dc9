"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Catalog roles and permission definitions
- Role assignments and permission overrides
- Assignment lifecycle requests (grant, revoke, validity, overrides)
- Permission checks
"""
from rest_framework import serializers

from apps.rbac.catalog import ROLE_CHOICES, default_catalog
from apps.rbac.models import AssignmentPermissionOverride, RoleAssignment


class RoleSerializer(serializers.Serializer):
    """Read-only view of a catalog RoleDefinition."""

    name = serializers.CharField()
    label = serializers.CharField()
    is_global = serializers.BooleanField()
    requires_approval = serializers.BooleanField()
    permission_count = serializers.SerializerMethodField()
    managed_levels = serializers.SerializerMethodField()
    manageable_roles = serializers.SerializerMethodField()

    def get_permission_count(self, obj):
        return len(obj.permissions)

    def get_managed_levels(self, obj):
        return [level.value for level in obj.managed_levels]

    def get_manageable_roles(self, obj):
        return sorted(obj.manageable_roles)


class PermissionDefinitionSerializer(serializers.Serializer):
    name = serializers.CharField()
    label = serializers.CharField()
    scope = serializers.CharField()
    module = serializers.CharField()


class AssignmentPermissionOverrideSerializer(serializers.ModelSerializer):
    class Meta:
        model = AssignmentPermissionOverride
        fields = [
            'id', 'permission', 'granted', 'expires_at', 'reason',
            'granted_by_id', 'created_at',
        ]
        read_only_fields = fields


class RoleAssignmentSerializer(serializers.ModelSerializer):
    """Serializer for RoleAssignment model."""

    permission_overrides = AssignmentPermissionOverrideSerializer(many=True, read_only=True)

    class Meta:
        model = RoleAssignment
        fields = [
            'id', 'principal_id', 'role', 'regions', 'projects', 'schemes',
            'valid_from', 'valid_until', 'is_active', 'approval_status',
            'assigned_by_id', 'reason', 'approved_by_id', 'approved_at',
            'revoked_by_id', 'revoked_at', 'revocation_reason',
            'permission_overrides', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class _ValidityWindowMixin:

    def validate(self, attrs):
        valid_from = attrs.get('valid_from')
        valid_until = attrs.get('valid_until')
        if valid_from and valid_until and valid_until <= valid_from:
            raise serializers.ValidationError({
                'valid_until': 'Must be later than valid_from.'
            })
        return attrs


class GrantRoleSerializer(_ValidityWindowMixin, serializers.Serializer):
    """Serializer for granting a role to a principal."""

    role = serializers.ChoiceField(choices=ROLE_CHOICES)
    regions = serializers.ListField(child=serializers.CharField(max_length=64), required=False, default=list)
    projects = serializers.ListField(child=serializers.CharField(max_length=64), required=False, default=list)
    schemes = serializers.ListField(child=serializers.CharField(max_length=64), required=False, default=list)
    valid_from = serializers.DateTimeField(required=False, allow_null=True, default=None)
    valid_until = serializers.DateTimeField(required=False, allow_null=True, default=None)
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class UpdateValiditySerializer(_ValidityWindowMixin, serializers.Serializer):
    valid_from = serializers.DateTimeField(allow_null=True)
    valid_until = serializers.DateTimeField(allow_null=True)


class RevokeRoleSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class PermissionOverrideCreateSerializer(serializers.Serializer):
    """Serializer for adding or restricting one permission on an assignment."""

    permission = serializers.CharField(max_length=100)
    granted = serializers.BooleanField()
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    reason = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_permission(self, value):
        if not default_catalog().is_known_permission(value):
            raise serializers.ValidationError(f"Unknown permission: {value}")
        return value


class CheckPermissionSerializer(serializers.Serializer):
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=100),
        allow_empty=False
    )
    require_all = serializers.BooleanField(required=False, default=True)
