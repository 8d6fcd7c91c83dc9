"""
Django admin configuration for RBAC app.

Assignments are read-mostly here: grants, approvals and revocations go
through RoleAssignmentService so hierarchy and four-eyes rules apply.
"""
from django.contrib import admin
from .models import AssignmentPermissionOverride, RoleAssignment


class AssignmentPermissionOverrideInline(admin.TabularInline):
    model = AssignmentPermissionOverride
    extra = 0
    fields = ['permission', 'granted', 'expires_at', 'reason', 'granted_by_id', 'created_at']
    readonly_fields = fields
    can_delete = False


@admin.register(RoleAssignment)
class RoleAssignmentAdmin(admin.ModelAdmin):
    list_display = [
        'principal_id', 'role', 'approval_status', 'is_active',
        'valid_from', 'valid_until', 'assigned_by_id', 'created_at',
    ]
    list_filter = ['role', 'approval_status', 'is_active']
    search_fields = ['principal_id', 'assigned_by_id']
    ordering = ['-created_at']
    inlines = [AssignmentPermissionOverrideInline]

    fieldsets = (
        (None, {
            'fields': ('principal_id', 'role', 'approval_status', 'is_active')
        }),
        ('Scope', {
            'fields': ('regions', 'projects', 'schemes')
        }),
        ('Validity', {
            'fields': ('valid_from', 'valid_until')
        }),
        ('Audit', {
            'fields': (
                'assigned_by_id', 'reason', 'approved_by_id', 'approved_at',
                'revoked_by_id', 'revoked_at', 'revocation_reason',
                'created_at', 'updated_at',
            )
        }),
    )

    readonly_fields = [
        'principal_id', 'role', 'approval_status', 'is_active',
        'assigned_by_id', 'reason', 'approved_by_id', 'approved_at',
        'revoked_by_id', 'revoked_at', 'revocation_reason',
        'created_at', 'updated_at',
    ]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
