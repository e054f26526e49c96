"""
Django admin registrations for the lab models.

Orders, results and transitions are read-only here: every status change
must go through the lifecycle engine so that versioning, the transition
log and the audit trail stay consistent.
"""

from django.contrib import admin

from .models import AuditEvent, LabOrder, LabOrderTransition, LabResult, LabTest, User


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'first_name', 'last_name', 'is_staff', 'is_superuser')
    list_filter = ('role', 'is_staff')
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(LabTest)
class LabTestAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'department', 'turnaround_hours', 'is_active')
    list_filter = ('department', 'is_active')
    search_fields = ('code', 'name')


class LabOrderTransitionInline(admin.TabularInline):
    model = LabOrderTransition
    extra = 0
    can_delete = False
    readonly_fields = ('from_status', 'to_status', 'operator', 'timestamp', 'reason')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(LabOrder)
class LabOrderAdmin(ReadOnlyAdmin):
    list_display = ('id', 'test_name', 'patient', 'ordered_by', 'priority', 'status', 'due_at', 'created_at')
    list_filter = ('status', 'priority', 'requires_payment')
    search_fields = ('id', 'test_name', 'test_code', 'patient__username', 'ordered_by__username')
    date_hierarchy = 'created_at'
    inlines = [LabOrderTransitionInline]


@admin.register(LabResult)
class LabResultAdmin(ReadOnlyAdmin):
    list_display = ('order', 'technician', 'completed_at')
    search_fields = ('order__id', 'technician__username')


@admin.register(LabOrderTransition)
class LabOrderTransitionAdmin(ReadOnlyAdmin):
    list_display = ('order', 'from_status', 'to_status', 'operator', 'timestamp')
    list_filter = ('to_status',)
    search_fields = ('order__id', 'operator__username')


@admin.register(AuditEvent)
class AuditEventAdmin(ReadOnlyAdmin):
    list_display = ('created_at', 'user', 'action', 'object_type', 'object_id')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id', 'user__username')
