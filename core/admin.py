from django.contrib import admin

from core.models import AuditLog, Notification, NumberingScheme, NumberSequence


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "action", "actor", "target_content_type", "target_object_id", "message")
    list_filter = ("action",)
    search_fields = ("message", "target_object_id")
    readonly_fields = [f.name for f in AuditLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("recipient", "verb", "level", "is_read", "created_at")
    list_filter = ("level", "is_read")


@admin.register(NumberingScheme)
class NumberingSchemeAdmin(admin.ModelAdmin):
    list_display = ("model_label", "field_name", "pattern", "reset", "is_active")


@admin.register(NumberSequence)
class NumberSequenceAdmin(admin.ModelAdmin):
    list_display = ("key", "period", "last_value")
