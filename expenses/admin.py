from django.contrib import admin

from .models import ExpenseRecord, ExpenseType


@admin.register(ExpenseType)
class ExpenseTypeAdmin(admin.ModelAdmin):
    list_display = ("name", "usage_count", "is_restricted")
    list_filter = ("is_restricted",)
    search_fields = ("name",)
    readonly_fields = ("usage_count",)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ExpenseRecord)
class ExpenseRecordAdmin(admin.ModelAdmin):
    list_display = ("expense_date", "expense_type", "amount", "manager")
    list_filter = ("expense_type", "expense_date")
    search_fields = ("expense_type__name", "notes")
    date_hierarchy = "expense_date"
