from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Payments are immutable once recorded.
    """
    list_display = ("number", "po", "supplier", "amount", "method", "paid_on", "recorded_by")
    list_filter = ("method", "paid_on")
    search_fields = ("number", "po__number", "supplier__name", "reference", "cheque_number", "bank_reference")
    date_hierarchy = "paid_on"

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in Payment._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
