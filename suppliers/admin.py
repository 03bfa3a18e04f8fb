from django.contrib import admin

from .models import Supplier


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ("name", "contact_person", "phone", "credit_limit", "current_balance", "payment_terms", "is_active")
    list_filter = ("is_active", "payment_terms")
    search_fields = ("name", "contact_person", "email", "phone", "tax_number")
    readonly_fields = ("current_balance", "public_id", "created_at", "updated_at")
