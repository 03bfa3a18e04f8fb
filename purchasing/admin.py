from django.contrib import admin
from solo.admin import SingletonModelAdmin

from .models import GoodsReceipt, GoodsReceiptLine, PurchaseOrder, PurchaseOrderItem, PurchasingSettings


@admin.register(PurchasingSettings)
class PurchasingSettingsAdmin(SingletonModelAdmin):
    pass


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]


class PurchaseOrderItemInline(ReadOnlyInline):
    model = PurchaseOrderItem
    fields = ("line_no", "product", "product_name", "quantity", "unit_cost", "subtotal", "quantity_received")


class GoodsReceiptInline(ReadOnlyInline):
    model = GoodsReceipt
    fields = ("number", "received_at", "received_by", "notes")


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    """
    Purchase orders are read-only here; every change goes through
    PurchaseOrderService so balances and stock stay consistent.
    """
    list_display = ("number", "supplier", "status", "grand_total", "amount_paid", "balance_due", "payment_status", "due_date", "author")
    list_filter = ("status", "payment_status", "payment_terms")
    search_fields = ("number", "supplier__name")
    date_hierarchy = "created_at"
    inlines = [PurchaseOrderItemInline, GoodsReceiptInline]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in PurchaseOrder._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class GoodsReceiptLineInline(ReadOnlyInline):
    model = GoodsReceiptLine
    fields = ("po_item", "quantity", "lot", "notes")


@admin.register(GoodsReceipt)
class GoodsReceiptAdmin(admin.ModelAdmin):
    list_display = ("number", "po", "received_at", "received_by")
    search_fields = ("number", "po__number")
    inlines = [GoodsReceiptLineInline]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in GoodsReceipt._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
