from django.contrib import admin
from modeltranslation.admin import TranslationAdmin
from solo.admin import SingletonModelAdmin

from .models import InventorySettings, Product, ProductCategory, StockLot


@admin.register(InventorySettings)
class InventorySettingsAdmin(SingletonModelAdmin):
    pass


@admin.register(ProductCategory)
class ProductCategoryAdmin(TranslationAdmin):
    list_display = ("name", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("name", "description")


class StockLotInline(admin.TabularInline):
    model = StockLot
    extra = 0
    can_delete = False
    fields = ("batch_number", "quantity", "initial_quantity", "unit_cost", "unit_price", "date_acquired", "expiry_date", "is_active")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(TranslationAdmin):
    list_display = ("code", "name", "category", "unit_of_measure", "min_stock_level", "is_active")
    list_filter = ("category", "is_active")
    search_fields = ("code", "name")
    readonly_fields = ("last_selling_price",)
    inlines = [StockLotInline]


@admin.register(StockLot)
class StockLotAdmin(admin.ModelAdmin):
    """
    Lots change only through inventory.services (sales, adjustments).
    """
    list_display = ("batch_number", "product", "quantity", "initial_quantity", "unit_cost", "unit_price", "date_acquired", "expiry_date", "is_active")
    list_filter = ("is_active", "expiry_date")
    search_fields = ("batch_number", "product__code")
    date_hierarchy = "date_acquired"

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in StockLot._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
