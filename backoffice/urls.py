from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/users/", include("accounts.urls")),
    path("api/products/", include("inventory.urls")),
    path("api/po/suppliers/", include("suppliers.urls")),
    path("api/po/", include("purchasing.urls")),
    path("api/orders/", include("sales.urls")),
    path("api/expenses/", include("expenses.urls")),
    path("api/reports/", include("reports.urls")),
]
