from django.urls import path

from . import api

app_name = "inventory"

urlpatterns = [
    path("", api.product_collection, name="product_collection"),
    path("categories", api.category_collection, name="category_collection"),

    # batches across products
    path("batches/search", api.batch_search, name="batch_search"),
    path("batches/expiring", api.batch_expiring, name="batch_expiring"),
    path("batches/<int:pk>/adjust", api.batch_adjust, name="batch_adjust"),
    path("batches/<int:pk>/retire", api.batch_retire, name="batch_retire"),

    path("<int:pk>", api.product_detail, name="product_detail"),
    path("<int:pk>/add-stock", api.add_stock, name="add_stock"),
    path("<int:pk>/batches", api.product_batches, name="product_batches"),
]
