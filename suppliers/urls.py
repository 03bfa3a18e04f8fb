from django.urls import path

from . import api

app_name = "suppliers"

urlpatterns = [
    path("", api.supplier_collection, name="supplier_collection"),
    path("<int:pk>", api.supplier_detail, name="supplier_detail"),
    path("<int:pk>/statement", api.supplier_statement, name="supplier_statement"),
]
