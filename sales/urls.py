from django.urls import path

from . import api

app_name = "sales"

urlpatterns = [
    path("", api.order_collection, name="order_collection"),
    path("<int:pk>", api.order_detail, name="order_detail"),
]
