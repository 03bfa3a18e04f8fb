from django.urls import path

from . import api

app_name = "expenses"

urlpatterns = [
    path("records", api.record_collection, name="record_collection"),
    path("types", api.type_collection, name="type_collection"),
]
