from django.urls import path

from . import api

app_name = "reports"

urlpatterns = [
    path("dashboard", api.boss_dashboard, name="dashboard"),
    path("manager", api.manager_dashboard, name="manager"),
]
