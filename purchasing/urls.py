from django.urls import path

from . import api

app_name = "purchasing"

urlpatterns = [
    path("", api.po_collection, name="po_collection"),
    path("dashboard/stats", api.dashboard_stats, name="dashboard_stats"),
    path("<int:pk>", api.po_detail, name="po_detail"),
    path("<int:pk>/submit", api.po_submit, name="po_submit"),
    path("<int:pk>/approve", api.po_approve, name="po_approve"),
    path("<int:pk>/order", api.po_order, name="po_order"),
    path("<int:pk>/receive", api.po_receive, name="po_receive"),
    path("<int:pk>/cancel", api.po_cancel, name="po_cancel"),
    path("<int:pk>/payment", api.po_payment, name="po_payment"),
]
