from django.urls import path

from . import api

app_name = "accounts"

urlpatterns = [
    path("login", api.login_view, name="login"),
    path("token/refresh", api.token_refresh_view, name="token_refresh"),
    path("logout", api.logout_view, name="logout"),
    path("me", api.me_view, name="me"),
    path("notifications", api.notification_list, name="notification_list"),
    path("notifications/read-all", api.notification_read_all, name="notification_read_all"),
    path("notifications/<int:pk>/read", api.notification_read, name="notification_read"),
]
