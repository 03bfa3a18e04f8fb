# accounts/api.py

from core.api import api_view, iso, parse_json, success
from core.services import notifications

from accounts.auth import login, logout, refresh_tokens
from accounts.context import ActorContext


def _serialize_user(actor: ActorContext) -> dict:
    user = actor.user
    return {
        "id": user.pk,
        "name": actor.display_name,
        "email": user.email,
        "role": actor.role.value,
    }


def _serialize_tokens(tokens) -> dict:
    return {
        "token": tokens.access,
        "refreshToken": tokens.refresh,
        "expiresAt": iso(tokens.expires_at),
    }


@api_view(["POST"], auth=False)
def login_view(request):
    """
    POST /api/users/login  {"email": "...", "password": "..."}
    -> {"user": {...}, "token": "...", "refreshToken": "...", "expiresAt": "..."}
    """
    data = parse_json(request)
    actor, tokens = login(data.get("email", ""), data.get("password", ""))
    return success({"user": _serialize_user(actor), **_serialize_tokens(tokens)})


@api_view(["POST"], auth=False)
def token_refresh_view(request):
    data = parse_json(request)
    return success(_serialize_tokens(refresh_tokens(data.get("refreshToken", ""))))


@api_view(["POST"])
def logout_view(request, actor):
    data = parse_json(request)
    logout(data.get("refreshToken", ""), user=actor.user)
    return success({"loggedOut": True})


@api_view(["GET"])
def me_view(request, actor):
    return success(_serialize_user(actor))


def _serialize_notification(notification) -> dict:
    return {
        "id": notification.pk,
        "verb": notification.verb,
        "level": notification.level,
        "isRead": notification.is_read,
        "target": {
            "type": notification.target_content_type.model if notification.target_content_type_id else None,
            "id": notification.target_object_id,
        },
        "createdAt": iso(notification.created_at),
        "readAt": iso(notification.read_at),
    }


@api_view(["GET"])
def notification_list(request, actor):
    """
    GET /api/users/notifications?unread=1
    """
    unread_only = request.GET.get("unread") in ("1", "true", "True")
    items = notifications.notifications_for(actor.user, unread_only=unread_only)[:100]
    return success([_serialize_notification(n) for n in items])


@api_view(["POST"])
def notification_read(request, pk, actor):
    return success(_serialize_notification(notifications.mark_read(actor.user, pk)))


@api_view(["POST"])
def notification_read_all(request, actor):
    return success({"updated": notifications.mark_all_read(actor.user)})
