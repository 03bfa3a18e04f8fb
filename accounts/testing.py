# accounts/testing.py
"""
Fixture helpers shared by the apps' tests.py modules.
"""
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group

from accounts.auth import issue_tokens
from accounts.context import ActorContext
from accounts.roles import Role

DEFAULT_PASSWORD = "s3cret-pass"


def make_user(username: str, role: Role | None = Role.MANAGER, *, password: str = DEFAULT_PASSWORD, **extra):
    User = get_user_model()
    extra.setdefault("email", f"{username}@example.com")
    user = User.objects.create_user(username=username, password=password, **extra)
    if role is not None:
        group, _ = Group.objects.get_or_create(name=role.value)
        user.groups.add(group)
    return user


def make_actor(username: str, role: Role = Role.MANAGER, **extra) -> ActorContext:
    return ActorContext.for_user(make_user(username, role, **extra))


def auth_header(actor: ActorContext) -> dict:
    """
    Keyword arguments for django.test.Client calls.
    """
    return {"HTTP_AUTHORIZATION": f"Bearer {issue_tokens(actor.user).access}"}
