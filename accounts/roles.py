# accounts/roles.py
from __future__ import annotations

from typing import Optional

from django.db import models
from django.utils.translation import gettext_lazy as _


class Role(models.TextChoices):
    BOSS = "Boss", _("Boss")
    MANAGER = "Manager", _("Manager")


def role_of(user) -> Optional[Role]:
    """
    Resolve the back-office role of a user from group membership.

    Superusers are treated as Boss. Users in neither group have no role.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    if getattr(user, "is_superuser", False):
        return Role.BOSS

    names = set(user.groups.values_list("name", flat=True))
    if Role.BOSS.value in names:
        return Role.BOSS
    if Role.MANAGER.value in names:
        return Role.MANAGER
    return None


def users_with_role(role: Role):
    from django.contrib.auth import get_user_model

    User = get_user_model()
    qs = User.objects.filter(is_active=True)
    if role == Role.BOSS:
        return qs.filter(models.Q(is_superuser=True) | models.Q(groups__name=Role.BOSS.value)).distinct()
    return qs.filter(groups__name=role.value).distinct()
