# accounts/auth.py
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Tuple

from django.contrib.auth import authenticate, get_user_model
from django.http import HttpRequest
from django.utils.translation import gettext as _
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import AuthenticationFailed, TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.utils import datetime_from_epoch

from accounts.context import ActorContext
from core.exceptions import BusinessValidationError, NotAuthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access: str
    refresh: str
    expires_at: datetime.datetime


def issue_tokens(user) -> TokenPair:
    """
    Signed access/refresh pair for ``user``; ``expires_at`` is the access expiry.
    """
    refresh = RefreshToken.for_user(user)
    access = refresh.access_token
    return TokenPair(
        access=str(access),
        refresh=str(refresh),
        expires_at=datetime_from_epoch(access["exp"]),
    )


def login(email: str, password: str) -> Tuple[ActorContext, TokenPair]:
    """
    Check credentials (email or username) and issue a token pair.
    """
    email = (email or "").strip()
    if not email or not password:
        raise BusinessValidationError(_("Email and password are required."))

    User = get_user_model()
    account = User.objects.filter(email__iexact=email).first()
    username = account.get_username() if account is not None else email

    user = authenticate(username=username, password=password)
    if user is None:
        logger.warning("Failed login for %s", email)
        raise NotAuthenticated(_("Invalid email or password."))

    actor = ActorContext.for_user(user)
    tokens = issue_tokens(user)
    logger.info("User %s logged in as %s", user.pk, actor.role.value)
    return actor, tokens


def authenticate_token(raw: str):
    """
    Return the active user an access token was issued to, or raise NotAuthenticated.
    """
    raw = (raw or "").strip()
    if not raw:
        raise NotAuthenticated()

    backend = JWTAuthentication()
    try:
        validated = backend.get_validated_token(raw)
        return backend.get_user(validated)
    except AuthenticationFailed as exc:
        raise NotAuthenticated(_("Token is invalid or expired.")) from exc


def _load_refresh(raw: str) -> RefreshToken:
    try:
        return RefreshToken((raw or "").strip())
    except TokenError as exc:
        raise NotAuthenticated(_("Refresh token is invalid or expired.")) from exc


def refresh_tokens(raw: str) -> TokenPair:
    """
    Trade a refresh token for a new pair. The old refresh token is blacklisted.
    """
    refresh = _load_refresh(raw)
    User = get_user_model()
    user = User.objects.filter(
        **{api_settings.USER_ID_FIELD: refresh[api_settings.USER_ID_CLAIM]}, is_active=True
    ).first()
    if user is None:
        raise NotAuthenticated(_("Refresh token is invalid or expired."))
    refresh.blacklist()
    return issue_tokens(user)


def logout(raw: str, *, user=None) -> None:
    """
    Blacklist a refresh token. When ``user`` is given the token must be theirs.
    """
    refresh = _load_refresh(raw)
    owner = str(refresh[api_settings.USER_ID_CLAIM])
    if user is not None and owner != str(getattr(user, api_settings.USER_ID_FIELD)):
        raise NotAuthenticated(_("Refresh token is invalid or expired."))
    refresh.blacklist()
    logger.info("User %s logged out", refresh[api_settings.USER_ID_CLAIM])


def actor_from_request(request: HttpRequest) -> ActorContext:
    """
    Resolve ``Authorization: Bearer <access token>`` into an ActorContext.
    """
    header = request.headers.get("Authorization", "")
    scheme, _sep, raw = header.partition(" ")
    if scheme.lower() != "bearer":
        raise NotAuthenticated()
    return ActorContext.for_user(authenticate_token(raw))
