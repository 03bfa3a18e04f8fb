from datetime import timedelta
from io import StringIO

from django.contrib.auth.models import Group
from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework_simplejwt.tokens import AccessToken

from accounts.auth import authenticate_token, issue_tokens, login, logout, refresh_tokens
from accounts.context import ActorContext
from accounts.policy import Action, authorize, is_allowed
from accounts.roles import Role, role_of, users_with_role
from accounts.testing import DEFAULT_PASSWORD, auth_header, make_actor, make_user
from core.exceptions import BusinessValidationError, Forbidden, NotAuthenticated
from core.models import Notification
from core.services.notifications import create_notification


class RoleTests(TestCase):
    def test_role_from_groups(self):
        self.assertEqual(role_of(make_user("boss", Role.BOSS)), Role.BOSS)
        self.assertEqual(role_of(make_user("manager", Role.MANAGER)), Role.MANAGER)
        self.assertIsNone(role_of(make_user("nobody", None)))

    def test_superuser_is_boss(self):
        user = make_user("root", None, is_superuser=True, is_staff=True)
        self.assertEqual(role_of(user), Role.BOSS)
        self.assertIn(user, users_with_role(Role.BOSS))

    def test_actor_requires_role(self):
        with self.assertRaises(Forbidden):
            ActorContext.for_user(make_user("nobody", None))


class PolicyTests(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager")

    def test_boss_only_actions(self):
        for action in (Action.PO_APPROVE, Action.SUPPLIER_MANAGE, Action.STOCK_ADJUST, Action.REPORT_VIEW_FINANCIALS):
            self.assertTrue(is_allowed(self.boss, action))
            self.assertFalse(is_allowed(self.manager, action))

    def test_owner_grant(self):
        other = make_actor("other")
        self.assertTrue(is_allowed(self.manager, Action.PO_CANCEL, owner_id=self.manager.user_id))
        self.assertFalse(is_allowed(self.manager, Action.PO_CANCEL, owner_id=other.user_id))
        self.assertFalse(is_allowed(self.manager, Action.PO_CANCEL, owner_id=None))
        self.assertTrue(is_allowed(self.boss, Action.PO_CANCEL, owner_id=other.user_id))

    def test_authorize_raises_with_details(self):
        with self.assertRaises(Forbidden) as ctx:
            authorize(self.manager, Action.PO_APPROVE)
        self.assertEqual(ctx.exception.get_details(), {"action": "po.approve", "role": "Manager"})


class LoginTests(TestCase):
    def setUp(self):
        self.user = make_user("salma", Role.MANAGER, email="Salma@Example.com")

    def test_login_by_email_case_insensitive(self):
        actor, tokens = login("salma@example.com", DEFAULT_PASSWORD)
        self.assertEqual(actor.user, self.user)
        self.assertEqual(actor.role, Role.MANAGER)
        self.assertGreater(tokens.expires_at, timezone.now())
        self.assertEqual(authenticate_token(tokens.access), self.user)

    def test_login_by_username(self):
        actor, _token = login("salma", DEFAULT_PASSWORD)
        self.assertEqual(actor.user, self.user)

    def test_bad_credentials(self):
        with self.assertRaises(NotAuthenticated):
            login("salma@example.com", "wrong")
        with self.assertRaises(BusinessValidationError):
            login("", DEFAULT_PASSWORD)

    def test_access_token_validation(self):
        tokens = issue_tokens(self.user)
        self.assertEqual(authenticate_token(tokens.access), self.user)

        with self.assertRaises(NotAuthenticated):
            authenticate_token(tokens.refresh)
        with self.assertRaises(NotAuthenticated):
            authenticate_token(tokens.access.rsplit(".", 1)[0] + ".invalid")

        stale = AccessToken.for_user(self.user)
        stale.set_exp(lifetime=-timedelta(minutes=1))
        with self.assertRaises(NotAuthenticated):
            authenticate_token(str(stale))

        self.user.is_active = False
        self.user.save(update_fields=["is_active"])
        with self.assertRaises(NotAuthenticated):
            authenticate_token(tokens.access)

    def test_refresh_rotates_and_logout_revokes(self):
        tokens = issue_tokens(self.user)
        rotated = refresh_tokens(tokens.refresh)
        self.assertEqual(authenticate_token(rotated.access), self.user)
        with self.assertRaises(NotAuthenticated):
            refresh_tokens(tokens.refresh)

        other = make_user("other")
        with self.assertRaises(NotAuthenticated):
            logout(issue_tokens(other).refresh, user=self.user)

        logout(rotated.refresh, user=self.user)
        with self.assertRaises(NotAuthenticated):
            refresh_tokens(rotated.refresh)
        with self.assertRaises(NotAuthenticated):
            refresh_tokens("not-a-token")


class AccountsApiTests(TestCase):
    def setUp(self):
        self.actor = make_actor("boss", Role.BOSS, first_name="Amal", last_name="Said")

    def test_login_and_me(self):
        response = self.client.post(
            reverse("accounts:login"),
            data={"email": "boss@example.com", "password": DEFAULT_PASSWORD},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["user"]["role"], "Boss")
        self.assertEqual(data["user"]["name"], "Amal Said")

        me = self.client.get(reverse("accounts:me"), HTTP_AUTHORIZATION=f"Bearer {data['token']}")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["data"]["id"], self.actor.user_id)

    def test_refresh_and_logout(self):
        response = self.client.post(
            reverse("accounts:login"),
            data={"email": "boss@example.com", "password": DEFAULT_PASSWORD},
            content_type="application/json",
        )
        tokens = response.json()["data"]

        response = self.client.post(
            reverse("accounts:token_refresh"),
            data={"refreshToken": tokens["refreshToken"]},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        rotated = response.json()["data"]
        self.assertNotEqual(rotated["refreshToken"], tokens["refreshToken"])

        response = self.client.post(
            reverse("accounts:logout"),
            data={"refreshToken": rotated["refreshToken"]},
            content_type="application/json",
            HTTP_AUTHORIZATION=f"Bearer {rotated['token']}",
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.post(
            reverse("accounts:token_refresh"),
            data={"refreshToken": rotated["refreshToken"]},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["kind"], "not_authenticated")

    def test_failed_login_envelope(self):
        response = self.client.post(
            reverse("accounts:login"),
            data={"email": "boss@example.com", "password": "nope"},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["kind"], "not_authenticated")

    def test_me_requires_token(self):
        self.assertEqual(self.client.get(reverse("accounts:me")).status_code, 401)
        response = self.client.get(reverse("accounts:me"), HTTP_AUTHORIZATION="Bearer bogus")
        self.assertEqual(response.status_code, 401)

    def test_me_with_helper_header(self):
        response = self.client.get(reverse("accounts:me"), **auth_header(self.actor))
        self.assertEqual(response.json()["data"]["email"], "boss@example.com")


class SeedRolesCommandTests(TestCase):
    def test_idempotent(self):
        out = StringIO()
        call_command("seed_roles", stdout=out)
        call_command("seed_roles", stdout=out)
        self.assertEqual(Group.objects.filter(name__in=["Boss", "Manager"]).count(), 2)
        self.assertIn("already present", out.getvalue())


class NotificationApiTests(TestCase):
    def setUp(self):
        self.actor = make_actor("boss", Role.BOSS)
        self.other = make_actor("other")
        self.first = create_notification(self.actor.user, "PO-2026-0001 submitted")
        self.second = create_notification(self.actor.user, "Low stock", level="warning")
        create_notification(self.other.user, "not yours")

    def test_list_own_notifications(self):
        response = self.client.get(reverse("accounts:notification_list"), **auth_header(self.actor))
        verbs = {n["verb"] for n in response.json()["data"]}
        self.assertEqual(verbs, {"PO-2026-0001 submitted", "Low stock"})

    def test_mark_read(self):
        headers = auth_header(self.actor)
        response = self.client.post(
            reverse("accounts:notification_read", args=[self.first.pk]), **headers
        )
        self.assertTrue(response.json()["data"]["isRead"])

        unread = self.client.get(reverse("accounts:notification_list") + "?unread=1", **headers)
        self.assertEqual([n["id"] for n in unread.json()["data"]], [self.second.pk])

    def test_cannot_read_someone_elses(self):
        foreign = create_notification(self.other.user, "private")
        response = self.client.post(
            reverse("accounts:notification_read", args=[foreign.pk]), **auth_header(self.actor)
        )
        self.assertEqual(response.status_code, 404)

    def test_mark_all_read(self):
        response = self.client.post(reverse("accounts:notification_read_all"), **auth_header(self.actor))
        self.assertEqual(response.json()["data"], {"updated": 2})
        self.assertEqual(Notification.objects.for_user(self.other.user).unread().count(), 1)
