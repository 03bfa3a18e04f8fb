import json
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse

from accounts.roles import Role
from accounts.testing import auth_header, make_actor
from core.exceptions import BusinessValidationError, Forbidden
from expenses import services
from expenses.models import ExpenseRecord, ExpenseType


class ExpenseServiceTests(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)

    def test_type_created_on_first_use_and_reused(self):
        first = services.record_expense("Transport", "1500", actor=self.manager)
        second = services.record_expense("  transport ", "500", actor=self.manager)

        self.assertEqual(first.expense_type, second.expense_type)
        self.assertEqual(ExpenseType.objects.count(), 1)
        expense_type = ExpenseType.objects.get()
        self.assertEqual(expense_type.name, "Transport")
        self.assertEqual(expense_type.usage_count, 2)

    def test_defaults_to_today(self):
        record = services.record_expense("Fuel", Decimal("10"), actor=self.manager)
        self.assertIsNotNone(record.expense_date)
        self.assertEqual(record.manager, self.manager.user)

    def test_amount_and_name_validation(self):
        with self.assertRaises(BusinessValidationError):
            services.record_expense("Fuel", "0", actor=self.manager)
        with self.assertRaises(BusinessValidationError):
            services.record_expense("Fuel", "abc", actor=self.manager)
        with self.assertRaises(BusinessValidationError):
            services.record_expense("   ", "10", actor=self.manager)
        self.assertFalse(ExpenseRecord.objects.exists())

    def test_salary_is_boss_only(self):
        with self.assertRaises(Forbidden):
            services.record_expense("Salary", "300000", actor=self.manager)
        self.assertFalse(ExpenseRecord.objects.exists())

        services.record_expense("Salary", "300000", actor=self.boss)
        salary = ExpenseType.objects.get(name="Salary")
        self.assertTrue(salary.is_restricted)
        self.assertEqual(salary.usage_count, 1)

    def test_restricted_flag_set_in_admin_applies(self):
        services.record_expense("Bonus", "10", actor=self.manager)
        ExpenseType.objects.filter(name="Bonus").update(is_restricted=True)
        with self.assertRaises(Forbidden):
            services.record_expense("Bonus", "10", actor=self.manager)

    def test_suggestions_by_usage(self):
        for name, times in (("Fuel", 3), ("Food", 1), ("Rent", 2)):
            for _ in range(times):
                services.record_expense(name, "1", actor=self.manager)

        self.assertEqual([t.name for t in services.suggest_types()], ["Fuel", "Rent", "Food"])
        self.assertEqual([t.name for t in services.suggest_types("f")], ["Fuel", "Food"])
        self.assertEqual([t.name for t in services.suggest_types(limit=1)], ["Fuel"])

    def test_list_scope(self):
        services.record_expense("Fuel", "1", actor=self.manager)
        services.record_expense("Rent", "1", actor=self.boss)
        self.assertEqual(services.list_expenses(self.manager).count(), 1)
        self.assertEqual(services.list_expenses(self.boss).count(), 2)

    def test_seed_command(self):
        out = StringIO()
        call_command("seed_expense_types", stdout=out)
        call_command("seed_expense_types", stdout=out)
        self.assertEqual(ExpenseType.objects.filter(is_restricted=True).count(), 1)
        self.assertIn("Salary", out.getvalue())


class ExpenseApiTests(TestCase):
    def setUp(self):
        self.manager = make_actor("manager", Role.MANAGER)

    def test_record_and_suggest(self):
        response = self.client.post(
            reverse("expenses:record_collection"),
            data=json.dumps({"type": "Fuel", "amount": "2500", "date": "2025-05-01", "notes": "generator"}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["date"], "2025-05-01")

        response = self.client.get(reverse("expenses:type_collection") + "?q=fu", **auth_header(self.manager))
        self.assertEqual(response.json()["data"][0]["usageCount"], 1)

        response = self.client.get(reverse("expenses:record_collection") + "?from=2025-05-01&to=2025-05-31", **auth_header(self.manager))
        self.assertEqual(len(response.json()["data"]), 1)

    def test_restricted_type_is_forbidden(self):
        response = self.client.post(
            reverse("expenses:record_collection"),
            data=json.dumps({"type": "Salary", "amount": "1"}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 403)
