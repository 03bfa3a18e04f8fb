import json
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.db import transaction
from django.test import TestCase
from django.urls import reverse

from accounts.roles import Role
from accounts.testing import auth_header, make_actor
from core.exceptions import BusinessValidationError, Forbidden, NotFound
from inventory.models import Product
from purchasing.models import PurchaseOrder, PurchasingSettings
from purchasing.services import PurchaseOrderService
from suppliers import services
from suppliers.models import PaymentTerms, Supplier, credit_days


class BaseSupplierTestCase(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)
        self.supplier = services.create_supplier(
            {"name": "Acme Cement", "credit_limit": "10000"}, actor=self.boss
        )
        self.cement = Product.objects.create(code="CEM", name="Cement")

    def make_po(self, qty="10", cost="100", supplier=None):
        return PurchaseOrderService.create(
            supplier or self.supplier,
            [{"product_id": self.cement.pk, "quantity": qty, "unit_cost": cost}],
            actor=self.manager,
        )


class SupplierModelTests(BaseSupplierTestCase):
    def test_credit_days(self):
        self.assertEqual(credit_days(PaymentTerms.CREDIT_30), 30)
        self.assertEqual(credit_days(PaymentTerms.CREDIT_7), 7)
        self.assertIsNone(credit_days(PaymentTerms.CASH_ON_DELIVERY))

    def test_unlimited_credit(self):
        supplier = Supplier(name="Open", credit_limit=Decimal("0"), current_balance=Decimal("5000"))
        self.assertIsNone(supplier.available_credit)
        self.assertEqual(supplier.credit_utilization, Decimal("0.00"))
        self.assertEqual(supplier.utilization_level, Supplier.UtilizationLevel.OK)

    def test_available_credit_and_utilization(self):
        supplier = Supplier(name="Tight", credit_limit=Decimal("1000"), current_balance=Decimal("750"))
        self.assertEqual(supplier.available_credit, Decimal("250"))
        self.assertEqual(supplier.credit_utilization, Decimal("75.00"))
        self.assertEqual(supplier.utilization_level, Supplier.UtilizationLevel.WARNING)

        supplier.current_balance = Decimal("1200")
        self.assertEqual(supplier.available_credit, Decimal("0"))
        self.assertEqual(supplier.utilization_level, Supplier.UtilizationLevel.CRITICAL)

    def test_thresholds_come_from_settings(self):
        config = PurchasingSettings.get_solo()
        config.utilization_warning_percent = Decimal("50")
        config.save()
        supplier = Supplier(name="Tight", credit_limit=Decimal("1000"), current_balance=Decimal("600"))
        self.assertEqual(supplier.utilization_level, Supplier.UtilizationLevel.WARNING)


class SupplierServiceTests(BaseSupplierTestCase):
    def test_only_boss_manages_suppliers(self):
        with self.assertRaises(Forbidden):
            services.create_supplier({"name": "Nope"}, actor=self.manager)
        with self.assertRaises(Forbidden):
            services.update_supplier(self.supplier, {"phone": "123"}, actor=self.manager)

    def test_default_payment_terms_from_settings(self):
        self.assertEqual(self.supplier.payment_terms, PurchasingSettings.get_solo().default_payment_terms)

    def test_validation(self):
        with self.assertRaises(BusinessValidationError):
            services.create_supplier({"name": "  "}, actor=self.boss)
        with self.assertRaises(BusinessValidationError):
            services.create_supplier({"name": "X", "credit_limit": "-1"}, actor=self.boss)
        with self.assertRaises(BusinessValidationError):
            services.create_supplier({"name": "X", "payment_terms": "Credit 45 days"}, actor=self.boss)

    def test_update_cannot_touch_balance(self):
        services.update_supplier(self.supplier, {"current_balance": "999", "phone": "555"}, actor=self.boss)
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("0"))
        self.assertEqual(self.supplier.phone, "555")

    def test_delete_without_purchase_orders_soft_deletes(self):
        services.deactivate_supplier(self.supplier, actor=self.boss)
        self.assertFalse(Supplier.objects.filter(pk=self.supplier.pk).exists())
        self.assertTrue(Supplier.all_objects.get(pk=self.supplier.pk).is_deleted)

    def test_delete_with_purchase_orders_only_deactivates(self):
        self.make_po()
        services.deactivate_supplier(self.supplier, actor=self.boss)
        supplier = Supplier.objects.get(pk=self.supplier.pk)
        self.assertFalse(supplier.is_active)
        self.assertFalse(supplier.is_deleted)

    def test_resolve_unknown_and_inactive(self):
        with self.assertRaises(NotFound):
            services.resolve_supplier(999999)
        services.update_supplier(self.supplier, {"is_active": False}, actor=self.boss)
        with self.assertRaises(BusinessValidationError):
            services.resolve_supplier(self.supplier.pk, active_only=True)

    def test_list_and_search(self):
        other = services.create_supplier({"name": "Bolt Hardware"}, actor=self.boss)
        services.update_supplier(other, {"is_active": False}, actor=self.boss)

        self.assertEqual([s.name for s in services.list_suppliers()], ["Acme Cement"])
        self.assertEqual(len(services.list_suppliers(include_inactive=True)), 2)
        self.assertEqual([s.name for s in services.list_suppliers(search="bolt", include_inactive=True)], ["Bolt Hardware"])


class BalanceLedgerTests(BaseSupplierTestCase):
    def test_balance_follows_purchase_orders(self):
        po1 = self.make_po(qty="10", cost="100")
        self.make_po(qty="5", cost="100")
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("1500.00"))
        self.assertEqual(services.recompute_balance(self.supplier), self.supplier.current_balance)

        PurchaseOrderService.cancel(po1, "duplicate", actor=self.manager)
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("500.00"))
        self.assertEqual(services.recompute_balance(self.supplier), self.supplier.current_balance)

    def test_apply_balance_delta_requires_transaction(self):
        with self.assertRaises(RuntimeError):
            services.apply_balance_delta(self.supplier, Decimal("10"))

    def test_apply_balance_delta(self):
        with transaction.atomic():
            supplier = services.apply_balance_delta(self.supplier, Decimal("25.50"), reason="test")
        self.assertEqual(supplier.current_balance, Decimal("25.50"))

    def test_verify_and_repair(self):
        self.make_po(qty="2", cost="100")
        self.assertEqual(services.verify_balances(), [])

        Supplier.all_objects.filter(pk=self.supplier.pk).update(current_balance=Decimal("999"))
        drift = services.verify_balances()
        self.assertEqual(len(drift), 1)
        self.assertEqual(drift[0].computed, Decimal("200.00"))
        self.assertEqual(drift[0].difference, Decimal("799.00"))

        services.repair_balance(self.supplier, actor=self.boss)
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("200.00"))

    def test_check_command(self):
        self.make_po(qty="1", cost="100")
        Supplier.all_objects.filter(pk=self.supplier.pk).update(current_balance=Decimal("0"))

        out = StringIO()
        call_command("check_supplier_balances", stdout=out)
        self.assertIn("out of balance", out.getvalue())
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("0.00"))

        out = StringIO()
        call_command("check_supplier_balances", "--fix", stdout=out)
        self.assertIn("Repaired 1", out.getvalue())
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("100.00"))


class SupplierApiTests(BaseSupplierTestCase):
    def test_list_requires_token(self):
        response = self.client.get(reverse("suppliers:supplier_collection"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["kind"], "not_authenticated")

    def test_create_and_list(self):
        response = self.client.post(
            reverse("suppliers:supplier_collection"),
            data=json.dumps({"name": "Bolt Hardware", "creditLimit": "0", "paymentTerms": "Cash on Delivery"}),
            content_type="application/json",
            **auth_header(self.boss),
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertIsNone(body["data"]["availableCredit"])
        self.assertTrue(body["data"]["unlimitedCredit"])

        response = self.client.get(reverse("suppliers:supplier_collection"), **auth_header(self.manager))
        names = [row["name"] for row in response.json()["data"]]
        self.assertEqual(sorted(names), ["Acme Cement", "Bolt Hardware"])

    def test_manager_cannot_create(self):
        response = self.client.post(
            reverse("suppliers:supplier_collection"),
            data=json.dumps({"name": "Bolt"}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["kind"], "forbidden")

    def test_statement(self):
        po = self.make_po(qty="10", cost="100")
        cancelled = self.make_po(qty="1", cost="50")
        PurchaseOrderService.cancel(cancelled, "typo", actor=self.manager)
        PurchaseOrderService.add_payment(po, Decimal("400"), "Cash", actor=self.manager)

        response = self.client.get(
            reverse("suppliers:supplier_statement", args=[self.supplier.pk]),
            **auth_header(self.boss),
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(len(data["purchaseOrders"]), 2)
        self.assertEqual(len(data["payments"]), 1)
        self.assertEqual(Decimal(data["totals"]["ordered"]), Decimal("1000"))
        self.assertEqual(Decimal(data["totals"]["paid"]), Decimal("400"))
        self.assertEqual(Decimal(data["totals"]["outstanding"]), Decimal("600"))
        self.assertEqual(data["totals"]["poCount"], 1)
        self.assertEqual(Decimal(data["supplier"]["currentBalance"]), Decimal("600"))
        self.assertEqual(
            PurchaseOrder.objects.get(pk=cancelled.pk).status, PurchaseOrder.Status.CANCELLED
        )
