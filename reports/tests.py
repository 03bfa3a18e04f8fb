import datetime
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from accounts.roles import Role
from accounts.testing import auth_header, make_actor
from core.exceptions import Forbidden
from expenses.services import record_expense
from inventory.models import Product
from inventory.services import add_lot
from purchasing.models import PurchaseOrder
from purchasing.services import PurchaseOrderService
from reports import services
from sales.services import SalesService
from suppliers.models import Supplier


class DashboardTests(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)

        self.cement = Product.objects.create(code="CEM", name="Cement", min_stock_level=Decimal("5"))
        add_lot(self.cement, unit_cost="100", quantity="10", unit_price="150")

        SalesService.create_order(
            "Walk-in", [{"product_id": self.cement.pk, "quantity": "6"}], amount_paid="900", actor=self.manager
        )
        record_expense("Fuel", "200", actor=self.manager)

        self.supplier = Supplier.objects.create(name="Acme")
        self.po = PurchaseOrderService.create(
            self.supplier,
            [{"product_id": self.cement.pk, "quantity": "10", "unit_cost": "100"}],
            actor=self.manager,
        )

    def test_boss_financials(self):
        report = services.boss_dashboard(self.boss)
        fin = report["financials"]
        self.assertEqual(fin["total_revenue"], Decimal("900"))
        self.assertEqual(fin["cost_of_goods_sold"], Decimal("600"))
        self.assertEqual(fin["total_expenses"], Decimal("200"))
        self.assertEqual(fin["gross_profit"], Decimal("300"))
        self.assertEqual(fin["net_profit"], Decimal("100"))
        self.assertEqual(report["purchasing"]["outstanding_payables"], Decimal("1000"))
        self.assertEqual(report["inventory"]["low_stock_items"], 1)
        self.assertEqual(len(report["recent_orders"]), 1)

    def test_period_excludes_other_days(self):
        tomorrow = timezone.localdate() + datetime.timedelta(days=1)
        fin = services.boss_dashboard(self.boss, tomorrow, tomorrow)["financials"]
        self.assertEqual(fin["total_revenue"], Decimal("0"))
        self.assertEqual(fin["net_profit"], Decimal("0"))

    def test_manager_cannot_see_financials(self):
        with self.assertRaises(Forbidden):
            services.boss_dashboard(self.manager)

    def test_manager_dashboard(self):
        report = services.manager_dashboard(self.manager)
        self.assertEqual(report["orders_today"]["count"], 1)
        self.assertEqual(report["orders_today"]["amount"], Decimal("900"))
        self.assertEqual(report["expenses_this_month"], Decimal("200"))
        self.assertEqual([p["name"] for p in report["low_stock_products"]], ["Cement"])
        self.assertEqual(report["open_purchase_orders"], {PurchaseOrder.Status.DRAFT: 1})

        other = make_actor("other", Role.MANAGER)
        report = services.manager_dashboard(other)
        self.assertEqual(report["total_orders"], 0)
        self.assertEqual(report["open_purchase_orders"], {})

    def test_http(self):
        response = self.client.get(reverse("reports:dashboard"), **auth_header(self.boss))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["data"]["financials"]["netProfit"]), Decimal("100"))

        response = self.client.get(reverse("reports:dashboard"), **auth_header(self.manager))
        self.assertEqual(response.status_code, 403)

        response = self.client.get(reverse("reports:manager"), **auth_header(self.manager))
        self.assertEqual(response.json()["data"]["ordersToday"]["count"], 1)
