import json
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse

from accounts.roles import Role
from accounts.testing import auth_header, make_actor
from core.exceptions import BusinessValidationError, InsufficientStock, InvalidQuantity, NotFound
from core.models import Notification
from inventory.models import Product, StockLot
from inventory.services import add_lot, total_stock
from sales.models import Order, OrderItemAllocation
from sales.services import SalesService


class BaseSalesTestCase(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)
        self.other_manager = make_actor("other", Role.MANAGER)

        self.cement = Product.objects.create(code="CEM", name="Cement", min_stock_level=Decimal("5"))
        self.sand = Product.objects.create(code="SND", name="Sand")
        self.old_lot = add_lot(self.cement, unit_cost="100", quantity="10", unit_price="150")
        self.new_lot = add_lot(self.cement, unit_cost="120", quantity="10", unit_price="180")
        self.sand_lot = add_lot(self.sand, unit_cost="10", quantity="3", unit_price="20")

    def order(self, items, actor=None, **kwargs):
        return SalesService.create_order("Walk-in", items, actor=actor or self.manager, **kwargs)


class CreateOrderTests(BaseSalesTestCase):
    def test_prices_at_current_price_and_depletes_fifo(self):
        order = self.order([{"product_id": self.cement.pk, "quantity": "12"}], amount_paid="1000")

        item = order.items.get()
        self.assertEqual(item.unit_price, Decimal("180.00"))
        self.assertEqual(order.total_amount, Decimal("2160.00"))
        self.assertEqual(order.payment_status, Order.PaymentStatus.PARTIAL)
        self.assertTrue(order.number.startswith("SO-"))

        allocations = list(OrderItemAllocation.objects.filter(item=item).order_by("pk"))
        self.assertEqual(
            [(a.lot_id, a.quantity) for a in allocations],
            [(self.old_lot.pk, Decimal("10")), (self.new_lot.pk, Decimal("2"))],
        )
        self.assertEqual(order.cost_of_goods, Decimal("1240.00"))
        self.assertEqual(total_stock(self.cement), Decimal("8"))
        self.old_lot.refresh_from_db()
        self.assertFalse(self.old_lot.is_active)

    def test_payment_status(self):
        cleared = self.order([{"product_id": self.sand.pk, "quantity": "1"}], amount_paid="20")
        pending = self.order([{"product_id": self.sand.pk, "quantity": "1"}])
        self.assertEqual(cleared.payment_status, Order.PaymentStatus.CLEARED)
        self.assertEqual(pending.payment_status, Order.PaymentStatus.PENDING)

    def test_all_or_nothing(self):
        with self.assertRaises(InsufficientStock):
            self.order(
                [
                    {"product_id": self.cement.pk, "quantity": "5"},
                    {"product_id": self.sand.pk, "quantity": "4"},
                ]
            )
        self.assertFalse(Order.objects.exists())
        self.assertEqual(total_stock(self.cement), Decimal("20"))
        self.assertEqual(StockLot.objects.get(pk=self.old_lot.pk).quantity, Decimal("10"))

    def test_validation(self):
        with self.assertRaises(BusinessValidationError):
            self.order([])
        with self.assertRaises(BusinessValidationError):
            SalesService.create_order(" ", [{"product_id": self.sand.pk, "quantity": "1"}], actor=self.manager)
        with self.assertRaises(BusinessValidationError):
            self.order([{"product_id": 999999, "quantity": "1"}])
        with self.assertRaises(BusinessValidationError):
            self.order([{"productId": self.sand.pk, "quantity": "1"}])
        with self.assertRaises(BusinessValidationError):
            self.order(["junk"])
        with self.assertRaises(InvalidQuantity):
            self.order([{"product_id": self.sand.pk, "quantity": "0"}])
        with self.assertRaises(BusinessValidationError):
            self.order([{"product_id": self.sand.pk, "quantity": "1"}], amount_paid="21")
        with self.assertRaises(BusinessValidationError):
            self.order([{"product_id": self.sand.pk, "quantity": "1"}], amount_paid="-1")
        self.assertEqual(total_stock(self.sand), Decimal("3"))

    def test_low_stock_after_sale(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.order([{"product_id": self.cement.pk, "quantity": "16"}])
        self.assertTrue(Notification.objects.filter(recipient=self.boss.user).exists())


class ListOrderTests(BaseSalesTestCase):
    def test_boss_sees_all_manager_sees_own(self):
        mine = self.order([{"product_id": self.sand.pk, "quantity": "1"}])
        theirs = self.order([{"product_id": self.sand.pk, "quantity": "1"}], actor=self.other_manager)

        self.assertEqual(set(SalesService.list_orders(self.boss)), {mine, theirs})
        self.assertEqual(list(SalesService.list_orders(self.manager)), [mine])
        with self.assertRaises(NotFound):
            SalesService.get_order(theirs.pk, self.manager)


class OrderApiTests(BaseSalesTestCase):
    def test_create_and_list(self):
        response = self.client.post(
            reverse("sales:order_collection"),
            data=json.dumps(
                {"customerName": "Mama Neema", "items": [{"productId": self.sand.pk, "quantity": "2"}], "amountPaid": "40"}
            ),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["paymentStatus"], "Cleared")
        self.assertEqual(len(data["items"][0]["allocations"]), 1)

        response = self.client.get(reverse("sales:order_collection"), **auth_header(self.other_manager))
        self.assertEqual(response.json()["data"], [])

    def test_insufficient_stock_is_422(self):
        response = self.client.post(
            reverse("sales:order_collection"),
            data=json.dumps({"customerName": "X", "items": [{"productId": self.sand.pk, "quantity": "50"}]}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["kind"], "insufficient_stock")
        self.assertEqual(Decimal(error["details"]["available"]), Decimal("3"))

    def test_non_object_line_is_rejected(self):
        response = self.client.post(
            reverse("sales:order_collection"),
            data=json.dumps({"customerName": "X", "items": [{"productId": self.sand.pk, "quantity": "1"}, None]}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["line"], 1)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(total_stock(self.sand), Decimal("3"))
