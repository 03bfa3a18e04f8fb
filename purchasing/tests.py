import datetime
import json
import threading
from decimal import Decimal
from unittest import mock

from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone

from accounts.roles import Role
from accounts.testing import auth_header, make_actor
from core.api import error_response
from core.exceptions import (
    BusinessValidationError,
    CreditLimitExceeded,
    Forbidden,
    InvalidCost,
    InvalidQuantity,
    InvalidTransition,
    OverReceipt,
)
from core.models import AuditLog, Notification
from inventory.models import Product, StockLot
from inventory.services import add_lot, deactivate_product, deplete_for_sale, total_stock
from payments import services as payment_services
from purchasing.models import GoodsReceipt, PurchaseOrder
from purchasing.services import PurchaseOrderService
from suppliers.models import PaymentTerms, Supplier
from suppliers.services import recompute_balance

Status = PurchaseOrder.Status


class BasePurchasingTestCase(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)
        self.other_manager = make_actor("other", Role.MANAGER)

        self.supplier = Supplier.objects.create(
            name="Acme Cement",
            credit_limit=Decimal("1000000"),
            payment_terms=PaymentTerms.CREDIT_30,
        )
        self.cement = Product.objects.create(code="CEM", name="Cement")
        self.sand = Product.objects.create(code="SND", name="Sand")

    def create_po(self, items=None, actor=None, supplier=None, **kwargs):
        if items is None:
            items = [{"product_id": self.cement.pk, "quantity": "100", "unit_cost": "1000"}]
        return PurchaseOrderService.create(
            supplier or self.supplier, items, actor=actor or self.manager, **kwargs
        )

    def ordered_po(self, items=None, **kwargs):
        po = self.create_po(items, **kwargs)
        PurchaseOrderService.submit(po, actor=self.manager)
        PurchaseOrderService.approve(po, actor=self.boss)
        return PurchaseOrderService.mark_ordered(po, actor=self.manager)

    def balance(self):
        self.supplier.refresh_from_db()
        return self.supplier.current_balance


# ============================================================
# create
# ============================================================
class CreateTests(BasePurchasingTestCase):
    def test_totals_and_balance(self):
        po = self.create_po(
            [
                {"product_id": self.cement.pk, "quantity": "10", "unit_cost": "100"},
                {"product_id": self.sand.pk, "quantity": "2.5", "unit_cost": "40"},
            ],
            tax_amount="50",
            shipping_cost="20",
            discount="70",
        )
        self.assertEqual(po.status, Status.DRAFT)
        self.assertEqual(po.total_cost, Decimal("1100.00"))
        self.assertEqual(po.grand_total, Decimal("1100.00"))
        self.assertEqual(po.balance_due, po.grand_total)
        self.assertEqual(po.payment_status, PurchaseOrder.PaymentStatus.UNPAID)
        self.assertTrue(po.number.startswith("PO-"))
        self.assertEqual(po.author, self.manager.user)

        items = list(po.items.order_by("line_no"))
        self.assertEqual([i.line_no for i in items], [1, 2])
        self.assertEqual(items[0].product_name, "Cement")
        self.assertEqual(items[1].subtotal, Decimal("100.00"))

        self.assertEqual(self.balance(), Decimal("1100.00"))
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.CREATE, extra__items=2).exists())

    def test_numbers_are_unique_and_increasing(self):
        first = self.create_po()
        second = self.create_po()
        self.assertNotEqual(first.number, second.number)
        self.assertLess(first.number, second.number)

    def test_payment_terms_default_to_supplier(self):
        self.supplier.payment_terms = PaymentTerms.CREDIT_60
        self.supplier.save()
        self.assertEqual(self.create_po().payment_terms, PaymentTerms.CREDIT_60)
        self.assertEqual(
            self.create_po(payment_terms=PaymentTerms.CASH_ON_DELIVERY).payment_terms,
            PaymentTerms.CASH_ON_DELIVERY,
        )

    def test_requires_items(self):
        with self.assertRaises(BusinessValidationError):
            self.create_po(items=[])

    def test_rejects_bad_lines(self):
        with self.assertRaises(InvalidQuantity):
            self.create_po([{"product_id": self.cement.pk, "quantity": "0", "unit_cost": "1"}])
        with self.assertRaises(InvalidCost):
            self.create_po([{"product_id": self.cement.pk, "quantity": "1", "unit_cost": "-1"}])
        with self.assertRaises(BusinessValidationError):
            self.create_po([{"product_id": 999999, "quantity": "1", "unit_cost": "1"}])

        self.cement.is_active = False
        self.cement.save()
        with self.assertRaises(BusinessValidationError):
            self.create_po()

        self.assertFalse(PurchaseOrder.objects.exists())
        self.assertEqual(self.balance(), Decimal("0"))

    def test_rejects_unknown_or_inactive_supplier(self):
        with self.assertRaises(BusinessValidationError):
            self.create_po(supplier=999999)
        self.supplier.is_active = False
        self.supplier.save()
        with self.assertRaises(BusinessValidationError):
            self.create_po()

    def test_rejects_negative_charges_and_empty_total(self):
        with self.assertRaises(BusinessValidationError):
            self.create_po(tax_amount="-1")
        with self.assertRaises(BusinessValidationError):
            self.create_po(discount="100000")

    def test_rejects_unknown_terms(self):
        with self.assertRaises(BusinessValidationError):
            self.create_po(payment_terms="Credit 45 days")


# ============================================================
# submit / approve / order
# ============================================================
class TransitionTests(BasePurchasingTestCase):
    def test_happy_path_timestamps(self):
        po = self.create_po()
        po = PurchaseOrderService.submit(po, actor=self.manager)
        self.assertEqual(po.status, Status.SUBMITTED)
        self.assertIsNotNone(po.submitted_at)

        po = PurchaseOrderService.approve(po, actor=self.boss)
        self.assertEqual(po.status, Status.APPROVED)
        self.assertEqual(po.approved_by, self.boss.user)
        self.assertIsNotNone(po.approved_at)

        po = PurchaseOrderService.mark_ordered(po, actor=self.manager)
        self.assertEqual(po.status, Status.ORDERED)
        self.assertEqual(po.due_date, timezone.localdate(po.ordered_at) + datetime.timedelta(days=30))

    def test_cash_on_delivery_has_no_due_date(self):
        po = self.ordered_po(payment_terms=PaymentTerms.CASH_ON_DELIVERY)
        self.assertIsNone(po.due_date)

    def test_only_author_submits(self):
        po = self.create_po()
        with self.assertRaises(Forbidden):
            PurchaseOrderService.submit(po, actor=self.other_manager)
        with self.assertRaises(Forbidden):
            PurchaseOrderService.submit(po, actor=self.boss)
        po.refresh_from_db()
        self.assertEqual(po.status, Status.DRAFT)

    def test_submit_twice(self):
        po = self.create_po()
        PurchaseOrderService.submit(po, actor=self.manager)
        with self.assertRaises(InvalidTransition):
            PurchaseOrderService.submit(po, actor=self.manager)

    def test_only_boss_approves(self):
        po = self.create_po()
        PurchaseOrderService.submit(po, actor=self.manager)
        with self.assertRaises(Forbidden):
            PurchaseOrderService.approve(po, actor=self.manager)

    def test_approve_requires_submitted(self):
        po = self.create_po()
        with self.assertRaises(InvalidTransition):
            PurchaseOrderService.approve(po, actor=self.boss)

    def test_order_requires_approved(self):
        po = self.create_po()
        PurchaseOrderService.submit(po, actor=self.manager)
        with self.assertRaises(InvalidTransition):
            PurchaseOrderService.mark_ordered(po, actor=self.manager)

    def test_transitions_are_audited(self):
        po = self.ordered_po()
        moves = list(
            AuditLog.objects.filter(action=AuditLog.Action.STATUS_CHANGE, target_object_id=str(po.pk))
            .order_by("created_at", "pk")
            .values_list("extra__to", flat=True)
        )
        self.assertEqual(moves, [Status.SUBMITTED, Status.APPROVED, Status.ORDERED])


class CreditLimitTests(BasePurchasingTestCase):
    def setUp(self):
        super().setUp()
        self.supplier.credit_limit = Decimal("1000")
        self.supplier.save()

    def submitted(self, amount):
        po = self.create_po([{"product_id": self.cement.pk, "quantity": "1", "unit_cost": amount}])
        return PurchaseOrderService.submit(po, actor=self.manager)

    def test_within_limit_succeeds(self):
        first = self.submitted("600")
        second = self.submitted("400")
        PurchaseOrderService.approve(first, actor=self.boss)
        po = PurchaseOrderService.approve(second, actor=self.boss)
        self.assertEqual(po.status, Status.APPROVED)

    def test_over_limit_fails(self):
        self.submitted("600")
        second = self.submitted("500")
        with self.assertRaises(CreditLimitExceeded) as ctx:
            PurchaseOrderService.approve(second, actor=self.boss)
        self.assertEqual(ctx.exception.get_details()["exposure"], "1100.00")
        second.refresh_from_db()
        self.assertEqual(second.status, Status.SUBMITTED)

    def test_cancelled_orders_free_credit(self):
        first = self.submitted("600")
        second = self.submitted("500")
        PurchaseOrderService.cancel(first, "supplier out of stock", actor=self.manager)
        po = PurchaseOrderService.approve(second, actor=self.boss)
        self.assertEqual(po.status, Status.APPROVED)

    def test_zero_limit_is_unlimited(self):
        self.supplier.credit_limit = Decimal("0")
        self.supplier.save()
        po = self.submitted("5000000")
        self.assertEqual(PurchaseOrderService.approve(po, actor=self.boss).status, Status.APPROVED)


# ============================================================
# receive
# ============================================================
class ReceiveTests(BasePurchasingTestCase):
    def test_partial_then_full(self):
        po = self.ordered_po()
        item = po.items.get()

        po = PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "60"}], actor=self.manager)
        item.refresh_from_db()
        self.assertEqual(po.status, Status.PARTIALLY_RECEIVED)
        self.assertIsNone(po.received_at)
        self.assertEqual(item.quantity_received, Decimal("60"))
        self.assertEqual(len(item.batch_numbers), 1)

        po = PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "40"}], actor=self.manager)
        item.refresh_from_db()
        self.assertEqual(po.status, Status.RECEIVED)
        self.assertIsNotNone(po.received_at)
        self.assertEqual(len(item.batch_numbers), 2)
        self.assertEqual(len(item.received_dates), 2)
        self.assertEqual(total_stock(self.cement), Decimal("100"))
        self.assertEqual(po.receipts.count(), 2)

    def test_lot_takes_cost_from_item(self):
        po = self.ordered_po()
        item = po.items.get()
        expiry = timezone.localdate() + datetime.timedelta(days=90)
        PurchaseOrderService.receive(
            po,
            [{"po_item_id": item.pk, "quantity": "5", "unit_price": "1500", "expiry_date": expiry}],
            notes="delivery note 17",
            actor=self.manager,
        )
        lot = StockLot.objects.get(po_item=item)
        self.assertEqual(lot.unit_cost, Decimal("1000.00"))
        self.assertEqual(lot.unit_price, Decimal("1500.00"))
        self.assertEqual(lot.expiry_date, expiry)
        self.assertEqual(lot.po_id, po.pk)

        receipt = GoodsReceipt.objects.get(po=po)
        self.assertEqual(receipt.notes, "delivery note 17")
        self.assertEqual(receipt.lines.get().lot, lot)

    def test_one_batch_per_item_per_receipt(self):
        po = self.ordered_po(
            [
                {"product_id": self.cement.pk, "quantity": "10", "unit_cost": "100"},
                {"product_id": self.sand.pk, "quantity": "10", "unit_cost": "10"},
            ]
        )
        cement_item, sand_item = po.items.order_by("line_no")
        PurchaseOrderService.receive(
            po,
            [
                {"po_item_id": sand_item.pk, "quantity": "10"},
                {"po_item_id": cement_item.pk, "quantity": "4"},
            ],
            actor=self.boss,
        )
        self.assertEqual(len(cement_item.batch_numbers), 1)
        self.assertEqual(len(sand_item.batch_numbers), 1)
        self.assertEqual(GoodsReceipt.objects.get(po=po).lines.count(), 2)

    def test_over_receipt_changes_nothing(self):
        po = self.ordered_po(
            [
                {"product_id": self.cement.pk, "quantity": "10", "unit_cost": "100"},
                {"product_id": self.sand.pk, "quantity": "10", "unit_cost": "10"},
            ]
        )
        cement_item, sand_item = po.items.order_by("line_no")
        with self.assertRaises(OverReceipt):
            PurchaseOrderService.receive(
                po,
                [
                    {"po_item_id": cement_item.pk, "quantity": "5"},
                    {"po_item_id": sand_item.pk, "quantity": "11"},
                ],
                actor=self.manager,
            )
        cement_item.refresh_from_db()
        po.refresh_from_db()
        self.assertEqual(cement_item.quantity_received, Decimal("0"))
        self.assertEqual(po.status, Status.ORDERED)
        self.assertFalse(StockLot.objects.exists())
        self.assertFalse(GoodsReceipt.objects.exists())

    def test_line_validation(self):
        po = self.ordered_po()
        item = po.items.get()
        foreign = self.ordered_po().items.get()

        with self.assertRaises(BusinessValidationError):
            PurchaseOrderService.receive(po, [], actor=self.manager)
        with self.assertRaises(BusinessValidationError):
            PurchaseOrderService.receive(po, [{"po_item_id": foreign.pk, "quantity": "1"}], actor=self.manager)
        with self.assertRaises(BusinessValidationError):
            PurchaseOrderService.receive(
                po,
                [{"po_item_id": item.pk, "quantity": "1"}, {"po_item_id": item.pk, "quantity": "1"}],
                actor=self.manager,
            )
        with self.assertRaises(InvalidQuantity):
            PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "0"}], actor=self.manager)
        with self.assertRaises(BusinessValidationError):
            PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "1"}, "junk"], actor=self.manager)
        self.assertFalse(GoodsReceipt.objects.filter(po=po).exists())

    def test_deactivated_product_can_still_be_received(self):
        po = self.ordered_po()
        item = po.items.get()

        deactivate_product(self.cement, actor=self.boss)
        self.assertTrue(Product.objects.filter(pk=self.cement.pk, is_active=False).exists())

        po = PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "100"}], actor=self.manager)
        self.assertEqual(po.status, Status.RECEIVED)
        self.assertEqual(total_stock(self.cement), Decimal("100"))

    def test_receive_requires_ordered(self):
        po = self.create_po()
        with self.assertRaises(InvalidTransition):
            PurchaseOrderService.receive(po, [{"po_item_id": po.items.get().pk, "quantity": "1"}], actor=self.manager)

    def test_received_is_terminal(self):
        po = self.ordered_po()
        item = po.items.get()
        PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "100"}], actor=self.manager)
        with self.assertRaises(InvalidTransition):
            PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "1"}], actor=self.manager)
        with self.assertRaises(InvalidTransition):
            PurchaseOrderService.cancel(po, "too late", actor=self.boss)


# ============================================================
# cancel
# ============================================================
class CancelTests(BasePurchasingTestCase):
    def test_cancel_releases_exact_balance(self):
        po = self.ordered_po()
        PurchaseOrderService.add_payment(po, Decimal("30000"), "Cash", actor=self.manager)
        po.refresh_from_db()
        before = self.balance()

        po = PurchaseOrderService.cancel(po, "supplier closed", actor=self.manager)

        self.assertEqual(self.balance(), before - po.balance_due)
        self.assertEqual(po.grand_total - po.amount_paid, po.balance_due)
        self.assertEqual(po.cancelled_by, self.manager.user)
        self.assertEqual(po.cancellation_reason, "supplier closed")
        self.assertEqual(recompute_balance(self.supplier), self.balance())

    def test_no_transition_after_cancel(self):
        po = self.create_po()
        PurchaseOrderService.cancel(po, "not needed", actor=self.boss)

        for call in (
            lambda: PurchaseOrderService.submit(po, actor=self.manager),
            lambda: PurchaseOrderService.approve(po, actor=self.boss),
            lambda: PurchaseOrderService.mark_ordered(po, actor=self.boss),
            lambda: PurchaseOrderService.receive(po, [{"po_item_id": 1, "quantity": "1"}], actor=self.boss),
            lambda: PurchaseOrderService.cancel(po, "again", actor=self.boss),
            lambda: PurchaseOrderService.add_payment(po, Decimal("1"), "Cash", actor=self.boss),
        ):
            with self.assertRaises(InvalidTransition):
                call()

    def test_reason_required(self):
        po = self.create_po()
        with self.assertRaises(BusinessValidationError):
            PurchaseOrderService.cancel(po, "   ", actor=self.manager)

    def test_boss_or_author(self):
        po = self.create_po()
        with self.assertRaises(Forbidden):
            PurchaseOrderService.cancel(po, "mine now", actor=self.other_manager)
        self.assertEqual(PurchaseOrderService.cancel(po, "boss says", actor=self.boss).status, Status.CANCELLED)

    def test_received_stock_stays(self):
        po = self.ordered_po()
        item = po.items.get()
        PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": "30"}], actor=self.manager)

        PurchaseOrderService.cancel(po, "rest never came", actor=self.manager)

        lot = StockLot.objects.get(po_item=item)
        self.assertTrue(lot.is_active)
        self.assertEqual(total_stock(self.cement), Decimal("30"))
        entry = AuditLog.objects.filter(extra__to=Status.CANCELLED).get()
        self.assertEqual(entry.extra["lots_kept_in_stock"], [lot.batch_number])


# ============================================================
# notifications
# ============================================================
class NotificationTests(BasePurchasingTestCase):
    def test_submit_notifies_bosses(self):
        po = self.create_po()
        with self.captureOnCommitCallbacks(execute=True):
            PurchaseOrderService.submit(po, actor=self.manager)
        self.assertTrue(Notification.objects.filter(recipient=self.boss.user, verb__contains=po.number).exists())
        self.assertFalse(Notification.objects.filter(recipient=self.manager.user).exists())

    def test_author_hears_about_approval_and_cancel(self):
        po = self.create_po()
        PurchaseOrderService.submit(po, actor=self.manager)
        with self.captureOnCommitCallbacks(execute=True):
            PurchaseOrderService.approve(po, actor=self.boss)
        with self.captureOnCommitCallbacks(execute=True):
            PurchaseOrderService.cancel(po, "budget", actor=self.boss)

        levels = list(
            Notification.objects.filter(recipient=self.manager.user)
            .order_by("created_at", "pk")
            .values_list("level", flat=True)
        )
        self.assertEqual(levels, [Notification.Levels.SUCCESS, Notification.Levels.WARNING])

    def test_rolled_back_transition_emits_nothing(self):
        po = self.create_po()
        PurchaseOrderService.submit(po, actor=self.manager)
        self.supplier.credit_limit = Decimal("1")
        self.supplier.save()
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(CreditLimitExceeded):
                PurchaseOrderService.approve(po, actor=self.boss)
        self.assertEqual(callbacks, [])
        self.assertFalse(Notification.objects.filter(recipient=self.manager.user).exists())


# ============================================================
# read side
# ============================================================
class DashboardStatsTests(BasePurchasingTestCase):
    def test_counts_and_amounts(self):
        self.create_po()
        submitted = self.create_po()
        PurchaseOrderService.submit(submitted, actor=self.manager)
        cancelled = self.create_po()
        PurchaseOrderService.cancel(cancelled, "dup", actor=self.manager)
        overdue = self.ordered_po()
        PurchaseOrder.objects.filter(pk=overdue.pk).update(due_date=timezone.localdate() - datetime.timedelta(days=1))

        stats = PurchaseOrderService.dashboard_stats()

        self.assertEqual(stats["by_status"][Status.DRAFT], 1)
        self.assertEqual(stats["by_status"][Status.CANCELLED], 1)
        self.assertEqual(stats["by_status"][Status.RECEIVED], 0)
        self.assertEqual(stats["pending_approval"], 1)
        self.assertEqual(stats["outstanding"]["count"], 3)
        self.assertEqual(stats["outstanding"]["amount"], Decimal("300000"))
        self.assertEqual(stats["overdue"], {"count": 1, "amount": Decimal("100000")})
        self.assertEqual(stats["this_month"]["count"], 3)

    def test_list_filters(self):
        draft = self.create_po()
        ordered = self.ordered_po()
        self.assertEqual(list(PurchaseOrderService.list_orders(status=Status.ORDERED)), [ordered])
        self.assertEqual(list(PurchaseOrderService.list_orders(search=draft.number)), [draft])
        with self.assertRaises(BusinessValidationError):
            list(PurchaseOrderService.list_orders(status="Lost"))


# ============================================================
# end to end
# ============================================================
class EndToEndTests(BasePurchasingTestCase):
    def test_order_to_paid(self):
        po = self.create_po()
        PurchaseOrderService.submit(po, actor=self.manager)
        PurchaseOrderService.approve(po, actor=self.boss)
        PurchaseOrderService.mark_ordered(po, actor=self.manager)
        item = po.items.get()

        po = PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": 60}], actor=self.manager)
        item.refresh_from_db()
        self.assertEqual(po.status, Status.PARTIALLY_RECEIVED)
        self.assertEqual(item.quantity_received, Decimal("60"))
        lot = StockLot.objects.get(po_item=item)
        self.assertEqual((lot.quantity, lot.unit_cost), (Decimal("60"), Decimal("1000")))

        po = PurchaseOrderService.receive(po, [{"po_item_id": item.pk, "quantity": 40}], actor=self.manager)
        self.assertEqual(po.status, Status.RECEIVED)
        lots = StockLot.objects.filter(po_item=item)
        self.assertEqual(lots.count(), 2)
        self.assertEqual(sum(l.quantity for l in lots), Decimal("100"))

        PurchaseOrderService.add_payment(po, Decimal("50000"), "Cash", actor=self.manager)
        po.refresh_from_db()
        self.assertEqual(po.payment_status, PurchaseOrder.PaymentStatus.PARTIAL)
        self.assertEqual(po.balance_due, Decimal("50000"))

        PurchaseOrderService.add_payment(
            po, Decimal("50000"), "Bank Transfer", {"bank_reference": "TRX-9"}, actor=self.boss
        )
        po.refresh_from_db()
        self.assertEqual(po.payment_status, PurchaseOrder.PaymentStatus.PAID)
        self.assertEqual(po.balance_due, Decimal("0"))
        self.assertEqual(self.balance(), Decimal("0"))


# ============================================================
# HTTP
# ============================================================
class PurchaseOrderApiTests(BasePurchasingTestCase):
    def put(self, name, po, actor, payload=None):
        return self.client.put(
            reverse(f"purchasing:{name}", args=[po["id"] if isinstance(po, dict) else po.pk]),
            data=json.dumps(payload or {}),
            content_type="application/json",
            **auth_header(actor),
        )

    def test_full_flow(self):
        response = self.client.post(
            reverse("purchasing:po_collection"),
            data=json.dumps(
                {
                    "supplierId": self.supplier.pk,
                    "items": [{"productId": self.cement.pk, "quantity": "100", "unitCost": "1000"}],
                    "taxAmount": "0",
                }
            ),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 201)
        po = response.json()["data"]
        self.assertEqual(po["status"], "Draft")
        self.assertEqual(Decimal(po["grandTotal"]), Decimal("100000"))

        self.assertEqual(self.put("po_submit", po, self.manager).status_code, 200)
        self.assertEqual(self.put("po_approve", po, self.boss).json()["data"]["status"], "Approved")
        self.assertEqual(self.put("po_order", po, self.manager).json()["data"]["status"], "Ordered")

        item_id = po["items"][0]["id"]
        response = self.put(
            "po_receive",
            po,
            self.manager,
            {"items": [{"poItemId": item_id, "quantity": "60", "expiryDate": "2030-01-31"}]},
        )
        data = response.json()["data"]
        self.assertEqual(data["status"], "Partially Received")
        self.assertEqual(len(data["items"][0]["batchNumbers"]), 1)

        response = self.client.post(
            reverse("purchasing:po_payment", args=[po["id"]]),
            data=json.dumps({"amount": "40000", "method": "Mobile Money", "mobileProvider": "M-Pesa", "mobileNumber": "0700111222"}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["payment"]["mobileProvider"], "M-Pesa")
        self.assertEqual(data["purchaseOrder"]["paymentStatus"], "Partial")
        self.assertEqual(Decimal(data["purchaseOrder"]["balanceDue"]), Decimal("60000"))

        response = self.client.get(reverse("purchasing:po_detail", args=[po["id"]]), **auth_header(self.boss))
        self.assertEqual(len(response.json()["data"]["payments"]), 1)

    def test_errors_use_envelope(self):
        po = self.ordered_po()
        item = po.items.get()

        response = self.put("po_receive", po, self.manager, {"items": [{"poItemId": item.pk, "quantity": "101"}]})
        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["version"], 1)
        self.assertFalse(body["ok"])
        self.assertIsNone(body["data"])
        self.assertEqual(body["error"]["kind"], "over_receipt")
        self.assertFalse(body["error"]["retryable"])

        response = self.put("po_submit", po, self.manager)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["kind"], "invalid_transition")

        response = self.put("po_cancel", po, self.other_manager, {"reason": "x"})
        self.assertEqual(response.status_code, 403)

    def test_non_object_lines_are_rejected_with_their_index(self):
        po = self.ordered_po()
        item = po.items.get()

        response = self.put("po_receive", po, self.manager, {"items": [{"poItemId": item.pk, "quantity": "10"}, "junk"]})
        self.assertEqual(response.status_code, 400)
        error = response.json()["error"]
        self.assertEqual(error["kind"], "validation_error")
        self.assertEqual(error["details"]["line"], 1)
        self.assertIn("items[1]", error["message"])
        self.assertFalse(GoodsReceipt.objects.filter(po=po).exists())
        item.refresh_from_db()
        self.assertEqual(item.quantity_received, Decimal("0"))

        count = PurchaseOrder.objects.count()
        response = self.client.post(
            reverse("purchasing:po_collection"),
            data=json.dumps(
                {
                    "supplierId": self.supplier.pk,
                    "items": [{"productId": self.cement.pk, "quantity": "1", "unitCost": "1"}, 5],
                }
            ),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["line"], 1)
        self.assertEqual(PurchaseOrder.objects.count(), count)

    def test_only_camel_case_keys_are_read(self):
        response = self.client.post(
            reverse("purchasing:po_collection"),
            data=json.dumps(
                {
                    "supplierId": self.supplier.pk,
                    "items": [{"product_id": self.cement.pk, "quantity": "1", "unit_cost": "1"}],
                }
            ),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "product_id")

    def test_busy_is_retryable(self):
        from core.exceptions import Busy

        po = self.create_po()
        with mock.patch("purchasing.services.lock_row", side_effect=Busy()):
            response = self.put("po_submit", po, self.manager)
        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.json()["error"]["retryable"])

    def test_dashboard_stats(self):
        self.create_po()
        response = self.client.get(reverse("purchasing:dashboard_stats"), **auth_header(self.boss))
        data = response.json()["data"]
        self.assertEqual(data["byStatus"]["Draft"], 1)
        self.assertEqual(Decimal(data["outstanding"]["amount"]), Decimal("100000"))

    def test_list(self):
        self.create_po()
        response = self.client.get(reverse("purchasing:po_collection") + "?status=Draft", **auth_header(self.manager))
        self.assertEqual(len(response.json()["data"]), 1)


# ============================================================
# concurrency
# ============================================================
def run_concurrently(*calls):
    """
    Start every call on its own thread and connection at the same moment.
    Returns the sorted outcomes: "ok" or the error kind from the envelope.
    """
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        try:
            barrier.wait()
            call()
            outcomes[index] = "ok"
        except Exception as exc:
            outcomes[index] = json.loads(error_response(exc).content)["error"]["kind"]
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return sorted(outcomes)


class ConcurrentMutationTests(TransactionTestCase):
    def setUp(self):
        if connection.vendor == "sqlite" and connection.is_in_memory_db():
            self.skipTest("needs a file-backed test database shared between threads")
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)
        self.supplier = Supplier.objects.create(name="Acme Cement")
        self.cement = Product.objects.create(code="CEM", name="Cement")

    def assertOneWins(self, outcomes, loser_kind):
        self.assertEqual(outcomes.count("ok"), 1, outcomes)
        self.assertIn(next(o for o in outcomes if o != "ok"), {loser_kind, "busy"})

    def ordered_po(self):
        po = PurchaseOrderService.create(
            self.supplier,
            [{"product_id": self.cement.pk, "quantity": "100", "unit_cost": "10"}],
            actor=self.manager,
        )
        PurchaseOrderService.submit(po, actor=self.manager)
        PurchaseOrderService.approve(po, actor=self.boss)
        return PurchaseOrderService.mark_ordered(po, actor=self.manager)

    def test_payments_cannot_exceed_the_balance(self):
        po = self.ordered_po()

        def pay():
            payment_services.record_payment(po.pk, Decimal("600"), "Cash", actor=self.manager)

        self.assertOneWins(run_concurrently(pay, pay), "over_payment")
        po.refresh_from_db()
        self.assertEqual(po.amount_paid, Decimal("600"))
        self.supplier.refresh_from_db()
        self.assertEqual(self.supplier.current_balance, Decimal("400"))

    def test_receipts_cannot_exceed_the_remaining_quantity(self):
        po = self.ordered_po()
        item = po.items.get()

        def receive():
            PurchaseOrderService.receive(po.pk, [{"po_item_id": item.pk, "quantity": "60"}], actor=self.manager)

        self.assertOneWins(run_concurrently(receive, receive), "over_receipt")
        item.refresh_from_db()
        self.assertEqual(item.quantity_received, Decimal("60"))
        self.assertEqual(total_stock(self.cement), Decimal("60"))
        self.assertEqual(GoodsReceipt.objects.filter(po=po).count(), 1)

    def test_sales_cannot_oversell_a_product(self):
        add_lot(self.cement, unit_cost="10", quantity="100")

        def sell():
            deplete_for_sale(self.cement.pk, "60")

        self.assertOneWins(run_concurrently(sell, sell), "insufficient_stock")
        self.assertEqual(total_stock(self.cement), Decimal("40"))
