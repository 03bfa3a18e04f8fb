import datetime
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from accounts.roles import Role
from accounts.testing import make_actor
from core.exceptions import BusinessValidationError, InvalidTransition, OverPayment
from core.models import AuditLog
from inventory.models import Product
from payments import services
from payments.models import Payment
from purchasing.models import PurchaseOrder
from purchasing.services import PurchaseOrderService
from suppliers.models import Supplier
from suppliers.services import recompute_balance


class BasePaymentTestCase(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)
        self.supplier = Supplier.objects.create(name="Acme Cement")
        self.cement = Product.objects.create(code="CEM", name="Cement")
        self.po = self.make_po("1000")

    def make_po(self, cost):
        return PurchaseOrderService.create(
            self.supplier,
            [{"product_id": self.cement.pk, "quantity": "1", "unit_cost": cost}],
            actor=self.manager,
        )

    def pay(self, amount, method="Cash", details=None, po=None):
        return services.record_payment(po or self.po, Decimal(amount), method, details, actor=self.manager)


class RecordPaymentTests(BasePaymentTestCase):
    def test_updates_po_and_supplier(self):
        payment = self.pay("250")
        self.po.refresh_from_db()
        self.supplier.refresh_from_db()

        self.assertTrue(payment.number.startswith("PAY-"))
        self.assertEqual(payment.supplier, self.supplier)
        self.assertEqual(payment.paid_on, timezone.localdate())
        self.assertEqual(payment.recorded_by, self.manager.user)
        self.assertEqual(self.po.amount_paid, Decimal("250"))
        self.assertEqual(self.po.balance_due, Decimal("750"))
        self.assertEqual(self.po.grand_total - self.po.amount_paid, self.po.balance_due)
        self.assertEqual(self.po.payment_status, PurchaseOrder.PaymentStatus.PARTIAL)
        self.assertEqual(self.supplier.current_balance, Decimal("750"))
        self.assertEqual(recompute_balance(self.supplier), self.supplier.current_balance)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.PAYMENT).exists())

    def test_payments_summing_to_total_mark_paid(self):
        for amount in ("100", "400.50", "499.50"):
            self.pay(amount)
        self.po.refresh_from_db()
        self.assertEqual(self.po.payment_status, PurchaseOrder.PaymentStatus.PAID)
        self.assertEqual(self.po.balance_due, Decimal("0"))
        self.assertEqual(self.po.payments.count(), 3)

    def test_overpayment_rejected(self):
        self.pay("900")
        with self.assertRaises(OverPayment) as ctx:
            self.pay("100.01")
        self.assertEqual(ctx.exception.get_details()["balance_due"], "100.00")
        self.po.refresh_from_db()
        self.assertEqual(self.po.amount_paid, Decimal("900"))

    def test_paid_in_full_rejects_more(self):
        self.pay("1000")
        with self.assertRaises(InvalidTransition):
            self.pay("1")

    def test_cancelled_po_rejects_payment(self):
        PurchaseOrderService.cancel(self.po, "wrong supplier", actor=self.boss)
        with self.assertRaises(InvalidTransition):
            self.pay("1")
        self.assertFalse(Payment.objects.exists())

    def test_amount_must_be_positive(self):
        for amount in ("0", "-5"):
            with self.assertRaises(BusinessValidationError):
                self.pay(amount)
        with self.assertRaises(BusinessValidationError):
            services.record_payment(self.po, None, "Cash", actor=self.manager)

    def test_unknown_method(self):
        with self.assertRaises(BusinessValidationError):
            self.pay("10", method="Barter")

    def test_method_details_required(self):
        with self.assertRaises(BusinessValidationError):
            self.pay("10", method="Cheque")
        with self.assertRaises(BusinessValidationError):
            self.pay("10", method="Mobile Money", details={"mobile_provider": "M-Pesa"})
        with self.assertRaises(BusinessValidationError):
            self.pay("10", method="Mobile Money", details={"mobile_provider": "Zap", "mobile_number": "1"})
        with self.assertRaises(BusinessValidationError):
            self.pay("10", method="Bank Transfer")

        cheque = self.pay("10", method="Cheque", details={"cheque_number": "000123"})
        mobile = self.pay(
            "10", method="Mobile Money", details={"mobile_provider": "Tigo Pesa", "mobile_number": "0711"}
        )
        self.assertEqual(cheque.method_details, "000123")
        self.assertEqual(mobile.method_details, "Tigo Pesa 0711")

    def test_explicit_payment_date(self):
        day = datetime.date(2025, 3, 1)
        payment = self.pay("10", details={"paid_on": day, "reference": "R1"})
        self.assertEqual(payment.paid_on, day)
        self.assertEqual(payment.reference, "R1")


class StatementTests(BasePaymentTestCase):
    def test_totals_skip_cancelled(self):
        cancelled = self.make_po("300")
        self.pay("100", po=cancelled)
        PurchaseOrderService.cancel(cancelled, "duplicate", actor=self.boss)
        self.pay("400")

        result = services.statement(self.supplier)

        self.assertEqual(len(result["purchase_orders"]), 2)
        self.assertEqual(len(result["payments"]), 2)
        self.assertEqual(
            result["totals"],
            {
                "ordered": Decimal("1000"),
                "paid": Decimal("400"),
                "outstanding": Decimal("600"),
                "po_count": 1,
                "payment_count": 1,
            },
        )

    def test_period_filter(self):
        self.pay("100", details={"paid_on": datetime.date(2024, 1, 10)})
        self.pay("100", details={"paid_on": datetime.date(2024, 2, 10)})
        result = services.statement(
            self.supplier, date_from=datetime.date(2024, 2, 1), date_to=datetime.date(2024, 2, 28)
        )
        self.assertEqual([p.paid_on for p in result["payments"]], [datetime.date(2024, 2, 10)])

    def test_inverted_period(self):
        with self.assertRaises(BusinessValidationError):
            services.statement(self.supplier, datetime.date(2024, 2, 1), datetime.date(2024, 1, 1))
