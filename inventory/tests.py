import datetime
import json
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from accounts.roles import Role
from accounts.testing import auth_header, make_actor
from core.exceptions import (
    BusinessValidationError,
    Forbidden,
    InsufficientStock,
    InvalidCost,
    InvalidQuantity,
    ProductNotFound,
)
from core.models import AuditLog, Notification
from inventory import services
from inventory.models import Product, ProductCategory, StockLot


def _aware(year, month, day):
    return timezone.make_aware(datetime.datetime(year, month, day, 9, 0))


class BaseInventoryTestCase(TestCase):
    def setUp(self):
        self.boss = make_actor("boss", Role.BOSS)
        self.manager = make_actor("manager", Role.MANAGER)

        self.category = ProductCategory.objects.create(name="Building")
        self.cement = Product.objects.create(
            category=self.category,
            code="CEM",
            name="Cement",
            unit_of_measure="bag",
            min_stock_level=Decimal("10"),
        )
        self.nails = Product.objects.create(name="Nails")

    def add(self, product, qty, cost="1000", **kwargs):
        return services.add_lot(product, unit_cost=Decimal(cost), quantity=Decimal(qty), **kwargs)


# ============================================================
# add_lot
# ============================================================
class AddLotTests(BaseInventoryTestCase):
    def test_batch_numbers_are_per_product_and_sequential(self):
        first = self.add(self.cement, "5")
        second = self.add(self.cement, "5")
        other = self.add(self.nails, "5")

        self.assertEqual(first.batch_number, "LOT-CEM-00001")
        self.assertEqual(second.batch_number, "LOT-CEM-00002")
        self.assertEqual(other.batch_number, f"LOT-P{self.nails.pk:05d}-00001")
        self.assertEqual((first.sequence, second.sequence), (1, 2))

    def test_default_price_applies_markup(self):
        lot = self.add(self.cement, "1", cost="1000")
        self.assertEqual(lot.unit_price, Decimal("1300.00"))

        lot = self.add(self.cement, "1", cost="10.01")
        self.assertEqual(lot.unit_price, Decimal("13.01"))

    def test_explicit_price_is_kept(self):
        lot = self.add(self.cement, "1", cost="1000", unit_price="1500")
        self.assertEqual(lot.unit_price, Decimal("1500.00"))

    def test_initial_quantity_is_recorded(self):
        lot = self.add(self.cement, "12.5")
        self.assertEqual(lot.quantity, Decimal("12.500"))
        self.assertEqual(lot.initial_quantity, Decimal("12.500"))
        self.assertTrue(lot.is_active)

    def test_rejects_non_positive_cost(self):
        with self.assertRaises(InvalidCost):
            self.add(self.cement, "1", cost="0")
        with self.assertRaises(InvalidCost):
            self.add(self.cement, "1", cost="-5")
        self.assertFalse(StockLot.objects.exists())

    def test_rejects_non_positive_quantity(self):
        with self.assertRaises(InvalidQuantity):
            self.add(self.cement, "0")
        with self.assertRaises(InvalidQuantity):
            services.add_lot(self.cement, unit_cost=Decimal("1"), quantity="abc")

    def test_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            services.add_lot(999999, unit_cost=Decimal("1"), quantity=Decimal("1"))

    def test_audit_entry_written(self):
        lot = self.add(self.cement, "3", actor=self.manager)
        entry = AuditLog.objects.filter(action=AuditLog.Action.STOCK).latest("created_at")
        self.assertEqual(entry.extra["batch_number"], lot.batch_number)
        self.assertEqual(entry.actor, self.manager.user)
        self.assertEqual(lot.created_by, self.manager.user)


# ============================================================
# FIFO depletion
# ============================================================
class DepletionTests(BaseInventoryTestCase):
    def test_consumes_oldest_lot_first(self):
        # created out of order on purpose: acquisition date decides
        lot_b = self.add(self.cement, "5", cost="20", date_acquired=_aware(2024, 2, 1))
        lot_a = self.add(self.cement, "5", cost="10", date_acquired=_aware(2024, 1, 1))

        allocations = services.deplete_for_sale(self.cement, Decimal("7"))

        self.assertEqual(
            [(a.lot_id, a.quantity, a.unit_cost) for a in allocations],
            [(lot_a.pk, Decimal("5.000"), Decimal("10.00")), (lot_b.pk, Decimal("2.000"), Decimal("20.00"))],
        )
        lot_a.refresh_from_db()
        lot_b.refresh_from_db()
        self.assertEqual(lot_a.quantity, Decimal("0"))
        self.assertFalse(lot_a.is_active)
        self.assertIsNotNone(lot_a.deactivated_at)
        self.assertEqual(lot_b.quantity, Decimal("3"))
        self.assertTrue(lot_b.is_active)

    def test_same_date_uses_sequence(self):
        when = _aware(2024, 3, 1)
        first = self.add(self.cement, "2", date_acquired=when)
        self.add(self.cement, "2", date_acquired=when)

        allocations = services.deplete_for_sale(self.cement, Decimal("1"))
        self.assertEqual(allocations[0].lot_id, first.pk)

    def test_insufficient_stock_leaves_lots_untouched(self):
        lot = self.add(self.cement, "5")

        with self.assertRaises(InsufficientStock) as ctx:
            services.deplete_for_sale(self.cement, Decimal("6"))

        self.assertEqual(ctx.exception.get_details()["available"], "5.000")
        lot.refresh_from_db()
        self.assertEqual(lot.quantity, Decimal("5"))
        self.assertTrue(lot.is_active)

    def test_expired_active_lot_is_still_sellable(self):
        self.add(self.nails, "4", expiry_date=timezone.localdate() - datetime.timedelta(days=3))
        allocations = services.deplete_for_sale(self.nails, Decimal("4"))
        self.assertEqual(sum(a.quantity for a in allocations), Decimal("4"))

    def test_total_stock_matches_active_lots(self):
        self.add(self.cement, "10")
        self.add(self.cement, "7.5")
        services.deplete_for_sale(self.cement, Decimal("12"))
        self.add(self.cement, "1")
        services.deplete_for_sale(self.cement, Decimal("0.5"))

        expected = sum(
            StockLot.objects.filter(product=self.cement, is_active=True).values_list("quantity", flat=True),
            Decimal("0"),
        )
        self.assertEqual(services.total_stock(self.cement), expected)
        self.assertEqual(expected, Decimal("6.000"))

    def test_low_stock_notifies_bosses_after_commit(self):
        self.add(self.cement, "12")

        with self.captureOnCommitCallbacks(execute=True):
            services.deplete_for_sale(self.cement, Decimal("5"))

        notes = Notification.objects.filter(recipient=self.boss.user)
        self.assertEqual(notes.count(), 1)
        self.assertEqual(notes.get().level, Notification.Levels.WARNING)
        self.assertFalse(Notification.objects.filter(recipient=self.manager.user).exists())

    def test_no_notification_when_already_low(self):
        self.add(self.cement, "5")
        with self.captureOnCommitCallbacks(execute=True):
            services.deplete_for_sale(self.cement, Decimal("1"))
        self.assertFalse(Notification.objects.exists())


# ============================================================
# Derived views
# ============================================================
class AggregatorTests(BaseInventoryTestCase):
    def test_selling_price_from_newest_active_lot(self):
        self.add(self.cement, "1", cost="100", date_acquired=_aware(2024, 1, 1))
        self.add(self.cement, "1", cost="200", date_acquired=_aware(2024, 5, 1))
        self.assertEqual(services.current_selling_price(self.cement), Decimal("260.00"))

    def test_selling_price_falls_back_to_last_known(self):
        self.add(self.cement, "1", cost="100")
        services.deplete_for_sale(self.cement, Decimal("1"))
        self.assertEqual(services.current_selling_price(self.cement), Decimal("130.00"))

    def test_selling_price_fallback_without_lots(self):
        self.assertEqual(services.current_selling_price(self.nails), Decimal("0.00"))

    def test_low_stock_flag(self):
        self.add(self.cement, "9")
        self.assertTrue(services.is_low_stock(self.cement))
        self.add(self.cement, "1")
        self.assertFalse(self.cement.is_low_stock)

    def test_with_stock_annotation(self):
        self.add(self.cement, "4")
        self.add(self.cement, "6")
        product = Product.objects.with_stock().get(pk=self.cement.pk)
        self.assertEqual(product.total_stock_qty, Decimal("10"))
        self.assertFalse(Product.objects.low_stock().filter(pk=self.cement.pk).exists())

    def test_inventory_summary(self):
        self.add(self.cement, "4")
        summary = services.inventory_summary()
        self.assertEqual(summary["total_products"], 2)
        self.assertEqual(summary["total_quantity_in_stock"], Decimal("4"))
        self.assertEqual(summary["low_stock_items"], 1)
        self.assertEqual(summary["low_stock_products"][0]["id"], self.cement.pk)


# ============================================================
# Batch queries
# ============================================================
class BatchQueryTests(BaseInventoryTestCase):
    def setUp(self):
        super().setUp()
        today = timezone.localdate()
        self.fresh = self.add(self.cement, "5", expiry_date=today + datetime.timedelta(days=10))
        self.expired = self.add(self.cement, "5", expiry_date=today - datetime.timedelta(days=1))
        self.sold = self.add(self.cement, "1", date_acquired=_aware(2020, 1, 1))
        services.deplete_for_sale(self.cement, Decimal("1"))

    def ids(self, qs):
        return {lot.pk for lot in qs}

    def test_status_filters(self):
        self.assertEqual(self.ids(services.query_batches(self.cement, "all")), {self.fresh.pk, self.expired.pk, self.sold.pk})
        self.assertEqual(self.ids(services.query_batches(self.cement, "active")), {self.fresh.pk})
        self.assertEqual(self.ids(services.query_batches(self.cement, "expired")), {self.expired.pk})
        self.assertEqual(self.ids(services.query_batches(self.cement, "inactive")), {self.sold.pk})

    def test_unknown_status(self):
        with self.assertRaises(BusinessValidationError):
            services.query_batches(self.cement, "archived")

    def test_search_by_product_name_and_batch(self):
        self.add(self.nails, "3")
        self.assertEqual(
            self.ids(services.search_batches(product_name="ceme")),
            {self.fresh.pk, self.expired.pk, self.sold.pk},
        )
        self.assertEqual(self.ids(services.search_batches(batch_number="cem-00001")), {self.fresh.pk})

    def test_search_by_expiry_window(self):
        today = timezone.localdate()
        self.assertEqual(self.ids(services.search_batches(expiry_before=today)), {self.expired.pk})
        self.assertEqual(self.ids(services.search_batches(expiry_after=today)), {self.fresh.pk})

    def test_expiring_window(self):
        self.assertEqual(self.ids(services.expiring_batches(30)), {self.fresh.pk})
        self.assertEqual(self.ids(services.expiring_batches(5)), set())


# ============================================================
# Reconciliation
# ============================================================
class AdjustmentTests(BaseInventoryTestCase):
    def test_manager_cannot_adjust(self):
        lot = self.add(self.cement, "5")
        with self.assertRaises(Forbidden):
            services.adjust_lot(lot, new_quantity=Decimal("4"), reason="count", actor=self.manager)

    def test_boss_adjusts_and_deactivates_at_zero(self):
        lot = self.add(self.cement, "5")
        lot = services.adjust_lot(lot, new_quantity=Decimal("0"), reason="damaged", actor=self.boss)
        self.assertFalse(lot.is_active)

        lot = services.adjust_lot(lot, new_quantity=Decimal("2"), reason="found two", actor=self.boss)
        self.assertTrue(lot.is_active)
        self.assertEqual(services.total_stock(self.cement), Decimal("2"))

        entry = AuditLog.objects.filter(action=AuditLog.Action.ADJUSTMENT).latest("created_at")
        self.assertEqual(entry.extra, {"before": "0.000", "after": "2.000", "reason": "found two"})

    def test_adjust_bounds_and_reason(self):
        lot = self.add(self.cement, "5")
        with self.assertRaises(InvalidQuantity):
            services.adjust_lot(lot, new_quantity=Decimal("6"), reason="x", actor=self.boss)
        with self.assertRaises(BusinessValidationError):
            services.adjust_lot(lot, new_quantity=Decimal("3"), reason=" ", actor=self.boss)

    def test_retire_lot(self):
        lot = self.add(self.cement, "5")
        lot = services.retire_lot(lot, reason="recalled", actor=self.boss)
        self.assertFalse(lot.is_active)
        self.assertEqual(lot.quantity, Decimal("5"))
        self.assertEqual(services.total_stock(self.cement), Decimal("0"))


# ============================================================
# Master data
# ============================================================
class ProductServiceTests(BaseInventoryTestCase):
    def test_create_product_rejects_duplicate_code(self):
        with self.assertRaises(BusinessValidationError):
            services.create_product({"name": "Other", "code": "CEM"}, actor=self.manager)

    def test_manager_cannot_delete(self):
        with self.assertRaises(Forbidden):
            services.deactivate_product(self.cement, actor=self.manager)

    def test_delete_with_lots_only_deactivates(self):
        self.add(self.cement, "1")
        product = services.deactivate_product(self.cement, actor=self.boss)
        self.assertFalse(product.is_active)
        self.assertFalse(product.is_deleted)

    def test_delete_without_lots_soft_deletes(self):
        services.deactivate_product(self.nails, actor=self.boss)
        self.assertFalse(Product.objects.filter(pk=self.nails.pk).exists())
        self.assertTrue(Product.all_objects.filter(pk=self.nails.pk, is_deleted=True).exists())


# ============================================================
# HTTP boundary
# ============================================================
class InventoryApiTests(BaseInventoryTestCase):
    def test_requires_token(self):
        response = self.client.get(reverse("inventory:product_collection"))
        self.assertEqual(response.status_code, 401)
        body = response.json()
        self.assertEqual(body["version"], 1)
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"]["kind"], "not_authenticated")

    def test_add_stock_and_list_batches(self):
        headers = auth_header(self.manager)
        response = self.client.post(
            reverse("inventory:add_stock", args=[self.cement.pk]),
            data=json.dumps({"unitCost": "1000", "quantity": "60", "expiryDate": "2030-01-01"}),
            content_type="application/json",
            **headers,
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["batchNumber"], "LOT-CEM-00001")
        self.assertEqual(data["unitPrice"], "1300.00")

        response = self.client.get(
            reverse("inventory:product_batches", args=[self.cement.pk]) + "?status=active",
            **headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["data"]), 1)

        response = self.client.get(reverse("inventory:product_detail", args=[self.cement.pk]), **headers)
        self.assertEqual(Decimal(response.json()["data"]["totalStock"]), Decimal("60"))

    def test_add_stock_invalid_cost_is_400(self):
        response = self.client.post(
            reverse("inventory:add_stock", args=[self.cement.pk]),
            data=json.dumps({"unitCost": "0", "quantity": "1"}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["kind"], "validation_error")

    def test_unknown_product_is_404(self):
        response = self.client.get(reverse("inventory:product_detail", args=[999999]), **auth_header(self.boss))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["kind"], "not_found")

    def test_manager_adjust_is_403(self):
        lot = self.add(self.cement, "5")
        response = self.client.put(
            reverse("inventory:batch_adjust", args=[lot.pk]),
            data=json.dumps({"quantity": "1", "reason": "count"}),
            content_type="application/json",
            **auth_header(self.manager),
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["kind"], "forbidden")

    def test_method_not_allowed(self):
        response = self.client.delete(reverse("inventory:batch_search"), **auth_header(self.boss))
        self.assertEqual(response.status_code, 405)
