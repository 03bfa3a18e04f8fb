import json
from dataclasses import dataclass
from unittest import mock

from django.db import OperationalError, transaction
from django.test import RequestFactory, SimpleTestCase, TestCase

from core.api import api_view, failure, object_list, parse_decimal, parse_json, present_fields, success
from core.domain.dispatcher import DomainEventDispatcher
from core.domain.events import DomainEvent
from core.exceptions import Busy, BusinessValidationError, NotFound, OverPayment
from core.models import AuditLog, NumberingScheme
from core.services.audit import log_event
from core.services.locking import lock_row
from core.services.numbering import next_sequence_value
from suppliers.models import Supplier


class EnvelopeTests(SimpleTestCase):
    def test_success_shape(self):
        body = json.loads(success({"a": 1}).content)
        self.assertEqual(body, {"version": 1, "ok": True, "data": {"a": 1}, "error": None})

    def test_failure_shape(self):
        response = failure("busy", "Try again", status=503, retryable=True)
        body = json.loads(response.content)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(
            body,
            {
                "version": 1,
                "ok": False,
                "data": None,
                "error": {"kind": "busy", "message": "Try again", "details": {}, "retryable": True},
            },
        )

    def test_view_maps_domain_errors(self):
        @api_view(["POST"], auth=False)
        def view(request):
            raise OverPayment("too much", details={"balance_due": "10.00"})

        factory = RequestFactory()
        response = view(factory.post("/x"))
        body = json.loads(response.content)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(body["error"]["kind"], "over_payment")
        self.assertEqual(body["error"]["message"], "too much")
        self.assertEqual(body["error"]["details"], {"balance_due": "10.00"})

        response = view(factory.get("/x"))
        self.assertEqual(response.status_code, 405)

    def test_unexpected_errors_are_internal(self):
        @api_view(["GET"], auth=False)
        def view(request):
            raise RuntimeError("boom")

        with self.assertLogs("core.api", level="ERROR"):
            response = view(RequestFactory().get("/x"))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(json.loads(response.content)["error"]["kind"], "internal")

    def test_database_lock_errors_are_busy(self):
        @api_view(["POST"], auth=False)
        def view(request):
            raise OperationalError("database is locked")

        with self.assertLogs("core.api", level="WARNING"):
            response = view(RequestFactory().post("/x"))
        body = json.loads(response.content)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(body["error"]["kind"], "busy")
        self.assertTrue(body["error"]["retryable"])

    def test_other_operational_errors_stay_internal(self):
        @api_view(["POST"], auth=False)
        def view(request):
            raise OperationalError("no such table: x")

        with self.assertLogs("core.api", level="ERROR"):
            response = view(RequestFactory().post("/x"))
        self.assertEqual(response.status_code, 500)


class ParsingTests(SimpleTestCase):
    def test_parse_json(self):
        factory = RequestFactory()
        request = factory.post("/x", data="[1]", content_type="application/json")
        with self.assertRaises(BusinessValidationError):
            parse_json(request)
        request = factory.post("/x", data="{oops", content_type="application/json")
        with self.assertRaises(BusinessValidationError):
            parse_json(request)

    def test_object_list_rejects_non_objects_by_index(self):
        self.assertEqual(object_list({}, "items"), [])
        self.assertEqual(object_list({"items": [{"a": 1}]}, "items"), [{"a": 1}])
        with self.assertRaises(BusinessValidationError) as ctx:
            object_list({"items": [{"a": 1}, 7]}, "items")
        self.assertIn("items[1]", str(ctx.exception.get_message()))
        self.assertEqual(ctx.exception.get_details()["line"], 1)
        with self.assertRaises(BusinessValidationError):
            object_list({"items": {"a": 1}}, "items")

    def test_present_fields_renames_sent_keys_only(self):
        mapping = {"credit_limit": "creditLimit", "name": "name"}
        self.assertEqual(present_fields({"creditLimit": 5, "credit_limit": 9}, mapping), {"credit_limit": 5})

    def test_parse_decimal(self):
        with self.assertRaises(BusinessValidationError):
            parse_decimal("NaN", "amount")
        with self.assertRaises(BusinessValidationError):
            parse_decimal(True, "amount")
        self.assertIsNone(parse_decimal("", "amount", required=False))


class NumberingTests(TestCase):
    def test_sequences_are_independent(self):
        self.assertEqual(next_sequence_value("a"), 1)
        self.assertEqual(next_sequence_value("a"), 2)
        self.assertEqual(next_sequence_value("b"), 1)
        self.assertEqual(next_sequence_value("a", period="2030"), 1)

    def test_scheme_created_on_first_use(self):
        scheme = NumberingScheme.get_for_instance(Supplier(name="x"))
        self.assertEqual(scheme.model_label, "suppliers.Supplier")
        self.assertIn("{seq", scheme.pattern)


class LockingTests(TestCase):
    def test_requires_transaction(self):
        with mock.patch("core.services.locking.transaction.get_connection") as conn:
            conn.return_value.in_atomic_block = False
            with self.assertRaises(RuntimeError):
                lock_row(Supplier.objects.all(), pk=1)

    def test_missing_row(self):
        with transaction.atomic():
            with self.assertRaises(NotFound):
                lock_row(Supplier.objects.all(), pk=999999)

    def test_lock_timeout_becomes_busy(self):
        qs = mock.MagicMock()
        qs.model = Supplier
        qs.select_for_update.return_value.get.side_effect = OperationalError("database is locked")
        with transaction.atomic():
            with self.assertRaises(Busy) as ctx:
                lock_row(qs, pk=1)
        self.assertTrue(ctx.exception.retryable)


@dataclass(frozen=True, kw_only=True)
class SomethingHappened(DomainEvent):
    value: int


class DispatcherTests(SimpleTestCase):
    def test_handlers_run_in_order_and_failures_are_isolated(self):
        dispatcher = DomainEventDispatcher()
        seen = []

        @dispatcher.register_handler(SomethingHappened)
        def broken(event):
            raise ValueError("nope")

        @dispatcher.register_handler(SomethingHappened)
        def record(event):
            seen.append(event.value)

        with self.assertLogs("core.domain.dispatcher", level="ERROR"):
            dispatcher.emit(SomethingHappened(value=7))
        self.assertEqual(seen, [7])
        self.assertEqual(len(dispatcher.handlers_for(SomethingHappened)), 2)


class AuditTests(TestCase):
    def test_rejects_unknown_action(self):
        with self.assertRaises(ValueError):
            log_event(action="explode")

    def test_anonymous_actor_not_stored(self):
        entry = log_event(action=AuditLog.Action.OTHER, message="system", actor=None, extra={"n": 1})
        self.assertIsNone(entry.actor)
        self.assertEqual(entry.extra, {"n": 1})
