import uuid
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIClient

from common.exceptions import InsufficientInventory
from core.models import AuditLog, User, Vendor
from inventory import ledger, reservations
from inventory.models import InventoryRecord, InventoryReservation, Location, Product, StockMovement


class LedgerFixtureMixin:
    def setUp(self):
        self.vendor = Vendor.objects.create(code="V1", name="Vendor One")
        self.other_vendor = Vendor.objects.create(code="V2", name="Vendor Two")
        self.location = Location.objects.create(vendor=self.vendor, name="Main Warehouse")
        self.other_location = Location.objects.create(vendor=self.vendor, name="Overflow")
        self.product = Product.objects.create(vendor=self.vendor, sku="SKU-1", name="Widget")
        self.other_product = Product.objects.create(vendor=self.vendor, sku="SKU-2", name="Gadget")
        self.foreign_product = Product.objects.create(vendor=self.other_vendor, sku="SKU-X", name="Foreign")

    def stock(self, quantity, product=None, location=None):
        return ledger.adjust(
            (product or self.product).id,
            (location or self.location).id,
            quantity,
            movement_type=StockMovement.MovementType.ADJUSTMENT,
            reason="opening balance",
        )


class InventoryLedgerTests(LedgerFixtureMixin, TestCase):
    def test_first_positive_adjustment_creates_record(self):
        quantity = self.stock(30)

        self.assertEqual(quantity, 30)
        record = InventoryRecord.objects.get(product=self.product, location=self.location)
        self.assertEqual(record.quantity, 30)
        self.assertEqual(record.vendor_id, self.vendor.id)
        self.assertEqual(record.version, 1)

    def test_draw_down_without_record_is_insufficient(self):
        with self.assertRaises(InsufficientInventory) as ctx:
            self.stock(-1)

        self.assertEqual(ctx.exception.available, 0)
        self.assertEqual(ctx.exception.shortfall, 1)
        self.assertFalse(InventoryRecord.objects.exists())

    def test_adjust_never_goes_negative(self):
        self.stock(5)

        with self.assertRaises(InsufficientInventory) as ctx:
            self.stock(-8)

        self.assertEqual(ctx.exception.requested, 8)
        self.assertEqual(ctx.exception.available, 5)
        self.assertEqual(ctx.exception.shortfall, 3)
        self.assertEqual(ctx.exception.errors["product_id"], str(self.product.id))
        self.assertEqual(ledger.get_on_hand(self.product.id, self.location.id), 5)
        self.assertEqual(StockMovement.objects.count(), 1)

    def test_draw_down_to_exactly_zero_is_allowed(self):
        self.stock(5)

        self.assertEqual(self.stock(-5), 0)

    def test_zero_or_non_integer_delta_is_rejected(self):
        for delta in (0, 1.5, "3", True):
            with self.subTest(delta=delta), self.assertRaises(ValidationError):
                self.stock(delta)

    def test_delta_beyond_movement_limit_is_rejected(self):
        for delta in (ledger.MAX_DELTA + 1, -ledger.MAX_DELTA - 1, 3000000000):
            with self.subTest(delta=delta), self.assertRaises(ValidationError):
                self.stock(delta)

        self.assertFalse(InventoryRecord.objects.exists())

    def test_on_hand_cannot_exceed_column_ceiling(self):
        self.stock(1)
        InventoryRecord.objects.filter(product=self.product).update(quantity=ledger.MAX_ON_HAND - 5)

        with self.assertRaises(ValidationError):
            self.stock(10)

        self.assertEqual(ledger.get_on_hand(self.product.id, self.location.id), ledger.MAX_ON_HAND - 5)
        self.assertEqual(StockMovement.objects.count(), 1)
        self.assertEqual(self.stock(5), ledger.MAX_ON_HAND)

    def test_every_mutation_writes_a_movement_and_bumps_version(self):
        self.stock(10)
        self.stock(-4)
        self.stock(7)

        record = InventoryRecord.objects.get(product=self.product, location=self.location)
        movements = list(record.movements.all())
        self.assertEqual(record.quantity, 13)
        self.assertEqual(record.version, 3)
        self.assertEqual(sum(movement.quantity for movement in movements), record.quantity)
        self.assertEqual({(m.quantity_before, m.quantity_after) for m in movements}, {(0, 10), (10, 6), (6, 13)})

    def test_keys_are_independent(self):
        self.stock(10)
        self.stock(3, location=self.other_location)
        self.stock(8, product=self.other_product)

        self.assertEqual(ledger.get_on_hand(self.product.id, self.location.id), 10)
        self.assertEqual(ledger.get_on_hand(self.product.id, self.other_location.id), 3)
        self.assertEqual(ledger.get_on_hand(self.other_product.id, self.location.id), 8)

    def test_get_on_hand_defaults_to_zero(self):
        self.assertEqual(ledger.get_on_hand(self.product.id, self.location.id), 0)

    def test_record_cannot_mix_vendors(self):
        with self.assertRaises(ValidationError):
            self.stock(5, product=self.foreign_product)

    def test_unknown_location_is_not_found(self):
        with self.assertRaises(NotFound):
            ledger.adjust(self.product.id, uuid.uuid4(), 5, movement_type=StockMovement.MovementType.ADJUSTMENT)

    def test_manual_adjustment_requires_reason_and_ownership(self):
        with self.assertRaises(ValidationError):
            ledger.apply_manual_adjustment(
                vendor_id=self.vendor.id,
                product_id=self.product.id,
                location_id=self.location.id,
                delta=5,
                reason="  ",
            )
        with self.assertRaises(NotFound):
            ledger.apply_manual_adjustment(
                vendor_id=self.other_vendor.id,
                product_id=self.product.id,
                location_id=self.location.id,
                delta=5,
                reason="count",
            )

        quantity = ledger.apply_manual_adjustment(
            vendor_id=self.vendor.id,
            product_id=self.product.id,
            location_id=self.location.id,
            delta=5,
            reason="cycle count",
        )
        movement = StockMovement.objects.get()
        self.assertEqual(quantity, 5)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.ADJUSTMENT)
        self.assertEqual(movement.reason, "cycle count")


class ReservationTests(LedgerFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.po_id = uuid.uuid4()

    def _reserve(self, quantity, po_id=None):
        return reservations.reserve(
            po_id or self.po_id,
            self.vendor.id,
            [reservations.ReservationRequest(self.product.id, self.location.id, quantity)],
        )

    def test_reservations_may_exceed_on_hand(self):
        self.stock(5)

        self._reserve(10)

        self.assertEqual(ledger.get_on_hand(self.product.id, self.location.id), 5)
        self.assertEqual(reservations.get_available_to_promise(self.product.id, self.location.id), -5)

    def test_release_is_idempotent(self):
        self._reserve(4)

        self.assertEqual(reservations.release(self.po_id), 1)
        first_release = InventoryReservation.objects.get().released_at

        self.assertEqual(reservations.release(self.po_id), 0)
        reservation = InventoryReservation.objects.get()
        self.assertEqual(reservation.status, InventoryReservation.Status.RELEASED)
        self.assertEqual(reservation.released_at, first_release)

    def test_release_only_touches_its_purchase_order(self):
        other_po = uuid.uuid4()
        self._reserve(4)
        self._reserve(6, po_id=other_po)

        reservations.release(self.po_id)

        self.assertEqual(reservations.active_reserved_quantity(self.product.id, self.location.id), 6)
        self.assertEqual(reservations.active_reservations_for(other_po).count(), 1)

    def test_available_to_promise_counts_active_holds_only(self):
        self.stock(20)
        self._reserve(8)
        self._reserve(3, po_id=uuid.uuid4())
        reservations.release(self.po_id)

        self.assertEqual(reservations.get_available_to_promise(self.product.id, self.location.id), 17)


class InventoryApiTests(LedgerFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        user_model = get_user_model()
        self.manager = user_model.objects.create_user(username="manager", password="pass1234", vendor=self.vendor, role=User.Role.MANAGER)
        self.clerk = user_model.objects.create_user(username="clerk", password="pass1234", vendor=self.vendor, role=User.Role.CLERK)
        self.outsider = user_model.objects.create_user(username="outsider", password="pass1234", vendor=self.other_vendor, role=User.Role.MANAGER)

    def test_inventory_list_is_scoped_to_vendor(self):
        self.stock(12)
        self.client.force_authenticate(user=self.outsider)

        response = self.client.get("/api/v1/inventory/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 0)

    def test_inventory_list_filters_by_product(self):
        self.stock(12)
        self.stock(4, product=self.other_product)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get(f"/api/v1/inventory/?product={self.product.id}")

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["quantity"], 12)
        self.assertEqual(results[0]["product_sku"], "SKU-1")

    def test_available_to_promise_endpoint(self):
        self.stock(10)
        reservations.reserve(uuid.uuid4(), self.vendor.id, [reservations.ReservationRequest(self.product.id, self.location.id, 14)])
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get(
            "/api/v1/inventory/available-to-promise/",
            {"product": str(self.product.id), "location": str(self.location.id)},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["on_hand"], 10)
        self.assertEqual(response.json()["reserved"], 14)
        self.assertEqual(response.json()["available_to_promise"], -4)

    def test_available_to_promise_hides_other_vendor_products(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get(
            "/api/v1/inventory/available-to-promise/",
            {"product": str(self.foreign_product.id), "location": str(self.location.id)},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_manual_adjustment_writes_movement_and_audit_log(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/inventory/adjust/",
            {"product_id": str(self.product.id), "location_id": str(self.location.id), "delta": 9, "reason": "found in back room"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["quantity"], 9)
        self.assertEqual(StockMovement.objects.get().reason, "found in back room")
        audit = AuditLog.objects.get(action="stock.adjustment")
        self.assertEqual(audit.actor_id, self.manager.id)
        self.assertEqual(audit.after_snapshot["quantity"], 9)

    def test_manual_adjustment_below_zero_returns_insufficient_inventory(self):
        self.stock(2)
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/inventory/adjust/",
            {"product_id": str(self.product.id), "location_id": str(self.location.id), "delta": -5, "reason": "shrinkage"},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_inventory")
        self.assertEqual(payload["errors"]["shortfall"], 3)
        self.assertEqual(payload["errors"]["product_id"], str(self.product.id))
        self.assertEqual(ledger.get_on_hand(self.product.id, self.location.id), 2)
        self.assertFalse(AuditLog.objects.filter(action="stock.adjustment").exists())

    def test_manual_adjustment_rejects_oversized_delta(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/inventory/adjust/",
            {"product_id": str(self.product.id), "location_id": str(self.location.id), "delta": 3000000000, "reason": "typo"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("delta", response.json()["errors"])
        self.assertFalse(StockMovement.objects.exists())

    def test_clerk_cannot_adjust_stock(self):
        self.client.force_authenticate(user=self.clerk)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.post(
                "/api/v1/inventory/adjust/",
                {"product_id": str(self.product.id), "location_id": str(self.location.id), "delta": 1, "reason": "x"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_movement_history_lists_newest_first(self):
        self.stock(3)
        self.stock(-1)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/inventory/movements/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 2)


class ReconcileInventoryCommandTests(LedgerFixtureMixin, TestCase):
    def test_clean_ledger_passes(self):
        self.stock(10)
        out = StringIO()

        call_command("reconcile_inventory", stdout=out)

        self.assertIn("match their movement history", out.getvalue())

    def test_drift_is_reported(self):
        self.stock(10)
        InventoryRecord.objects.filter(product=self.product).update(quantity=12)

        with self.assertRaises(CommandError):
            call_command("reconcile_inventory", stdout=StringIO())

    def test_over_reservation_is_reported_without_failing(self):
        self.stock(2)
        reservations.reserve(uuid.uuid4(), self.vendor.id, [reservations.ReservationRequest(self.product.id, self.location.id, 5)])
        out = StringIO()

        call_command("reconcile_inventory", "--vendor-code", "V1", stdout=out)

        self.assertIn("over-reserved, available to promise -3", out.getvalue())
