import threading
import uuid
from decimal import Decimal
from unittest import skipUnless

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from common.exceptions import ConcurrencyConflict, InsufficientInventory, InvalidTransition
from core.models import AuditLog, User, Vendor
from inventory import ledger
from inventory.models import InventoryRecord, InventoryReservation, Location, Product, StockMovement
from purchasing import payments, services, settlement
from purchasing.models import PurchaseOrder, PurchaseOrderPayment, Supplier, WholesaleCustomer
from purchasing.state_machine import ALLOWED_TRANSITIONS, TERMINAL_STATES

Status = PurchaseOrder.Status


class PurchasingFixtureMixin:
    def setUp(self):
        self.vendor = Vendor.objects.create(code="V1", name="Vendor One")
        self.other_vendor = Vendor.objects.create(code="V2", name="Vendor Two")
        self.location = Location.objects.create(vendor=self.vendor, name="Main Warehouse")
        self.product_x = Product.objects.create(vendor=self.vendor, sku="X", name="Product X")
        self.product_y = Product.objects.create(vendor=self.vendor, sku="Y", name="Product Y")
        self.product_z = Product.objects.create(vendor=self.vendor, sku="Z", name="Product Z")
        self.supplier = Supplier.objects.create(vendor=self.vendor, external_name="Acme Farms")
        self.customer = WholesaleCustomer.objects.create(
            vendor=self.vendor,
            external_company_name="Corner Shop",
            pricing_tier=WholesaleCustomer.PricingTier.DISTRIBUTOR,
            discount_percent=Decimal("10.00"),
        )

    def stock(self, product, quantity):
        ledger.adjust(product.id, self.location.id, quantity, movement_type=StockMovement.MovementType.ADJUSTMENT, reason="seed")

    def on_hand(self, product):
        return ledger.get_on_hand(product.id, self.location.id)

    def create_po(self, po_type, lines, **kwargs):
        counterparty = self.supplier if po_type == PurchaseOrder.Type.INBOUND else self.customer
        return services.create_purchase_order(
            vendor_id=kwargs.pop("vendor_id", self.vendor.id),
            po_type=po_type,
            counterparty_id=kwargs.pop("counterparty_id", counterparty.id),
            location_id=kwargs.pop("location_id", self.location.id),
            items=[{"product_id": product.id, "quantity": quantity, "unit_price": price} for product, quantity, price in lines],
            **kwargs,
        )

    def inbound(self, lines, **kwargs):
        return self.create_po(PurchaseOrder.Type.INBOUND, lines, **kwargs)

    def outbound(self, lines, **kwargs):
        return self.create_po(PurchaseOrder.Type.OUTBOUND, lines, **kwargs)


class TransitionTableTests(TestCase):
    def test_terminal_states_have_no_exits(self):
        self.assertEqual(TERMINAL_STATES, {Status.RECEIVED, Status.FULFILLED, Status.DELIVERED, Status.CANCELLED})

    def test_no_edge_moves_backwards(self):
        order = [Status.DRAFT, Status.SENT, Status.CONFIRMED, Status.IN_TRANSIT]
        for source, targets in ALLOWED_TRANSITIONS.items():
            if source not in order:
                continue
            for target in targets:
                if target in order:
                    self.assertGreater(order.index(target), order.index(source), f"{source} -> {target}")


class PurchaseOrderCreationTests(PurchasingFixtureMixin, TestCase):
    def test_numbers_are_sequential_per_vendor_and_type(self):
        first = self.inbound([(self.product_x, 1, "1.00")])
        second = self.inbound([(self.product_x, 1, "1.00")])
        outbound = self.outbound([(self.product_x, 1, "1.00")])

        self.assertEqual(first.po_number, "IN-PO-00001")
        self.assertEqual(second.po_number, "IN-PO-00002")
        self.assertEqual(outbound.po_number, "OUT-PO-00001")

    def test_numbering_is_independent_between_vendors(self):
        self.inbound([(self.product_x, 1, "1.00")])
        other_location = Location.objects.create(vendor=self.other_vendor, name="Depot")
        other_product = Product.objects.create(vendor=self.other_vendor, sku="X", name="Other X")
        other_supplier = Supplier.objects.create(vendor=self.other_vendor, supplier_vendor=self.vendor)

        po = services.create_purchase_order(
            vendor_id=self.other_vendor.id,
            po_type=PurchaseOrder.Type.INBOUND,
            counterparty_id=other_supplier.id,
            location_id=other_location.id,
            items=[{"product_id": other_product.id, "quantity": 2, "unit_price": "3.00"}],
        )

        self.assertEqual(po.po_number, "IN-PO-00001")

    @override_settings(PO_NUMBER_PADDING=3)
    def test_padding_is_configurable(self):
        self.assertEqual(self.inbound([(self.product_x, 1, "1.00")]).po_number, "IN-PO-001")

    def test_failed_creation_does_not_consume_a_number(self):
        with self.assertRaises(ValidationError):
            self.inbound([(self.product_x, 0, "1.00")])

        self.assertEqual(self.inbound([(self.product_x, 1, "1.00")]).po_number, "IN-PO-00001")

    def test_totals_are_derived_from_items(self):
        po = self.inbound(
            [(self.product_x, 30, "500.00"), (self.product_y, 3, "2.335")],
            tax="12.50",
            shipping="40",
        )

        po.refresh_from_db()
        self.assertEqual(po.status, Status.DRAFT)
        self.assertEqual(po.subtotal, Decimal("15007.02"))
        self.assertEqual(po.total, Decimal("15059.52"))
        self.assertEqual(sorted(item.line_total for item in po.items.all()), [Decimal("7.02"), Decimal("15000.00")])
        self.assertEqual(po.items.get(product=self.product_y).unit_price, Decimal("2.34"))

    def test_line_total_beyond_money_precision_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 100000, "99999999.99")])

        self.assertIn("line_total", ctx.exception.detail["items"][0])
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_quantity_above_line_limit_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 3000000000, "1.00")])

        self.assertIn("quantity", ctx.exception.detail["items"][0])

    def test_order_total_beyond_money_precision_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 1000000, "6000.00"), (self.product_y, 1000000, "6000.00")])
        self.assertIn("subtotal", ctx.exception.detail)

        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 1000000, "9999.99")], tax="10000.00")
        self.assertIn("total", ctx.exception.detail)

        self.assertFalse(PurchaseOrder.objects.exists())
        self.assertEqual(self.inbound([(self.product_x, 1, "1.00")]).po_number, "IN-PO-00001")

    def test_outbound_creation_places_one_hold_per_item(self):
        po = self.outbound([(self.product_x, 4, "9.00"), (self.product_y, 6, "9.00")])

        holds = InventoryReservation.objects.filter(reference_id=po.id)
        self.assertEqual(holds.count(), 2)
        self.assertTrue(all(hold.status == InventoryReservation.Status.ACTIVE for hold in holds))
        self.assertEqual({hold.item.product_id: hold.quantity for hold in holds}, {self.product_x.id: 4, self.product_y.id: 6})

    def test_inbound_creation_places_no_holds(self):
        po = self.inbound([(self.product_x, 4, "9.00")])

        self.assertFalse(InventoryReservation.objects.filter(reference_id=po.id).exists())

    def test_creation_is_audited(self):
        po = self.inbound([(self.product_x, 4, "9.00")], request_id="req-1")

        audit = AuditLog.objects.get(action="purchase_order.create", entity_id=po.id)
        self.assertEqual(audit.request_id, "req-1")
        self.assertEqual(audit.after_snapshot["po_number"], "IN-PO-00001")

    def test_rejects_empty_items(self):
        with self.assertRaises(ValidationError):
            self.inbound([])

    def test_rejects_missing_counterparty(self):
        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 1, "1.00")], counterparty_id=None)

        self.assertIn("counterparty_id", ctx.exception.detail)

    def test_rejects_counterparty_of_the_wrong_kind(self):
        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 1, "1.00")], counterparty_id=self.customer.id)

        self.assertIn("need a supplier", str(ctx.exception.detail["counterparty_id"]))

    def test_rejects_products_of_another_vendor(self):
        foreign = Product.objects.create(vendor=self.other_vendor, sku="F", name="Foreign")

        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 1, "1.00"), (foreign, 1, "1.00")])

        item_errors = ctx.exception.detail["items"]
        self.assertEqual(item_errors[0], {})
        self.assertIn("product_id", item_errors[1])

    def test_rejects_duplicate_products_and_bad_lines(self):
        with self.assertRaises(ValidationError) as ctx:
            self.inbound([(self.product_x, 1, "1.00"), (self.product_x, 2, "1.00"), (self.product_y, 1, "-1")])

        item_errors = ctx.exception.detail["items"]
        self.assertIn("product_id", item_errors[1])
        self.assertIn("unit_price", item_errors[2])
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_rejects_inactive_location(self):
        self.location.is_active = False
        self.location.save()

        with self.assertRaises(ValidationError):
            self.inbound([(self.product_x, 1, "1.00")])


class DraftEditingTests(PurchasingFixtureMixin, TestCase):
    def test_replacing_items_recomputes_totals(self):
        po = self.inbound([(self.product_x, 2, "10.00")], shipping="5.00")

        po = services.update_draft_items(po.id, [{"product_id": self.product_y.id, "quantity": 3, "unit_price": "4.00"}], tax="1.00")

        po.refresh_from_db()
        self.assertEqual([item.product_id for item in po.items.all()], [self.product_y.id])
        self.assertEqual(po.subtotal, Decimal("12.00"))
        self.assertEqual(po.total, Decimal("18.00"))

    def test_replacing_outbound_items_moves_the_holds(self):
        po = self.outbound([(self.product_x, 2, "10.00")])

        services.update_draft_items(po.id, [{"product_id": self.product_y.id, "quantity": 7, "unit_price": "1.00"}])

        active = InventoryReservation.objects.filter(reference_id=po.id, status=InventoryReservation.Status.ACTIVE)
        released = InventoryReservation.objects.filter(reference_id=po.id, status=InventoryReservation.Status.RELEASED)
        self.assertEqual([(hold.product_id, hold.quantity) for hold in active], [(self.product_y.id, 7)])
        self.assertEqual([hold.product_id for hold in released], [self.product_x.id])

    def test_items_are_frozen_after_draft(self):
        po = self.inbound([(self.product_x, 2, "10.00")])
        services.transition(po.id, Status.SENT)

        with self.assertRaises(InvalidTransition):
            services.update_draft_items(po.id, [{"product_id": self.product_y.id, "quantity": 1, "unit_price": "1.00"}])

    def test_replacement_items_must_fit_the_order_total(self):
        po = self.inbound([(self.product_x, 2, "10.00")], shipping="5.00")

        with self.assertRaises(ValidationError) as ctx:
            services.update_draft_items(
                po.id,
                [{"product_id": self.product_y.id, "quantity": 1000000, "unit_price": "9999.99"}],
                tax="10000.00",
            )

        self.assertIn("total", ctx.exception.detail)
        po.refresh_from_db()
        self.assertEqual(po.subtotal, Decimal("20.00"))
        self.assertEqual([item.product_id for item in po.items.all()], [self.product_x.id])


class TransitionTests(PurchasingFixtureMixin, TestCase):
    def test_forward_moves_stamp_timestamps(self):
        po = self.inbound([(self.product_x, 1, "1.00")])

        po = services.transition(po.id, Status.SENT)
        po = services.transition(po.id, Status.IN_TRANSIT)

        self.assertEqual(po.status, Status.IN_TRANSIT)
        self.assertIsNotNone(po.sent_at)
        self.assertIsNotNone(po.shipped_at)
        self.assertIsNone(po.confirmed_at)

    def test_backward_move_is_rejected(self):
        po = self.inbound([(self.product_x, 1, "1.00")])
        services.transition(po.id, Status.CONFIRMED)

        with self.assertRaises(InvalidTransition) as ctx:
            services.transition(po.id, Status.SENT)

        self.assertEqual(ctx.exception.errors["from_status"], Status.CONFIRMED)
        self.assertEqual(ctx.exception.errors["to_status"], Status.SENT)

    def test_unknown_status_is_rejected(self):
        po = self.inbound([(self.product_x, 1, "1.00")])

        with self.assertRaises(InvalidTransition):
            services.transition(po.id, "shipped")

    def test_leaving_draft_requires_items(self):
        po = self.inbound([(self.product_x, 1, "1.00")])
        po.items.all().delete()

        with self.assertRaises(InvalidTransition):
            services.transition(po.id, Status.SENT)

    def test_inbound_cannot_reach_fulfilled(self):
        po = self.inbound([(self.product_x, 1, "1.00")])

        with self.assertRaises(InvalidTransition):
            services.transition(po.id, Status.FULFILLED)

    def test_outbound_cannot_reach_received(self):
        po = self.outbound([(self.product_x, 1, "1.00")])

        with self.assertRaises(InvalidTransition):
            services.transition(po.id, Status.RECEIVED)


class SettlementTests(PurchasingFixtureMixin, TestCase):
    def test_scenario_a_inbound_received_from_draft(self):
        po = self.inbound([(self.product_x, 30, "500")])
        before = self.on_hand(self.product_x)

        po = services.transition(po.id, Status.RECEIVED)

        self.assertEqual(po.status, Status.RECEIVED)
        self.assertIsNotNone(po.received_at)
        self.assertEqual(self.on_hand(self.product_x), before + 30)
        self.assertEqual(po.items.get().quantity_received, 30)
        movement = StockMovement.objects.get(reference_id=po.id)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.PURCHASE_RECEIPT)
        self.assertEqual(movement.reason, po.po_number)

    def test_receive_that_would_overflow_on_hand_is_rejected(self):
        self.stock(self.product_x, 1)
        InventoryRecord.objects.filter(product=self.product_x).update(quantity=ledger.MAX_ON_HAND - 5)
        po = self.inbound([(self.product_x, 10, "1.00")])

        with self.assertRaises(ValidationError):
            settlement.receive(po.id)

        po.refresh_from_db()
        self.assertEqual(po.status, Status.DRAFT)
        self.assertEqual(self.on_hand(self.product_x), ledger.MAX_ON_HAND - 5)
        self.assertEqual(po.items.get().quantity_received, 0)

    def test_scenario_b_insufficient_stock_leaves_everything_untouched(self):
        self.stock(self.product_x, 5)
        po = self.outbound([(self.product_x, 10, "20.00")])
        services.transition(po.id, Status.CONFIRMED)

        with self.assertRaises(InsufficientInventory) as ctx:
            settlement.fulfill(po.id)

        self.assertEqual(ctx.exception.shortfall, 5)
        po.refresh_from_db()
        self.assertEqual(po.status, Status.CONFIRMED)
        self.assertEqual(self.on_hand(self.product_x), 5)
        self.assertEqual(po.items.get().quantity_fulfilled, 0)
        self.assertEqual(InventoryReservation.objects.get(reference_id=po.id).status, InventoryReservation.Status.ACTIVE)

    def test_scenario_c_fulfillment_deducts_and_releases(self):
        self.stock(self.product_x, 20)
        po = self.outbound([(self.product_x, 10, "20.00")])

        po = settlement.fulfill(po.id)

        self.assertEqual(po.status, Status.FULFILLED)
        self.assertEqual(self.on_hand(self.product_x), 10)
        self.assertEqual(po.items.get().quantity_fulfilled, 10)
        hold = InventoryReservation.objects.get(reference_id=po.id)
        self.assertEqual(hold.status, InventoryReservation.Status.RELEASED)
        self.assertIsNotNone(hold.released_at)

    def test_delivered_settles_like_the_type_terminal(self):
        self.stock(self.product_x, 8)
        outbound = self.outbound([(self.product_x, 3, "1.00")])
        inbound = self.inbound([(self.product_y, 4, "1.00")])

        services.transition(outbound.id, Status.DELIVERED)
        services.transition(inbound.id, Status.DELIVERED)

        self.assertEqual(self.on_hand(self.product_x), 5)
        self.assertEqual(self.on_hand(self.product_y), 4)
        outbound.refresh_from_db()
        self.assertEqual(outbound.status, Status.DELIVERED)
        self.assertIsNotNone(outbound.delivered_at)

    def test_multi_item_fulfillment_is_all_or_nothing(self):
        self.stock(self.product_x, 10)
        self.stock(self.product_y, 1)
        self.stock(self.product_z, 10)
        po = self.outbound([(self.product_x, 5, "1.00"), (self.product_y, 5, "1.00"), (self.product_z, 5, "1.00")])

        with self.assertRaises(InsufficientInventory) as ctx:
            services.transition(po.id, Status.FULFILLED)

        self.assertEqual(ctx.exception.product_id, self.product_y.id)
        self.assertEqual([self.on_hand(p) for p in (self.product_x, self.product_y, self.product_z)], [10, 1, 10])
        po.refresh_from_db()
        self.assertEqual(po.status, Status.DRAFT)
        self.assertFalse(po.items.filter(quantity_fulfilled__gt=0).exists())
        self.assertEqual(InventoryReservation.objects.filter(reference_id=po.id, status=InventoryReservation.Status.ACTIVE).count(), 3)
        self.assertFalse(StockMovement.objects.filter(reference_id=po.id).exists())

    def test_inactive_product_aborts_receipt(self):
        po = self.inbound([(self.product_x, 5, "1.00"), (self.product_y, 5, "1.00"), (self.product_z, 5, "1.00")])
        Product.objects.filter(id=self.product_y.id).update(is_active=False)

        with self.assertRaises(ValidationError):
            settlement.receive(po.id)

        self.assertFalse(InventoryRecord.objects.exists())
        po.refresh_from_db()
        self.assertEqual(po.status, Status.DRAFT)

    def test_settling_twice_is_rejected(self):
        po = self.inbound([(self.product_x, 5, "1.00")])
        settlement.receive(po.id)

        with self.assertRaises(InvalidTransition):
            settlement.receive(po.id)

        self.assertEqual(self.on_hand(self.product_x), 5)

    def test_wrong_type_is_rejected(self):
        po = self.inbound([(self.product_x, 5, "1.00")])

        with self.assertRaises(InvalidTransition):
            settlement.fulfill(po.id)

    def test_settlement_is_audited(self):
        po = self.inbound([(self.product_x, 5, "1.00")])

        settlement.receive(po.id)

        audit = AuditLog.objects.get(action="purchase_order.settle", entity_id=po.id)
        self.assertEqual(audit.before_snapshot["status"], Status.DRAFT)
        self.assertEqual(audit.after_snapshot["status"], Status.RECEIVED)


class CancellationTests(PurchasingFixtureMixin, TestCase):
    def test_cancel_releases_holds_once(self):
        po = self.outbound([(self.product_x, 3, "1.00")])
        services.transition(po.id, Status.SENT)

        po = services.cancel(po.id)
        released_at = InventoryReservation.objects.get(reference_id=po.id).released_at
        again = services.cancel(po.id)

        self.assertEqual(again.status, Status.CANCELLED)
        self.assertIsNotNone(po.cancelled_at)
        hold = InventoryReservation.objects.get(reference_id=po.id)
        self.assertEqual(hold.status, InventoryReservation.Status.RELEASED)
        self.assertEqual(hold.released_at, released_at)

    def test_cancelled_draft_keeps_header_and_items_until_deleted(self):
        po = self.outbound([(self.product_x, 3, "1.00"), (self.product_y, 2, "1.00")])

        services.cancel(po.id)
        services.cancel(po.id)

        po.refresh_from_db()
        self.assertEqual(po.status, Status.CANCELLED)
        self.assertEqual(po.items.count(), 2)
        holds = InventoryReservation.objects.filter(reference_id=po.id)
        self.assertEqual({hold.status for hold in holds}, {InventoryReservation.Status.RELEASED})

        services.delete_draft(po.id)

        self.assertFalse(PurchaseOrder.objects.filter(id=po.id).exists())
        self.assertFalse(InventoryReservation.objects.filter(reference_id=po.id).exists())

    def test_fulfill_after_cancel_is_rejected_without_touching_stock(self):
        self.stock(self.product_x, 10)
        po = self.outbound([(self.product_x, 3, "1.00")])
        services.cancel(po.id)

        with self.assertRaises(InvalidTransition):
            settlement.fulfill(po.id)

        self.assertEqual(self.on_hand(self.product_x), 10)

    def test_cancelling_a_settled_order_is_rejected(self):
        po = self.inbound([(self.product_x, 3, "1.00")])
        settlement.receive(po.id)

        with self.assertRaises(InvalidTransition):
            services.cancel(po.id)

    def test_transition_to_cancelled_uses_cancel(self):
        po = self.outbound([(self.product_x, 3, "1.00")])

        po = services.transition(po.id, Status.CANCELLED)

        self.assertEqual(po.status, Status.CANCELLED)
        self.assertFalse(InventoryReservation.objects.filter(reference_id=po.id, status=InventoryReservation.Status.ACTIVE).exists())


class DeleteDraftTests(PurchasingFixtureMixin, TestCase):
    def test_draft_is_deleted_with_items_and_holds(self):
        po = self.outbound([(self.product_x, 3, "1.00")])

        services.delete_draft(po.id)

        self.assertFalse(PurchaseOrder.objects.filter(id=po.id).exists())
        self.assertFalse(InventoryReservation.objects.filter(reference_id=po.id).exists())
        self.assertTrue(AuditLog.objects.filter(action="purchase_order.delete", entity_id=po.id).exists())

    def test_cancelled_draft_can_be_deleted(self):
        po = self.inbound([(self.product_x, 3, "1.00")])
        services.cancel(po.id)

        services.delete_draft(po.id)

        self.assertFalse(PurchaseOrder.objects.filter(id=po.id).exists())

    def test_sent_order_cannot_be_deleted(self):
        po = self.inbound([(self.product_x, 3, "1.00")])
        services.transition(po.id, Status.SENT)
        services.cancel(po.id)

        with self.assertRaises(InvalidTransition):
            services.delete_draft(po.id)

    def test_paid_draft_cannot_be_deleted(self):
        po = self.inbound([(self.product_x, 3, "1.00")])
        payments.record_payment(po.id, "1.00", PurchaseOrderPayment.Method.CASH)

        with self.assertRaises(InvalidTransition):
            services.delete_draft(po.id)

    def test_deleted_number_is_not_reused(self):
        po = self.inbound([(self.product_x, 3, "1.00")])
        services.delete_draft(po.id)

        self.assertEqual(self.inbound([(self.product_x, 3, "1.00")]).po_number, "IN-PO-00002")


class PaymentLedgerTests(PurchasingFixtureMixin, TestCase):
    def test_scenario_d_running_sum(self):
        po = self.inbound([(self.product_x, 5, "250.00")])

        payments.record_payment(po.id, "750.00", PurchaseOrderPayment.Method.WIRE_TRANSFER, "W-2")
        payments.record_payment(po.id, Decimal("500"), PurchaseOrderPayment.Method.CHECK, "CHK-1")

        po.refresh_from_db()
        summary = payments.payment_summary(po)
        self.assertEqual(po.total, Decimal("1250.00"))
        self.assertEqual(summary["amount_paid"], Decimal("1250.00"))
        self.assertEqual(summary["balance_due"], Decimal("0.00"))
        self.assertEqual(summary["payment_status"], "paid")

    def test_payments_are_accepted_in_any_status(self):
        po = self.inbound([(self.product_x, 1, "10.00")])
        services.cancel(po.id)

        payment = payments.record_payment(po.id, "4", PurchaseOrderPayment.Method.CASH)

        self.assertEqual(payment.amount, Decimal("4.00"))
        self.assertEqual(payments.payment_summary(po)["payment_status"], "partial")

    def test_negative_corrections_and_overpayment(self):
        po = self.inbound([(self.product_x, 1, "10.00")])

        payments.record_payment(po.id, "15.00", PurchaseOrderPayment.Method.CARD)
        self.assertEqual(payments.payment_summary(po)["payment_status"], "overpaid")

        payments.record_payment(po.id, "-15.00", PurchaseOrderPayment.Method.CARD, notes="refund")
        summary = payments.payment_summary(po)
        self.assertEqual(summary["amount_paid"], Decimal("0.00"))
        self.assertEqual(summary["payment_status"], "unpaid")

    def test_zero_amount_and_unknown_method_are_rejected(self):
        po = self.inbound([(self.product_x, 1, "10.00")])

        with self.assertRaises(ValidationError):
            payments.record_payment(po.id, "0.00", PurchaseOrderPayment.Method.CASH)
        with self.assertRaises(ValidationError):
            payments.record_payment(po.id, "1.00", "barter")
        with self.assertRaises(ValidationError):
            payments.record_payment(po.id, "abc", PurchaseOrderPayment.Method.CASH)

        self.assertFalse(PurchaseOrderPayment.objects.exists())


class PurchaseOrderApiTests(PurchasingFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        user_model = get_user_model()
        self.clerk = user_model.objects.create_user(username="clerk", password="pass1234", vendor=self.vendor, role=User.Role.CLERK)
        self.manager = user_model.objects.create_user(username="manager", password="pass1234", vendor=self.vendor, role=User.Role.MANAGER)
        self.outsider = user_model.objects.create_user(username="outsider", password="pass1234", vendor=self.other_vendor, role=User.Role.ADMIN)

    def _create_payload(self, **overrides):
        payload = {
            "po_type": "inbound",
            "counterparty_id": str(self.supplier.id),
            "location_id": str(self.location.id),
            "items": [{"product_id": str(self.product_x.id), "quantity": 30, "unit_price": "500.00"}],
            "payment_terms": "net30",
        }
        payload.update(overrides)
        return payload

    def test_create_returns_numbered_draft(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/purchase-orders/", self._create_payload(), format="json")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["po_number"], "IN-PO-00001")
        self.assertEqual(body["status"], "draft")
        self.assertEqual(body["total"], "15000.00")
        self.assertEqual(body["counterparty_name"], "Acme Farms")
        self.assertEqual(body["payment"]["payment_status"], "unpaid")
        self.assertEqual(AuditLog.objects.get(action="purchase_order.create").actor_id, self.clerk.id)

    def test_create_validation_error_envelope(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/purchase-orders/", self._create_payload(items=[]), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("items", response.json()["errors"])

    def test_receive_requires_settle_capability(self):
        po = self.inbound([(self.product_x, 3, "1.00")])
        self.client.force_authenticate(user=self.clerk)

        receive = self.client.post(f"/api/v1/purchase-orders/{po.id}/receive/")
        transition = self.client.post(f"/api/v1/purchase-orders/{po.id}/transition/", {"status": "received"}, format="json")
        sent = self.client.post(f"/api/v1/purchase-orders/{po.id}/transition/", {"status": "sent"}, format="json")

        self.assertEqual(receive.status_code, 403)
        self.assertEqual(transition.status_code, 403)
        self.assertEqual(sent.status_code, 200)
        self.assertEqual(self.on_hand(self.product_x), 0)

    def test_manager_receives_inbound_order(self):
        po = self.inbound([(self.product_x, 30, "500.00")])
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/v1/purchase-orders/{po.id}/receive/", HTTP_X_REQUEST_ID="req-42")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "received")
        self.assertEqual(response.json()["items"][0]["quantity_received"], 30)
        self.assertEqual(AuditLog.objects.get(action="purchase_order.settle").request_id, "req-42")

    def test_insufficient_inventory_envelope_names_the_product(self):
        self.stock(self.product_x, 5)
        po = self.outbound([(self.product_x, 10, "1.00")])
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/v1/purchase-orders/{po.id}/fulfill/")

        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["code"], "insufficient_inventory")
        self.assertEqual(body["status"], 409)
        self.assertEqual(body["errors"]["product_id"], str(self.product_x.id))
        self.assertEqual(body["errors"]["shortfall"], 5)

    def test_invalid_transition_envelope(self):
        po = self.inbound([(self.product_x, 1, "1.00")])
        services.transition(po.id, Status.CONFIRMED)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(f"/api/v1/purchase-orders/{po.id}/transition/", {"status": "sent"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")
        self.assertEqual(response.json()["errors"]["purchase_order_id"], str(po.id))

    def test_other_vendor_cannot_see_order(self):
        po = self.inbound([(self.product_x, 1, "1.00")])
        self.client.force_authenticate(user=self.outsider)

        responses = [
            self.client.get(f"/api/v1/purchase-orders/{po.id}/"),
            self.client.post(f"/api/v1/purchase-orders/{po.id}/cancel/"),
            self.client.post(f"/api/v1/purchase-orders/{po.id}/receive/"),
        ]

        for response in responses:
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json()["code"], "not_found")
        po.refresh_from_db()
        self.assertEqual(po.status, Status.DRAFT)

    def test_oversized_amounts_are_validation_errors(self):
        self.client.force_authenticate(user=self.clerk)
        line = {"product_id": str(self.product_x.id), "quantity": 100000, "unit_price": "99999999.99"}

        overflowing_total = self.client.post("/api/v1/purchase-orders/", self._create_payload(items=[line]), format="json")
        line.update(quantity=3000000000, unit_price="1.00")
        overflowing_quantity = self.client.post("/api/v1/purchase-orders/", self._create_payload(items=[line]), format="json")

        self.assertEqual(overflowing_total.status_code, 400)
        self.assertEqual(overflowing_total.json()["code"], "validation_error")
        self.assertIn("line_total", overflowing_total.json()["errors"]["items"][0])
        self.assertEqual(overflowing_quantity.status_code, 400)
        self.assertEqual(overflowing_quantity.json()["code"], "validation_error")
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_pending_lists_non_terminal_orders(self):
        open_po = self.inbound([(self.product_x, 1, "1.00")])
        done = self.inbound([(self.product_y, 1, "1.00")])
        settlement.receive(done.id)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/purchase-orders/pending/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.json()["results"]], [str(open_po.id)])

    def test_update_items_endpoint(self):
        po = self.outbound([(self.product_x, 1, "1.00")])
        self.client.force_authenticate(user=self.clerk)

        response = self.client.put(
            f"/api/v1/purchase-orders/{po.id}/items/",
            {"items": [{"product_id": str(self.product_y.id), "quantity": 2, "unit_price": "3.50"}], "shipping": "1.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], "8.00")
        self.assertEqual(response.json()["items"][0]["product_sku"], "Y")

    def test_payments_endpoint_records_and_summarizes(self):
        po = self.inbound([(self.product_x, 5, "250.00")])
        url = f"/api/v1/purchase-orders/{po.id}/payments/"

        self.client.force_authenticate(user=self.clerk)
        denied = self.client.post(url, {"amount": "500.00", "method": "cash"}, format="json")
        self.client.force_authenticate(user=self.manager)
        first = self.client.post(url, {"amount": "500.00", "method": "check", "reference_number": "CHK-1"}, format="json")
        second = self.client.post(url, {"amount": "750.00", "method": "ach"}, format="json")
        zero = self.client.post(url, {"amount": "0", "method": "ach"}, format="json")
        listing = self.client.get(url)

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(zero.status_code, 400)
        self.assertEqual(listing.json()["summary"]["amount_paid"], "1250.00")
        self.assertEqual(listing.json()["summary"]["payment_status"], "paid")
        self.assertEqual(len(listing.json()["results"]), 2)

    def test_delete_draft_endpoint(self):
        po = self.inbound([(self.product_x, 1, "1.00")])
        self.client.force_authenticate(user=self.clerk)

        response = self.client.delete(f"/api/v1/purchase-orders/{po.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(PurchaseOrder.objects.filter(id=po.id).exists())

    def test_supplier_requires_exactly_one_identity(self):
        self.client.force_authenticate(user=self.manager)

        both = self.client.post(
            "/api/v1/suppliers/",
            {"external_name": "Acme", "supplier_vendor": str(self.other_vendor.id)},
            format="json",
        )
        neither = self.client.post("/api/v1/suppliers/", {"contact_name": "Ann"}, format="json")
        ok = self.client.post("/api/v1/suppliers/", {"supplier_vendor": str(self.other_vendor.id)}, format="json")

        self.assertEqual(both.status_code, 400)
        self.assertEqual(neither.status_code, 400)
        self.assertEqual(ok.status_code, 201)
        self.assertEqual(ok.json()["display_name"], "Vendor Two")
        self.assertEqual(ok.json()["vendor"], str(self.vendor.id))

    def test_clerk_cannot_manage_counterparties(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/wholesale-customers/", {"external_company_name": "Shop"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_supplier_in_use_cannot_be_deleted(self):
        self.inbound([(self.product_x, 1, "1.00")])
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/suppliers/{self.supplier.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertTrue(Supplier.objects.filter(id=self.supplier.id).exists())


def run_concurrently(*callables):
    """Start every callable at once on its own connection; returns results or raised exceptions."""
    results = [None] * len(callables)
    barrier = threading.Barrier(len(callables))

    def runner(index, fn):
        try:
            barrier.wait()
            results[index] = fn()
        except Exception as exc:
            results[index] = exc
        finally:
            connection.close()

    threads = [threading.Thread(target=runner, args=(index, fn)) for index, fn in enumerate(callables)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


@skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL; set DATABASE_URL=postgres://...")
class ConcurrentPurchasingTests(PurchasingFixtureMixin, TransactionTestCase):
    def test_concurrent_creation_yields_distinct_gapless_numbers(self):
        results = run_concurrently(*[lambda: self.outbound([(self.product_x, 1, "1.00")]) for _ in range(8)])

        errors = [result for result in results if isinstance(result, Exception)]
        self.assertTrue(all(isinstance(error, ConcurrencyConflict) for error in errors), errors)
        numbers = sorted(result.po_number for result in results if isinstance(result, PurchaseOrder))
        self.assertEqual(numbers, [f"OUT-PO-{value:05d}" for value in range(1, len(numbers) + 1)])

    def test_racing_fulfillments_never_oversell(self):
        self.stock(self.product_x, 10)
        first = self.outbound([(self.product_x, 7, "1.00")])
        second = self.outbound([(self.product_x, 7, "1.00")])

        results = run_concurrently(lambda: settlement.fulfill(first.id), lambda: settlement.fulfill(second.id))

        succeeded = [result for result in results if isinstance(result, PurchaseOrder)]
        failed = [result for result in results if isinstance(result, InsufficientInventory)]
        self.assertEqual(len(succeeded), 1)
        self.assertEqual(len(failed), 1)
        self.assertEqual(self.on_hand(self.product_x), 3)

    def test_distinct_products_settle_independently(self):
        first = self.inbound([(self.product_x, 4, "1.00")])
        second = self.inbound([(self.product_y, 6, "1.00")])

        results = run_concurrently(lambda: settlement.receive(first.id), lambda: settlement.receive(second.id))

        self.assertTrue(all(isinstance(result, PurchaseOrder) for result in results), results)
        self.assertEqual(self.on_hand(self.product_x), 4)
        self.assertEqual(self.on_hand(self.product_y), 6)
