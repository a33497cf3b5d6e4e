"""Inventory side effects of a purchase order reaching a settling status.

Receiving and fulfilling run in one transaction with the status change: the
purchase order row is locked first, then each item's ledger row in product id
order, so two settlements sharing products always lock in the same order. If
any line fails nothing is committed and the status stays where it was.
"""

import logging

from django.db import transaction
from rest_framework.exceptions import ValidationError

from common.exceptions import InvalidTransition
from common.locking import lock_conflicts_as_retryable, set_lock_timeout
from inventory import ledger, reservations
from inventory.models import StockMovement
from purchasing.models import PurchaseOrder
from purchasing.state_machine import (
    apply_transition,
    audit,
    ensure_has_items,
    ensure_transition,
    lock_purchase_order,
    snapshot,
)

logger = logging.getLogger(__name__)

REFERENCE_TYPE = "purchasing.purchase_order"


def _settle_item_inbound(purchase_order, item):
    ledger.adjust(
        item.product_id,
        purchase_order.location_id,
        item.quantity,
        movement_type=StockMovement.MovementType.PURCHASE_RECEIPT,
        reason=purchase_order.po_number,
        reference_type=REFERENCE_TYPE,
        reference_id=purchase_order.id,
    )
    item.quantity_received = item.quantity
    item.save(update_fields=["quantity_received", "updated_at"])


def _settle_item_outbound(purchase_order, item):
    ledger.adjust(
        item.product_id,
        purchase_order.location_id,
        -item.quantity,
        movement_type=StockMovement.MovementType.WHOLESALE_FULFILLMENT,
        reason=purchase_order.po_number,
        reference_type=REFERENCE_TYPE,
        reference_id=purchase_order.id,
    )
    item.quantity_fulfilled = item.quantity
    item.save(update_fields=["quantity_fulfilled", "updated_at"])
    reservations.release_for_item(item.id)


def settle(purchase_order, target_status, *, actor=None, request_id=None):
    """Settle an already locked purchase order into ``target_status``.

    Must run inside the transaction holding the purchase order row lock.
    """
    ensure_transition(purchase_order, target_status)
    ensure_has_items(purchase_order, target_status)
    before = snapshot(purchase_order)

    inbound = purchase_order.po_type == PurchaseOrder.Type.INBOUND
    settle_item = _settle_item_inbound if inbound else _settle_item_outbound
    items = purchase_order.items.select_related("product").order_by("product_id")
    for item in items:
        if not item.product.is_active:
            raise ValidationError({"items": f"Product {item.product.sku} is inactive and cannot be settled."})
        settle_item(purchase_order, item)

    if not inbound:
        reservations.release(purchase_order.id)

    apply_transition(purchase_order, target_status)
    audit(
        purchase_order,
        "purchase_order.settle",
        before=before,
        after=snapshot(purchase_order),
        actor=actor,
        request_id=request_id,
    )
    logger.info(
        "purchase_order_settled status=%s",
        target_status,
        extra={"po_id": purchase_order.id, "po_number": purchase_order.po_number, "vendor_id": purchase_order.vendor_id},
    )
    return purchase_order


def _settle_by_id(po_id, target_status, expected_type, *, actor, request_id):
    with transaction.atomic(), lock_conflicts_as_retryable("purchase_order", po_id):
        set_lock_timeout()
        purchase_order = lock_purchase_order(po_id)
        if purchase_order.po_type != expected_type:
            raise InvalidTransition(
                f"Purchase order {purchase_order.po_number} is {purchase_order.po_type}; "
                f"only {expected_type} orders can be marked {target_status}.",
                po_id=purchase_order.id,
                from_status=purchase_order.status,
                to_status=target_status,
            )
        return settle(purchase_order, target_status, actor=actor, request_id=request_id)


def receive(po_id, target_status=PurchaseOrder.Status.RECEIVED, *, actor=None, request_id=None):
    """Add every item of an inbound purchase order to the location's stock."""
    return _settle_by_id(po_id, target_status, PurchaseOrder.Type.INBOUND, actor=actor, request_id=request_id)


def fulfill(po_id, target_status=PurchaseOrder.Status.FULFILLED, *, actor=None, request_id=None):
    """Draw every item of an outbound purchase order from stock and release its holds.

    Raises InsufficientInventory naming the first short product; nothing is
    deducted and the reservations stay active in that case.
    """
    return _settle_by_id(po_id, target_status, PurchaseOrder.Type.OUTBOUND, actor=actor, request_id=request_id)
