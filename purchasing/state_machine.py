"""Purchase order lifecycle table and the helpers that apply it.

Moves are one-way. A forward move may skip pre-terminal states, so every
allowed edge is listed here rather than derived from an ordering.
"""

from django.utils import timezone
from rest_framework.exceptions import NotFound

from common.audit import create_audit_log
from common.exceptions import InvalidTransition
from purchasing.models import PurchaseOrder

Status = PurchaseOrder.Status
Type = PurchaseOrder.Type

ALLOWED_TRANSITIONS = {
    Status.DRAFT: {
        Status.SENT,
        Status.CONFIRMED,
        Status.IN_TRANSIT,
        Status.RECEIVED,
        Status.FULFILLED,
        Status.DELIVERED,
        Status.CANCELLED,
    },
    Status.SENT: {
        Status.CONFIRMED,
        Status.IN_TRANSIT,
        Status.RECEIVED,
        Status.FULFILLED,
        Status.DELIVERED,
        Status.CANCELLED,
    },
    Status.CONFIRMED: {
        Status.IN_TRANSIT,
        Status.RECEIVED,
        Status.FULFILLED,
        Status.DELIVERED,
        Status.CANCELLED,
    },
    Status.IN_TRANSIT: {
        Status.RECEIVED,
        Status.FULFILLED,
        Status.DELIVERED,
        Status.CANCELLED,
    },
    Status.RECEIVED: set(),
    Status.FULFILLED: set(),
    Status.DELIVERED: set(),
    Status.CANCELLED: set(),
}

TERMINAL_STATES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
PENDING_STATES = frozenset(set(Status) - TERMINAL_STATES)

# Terminal states reachable per type. Cancellation is handled separately.
SETTLING_STATES = {
    Type.INBOUND: frozenset({Status.RECEIVED, Status.DELIVERED}),
    Type.OUTBOUND: frozenset({Status.FULFILLED, Status.DELIVERED}),
}

STATUS_TIMESTAMP_FIELDS = {
    Status.SENT: "sent_at",
    Status.CONFIRMED: "confirmed_at",
    Status.IN_TRANSIT: "shipped_at",
    Status.RECEIVED: "received_at",
    Status.FULFILLED: "fulfilled_at",
    Status.DELIVERED: "delivered_at",
    Status.CANCELLED: "cancelled_at",
}


def is_settling(po_type, status):
    return status in SETTLING_STATES[po_type]


def ensure_transition(purchase_order, target_status):
    """Raise InvalidTransition unless ``purchase_order`` may move to ``target_status``."""
    current = purchase_order.status
    if target_status not in Status.values:
        raise InvalidTransition(
            f"Unknown purchase order status '{target_status}'.",
            po_id=purchase_order.id,
            from_status=current,
            to_status=target_status,
        )

    if target_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Purchase order {purchase_order.po_number} cannot move from {current} to {target_status}.",
            po_id=purchase_order.id,
            from_status=current,
            to_status=target_status,
        )

    if target_status in TERMINAL_STATES and target_status != Status.CANCELLED:
        if not is_settling(purchase_order.po_type, target_status):
            raise InvalidTransition(
                f"{purchase_order.get_po_type_display()} purchase orders cannot be marked {target_status}.",
                po_id=purchase_order.id,
                from_status=current,
                to_status=target_status,
            )


def ensure_has_items(purchase_order, target_status):
    if purchase_order.status == Status.DRAFT and not purchase_order.items.exists():
        raise InvalidTransition(
            f"Purchase order {purchase_order.po_number} needs at least one item before leaving draft.",
            po_id=purchase_order.id,
            from_status=purchase_order.status,
            to_status=target_status,
        )


def lock_purchase_order(po_id):
    purchase_order = PurchaseOrder.objects.select_for_update().filter(id=po_id).first()
    if purchase_order is None:
        raise NotFound(f"Purchase order {po_id} was not found.")
    return purchase_order


def apply_transition(purchase_order, target_status):
    """Write the new status and its timestamp. The caller holds the row lock."""
    purchase_order.status = target_status
    update_fields = ["status", "updated_at"]
    timestamp_field = STATUS_TIMESTAMP_FIELDS.get(target_status)
    if timestamp_field:
        setattr(purchase_order, timestamp_field, timezone.now())
        update_fields.append(timestamp_field)
    purchase_order.save(update_fields=update_fields)
    return purchase_order


def snapshot(purchase_order):
    return {
        "po_number": purchase_order.po_number,
        "po_type": purchase_order.po_type,
        "status": purchase_order.status,
        "location_id": purchase_order.location_id,
        "subtotal": purchase_order.subtotal,
        "tax": purchase_order.tax,
        "shipping": purchase_order.shipping,
        "total": purchase_order.total,
        "items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "quantity_received": item.quantity_received,
                "quantity_fulfilled": item.quantity_fulfilled,
            }
            for item in purchase_order.items.order_by("product_id")
        ],
    }


def audit(purchase_order, action, *, before=None, after=None, actor=None, request_id=None):
    return create_audit_log(
        actor=actor,
        vendor=purchase_order.vendor,
        action=action,
        entity="purchase_order",
        entity_id=purchase_order.id,
        before_snapshot=before,
        after_snapshot=after,
        request_id=request_id,
    )
