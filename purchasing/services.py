import logging
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import InvalidTransition
from common.locking import lock_conflicts_as_retryable, set_lock_timeout
from common.money import MAX_MONEY, parse_money, to_money
from inventory import reservations
from inventory.models import InventoryReservation, Location, Product
from inventory.reservations import ReservationRequest
from purchasing import settlement
from purchasing.models import (
    MAX_ITEM_QUANTITY,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderSequence,
    Supplier,
    WholesaleCustomer,
)
from purchasing.state_machine import (
    apply_transition,
    audit,
    ensure_has_items,
    ensure_transition,
    is_settling,
    lock_purchase_order,
    snapshot,
)

logger = logging.getLogger(__name__)

PO_NUMBER_PREFIXES = {
    PurchaseOrder.Type.INBOUND: "IN-PO-",
    PurchaseOrder.Type.OUTBOUND: "OUT-PO-",
}


def format_po_number(po_type, value):
    padding = int(settings.PO_NUMBER_PADDING)
    return f"{PO_NUMBER_PREFIXES[po_type]}{value:0{padding}d}"


def allocate_po_number(vendor_id, po_type):
    """Take the next number for (vendor, po_type) from its counter row.

    Runs inside the creating transaction: the counter row stays locked until
    commit and a rollback hands the number back.
    """
    with lock_conflicts_as_retryable("purchase_order_sequence", vendor_id):
        set_lock_timeout()
        PurchaseOrderSequence.objects.get_or_create(vendor_id=vendor_id, po_type=po_type)
        sequence = PurchaseOrderSequence.objects.select_for_update().get(vendor_id=vendor_id, po_type=po_type)
        sequence.last_value += 1
        sequence.save(update_fields=["last_value", "updated_at"])
    return format_po_number(po_type, sequence.last_value)


def _as_uuid(value):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _normalize_items(vendor_id, items):
    if not items:
        raise ValidationError({"items": "A purchase order needs at least one item."})

    product_ids = {_as_uuid(item.get("product_id")) for item in items} - {None}
    products = {product.id: product for product in Product.objects.filter(vendor_id=vendor_id, id__in=product_ids)}

    errors = []
    normalized = []
    seen = set()
    for item in items:
        item_errors = {}
        product = products.get(_as_uuid(item.get("product_id")))
        quantity = item.get("quantity")
        unit_price = item.get("unit_price")

        if product is None:
            item_errors["product_id"] = f"Product {item.get('product_id')} was not found for this vendor."
        elif not product.is_active:
            item_errors["product_id"] = f"Product {product.sku} is inactive."
        elif product.id in seen:
            item_errors["product_id"] = f"Product {product.sku} appears more than once."

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            item_errors["quantity"] = "Quantity must be a positive integer."
        elif quantity > MAX_ITEM_QUANTITY:
            item_errors["quantity"] = f"Quantity cannot exceed {MAX_ITEM_QUANTITY}."

        try:
            unit_price = parse_money(unit_price, "unit_price")
        except ValidationError as exc:
            item_errors["unit_price"] = exc.detail["unit_price"]
        else:
            if unit_price < 0:
                item_errors["unit_price"] = "Unit price cannot be negative."

        line_total = None
        if not item_errors:
            line_total = to_money(quantity * unit_price)
            if line_total > MAX_MONEY:
                item_errors["line_total"] = f"Line total cannot exceed {MAX_MONEY}."

        errors.append(item_errors)
        if not item_errors:
            seen.add(product.id)
            normalized.append({"product": product, "quantity": quantity, "unit_price": unit_price, "line_total": line_total})

    if any(errors):
        raise ValidationError({"items": errors})
    return normalized


def _ensure_total_fits(normalized_items, tax, shipping):
    subtotal = sum((line["line_total"] for line in normalized_items), Decimal("0"))
    if subtotal > MAX_MONEY:
        raise ValidationError({"subtotal": f"Subtotal cannot exceed {MAX_MONEY}."})
    if subtotal + tax + shipping > MAX_MONEY:
        raise ValidationError({"total": f"Total cannot exceed {MAX_MONEY}."})


def _non_negative_money(value, field):
    amount = parse_money(value if value is not None else 0, field)
    if amount < 0:
        raise ValidationError({field: f"{field.capitalize()} cannot be negative."})
    return amount


def _resolve_counterparty(vendor_id, po_type, counterparty_id):
    if not counterparty_id:
        raise ValidationError({"counterparty_id": "A counterparty is required."})

    if po_type == PurchaseOrder.Type.INBOUND:
        expected, other, label = Supplier, WholesaleCustomer, "supplier"
    else:
        expected, other, label = WholesaleCustomer, Supplier, "wholesale customer"

    counterparty_key = _as_uuid(counterparty_id)
    counterparty = expected.objects.filter(id=counterparty_key, vendor_id=vendor_id).first() if counterparty_key else None
    if counterparty is None:
        if counterparty_key and other.objects.filter(id=counterparty_key, vendor_id=vendor_id).exists():
            raise ValidationError({"counterparty_id": f"{po_type.capitalize()} purchase orders need a {label}."})
        raise ValidationError({"counterparty_id": f"{label.capitalize()} {counterparty_id} was not found."})
    if not counterparty.is_active:
        raise ValidationError({"counterparty_id": f"{label.capitalize()} {counterparty_id} is inactive."})
    return counterparty


def _resolve_location(vendor_id, location_id):
    location_key = _as_uuid(location_id)
    location = Location.objects.filter(id=location_key, vendor_id=vendor_id).first() if location_key else None
    if location is None:
        raise ValidationError({"location_id": f"Location {location_id} was not found for this vendor."})
    if not location.is_active:
        raise ValidationError({"location_id": f"Location {location.name} is inactive."})
    return location


def _write_items(purchase_order, normalized_items):
    items = PurchaseOrderItem.objects.bulk_create(
        [
            PurchaseOrderItem(
                purchase_order=purchase_order,
                product=line["product"],
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                line_total=line["line_total"],
            )
            for line in normalized_items
        ]
    )
    if purchase_order.po_type == PurchaseOrder.Type.OUTBOUND:
        reservations.reserve(
            purchase_order.id,
            purchase_order.vendor_id,
            [ReservationRequest(item.product_id, purchase_order.location_id, item.quantity, item.id) for item in items],
        )
    return items


def _recalculate_totals(purchase_order, items):
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    purchase_order.subtotal = to_money(subtotal)
    purchase_order.total = to_money(subtotal + purchase_order.tax + purchase_order.shipping)
    purchase_order.save(update_fields=["subtotal", "tax", "shipping", "total", "updated_at"])


def create_purchase_order(
    *,
    vendor_id,
    po_type,
    counterparty_id,
    location_id,
    items,
    payment_terms="",
    expected_date=None,
    tax=0,
    shipping=0,
    notes="",
    actor=None,
    request_id=None,
):
    """Create a draft purchase order with its items, plus holds when outbound."""
    if po_type not in PurchaseOrder.Type.values:
        raise ValidationError({"po_type": f"Unknown purchase order type '{po_type}'."})
    counterparty = _resolve_counterparty(vendor_id, po_type, counterparty_id)
    location = _resolve_location(vendor_id, location_id)
    normalized_items = _normalize_items(vendor_id, items)
    tax = _non_negative_money(tax, "tax")
    shipping = _non_negative_money(shipping, "shipping")
    _ensure_total_fits(normalized_items, tax, shipping)

    with transaction.atomic():
        purchase_order = PurchaseOrder.objects.create(
            vendor_id=vendor_id,
            po_number=allocate_po_number(vendor_id, po_type),
            po_type=po_type,
            supplier=counterparty if po_type == PurchaseOrder.Type.INBOUND else None,
            wholesale_customer=counterparty if po_type == PurchaseOrder.Type.OUTBOUND else None,
            location=location,
            tax=tax,
            shipping=shipping,
            payment_terms=payment_terms or "",
            expected_date=expected_date,
            notes=notes or "",
            created_by=actor if getattr(actor, "is_authenticated", False) else None,
        )
        created_items = _write_items(purchase_order, normalized_items)
        _recalculate_totals(purchase_order, created_items)
        audit(purchase_order, "purchase_order.create", after=snapshot(purchase_order), actor=actor, request_id=request_id)

    logger.info(
        "purchase_order_created",
        extra={"po_id": purchase_order.id, "po_number": purchase_order.po_number, "vendor_id": vendor_id},
    )
    return purchase_order


def _get_purchase_order(po_id):
    purchase_order = PurchaseOrder.objects.filter(id=po_id).first()
    if purchase_order is None:
        raise NotFound(f"Purchase order {po_id} was not found.")
    return purchase_order


def update_draft_items(po_id, items, *, tax=None, shipping=None, actor=None, request_id=None):
    """Replace the items of a draft order, recompute totals and re-place holds."""
    purchase_order = _get_purchase_order(po_id)
    normalized_items = _normalize_items(purchase_order.vendor_id, items)
    tax = _non_negative_money(tax, "tax") if tax is not None else None
    shipping = _non_negative_money(shipping, "shipping") if shipping is not None else None
    _ensure_total_fits(
        normalized_items,
        purchase_order.tax if tax is None else tax,
        purchase_order.shipping if shipping is None else shipping,
    )

    with transaction.atomic(), lock_conflicts_as_retryable("purchase_order", po_id):
        set_lock_timeout()
        purchase_order = lock_purchase_order(po_id)
        if purchase_order.status != PurchaseOrder.Status.DRAFT:
            raise InvalidTransition(
                f"Items of purchase order {purchase_order.po_number} can only change while it is a draft.",
                po_id=purchase_order.id,
                from_status=purchase_order.status,
                to_status=purchase_order.status,
            )

        before = snapshot(purchase_order)
        reservations.release(purchase_order.id)
        purchase_order.items.all().delete()
        if tax is not None:
            purchase_order.tax = tax
        if shipping is not None:
            purchase_order.shipping = shipping
        created_items = _write_items(purchase_order, normalized_items)
        _recalculate_totals(purchase_order, created_items)
        audit(
            purchase_order,
            "purchase_order.items_update",
            before=before,
            after=snapshot(purchase_order),
            actor=actor,
            request_id=request_id,
        )

    return purchase_order


def transition(po_id, target_status, *, actor=None, request_id=None):
    """Move a purchase order to ``target_status``, settling it when the status calls for it."""
    if target_status == PurchaseOrder.Status.CANCELLED:
        return cancel(po_id, actor=actor, request_id=request_id)

    with transaction.atomic(), lock_conflicts_as_retryable("purchase_order", po_id):
        set_lock_timeout()
        purchase_order = lock_purchase_order(po_id)
        if is_settling(purchase_order.po_type, target_status):
            return settlement.settle(purchase_order, target_status, actor=actor, request_id=request_id)

        ensure_transition(purchase_order, target_status)
        ensure_has_items(purchase_order, target_status)
        before = snapshot(purchase_order)
        apply_transition(purchase_order, target_status)
        audit(
            purchase_order,
            "purchase_order.transition",
            before=before,
            after=snapshot(purchase_order),
            actor=actor,
            request_id=request_id,
        )

    logger.info(
        "purchase_order_transitioned status=%s",
        target_status,
        extra={"po_id": purchase_order.id, "po_number": purchase_order.po_number},
    )
    return purchase_order


def cancel(po_id, *, actor=None, request_id=None):
    """Cancel a non-terminal purchase order and release its holds.

    Cancelling an already cancelled order returns it unchanged.
    """
    with transaction.atomic(), lock_conflicts_as_retryable("purchase_order", po_id):
        set_lock_timeout()
        purchase_order = lock_purchase_order(po_id)
        if purchase_order.status == PurchaseOrder.Status.CANCELLED:
            return purchase_order

        ensure_transition(purchase_order, PurchaseOrder.Status.CANCELLED)
        before = snapshot(purchase_order)
        apply_transition(purchase_order, PurchaseOrder.Status.CANCELLED)
        released = reservations.release(purchase_order.id)
        audit(
            purchase_order,
            "purchase_order.cancel",
            before=before,
            after=snapshot(purchase_order),
            actor=actor,
            request_id=request_id,
        )

    logger.info(
        "purchase_order_cancelled released=%s",
        released,
        extra={"po_id": purchase_order.id, "po_number": purchase_order.po_number},
    )
    return purchase_order


def _cancelled_from_draft(purchase_order):
    return purchase_order.status == PurchaseOrder.Status.CANCELLED and not any(
        [purchase_order.sent_at, purchase_order.confirmed_at, purchase_order.shipped_at]
    )


def delete_draft(po_id, *, actor=None, request_id=None):
    """Discard a draft (or a draft that was cancelled) with its items and holds.

    The number it held is not reused.
    """
    with transaction.atomic(), lock_conflicts_as_retryable("purchase_order", po_id):
        set_lock_timeout()
        purchase_order = lock_purchase_order(po_id)
        if purchase_order.status != PurchaseOrder.Status.DRAFT and not _cancelled_from_draft(purchase_order):
            raise InvalidTransition(
                f"Purchase order {purchase_order.po_number} can only be deleted while it is a draft.",
                po_id=purchase_order.id,
                from_status=purchase_order.status,
                to_status=None,
            )
        if purchase_order.payments.exists():
            raise InvalidTransition(
                f"Purchase order {purchase_order.po_number} has payments and cannot be deleted.",
                po_id=purchase_order.id,
                from_status=purchase_order.status,
                to_status=None,
            )

        audit(purchase_order, "purchase_order.delete", before=snapshot(purchase_order), actor=actor, request_id=request_id)
        InventoryReservation.objects.filter(
            reference_type=InventoryReservation.ReferenceType.PURCHASE_ORDER,
            reference_id=purchase_order.id,
        ).delete()
        purchase_order.delete()

    logger.info("purchase_order_deleted", extra={"po_id": po_id, "po_number": purchase_order.po_number})
