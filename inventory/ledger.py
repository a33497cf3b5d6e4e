"""Per (product, location) on-hand quantity ledger.

Every mutation runs inside the caller's transaction, takes a row lock on the
InventoryRecord (``SELECT ... FOR UPDATE``) and appends a StockMovement, so
adjustments to one key are serialized while distinct keys never block each
other. A failed precondition raises before anything is written.
"""

import logging

from django.db import IntegrityError, transaction
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import InsufficientInventory
from common.locking import lock_conflicts_as_retryable, set_lock_timeout
from inventory.models import InventoryRecord, Location, Product, StockMovement

logger = logging.getLogger(__name__)

# Largest single movement, and the ceiling of the 32-bit quantity column.
MAX_DELTA = 1_000_000
MAX_ON_HAND = 2_147_483_647


def _lock_record(product_id, location_id):
    return InventoryRecord.objects.select_for_update().filter(product_id=product_id, location_id=location_id).first()


def _create_record(product_id, location_id):
    location = Location.objects.filter(id=location_id).only("id", "vendor_id").first()
    if location is None:
        raise NotFound(f"Location {location_id} was not found.")
    product = Product.objects.filter(id=product_id).only("id", "vendor_id").first()
    if product is None:
        raise NotFound(f"Product {product_id} was not found.")
    if product.vendor_id != location.vendor_id:
        raise ValidationError({"product": f"Product {product_id} does not belong to the location's vendor."})

    try:
        with transaction.atomic():
            return InventoryRecord.objects.create(
                vendor_id=location.vendor_id,
                product_id=product_id,
                location_id=location_id,
                quantity=0,
            )
    except IntegrityError:
        # A concurrent first movement created the row; wait for it under lock.
        record = _lock_record(product_id, location_id)
        if record is None:
            raise
        return record


def _insufficient(product_id, location_id, delta, available):
    logger.warning(
        "inventory_insufficient",
        extra={"product_id": product_id, "location_id": location_id, "delta": delta},
    )
    return InsufficientInventory(product_id=product_id, location_id=location_id, requested=-delta, available=available)


def get_on_hand(product_id, location_id):
    quantity = (
        InventoryRecord.objects.filter(product_id=product_id, location_id=location_id)
        .values_list("quantity", flat=True)
        .first()
    )
    return quantity or 0


def adjust(
    product_id,
    location_id,
    delta,
    *,
    movement_type,
    reason="",
    reference_type=None,
    reference_id=None,
):
    """Apply ``delta`` to the (product, location) counter and return the new quantity.

    Raises InsufficientInventory when the result would be negative, including
    any draw-down against a key that has no record yet.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError({"delta": "Inventory adjustment must be a non-zero integer."})
    if abs(delta) > MAX_DELTA:
        raise ValidationError({"delta": f"Inventory adjustment cannot exceed {MAX_DELTA} units."})

    with transaction.atomic(), lock_conflicts_as_retryable("inventory_record", product_id):
        set_lock_timeout()
        record = _lock_record(product_id, location_id)
        if record is None:
            if delta < 0:
                raise _insufficient(product_id, location_id, delta, 0)
            record = _create_record(product_id, location_id)

        quantity_before = record.quantity
        quantity_after = quantity_before + delta
        if quantity_after < 0:
            raise _insufficient(product_id, location_id, delta, quantity_before)
        if quantity_after > MAX_ON_HAND:
            raise ValidationError({"delta": f"On-hand quantity cannot exceed {MAX_ON_HAND}."})

        record.quantity = quantity_after
        record.version += 1
        record.save(update_fields=["quantity", "version", "updated_at"])

        StockMovement.objects.create(
            vendor_id=record.vendor_id,
            record=record,
            product_id=product_id,
            location_id=location_id,
            movement_type=movement_type,
            quantity=delta,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            reason=reason or "",
            reference_type=reference_type,
            reference_id=reference_id,
        )

    logger.debug(
        "inventory_adjusted",
        extra={
            "product_id": product_id,
            "location_id": location_id,
            "delta": delta,
            "quantity_after": quantity_after,
        },
    )
    return quantity_after


def apply_manual_adjustment(*, vendor_id, product_id, location_id, delta, reason):
    """Stock count / shrinkage correction outside any purchase order."""
    if not Location.objects.filter(id=location_id, vendor_id=vendor_id).exists():
        raise NotFound(f"Location {location_id} was not found.")
    if not Product.objects.filter(id=product_id, vendor_id=vendor_id).exists():
        raise NotFound(f"Product {product_id} was not found.")
    if not (reason or "").strip():
        raise ValidationError({"reason": "A reason is required for manual adjustments."})

    return adjust(
        product_id,
        location_id,
        delta,
        movement_type=StockMovement.MovementType.ADJUSTMENT,
        reason=reason.strip(),
        reference_type="inventory.manual_adjustment",
    )
