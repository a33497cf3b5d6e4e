import logging
from dataclasses import dataclass
from uuid import UUID

from django.db.models import Sum
from django.utils import timezone

from inventory.ledger import get_on_hand
from inventory.models import InventoryReservation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationRequest:
    product_id: UUID
    location_id: UUID
    quantity: int
    item_id: UUID | None = None


def reserve(po_id, vendor_id, requests):
    """Place soft holds for an outbound purchase order.

    The ledger is neither read nor locked: holds may exceed on-hand stock and
    the hard check happens when the order is fulfilled.
    """
    reservations = [
        InventoryReservation(
            vendor_id=vendor_id,
            product_id=request.product_id,
            location_id=request.location_id,
            reference_type=InventoryReservation.ReferenceType.PURCHASE_ORDER,
            reference_id=po_id,
            item_id=request.item_id,
            quantity=request.quantity,
        )
        for request in requests
    ]
    created = InventoryReservation.objects.bulk_create(reservations)
    logger.debug("reservations_placed count=%s", len(created), extra={"po_id": po_id})
    return created


def _release(queryset):
    now = timezone.now()
    # Filtering on status inside the UPDATE makes a second release match nothing.
    return queryset.filter(status=InventoryReservation.Status.ACTIVE).update(
        status=InventoryReservation.Status.RELEASED,
        released_at=now,
        updated_at=now,
    )


def release(po_id):
    """Release every active hold for the purchase order; returns how many were released."""
    released = _release(
        InventoryReservation.objects.filter(
            reference_type=InventoryReservation.ReferenceType.PURCHASE_ORDER,
            reference_id=po_id,
        )
    )
    if released:
        logger.info("reservations_released count=%s", released, extra={"po_id": po_id})
    return released


def release_for_item(item_id):
    return _release(InventoryReservation.objects.filter(item_id=item_id))


def active_reservations_for(po_id):
    return InventoryReservation.objects.filter(
        reference_type=InventoryReservation.ReferenceType.PURCHASE_ORDER,
        reference_id=po_id,
        status=InventoryReservation.Status.ACTIVE,
    )


def active_reserved_quantity(product_id, location_id):
    return (
        InventoryReservation.objects.filter(
            product_id=product_id,
            location_id=location_id,
            status=InventoryReservation.Status.ACTIVE,
        ).aggregate(total=Sum("quantity"))["total"]
        or 0
    )


def get_available_to_promise(product_id, location_id):
    """On-hand minus active holds. Negative means over-reserved and is reported as is."""
    return get_on_hand(product_id, location_id) - active_reserved_quantity(product_id, location_id)
