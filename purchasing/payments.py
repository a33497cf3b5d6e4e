import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum
from rest_framework.exceptions import NotFound, ValidationError

from common.audit import create_audit_log
from common.money import parse_money, to_money
from purchasing.models import PurchaseOrder, PurchaseOrderPayment

logger = logging.getLogger(__name__)


class PaymentStatus:
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERPAID = "overpaid"


def record_payment(po_id, amount, method, reference_number="", notes="", *, actor=None, request_id=None):
    """Append a payment to a purchase order in any status.

    Negative amounts are stored as corrections; zero is rejected.
    """
    amount = parse_money(amount, "amount")
    if amount == 0:
        raise ValidationError({"amount": "Payment amount cannot be zero."})
    if method not in PurchaseOrderPayment.Method.values:
        raise ValidationError({"method": f"Unknown payment method '{method}'."})

    with transaction.atomic():
        purchase_order = PurchaseOrder.objects.filter(id=po_id).select_related("vendor").first()
        if purchase_order is None:
            raise NotFound(f"Purchase order {po_id} was not found.")

        payment = PurchaseOrderPayment.objects.create(
            purchase_order=purchase_order,
            amount=amount,
            method=method,
            reference_number=reference_number or "",
            notes=notes or "",
            recorded_by=actor if getattr(actor, "is_authenticated", False) else None,
        )
        create_audit_log(
            actor=actor,
            vendor=purchase_order.vendor,
            action="purchase_order.payment_record",
            entity="purchase_order_payment",
            entity_id=payment.id,
            after_snapshot={
                "purchase_order_id": purchase_order.id,
                "amount": payment.amount,
                "method": payment.method,
                "reference_number": payment.reference_number,
            },
            request_id=request_id,
        )

    logger.info(
        "payment_recorded amount=%s method=%s",
        amount,
        method,
        extra={"po_id": purchase_order.id, "po_number": purchase_order.po_number},
    )
    return payment


def amount_paid(purchase_order):
    total = PurchaseOrderPayment.objects.filter(purchase_order=purchase_order).aggregate(total=Sum("amount"))["total"]
    return to_money(total or Decimal("0"))


def payment_summary(purchase_order, paid=None):
    """Derived view of a purchase order's payments; never enforced against the total.

    ``paid`` may carry a sum already annotated on the queryset.
    """
    paid = amount_paid(purchase_order) if paid is None else to_money(paid)
    total = to_money(purchase_order.total)
    if paid <= 0:
        status = PaymentStatus.UNPAID
    elif paid < total:
        status = PaymentStatus.PARTIAL
    elif paid == total:
        status = PaymentStatus.PAID
    else:
        status = PaymentStatus.OVERPAID
    return {"amount_paid": paid, "balance_due": total - paid, "payment_status": status}
