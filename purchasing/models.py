import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

from core.models import Vendor
from inventory.models import Location, Product


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name="suppliers")
    supplier_vendor = models.ForeignKey(
        Vendor,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="supplies_to",
    )
    external_name = models.CharField(max_length=255, blank=True, default="")
    contact_name = models.CharField(max_length=255, blank=True, default="")
    contact_email = models.EmailField(blank=True, default="")
    contact_phone = models.CharField(max_length=64, blank=True, default="")
    payment_terms = models.CharField(max_length=64, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["vendor", "is_active"], name="supplier_vendor_active_idx")]
        constraints = [
            models.CheckConstraint(
                condition=(
                    (models.Q(supplier_vendor__isnull=False) & models.Q(external_name=""))
                    | (models.Q(supplier_vendor__isnull=True) & ~models.Q(external_name=""))
                ),
                name="supplier_exactly_one_identity",
            ),
        ]

    @property
    def display_name(self):
        if self.supplier_vendor_id:
            return self.supplier_vendor.name
        return self.external_name


class WholesaleCustomer(models.Model):
    class PricingTier(models.TextChoices):
        WHOLESALE = "wholesale", "Wholesale"
        DISTRIBUTOR = "distributor", "Distributor"
        PARTNER = "partner", "Partner"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name="wholesale_customers")
    customer_vendor = models.ForeignKey(
        Vendor,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="buys_from",
    )
    external_company_name = models.CharField(max_length=255, blank=True, default="")
    contact_name = models.CharField(max_length=255, blank=True, default="")
    contact_email = models.EmailField(blank=True, default="")
    contact_phone = models.CharField(max_length=64, blank=True, default="")
    pricing_tier = models.CharField(max_length=16, choices=PricingTier.choices, default=PricingTier.WHOLESALE)
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    payment_terms = models.CharField(max_length=64, blank=True, default="")
    credit_limit = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["vendor", "is_active"], name="wcustomer_vendor_active_idx")]
        constraints = [
            models.CheckConstraint(
                condition=(
                    (models.Q(customer_vendor__isnull=False) & models.Q(external_company_name=""))
                    | (models.Q(customer_vendor__isnull=True) & ~models.Q(external_company_name=""))
                ),
                name="wcustomer_exactly_one_identity",
            ),
            models.CheckConstraint(
                condition=models.Q(discount_percent__gte=0) & models.Q(discount_percent__lte=100),
                name="wcustomer_discount_range",
            ),
        ]

    @property
    def display_name(self):
        if self.customer_vendor_id:
            return self.customer_vendor.name
        return self.external_company_name


class PurchaseOrder(models.Model):
    class Type(models.TextChoices):
        INBOUND = "inbound", "Inbound"
        OUTBOUND = "outbound", "Outbound"

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        CONFIRMED = "confirmed", "Confirmed"
        IN_TRANSIT = "in_transit", "In Transit"
        RECEIVED = "received", "Received"
        FULFILLED = "fulfilled", "Fulfilled"
        DELIVERED = "delivered", "Delivered"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name="purchase_orders")
    po_number = models.CharField(max_length=32)
    po_type = models.CharField(max_length=16, choices=Type.choices)
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name="purchase_orders")
    wholesale_customer = models.ForeignKey(
        WholesaleCustomer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="purchase_orders",
    )
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="purchase_orders")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_terms = models.CharField(max_length=64, blank=True, default="")
    expected_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchase_orders_created",
    )
    sent_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    received_at = models.DateTimeField(null=True, blank=True)
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("vendor", "po_number")
        indexes = [
            models.Index(fields=["vendor", "po_type", "status"], name="po_vendor_type_status_idx"),
            models.Index(fields=["vendor", "created_at"], name="po_vendor_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    (models.Q(po_type="inbound") & models.Q(supplier__isnull=False) & models.Q(wholesale_customer__isnull=True))
                    | (models.Q(po_type="outbound") & models.Q(wholesale_customer__isnull=False) & models.Q(supplier__isnull=True))
                ),
                name="po_counterparty_matches_type",
            ),
        ]

    def __str__(self):
        return self.po_number

    @property
    def counterparty(self):
        return self.supplier if self.po_type == self.Type.INBOUND else self.wholesale_customer


# Upper bound for one line, well inside the 32-bit quantity columns.
MAX_ITEM_QUANTITY = 1_000_000


class PurchaseOrderItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    line_total = models.DecimalField(max_digits=12, decimal_places=2)
    quantity_received = models.PositiveIntegerField(default=0)
    quantity_fulfilled = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("purchase_order", "product")
        indexes = [
            models.Index(fields=["product"], name="poitem_product_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="poitem_quantity_positive"),
            models.CheckConstraint(condition=models.Q(unit_price__gte=0), name="poitem_unit_price_non_negative"),
            models.CheckConstraint(
                condition=models.Q(quantity_received__lte=models.F("quantity")),
                name="poitem_received_within_quantity",
            ),
            models.CheckConstraint(
                condition=models.Q(quantity_fulfilled__lte=models.F("quantity")),
                name="poitem_fulfilled_within_quantity",
            ),
        ]


class PurchaseOrderPayment(models.Model):
    class Method(models.TextChoices):
        CASH = "cash", "Cash"
        CHECK = "check", "Check"
        WIRE_TRANSFER = "wire_transfer", "Wire Transfer"
        ACH = "ach", "ACH"
        CARD = "card", "Card"
        OTHER = "other", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=16, choices=Method.choices)
    reference_number = models.CharField(max_length=128, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="po_payments_recorded",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["purchase_order", "created_at"], name="popayment_po_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=~models.Q(amount=Decimal("0")), name="popayment_amount_non_zero"),
        ]


class PurchaseOrderSequence(models.Model):
    """Counter row backing PO number allocation for one (vendor, po_type)."""

    id = models.BigAutoField(primary_key=True)
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name="po_sequences")
    po_type = models.CharField(max_length=16, choices=PurchaseOrder.Type.choices)
    last_value = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["vendor", "po_type"], name="uniq_po_sequence_vendor_type"),
        ]
