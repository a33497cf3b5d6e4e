import uuid

from django.db import models

from core.models import Vendor


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)
    sku = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("vendor", "sku")
        indexes = [
            models.Index(fields=["vendor", "is_active"], name="product_vendor_active_idx"),
        ]

    def __str__(self):
        return f"{self.sku} {self.name}"


class Location(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("vendor", "name")
        indexes = [
            models.Index(fields=["vendor", "is_active"], name="location_vendor_active_idx"),
        ]

    def __str__(self):
        return self.name


class InventoryRecord(models.Model):
    """On-hand quantity for one product at one location.

    Rows are created lazily by the ledger on the first inbound movement and
    are only ever mutated through ``inventory.ledger.adjust``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="inventory_records")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="inventory_records")
    quantity = models.IntegerField(default=0)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["vendor", "location"], name="invrecord_vendor_location_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["product", "location"], name="uniq_inventory_product_location"),
            models.CheckConstraint(condition=models.Q(quantity__gte=0), name="inventory_quantity_non_negative"),
        ]


class StockMovement(models.Model):
    class MovementType(models.TextChoices):
        PURCHASE_RECEIPT = "purchase_receipt", "Purchase Receipt"
        WHOLESALE_FULFILLMENT = "wholesale_fulfillment", "Wholesale Fulfillment"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)
    record = models.ForeignKey(InventoryRecord, on_delete=models.PROTECT, related_name="movements")
    product = models.ForeignKey(Product, on_delete=models.PROTECT)
    location = models.ForeignKey(Location, on_delete=models.PROTECT)
    movement_type = models.CharField(max_length=32, choices=MovementType.choices)
    quantity = models.IntegerField()
    quantity_before = models.IntegerField()
    quantity_after = models.IntegerField()
    reason = models.CharField(max_length=255, blank=True, default="")
    reference_type = models.CharField(max_length=64, null=True, blank=True)
    reference_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["location", "product", "created_at"], name="movement_loc_product_idx"),
            models.Index(fields=["vendor", "created_at"], name="movement_vendor_created_idx"),
            models.Index(fields=["reference_id", "reference_type"], name="movement_reference_idx"),
        ]


class InventoryReservation(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        RELEASED = "released", "Released"

    class ReferenceType(models.TextChoices):
        PURCHASE_ORDER = "purchase_order", "Purchase Order"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="reservations")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="reservations")
    reference_type = models.CharField(max_length=32, choices=ReferenceType.choices, default=ReferenceType.PURCHASE_ORDER)
    reference_id = models.UUIDField()
    item = models.ForeignKey(
        "purchasing.PurchaseOrderItem",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reservations",
    )
    quantity = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    released_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["product", "location", "status"], name="reservation_key_status_idx"),
            models.Index(fields=["reference_type", "reference_id", "status"], name="reservation_reference_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="reservation_quantity_positive"),
        ]
