import uuid

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sku", models.CharField(max_length=64)),
                ("name", models.CharField(max_length=255)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.vendor")),
            ],
            options={
                "unique_together": {("vendor", "sku")},
                "indexes": [models.Index(fields=["vendor", "is_active"], name="product_vendor_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="Location",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.vendor")),
            ],
            options={
                "unique_together": {("vendor", "name")},
                "indexes": [models.Index(fields=["vendor", "is_active"], name="location_vendor_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="InventoryRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.IntegerField(default=0)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.vendor")),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_records",
                        to="inventory.product",
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_records",
                        to="inventory.location",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["vendor", "location"], name="invrecord_vendor_location_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("product", "location"), name="uniq_inventory_product_location"),
                    models.CheckConstraint(condition=models.Q(quantity__gte=0), name="inventory_quantity_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "movement_type",
                    models.CharField(
                        choices=[
                            ("purchase_receipt", "Purchase Receipt"),
                            ("wholesale_fulfillment", "Wholesale Fulfillment"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=32,
                    ),
                ),
                ("quantity", models.IntegerField()),
                ("quantity_before", models.IntegerField()),
                ("quantity_after", models.IntegerField()),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("reference_type", models.CharField(blank=True, max_length=64, null=True)),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.vendor")),
                (
                    "record",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="inventory.inventoryrecord",
                    ),
                ),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="inventory.product")),
                ("location", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="inventory.location")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["location", "product", "created_at"], name="movement_loc_product_idx"),
                    models.Index(fields=["vendor", "created_at"], name="movement_vendor_created_idx"),
                    models.Index(fields=["reference_id", "reference_type"], name="movement_reference_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InventoryReservation",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "reference_type",
                    models.CharField(choices=[("purchase_order", "Purchase Order")], default="purchase_order", max_length=32),
                ),
                ("reference_id", models.UUIDField()),
                ("quantity", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(choices=[("active", "Active"), ("released", "Released")], default="active", max_length=16),
                ),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="core.vendor")),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reservations",
                        to="inventory.product",
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reservations",
                        to="inventory.location",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["product", "location", "status"], name="reservation_key_status_idx"),
                    models.Index(fields=["reference_type", "reference_id", "status"], name="reservation_reference_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(quantity__gt=0), name="reservation_quantity_positive"),
                ],
            },
        ),
    ]
