import uuid
from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("external_name", models.CharField(blank=True, default="", max_length=255)),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("contact_email", models.EmailField(blank=True, default="", max_length=254)),
                ("contact_phone", models.CharField(blank=True, default="", max_length=64)),
                ("payment_terms", models.CharField(blank=True, default="", max_length=64)),
                ("notes", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "vendor",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="suppliers", to="core.vendor"),
                ),
                (
                    "supplier_vendor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="supplies_to",
                        to="core.vendor",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["vendor", "is_active"], name="supplier_vendor_active_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            (models.Q(supplier_vendor__isnull=False) & models.Q(external_name=""))
                            | (models.Q(supplier_vendor__isnull=True) & ~models.Q(external_name=""))
                        ),
                        name="supplier_exactly_one_identity",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WholesaleCustomer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("external_company_name", models.CharField(blank=True, default="", max_length=255)),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("contact_email", models.EmailField(blank=True, default="", max_length=254)),
                ("contact_phone", models.CharField(blank=True, default="", max_length=64)),
                (
                    "pricing_tier",
                    models.CharField(
                        choices=[("wholesale", "Wholesale"), ("distributor", "Distributor"), ("partner", "Partner")],
                        default="wholesale",
                        max_length=16,
                    ),
                ),
                ("discount_percent", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("payment_terms", models.CharField(blank=True, default="", max_length=64)),
                ("credit_limit", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "vendor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="wholesale_customers",
                        to="core.vendor",
                    ),
                ),
                (
                    "customer_vendor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="buys_from",
                        to="core.vendor",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["vendor", "is_active"], name="wcustomer_vendor_active_idx")],
                "constraints": [
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
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrder",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("po_number", models.CharField(max_length=32)),
                ("po_type", models.CharField(choices=[("inbound", "Inbound"), ("outbound", "Outbound")], max_length=16)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("confirmed", "Confirmed"),
                            ("in_transit", "In Transit"),
                            ("received", "Received"),
                            ("fulfilled", "Fulfilled"),
                            ("delivered", "Delivered"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("subtotal", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("tax", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("shipping", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("payment_terms", models.CharField(blank=True, default="", max_length=64)),
                ("expected_date", models.DateField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("shipped_at", models.DateTimeField(blank=True, null=True)),
                ("received_at", models.DateTimeField(blank=True, null=True)),
                ("fulfilled_at", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "vendor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="core.vendor",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="purchasing.supplier",
                    ),
                ),
                (
                    "wholesale_customer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="purchasing.wholesalecustomer",
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="inventory.location",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="purchase_orders_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "unique_together": {("vendor", "po_number")},
                "indexes": [
                    models.Index(fields=["vendor", "po_type", "status"], name="po_vendor_type_status_idx"),
                    models.Index(fields=["vendor", "created_at"], name="po_vendor_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            (models.Q(po_type="inbound") & models.Q(supplier__isnull=False) & models.Q(wholesale_customer__isnull=True))
                            | (models.Q(po_type="outbound") & models.Q(wholesale_customer__isnull=False) & models.Q(supplier__isnull=True))
                        ),
                        name="po_counterparty_matches_type",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrderItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("line_total", models.DecimalField(decimal_places=2, max_digits=12)),
                ("quantity_received", models.PositiveIntegerField(default=0)),
                ("quantity_fulfilled", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="purchasing.purchaseorder",
                    ),
                ),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="inventory.product")),
            ],
            options={
                "unique_together": {("purchase_order", "product")},
                "indexes": [models.Index(fields=["product"], name="poitem_product_idx")],
                "constraints": [
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
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrderPayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("check", "Check"),
                            ("wire_transfer", "Wire Transfer"),
                            ("ach", "ACH"),
                            ("card", "Card"),
                            ("other", "Other"),
                        ],
                        max_length=16,
                    ),
                ),
                ("reference_number", models.CharField(blank=True, default="", max_length=128)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payments",
                        to="purchasing.purchaseorder",
                    ),
                ),
                (
                    "recorded_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="po_payments_recorded",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["purchase_order", "created_at"], name="popayment_po_created_idx")],
                "constraints": [
                    models.CheckConstraint(condition=~models.Q(amount=Decimal("0")), name="popayment_amount_non_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrderSequence",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("po_type", models.CharField(choices=[("inbound", "Inbound"), ("outbound", "Outbound")], max_length=16)),
                ("last_value", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "vendor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="po_sequences",
                        to="core.vendor",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("vendor", "po_type"), name="uniq_po_sequence_vendor_type"),
                ],
            },
        ),
    ]
