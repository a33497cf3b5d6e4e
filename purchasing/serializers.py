from rest_framework import serializers

from purchasing.models import (
    MAX_ITEM_QUANTITY,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderPayment,
    Supplier,
    WholesaleCustomer,
)
from purchasing.payments import payment_summary

COUNTERPARTY_READ_ONLY = ["id", "vendor", "display_name", "created_at", "updated_at"]


class SupplierSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = Supplier
        fields = [
            "id",
            "vendor",
            "supplier_vendor",
            "external_name",
            "display_name",
            "contact_name",
            "contact_email",
            "contact_phone",
            "payment_terms",
            "notes",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = COUNTERPARTY_READ_ONLY

    def validate(self, attrs):
        supplier_vendor = attrs.get("supplier_vendor", getattr(self.instance, "supplier_vendor", None))
        external_name = attrs.get("external_name", getattr(self.instance, "external_name", "")).strip()
        if bool(supplier_vendor) == bool(external_name):
            raise serializers.ValidationError("Provide exactly one of supplier_vendor or external_name.")
        attrs["external_name"] = external_name
        return attrs


class WholesaleCustomerSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = WholesaleCustomer
        fields = [
            "id",
            "vendor",
            "customer_vendor",
            "external_company_name",
            "display_name",
            "contact_name",
            "contact_email",
            "contact_phone",
            "pricing_tier",
            "discount_percent",
            "payment_terms",
            "credit_limit",
            "notes",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = COUNTERPARTY_READ_ONLY

    def validate_discount_percent(self, value):
        if value < 0 or value > 100:
            raise serializers.ValidationError("Discount must be between 0 and 100.")
        return value

    def validate(self, attrs):
        customer_vendor = attrs.get("customer_vendor", getattr(self.instance, "customer_vendor", None))
        company_name = attrs.get("external_company_name", getattr(self.instance, "external_company_name", "")).strip()
        if bool(customer_vendor) == bool(company_name):
            raise serializers.ValidationError("Provide exactly one of customer_vendor or external_company_name.")
        attrs["external_company_name"] = company_name
        return attrs


class PurchaseOrderItemSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = PurchaseOrderItem
        fields = [
            "id",
            "product",
            "product_sku",
            "product_name",
            "quantity",
            "unit_price",
            "line_total",
            "quantity_received",
            "quantity_fulfilled",
        ]
        read_only_fields = fields


class PaymentSummarySerializer(serializers.Serializer):
    amount_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    balance_due = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_status = serializers.CharField()


class PurchaseOrderSerializer(serializers.ModelSerializer):
    items = PurchaseOrderItemSerializer(many=True, read_only=True)
    counterparty_name = serializers.SerializerMethodField()
    location_name = serializers.CharField(source="location.name", read_only=True)
    payment = serializers.SerializerMethodField()

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "vendor",
            "po_number",
            "po_type",
            "status",
            "supplier",
            "wholesale_customer",
            "counterparty_name",
            "location",
            "location_name",
            "subtotal",
            "tax",
            "shipping",
            "total",
            "payment_terms",
            "expected_date",
            "notes",
            "items",
            "payment",
            "created_by",
            "sent_at",
            "confirmed_at",
            "shipped_at",
            "received_at",
            "fulfilled_at",
            "delivered_at",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_counterparty_name(self, obj):
        counterparty = obj.counterparty
        return counterparty.display_name if counterparty else None

    def get_payment(self, obj):
        return PaymentSummarySerializer(payment_summary(obj, paid=getattr(obj, "amount_paid_total", None))).data


class PurchaseOrderItemInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, max_value=MAX_ITEM_QUANTITY)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class PurchaseOrderCreateSerializer(serializers.Serializer):
    po_type = serializers.ChoiceField(choices=PurchaseOrder.Type.choices)
    counterparty_id = serializers.UUIDField()
    location_id = serializers.UUIDField()
    items = PurchaseOrderItemInputSerializer(many=True, allow_empty=False)
    payment_terms = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    expected_date = serializers.DateField(required=False, allow_null=True, default=None)
    tax = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, default=0)
    shipping = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, default=0)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PurchaseOrderItemsUpdateSerializer(serializers.Serializer):
    items = PurchaseOrderItemInputSerializer(many=True, allow_empty=False)
    tax = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    shipping = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)


class PurchaseOrderTransitionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=PurchaseOrder.Status.choices)


class PurchaseOrderPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = PurchaseOrderPayment
        fields = ["id", "purchase_order", "amount", "method", "reference_number", "notes", "recorded_by", "created_at"]
        read_only_fields = fields


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=PurchaseOrderPayment.Method.choices)
    reference_number = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_amount(self, value):
        if value == 0:
            raise serializers.ValidationError("Payment amount cannot be zero.")
        return value
