from rest_framework import serializers

from inventory.ledger import MAX_DELTA
from inventory.models import InventoryRecord, InventoryReservation, Location, Product, StockMovement


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "vendor", "sku", "name", "is_active", "created_at", "updated_at"]
        read_only_fields = fields


class LocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Location
        fields = ["id", "vendor", "name", "is_active", "created_at", "updated_at"]
        read_only_fields = fields


class InventoryRecordSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    location_name = serializers.CharField(source="location.name", read_only=True)

    class Meta:
        model = InventoryRecord
        fields = ["id", "vendor", "product", "product_sku", "location", "location_name", "quantity", "version", "created_at", "updated_at"]
        read_only_fields = fields


class StockMovementSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockMovement
        fields = [
            "id",
            "vendor",
            "record",
            "product",
            "location",
            "movement_type",
            "quantity",
            "quantity_before",
            "quantity_after",
            "reason",
            "reference_type",
            "reference_id",
            "created_at",
        ]
        read_only_fields = fields


class InventoryReservationSerializer(serializers.ModelSerializer):
    class Meta:
        model = InventoryReservation
        fields = [
            "id",
            "vendor",
            "product",
            "location",
            "reference_type",
            "reference_id",
            "item",
            "quantity",
            "status",
            "released_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AvailableToPromiseQuerySerializer(serializers.Serializer):
    product = serializers.UUIDField()
    location = serializers.UUIDField()


class ManualAdjustmentSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    location_id = serializers.UUIDField()
    delta = serializers.IntegerField(min_value=-MAX_DELTA, max_value=MAX_DELTA)
    reason = serializers.CharField(max_length=255)

    def validate_delta(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment must be non-zero.")
        return value
