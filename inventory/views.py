from django.db import transaction
from rest_framework import status, viewsets
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from core.views import scoped_queryset_for_user, uuid_query_param
from inventory.ledger import apply_manual_adjustment, get_on_hand
from inventory.models import InventoryRecord, InventoryReservation, Location, Product, StockMovement
from inventory.reservations import active_reserved_quantity
from inventory.serializers import (
    AvailableToPromiseQuerySerializer,
    InventoryRecordSerializer,
    InventoryReservationSerializer,
    LocationSerializer,
    ManualAdjustmentSerializer,
    ProductSerializer,
    StockMovementSerializer,
)

READ_ONLY_CAPABILITIES = {"list": "inventory.view", "retrieve": "inventory.view"}


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = READ_ONLY_CAPABILITIES

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("sku")


class LocationViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Location.objects.all()
    serializer_class = LocationSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = READ_ONLY_CAPABILITIES

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("name")


class InventoryRecordViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = InventoryRecord.objects.select_related("product", "location")
    serializer_class = InventoryRecordSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = READ_ONLY_CAPABILITIES

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("location__name", "product__sku")
        product_id = uuid_query_param(self.request, "product")
        location_id = uuid_query_param(self.request, "location")
        if product_id:
            qs = qs.filter(product_id=product_id)
        if location_id:
            qs = qs.filter(location_id=location_id)
        return qs


class StockMovementViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockMovement.objects.all()
    serializer_class = StockMovementSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = READ_ONLY_CAPABILITIES

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("-created_at")
        for param, field in (("product", "product_id"), ("location", "location_id"), ("reference_id", "reference_id")):
            value = uuid_query_param(self.request, param)
            if value:
                qs = qs.filter(**{field: value})
        movement_type = self.request.query_params.get("movement_type")
        if movement_type:
            qs = qs.filter(movement_type=movement_type)
        return qs


class InventoryReservationViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = InventoryReservation.objects.all()
    serializer_class = InventoryReservationSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = READ_ONLY_CAPABILITIES

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("-created_at")
        status_filter = self.request.query_params.get("status")
        reference_id = uuid_query_param(self.request, "reference_id")
        if status_filter:
            qs = qs.filter(status=status_filter)
        if reference_id:
            qs = qs.filter(reference_id=reference_id)
        return qs


class AvailableToPromiseView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "inventory.view"}

    def get(self, request):
        query = AvailableToPromiseQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        product_id = query.validated_data["product"]
        location_id = query.validated_data["location"]

        if not scoped_queryset_for_user(Product.objects.all(), request.user).filter(id=product_id).exists():
            raise NotFound(f"Product {product_id} was not found.")
        if not scoped_queryset_for_user(Location.objects.all(), request.user).filter(id=location_id).exists():
            raise NotFound(f"Location {location_id} was not found.")

        on_hand = get_on_hand(product_id, location_id)
        reserved = active_reserved_quantity(product_id, location_id)
        return Response(
            {
                "product_id": str(product_id),
                "location_id": str(location_id),
                "on_hand": on_hand,
                "reserved": reserved,
                "available_to_promise": on_hand - reserved,
            }
        )


class ManualAdjustmentView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "stock.adjust"}

    def post(self, request):
        vendor_id = getattr(request.user, "vendor_id", None)
        if not vendor_id:
            raise ValidationError("Authenticated user must belong to a vendor to adjust stock.")

        serializer = ManualAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            before = get_on_hand(data["product_id"], data["location_id"])
            quantity = apply_manual_adjustment(
                vendor_id=vendor_id,
                product_id=data["product_id"],
                location_id=data["location_id"],
                delta=data["delta"],
                reason=data["reason"],
            )
            record = InventoryRecord.objects.get(product_id=data["product_id"], location_id=data["location_id"])
            create_audit_log_from_request(
                request,
                action="stock.adjustment",
                entity="inventory_record",
                entity_id=record.id,
                before_snapshot={"quantity": before},
                after_snapshot={"quantity": quantity, "delta": data["delta"], "reason": data["reason"]},
                vendor=request.user.vendor,
            )

        return Response(InventoryRecordSerializer(record).data, status=status.HTTP_201_CREATED)
