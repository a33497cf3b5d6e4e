from decimal import Decimal

from django.db import transaction
from django.db.models import DecimalField, ProtectedError, Sum, Value
from django.db.models.functions import Coalesce
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import actor_context, create_audit_log_from_request
from common.permissions import RoleCapabilityPermission, require_capability
from core.views import scoped_queryset_for_user
from purchasing import payments as payment_ledger
from purchasing import services, settlement
from purchasing.models import PurchaseOrder, Supplier, WholesaleCustomer
from purchasing.serializers import (
    PaymentCreateSerializer,
    PaymentSummarySerializer,
    PurchaseOrderCreateSerializer,
    PurchaseOrderItemsUpdateSerializer,
    PurchaseOrderPaymentSerializer,
    PurchaseOrderSerializer,
    PurchaseOrderTransitionSerializer,
    SupplierSerializer,
    WholesaleCustomerSerializer,
)
from purchasing.state_machine import PENDING_STATES, is_settling


def _require_vendor(user):
    if not getattr(user, "vendor_id", None):
        raise ValidationError("Authenticated user must belong to a vendor to create records.")
    return user.vendor_id


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            vendor=getattr(instance, "vendor", None),
        )

    @transaction.atomic
    def perform_create(self, serializer):
        instance = serializer.save(vendor_id=_require_vendor(self.request.user))
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    @transaction.atomic
    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(action=f"{self.audit_entity}.update", instance=instance, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(instance).data)

    @transaction.atomic
    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._audit(action=f"{self.audit_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        try:
            instance.delete()
        except ProtectedError:
            raise ValidationError(f"This {self.audit_entity.replace('_', ' ')} is referenced by purchase orders; deactivate it instead.")


COUNTERPARTY_CAPABILITIES = {
    "list": "inventory.view",
    "retrieve": "inventory.view",
    "create": "counterparty.manage",
    "update": "counterparty.manage",
    "partial_update": "counterparty.manage",
    "destroy": "counterparty.manage",
}


class SupplierViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.select_related("supplier_vendor")
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = COUNTERPARTY_CAPABILITIES
    audit_entity = "supplier"

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("created_at")


class WholesaleCustomerViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = WholesaleCustomer.objects.select_related("customer_vendor")
    serializer_class = WholesaleCustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = COUNTERPARTY_CAPABILITIES
    audit_entity = "wholesale_customer"

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("created_at")


class PurchaseOrderViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = PurchaseOrder.objects.select_related("supplier__supplier_vendor", "wholesale_customer__customer_vendor", "location")
    serializer_class = PurchaseOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "pending": "inventory.view",
        "payments": "inventory.view",
        "create": "purchasing.manage",
        "items": "purchasing.manage",
        "transition": "purchasing.manage",
        "cancel": "purchasing.manage",
        "destroy": "purchasing.manage",
        "receive": "purchasing.settle",
        "fulfill": "purchasing.settle",
        "record_payment": "payments.record",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        qs = qs.prefetch_related("items__product").annotate(
            amount_paid_total=Coalesce(
                Sum("payments__amount"),
                Value(Decimal("0")),
                output_field=DecimalField(max_digits=14, decimal_places=2),
            )
        )
        po_type = self.request.query_params.get("po_type")
        status_filter = self.request.query_params.get("status")
        if po_type:
            qs = qs.filter(po_type=po_type)
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs.order_by("-created_at")

    def _context(self):
        return actor_context(self.request)

    def _respond(self, purchase_order, status_code=status.HTTP_200_OK):
        fresh = self.get_queryset().get(id=purchase_order.id)
        return Response(PurchaseOrderSerializer(fresh).data, status=status_code)

    def create(self, request, *args, **kwargs):
        vendor_id = _require_vendor(request.user)
        serializer = PurchaseOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.create_purchase_order(vendor_id=vendor_id, **serializer.validated_data, **self._context())
        return self._respond(purchase_order, status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        purchase_order = self.get_object()
        services.delete_draft(purchase_order.id, **self._context())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["get"], url_path="pending")
    def pending(self, request):
        qs = self.get_queryset().filter(status__in=PENDING_STATES)
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(qs, many=True).data)

    @action(detail=True, methods=["put"], url_path="items")
    def items(self, request, pk=None):
        purchase_order = self.get_object()
        serializer = PurchaseOrderItemsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.update_draft_items(purchase_order.id, **serializer.validated_data, **self._context())
        return self._respond(purchase_order)

    @action(detail=True, methods=["post"], url_path="transition")
    def transition(self, request, pk=None):
        purchase_order = self.get_object()
        serializer = PurchaseOrderTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        target_status = serializer.validated_data["status"]
        if is_settling(purchase_order.po_type, target_status):
            require_capability(request, "purchasing.settle", view=self)
        purchase_order = services.transition(purchase_order.id, target_status, **self._context())
        return self._respond(purchase_order)

    @action(detail=True, methods=["post"], url_path="receive")
    def receive(self, request, pk=None):
        purchase_order = settlement.receive(self.get_object().id, **self._context())
        return self._respond(purchase_order)

    @action(detail=True, methods=["post"], url_path="fulfill")
    def fulfill(self, request, pk=None):
        purchase_order = settlement.fulfill(self.get_object().id, **self._context())
        return self._respond(purchase_order)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        purchase_order = services.cancel(self.get_object().id, **self._context())
        return self._respond(purchase_order)

    @action(detail=True, methods=["get"], url_path="payments")
    def payments(self, request, pk=None):
        purchase_order = self.get_object()
        rows = purchase_order.payments.order_by("created_at")
        return Response(
            {
                "summary": PaymentSummarySerializer(payment_ledger.payment_summary(purchase_order)).data,
                "results": PurchaseOrderPaymentSerializer(rows, many=True).data,
            }
        )

    @payments.mapping.post
    def record_payment(self, request, pk=None):
        purchase_order = self.get_object()
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = payment_ledger.record_payment(purchase_order.id, **serializer.validated_data, **self._context())
        return Response(PurchaseOrderPaymentSerializer(payment).data, status=status.HTTP_201_CREATED)
