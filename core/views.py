import csv
import logging
import uuid

from django.db import connections
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.permissions import ROLE_CAPABILITY_MATRIX, RoleCapabilityPermission, get_user_role, user_has_capability
from core.models import AuditLog, Vendor
from core.serializers import AuditLogSerializer, VendorSerializer, VendorTokenObtainPairSerializer

logger = logging.getLogger(__name__)


def scoped_queryset_for_user(queryset, user, field="vendor_id"):
    """Restrict ``queryset`` to the caller's vendor.

    Superusers see every vendor; an account without a vendor sees nothing.
    """
    if not user.is_authenticated:
        return queryset.none()
    if user.is_superuser:
        return queryset
    vendor_id = getattr(user, "vendor_id", None)
    return queryset.filter(**{field: vendor_id}) if vendor_id else queryset.none()


def uuid_query_param(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise ValidationError({name: "Must be a valid UUID."})


class VendorTokenObtainPairView(TokenObtainPairView):
    serializer_class = VendorTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class VendorViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Vendor.objects.all()
    serializer_class = VendorSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user, field="id")

    @action(detail=False, methods=["get"], url_path="me")
    def me(self, request):
        user = request.user
        vendor = user.vendor if user.vendor_id else None
        return Response(
            {
                "username": user.get_username(),
                "role": get_user_role(user),
                "vendor": VendorSerializer(vendor).data if vendor else None,
                "capabilities": sorted(cap for cap in ROLE_CAPABILITY_MATRIX if user_has_capability(user, cap)),
            }
        )


AUDIT_EXPORT_COLUMNS = ["id", "created_at", "actor", "vendor", "action", "entity", "entity_id", "request_id"]


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "vendor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "admin.records.manage",
        "retrieve": "admin.records.manage",
        "export": "admin.records.manage",
    }
    exact_filters = {"action": "action", "entity": "entity"}
    uuid_filters = {"actor_id": "actor_id", "entity_id": "entity_id"}

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("-created_at")
        params = self.request.query_params

        for param, lookup in (("start_date", "created_at__gte"), ("end_date", "created_at__lte")):
            moment = parse_datetime(params.get(param) or "")
            if moment:
                qs = qs.filter(**{lookup: moment})
        for param, field in self.exact_filters.items():
            if params.get(param):
                qs = qs.filter(**{field: params[param]})
        for param, field in self.uuid_filters.items():
            value = uuid_query_param(self.request, param)
            if value:
                qs = qs.filter(**{field: value})
        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'
        writer = csv.writer(response)
        writer.writerow(AUDIT_EXPORT_COLUMNS)
        for entry in self.get_queryset():
            writer.writerow(
                [
                    entry.id,
                    entry.created_at.isoformat(),
                    entry.actor.username if entry.actor else "",
                    entry.vendor.code if entry.vendor else "",
                    entry.action,
                    entry.entity,
                    entry.entity_id or "",
                    entry.request_id or "",
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    request_id = getattr(request, "request_id", None)
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed", extra={"request_id": request_id})
        return Response(
            {"status": "error", "request_id": request_id, "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return Response({"status": "ready", "request_id": request_id, "database": connections["default"].vendor})
