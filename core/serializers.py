from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import AuditLog, Vendor

User = get_user_model()


class VendorTokenObtainPairSerializer(TokenObtainPairSerializer):
    """JWT pair whose claims carry the caller's vendor and role.

    ``username`` may also be an email address, matched case-insensitively.
    """

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["vendor_id"] = str(user.vendor_id) if user.vendor_id else None
        token["role"] = user.role
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        login = attrs.get("username") or ""
        if "@" in login:
            match = User.objects.filter(email__iexact=login.strip()).only("username").first()
            if match is not None:
                attrs["username"] = match.get_username()
        return super().validate(attrs)


class VendorSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vendor
        fields = ["id", "code", "name", "is_active", "created_at", "updated_at"]
        read_only_fields = fields


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)
    vendor_code = serializers.CharField(source="vendor.code", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "created_at",
            "action",
            "entity",
            "entity_id",
            "actor",
            "actor_username",
            "vendor",
            "vendor_code",
            "request_id",
            "before_snapshot",
            "after_snapshot",
        ]
        read_only_fields = fields
