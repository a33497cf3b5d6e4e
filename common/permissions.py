import logging

from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

CLERK, MANAGER, ADMIN = User.Role.CLERK, User.Role.MANAGER, User.Role.ADMIN

ROLE_CAPABILITY_MATRIX = {
    # catalog, ledger, reservations and purchase orders
    "inventory.view": {CLERK, MANAGER, ADMIN},
    # drafting, editing, moving and cancelling purchase orders
    "purchasing.manage": {CLERK, MANAGER, ADMIN},
    # receive / fulfill / delivered: the transitions that move stock
    "purchasing.settle": {MANAGER, ADMIN},
    "payments.record": {MANAGER, ADMIN},
    "stock.adjust": {MANAGER, ADMIN},
    "counterparty.manage": {MANAGER, ADMIN},
    "admin.records.manage": {ADMIN},
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return ADMIN
    return getattr(user, "role", None) or (ADMIN if user.is_staff else CLERK)


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return get_user_role(user) in ROLE_CAPABILITY_MATRIX.get(capability, ())


def _log_denial(request, capability, action_key, view_name):
    user = request.user
    logger.warning(
        "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
        capability,
        getattr(user, "username", "anonymous"),
        get_user_role(user),
        request.method,
        request.path,
        view_name,
        action_key,
        extra={"vendor_id": getattr(user, "vendor_id", None)},
    )


def require_capability(request, capability, *, view=None, message=None):
    """Raise PermissionDenied unless the caller holds ``capability``.

    For checks that depend on the payload, where a per-action map is not enough.
    """
    if user_has_capability(request.user, capability):
        return
    _log_denial(request, capability, getattr(view, "action", None), view.__class__.__name__ if view else "unknown")
    raise PermissionDenied(message or f"This action requires the {capability} capability.")


class RoleCapabilityPermission(BasePermission):
    """Look up the capability for the view's action in ``permission_action_map``.

    Actions missing from the map are allowed; denials are logged.
    """

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = getattr(view, "permission_action_map", {}).get(action_key)
        if capability is None or user_has_capability(request.user, capability):
            return True
        _log_denial(request, capability, action_key, view.__class__.__name__)
        return False
