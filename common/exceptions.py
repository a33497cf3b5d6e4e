from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    NotAcceptable,
    ParseError,
    PermissionDenied,
    Throttled,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class EngineError(APIException):
    """Base class for inventory/purchase-order rule violations.

    Subclasses carry the offending entity in ``errors`` so the API envelope
    always names what failed, never just "operation failed".
    """

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The operation conflicts with the current ledger state."
    default_code = "engine_error"

    def __init__(self, detail: str | None = None, *, errors: dict[str, Any] | None = None):
        super().__init__(detail=detail or self.default_detail, code=self.default_code)
        self.errors = errors or {}


class InvalidTransition(EngineError):
    default_detail = "Purchase order cannot move to the requested status."
    default_code = "invalid_transition"

    def __init__(self, detail: str | None = None, *, po_id=None, from_status=None, to_status=None):
        errors = {"purchase_order_id": str(po_id) if po_id else None, "from_status": from_status, "to_status": to_status}
        super().__init__(detail, errors=errors)
        self.po_id = po_id
        self.from_status = from_status
        self.to_status = to_status


class InsufficientInventory(EngineError):
    default_detail = "Insufficient inventory."
    default_code = "insufficient_inventory"

    def __init__(self, *, product_id, location_id, requested: int, available: int):
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient inventory for product {product_id} at location {location_id}: "
            f"requested {requested}, available {available}, short by {self.shortfall}.",
            errors={
                "product_id": str(product_id),
                "location_id": str(location_id),
                "requested": requested,
                "available": available,
                "shortfall": self.shortfall,
            },
        )


class ConcurrencyConflict(EngineError):
    """Lock wait timed out or a concurrent writer won; the whole operation may be retried."""

    default_detail = "A concurrent update conflicted with this operation. Retry the request."
    default_code = "concurrency_conflict"

    def __init__(self, detail: str | None = None, *, entity: str | None = None, entity_id=None):
        super().__init__(
            detail,
            errors={"entity": entity, "entity_id": str(entity_id) if entity_id else None, "retryable": True},
        )


# Stable ``code`` values for DRF and Django exceptions. EngineError subclasses use their default_code.
ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (ValidationError, "validation_error"),
    (NotAuthenticated, "not_authenticated"),
    (AuthenticationFailed, "authentication_failed"),
    (PermissionDenied, "permission_denied"),
    (DjangoPermissionDenied, "permission_denied"),
    (NotFound, "not_found"),
    (Http404, "not_found"),
    (MethodNotAllowed, "method_not_allowed"),
    (NotAcceptable, "not_acceptable"),
    (UnsupportedMediaType, "unsupported_media_type"),
    (ParseError, "parse_error"),
    (Throttled, "throttled"),
)

# Seconds a client should wait before retrying a ConcurrencyConflict.
CONFLICT_RETRY_AFTER = "1"


def build_error_envelope(*, code: str, message: str, errors: Any, status_code: int) -> dict[str, Any]:
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    """Render every API error as ``{code, message, errors, status}``."""
    response = drf_exception_handler(exc, context)

    if response is None:
        view = context.get("view")
        logger.exception("unhandled_api_exception view=%s", type(view).__name__ if view else "unknown")
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return Response(
            build_error_envelope(
                code="internal_server_error",
                message=GENERIC_SERVER_ERROR_MESSAGE,
                errors=None,
                status_code=status_code,
            ),
            status=status_code,
        )

    if isinstance(exc, EngineError):
        errors = exc.errors
    else:
        errors = _field_errors(response.data)
    response.data = build_error_envelope(
        code=_error_code(exc),
        message=_error_message(exc, response.data),
        errors=errors,
        status_code=response.status_code,
    )
    if isinstance(exc, ConcurrencyConflict):
        response["Retry-After"] = CONFLICT_RETRY_AFTER
    return response


def _error_code(exc: Exception) -> str:
    if isinstance(exc, EngineError):
        return exc.default_code
    for exception_type, code in ERROR_CODES:
        if isinstance(exc, exception_type):
            return code
    return str(getattr(exc, "default_code", "api_error"))


def _error_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."
    if isinstance(exc, EngineError):
        return str(exc.detail)
    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    if isinstance(exc, Throttled):
        return "Request was throttled."
    return str(getattr(exc, "detail", "Request failed."))


def _field_errors(data: Any) -> Any:
    # A bare {"detail": ...} has nothing beyond the message.
    if isinstance(data, Mapping):
        return None if set(data) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
