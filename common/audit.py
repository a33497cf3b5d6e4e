"""Audit trail helpers.

Service functions call ``create_audit_log`` inside their own transaction, so
an audit row commits or rolls back together with the change it records.
Views pass ``actor_context(request)`` down to those services.
"""

import json

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog


def get_request_id(request):
    # RequestLogMiddleware always sets request_id; the header is a fallback for bare requests.
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def actor_context(request):
    return {"actor": getattr(request, "user", None), "request_id": get_request_id(request)}


def _json_safe(snapshot):
    # Decimals, UUIDs and datetimes become their string forms.
    if snapshot is None:
        return None
    return json.loads(json.dumps(snapshot, cls=DjangoJSONEncoder))


def create_audit_log(
    *,
    action,
    entity,
    entity_id=None,
    vendor=None,
    actor=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    if not getattr(actor, "is_authenticated", False):
        actor = None
    return AuditLog.objects.create(
        action=action,
        entity=entity,
        entity_id=entity_id,
        vendor=vendor,
        actor=actor,
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )


def create_audit_log_from_request(request, *, action, entity, **fields):
    return create_audit_log(action=action, entity=entity, **actor_context(request), **fields)
