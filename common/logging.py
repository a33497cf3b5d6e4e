from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone

# Extra attributes copied into the JSON line when a log call passes them.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "remote_addr",
    "user_id",
    "vendor_id",
    "po_id",
    "po_number",
    "product_id",
    "location_id",
    "delta",
    "quantity_after",
)


def _jsonable(value):
    if isinstance(value, (bool, int, float)):
        return value
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying whichever CONTEXT_FIELDS the record has."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {field: _jsonable(getattr(record, field)) for field in CONTEXT_FIELDS if getattr(record, field, None) is not None}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    # 409 covers insufficient stock, illegal transitions and lock conflicts.
    if status_code == 409:
        return logging.WARNING
    return logging.INFO


class RequestLogMiddleware:
    """Give each request an X-Request-ID and write one access log line for it."""

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        response = self.get_response(request)

        user = getattr(request, "user", None)
        authenticated = bool(user is not None and getattr(user, "is_authenticated", False))
        self.logger.log(
            _level_for_status(response.status_code),
            "request_completed",
            extra={
                "request_id": request.request_id,
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
                "remote_addr": request.META.get("REMOTE_ADDR"),
                "user_id": user.id if authenticated else None,
                "vendor_id": getattr(user, "vendor_id", None) if authenticated else None,
            },
        )
        response["X-Request-ID"] = request.request_id
        return response
