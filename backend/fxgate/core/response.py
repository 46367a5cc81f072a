"""Response envelope builders.

Every function handler and every gateway endpoint answers with the same
envelope shape::

    {
        "success": bool,
        "timestamp": "2024-01-01T00:00:00.000Z",
        "message": str,
        "data": any | None,
        "error": {code, numericCode, message, details, httpStatus, timestamp} | None,
        "metadata": dict,
    }

``success`` true implies ``error`` is None; ``success`` false implies
``data`` is None.  The builders below are the only place that shape is
spelled out.
"""
import base64
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

# ---------------------------------------------------------------------------
# Error table: symbolic code -> (numeric code, default HTTP status)
# ---------------------------------------------------------------------------

ERROR_CODES: Dict[str, Tuple[int, int]] = {
    # Validation
    "VALIDATION_ERROR":        (1000, 400),
    "MISSING_FIELD":           (1001, 400),
    "INVALID_TYPE":            (1002, 400),
    "INVALID_FORMAT":          (1003, 400),
    "OUT_OF_RANGE":            (1004, 400),
    "VALIDATION_FAILED":       (1005, 400),
    "INVALID_REQUEST":         (1006, 400),
    "MISSING_FIELDS":          (1007, 400),
    "INVALID_BATCH_REQUEST":   (1008, 400),
    # Authentication
    "UNAUTHORIZED":            (1100, 401),
    "FORBIDDEN":               (1101, 403),
    "INVALID_TOKEN":           (1102, 401),
    "EXPIRED_TOKEN":           (1103, 401),
    # Resources
    "NOT_FOUND":               (1200, 404),
    "ALREADY_EXISTS":          (1201, 409),
    "CONFLICT":                (1202, 409),
    "LIMIT_EXCEEDED":          (1203, 429),
    "FUNCTION_NOT_FOUND":      (1204, 404),
    "FILE_NOT_FOUND":          (1205, 404),
    "FILE_MISSING":            (1206, 404),
    "WORD_NOT_FOUND":          (1207, 404),
    "SLUG_UNAVAILABLE":        (1208, 409),
    # Upstream APIs
    "API_ERROR":               (1300, 502),
    "RATE_LIMITED":            (1301, 429),
    "SERVICE_UNAVAILABLE":     (1302, 503),
    "TIMEOUT":                 (1303, 504),
    "RATE_LIMIT_EXCEEDED":     (1304, 429),
    # Media
    "MEDIA_ERROR":             (1400, 400),
    "FILE_TOO_LARGE":          (1401, 413),
    "UNSUPPORTED_FORMAT":      (1402, 400),
    "PROCESSING_ERROR":        (1403, 400),
    "INVALID_MEDIA":           (1404, 400),
    # Database
    "DATABASE_ERROR":          (1500, 500),
    "CONNECTION_ERROR":        (1501, 500),
    "QUERY_ERROR":             (1502, 500),
    # Network
    "NETWORK_ERROR":           (1600, 500),
    "CONNECTION_REFUSED":      (1601, 500),
    "DNS_ERROR":               (1602, 500),
    # System
    "INTERNAL_ERROR":          (1700, 500),
    "CONFIGURATION_ERROR":     (1701, 500),
    "DEPENDENCY_ERROR":        (1702, 500),
    "EXECUTION_ERROR":         (1703, 500),
    "INVALID_FUNCTION_RESPONSE": (1704, 500),
    "STORAGE_ERROR":           (1705, 500),
    "INTERNAL_SERVER_ERROR":   (1706, 500),
    # Anything else
    "CUSTOM_ERROR":            (1800, 400),
}

_NUMERIC_TO_SYMBOLIC = {numeric: code for code, (numeric, _) in ERROR_CODES.items()}

_app_info: Dict[str, str] = {"version": "1.0.0", "environment": "development"}


def configure_response_metadata(version: str, environment: str) -> None:
    """Set the version/environment stamped on every envelope."""
    _app_info["version"] = version
    _app_info["environment"] = environment


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def lookup_error_code(code: Union[str, int]) -> Tuple[str, int, int]:
    """Resolve *code* to ``(symbolic, numeric, default_status)``.

    Unknown symbolic codes keep their name but take the CUSTOM_ERROR
    numeric code and status.
    """
    if isinstance(code, int):
        symbolic = _NUMERIC_TO_SYMBOLIC.get(code, "CUSTOM_ERROR")
    else:
        symbolic = code
    numeric, status = ERROR_CODES.get(symbolic, ERROR_CODES["CUSTOM_ERROR"])
    return symbolic, numeric, status


# ---------------------------------------------------------------------------
# Base builders
# ---------------------------------------------------------------------------


def success_response(
    data: Any = None,
    message: str = "Operation completed successfully",
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    response: Dict[str, Any] = {
        "success": True,
        "timestamp": utc_now_iso(),
        "message": message,
        "data": data,
        "error": None,
        "metadata": {**(metadata or {}), **_app_info},
    }
    if isinstance(data, dict) and "pagination" in data:
        data = dict(data)
        response["pagination"] = data.pop("pagination")
        response["data"] = data
    return response


def error_response(
    code: Union[str, int],
    message: str,
    details: Any = None,
    http_status: Optional[int] = None,
) -> Dict[str, Any]:
    symbolic, numeric, default_status = lookup_error_code(code)
    now = utc_now_iso()
    return {
        "success": False,
        "timestamp": now,
        "message": message,
        "data": None,
        "error": {
            "code": symbolic,
            "numericCode": numeric,
            "message": message,
            "details": details,
            "httpStatus": http_status or default_status,
            "timestamp": now,
        },
        "metadata": dict(_app_info),
    }


# ---------------------------------------------------------------------------
# Specialised builders
# ---------------------------------------------------------------------------


def paginated_response(
    items: List[Any],
    page: int,
    limit: int,
    total: int,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    page = int(page)
    limit = max(int(limit), 1)
    total_pages = math.ceil(total / limit)
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
        "nextPage": page + 1 if page < total_pages else None,
        "prevPage": page - 1 if page > 1 else None,
    }
    return success_response(
        {"items": items, "pagination": pagination},
        "Paginated results retrieved successfully",
        metadata,
    )


def media_response(
    filename: str,
    mime_type: str,
    content: Optional[bytes] = None,
    url: Optional[str] = None,
    dimensions: Optional[Dict[str, int]] = None,
    fmt: Optional[str] = None,
    duration: Optional[float] = None,
    extra: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Envelope for a produced media item; bytes are base64 encoded."""
    data = {
        "media": base64.b64encode(content).decode("ascii") if content is not None else None,
        "url": url,
        "filename": filename,
        "mimeType": mime_type,
        "size": len(content) if content is not None else None,
        "dimensions": dimensions,
        "format": fmt,
        "duration": duration,
        **(extra or {}),
    }
    meta = {
        **(metadata or {}),
        "mediaType": mime_type.split("/")[0] if mime_type else "unknown",
        "processedAt": utc_now_iso(),
    }
    return success_response(data, "Media processed successfully", meta)


def text_response(text: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    meta = {
        **(metadata or {}),
        "textLength": len(text),
        "wordCount": len(text.split()),
        "processedAt": utc_now_iso(),
    }
    return success_response({"text": text}, "Text processed successfully", meta)


def list_response(items: List[Any], metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    meta = {**(metadata or {}), "count": len(items), "processedAt": utc_now_iso()}
    return success_response({"items": list(items)}, "List retrieved successfully", meta)


def file_download_response(
    record: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Envelope pointing at a stored temp file (see TempStorageManager)."""
    expires_at = record.get("expiresAt")
    expires_in = None
    if expires_at:
        expires = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
        expires_in = max(int((expires - datetime.now(timezone.utc)).total_seconds()), 0)
    data = {
        "fileId": record.get("id"),
        "filename": record.get("filename"),
        "originalName": record.get("originalName"),
        "size": record.get("size"),
        "mimeType": record.get("mimeType"),
        "downloadUrl": record.get("downloadUrl"),
        "expiresAt": expires_at,
    }
    meta = {**(metadata or {}), "expiresIn": expires_in, "downloadCount": 0}
    return success_response(data, "File ready for download", meta)


def ai_response(
    content: str,
    model: str = "unknown",
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    metadata = metadata or {}
    meta = {
        **metadata,
        "model": model,
        "tokens": metadata.get("tokens", len(content) // 4),
        "generatedAt": utc_now_iso(),
        "aiProvider": metadata.get("provider", "unknown"),
    }
    return success_response({"content": content}, "AI response generated successfully", meta)


def settings_response(
    settings: Dict[str, Any],
    action: str = "updated",
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    metadata = metadata or {}
    meta = {
        **metadata,
        "appliedAt": utc_now_iso(),
        "requiresRestart": bool(metadata.get("requiresRestart", False)),
    }
    return success_response({"settings": settings}, f"Settings {action} successfully", meta)


def redirect_response(url: str, message: str = "Redirecting...", permanent: bool = False) -> Dict[str, Any]:
    return success_response(
        {"redirectTo": url},
        message,
        {"redirect": True, "permanent": permanent, "statusCode": 301 if permanent else 302},
    )


def empty_response(message: str = "No data found") -> Dict[str, Any]:
    return success_response(None, message, {"isEmpty": True})


def validation_error_response(errors: List[Dict[str, Any]], message: str = "Validation failed") -> Dict[str, Any]:
    return error_response("VALIDATION_ERROR", message, {"errors": errors}, 400)


def rate_limit_response(retry_after: int = 60, message: str = "Rate limit exceeded") -> Dict[str, Any]:
    return error_response("RATE_LIMIT_EXCEEDED", message, {"retryAfter": retry_after}, 429)


# ---------------------------------------------------------------------------
# Shape checks
# ---------------------------------------------------------------------------


def is_valid_response(response: Any) -> bool:
    """Return True if *response* has the envelope shape."""
    if not isinstance(response, dict):
        return False
    for field in ("success", "timestamp", "message"):
        if field not in response:
            return False
    if not isinstance(response["success"], bool):
        return False
    if response["success"]:
        return "data" in response and not response.get("error")
    return isinstance(response.get("error"), dict)


def merge_responses(responses: Iterable[Dict[str, Any]], operation: str = "batch") -> Dict[str, Any]:
    """Fold several envelopes into one success envelope.

    ``data`` of successful envelopes are shallow-merged in order; the
    failures' error objects are listed in metadata.
    """
    responses = list(responses)
    successful = [r for r in responses if r.get("success")]
    failed = [r for r in responses if not r.get("success")]

    merged: Dict[str, Any] = {}
    for response in successful:
        if isinstance(response.get("data"), dict):
            merged.update(response["data"])

    def _plural(n: int, word: str, suffix: str) -> str:
        return f"{n} {word}{'' if n == 1 else suffix}"

    return success_response(
        merged,
        f"{operation} completed with {_plural(len(successful), 'success', 'es')} "
        f"and {_plural(len(failed), 'failure', 's')}",
        {
            "total": len(responses),
            "successful": len(successful),
            "failed": len(failed),
            "failures": [r.get("error") for r in failed],
        },
    )
