"""Schema-driven input validation for function handlers.

A schema is a plain dict mapping field names to :class:`FieldSpec`::

    SCHEMA = {
        "text": FieldSpec("string", max_length=1000),
        "size": FieldSpec("number", required=False, min=100, max=2000),
    }
    validate_schema(data, SCHEMA)

Each schema is compiled once into a pydantic model.  Pydantic collects
every field error before raising, and those errors are reported as a
single :class:`ValidationFailed` with ``{field, error, code}`` details.
"""
import html
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Type, Union
from urllib.parse import urlparse

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    ValidationError,
    ValidationInfo,
    create_model,
    model_validator,
)
from pydantic_core import PydanticCustomError

from fxgate.core.errors import ValidationFailed

# Fixed pattern table usable through FieldSpec.format
PATTERNS: Dict[str, "re.Pattern[str]"] = {
    "phone":           re.compile(r"^\+?[\d\s\-()]{10,}$"),
    "email":           re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    "url":             re.compile(r"^(https?://)?([\da-z.-]+)\.([a-z.]{2,6})([/\w .\-?=&%#:+~]*)*/?$", re.IGNORECASE),
    "username":        re.compile(r"^[a-zA-Z0-9_]{3,30}$"),
    "password":        re.compile(r"^(?=.*[A-Za-z])(?=.*\d)[A-Za-z\d@$!%*#?&]{8,}$"),
    "hex_color":       re.compile(r"^#?([a-fA-F0-9]{6}|[a-fA-F0-9]{3})$"),
    "base64":          re.compile(r"^[A-Za-z0-9+/]*={0,2}$"),
    "jwt":             re.compile(r"^[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.?[A-Za-z0-9\-_.+/=]*$"),
    "ip":              re.compile(r"^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"),
    "mac_address":     re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$"),
    "youtube_id":      re.compile(r"^[a-zA-Z0-9_-]{11}$"),
    "instagram_url":   re.compile(r"(?:https?://)?(?:www\.)?instagram\.com/([A-Za-z0-9_.]+)"),
    "tiktok_url":      re.compile(r"(?:https?://)?(?:www\.)?tiktok\.com/@([A-Za-z0-9_.]+)"),
    "bible_reference": re.compile(r"^[1-3]?\s?[A-Za-z]+\s\d+:\d+(-\d+)?$"),
    "currency_code":   re.compile(r"^[A-Z]{3}$"),
    "language_code":   re.compile(r"^[a-z]{2}(-[A-Z]{2})?$"),
    "timezone":        re.compile(r"^[A-Za-z_]+/[A-Za-z_]+$"),
    "uuid":            re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE),
}

_FORMAT_ERROR_CODES = {
    "email":     ("Invalid email address", "INVALID_EMAIL"),
    "url":       ("Invalid URL", "INVALID_URL"),
    "phone":     ("Invalid phone number", "INVALID_PHONE"),
    "base64":    ("Invalid base64 string", "INVALID_BASE64"),
    "hex_color": ("Invalid hex color", "INVALID_HEX_COLOR"),
    "ip":        ("Invalid IP address", "INVALID_IP"),
    "jwt":       ("Invalid JWT token", "INVALID_JWT"),
    "uuid":      ("Invalid UUID", "INVALID_UUID"),
}

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_SPECIAL_CHARS = re.compile(r"[<>\"'`;]")

MAX_IMAGE_BYTES = 20 * 1024 * 1024

Check = Callable[[Any, Dict[str, Any]], Union[bool, str, None]]


@dataclass
class FieldSpec:
    """Validation rules for one input field.

    Attributes:
        type: One of string, number, integer, boolean, array, object, bytes, date.
        required: Missing, None and "" are errors unless this is False.
        min_length / max_length: String length bounds.
        min / max: Numeric bounds (inclusive).
        enum: Allowed string values.
        pattern: Regex the whole string must match.
        format: Name of an entry in PATTERNS.
        min_items / max_items / unique_items / items: Array rules.
        properties: Nested schema for object values.
        check: ``check(value, data)`` returning True (or None) when valid,
            otherwise False or an error message.
    """
    type: Optional[str] = None
    required: bool = True
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    enum: Optional[Sequence[Any]] = None
    pattern: Optional[str] = None
    format: Optional[str] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    unique_items: bool = False
    items: Optional["FieldSpec"] = None
    properties: Optional[Dict[str, "FieldSpec"]] = None
    check: Optional[Check] = field(default=None, repr=False)


Schema = Dict[str, FieldSpec]


# ---------------------------------------------------------------------------
# Schema compilation
# ---------------------------------------------------------------------------

# pydantic error types that map onto our codes; any other lowercase type is
# a type mismatch, and uppercase types are our own PydanticCustomError codes
_ERROR_CODES = {
    "missing": "REQUIRED",
    "string_too_short": "MIN_LENGTH",
    "string_too_long": "MAX_LENGTH",
    "string_pattern_mismatch": "PATTERN_MISMATCH",
    "greater_than_equal": "MIN_VALUE",
    "less_than_equal": "MAX_VALUE",
    "too_short": "MIN_ITEMS",
    "too_long": "MAX_ITEMS",
    "literal_error": "NOT_IN_ENUM",
}


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class SchemaModel(BaseModel):
    """Base for compiled schemas; empty values count as absent."""
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_empty(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if not _is_empty(value)}
        return data


def _type_error(kind: str) -> PydanticCustomError:
    return PydanticCustomError("INVALID_TYPE", "Field must be of type {kind}", {"kind": kind})


def _not_bool(kind: str) -> Callable[[Any], Any]:
    def validate(value: Any) -> Any:
        if isinstance(value, bool):
            raise _type_error(kind)
        return value
    return validate


def _bool_from_text(value: Any) -> Any:
    if value in ("true", "false"):
        return value == "true"
    return value


def _date_input(value: Any) -> Any:
    if not isinstance(value, (str, datetime)):
        raise _type_error("date")
    return value


def _base64_text(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return value
    if isinstance(value, str) and PATTERNS["base64"].match(value):
        return value
    raise _type_error("bytes")


def _format_check(name: str) -> Callable[[str], str]:
    message, code = _FORMAT_ERROR_CODES.get(name, (f"Invalid {name.replace('_', ' ')}", "INVALID_FORMAT"))
    pattern = PATTERNS[name]

    def validate(value: str) -> str:
        candidate = re.sub(r"\s", "", value) if name == "phone" else value
        if not pattern.match(candidate):
            raise PydanticCustomError(code, message)
        return value
    return validate


def _enum_check(allowed: Sequence[Any]) -> Callable[[Any], Any]:
    def validate(value: Any) -> Any:
        if value not in allowed:
            raise PydanticCustomError(
                "NOT_IN_ENUM", "Value must be one of: {allowed}",
                {"allowed": ", ".join(map(str, allowed))},
            )
        return value
    return validate


def _unique_items(value: List[Any]) -> List[Any]:
    seen = [repr(item) for item in value]
    if len(set(seen)) != len(seen):
        raise PydanticCustomError("DUPLICATE_ITEMS", "All items must be unique")
    return value


def _custom_check(check: Check) -> Callable[[Any, ValidationInfo], Any]:
    def validate(value: Any, info: ValidationInfo) -> Any:
        data = (info.context or {}).get("data", {})
        try:
            result = check(value, data)
        except Exception as exc:
            raise PydanticCustomError("CUSTOM_VALIDATION_ERROR", "{reason}", {"reason": str(exc)})
        if result is not True and result is not None:
            raise PydanticCustomError(
                "CUSTOM_VALIDATION", "{reason}", {"reason": result or "Custom validation failed"}
            )
        return value
    return validate


def _anchored(pattern: Optional[str]) -> Optional[str]:
    return None if pattern is None else f"^(?:{pattern})$"


def _annotation(spec: FieldSpec, name: str) -> Any:
    """Pydantic type for one field, constraints and validators included."""
    kind = spec.type
    validators: List[Any] = []

    if kind == "string":
        if spec.enum is not None:
            base: Any = Literal[tuple(spec.enum)]
        else:
            base = Annotated[StrictStr, Field(
                min_length=spec.min_length, max_length=spec.max_length, pattern=_anchored(spec.pattern),
            )]
        if spec.format:
            validators.append(AfterValidator(_format_check(spec.format)))
    elif kind in ("number", "integer"):
        if kind == "number":
            bounded: Any = Annotated[float, Field(ge=spec.min, le=spec.max, allow_inf_nan=False)]
        else:
            bounded = Annotated[int, Field(ge=spec.min, le=spec.max)]
        base = Annotated[bounded, BeforeValidator(_not_bool(kind))]
        if spec.enum is not None:
            validators.append(AfterValidator(_enum_check(spec.enum)))
    elif kind == "boolean":
        base = Annotated[StrictBool, BeforeValidator(_bool_from_text)]
    elif kind == "array":
        item = _annotation(spec.items, f"{name}_item") if spec.items is not None else Any
        base = Annotated[List[item], Field(min_length=spec.min_items, max_length=spec.max_items)]
        if spec.unique_items:
            validators.append(AfterValidator(_unique_items))
    elif kind == "object":
        base = compile_schema(spec.properties, name) if spec.properties else Dict[str, Any]
    elif kind == "bytes":
        base = Annotated[Any, AfterValidator(_base64_text)]
    elif kind == "date":
        base = Annotated[datetime, BeforeValidator(_date_input)]
    elif kind is None:
        base = Any
    else:
        raise ValueError(f"Unknown field type: {kind}")

    if spec.check is not None:
        validators.append(AfterValidator(_custom_check(spec.check)))
    return Annotated[(base, *validators)] if validators else base


def compile_schema(schema: Schema, name: str = "Schema") -> Type[SchemaModel]:
    """Build a pydantic model that enforces *schema*.

    Fields are declared under generated names with the schema key as alias,
    so keys such as ``from`` or ``json`` never clash with model attributes.
    """
    fields: Dict[str, Any] = {}
    for index, (key, spec) in enumerate(schema.items()):
        annotation = _annotation(spec, f"{name}_{key}")
        if spec.required:
            fields[f"field_{index}"] = (annotation, Field(alias=key))
        else:
            fields[f"field_{index}"] = (Optional[annotation], Field(default=None, alias=key))
    return create_model(name, __base__=SchemaModel, **fields)


# Compiled models keyed by schema identity; the schema is kept alongside so
# its id cannot be reused while the entry exists
_MODELS: Dict[int, Tuple[Schema, Type[SchemaModel]]] = {}


def _model_for(schema: Schema) -> Type[SchemaModel]:
    cached = _MODELS.get(id(schema))
    if cached is None or cached[0] is not schema:
        cached = (schema, compile_schema(schema))
        _MODELS[id(schema)] = cached
    return cached[1]


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------


def _field_name(loc: Sequence[Union[str, int]]) -> str:
    name = ""
    for part in loc:
        if isinstance(part, int):
            name += f"[{part}]"
        else:
            name = f"{name}.{part}" if name else str(part)
    return name


def _spec_at(schema: Schema, loc: Sequence[Union[str, int]]) -> Optional[FieldSpec]:
    spec: Optional[FieldSpec] = None
    current: Optional[Schema] = schema
    for part in loc:
        if isinstance(part, int):
            spec = spec.items if spec is not None else None
        elif current is not None and part in current:
            spec = current[part]
        else:
            return None
        current = spec.properties if spec is not None else None
    return spec


def _message(code: str, spec: Optional[FieldSpec], error: Dict[str, Any]) -> str:
    if code == "REQUIRED":
        return "Field is required"
    if spec is None:
        return error["msg"]
    if code == "INVALID_TYPE":
        return f"Field must be of type {spec.type}"
    if code == "MIN_LENGTH":
        return f"Minimum length is {spec.min_length}"
    if code == "MAX_LENGTH":
        return f"Maximum length is {spec.max_length}"
    if code == "PATTERN_MISMATCH":
        return "Value does not match required pattern"
    if code == "MIN_VALUE":
        return f"Minimum value is {spec.min:g}"
    if code == "MAX_VALUE":
        return f"Maximum value is {spec.max:g}"
    if code == "MIN_ITEMS":
        return f"Minimum {spec.min_items} items required"
    if code == "MAX_ITEMS":
        return f"Maximum {spec.max_items} items allowed"
    if code == "NOT_IN_ENUM" and spec.enum is not None:
        return f"Value must be one of: {', '.join(map(str, spec.enum))}"
    return error["msg"]


def _details(exc: ValidationError, schema: Schema) -> List[Dict[str, str]]:
    details = []
    for error in exc.errors():
        kind = error["type"]
        code = kind if kind.isupper() else _ERROR_CODES.get(kind, "INVALID_TYPE")
        details.append({
            "field": _field_name(error["loc"]),
            "error": _message(code, _spec_at(schema, error["loc"]), error),
            "code": code,
        })
    return details


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


def validate_schema(data: Optional[Dict[str, Any]], schema: Schema) -> None:
    """Validate *data* against *schema*.

    Raises:
        ValidationFailed: with a ``details`` list of ``{field, error, code}``.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationFailed(
            "Validation failed",
            [{"field": "data", "error": "data must be an object", "code": "INVALID_TYPE"}],
        )
    try:
        _model_for(schema).model_validate(data, context={"data": data})
    except ValidationError as exc:
        raise ValidationFailed("Validation failed", _details(exc, schema)) from exc


def validate_request(request: Any, required_fields: Sequence[str] = ()) -> None:
    """Check the outer request envelope shape."""
    if not isinstance(request, dict):
        raise ValidationFailed(
            "Request must be an object",
            [{"field": "", "error": "Request must be an object", "code": "INVALID_REQUEST"}],
        )
    missing = [name for name in required_fields if name not in request]
    errors = [
        {"field": name, "error": f"Missing required field: {name}", "code": "MISSING_FIELD"}
        for name in missing
    ]
    if request.get("data") is not None and not isinstance(request["data"], dict):
        errors.append({"field": "data", "error": "data field must be an object", "code": "INVALID_DATA"})
    if request.get("metadata") is not None and not isinstance(request["metadata"], dict):
        errors.append({"field": "metadata", "error": "metadata field must be an object", "code": "INVALID_METADATA"})
    if errors:
        raise ValidationFailed("Invalid request", errors)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def sanitize(
    value: Any,
    escape_html: bool = False,
    remove_special_chars: bool = False,
    max_length: Optional[int] = None,
) -> Any:
    """Trim and strip script tags from strings; other values pass through."""
    if not isinstance(value, str):
        return value
    cleaned = _SCRIPT_TAG.sub("", value.strip())
    if remove_special_chars:
        cleaned = _SPECIAL_CHARS.sub("", cleaned)
    if escape_html:
        cleaned = html.escape(cleaned, quote=True)
    if max_length is not None and len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def validate_image_bytes(content: Any, max_bytes: int = MAX_IMAGE_BYTES) -> Tuple[bool, str]:
    """Check that *content* looks like a JPEG, PNG, GIF or WebP image."""
    if not isinstance(content, (bytes, bytearray)):
        return False, "Input is not a valid buffer"
    if len(content) == 0:
        return False, "Buffer is empty"
    if len(content) < 100:
        return False, "Buffer too small to be a valid image"
    if len(content) > max_bytes:
        return False, f"Image exceeds maximum size of {max_bytes // (1024 * 1024)}MB"

    head = bytes(content[:12])
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return True, "Valid WEBP image"
    if head.startswith((b"\xff\xd8\xff", b"\x89PNG", b"GIF8")):
        return True, "Valid image buffer"
    return False, "Buffer does not contain valid image data"


def validate_url(
    url: Any,
    require_protocol: bool = False,
    allowed_domains: Optional[Sequence[str]] = None,
    blocked_domains: Optional[Sequence[str]] = None,
) -> Tuple[bool, str]:
    """Check a URL's shape and, optionally, its domain."""
    if not url or not isinstance(url, str):
        return False, "URL must be a string"
    if len(url) > 2048:
        return False, "URL too long"
    if not PATTERNS["url"].match(url):
        return False, "Invalid URL format"
    has_protocol = url.startswith(("http://", "https://"))
    if require_protocol and not has_protocol:
        return False, "URL must start with http:// or https://"

    domain = urlparse(url if has_protocol else f"https://{url}").hostname or ""

    def _matches(candidates: Sequence[str]) -> bool:
        return any(domain == entry or domain.endswith(f".{entry}") for entry in candidates)

    if allowed_domains is not None and not _matches(allowed_domains):
        return False, "Domain not allowed"
    if blocked_domains is not None and _matches(blocked_domains):
        return False, "Domain is blocked"
    return True, "Valid URL"


def describe_schema(schema: Schema) -> Dict[str, Dict[str, Any]]:
    """JSON-friendly view of *schema* for discovery endpoints."""
    described: Dict[str, Dict[str, Any]] = {}
    for name, spec in schema.items():
        entry: Dict[str, Any] = {"type": spec.type, "required": spec.required}
        for attr in ("min_length", "max_length", "min", "max", "pattern", "format", "min_items", "max_items"):
            value = getattr(spec, attr)
            if value is not None:
                entry[attr] = value
        if spec.enum is not None:
            entry["enum"] = list(spec.enum)
        if spec.unique_items:
            entry["unique_items"] = True
        if spec.items is not None:
            entry["items"] = describe_schema({"item": spec.items})["item"]
        if spec.properties:
            entry["properties"] = describe_schema(spec.properties)
        described[name] = entry
    return described
