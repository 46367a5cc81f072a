"""Tests for schema validation and the standalone validators."""
import pytest

from fxgate.core.errors import ValidationFailed
from fxgate.core.validation import (
    FieldSpec,
    _model_for,
    compile_schema,
    describe_schema,
    sanitize,
    validate_image_bytes,
    validate_request,
    validate_schema,
    validate_url,
)


def _errors(data, schema):
    with pytest.raises(ValidationFailed) as excinfo:
        validate_schema(data, schema)
    return {(error["field"], error["code"]) for error in excinfo.value.details}


# ---------------------------------------------------------------------------
# validate_schema
# ---------------------------------------------------------------------------

class TestRequiredAndTypes:
    def test_valid_data_passes(self):
        validate_schema({"text": "hi", "size": 300}, {
            "text": FieldSpec("string"),
            "size": FieldSpec("integer", min=100, max=2000),
        })

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_required_field(self, value):
        assert _errors({"text": value}, {"text": FieldSpec("string")}) == {("text", "REQUIRED")}

    def test_optional_field_may_be_absent(self):
        validate_schema({}, {"text": FieldSpec("string", required=False)})

    def test_all_errors_collected(self):
        errors = _errors({"b": 5}, {
            "a": FieldSpec("string"),
            "b": FieldSpec("string"),
            "c": FieldSpec("number", required=False, min=0),
        })
        assert errors == {("a", "REQUIRED"), ("b", "INVALID_TYPE")}

    def test_numeric_strings_count_as_numbers(self):
        validate_schema({"n": "42", "i": "7"}, {"n": FieldSpec("number"), "i": FieldSpec("integer")})

    def test_integer_rejects_fraction(self):
        assert _errors({"i": 1.5}, {"i": FieldSpec("integer")}) == {("i", "INVALID_TYPE")}

    def test_boolean_is_not_a_number(self):
        assert _errors({"n": True}, {"n": FieldSpec("number")}) == {("n", "INVALID_TYPE")}

    def test_boolean_accepts_string_forms(self):
        validate_schema({"flag": "true"}, {"flag": FieldSpec("boolean")})

    def test_date(self):
        validate_schema({"d": "2024-01-31T10:00:00Z"}, {"d": FieldSpec("date")})
        assert _errors({"d": "yesterday"}, {"d": FieldSpec("date")}) == {("d", "INVALID_TYPE")}

    def test_non_object_data(self):
        with pytest.raises(ValidationFailed) as excinfo:
            validate_schema(["not", "a", "dict"], {})
        assert excinfo.value.details[0]["field"] == "data"


class TestConstraints:
    def test_string_lengths(self):
        schema = {"s": FieldSpec("string", min_length=2, max_length=4)}
        assert _errors({"s": "a"}, schema) == {("s", "MIN_LENGTH")}
        assert _errors({"s": "abcde"}, schema) == {("s", "MAX_LENGTH")}

    def test_numeric_bounds(self):
        schema = {"n": FieldSpec("number", min=1, max=10)}
        assert _errors({"n": 0}, schema) == {("n", "MIN_VALUE")}
        assert _errors({"n": "11"}, schema) == {("n", "MAX_VALUE")}
        assert _errors({"n": "abc"}, schema) == {("n", "INVALID_TYPE")}
        validate_schema({"n": 5}, schema)

    @pytest.mark.parametrize("value", ["nan", "NaN", "inf", "-Infinity", float("nan"), 1e400, "1e400"])
    def test_non_finite_numbers_rejected(self, value):
        assert _errors({"n": value}, {"n": FieldSpec("number", min=1, max=10)}) == {("n", "INVALID_TYPE")}
        assert _errors({"n": value}, {"n": FieldSpec("number", min=0)}) == {("n", "INVALID_TYPE")}

    def test_integer_rejects_infinity(self):
        assert _errors({"i": "inf"}, {"i": FieldSpec("integer", min=1)}) == {("i", "INVALID_TYPE")}
        assert _errors({"i": 1e400}, {"i": FieldSpec("integer")}) == {("i", "INVALID_TYPE")}

    def test_enum(self):
        assert _errors({"m": "x"}, {"m": FieldSpec("string", enum=("a", "b"))}) == {("m", "NOT_IN_ENUM")}

    def test_pattern_must_match_whole_string(self):
        schema = {"c": FieldSpec("string", pattern=r"[A-Z]{3}")}
        assert _errors({"c": "USDX"}, schema) == {("c", "PATTERN_MISMATCH")}

    @pytest.mark.parametrize("fmt,value,code", [
        ("email", "not-an-email", "INVALID_EMAIL"),
        ("hex_color", "#12345", "INVALID_HEX_COLOR"),
        ("currency_code", "usd", "INVALID_FORMAT"),
        ("bible_reference", "John three", "INVALID_FORMAT"),
    ])
    def test_formats(self, fmt, value, code):
        assert _errors({"f": value}, {"f": FieldSpec("string", format=fmt)}) == {("f", code)}

    def test_phone_ignores_whitespace(self):
        validate_schema({"p": "+1 555 010 9999"}, {"p": FieldSpec("string", format="phone")})

    def test_arrays(self):
        schema = {"tags": FieldSpec("array", min_items=1, max_items=3, unique_items=True, items=FieldSpec("string"))}
        assert _errors({"tags": []}, schema) == {("tags", "MIN_ITEMS")}
        assert _errors({"tags": ["a", "a"]}, schema) == {("tags", "DUPLICATE_ITEMS")}
        assert _errors({"tags": ["a", 2]}, schema) == {("tags[1]", "INVALID_TYPE")}
        assert _errors({"tags": ["a", "b", "c", "d"]}, schema) == {("tags", "MAX_ITEMS")}

    def test_nested_properties(self):
        schema = {"color": FieldSpec("object", properties={"dark": FieldSpec("string", format="hex_color")})}
        assert _errors({"color": {"dark": "black"}}, schema) == {("color.dark", "INVALID_HEX_COLOR")}

    def test_custom_check(self):
        def even(value, data):
            return None if int(value) % 2 == 0 else "Must be even"

        schema = {"n": FieldSpec("integer", check=even)}
        validate_schema({"n": 4}, schema)
        assert _errors({"n": 3}, schema) == {("n", "CUSTOM_VALIDATION")}

    def test_custom_check_exception(self):
        def boom(value, data):
            raise ValueError("bad value")

        assert _errors({"n": 1}, {"n": FieldSpec("integer", check=boom)}) == {("n", "CUSTOM_VALIDATION_ERROR")}


class TestCompiledSchema:
    def test_keys_that_shadow_model_attributes(self):
        schema = {
            "from": FieldSpec("string", pattern=r"[A-Z]{3}"),
            "json": FieldSpec("integer", required=False, min=1),
            "schema": FieldSpec("boolean", required=False),
        }
        validate_schema({"from": "USD", "json": 2, "schema": "true"}, schema)
        assert _errors({"from": "usd", "json": 0}, schema) == {("from", "PATTERN_MISMATCH"), ("json", "MIN_VALUE")}

    def test_model_is_reused(self):
        schema = {"text": FieldSpec("string")}
        assert _model_for(schema) is _model_for(schema)

    def test_compile_schema_model(self):
        model = compile_schema({"size": FieldSpec("integer", required=False, min=100)})
        assert model.model_validate({"size": "300"}).model_dump(by_alias=True) == {"size": 300}

    def test_error_messages(self):
        with pytest.raises(ValidationFailed) as excinfo:
            validate_schema({"size": 50, "mode": "c"}, {
                "text": FieldSpec("string"),
                "size": FieldSpec("integer", min=100),
                "mode": FieldSpec("string", enum=("a", "b")),
            })
        assert excinfo.value.details == [
            {"field": "text", "error": "Field is required", "code": "REQUIRED"},
            {"field": "size", "error": "Minimum value is 100", "code": "MIN_VALUE"},
            {"field": "mode", "error": "Value must be one of: a, b", "code": "NOT_IN_ENUM"},
        ]

    def test_custom_check_sees_whole_payload(self):
        def below_max(value, data):
            return None if int(value) <= int(data["max"]) else "Must not exceed max"

        schema = {"max": FieldSpec("integer"), "value": FieldSpec("integer", check=below_max)}
        validate_schema({"max": 5, "value": 3}, schema)
        assert _errors({"max": 5, "value": 9}, schema) == {("value", "CUSTOM_VALIDATION")}


# ---------------------------------------------------------------------------
# Standalone validators
# ---------------------------------------------------------------------------

class TestValidateRequest:
    def test_missing_fields(self):
        with pytest.raises(ValidationFailed) as excinfo:
            validate_request({"category": "tools"}, ["category", "function"])
        assert excinfo.value.details[0]["code"] == "MISSING_FIELD"

    def test_data_must_be_object(self):
        with pytest.raises(ValidationFailed):
            validate_request({"data": []})


class TestValidateUrl:
    def test_plain_domain(self):
        assert validate_url("example.com")[0] is True

    def test_protocol_required(self):
        assert validate_url("example.com", require_protocol=True) == (False, "URL must start with http:// or https://")

    def test_domain_lists(self):
        assert validate_url("https://img.example.com/a.png", allowed_domains=["example.com"])[0] is True
        assert validate_url("https://other.org", allowed_domains=["example.com"])[0] is False
        assert validate_url("https://bad.example.com", blocked_domains=["example.com"])[0] is False

    def test_not_a_url(self):
        assert validate_url("not a url")[0] is False
        assert validate_url(None)[0] is False


class TestValidateImageBytes:
    def test_png_signature(self):
        assert validate_image_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 200)[0] is True

    def test_webp_signature(self):
        assert validate_image_bytes(b"RIFF\x00\x00\x00\x00WEBP" + b"\x00" * 200) == (True, "Valid WEBP image")

    def test_too_small(self):
        assert validate_image_bytes(b"\x89PNG") == (False, "Buffer too small to be a valid image")

    def test_unknown_bytes(self):
        assert validate_image_bytes(b"hello" * 50)[0] is False

    def test_size_cap(self):
        assert validate_image_bytes(b"\xff\xd8\xff" + b"\x00" * 300, max_bytes=200)[0] is False


def test_sanitize():
    assert sanitize("  hi <script>alert(1)</script>there ") == "hi there"
    assert sanitize("<b>", escape_html=True) == "&lt;b&gt;"
    assert sanitize("a'b;c", remove_special_chars=True) == "abc"
    assert sanitize("abcdef", max_length=3) == "abc"
    assert sanitize(5) == 5


def test_describe_schema():
    described = describe_schema({
        "size": FieldSpec("integer", required=False, min=100, max=2000),
        "mode": FieldSpec("string", enum=("a", "b")),
    })
    assert described["size"] == {"type": "integer", "required": False, "min": 100, "max": 2000}
    assert described["mode"]["enum"] == ["a", "b"]
