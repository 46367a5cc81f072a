"""Tests for the response envelope builders in fxgate.core.response."""
import base64

import pytest

from fxgate.core.errors import FunctionNotFound, RateLimitExceeded, StorageError
from fxgate.core.response import (
    ERROR_CODES,
    ai_response,
    error_response,
    is_valid_response,
    lookup_error_code,
    media_response,
    merge_responses,
    paginated_response,
    success_response,
)


# ---------------------------------------------------------------------------
# success / error
# ---------------------------------------------------------------------------

class TestSuccessResponse:
    def test_shape(self):
        resp = success_response({"value": 1}, "done", {"extra": True})
        assert resp["success"] is True
        assert resp["error"] is None
        assert resp["data"] == {"value": 1}
        assert resp["message"] == "done"
        assert resp["metadata"]["extra"] is True
        assert "version" in resp["metadata"]
        assert "environment" in resp["metadata"]
        assert resp["timestamp"].endswith("Z")

    def test_default_message(self):
        assert success_response()["message"] == "Operation completed successfully"

    def test_pagination_is_hoisted_out_of_data(self):
        resp = success_response({"items": [1], "pagination": {"page": 1}})
        assert resp["pagination"] == {"page": 1}
        assert "pagination" not in resp["data"]


class TestErrorResponse:
    def test_known_code(self):
        resp = error_response("FUNCTION_NOT_FOUND", "nope", {"category": "x"})
        assert resp["success"] is False
        assert resp["data"] is None
        assert resp["error"]["code"] == "FUNCTION_NOT_FOUND"
        assert resp["error"]["numericCode"] == 1204
        assert resp["error"]["httpStatus"] == 404
        assert resp["error"]["details"] == {"category": "x"}
        assert resp["error"]["message"] == "nope"

    def test_unknown_code_keeps_name_with_custom_numbers(self):
        resp = error_response("SOMETHING_ODD", "odd")
        assert resp["error"]["code"] == "SOMETHING_ODD"
        assert resp["error"]["numericCode"] == 1800
        assert resp["error"]["httpStatus"] == 400

    def test_numeric_code_maps_back(self):
        assert lookup_error_code(1205) == ("FILE_NOT_FOUND", 1205, 404)
        assert lookup_error_code(99999)[0] == "CUSTOM_ERROR"

    def test_explicit_status_wins(self):
        resp = error_response("SERVICE_UNAVAILABLE", "down", http_status=500)
        assert resp["error"]["httpStatus"] == 500

    def test_numeric_codes_are_unique(self):
        numerics = [numeric for numeric, _ in ERROR_CODES.values()]
        assert len(numerics) == len(set(numerics))


class TestExceptionEnvelopes:
    def test_function_not_found(self):
        resp = FunctionNotFound("tools", "nope", ["tools", "fun"]).to_response()
        assert resp["error"]["code"] == "FUNCTION_NOT_FOUND"
        assert resp["error"]["details"]["availableCategories"] == ["tools", "fun"]

    def test_storage_error_code_override(self):
        resp = StorageError("gone", code="FILE_NOT_FOUND").to_response()
        assert resp["error"]["httpStatus"] == 404

    def test_rate_limit(self):
        resp = RateLimitExceeded(42).to_response()
        assert resp["error"]["httpStatus"] == 429
        assert resp["error"]["details"] == {"retryAfter": 42}


# ---------------------------------------------------------------------------
# Specialised builders
# ---------------------------------------------------------------------------

class TestSpecialisedBuilders:
    def test_paginated(self):
        resp = paginated_response(["a", "b"], page=2, limit=10, total=25)
        pagination = resp["pagination"]
        assert pagination["totalPages"] == 3
        assert pagination["hasNext"] is True
        assert pagination["hasPrev"] is True
        assert pagination["nextPage"] == 3
        assert pagination["prevPage"] == 1
        assert resp["data"] == {"items": ["a", "b"]}

    def test_last_page(self):
        pagination = paginated_response([], page=3, limit=10, total=25)["pagination"]
        assert pagination["hasNext"] is False
        assert pagination["nextPage"] is None

    def test_media(self):
        resp = media_response("a.png", "image/png", content=b"abc", dimensions={"width": 1, "height": 1})
        assert resp["data"]["media"] == base64.b64encode(b"abc").decode()
        assert resp["data"]["size"] == 3
        assert resp["metadata"]["mediaType"] == "image"

    def test_ai_estimates_tokens(self):
        resp = ai_response("x" * 40, "gpt-test")
        assert resp["data"] == {"content": "x" * 40}
        assert resp["metadata"]["tokens"] == 10
        assert resp["metadata"]["model"] == "gpt-test"
        assert resp["metadata"]["aiProvider"] == "unknown"


# ---------------------------------------------------------------------------
# Shape checks
# ---------------------------------------------------------------------------

class TestIsValidResponse:
    @pytest.mark.parametrize("value", [None, "text", 1, [], {}, {"success": True}])
    def test_rejects_non_envelopes(self, value):
        assert is_valid_response(value) is False

    def test_accepts_builders(self):
        assert is_valid_response(success_response(None))
        assert is_valid_response(error_response("NOT_FOUND", "x"))

    def test_success_with_error_is_invalid(self):
        resp = success_response({})
        resp["error"] = {"code": "X"}
        assert is_valid_response(resp) is False

    def test_failure_without_error_is_invalid(self):
        assert is_valid_response({"success": False, "timestamp": "t", "message": "m"}) is False

    def test_success_must_be_bool(self):
        assert is_valid_response({"success": "yes", "timestamp": "t", "message": "m", "data": None}) is False


def test_merge_responses():
    merged = merge_responses([
        success_response({"a": 1}),
        success_response({"b": 2}),
        error_response("NOT_FOUND", "missing"),
    ])
    assert merged["data"] == {"a": 1, "b": 2}
    assert merged["message"] == "batch completed with 2 successes and 1 failure"
    assert merged["metadata"]["failed"] == 1
    assert merged["metadata"]["failures"][0]["code"] == "NOT_FOUND"
