"""Tests for FunctionRegistry: lookup, lazy loading, cache and discovery."""
import pytest

from fxgate.core.errors import FunctionNotFound
from fxgate.dispatch.registry import FUNCTION_TABLE, FunctionRegistry, FunctionSpec
from fxgate.functions.base import FunctionHandler


@pytest.fixture()
def registry(context) -> FunctionRegistry:
    return FunctionRegistry(context)


class TestLookup:
    def test_every_table_entry_loads(self, registry: FunctionRegistry):
        for spec in FUNCTION_TABLE:
            handler, _ = registry.get(spec.category, spec.name)
            assert isinstance(handler, FunctionHandler)
            assert handler.category == spec.category
            assert handler.name == spec.name

    def test_keys_are_unique(self):
        keys = [spec.key for spec in FUNCTION_TABLE]
        assert len(keys) == len(set(keys))

    def test_cache_hit_on_second_get(self, registry: FunctionRegistry):
        first, hit = registry.get("fun", "dice")
        assert hit is False
        second, hit = registry.get("fun", "dice")
        assert hit is True
        assert second is first
        assert registry.is_cached("fun", "dice")

    def test_unknown_function(self, registry: FunctionRegistry):
        with pytest.raises(FunctionNotFound) as excinfo:
            registry.get("tools", "teleport")
        details = excinfo.value.details
        assert details["category"] == "tools"
        assert details["function"] == "teleport"
        assert details["availableCategories"] == ["tools", "fun", "ai", "god", "group"]

    def test_exists(self, registry: FunctionRegistry):
        assert registry.exists("god", "verse")
        assert not registry.exists("god", "prayer")
        assert not registry.is_cached("god", "verse")

    def test_target_must_be_a_handler(self, context):
        registry = FunctionRegistry(context, [FunctionSpec("x", "y", "fxgate.core.response:success_response")])
        with pytest.raises(TypeError):
            registry.get("x", "y")


class TestCache:
    def test_clear_cache(self, registry: FunctionRegistry):
        first, _ = registry.get("tools", "qr")
        registry.get("fun", "rps")
        assert registry.cache_size == 2
        assert sorted(registry.cached_keys()) == ["fun:rps", "tools:qr"]

        assert registry.clear_cache() == 2
        assert registry.cache_size == 0
        reloaded, hit = registry.get("tools", "qr")
        assert hit is False
        assert reloaded is not first


class TestDiscovery:
    def test_list_available(self, registry: FunctionRegistry):
        listing = registry.list_available()
        assert listing["total"] == len(FUNCTION_TABLE) == 16
        assert listing["categories"] == ["tools", "fun", "ai", "god", "group"]
        assert {item["name"] for item in listing["byCategory"]["fun"]} == {"dice", "rps", "joke", "advice", "quote"}
        example = listing["functions"][0]["exampleRequest"]
        assert example == {"category": "tools", "function": "qr", "data": {}, "metadata": {}}

    def test_specs_filter(self, registry: FunctionRegistry):
        assert [spec.name for spec in registry.specs("group")] == ["tagall"]

    def test_describe(self, registry: FunctionRegistry):
        handler, _ = registry.get("tools", "qr")
        info = handler.describe(cached=False)
        assert info["cacheStatus"] == "not cached"
        assert info["schema"]["text"]["required"] is True
        assert info["schema"]["size"]["min"] == 100
        assert info["exampleUsage"]["requestBody"]["function"] == "qr"
