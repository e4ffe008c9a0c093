"""Tests for the cache adapter: policy enforcement and chaining."""

import logging
from unittest.mock import MagicMock

import pytest

from tiercache.adapter import BatchResult, CacheAdapter
from tiercache.backends.base import StorageBackend
from tiercache.backends.memory import new_memory_cache
from tiercache.datatypes import DataType, float32, int8, int16, int32, uint8, uint16, uint32, uint64
from tiercache.errors import (
    BackendError,
    KeyInvalidError,
    KeyNotFoundError,
    NotReadableError,
    NotWritableError,
    UnsupportedDataTypeError,
    ValueConversionError,
)
from tiercache.options import CacheOptions

NUMERIC_VALUES = [
    int8(100),
    int16(100),
    int32(100),
    100,
    uint8(100),
    uint16(100),
    uint32(100),
    uint64(100),
    float32(100.0),
    100.0,
]


def _mock_backend(**option_fields) -> MagicMock:
    backend = MagicMock(spec=StorageBackend)
    backend.name = "mock"
    backend.options = CacheOptions(**option_fields)
    return backend


class TestBatchResult:
    """Tests for BatchResult."""

    def test_truthy_without_error(self):
        result = BatchResult(items={"a": 1})
        assert result
        assert result.raise_for_error() == {"a": 1}

    def test_falsy_with_error(self):
        result = BatchResult(items={}, error=KeyNotFoundError("a"))
        assert not result
        with pytest.raises(KeyNotFoundError):
            result.raise_for_error()


class TestKeyUtilities:
    """Tests for namespacing and key validation."""

    def test_namespaced_key(self):
        cache = new_memory_cache("app:")
        assert cache.namespaced_key("user") == "app:user"

    def test_strip_namespace_first_occurrence_only(self):
        cache = new_memory_cache("a:")
        assert cache.strip_namespace("a:a:x") == "a:x"
        assert cache.strip_namespace("plain") == "plain"

    def test_strip_without_namespace(self):
        assert new_memory_cache().strip_namespace("key") == "key"

    def test_validate_key_pattern(self):
        cache = new_memory_cache("ns:", key_pattern=r"^ns:[a-z]+$")
        assert cache.validate_key("ns:abc")
        assert not cache.validate_key("ns:ABC")

    def test_validate_key_searches_pattern(self):
        """An unanchored pattern may match anywhere in the key."""
        cache = new_memory_cache("ns:", key_pattern=r"[0-9]")
        assert cache.validate_key("ns:item7")
        assert not cache.validate_key("ns:item")

    def test_validate_key_max_length(self):
        cache = new_memory_cache("ns:", max_key_length=6)
        assert cache.validate_key("ns:abc")
        assert not cache.validate_key("ns:abcd")


class TestPolicy:
    """Tests for read/write gating, key validation and value kinds."""

    def test_get_not_readable(self):
        cache = new_memory_cache(readable=False)
        with pytest.raises(NotReadableError):
            cache.get("key")

    def test_has_not_readable(self):
        cache = new_memory_cache(readable=False)
        with pytest.raises(NotReadableError):
            cache.has("key")

    def test_set_not_writable(self):
        cache = new_memory_cache(writable=False)
        with pytest.raises(NotWritableError):
            cache.set("key", "value")

    def test_remove_not_writable(self):
        cache = new_memory_cache(writable=False)
        with pytest.raises(NotWritableError):
            cache.remove("key")

    def test_touch_needs_read_and_write(self):
        with pytest.raises(NotReadableError):
            new_memory_cache(readable=False).touch("key")
        with pytest.raises(NotWritableError):
            new_memory_cache(writable=False).touch("key")

    def test_increment_not_writable(self):
        with pytest.raises(NotWritableError):
            new_memory_cache(writable=False).increment("n")

    def test_invalid_key_rejected_even_when_stored(self):
        """Validation runs before the store is consulted."""
        cache = new_memory_cache("ns:", key_pattern=r"^ns:[a-z]+$")
        cache.client.set("ns:BAD", "value")
        with pytest.raises(KeyInvalidError):
            cache.get("BAD")
        with pytest.raises(KeyInvalidError):
            cache.has("BAD")

    def test_unsupported_data_type(self):
        cache = new_memory_cache(data_types={DataType.STRING})
        with pytest.raises(UnsupportedDataTypeError):
            cache.set("n", 5)
        assert not cache.has("n")

    def test_policy_errors_never_reach_backend(self):
        backend = _mock_backend(readable=False, writable=False)
        cache = CacheAdapter(backend)
        with pytest.raises(NotReadableError):
            cache.get("key")
        with pytest.raises(NotWritableError):
            cache.set("key", "value")
        backend.get.assert_not_called()
        backend.set.assert_not_called()

    def test_policy_errors_never_fall_back_to_chain(self):
        chained = MagicMock(spec=CacheAdapter)
        chained.chained = None
        cache = new_memory_cache(key_pattern=r"^[a-z]+$")
        cache.chain(chained)
        with pytest.raises(KeyInvalidError):
            cache.get("BAD")
        chained.get.assert_not_called()


class TestLocalOperations:
    """Tests for a single tier."""

    @pytest.fixture
    def cache(self):
        return new_memory_cache("ns:")

    def test_set_and_get(self, cache):
        assert cache.set("key", "value") is True
        assert cache.get("key") == "value"

    def test_get_missing(self, cache):
        with pytest.raises(KeyNotFoundError):
            cache.get("missing")

    def test_has(self, cache):
        cache.set("key", "value")
        assert cache.has("key")
        assert not cache.has("missing")

    def test_has_many_invalid_key_is_absent(self):
        cache = new_memory_cache(key_pattern=r"^[a-z]+$")
        cache.set("good", 1)
        assert cache.has_many(["good", "other", "BAD"]) == {
            "good": True,
            "other": False,
            "BAD": False,
        }

    def test_get_many(self, cache):
        cache.set_many({"a": 1, "b": 2})
        result = cache.get_many(["a", "b", "c"])
        assert result.items == {"a": 1, "b": 2}
        assert isinstance(result.error, KeyNotFoundError)

    def test_set_many_returns_keys(self, cache):
        result = cache.set_many({"a": 1, "b": "two"})
        assert result
        assert sorted(result.items) == ["a", "b"]

    def test_set_many_records_invalid_key(self):
        cache = new_memory_cache(key_pattern=r"^[a-z]+$")
        result = cache.set_many({"good": 1, "BAD": 2})
        assert result.items == ["good"]
        assert isinstance(result.error, KeyInvalidError)
        assert cache.get("good") == 1

    def test_uint8_round_trip(self, cache):
        cache.set("key", uint8(8))
        assert cache.get("key") == uint8(8)

    def test_touch_keeps_value(self, cache):
        cache.set("key", "value")
        assert cache.touch("key") is True
        assert cache.get("key") == "value"

    def test_touch_missing(self, cache):
        assert cache.touch("missing") is False

    def test_touch_many(self, cache):
        cache.set("a", 1)
        assert cache.touch_many(["a", "b"]) == ["a"]

    def test_check_and_set_missing(self, cache):
        with pytest.raises(KeyNotFoundError):
            cache.check_and_set("missing", "x")

    def test_check_and_set_existing(self, cache):
        cache.set("key", "old")
        assert cache.check_and_set("key", "new") is True
        assert cache.get("key") == "new"

    def test_check_and_set_many(self, cache):
        cache.set("a", 1)
        result = cache.check_and_set_many({"a": 10, "b": 20})
        assert result.items == ["a"]
        assert isinstance(result.error, KeyNotFoundError)
        assert cache.get("a") == 10

    def test_remove(self, cache):
        cache.set("key", "value")
        assert cache.remove("key") is True
        assert cache.remove("key") is False

    def test_remove_many(self, cache):
        cache.set("foo", 1)
        cache.set("bar", 2)
        assert cache.remove_many(["foo", "bar"]) == ["foo", "bar"]
        assert not cache.has("foo")
        assert not cache.has("bar")

    @pytest.mark.parametrize("value", NUMERIC_VALUES, ids=repr)
    def test_increment_every_numeric_kind(self, cache, value):
        cache.set("n", value)
        assert cache.increment("n", 1) == 101

    @pytest.mark.parametrize("value", NUMERIC_VALUES, ids=repr)
    def test_decrement_every_numeric_kind(self, cache, value):
        cache.set("n", value)
        assert cache.decrement("n", 1) == 99

    def test_increment_keeps_kind(self, cache):
        cache.set("n", uint8(255))
        assert cache.increment("n") == 0
        assert cache.get("n") == uint8(0)

    def test_increment_missing(self, cache):
        with pytest.raises(KeyNotFoundError):
            cache.increment("missing")

    def test_increment_non_numeric(self, cache):
        cache.set("s", "text")
        with pytest.raises(ValueConversionError):
            cache.increment("s")
        cache.set("b", True)
        with pytest.raises(ValueConversionError):
            cache.increment("b")

    def test_context_manager(self):
        with new_memory_cache() as cache:
            cache.set("key", 1)
            assert cache.get("key") == 1

    def test_properties(self, cache):
        assert cache.name == "memory"
        assert cache.options.namespace == "ns:"
        assert cache.client is cache.backend.client


class TestChaining:
    """Tests for tier chaining."""

    @pytest.fixture
    def tiers(self):
        local = new_memory_cache("one:")
        remote = new_memory_cache("two:")
        local.chain(remote)
        return local, remote

    def test_chain_is_fluent(self):
        local = new_memory_cache()
        remote = new_memory_cache()
        assert local.chain(remote) is local
        assert local.chained is remote
        assert remote.chained is None

    def test_chain_to_self_rejected(self):
        cache = new_memory_cache()
        with pytest.raises(ValueError, match="cycle"):
            cache.chain(cache)

    def test_chain_cycle_rejected(self):
        a, b, c = new_memory_cache(), new_memory_cache(), new_memory_cache()
        a.chain(b)
        b.chain(c)
        with pytest.raises(ValueError):
            c.chain(a)

    def test_get_promotes_chain_hit(self, tiers):
        local, remote = tiers
        remote.set("key", "value")
        assert local.get("key") == "value"
        assert local.backend.exists("one:key")

    def test_get_exhausted_chain(self, tiers):
        local, _ = tiers
        with pytest.raises(KeyNotFoundError):
            local.get("missing")

    def test_has_promotes_chain_hit(self, tiers):
        local, remote = tiers
        remote.set("key", "value")
        assert local.has("key")
        assert local.backend.exists("one:key")
        assert not local.has("missing")

    def test_promotion_skipped_for_unaccepted_kind(self):
        local = new_memory_cache(data_types={DataType.STRING})
        remote = new_memory_cache()
        local.chain(remote)
        remote.set("n", 5)
        assert local.get("n") == 5
        assert not local.backend.exists("n")

    def test_promotion_skipped_when_not_writable(self):
        local = new_memory_cache(writable=False)
        remote = new_memory_cache()
        local.chain(remote)
        remote.set("key", "value")
        assert local.get("key") == "value"
        assert not local.backend.exists("key")

    def test_get_many_fills_from_chain(self, tiers):
        local, remote = tiers
        local.set("a", 1)
        remote.set("b", 2)
        result = local.get_many(["a", "b", "c"])
        assert result.items == {"a": 1, "b": 2}
        assert isinstance(result.error, KeyNotFoundError)
        assert local.backend.exists("one:b")

    def test_three_tiers(self):
        first, second, third = new_memory_cache("1:"), new_memory_cache("2:"), new_memory_cache("3:")
        first.chain(second)
        second.chain(third)
        third.set("key", "deep")
        assert first.get("key") == "deep"
        assert second.backend.exists("2:key")
        assert first.backend.exists("1:key")

    def test_backend_error_falls_back_to_chain(self):
        backend = _mock_backend()
        backend.get.side_effect = BackendError("down", backend="mock")
        cache = CacheAdapter(backend)
        remote = new_memory_cache()
        remote.set("key", "value")
        cache.chain(remote)
        assert cache.get("key") == "value"
        backend.set.assert_called_once_with("key", "value")

    def test_backend_error_without_chain_propagates(self):
        backend = _mock_backend()
        backend.get.side_effect = BackendError("down", backend="mock")
        with pytest.raises(BackendError):
            CacheAdapter(backend).get("key")

    def test_chain_error_not_leaked(self):
        local = new_memory_cache()
        backend = _mock_backend()
        backend.get.side_effect = BackendError("down", backend="mock")
        local.chain(CacheAdapter(backend))
        with pytest.raises(KeyNotFoundError):
            local.get("key")

    def test_failed_promotion_does_not_fail_read(self, caplog):
        backend = _mock_backend()
        backend.get.side_effect = KeyNotFoundError("key")
        backend.set.side_effect = BackendError("read only replica", backend="mock")
        cache = CacheAdapter(backend)
        remote = new_memory_cache()
        remote.set("key", "value")
        cache.chain(remote)
        with caplog.at_level(logging.WARNING):
            assert cache.get("key") == "value"
        assert "Failed to promote" in caplog.text
        record = next(r for r in caplog.records if "Failed to promote" in r.getMessage())
        assert (record.backend, record.operation, record.key) == ("mock", "promote", "key")

    def test_set_mirrors_to_chain(self, tiers):
        local, remote = tiers
        local.set("key", "value")
        assert remote.get("key") == "value"

    def test_set_many_mirrors_to_chain(self, tiers):
        local, remote = tiers
        local.set_many({"a": 1, "b": 2})
        assert remote.get_many(["a", "b"]).items == {"a": 1, "b": 2}

    def test_mirror_failure_is_logged(self, caplog):
        local = new_memory_cache()
        local.chain(new_memory_cache(writable=False))
        with caplog.at_level(logging.WARNING):
            assert local.set("key", "value") is True
        assert local.get("key") == "value"
        assert "not writable" in caplog.text
        record = next(r for r in caplog.records if "not writable" in r.getMessage())
        assert (record.backend, record.operation, record.key) == ("memory", "set", "key")

    def test_remove_mirrors_to_chain(self, tiers):
        local, remote = tiers
        local.set("key", "value")
        assert local.remove("key") is True
        assert not remote.has("key")

    def test_remove_many_mirrors_to_chain(self, tiers):
        local, remote = tiers
        local.set_many({"foo": 1, "bar": 2})
        assert local.remove_many(["foo", "bar"]) == ["foo", "bar"]
        assert not remote.has("foo")
        assert not remote.has("bar")

    def test_touch_mirrors_to_chain(self, tiers):
        local, remote = tiers
        remote.set("key", "value")
        assert local.touch("key") is False
        assert remote.get("key") == "value"

    def test_check_and_set_local_hit_mirrors(self, tiers):
        local, remote = tiers
        local.set("key", "old")
        assert local.check_and_set("key", "new") is True
        assert remote.get("key") == "new"

    def test_check_and_set_falls_through_on_local_miss(self, tiers):
        local, remote = tiers
        remote.set("key", "old")
        assert local.check_and_set("key", "new") is True
        assert remote.get("key") == "new"
        assert local.backend.get("one:key") == "new"

    def test_check_and_set_exhausted_chain(self, tiers):
        local, _ = tiers
        with pytest.raises(KeyNotFoundError):
            local.check_and_set("missing", "x")

    def test_increment_local_hit_mirrors(self, tiers):
        local, remote = tiers
        local.set("n", 5)
        assert local.increment("n") == 6
        assert remote.get("n") == 6

    def test_increment_falls_through_on_local_miss(self, tiers):
        local, remote = tiers
        remote.set("n", 5)
        assert local.increment("n", 2) == 7
        assert remote.get("n") == 7
        assert local.backend.get("one:n") == 7

    def test_decrement_exhausted_chain(self, tiers):
        local, _ = tiers
        with pytest.raises(KeyNotFoundError):
            local.decrement("missing")
