"""Tests for livesettings.core.instance."""

from datetime import datetime, timezone
from unittest import mock

import pytest

from livesettings.core.config import Settings
from livesettings.core.context import context
from livesettings.core.exceptions import NamespaceError, SettingValidationError
from livesettings.core.instance import SettingsInstance, SettingsRegistry, validate_namespace
from livesettings.storage import MemoryStorage


@pytest.fixture
def instance(memory_storage):
    return SettingsInstance(memory_storage, refresh_interval=60)


class TestTypedGetters:
    def test_get_renders_strings(self, instance):
        instance.set("name", "livesettings")
        instance.set("launch", datetime(2024, 1, 1, tzinfo=timezone.utc))
        instance.set("hosts", ["a", "b"])
        instance.set("flag", True)
        assert instance.get("name") == "livesettings"
        assert instance["name"] == "livesettings"
        assert instance.get("launch") == "2024-01-01T00:00:00.000000+00:00"
        assert instance.get("hosts") == "a\nb"
        assert instance.get("flag") == "true"
        assert instance.get("missing") is None
        assert instance.get("missing", "default") == "default"

    def test_integer(self, instance):
        instance.set("count", 3)
        instance.set("ratio", 2.75)
        instance.set("label", "abc")
        assert instance.integer("count") == 3
        assert instance.integer("ratio") == 2
        assert instance.integer("label") is None
        assert instance.integer("missing", 7) == 7

    def test_integer_of_infinite_float_is_none(self, instance):
        instance.set("ratio", "inf", value_type="float")
        assert instance.float("ratio") == float("inf")
        assert instance.integer("ratio") is None

    def test_float(self, instance):
        instance.set("ratio", 2.75)
        instance.set("count", 3)
        assert instance.float("ratio") == 2.75
        assert instance.float("count") == 3.0
        assert instance.float("missing") is None
        assert instance.float("missing", 1.5) == 1.5

    def test_enabled_and_disabled(self, instance):
        instance.set("on", "On")
        instance.set("off", "off")
        assert instance.enabled("on")
        assert not instance.enabled("off")
        assert not instance.enabled("missing")
        assert instance.enabled("missing", True)
        assert instance.disabled("off")
        assert not instance.disabled("on")
        assert instance.disabled("missing")
        assert not instance.disabled("missing", False)

    def test_unknown_boolean_token_is_enabled(self, instance):
        instance.set("weird", "maybe")
        assert instance.enabled("weird")

    def test_datetime(self, instance):
        instance.set("launch", "2024-02-03 04:05:06", value_type="datetime")
        instance.set("label", "soon")
        assert instance.datetime("launch") == datetime(2024, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
        assert instance.datetime("label") is None
        assert instance.datetime("missing", "2020-01-01") == datetime(2020, 1, 1, tzinfo=timezone.utc)

    def test_array(self, instance):
        instance.set("hosts", ["a", "b"])
        instance.set("single", "x")
        assert instance.array("hosts") == ["a", "b"]
        assert instance.array("single") == ["x"]
        assert instance.array("missing") is None
        assert instance.array("missing", [1, 2]) == ["1", "2"]

    def test_structured(self, instance):
        instance.set("db.host", "localhost")
        instance.set("db.port", 5432)
        instance.set("db.pool.size", 5)
        instance.set("cache.ttl", 60)
        assert instance.structured() == {
            "db": {"host": "localhost", "port": 5432, "pool": {"size": 5}},
            "cache": {"ttl": 60},
        }
        assert instance.structured("db") == {"host": "localhost", "port": 5432, "pool": {"size": 5}}
        assert instance.structured("db", max_depth=1) == {"host": "localhost", "port": 5432, "pool.size": 5}

    def test_structured_branch_wins_over_leaf(self, instance):
        instance.set("a", 1)
        instance.set("a.b", 2)
        assert instance.structured() == {"a": {"b": 2}}

    def test_structured_custom_delimiter(self, instance):
        instance.set("a/b", "x")
        assert instance.structured(delimiter="/") == {"a": {"b": "x"}}

    def test_structured_rejects_bad_depth(self, instance):
        with pytest.raises(ValueError):
            instance.structured(max_depth=0)

    def test_rand_outside_context(self, instance):
        assert 0 <= instance.rand() < 1
        assert instance.rand(5) in range(5)

    def test_rand_inside_context_uses_scope_generator(self, instance):
        with context() as scope:
            instance.rand()
            assert scope._random is not None


class TestWrites:
    def test_set_writes_through_and_records_history(self, instance, memory_storage):
        instance.set("k", "v1", changed_by="alice")
        instance.set("k", "v2", changed_by="bob")
        assert memory_storage.find_by_key("k").raw_value == "v2"
        history = instance.history("k")
        assert [item.value for item in history] == ["v2", "v1"]
        assert [item.changed_by for item in history] == ["bob", "alice"]

    def test_set_infers_type_for_new_settings(self, instance, memory_storage):
        instance.set("count", 3)
        assert memory_storage.find_by_key("count").value_type == "integer"

    def test_set_keeps_existing_type(self, instance, memory_storage):
        instance.set("count", 3)
        instance.set("count", "4")
        assert instance.integer("count") == 4
        assert memory_storage.find_by_key("count").value_type == "integer"

    def test_set_invalid_value_raises(self, instance):
        instance.set("count", 3)
        with pytest.raises(SettingValidationError) as exc_info:
            instance.set("count", "three")
        assert exc_info.value.errors == {"value": ["must be an integer"]}
        assert instance.integer("count") == 3

    def test_writer_sees_own_write_without_refresh(self, instance):
        instance.load_settings()
        instance.set("k", "before")
        with mock.patch.object(instance.cache, "refresh") as refresh:
            instance.set("k", "after")
            assert instance.get("k") == "after"
        refresh.assert_not_called()

    def test_override_restores_previous_value(self, instance):
        instance.set("k", "original")
        with instance.override("k", "temporary"):
            assert instance.get("k") == "temporary"
        assert instance.get("k") == "original"

    def test_override_removes_new_key(self, instance):
        with instance.override("k", 5):
            assert instance.integer("k") == 5
        assert instance.get("k") is None

    def test_override_restores_on_error(self, instance):
        instance.set("k", "original")
        with pytest.raises(RuntimeError):
            with instance.override("k", "temporary"):
                raise RuntimeError("boom")
        assert instance.get("k") == "original"

    def test_delete(self, instance, memory_storage):
        instance.set("k", "v")
        assert instance.delete("k", changed_by="ops") is True
        assert instance.get("k") is None
        assert memory_storage.find_by_key("k") is None
        assert instance.history("k")[0].deleted
        assert instance.delete("k") is False

    def test_bulk_update_all_valid(self, instance, memory_storage):
        instance.set("old", "x")
        all_valid, settings = instance.bulk_update(
            [
                {"key": "a", "value": "1", "value_type": "integer"},
                {"key": "b", "value": "text", "description": "about b"},
                {"key": "old", "deleted": True},
                {"key": "ghost", "deleted": True},
                {"key": "", "value": "skipped"},
                {"key": "untouched"},
            ],
            changed_by="admin",
        )
        assert all_valid
        assert sorted(setting.key for setting in settings) == ["a", "b", "old"]
        assert instance.integer("a") == 1
        assert instance.get("b") == "text"
        assert memory_storage.find_by_key("b").description == "about b"
        assert instance.get("old") is None
        assert memory_storage.history("a")[0].changed_by == "admin"

    def test_bulk_update_writes_nothing_when_invalid(self, instance, memory_storage):
        all_valid, settings = instance.bulk_update(
            [
                {"key": "a", "value": "1", "value_type": "integer"},
                {"key": "b", "value": "not a number", "value_type": "float"},
            ]
        )
        assert not all_valid
        invalid = [setting for setting in settings if setting.errors]
        assert [setting.key for setting in invalid] == ["b"]
        assert memory_storage.all() == []


class TestRequestContext:
    def test_reads_frozen_within_scope(self, instance):
        instance.set("k", "before")
        with context():
            assert instance.get("k") == "before"
            instance.set("k", "after")
            assert instance.get("k") == "before"
        assert instance.get("k") == "after"

    def test_write_before_first_read_is_not_observed(self, instance):
        instance.set("k", "before")
        with context():
            instance.set("k", "after")
            assert instance.get("k") == "before"
        assert instance.get("k") == "after"

    def test_new_key_stays_undefined_in_scope(self, instance):
        instance.load_settings()
        with context():
            instance.set("fresh", "value")
            assert instance.get("fresh") is None
        assert instance.get("fresh") == "value"

    def test_refresh_mid_scope_is_not_observed(self, instance, memory_storage):
        instance.set("k", "before")
        with context():
            assert instance.get("k") == "before"
            setting = memory_storage.find_by_key("k")
            setting.value = "after"
            memory_storage.save(setting)
            instance.refresh_settings()
            assert instance.get("k") == "before"
        assert instance.get("k") == "after"

    def test_scope_pins_snapshot_for_unread_keys(self, instance, memory_storage):
        instance.set("a", "1")
        instance.set("b", "1")
        with context():
            assert instance.get("a") == "1"
            setting = memory_storage.find_by_key("b")
            setting.value = "2"
            memory_storage.save(setting)
            instance.refresh_settings()
            assert instance.get("b") == "1"

    def test_namespaces_memoized_separately(self, memory_storage):
        first = SettingsInstance(memory_storage, namespace="first")
        second = SettingsInstance(memory_storage, namespace="second")
        first.set("k", "one")
        second.set("k", "two")
        with context():
            assert first.get("k") == "one"
            assert second.get("k") == "two"


class TestCacheControl:
    def test_load_and_clear(self, instance):
        instance.set("k", "v")
        instance.clear_cache()
        assert not instance.loaded
        instance.load_settings()
        assert instance.loaded
        assert instance.to_dict() == {"k": "v"}

    def test_refresh_interval_passthrough(self, instance):
        instance.refresh_interval = 2
        assert instance.cache.refresh_interval == 2
        assert instance.refresh_interval == 2

    def test_instance_scopes_storage_to_namespace(self, memory_storage):
        scoped = SettingsInstance(memory_storage, namespace="billing")
        assert scoped.storage.namespace == "billing"
        assert memory_storage.namespace is None


class TestNamespaces:
    def test_validate_namespace(self):
        assert validate_namespace(None) is None
        assert validate_namespace("team_1") == "team_1"
        for bad in ("", "with space", "dash-ed", "dot.ted"):
            with pytest.raises(NamespaceError):
                validate_namespace(bad)

    def test_namespace_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_namespace("no good")


class TestSettingsRegistry:
    def test_default_instance(self, memory_storage):
        registry = SettingsRegistry(memory_storage, refresh_interval=30)
        assert registry.for_namespace() is registry.default
        assert registry[None] is registry.default
        assert registry.default.namespace is None
        assert registry.default.refresh_interval == 30

    def test_namespaces_are_isolated(self, memory_storage):
        registry = SettingsRegistry(memory_storage)
        billing = registry.add_namespace("billing")
        registry.default.set("k", "default")
        billing.set("k", "billing")
        assert registry.default.get("k") == "default"
        assert registry["billing"].get("k") == "billing"
        assert registry.add_namespace("billing") is billing
        assert registry.namespaces == ["billing"]

    def test_unknown_namespace(self, memory_storage):
        registry = SettingsRegistry(memory_storage)
        with pytest.raises(NamespaceError):
            registry.for_namespace("nope")
        with pytest.raises(NamespaceError):
            registry.add_namespace("not valid")

    def test_fan_out(self, memory_storage):
        registry = SettingsRegistry(memory_storage)
        registry.add_namespace("billing")
        registry.load_settings()
        assert registry.loaded
        registry.refresh_settings()
        registry.refresh_interval = 1
        assert all(instance.refresh_interval == 1 for instance in registry.instances())
        registry.clear_cache()
        assert not registry.default.loaded

    def test_from_config(self):
        config = Settings(STORAGE="memory", REFRESH_INTERVAL=12, _env_file=None)
        registry = SettingsRegistry.from_config(config, namespaces=["billing"])
        assert isinstance(registry.storage, MemoryStorage)
        assert registry.refresh_interval == 12
        assert registry.namespaces == ["billing"]

    def test_instances_are_independent(self, memory_storage):
        first = SettingsRegistry(memory_storage)
        second = SettingsRegistry(memory_storage)
        first.default.load_settings()
        assert not second.default.loaded
