"""Tests for the function registry."""

import pytest

from edujobs.engine import (
    CancelOn,
    ConcurrencyLimit,
    DuplicateFunctionId,
    Event,
    FunctionRegistry,
    RegistryFrozen,
    RetryPolicy,
)
from edujobs.functions import build_registry


async def noop(ctx):
    return None


class TestFunctionRegistry:
    def test_register_and_get(self):
        registry = FunctionRegistry()
        registry.function("send-report", "reports/send")(noop)

        definition = registry.get("send-report")
        assert definition.trigger == "reports/send"
        assert definition.handler is noop
        assert "send-report" in registry
        assert len(registry) == 1

    def test_get_unknown_raises_key_error(self):
        with pytest.raises(KeyError):
            FunctionRegistry().get("missing")

    def test_duplicate_id_fails_fast(self):
        registry = FunctionRegistry()
        registry.function("a", "x/y")(noop)
        with pytest.raises(DuplicateFunctionId):
            registry.function("a", "x/z")(noop)

    def test_frozen_registry_rejects_registration(self):
        registry = FunctionRegistry().freeze()
        assert registry.frozen
        with pytest.raises(RegistryFrozen):
            registry.function("a", "x/y")(noop)

    def test_match_supports_wildcards(self):
        registry = FunctionRegistry()
        registry.function("exact", "user/deleted")(noop)
        registry.function("all-users", "user/*")(noop)
        registry.function("other", "grading/*")(noop)

        matched = {d.id for d in registry.match(Event(name="user/deleted"))}
        assert matched == {"exact", "all-users"}

    def test_cancellers_returns_rules_for_event(self):
        registry = FunctionRegistry()
        registry.function(
            "deletion",
            "user/deletion.scheduled",
            cancel_on=(CancelOn(event="user/deletion.cancelled", match="data.user_id"),),
        )(noop)

        pairs = registry.cancellers(Event(name="user/deletion.cancelled"))
        assert [(d.id, r.match) for d, r in pairs] == [("deletion", "data.user_id")]
        assert registry.cancellers(Event(name="user/deletion.scheduled")) == []

    def test_default_retry_policy(self):
        registry = FunctionRegistry()
        registry.function("a", "x/y")(noop)
        assert registry.get("a").retry == RetryPolicy()


class TestDiscovery:
    def test_to_discovery_includes_policies(self):
        registry = FunctionRegistry()
        registry.function(
            "deletion",
            "user/deletion.scheduled",
            name="User deletion",
            retry=RetryPolicy(max_attempts=3),
            concurrency=ConcurrencyLimit(limit=1, key="event.data.user_id"),
            cancel_on=(CancelOn(event="user/deletion.cancelled", match="data.user_id"),),
        )(noop)

        doc = registry.get("deletion").to_discovery()
        assert doc["id"] == "deletion"
        assert doc["name"] == "User deletion"
        assert doc["triggers"] == [{"event": "user/deletion.scheduled"}]
        assert doc["retries"]["max_attempts"] == 3
        assert doc["concurrency"] == {"limit": 1, "key": "event.data.user_id"}
        assert doc["cancel_on"] == [{"event": "user/deletion.cancelled", "match": "data.user_id"}]

    def test_name_defaults_to_id(self):
        registry = FunctionRegistry()
        registry.function("plain", "x/y")(noop)
        doc = registry.get("plain").to_discovery()
        assert doc["name"] == "plain"
        assert "concurrency" not in doc
        assert "cancel_on" not in doc


class TestBuildRegistry:
    def test_registers_every_job(self):
        registry = build_registry()
        assert registry.frozen
        assert {d.id for d in registry.list_all()} == {
            "csv-import-batch",
            "user-deletion",
            "session-email-notification",
            "session-cancellation-email",
            "intervention-email",
            "exercise-question-generation",
            "grading-analyze-submission",
        }

    def test_each_call_builds_a_fresh_registry(self):
        assert build_registry() is not build_registry()
