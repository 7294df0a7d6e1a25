"""
tests/test_rules.py -- Unit tests for the access rule catalog and resolver.
"""

from __future__ import annotations

import pytest

from auth.rules import DEFAULT_CATALOG, RULE_ADMIN, RULE_WORKER, RuleCatalog, RuleResolver
from core.errors import UnknownRuleError, UserNotFoundError


class TestRuleCatalog:
    def test_default_catalog(self) -> None:
        assert DEFAULT_CATALOG.names == (RULE_WORKER, RULE_ADMIN)
        assert RULE_ADMIN in DEFAULT_CATALOG
        assert "root" not in DEFAULT_CATALOG

    def test_duplicates_collapse_in_order(self) -> None:
        catalog = RuleCatalog(["b", "a", "b"])
        assert list(catalog) == ["b", "a"]
        assert len(catalog) == 2

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            RuleCatalog(["worker", ""])


class TestRuleResolver:
    def test_seed_is_idempotent(self, services, store) -> None:
        first = store.get_access_rule_id(RULE_ADMIN)
        services.rules.seed()
        assert first is not None
        assert store.get_access_rule_id(RULE_ADMIN) == first

    def test_grant_and_resolve(self, services) -> None:
        user = services.registrar.register("alice", "13800000001", "pw")

        services.rules.grant("alice", RULE_WORKER, RULE_ADMIN)

        assert services.rules.rules_for(user.id) == frozenset({RULE_WORKER, RULE_ADMIN})

    def test_regrant_is_noop(self, services) -> None:
        user = services.registrar.register("alice", "13800000001", "pw")
        services.rules.grant("alice", RULE_WORKER)
        services.rules.grant("alice", RULE_WORKER)
        assert services.rules.rules_for(user.id) == frozenset({RULE_WORKER})

    def test_rules_for_user_without_grants(self, services) -> None:
        user = services.registrar.register("alice", "13800000001", "pw")
        assert services.rules.rules_for(user.id) == frozenset()

    def test_unknown_rule_name(self, services) -> None:
        services.registrar.register("alice", "13800000001", "pw")
        with pytest.raises(UnknownRuleError):
            services.rules.grant("alice", "root")

    def test_unknown_user(self, services) -> None:
        with pytest.raises(UserNotFoundError):
            services.rules.grant("nobody", RULE_WORKER)

    def test_grant_is_all_or_nothing(self, services, store) -> None:
        user = services.registrar.register("alice", "13800000001", "pw")
        # "ghost" is in this resolver's catalog but was never seeded into storage.
        resolver = RuleResolver(store, RuleCatalog([RULE_WORKER, "ghost"]))

        with pytest.raises(UnknownRuleError):
            resolver.grant("alice", RULE_WORKER, "ghost")

        assert services.rules.rules_for(user.id) == frozenset()
