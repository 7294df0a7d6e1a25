"""
auth/rules.py -- Access rule catalog and per-user rule resolution.

The catalog is an immutable set of rule names fixed at startup and passed in
explicitly. seed() writes it to the access_rules table; grant() refuses any
name outside it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.store import AuthStore, wrap_storage_errors
from core.errors import UnknownRuleError, UserNotFoundError

logger = logging.getLogger("orgauth.rules")

RULE_WORKER = "worker"
RULE_ADMIN = "admin"


class RuleCatalog:
    """Immutable, ordered set of known access rule names."""

    __slots__ = ("_names",)

    def __init__(self, names: Iterable[str]) -> None:
        ordered: list[str] = []
        for name in names:
            if not name:
                raise ValueError("Access rule names must be non-empty.")
            if name not in ordered:
                ordered.append(name)
        self._names = tuple(ordered)

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"RuleCatalog({list(self._names)!r})"


DEFAULT_CATALOG = RuleCatalog([RULE_WORKER, RULE_ADMIN])


class RuleResolver:
    def __init__(self, store: AuthStore, catalog: RuleCatalog = DEFAULT_CATALOG) -> None:
        self._store = store
        self._catalog = catalog

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    def seed(self) -> None:
        """Make sure every catalog rule exists in storage. Safe to call on every startup."""
        with wrap_storage_errors("seed access rules"):
            self._store.seed_access_rules(self._catalog)
        logger.info("Access rule catalog seeded: %s", ", ".join(self._catalog))

    def grant(self, username: str, *rule_names: str) -> None:
        """Grant rules to a user, all or nothing.

        Raises UnknownRuleError for a name outside the catalog (or missing
        from storage) and UserNotFoundError for an unknown username. Granting
        a rule the user already has is a no-op.
        """
        for name in rule_names:
            if name not in self._catalog:
                raise UnknownRuleError(f"No such access rule: {name}")

        with wrap_storage_errors("add user access rule"):
            with self._store.transaction() as tx:
                user = tx.get_user_by_username(username)
                if user is None:
                    raise UserNotFoundError()
                for name in rule_names:
                    rule_id = tx.get_access_rule_id(name)
                    if rule_id is None:
                        raise UnknownRuleError(f"No such access rule: {name}")
                    tx.add_user_access_rule(user.id, rule_id)
        logger.info("Granted %s to %s", ", ".join(rule_names), username)

    def rules_for(self, user_id: str) -> frozenset[str]:
        """Return the rule names granted to user_id (empty if none)."""
        with wrap_storage_errors("get user access rules"):
            return frozenset(self._store.get_user_access_rule_names(user_id))
