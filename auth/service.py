"""
auth/service.py -- Wires the auth components around one store and notifier.

build_services() is the single place that decides which concrete collaborators
each component receives. The API lifespan, the CLI and the tests all go
through it, so there is no module-level singleton to patch.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.accounts import AccountRegistrar, LoginVerifier, OrgDirectory, PasswordReset
from auth.codes import DEFAULT_CODE_TTL, VerificationCodeStore, utcnow
from auth.rules import DEFAULT_CATALOG, RuleCatalog, RuleResolver
from auth.sms import Notifier
from auth.store import AuthStore


@dataclass
class AuthServices:
    store: AuthStore
    codes: VerificationCodeStore
    registrar: AccountRegistrar
    login: LoginVerifier
    password_reset: PasswordReset
    rules: RuleResolver
    orgs: OrgDirectory

    def close(self) -> None:
        self.store.close()


def build_services(
    store: AuthStore,
    notifier: Notifier,
    catalog: RuleCatalog = DEFAULT_CATALOG,
    code_ttl: timedelta = DEFAULT_CODE_TTL,
    now: Callable[[], datetime] = utcnow,
) -> AuthServices:
    """Assemble the components and seed the rule catalog into storage."""
    rules = RuleResolver(store, catalog)
    rules.seed()
    return AuthServices(
        store=store,
        codes=VerificationCodeStore(store, notifier, ttl=code_ttl, now=now),
        registrar=AccountRegistrar(store),
        login=LoginVerifier(store, rules),
        password_reset=PasswordReset(store),
        rules=rules,
        orgs=OrgDirectory(store),
    )
