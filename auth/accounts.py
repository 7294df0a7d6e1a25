"""
auth/accounts.py -- Registration, login, password reset and organization lookup.

All four services assume the caller has already done whatever code
verification the flow needs (see auth/codes.py). Verification and the action
it authorizes are separate calls; nothing here re-checks the code.

Registration is one unit of work:
  check username -> check phone -> create org -> create user -> set org owner
Any failure rolls the whole unit back, so an ownerless org is never visible
outside the transaction. A concurrent registration that slips past the
existence checks hits the unique constraints on insert and is reported as
UsernameTakenError / PhoneTakenError, same as the sequential case.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError

from auth.models import OrgInfo, User
from auth.passwords import generate_hash_and_salt, verify_password
from auth.rules import RuleResolver
from auth.store import AuthStore, wrap_storage_errors
from core.errors import (
    OrgNotFoundError,
    PhoneTakenError,
    UserDeletedError,
    UsernameTakenError,
    UserNotFoundError,
    WrongPasswordError,
)

logger = logging.getLogger("orgauth.accounts")

HashAndSalt = Callable[[str], tuple[str, str]]


def default_org_name(username: str) -> str:
    return f"{username}'s team"


def _classify_unique_violation(exc: IntegrityError) -> UsernameTakenError | PhoneTakenError | None:
    message = str(exc.orig).lower()
    if "username" in message:
        return UsernameTakenError()
    if "phone" in message:
        return PhoneTakenError()
    return None


class AccountRegistrar:
    def __init__(self, store: AuthStore, hash_and_salt: HashAndSalt = generate_hash_and_salt) -> None:
        self._store = store
        self._hash_and_salt = hash_and_salt

    def register(self, username: str, phone: str, password: str) -> User:
        """Create a user and the organization it owns, atomically.

        Raises UsernameTakenError or PhoneTakenError without writing anything
        when either is already registered.
        """
        salt, password_hash = self._hash_and_salt(password)

        with wrap_storage_errors("create user with new org"):
            with self._store.transaction() as tx:
                if tx.username_exists(username):
                    raise UsernameTakenError()
                if tx.phone_exists(phone):
                    raise PhoneTakenError()

                org = tx.create_org(default_org_name(username))
                try:
                    user = tx.create_user(org.id, username, phone, password_hash, salt)
                except IntegrityError as exc:
                    taken = _classify_unique_violation(exc)
                    if taken is None:
                        raise
                    raise taken from exc
                tx.update_org_owner(org.id, user.id)

        logger.info("Registered user %s (org %s)", user.id, user.org_id)
        return user


class LoginVerifier:
    def __init__(self, store: AuthStore, rules: RuleResolver) -> None:
        self._store = store
        self._rules = rules

    def login(self, username_or_phone: str, password: str) -> tuple[User, frozenset[str]]:
        """Check a password login and return the user with its access rules.

        Raises UserNotFoundError, UserDeletedError or WrongPasswordError.
        """
        with wrap_storage_errors("get user"):
            user = self._store.get_user(username_or_phone)
        if user is None:
            raise UserNotFoundError()
        if user.deleted_at is not None:
            raise UserDeletedError()
        if not verify_password(password, user.password_salt, user.password_hash):
            raise WrongPasswordError()
        return user, self._rules.rules_for(user.id)


class PasswordReset:
    def __init__(self, store: AuthStore, hash_and_salt: HashAndSalt = generate_hash_and_salt) -> None:
        self._store = store
        self._hash_and_salt = hash_and_salt

    def reset_password(self, phone: str, new_password: str) -> None:
        """Replace the credential of the account registered to phone.

        Call only after verify(phone, Purpose.change_password, code) succeeded.
        Raises UserNotFoundError if no account has this phone.
        """
        salt, password_hash = self._hash_and_salt(new_password)
        with wrap_storage_errors("reset password"):
            updated = self._store.update_password_by_phone(phone, password_hash, salt)
        if not updated:
            raise UserNotFoundError()
        logger.info("Password reset for %s", phone)


class OrgDirectory:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def get_org(self, org_id: str) -> OrgInfo:
        with wrap_storage_errors("get org info by org id"):
            org = self._store.get_org(org_id)
        if org is None:
            raise OrgNotFoundError()
        return OrgInfo(id=org.id, name=org.name, owner_id=org.owner_id)
